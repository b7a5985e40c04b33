"""批处理调度与端到端流程测试。"""

from __future__ import annotations

import csv
import os
import signal
from pathlib import Path

import pytest
from PIL import Image

from image_resizer.core.config import JobConfig
from image_resizer.core.exceptions import NoInputImages, OutputDirectoryError, ProcessingAborted
from image_resizer.core.models import ErrorKind
from image_resizer.core.progress import ProgressUpdate
from image_resizer.core.size_spec import Percent
from image_resizer.processing import pipeline
from image_resizer.processing.pipeline import execute_batch, process_batch


def _make_image(path: Path, size: tuple[int, int], fmt: str | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, "green").save(path, format=fmt)
    return path


def make_config(sources: list[Path], output: Path | None = None, **kwargs) -> JobConfig:
    kwargs.setdefault("max_workers", 1)
    return JobConfig(sources=sources, size_spec=Percent(50), output=output, **kwargs)


def test_directory_batch_to_output_directory(tmp_path: Path) -> None:
    source = tmp_path / "input"
    output = tmp_path / "out"
    output.mkdir()
    _make_image(source / "a.jpg", (2000, 1000))
    _make_image(source / "b.png", (500, 500))

    report = process_batch(make_config([source], output))

    assert [r.source_path.name for r in report.results] == ["a.jpg", "b.png"]
    assert all(r.succeeded for r in report.results)
    assert report.exit_code == 0
    with Image.open(output / "a.jpg") as img:
        assert img.size == (1000, 500)
        assert img.format == "JPEG"
    with Image.open(output / "b.png") as img:
        assert img.size == (250, 250)
        assert img.format == "PNG"


def test_process_pool_keeps_input_order(tmp_path: Path) -> None:
    source = tmp_path / "input"
    output = tmp_path / "out"
    output.mkdir()
    sizes = {"a.png": (900, 900), "b.png": (10, 10), "c.jpg": (1200, 800), "d.png": (30, 60)}
    for name, size in sizes.items():
        _make_image(source / name, size)

    report = process_batch(make_config([source], output, max_workers=3))

    assert [r.source_path.name for r in report.results] == sorted(sizes)
    assert [r.dimensions.as_tuple() for r in report.results if r.dimensions] == [
        (450, 450),
        (5, 5),
        (600, 400),
        (15, 30),
    ]
    assert report.finalized


def test_single_corrupted_file_fails_without_output(tmp_path: Path) -> None:
    broken = tmp_path / "broken.png"
    broken.write_text("not an image")
    output = tmp_path / "out"
    output.mkdir()

    report = process_batch(make_config([broken], output))

    assert len(report.results) == 1
    assert report.results[0].error_kind is ErrorKind.DECODE_FAILURE
    assert report.exit_code != 0
    assert list(output.iterdir()) == []


def test_failures_do_not_stop_the_batch(tmp_path: Path) -> None:
    source = tmp_path / "input"
    output = tmp_path / "out"
    output.mkdir()
    _make_image(source / "a.png", (40, 40))
    (source / "b.png").write_text("broken")
    _make_image(source / "c.png", (40, 40))

    report = process_batch(make_config([source], output, max_workers=2))

    assert [r.status for r in report.results] == ["processed", "DecodeFailure", "processed"]
    assert (output / "a.png").exists()
    assert (output / "c.png").exists()
    assert report.summary() == {"total": 3, "succeeded": 2, "failed": 1, "skipped": 0, "rejected": 0}


def test_in_place_resize_is_not_idempotent(tmp_path: Path) -> None:
    image = _make_image(tmp_path / "photo.png", (200, 100))
    config = make_config([image])

    first = process_batch(config)
    second = process_batch(config)

    assert first.results[0].dimensions.as_tuple() == (100, 50)
    # 每次运行都以当前文件为基准，两次 50% 得到四分之一尺寸。
    assert second.results[0].dimensions.as_tuple() == (50, 25)
    with Image.open(image) as img:
        assert img.size == (50, 25)


def test_existing_destination_is_skipped_and_untouched(tmp_path: Path) -> None:
    source = _make_image(tmp_path / "input" / "cat.png", (100, 100))
    output = tmp_path / "out"
    existing = _make_image(output / "cat.png", (7, 7))

    report = process_batch(make_config([source], output))

    result = report.results[0]
    assert result.error_kind is ErrorKind.SKIPPED
    assert "WouldOverwrite" in (result.message or "")
    assert report.exit_code == 1
    with Image.open(existing) as img:
        assert img.size == (7, 7)


def test_force_overwrites_existing_destination(tmp_path: Path) -> None:
    source = _make_image(tmp_path / "input" / "cat.png", (100, 100))
    output = tmp_path / "out"
    _make_image(output / "cat.png", (7, 7))

    report = process_batch(make_config([source], output, force=True))

    assert report.ok
    with Image.open(output / "cat.png") as img:
        assert img.size == (50, 50)


def test_file_output_with_multiple_inputs_is_rejected(tmp_path: Path) -> None:
    first = _make_image(tmp_path / "a.png", (10, 10))
    second = _make_image(tmp_path / "b.png", (10, 10))
    target = tmp_path / "single.png"

    report = process_batch(make_config([first, second], target))

    assert [r.error_kind for r in report.results] == [ErrorKind.REJECTED, ErrorKind.REJECTED]
    assert all("AmbiguousOutput" in (r.message or "") for r in report.results)
    assert not target.exists()


def test_single_input_to_explicit_file(tmp_path: Path) -> None:
    source = _make_image(tmp_path / "a.png", (10, 10))
    target = tmp_path / "small.png"

    report = process_batch(make_config([source], target))

    assert report.ok
    assert report.results[0].output_path == target
    with Image.open(target) as img:
        assert img.size == (5, 5)


def test_create_output_dir(tmp_path: Path) -> None:
    source = _make_image(tmp_path / "input" / "a.png", (10, 10))
    output = tmp_path / "new" / "dir"

    report = process_batch(make_config([source], output, create_output_dir=True))

    assert report.ok
    assert (output / "a.png").exists()


def test_every_input_gets_one_result_when_worker_crashes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    first = _make_image(tmp_path / "a.png", (10, 10))
    second = _make_image(tmp_path / "b.png", (10, 10))

    def crash(task):
        raise RuntimeError("worker crashed")

    monkeypatch.setattr(pipeline, "run_task", crash)

    report = execute_batch([first, second], make_config([]))

    assert [r.error_kind for r in report.results] == [ErrorKind.WORKER_FAILURE, ErrorKind.WORKER_FAILURE]


def test_interrupt_cancels_remaining_jobs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    sources = [_make_image(tmp_path / f"{name}.png", (10, 10)) for name in "abc"]
    real_run_task = pipeline.run_task
    calls: list[Path] = []

    def interrupt_after_first(task):
        calls.append(task.source_path)
        if len(calls) > 1:
            raise KeyboardInterrupt
        return real_run_task(task)

    monkeypatch.setattr(pipeline, "run_task", interrupt_after_first)

    with pytest.raises(ProcessingAborted) as excinfo:
        execute_batch(sources, make_config([]))

    report = excinfo.value.report
    assert report is not None and report.finalized
    assert [r.status for r in report.results] == ["processed", "Cancelled", "Cancelled"]


def test_progress_callback_receives_updates(tmp_path: Path) -> None:
    source = tmp_path / "input"
    _make_image(source / "a.png", (10, 10))
    _make_image(source / "b.png", (10, 10))
    output = tmp_path / "out"
    output.mkdir()
    updates: list[ProgressUpdate] = []

    process_batch(make_config([source], output), progress_callback=updates.append)

    assert updates[-1].status == "finished"
    assert updates[-1].completed == 2
    assert {u.source_path.name for u in updates if u.source_path} == {"a.png", "b.png"}


def test_csv_report_is_written_in_input_order(tmp_path: Path) -> None:
    source = tmp_path / "input"
    _make_image(source / "a.png", (10, 10))
    (source / "b.png").write_text("broken")
    output = tmp_path / "out"
    output.mkdir()
    report_path = tmp_path / "reports" / "report.csv"

    process_batch(make_config([source], output, report_path=report_path))

    with report_path.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [Path(row["source_path"]).name for row in rows] == ["a.png", "b.png"]
    assert rows[0]["status"] == "processed"
    assert rows[0]["width"] == "5"
    assert rows[1]["error_kind"] == "DecodeFailure"


def test_no_inputs_is_fatal(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("hello")

    with pytest.raises(NoInputImages):
        process_batch(make_config([tmp_path]))


def test_interrupt_signal_lets_current_job_finish(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    sources = [_make_image(tmp_path / f"{name}.png", (40, 40)) for name in "abc"]
    real_run_task = pipeline.run_task
    previous_handler = signal.getsignal(signal.SIGINT)

    def interrupt_during_first(task):
        if task.index == 0:
            os.kill(os.getpid(), signal.SIGINT)
        return real_run_task(task)

    monkeypatch.setattr(pipeline, "run_task", interrupt_during_first)

    with pytest.raises(ProcessingAborted) as excinfo:
        execute_batch(sources, make_config([]))

    report = excinfo.value.report
    assert report is not None
    assert [r.status for r in report.results] == ["processed", "Cancelled", "Cancelled"]
    with Image.open(sources[0]) as img:
        assert img.size == (20, 20)
    with Image.open(sources[1]) as img:
        assert img.size == (40, 40)
    assert signal.getsignal(signal.SIGINT) is previous_handler


def test_output_directory_that_cannot_be_created_stops_the_run(tmp_path: Path) -> None:
    source = _make_image(tmp_path / "input" / "a.png", (10, 10))
    blocker = tmp_path / "foo"
    blocker.write_bytes(b"keep me")

    with pytest.raises(OutputDirectoryError):
        process_batch(make_config([source], blocker, create_output_dir=True, force=True))

    assert blocker.read_bytes() == b"keep me"
