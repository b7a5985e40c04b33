"""处理流水线：扫描输入、规划输出、并发执行缩放并汇总报告。"""

from __future__ import annotations

import logging
import signal
import threading
from concurrent.futures import Future, ProcessPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

from image_resizer.core.config import JobConfig
from image_resizer.core.exceptions import NoInputImages, OutputDirectoryError, ProcessingAborted
from image_resizer.core.models import BatchReport, DecisionAction, ErrorKind, Failure, JobResult
from image_resizer.core.output_manager import OutputPlanner
from image_resizer.core.progress import ProgressUpdate
from image_resizer.core.report import write_csv_report
from image_resizer.core.scanner import collect_input_paths
from image_resizer.processing.worker import ResizeTask, ignore_interrupts, run_task

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


class _ProgressTracker:
    def __init__(self, callback: ProgressCallback, total: int) -> None:
        self.callback = callback
        self.total = total
        self.completed = 0
        self.failed = 0

    def advance(self, result: JobResult) -> None:
        self.completed += 1
        if not result.succeeded:
            self.failed += 1
        self.emit(source_path=result.source_path, message=_describe(result))

    def emit(self, *, source_path: Optional[Path] = None, message: Optional[str] = None, status: str = "running") -> None:
        if not self.callback:
            return
        self.callback(
            ProgressUpdate(
                total=self.total,
                completed=self.completed,
                failed=self.failed,
                source_path=source_path,
                message=message,
                status=status,
            )
        )


def process_batch(config: JobConfig, progress_callback: ProgressCallback = None) -> BatchReport:
    """批量处理入口：扫描输入路径后交给 ``execute_batch``。"""

    LOGGER.info("开始扫描输入路径")
    inputs = collect_input_paths(config.sources, recursive=config.recursive, extensions=config.extensions)
    LOGGER.info("发现 %d 个候选图片文件", len(inputs))
    if not inputs:
        raise NoInputImages("没有找到可处理的图片文件")
    return execute_batch(inputs, config, progress_callback=progress_callback)


def execute_batch(
    inputs: Iterable[Path],
    config: JobConfig,
    progress_callback: ProgressCallback = None,
) -> BatchReport:
    """按输入顺序规划输出，并发执行缩放任务，返回按输入顺序排列的报告。"""

    sources = list(inputs)
    report = BatchReport(sources)
    tracker = _ProgressTracker(progress_callback, len(sources))

    _prepare_output_dir(config)
    planner = OutputPlanner(config.output, config.force, len(sources))
    tasks: list[ResizeTask] = []

    for index, source in enumerate(sources):
        decision = planner.plan(source)
        if decision.action is DecisionAction.WRITE:
            assert decision.destination is not None
            if decision.replaces_existing and not decision.in_place:
                LOGGER.info("将覆盖已存在的文件：%s", decision.destination)
            tasks.append(
                ResizeTask(
                    index=index,
                    source_path=source,
                    dest_path=decision.destination,
                    size_spec=config.size_spec,
                    in_place=decision.in_place,
                    jpeg_quality=config.jpeg_quality,
                )
            )
            continue

        kind = ErrorKind.SKIPPED if decision.action is DecisionAction.SKIP else ErrorKind.REJECTED
        reason = decision.reason.value if decision.reason else kind.value
        LOGGER.info("%s %s: %s", "跳过" if kind is ErrorKind.SKIPPED else "拒绝", source, decision.note)
        _record(report, tracker, index, JobResult(source, Failure(kind, f"{reason}: {decision.note}")))

    tracker.emit(message=f"开始执行 {len(tasks)} 个缩放任务（尺寸 {config.size_spec.describe()}）")

    if tasks:
        if config.max_workers <= 1 or len(tasks) == 1:
            _run_inline(tasks, report, tracker, config)
        else:
            _run_pool(tasks, report, tracker, config)

    report.finalize()
    _write_report(config, report)
    tracker.emit(message="处理完成", status="finished")
    return report


class _DeferredInterrupt:
    """在主线程内暂存 SIGINT/SIGTERM，当前任务完成后再停止；再次中断则立即生效。"""

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self) -> None:
        self.requested = False
        self._previous: dict[int, Any] = {}

    def __enter__(self) -> "_DeferredInterrupt":
        if threading.current_thread() is threading.main_thread():
            for signum in self.SIGNALS:
                self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        for signum, handler in self._previous.items():
            if handler is not None:
                signal.signal(signum, handler)

    def _handle(self, signum: int, frame: Any) -> None:
        if self.requested:
            raise KeyboardInterrupt
        LOGGER.warning("收到中断信号，当前任务完成后停止")
        self.requested = True


def _run_inline(tasks: Sequence[ResizeTask], report: BatchReport, tracker: _ProgressTracker, config: JobConfig) -> None:
    with _DeferredInterrupt() as interrupt:
        try:
            for task in tasks:
                if interrupt.requested:
                    break
                _record(report, tracker, task.index, _run_guarded(task))
        except KeyboardInterrupt:
            interrupt.requested = True

    if interrupt.requested:
        _abort(tasks, report, tracker, config)


def _run_pool(tasks: Sequence[ResizeTask], report: BatchReport, tracker: _ProgressTracker, config: JobConfig) -> None:
    workers = min(config.max_workers, len(tasks))
    LOGGER.debug("启动 %d 个工作进程", workers)
    executor = ProcessPoolExecutor(max_workers=workers, initializer=ignore_interrupts)
    future_map: dict[Future[JobResult], ResizeTask] = {}
    try:
        for task in tasks:
            future_map[executor.submit(run_task, task)] = task
        for future in as_completed(future_map):
            task = future_map[future]
            _record(report, tracker, task.index, _collect(future, task))
    except KeyboardInterrupt:
        LOGGER.warning("收到中断信号，取消排队任务并等待进行中的任务完成写入")
        executor.shutdown(wait=True, cancel_futures=True)
        for future, task in future_map.items():
            if report.is_recorded(task.index) or future.cancelled():
                continue
            _record(report, tracker, task.index, _collect(future, task))
        _abort(tasks, report, tracker, config)
    finally:
        executor.shutdown(wait=True)


def _run_guarded(task: ResizeTask) -> JobResult:
    try:
        return run_task(task)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return JobResult(task.source_path, Failure(ErrorKind.WORKER_FAILURE, str(exc) or type(exc).__name__))


def _collect(future: Future[JobResult], task: ResizeTask) -> JobResult:
    try:
        return future.result()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return JobResult(task.source_path, Failure(ErrorKind.WORKER_FAILURE, str(exc) or type(exc).__name__))


def _abort(tasks: Sequence[ResizeTask], report: BatchReport, tracker: _ProgressTracker, config: JobConfig) -> None:
    for task in tasks:
        if not report.is_recorded(task.index):
            _record(report, tracker, task.index, JobResult(task.source_path, Failure(ErrorKind.CANCELLED, "任务被中断")))
    report.finalize()
    _write_report(config, report)
    tracker.emit(message="任务被中断", status="aborted")
    raise ProcessingAborted("任务被用户中断", report)


def _record(report: BatchReport, tracker: _ProgressTracker, index: int, result: JobResult) -> None:
    report.record(index, result)
    tracker.advance(result)


def _describe(result: JobResult) -> str:
    if result.succeeded:
        return f"完成 {result.source_path.name} -> {result.output_path} ({result.dimensions})"
    assert result.error_kind is not None
    return f"失败 {result.source_path.name} [{result.error_kind.value}] {result.message}"


def _prepare_output_dir(config: JobConfig) -> None:
    if config.output is None or not config.create_output_dir:
        return
    try:
        config.output.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputDirectoryError(f"无法创建输出目录 {config.output}: {exc.strerror or exc}") from exc


def _write_report(config: JobConfig, report: BatchReport) -> None:
    if config.report_path is None:
        return
    try:
        path = write_csv_report(report, config.report_path)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
    else:
        LOGGER.info("报告已写入 %s", path)
