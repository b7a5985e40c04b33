"""命令行入口。"""

from __future__ import annotations

import logging
import os
import signal
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from image_resizer.core.config import JobConfig, default_worker_count
from image_resizer.core.exceptions import (
    InvalidSizeSpec,
    NoInputImages,
    OutputDirectoryError,
    ProcessingAborted,
)
from image_resizer.core.models import BatchReport
from image_resizer.core.progress import ProgressUpdate
from image_resizer.core.size_spec import parse_size_spec
from image_resizer.processing.pipeline import process_batch
from image_resizer.utils.logging import setup_logging

EXIT_INTERRUPTED = 130

app = typer.Typer(help="批量缩放图片（支持百分比或指定宽高），适用于超大尺寸图片。")


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("缩放图片", total=update.total)
        progress.update(task_id, completed=update.completed)
        if update.message and update.source_path is not None:
            progress.log(update.message)

    return callback


def _print_summary(report: BatchReport) -> None:
    counts = report.summary()
    other_failures = counts["failed"] - counts["skipped"] - counts["rejected"]
    typer.echo(
        f"处理完成：成功 {counts['succeeded']} 张，跳过 {counts['skipped']} 张，"
        f"拒绝 {counts['rejected']} 张，失败 {other_failures} 张。"
    )
    for result in report.failed:
        assert result.error_kind is not None
        typer.secho(
            f"  {result.source_path}: {result.error_kind.value}: {result.message}",
            fg=typer.colors.RED,
            err=True,
        )


@app.command("resize")
def resize_cli(  # noqa: PLR0913
    inputs: List[Path] = typer.Argument(..., help="输入图片文件、通配符或目录，可指定多个"),
    resize: str = typer.Option(..., "--resize", "-r", help="目标尺寸，如 50% 或 800x600"),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="输出文件（单个输入）或输出目录；省略时原地缩放。以 / 结尾时自动创建目录",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="允许覆盖已存在的输出文件"),
    max_workers: int = typer.Option(default_worker_count(), "--workers", "-w", min=1, help="并发进程数量"),
    recursive: bool = typer.Option(False, "--recursive/--no-recursive", help="是否递归扫描目录"),
    report_path: Optional[Path] = typer.Option(None, "--report", help="将处理结果写入 CSV 报告"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """按 --resize 指定的尺寸批量缩放图片。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)

    try:
        size_spec = parse_size_spec(resize)
    except InvalidSizeSpec as exc:
        raise typer.BadParameter(str(exc), param_hint="--resize") from exc

    logging.getLogger(__name__).debug("CLI 参数解析完成：尺寸 %s", size_spec.describe())

    job = JobConfig(
        sources=[p.expanduser() for p in inputs],
        size_spec=size_spec,
        output=Path(output).expanduser() if output else None,
        force=force,
        max_workers=max_workers,
        recursive=recursive,
        create_output_dir=bool(output) and output.endswith(("/", os.sep)),
        report_path=report_path.expanduser() if report_path else None,
    )

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    previous_handler = signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        with progress:
            report = process_batch(job, progress_callback=_build_progress_callback(progress))
    except (NoInputImages, OutputDirectoryError) as exc:
        typer.secho(f"错误：{exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc
    except ProcessingAborted as exc:
        if exc.report is not None:
            _print_summary(exc.report)
        typer.secho("任务被中断，已完成的文件保持不变。", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(EXIT_INTERRUPTED) from exc
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)

    _print_summary(report)
    if report_path:
        typer.echo(f"报告文件：{report_path}")
    raise typer.Exit(report.exit_code)


if __name__ == "__main__":
    app()
