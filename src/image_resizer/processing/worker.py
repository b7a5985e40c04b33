"""并发处理的工作单元：单张图片的读取、缩放与原子写入。"""

from __future__ import annotations

import logging
import os
import signal
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from PIL import Image

from image_resizer.core.exceptions import (
    ImageDecodeError,
    ImageReadError,
    ImageResizeError,
    ImageWriteError,
)
from image_resizer.core.models import Dimensions, ErrorKind, Failure, JobResult, Success
from image_resizer.core.size_spec import SizeSpec, resolve_dimensions
from image_resizer.processing.codecs import HEADER_SIZE, ImageCodec, detect_codec

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ResizeTask:
    """描述单个图片处理任务。"""

    index: int
    source_path: Path
    dest_path: Path
    size_spec: SizeSpec
    in_place: bool = False
    jpeg_quality: int = 95


def ignore_interrupts() -> None:
    """进程池初始化函数：中断与终止信号只由主进程处理，进行中的任务照常完成。"""

    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, signal.SIG_IGN)


def run_task(task: ResizeTask) -> JobResult:
    """在工作进程中执行完整的处理流程，任何失败都转换为 JobResult。"""

    try:
        native, target = _resize_file(task)
    except ImageReadError as exc:
        return _failure(task, ErrorKind.READ_FAILURE, exc)
    except ImageDecodeError as exc:
        return _failure(task, ErrorKind.DECODE_FAILURE, exc)
    except ImageResizeError as exc:
        return _failure(task, ErrorKind.RESIZE_FAILURE, exc)
    except ImageWriteError as exc:
        return _failure(task, ErrorKind.WRITE_FAILURE, exc)

    destination = "原地替换" if task.in_place else task.dest_path
    LOGGER.info("已处理: %s -> %s (%s -> %s)", task.source_path, destination, native, target)
    return JobResult(
        source_path=task.source_path,
        outcome=Success(output_path=task.dest_path, dimensions=target, original_dimensions=native),
    )


def _failure(task: ResizeTask, kind: ErrorKind, exc: Exception) -> JobResult:
    LOGGER.warning("处理失败 %s [%s]: %s", task.source_path, kind.value, exc)
    return JobResult(source_path=task.source_path, outcome=Failure(error_kind=kind, message=str(exc)))


def _resize_file(task: ResizeTask) -> tuple[Dimensions, Dimensions]:
    tmp_path: Optional[Path] = None
    try:
        with _open_source(task.source_path) as handle:
            codec = detect_codec(_read_header(handle, task.source_path))
            with codec.open(handle) as image:
                native = Dimensions(*image.size)
                target = _resolve_target(task, native)
                codec.decode(image, target)
                with codec.resize(image, target) as resized:
                    tmp_path = _encode_to_temp(codec, resized, image, task)

        # 源文件句柄关闭后再替换，原地模式下原文件只会被整体替换。
        _commit(tmp_path, task.dest_path)
        tmp_path = None
    finally:
        if tmp_path is not None:
            _discard(tmp_path)

    return native, target


def _resolve_target(task: ResizeTask, native: Dimensions) -> Dimensions:
    try:
        return resolve_dimensions(task.size_spec, native)
    except OverflowError as exc:
        raise ImageResizeError(f"目标尺寸超出范围 ({task.size_spec.describe()}): {exc}") from exc


def _open_source(path: Path) -> BinaryIO:
    try:
        return path.open("rb")
    except OSError as exc:
        raise ImageReadError(f"无法读取源文件 {path}: {exc.strerror or exc}") from exc


def _read_header(handle: BinaryIO, path: Path) -> bytes:
    try:
        header = handle.read(HEADER_SIZE)
        handle.seek(0)
    except OSError as exc:
        raise ImageReadError(f"读取源文件失败 {path}: {exc.strerror or exc}") from exc
    return header


def _encode_to_temp(codec: ImageCodec, resized: Image.Image, source: Image.Image, task: ResizeTask) -> Path:
    """编码到目标目录下的唯一临时文件，返回临时文件路径。"""

    dest = task.dest_path
    try:
        handle = tempfile.NamedTemporaryFile(
            dir=dest.parent,
            prefix=f".{dest.name}.",
            suffix=".tmp",
            delete=False,
        )
    except OSError as exc:
        raise ImageWriteError(f"无法在 {dest.parent} 创建临时文件: {exc.strerror or exc}") from exc

    tmp_path = Path(handle.name)
    try:
        with handle:
            codec.encode(resized, handle, source, task.jpeg_quality)
            handle.flush()
            os.fsync(handle.fileno())
        _apply_permissions(tmp_path, dest)
    except OSError as exc:
        _discard(tmp_path)
        raise ImageWriteError(f"写入临时文件失败 {tmp_path}: {exc.strerror or exc}") from exc
    except BaseException:
        _discard(tmp_path)
        raise
    return tmp_path


def _apply_permissions(tmp_path: Path, dest: Path) -> None:
    """临时文件默认权限为 0600，改为与目标文件（或 umask）一致。"""

    try:
        mode = stat.S_IMODE(dest.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        mode = 0o666 & ~umask
    os.chmod(tmp_path, mode)


def _commit(tmp_path: Optional[Path], dest: Path) -> None:
    assert tmp_path is not None
    try:
        os.replace(tmp_path, dest)
    except OSError as exc:
        raise ImageWriteError(f"无法写入目标文件 {dest}: {exc.strerror or exc}") from exc


def _discard(tmp_path: Path) -> None:
    try:
        tmp_path.unlink(missing_ok=True)
    except OSError as exc:
        LOGGER.warning("无法删除临时文件 %s: %s", tmp_path, exc)
