"""项目内使用的自定义异常定义。"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from image_resizer.core.models import BatchReport


class ImageResizerError(Exception):
    """基础异常类型。"""


class InvalidSizeSpec(ImageResizerError, ValueError):
    """--resize 参数无法解析时抛出，整个任务随之终止。"""


class NoInputImages(ImageResizerError):
    """输入参数中没有找到任何图片。"""


class ProcessingAborted(ImageResizerError):
    """任务被用户中断时抛出，附带已完成部分的报告。"""

    def __init__(self, message: str, report: Optional["BatchReport"] = None) -> None:
        super().__init__(message)
        self.report = report


class ImageReadError(ImageResizerError):
    """源文件无法读取。"""


class ImageDecodeError(ImageResizerError):
    """源文件不是受支持的有效图片。"""


class ImageResizeError(ImageResizerError):
    """缩放过程失败。"""


class ImageWriteError(ImageResizerError):
    """输出写入失败。"""


class OutputDirectoryError(ImageResizerError):
    """指定的输出目录无法创建，整个任务随之终止。"""
