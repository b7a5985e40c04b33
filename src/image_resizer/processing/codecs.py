"""按图片格式分派的编解码实现。

每种格式提供同一组能力：``open``（只读文件头）、``decode``（按目标尺寸
加载像素）、``resize`` 与 ``encode``。格式由文件头的魔数决定，而不是扩展名。
"""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Optional

from PIL import Image, UnidentifiedImageError

from image_resizer.core.exceptions import ImageDecodeError, ImageResizeError, ImageWriteError
from image_resizer.core.models import Dimensions

LOGGER = logging.getLogger(__name__)

# 本工具面向数百兆像素的大图，关闭 Pillow 的解压炸弹保护。
Image.MAX_IMAGE_PIXELS = None

HEADER_SIZE = 16
RESAMPLE = Image.Resampling.LANCZOS
REDUCING_GAP = 3.0


class ImageCodec:
    """单一图片格式的编解码能力集合。"""

    format_name = ""
    signatures: tuple[bytes, ...] = ()

    def matches(self, header: bytes) -> bool:
        return any(header.startswith(signature) for signature in self.signatures)

    def open(self, stream: BinaryIO) -> Image.Image:
        """只解析文件头，像素数据在 ``decode`` 时才读取。"""

        try:
            return Image.open(stream, formats=[self.format_name])
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
            raise ImageDecodeError(f"无法识别的{self.format_name}图像: {exc}") from exc

    def decode(self, image: Image.Image, target: Dimensions) -> None:
        """加载像素数据；子类可以利用目标尺寸缩小解码规模。"""

        try:
            image.load()
        except (OSError, SyntaxError, ValueError) as exc:
            raise ImageDecodeError(f"图像数据损坏: {exc}") from exc

    def resize(self, image: Image.Image, target: Dimensions) -> Image.Image:
        try:
            return image.resize(target.as_tuple(), resample=RESAMPLE, reducing_gap=REDUCING_GAP)
        except (OSError, ValueError, OverflowError, MemoryError) as exc:
            raise ImageResizeError(f"缩放到 {target} 失败: {exc}") from exc

    def encode(self, image: Image.Image, stream: BinaryIO, source: Image.Image, quality: int) -> None:
        """以与源文件相同的格式写出。"""

        params = {key: value for key, value in self.save_params(source, quality).items() if value is not None}
        try:
            image.save(stream, format=self.format_name, **params)
        except (OSError, ValueError, KeyError) as exc:
            raise ImageWriteError(f"{self.format_name} 编码失败: {exc}") from exc

    def save_params(self, source: Image.Image, quality: int) -> dict[str, Any]:
        return {}


class JpegCodec(ImageCodec):
    format_name = "JPEG"
    signatures = (b"\xff\xd8\xff",)

    def decode(self, image: Image.Image, target: Dimensions) -> None:
        # DCT 缩放解码：像素不少于目标尺寸，最多缩小到 1/8。
        native_size = image.size
        if image.draft(image.mode, target.as_tuple()) is not None and image.size != native_size:
            LOGGER.debug("JPEG draft 解码: %s -> %s", native_size, image.size)
        super().decode(image, target)

    def save_params(self, source: Image.Image, quality: int) -> dict[str, Any]:
        return {
            "quality": quality,
            "optimize": True,
            "progressive": bool(source.info.get("progressive") or source.info.get("progression")),
            "exif": source.info.get("exif"),
            "icc_profile": source.info.get("icc_profile"),
            "dpi": source.info.get("dpi"),
        }


class PngCodec(ImageCodec):
    format_name = "PNG"
    signatures = (b"\x89PNG\r\n\x1a\n",)

    def save_params(self, source: Image.Image, quality: int) -> dict[str, Any]:
        return {
            "icc_profile": source.info.get("icc_profile"),
            "transparency": source.info.get("transparency"),
            "dpi": source.info.get("dpi"),
        }


class GifCodec(ImageCodec):
    format_name = "GIF"
    signatures = (b"GIF87a", b"GIF89a")

    def save_params(self, source: Image.Image, quality: int) -> dict[str, Any]:
        return {"transparency": source.info.get("transparency")}


class BmpCodec(ImageCodec):
    format_name = "BMP"
    signatures = (b"BM",)


class TiffCodec(ImageCodec):
    format_name = "TIFF"
    signatures = (b"II*\x00", b"MM\x00*")

    LOSSLESS_COMPRESSION = {"raw", "tiff_lzw", "tiff_adobe_deflate", "packbits"}

    def save_params(self, source: Image.Image, quality: int) -> dict[str, Any]:
        compression: Optional[str] = source.info.get("compression")
        return {
            "compression": compression if compression in self.LOSSLESS_COMPRESSION else None,
            "dpi": source.info.get("dpi"),
            "icc_profile": source.info.get("icc_profile"),
        }


class WebpCodec(ImageCodec):
    format_name = "WEBP"

    def matches(self, header: bytes) -> bool:
        return header[:4] == b"RIFF" and header[8:12] == b"WEBP"

    def save_params(self, source: Image.Image, quality: int) -> dict[str, Any]:
        return {
            "quality": quality,
            "lossless": bool(source.info.get("lossless")) or None,
            "exif": source.info.get("exif"),
            "icc_profile": source.info.get("icc_profile"),
        }


CODECS: tuple[ImageCodec, ...] = (
    JpegCodec(),
    PngCodec(),
    GifCodec(),
    WebpCodec(),
    TiffCodec(),
    BmpCodec(),
)


def detect_codec(header: bytes) -> ImageCodec:
    """根据文件头魔数选择编解码器。"""

    for codec in CODECS:
        if codec.matches(header):
            return codec
    raise ImageDecodeError("不支持的图片格式或文件不是图片")
