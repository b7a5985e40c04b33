"""输入路径扫描与筛选逻辑。"""

from __future__ import annotations

import glob
import logging
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from image_resizer.core.config import DEFAULT_EXTENSIONS

LOGGER = logging.getLogger(__name__)

GLOB_MAGIC = ("*", "?", "[")


def _is_glob_pattern(value: str) -> bool:
    return any(ch in value for ch in GLOB_MAGIC)


def _has_image_suffix(path: Path, extensions: Sequence[str]) -> bool:
    return path.suffix.lower() in extensions


def _iter_directory(path: Path, recursive: bool) -> Iterator[Path]:
    """按字典序遍历目录下的文件。"""

    iterator = path.rglob("*") if recursive else path.glob("*")
    for candidate in sorted(iterator, key=lambda p: str(p)):
        if candidate.is_file():
            yield candidate


def _iter_glob(pattern: str, recursive: bool) -> Iterator[Path]:
    for match in sorted(glob.glob(pattern, recursive=recursive)):
        candidate = Path(match)
        if candidate.is_file():
            yield candidate


def _expand_source(source: Path, recursive: bool, extensions: Sequence[str]) -> Iterator[Path]:
    text = str(source)

    if source.is_dir():
        for candidate in _iter_directory(source, recursive):
            if _has_image_suffix(candidate, extensions):
                yield candidate
        return

    if source.is_file():
        # 显式指定的文件不按扩展名过滤，由编解码器根据文件内容判断。
        yield source
        return

    if _is_glob_pattern(text):
        for candidate in _iter_glob(text, recursive):
            if _has_image_suffix(candidate, extensions):
                yield candidate
        return

    # 不存在的显式路径保留下来，由处理阶段报告为读取失败。
    LOGGER.warning("输入路径不存在: %s", source)
    yield source


def collect_input_paths(
    sources: Iterable[Path],
    recursive: bool = False,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
) -> list[Path]:
    """按发现顺序返回去重后的输入图片列表。

    显式参数保持给定顺序，目录与通配符展开结果按字典序排列。
    """

    lowered = tuple(ext.lower() for ext in extensions)
    collected: list[Path] = []
    seen_paths: set[Path] = set()

    for source in sources:
        for candidate in _expand_source(Path(source).expanduser(), recursive, lowered):
            resolved = candidate.resolve()
            if resolved in seen_paths:
                continue
            seen_paths.add(resolved)
            collected.append(candidate)

    LOGGER.debug("扫描得到 %d 个输入文件", len(collected))
    return collected
