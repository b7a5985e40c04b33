"""处理任务的配置模型。"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from image_resizer.core.size_spec import SizeSpec

DEFAULT_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tif", ".tiff", ".webp")


def default_worker_count() -> int:
    """默认并发数与 CPU 核数一致。"""

    return max(1, os.cpu_count() or 1)


@dataclass(slots=True)
class JobConfig:
    """单次批处理任务的配置集合。"""

    sources: Sequence[Path]
    size_spec: SizeSpec
    output: Optional[Path] = None
    force: bool = False
    max_workers: int = field(default_factory=default_worker_count)
    recursive: bool = False
    extensions: Sequence[str] = DEFAULT_EXTENSIONS
    create_output_dir: bool = False
    report_path: Optional[Path] = None
    jpeg_quality: int = 95
