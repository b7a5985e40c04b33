"""日志配置。"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s [%(processName)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """初始化项目日志配置。"""

    logging.basicConfig(level=level, format=LOG_FORMAT)
    # Pillow 在 DEBUG 级别会输出每个图像块的解析细节。
    logging.getLogger("PIL").setLevel(max(level, logging.INFO))
