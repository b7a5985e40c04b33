"""输出路径规划与冲突处理模块。"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from image_resizer.core.models import OutputDecision

LOGGER = logging.getLogger(__name__)


def plan_output(
    source_path: Path,
    output: Optional[Path],
    force: bool,
    batch_size: int = 1,
) -> OutputDecision:
    """根据输出参数与覆盖策略确定单个输入的目标路径。

    - 未指定输出：原地缩放，无论是否 ``force`` 都允许。
    - 输出为已存在的目录：写入 ``output/<原文件名>``。
    - 输出不是目录且只有一个输入：直接作为目标文件名。
    - 输出不是目录但有多个输入：拒绝（AmbiguousOutput）。
    - 目标已存在且未 ``force``：跳过（WouldOverwrite）。

    只做存在性检查，不创建也不写入任何文件。
    """

    if output is None:
        return OutputDecision.write(source_path, source_path, in_place=True, replaces_existing=True)

    if output.is_dir():
        destination = output / source_path.name
    elif batch_size > 1:
        return OutputDecision.reject(
            source_path,
            note=f"输出路径 {output} 不是目录，无法同时容纳 {batch_size} 个输入",
        )
    else:
        destination = output

    if destination.exists():
        existing_msg = f"目标已存在: {destination}"
        if not force:
            return OutputDecision.skip(source_path, destination, note=f"{existing_msg}（使用 --force 覆盖）")
        return OutputDecision.write(source_path, destination, replaces_existing=True, note=existing_msg)

    return OutputDecision.write(source_path, destination)


class OutputPlanner:
    """为整个批次规划输出，并保证同一目标路径只被一个输入占用。"""

    def __init__(self, output: Optional[Path], force: bool, batch_size: int) -> None:
        self.output = output
        self.force = force
        self.batch_size = batch_size
        self._claimed: dict[str, Path] = {}

    def plan(self, source_path: Path) -> OutputDecision:
        decision = plan_output(source_path, self.output, self.force, self.batch_size)
        if not decision.permitted:
            LOGGER.debug("不写入 %s: %s", source_path, decision.note)
            return decision

        assert decision.destination is not None
        key = _destination_key(decision.destination)
        owner = self._claimed.get(key)
        if owner is not None:
            LOGGER.warning("输出冲突：%s 与 %s 指向同一目标 %s", source_path, owner, decision.destination)
            return OutputDecision.skip(
                source_path,
                decision.destination,
                note=f"目标 {decision.destination} 已被本批次中的 {owner} 占用",
            )

        self._claimed[key] = source_path
        return decision


def _destination_key(path: Path) -> str:
    return os.path.normcase(os.path.abspath(path))
