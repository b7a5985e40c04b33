"""核心数据模型定义。"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence, Union


class ErrorKind(str, Enum):
    """单个任务失败的类别。"""

    SKIPPED = "Skipped"
    REJECTED = "Rejected"
    READ_FAILURE = "ReadFailure"
    DECODE_FAILURE = "DecodeFailure"
    RESIZE_FAILURE = "ResizeFailure"
    WRITE_FAILURE = "WriteFailure"
    CANCELLED = "Cancelled"
    WORKER_FAILURE = "WorkerFailure"


class DecisionAction(str, Enum):
    WRITE = "write"
    SKIP = "skip"
    REJECT = "reject"


class DecisionReason(str, Enum):
    WOULD_OVERWRITE = "WouldOverwrite"
    AMBIGUOUS_OUTPUT = "AmbiguousOutput"


@dataclass(frozen=True)
class Dimensions:
    """宽高对，两边均为正整数。"""

    width: int
    height: int

    def as_tuple(self) -> tuple[int, int]:
        return self.width, self.height

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class OutputDecision:
    """封装单个输入的输出文件决策。"""

    source_path: Path
    action: DecisionAction
    destination: Optional[Path] = None
    reason: Optional[DecisionReason] = None
    note: Optional[str] = None
    in_place: bool = False
    replaces_existing: bool = False

    @classmethod
    def write(
        cls,
        source_path: Path,
        destination: Path,
        *,
        in_place: bool = False,
        replaces_existing: bool = False,
        note: Optional[str] = None,
    ) -> "OutputDecision":
        return cls(
            source_path=source_path,
            action=DecisionAction.WRITE,
            destination=destination,
            note=note,
            in_place=in_place,
            replaces_existing=replaces_existing,
        )

    @classmethod
    def skip(cls, source_path: Path, destination: Path, note: str) -> "OutputDecision":
        return cls(
            source_path=source_path,
            action=DecisionAction.SKIP,
            destination=destination,
            reason=DecisionReason.WOULD_OVERWRITE,
            note=note,
        )

    @classmethod
    def reject(cls, source_path: Path, note: str) -> "OutputDecision":
        return cls(
            source_path=source_path,
            action=DecisionAction.REJECT,
            reason=DecisionReason.AMBIGUOUS_OUTPUT,
            note=note,
        )

    @property
    def permitted(self) -> bool:
        return self.action is DecisionAction.WRITE


@dataclass(frozen=True)
class Success:
    output_path: Path
    dimensions: Dimensions
    original_dimensions: Optional[Dimensions] = None


@dataclass(frozen=True)
class Failure:
    error_kind: ErrorKind
    message: str


@dataclass(frozen=True)
class JobResult:
    """记录单个文件的处理结果（用于报告/日志）。"""

    source_path: Path
    outcome: Union[Success, Failure]

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def status(self) -> str:
        if isinstance(self.outcome, Success):
            return "processed"
        return self.outcome.error_kind.value

    @property
    def output_path(self) -> Optional[Path]:
        if isinstance(self.outcome, Success):
            return self.outcome.output_path
        return None

    @property
    def dimensions(self) -> Optional[Dimensions]:
        if isinstance(self.outcome, Success):
            return self.outcome.dimensions
        return None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        if isinstance(self.outcome, Failure):
            return self.outcome.error_kind
        return None

    @property
    def message(self) -> Optional[str]:
        if isinstance(self.outcome, Failure):
            return self.outcome.message
        return None


class BatchReport:
    """批处理的结果汇总。

    每个输入按其在批次中的位置登记恰好一次结果；``finalize`` 之后
    报告不再接受写入，``results`` 始终按输入顺序返回。
    """

    def __init__(self, inputs: Sequence[Path]) -> None:
        self.inputs: tuple[Path, ...] = tuple(inputs)
        self._slots: list[Optional[JobResult]] = [None] * len(self.inputs)
        self._lock = threading.Lock()
        self._finalized = False

    def record(self, index: int, result: JobResult) -> None:
        """登记第 ``index`` 个输入的结果。"""

        with self._lock:
            if self._finalized:
                raise RuntimeError("报告已完成，不能再登记结果")
            if self._slots[index] is not None:
                raise RuntimeError(f"重复登记结果: {self.inputs[index]}")
            self._slots[index] = result

    def is_recorded(self, index: int) -> bool:
        with self._lock:
            return self._slots[index] is not None

    def finalize(self) -> "BatchReport":
        with self._lock:
            missing = [str(self.inputs[idx]) for idx, slot in enumerate(self._slots) if slot is None]
            if missing:
                raise RuntimeError(f"以下输入缺少处理结果: {', '.join(missing)}")
            self._finalized = True
        return self

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def results(self) -> list[JobResult]:
        with self._lock:
            return [slot for slot in self._slots if slot is not None]

    @property
    def succeeded(self) -> list[JobResult]:
        return [result for result in self.results if result.succeeded]

    @property
    def failed(self) -> list[JobResult]:
        return [result for result in self.results if not result.succeeded]

    @property
    def skipped(self) -> list[JobResult]:
        return [result for result in self.results if result.error_kind is ErrorKind.SKIPPED]

    @property
    def rejected(self) -> list[JobResult]:
        return [result for result in self.results if result.error_kind is ErrorKind.REJECTED]

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.inputs),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "rejected": len(self.rejected),
        }
