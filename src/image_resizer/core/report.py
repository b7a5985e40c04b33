"""报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path

from image_resizer.core.models import BatchReport

HEADER = ["source_path", "output_path", "status", "error_kind", "width", "height", "message"]


def write_csv_report(report: BatchReport, report_path: Path) -> Path:
    """将处理结果按输入顺序写入 CSV 报告。"""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in report.results:
            dimensions = record.dimensions
            writer.writerow(
                [
                    str(record.source_path),
                    str(record.output_path) if record.output_path else "",
                    record.status,
                    record.error_kind.value if record.error_kind else "",
                    dimensions.width if dimensions else "",
                    dimensions.height if dimensions else "",
                    record.message or "",
                ]
            )
    return report_path
