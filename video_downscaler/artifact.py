from __future__ import annotations

import csv
import io
from pathlib import Path

from .models import ItemResult


RESULT_COLUMNS = [
    "source_path",
    "output_path",
    "status",
    "error",
    "duration_sec",
    "original_size",
    "new_size",
]


def build_result_csv(results: list[ItemResult] | tuple[ItemResult, ...]) -> bytes:
    ordered = sorted(results, key=lambda item: item.index)

    sio = io.StringIO(newline="")
    writer = csv.writer(sio)
    writer.writerow(RESULT_COLUMNS)

    for result in ordered:
        writer.writerow(
            [
                result.source_path,
                result.output_name if result.status == "SUCCESS" else "",
                result.status,
                result.error,
                f"{result.duration_sec:.3f}",
                result.original_size,
                result.new_size,
            ]
        )

    return sio.getvalue().encode("utf-8-sig")


def write_result_csv(results: list[ItemResult] | tuple[ItemResult, ...], destination: Path) -> Path:
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(build_result_csv(results))
    return destination


def default_report_path(output_zip: Path) -> Path:
    return output_zip.with_name(f"{output_zip.stem}_result.csv")
