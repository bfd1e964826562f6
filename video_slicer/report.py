from __future__ import annotations

import csv
import io
from datetime import datetime

from .models import DispatchRecord


def build_result_csv(records: list[DispatchRecord]) -> bytes:
    ordered = sorted(records, key=lambda item: item.index)

    sio = io.StringIO(newline="")
    writer = csv.writer(sio)
    writer.writerow(["filename", "status", "error", "size_bytes", "duration_sec"])

    for record in ordered:
        writer.writerow(
            [
                record.filename,
                record.status,
                record.error,
                record.size_bytes,
                f"{record.duration_sec:.3f}",
            ]
        )

    return sio.getvalue().encode("utf-8-sig")


def report_filename(now: datetime | None = None) -> str:
    timestamp = (now or datetime.now()).strftime("%m-%d-%H-%M")
    return f"dispatch-report-{timestamp}.csv"


def summarize(records: list[DispatchRecord]) -> tuple[int, int]:
    succeeded = sum(1 for record in records if record.status == "SUCCESS")
    return succeeded, len(records) - succeeded
