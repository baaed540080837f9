"""JSON and CSV export for probe results."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import asdict
from typing import Optional

from latprobe.models import LatencyReport

CSV_FIELDS = [
    "timestamp",
    "url",
    "status_code",
    "http_version",
    "tls_version",
    "connection_reused",
    "dns_lookup_seconds",
    "tcp_connect_seconds",
    "tls_handshake_seconds",
    "time_to_first_byte_seconds",
    "total_seconds",
    "download_speed_bytes_per_second",
    "body_byte_count",
]


def report_to_dict(report: LatencyReport, timestamp: Optional[str] = None) -> dict:
    """Convert a report to a serializable dict."""
    data: dict = {}
    if timestamp:
        data["timestamp"] = timestamp
    data.update(asdict(report))
    return data


def export_json(report: LatencyReport, timestamp: Optional[str] = None, indent: int = 2) -> str:
    """Export a report as a JSON string."""
    return json.dumps(report_to_dict(report, timestamp), indent=indent, default=str)


def export_csv(report: LatencyReport, timestamp: Optional[str] = None) -> str:
    """Export a report as CSV (header row plus one data row)."""
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=CSV_FIELDS)
    writer.writeheader()

    row = report_to_dict(report)
    row["timestamp"] = timestamp or ""
    writer.writerow({name: "" if row.get(name) is None else row[name] for name in CSV_FIELDS})

    return output.getvalue()


def write_to_file(content: str, filepath: str) -> None:
    """Write export content to a file."""
    with open(filepath, "w") as f:
        f.write(content)
