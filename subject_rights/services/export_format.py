"""Compilation of extracted rows into an export artifact.

Two formats are produced:

JSON:
    {
      "export_metadata": {"exported_at": ..., "format": "json",
                          "total_records": 3, "tables": 2},
      "data": {"analytics.public.users": [ {...} ], ...}
    }

CSV: one block per table, each introduced by a "# Table: <name>" comment
line followed by a header row and the table's rows. Tables with no rows
are omitted.

Artifacts are written off the event loop and optionally gzip-compressed.
"""

from __future__ import annotations

import asyncio
import csv
import gzip
import io
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any


class ExportFormat(StrEnum):
    JSON = "json"
    CSV = "csv"


@dataclass
class ExportedTable:
    """Rows extracted from one table."""

    table: str
    columns: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)
    extracted_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def total_records(tables: list[ExportedTable]) -> int:
    return sum(len(t.rows) for t in tables)


def to_json(tables: list[ExportedTable], *, include_metadata: bool = True) -> bytes:
    document: dict[str, Any] = {}
    if include_metadata:
        document["export_metadata"] = {
            "exported_at": datetime.now(UTC).isoformat(),
            "format": ExportFormat.JSON.value,
            "total_records": total_records(tables),
            "tables": len(tables),
            "table_metadata": {
                t.table: {
                    "columns": t.columns,
                    "row_count": len(t.rows),
                    "extracted_at": t.extracted_at.isoformat(),
                }
                for t in tables
            },
        }
    document["data"] = {t.table: t.rows for t in tables}
    return json.dumps(document, default=str, indent=2).encode("utf-8")


def to_csv(tables: list[ExportedTable], *, include_metadata: bool = True) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    if include_metadata:
        buffer.write(
            f"# Exported at: {datetime.now(UTC).isoformat()}"
            f" | total_records={total_records(tables)}\n"
        )

    for table in tables:
        if not table.rows:
            continue
        buffer.write(f"\n# Table: {table.table}\n")

        # Header is the union of row keys in first-seen order
        headers: list[str] = list(dict.fromkeys(k for row in table.rows for k in row))
        writer.writerow(headers)
        for row in table.rows:
            writer.writerow(["" if row.get(h) is None else row.get(h) for h in headers])

    return buffer.getvalue().encode("utf-8")


def compile_export(
    tables: list[ExportedTable],
    export_format: ExportFormat,
    *,
    include_metadata: bool = True,
) -> bytes:
    if export_format == ExportFormat.CSV:
        return to_csv(tables, include_metadata=include_metadata)
    return to_json(tables, include_metadata=include_metadata)


def artifact_name(request_id: int, export_format: ExportFormat, *, compress: bool) -> str:
    name = f"dsar-export-{request_id}.{export_format.value}"
    return f"{name}.gz" if compress else name


def _write(path: Path, content: bytes, compress: bool) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = gzip.compress(content) if compress else content
    path.write_bytes(data)
    return len(data)


async def write_artifact(path: Path, content: bytes, *, compress: bool = False) -> int:
    """Write the artifact and return its size in bytes on disk."""
    return await asyncio.to_thread(_write, path, content, compress)
