"""
CSV exporter — one report file per task run.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any


def export_csv(
    rows: list[dict[str, Any]],
    columns: list[str],
    output_dir: Path,
    report_name: str,
    run_id: str,
) -> Path:
    """
    Write report rows to `<report_name>_<run_id>.csv`.
    Columns not listed are dropped; missing ones are left blank.

    Returns:
        Path to the created CSV file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{report_name.replace('-', '_')}_{run_id}.csv"

    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=columns, extrasaction="ignore", restval="")
        writer.writeheader()
        for row in rows:
            writer.writerow({k: _cell(v) for k, v in row.items()})

    return path


def _cell(value: Any) -> Any:
    # Excel reads Python booleans fine; lists and tuples need flattening
    if isinstance(value, (list, tuple, set)):
        return "; ".join(str(v) for v in value)
    return value
