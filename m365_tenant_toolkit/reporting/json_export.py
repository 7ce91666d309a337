"""
JSON exporter — run summary with task metadata and the safety audit record.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .. import __version__


def export_run_summary(
    task_result: Any,
    output_dir: Path,
    run_id: str,
    audit_record: Optional[dict] = None,
    created_files: Optional[list[Path]] = None,
) -> Path:
    """
    Write the run summary JSON.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "M365 Tenant Toolkit",
            "version": __version__,
            "task": task_result.task_name,
            "run_id": run_id,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
        },
        "result": task_result.to_dict(),
        "files": [str(p) for p in (created_files or [])],
    }
    if audit_record:
        payload.update(audit_record)

    filepath = output_dir / f"run_summary_{run_id}.json"
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
