"""
Append-only action log for directory mutations.

Each entry is written as one JSON line and flushed immediately, so a run
that dies half-way still leaves a readable record of what was decided and
what was changed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..directory.models import DirectoryNode, GroupScope

logger = logging.getLogger("m365_tenant_toolkit.scope.action_log")


class ActionLog:
    """JSON-lines action log. Entries are also kept in memory for the report."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self.entries: list[dict] = []
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        action: str,
        group: Optional[DirectoryNode] = None,
        before: Optional[GroupScope] = None,
        after: Optional[GroupScope] = None,
        status: str = "",
        detail: str = "",
        **extra: Any,
    ) -> dict:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "group": group.display_name if group else "",
            "group_id": group.id if group else "",
            "scope_before": before.value if before else "",
            "scope_after": after.value if after else "",
            "status": status,
            "detail": detail,
        }
        entry.update(extra)
        self.entries.append(entry)

        if self.path:
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, default=str) + "\n")
                fh.flush()
        logger.debug(f"action={action} group={entry['group']} status={status} {detail}")
        return entry

    @staticmethod
    def replay(path: Path) -> list[dict]:
        """Read back a log written by a previous (possibly interrupted) run."""
        entries = []
        with open(path, "r", encoding="utf-8") as fh:
            for line_no, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    # A crash can leave a truncated final line
                    logger.warning(f"Skipping unreadable action log line {line_no} in {path}")
        return entries
