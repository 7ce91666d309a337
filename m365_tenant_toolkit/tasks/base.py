"""
Base task class — the contract every tool follows.
A task processes a batch of items and produces report rows; per-item
failures become rows or warnings, never a crash of the whole batch.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from ..errors import SetupError, UserAbort

logger = logging.getLogger("m365_tenant_toolkit.tasks")


class TaskResult:
    """Standardized result from a task: report rows plus run metadata."""

    def __init__(self, task_name: str, columns: list[str]):
        self.task_name = task_name
        self.columns = columns
        self.rows: list[dict[str, Any]] = []
        self.metadata: dict[str, Any] = {
            "task": task_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_processed": 0,
            "status_counts": {},
            "errors": [],
            "warnings": [],
            "failed": False,
        }

    def add_row(self, row: dict[str, Any]):
        self.rows.append(row)
        status = row.get("Status")
        if status:
            counts = self.metadata["status_counts"]
            counts[status] = counts.get(status, 0) + 1

    def add_error(self, error: str):
        self.metadata["errors"].append(error)
        logger.error(f"[{self.task_name}] {error}")

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.task_name}] {warning}")

    def to_dict(self) -> dict:
        return {
            "rows": len(self.rows),
            "metadata": self.metadata,
        }


class BaseTask(ABC):
    """
    Abstract base class for all tools.

    Subclasses implement run() and add rows via result.add_row().
    The base class provides timing, metadata, and the error wrapper.
    """

    name: str = "base"
    description: str = "Base task"
    columns: list[str] = []

    async def execute(self) -> TaskResult:
        """
        Execute the task with timing and error handling.
        """
        result = TaskResult(self.name, list(self.columns))
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting...")

        try:
            await self.run(result)
        except (SetupError, UserAbort):
            raise
        except Exception as e:
            result.metadata["failed"] = True
            result.add_error(f"Task failed: {type(e).__name__}: {e}")
            logger.exception(f"[{self.name}] Task failed")

        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s — "
            f"{result.metadata['items_processed']} items, {len(result.rows)} rows"
        )
        return result

    @abstractmethod
    async def run(self, result: TaskResult):
        """
        Implement the tool.
        Add rows via result.add_row(row) and bump items_processed.
        """
        raise NotImplementedError
