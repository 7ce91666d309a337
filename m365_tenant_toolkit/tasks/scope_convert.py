"""
Security Group Scope Conversion
Resolves the requested groups and runs them through the Conflict Gate.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..directory.models import GroupScope
from ..directory.provider import DirectoryProvider, ProviderError
from ..scope.action_log import ActionLog
from ..scope.gate import (
    CandidateStatus,
    Confirmer,
    ConflictGate,
    Decider,
    GateOutcome,
    ScopeCandidate,
)
from .base import BaseTask, TaskResult

logger = logging.getLogger("m365_tenant_toolkit.tasks.scope_convert")


class ScopeConversionTask(BaseTask):
    name = "convert-scope"
    description = "Group scope conversion with conflict detection"
    columns = ["Group", "GroupId", "ScopeBefore", "ScopeAfter", "TargetScope", "Status", "Detail"]

    def __init__(
        self,
        provider: DirectoryProvider,
        identities: list[str],
        target_scope: GroupScope,
        decide: Decider,
        confirm: Optional[Confirmer] = None,
        action_log: Optional[ActionLog] = None,
        commit: bool = False,
    ):
        self.provider = provider
        self.identities = identities
        self.target_scope = target_scope
        self.decide = decide
        self.confirm = confirm
        self.action_log = action_log or ActionLog()
        self.commit = commit
        self.outcome: Optional[GateOutcome] = None

    async def run(self, result: TaskResult):
        candidates: list[ScopeCandidate] = []
        seen: set[str] = set()

        for identity in self.identities:
            result.metadata["items_processed"] += 1
            try:
                group = await self.provider.get_group(identity)
            except ProviderError as e:
                result.add_error(f"Lookup of '{identity}' failed: {e}")
                result.add_row(self._row(identity, CandidateStatus.FAILED.value, str(e)))
                continue
            if group is None:
                result.add_warning(f"Group '{identity}' not found in {self.provider.name}")
                result.add_row(self._row(identity, "NotFound", f"Not found in {self.provider.name}"))
                continue
            if group.scope is None:
                result.add_row(self._row(group.display_name, CandidateStatus.FAILED.value,
                                         "Group has no AD scope", group_id=group.id))
                continue
            if group.id in seen:
                logger.debug(f"'{identity}' resolves to an already listed group; ignored")
                continue
            seen.add(group.id)
            candidates.append(ScopeCandidate(group, group.scope, self.target_scope))

        if not candidates:
            logger.info("No groups to convert.")
            return

        gate = ConflictGate(self.provider, self.action_log, commit=self.commit)
        self.outcome = await gate.run(candidates, self.decide, self.confirm)

        result.metadata["resolution"] = self.outcome.resolution.value if self.outcome.resolution else ""
        result.metadata["aborted"] = self.outcome.aborted
        result.metadata["user_aborted"] = self.outcome.user_aborted
        result.metadata["conflicts"] = [c.to_dict() for c in self.outcome.conflicts]
        result.metadata["dependencies_converted"] = [
            g.display_name for g in self.outcome.dependencies_converted
        ]
        for o in self.outcome.outcomes:
            result.add_row(o.to_row())

    def _row(self, group: str, status: str, detail: str, group_id: str = "") -> dict:
        return {
            "Group": group,
            "GroupId": group_id,
            "ScopeBefore": "",
            "ScopeAfter": "",
            "TargetScope": self.target_scope.value,
            "Status": status,
            "Detail": detail,
        }
