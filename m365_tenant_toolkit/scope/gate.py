"""
Conflict Gate — validates a batch of group scope changes before any
of them is written to the directory.

Flow:
    gather → detect conflicts → decide (Abort | SkipConflicting |
    ResolveDependenciesFirst) → resolve → commit

The policy table and the planning step are pure functions. The decision
itself is supplied by the caller, so the CLI prompt is just one possible
decider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from ..directory.models import DirectoryNode, GroupScope, Relation, ScopeConflict
from ..directory.provider import DirectoryProvider, ProviderError
from ..errors import UserAbort
from .action_log import ActionLog

logger = logging.getLogger("m365_tenant_toolkit.scope.gate")


class CandidateStatus(str, Enum):
    CONVERTED = "Converted"
    SKIPPED = "Skipped"
    FAILED = "Failed"
    NOT_APPLICABLE = "NotApplicable"


class Resolution(str, Enum):
    ABORT = "Abort"
    SKIP_CONFLICTING = "SkipConflicting"
    RESOLVE_DEPENDENCIES_FIRST = "ResolveDependenciesFirst"


class ConflictError(Exception):
    """Conflicts are still present where none were expected."""
    def __init__(self, conflicts: list[ScopeConflict], message: str = ""):
        self.conflicts = conflicts
        super().__init__(message or f"{len(conflicts)} scope conflict(s) remain")


@dataclass(frozen=True)
class ScopeCandidate:
    group: DirectoryNode
    current_scope: GroupScope
    target_scope: GroupScope

    @property
    def needs_change(self) -> bool:
        return self.current_scope is not self.target_scope


# ─── Policy ─────────────────────────────────────────────────────────────────

def find_conflicts(
    candidate: ScopeCandidate,
    parents: list[DirectoryNode],
    members: list[DirectoryNode],
) -> list[ScopeConflict]:
    """
    Apply the scope nesting policy to one candidate.

        Global      no member may be Universal
        Universal   no parent may be Global or DomainLocal
        DomainLocal nothing checked
    """
    conflicts = []
    subject = candidate.group

    if candidate.target_scope is GroupScope.GLOBAL:
        for member in members:
            if member.is_group and member.scope is GroupScope.UNIVERSAL:
                conflicts.append(ScopeConflict(
                    subject_group=subject,
                    conflicting_group=member,
                    relation=Relation.MEMBER_OF,
                    reason=(
                        f"'{member.display_name}' is a Universal group nested in "
                        f"'{subject.display_name}'; a Global group cannot contain Universal groups"
                    ),
                ))

    elif candidate.target_scope is GroupScope.UNIVERSAL:
        for parent in parents:
            if parent.scope in (GroupScope.GLOBAL, GroupScope.DOMAIN_LOCAL):
                conflicts.append(ScopeConflict(
                    subject_group=subject,
                    conflicting_group=parent,
                    relation=Relation.PARENT_OF,
                    reason=(
                        f"'{subject.display_name}' is a member of {parent.scope.value} group "
                        f"'{parent.display_name}', which cannot contain a Universal group"
                    ),
                ))

    return conflicts


def related_groups(conflicts: list[ScopeConflict]) -> list[DirectoryNode]:
    """Conflicting related groups, de-duplicated by id, in discovery order."""
    seen: dict[str, DirectoryNode] = {}
    for c in conflicts:
        seen.setdefault(c.conflicting_group.id, c.conflicting_group)
    return list(seen.values())


# ─── Planning ───────────────────────────────────────────────────────────────

@dataclass
class ResolutionPlan:
    """
    What the gate will do once a decision has been made.

    `dependencies` are related groups outside the batch; they are converted
    before any candidate. `blockers` maps a candidate id to the ids of other
    batch candidates whose own requested conversion clears its conflicts;
    those candidates are committed first.
    """
    resolution: Optional[Resolution]
    convert: list[ScopeCandidate] = field(default_factory=list)
    skip: list[ScopeCandidate] = field(default_factory=list)
    dependencies: list[tuple[DirectoryNode, GroupScope]] = field(default_factory=list)
    blockers: dict[str, set[str]] = field(default_factory=dict)
    skip_details: dict[str, str] = field(default_factory=dict)

    @property
    def aborted(self) -> bool:
        return self.resolution is Resolution.ABORT

    def commit_order(self) -> list[ScopeCandidate]:
        """plan.convert with every candidate placed after its blockers."""
        convert_ids = {c.group.id for c in self.convert}
        placed: set[str] = set()
        ordered = []
        pending = list(self.convert)
        while pending:
            ready = [
                c for c in pending
                if all(b in placed or b not in convert_ids for b in self.blockers.get(c.group.id, ()))
            ]
            # Mutual blockers: fall back to batch order
            for cand in ready or pending[:1]:
                ordered.append(cand)
                placed.add(cand.group.id)
                pending.remove(cand)
        return ordered


def _clears_conflict(conflict: ScopeConflict, subject: ScopeCandidate, planned: GroupScope) -> bool:
    """True if the related group no longer conflicts once it holds `planned`."""
    related = replace(conflict.conflicting_group, scope=planned)
    if conflict.relation is Relation.PARENT_OF:
        return not find_conflicts(subject, [related], [])
    return not find_conflicts(subject, [], [related])


def plan_resolution(
    candidates: list[ScopeCandidate],
    conflicts: list[ScopeConflict],
    resolution: Optional[Resolution],
) -> ResolutionPlan:
    """Turn a decision into a plan. Performs no I/O."""
    if not conflicts:
        return ResolutionPlan(resolution=None, convert=list(candidates))

    if resolution is None:
        raise ConflictError(conflicts, "Conflicts detected but no resolution was chosen")

    if resolution is Resolution.ABORT:
        return ResolutionPlan(resolution=resolution, skip=list(candidates))

    conflicting_ids = {c.subject_group.id for c in conflicts}

    if resolution is Resolution.SKIP_CONFLICTING:
        return ResolutionPlan(
            resolution=resolution,
            convert=[c for c in candidates if c.group.id not in conflicting_ids],
            skip=[c for c in candidates if c.group.id in conflicting_ids],
        )

    # ResolveDependenciesFirst: related groups move to the scope their
    # subject is heading for. A related group that is itself in the batch
    # keeps its requested target and is committed with the batch.
    by_id = {c.group.id: c for c in candidates}
    blockers: dict[str, set[str]] = {}
    skip_details: dict[str, str] = {}
    for conflict in conflicts:
        subject = by_id[conflict.subject_group.id]
        related = by_id.get(conflict.conflicting_group.id)
        if related is None:
            continue
        if _clears_conflict(conflict, subject, related.target_scope):
            blockers.setdefault(subject.group.id, set()).add(related.group.id)
        else:
            skip_details.setdefault(subject.group.id, (
                f"Conflict: {conflict.reason}; the requested {related.target_scope.value} "
                f"scope of '{related.group.display_name}' does not resolve it"
            ))

    dependencies: dict[str, tuple[DirectoryNode, GroupScope]] = {}
    for conflict in conflicts:
        dep = conflict.conflicting_group
        subject_id = conflict.subject_group.id
        if dep.id in by_id or subject_id in skip_details:
            continue
        dependencies.setdefault(dep.id, (dep, by_id[subject_id].target_scope))

    return ResolutionPlan(
        resolution=resolution,
        convert=[c for c in candidates if c.group.id not in skip_details],
        skip=[c for c in candidates if c.group.id in skip_details],
        dependencies=list(dependencies.values()),
        blockers=blockers,
        skip_details=skip_details,
    )


# ─── Execution ──────────────────────────────────────────────────────────────

@dataclass
class CandidateOutcome:
    candidate: ScopeCandidate
    status: CandidateStatus
    scope_after: GroupScope
    detail: str = ""

    def to_row(self) -> dict:
        return {
            "Group": self.candidate.group.display_name,
            "GroupId": self.candidate.group.id,
            "ScopeBefore": self.candidate.current_scope.value,
            "ScopeAfter": self.scope_after.value,
            "TargetScope": self.candidate.target_scope.value,
            "Status": self.status.value,
            "Detail": self.detail,
        }


@dataclass
class GateOutcome:
    outcomes: list[CandidateOutcome] = field(default_factory=list)
    conflicts: list[ScopeConflict] = field(default_factory=list)
    resolution: Optional[Resolution] = None
    aborted: bool = False
    user_aborted: bool = False
    dependencies_converted: list[DirectoryNode] = field(default_factory=list)

    def count(self, status: CandidateStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)


Decider = Callable[[list[ScopeConflict]], Resolution]
Confirmer = Callable[[ResolutionPlan], bool]


class ConflictGate:
    """
    Runs a batch of scope changes through conflict detection and resolution.

    With commit=False the gate stops after planning: nothing is written and
    every would-be conversion is reported as Skipped ("WhatIf").
    """

    def __init__(
        self,
        provider: DirectoryProvider,
        action_log: Optional[ActionLog] = None,
        commit: bool = True,
    ):
        self.provider = provider
        self.log = action_log or ActionLog()
        self.commit = commit

    async def gather_conflicts(
        self, candidates: list[ScopeCandidate]
    ) -> tuple[list[ScopeConflict], dict[str, str]]:
        """
        Look up the relationships each candidate's target scope cares about.
        Returns (conflicts, lookup failures keyed by group id).
        """
        conflicts: list[ScopeConflict] = []
        failures: dict[str, str] = {}
        for cand in candidates:
            parents: list[DirectoryNode] = []
            members: list[DirectoryNode] = []
            try:
                if cand.target_scope is GroupScope.UNIVERSAL:
                    parents = await self.provider.get_parent_groups(cand.group.id)
                elif cand.target_scope is GroupScope.GLOBAL:
                    members = await self.provider.get_group_members(cand.group.id)
            except ProviderError as e:
                failures[cand.group.id] = str(e)
                logger.error(f"Could not read relationships of '{cand.group.display_name}': {e}")
                continue
            conflicts.extend(find_conflicts(cand, parents, members))
        return conflicts, failures

    async def run(
        self,
        candidates: list[ScopeCandidate],
        decide: Decider,
        confirm: Optional[Confirmer] = None,
    ) -> GateOutcome:
        outcome = GateOutcome()
        results: dict[str, CandidateOutcome] = {}

        def finish(cand: ScopeCandidate, status: CandidateStatus, detail: str, after: Optional[GroupScope] = None):
            after = after or cand.current_scope
            results[cand.group.id] = CandidateOutcome(cand, status, after, detail)
            self.log.record(
                status.value.lower(), cand.group,
                before=cand.current_scope, after=after, status=status.value, detail=detail,
            )

        # Gathered
        active = []
        for cand in candidates:
            self.log.record("candidate", cand.group, before=cand.current_scope, after=cand.target_scope)
            if not cand.needs_change:
                finish(cand, CandidateStatus.NOT_APPLICABLE, f"Already {cand.current_scope.value}")
            else:
                active.append(cand)

        # ConflictsDetected
        conflicts, failures = await self.gather_conflicts(active)
        for cand in list(active):
            if cand.group.id in failures:
                finish(cand, CandidateStatus.FAILED, f"Relationship lookup failed: {failures[cand.group.id]}")
                active.remove(cand)
        outcome.conflicts = conflicts
        for c in conflicts:
            self.log.record("conflict", c.subject_group, detail=c.reason, **{
                "conflicting_group": c.conflicting_group.display_name,
                "conflicting_group_id": c.conflicting_group.id,
                "relation": c.relation.value,
            })

        # UserDecision
        resolution = None
        if conflicts:
            try:
                resolution = decide(conflicts)
            except UserAbort:
                resolution = Resolution.ABORT
                outcome.user_aborted = True
            self.log.record("resolution", detail=resolution.value, conflict_count=len(conflicts))
        outcome.resolution = resolution
        plan = plan_resolution(active, conflicts, resolution)

        if plan.aborted:
            return self._abort(outcome, active, results, candidates, finish,
                               f"Aborted: {len(conflicts)} scope conflict(s)")

        for cand in plan.skip:
            detail = plan.skip_details.get(cand.group.id)
            if detail is None:
                reasons = "; ".join(c.reason for c in conflicts if c.subject_group.id == cand.group.id)
                detail = f"Conflict: {reasons}"
            finish(cand, CandidateStatus.SKIPPED, detail)

        if not self.commit:
            for dep, target in plan.dependencies:
                self.log.record("dependency_whatif", dep, before=dep.scope, after=target, status="WhatIf")
            for cand in plan.convert:
                finish(cand, CandidateStatus.SKIPPED,
                       f"WhatIf: would convert {cand.current_scope.value} -> {cand.target_scope.value}")
            outcome.outcomes = [results[c.group.id] for c in candidates]
            return outcome

        if confirm is not None and plan.convert and not confirm(plan):
            outcome.user_aborted = True
            return self._abort(outcome, plan.convert, results, candidates, finish, "Aborted by operator")

        # Resolved
        if plan.dependencies:
            try:
                await self._resolve_dependencies(plan, outcome)
                await self._revalidate(plan)
            except (ProviderError, ConflictError) as e:
                return self._abort(outcome, plan.convert, results, candidates, finish,
                                   f"Dependency resolution failed, no batch candidate was converted: {e}")

        # Committed
        for cand in plan.commit_order():
            blocked = [
                results[b] for b in sorted(plan.blockers.get(cand.group.id, ()))
                if b in results and results[b].status is not CandidateStatus.CONVERTED
            ]
            if blocked:
                status = (CandidateStatus.FAILED
                          if any(o.status is CandidateStatus.FAILED for o in blocked)
                          else CandidateStatus.SKIPPED)
                names = ", ".join(f"'{o.candidate.group.display_name}'" for o in blocked)
                finish(cand, status, f"Not converted because {names} was not converted")
                continue
            try:
                await self.provider.set_group_scope(cand.group.id, cand.target_scope)
            except ProviderError as e:
                finish(cand, CandidateStatus.FAILED, str(e))
                continue
            finish(cand, CandidateStatus.CONVERTED, "", after=cand.target_scope)

        outcome.outcomes = [results[c.group.id] for c in candidates]
        return outcome

    async def _resolve_dependencies(self, plan: ResolutionPlan, outcome: GateOutcome):
        for dep, target in plan.dependencies:
            try:
                await self.provider.set_group_scope(dep.id, target)
            except ProviderError as e:
                self.log.record("dependency_convert", dep, before=dep.scope, after=target,
                                status=CandidateStatus.FAILED.value, detail=str(e))
                raise ProviderError(f"'{dep.display_name}' -> {target.value}: {e}") from e
            self.log.record("dependency_convert", dep, before=dep.scope, after=target,
                            status=CandidateStatus.CONVERTED.value)
            outcome.dependencies_converted.append(dep)

    async def _revalidate(self, plan: ResolutionPlan):
        """
        Re-check live state; dependency changes can have side effects.
        Conflicts with batch candidates that are committed first are expected.
        """
        conflicts, failures = await self.gather_conflicts(plan.convert)
        if failures:
            raise ProviderError(f"re-validation lookups failed for {len(failures)} group(s)")
        conflicts = [
            c for c in conflicts
            if c.conflicting_group.id not in plan.blockers.get(c.subject_group.id, ())
        ]
        if conflicts:
            for c in conflicts:
                self.log.record("conflict_remaining", c.subject_group, detail=c.reason)
            raise ConflictError(conflicts)

    def _abort(self, outcome, pending, results, candidates, finish, detail) -> GateOutcome:
        logger.warning(detail)
        for cand in pending:
            if cand.group.id not in results:
                finish(cand, CandidateStatus.SKIPPED, detail)
        self.log.record("abort", detail=detail)
        outcome.aborted = True
        outcome.outcomes = [results[c.group.id] for c in candidates]
        return outcome
