from .action_log import ActionLog
from .gate import (
    CandidateStatus,
    ConflictError,
    ConflictGate,
    GateOutcome,
    Resolution,
    ResolutionPlan,
    ScopeCandidate,
    find_conflicts,
    plan_resolution,
    related_groups,
)

__all__ = [
    "ActionLog",
    "CandidateStatus",
    "ConflictError",
    "ConflictGate",
    "GateOutcome",
    "Resolution",
    "ResolutionPlan",
    "ScopeCandidate",
    "find_conflicts",
    "plan_resolution",
    "related_groups",
]
