"""
Run-level exceptions shared by the CLI and the tasks.
Per-item failures live next to the code that raises them
(ProviderError, GraphAPIError, SafetyViolation, ConflictError).
"""

from __future__ import annotations


class SetupError(Exception):
    """Fatal pre-flight failure: bad input file, missing column, no connection."""
    pass


class UserAbort(Exception):
    """Raised when the operator declines a confirmation or chooses Abort."""
    pass
