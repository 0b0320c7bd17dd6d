"""
errors.py — Engine error taxonomy.

Every error carries the entity key it concerns (institution, enrollment,
subject, period, ...) so a failure is actionable straight from the API
response or the bulk report, without digging through logs.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for grading-engine errors."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, key: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.key = {k: v for k, v in (key or {}).items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "key": dict(self.key)}

    def __str__(self) -> str:
        if not self.key:
            return self.message
        where = ", ".join(f"{k}={v}" for k, v in self.key.items())
        return f"{self.message} [{where}]"


class InsufficientData(EngineError):
    """No scoreable input: the cell is "not yet graded", never zero."""

    code = "INSUFFICIENT_DATA"


class ConfigInvariantViolation(EngineError):
    """Institution configuration is unusable (e.g. weights not summing to 100)."""

    code = "CONFIG_INVARIANT_VIOLATION"


class OutOfRangeError(EngineError):
    """Score falls outside the grading scale bounds."""

    code = "OUT_OF_RANGE"


class WindowClosedError(EngineError):
    """Recovery submitted outside its configured window."""

    code = "WINDOW_CLOSED"


class ApprovalConflict(EngineError):
    """Suggestion regeneration tried to overwrite an approved field."""

    code = "APPROVAL_CONFLICT"


class NotFoundError(EngineError):
    code = "NOT_FOUND"


class DuplicateError(EngineError):
    code = "DUPLICATE"
