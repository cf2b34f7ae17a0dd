"""Error taxonomy for the session engines and the reward ledger.

Every error carries a stable machine-readable ``code`` plus a human-readable
message, so the HTTP adapter can surface both unchanged.
"""

from typing import Any, Optional


class EngineError(Exception):
    code = "engine_error"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self), "details": self.details}


class InvalidRequest(EngineError):
    code = "invalid_request"


class InvalidTransition(EngineError):
    code = "invalid_transition"


class NoMoreSteps(InvalidTransition):
    code = "no_more_steps"


class ConflictingActiveSession(EngineError):
    code = "conflicting_active_session"


class SessionNotFound(EngineError):
    code = "session_not_found"


class StepIndexOutOfRange(EngineError):
    code = "step_index_out_of_range"


class StoreConflict(EngineError):
    """Compare-and-set lost to a concurrent writer. Retriable."""

    code = "store_conflict"


class TransientFailure(EngineError):
    """Retries exhausted; the client may safely retry the whole operation."""

    code = "transient_failure"


class InsufficientBalance(EngineError):
    code = "insufficient_balance"


class ContentGenerationFailed(EngineError):
    code = "content_generation_failed"


class ItemNotFound(EngineError):
    code = "item_not_found"
