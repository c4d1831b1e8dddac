"""
Domain errors raised by the service layer.

Services never translate these into HTTP responses themselves; ``main.py``
registers a handler that maps each class to a status code and renders the
same ``{"error": {...}}`` payload as the other exception handlers.
"""

from typing import Any, Dict, List, Optional


class LoanChannelError(Exception):
    """Base class for every error the services raise on purpose."""

    code: str = "loan_channel_error"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LoanChannelError, ValueError):
    """Malformed input. Raised before any write happens."""

    code = "validation_error"
    status_code = 400


class InvalidStatusError(ValidationError):
    code = "invalid_status"


class InvalidTransitionError(ValidationError):
    code = "invalid_transition"


class NotFoundError(LoanChannelError, LookupError):
    """Referenced record is missing or not owned by the caller."""

    code = "not_found"
    status_code = 404


class ConflictError(LoanChannelError):
    code = "conflict"
    status_code = 409


class NoAssigneesError(LoanChannelError):
    """A cascade found nobody to distribute to at its first tier."""

    code = "no_assignees"
    status_code = 404


class PartialCascadeFailure(LoanChannelError, RuntimeError):
    """A tiered target write failed after some tiers were committed.

    ``completed_tiers`` lists the tiers whose writes all succeeded,
    ``failed_tier`` the tier that was being written and ``written`` every
    Target row persisted before the failure. Nothing is rolled back.
    """

    code = "partial_cascade_failure"
    status_code = 500

    def __init__(self, message: str, completed_tiers: List[str], failed_tier: str, written: List[Any]):
        super().__init__(
            message,
            details={
                "completed_tiers": list(completed_tiers),
                "failed_tier": failed_tier,
                "written": len(written),
            },
        )
        self.completed_tiers = list(completed_tiers)
        self.failed_tier = failed_tier
        self.written = list(written)
