"""Error taxonomy for the marksheet workflow.

Every failure that can happen while moving a marksheet through the approval
pipeline is represented by a subclass of ``WorkflowError``. Each subclass
carries a stable ``code`` so that callers (bulk coordinator, routers, CLI)
can report failures as structured results instead of raw exceptions.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow failures."""

    code: str = "workflow_error"
    retryable: bool = False

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "field": self.field}


class IllegalTransition(WorkflowError):
    """Action is not valid from the current state or for this actor."""

    code = "illegal_transition"


class SignatureMissing(WorkflowError):
    """Approver has no registered signature. User-correctable, not transient."""

    code = "signature_missing"


class ValidationError(WorkflowError):
    """Malformed payload. ``field`` names the offending input."""

    code = "validation_error"


class MarksheetNotFound(WorkflowError):
    code = "not_found"


class DeliveryFailure(WorkflowError):
    """External dispatch channel failed. Safe to retry ``send_dispatch``."""

    code = "delivery_failure"
    retryable = True


class TransientError(WorkflowError):
    """I/O-level failure talking to the store or a remote profile lookup."""

    code = "transient_error"
    retryable = True
