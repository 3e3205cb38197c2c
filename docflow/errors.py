"""Error taxonomy for the workflow engine.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with. ``retryable`` tells the caller whether repeating the same
request can succeed (storage hiccups, lost races) or whether the request
itself has to change.
"""

from typing import Any, Optional


class WorkflowError(Exception):
    """Base workflow error with an HTTP status code."""

    code = "workflow_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, meta: Optional[dict[str, Any]] = None):
        self.message = message
        self.meta = meta or {}
        super().__init__(message)


class ValidationError(WorkflowError):
    code = "validation_error"
    status_code = 422


class NotFoundError(WorkflowError):
    code = "not_found"
    status_code = 404


class IllegalTransitionError(WorkflowError):
    code = "illegal_transition"
    status_code = 409

    def __init__(self, from_status: str, action: str, message: Optional[str] = None):
        super().__init__(
            message or f"Illegal transition: cannot '{action}' a document in '{from_status}' status",
            meta={"from": from_status, "action": action},
        )
        self.from_status = from_status
        self.action = action


class IllegalStateError(IllegalTransitionError):
    """A store operation was attempted while the document is in the wrong status."""

    code = "illegal_state"


class ForbiddenError(WorkflowError):
    code = "forbidden"
    status_code = 403


class ConflictError(WorkflowError):
    code = "conflict"
    status_code = 409
    retryable = True


class StorageError(WorkflowError):
    code = "storage_error"
    status_code = 503
    retryable = True
