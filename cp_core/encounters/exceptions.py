# cp_core/encounters/exceptions.py
"""
Workflow error taxonomy.

Services raise these; the API layer maps them onto the error envelope using
`http_status` and `code`. Manual transitions also surface them as structured
`TransitionOutcome` failures.
"""
from __future__ import annotations


class WorkflowError(Exception):
    code = "workflow_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload


class Unauthenticated(WorkflowError):
    code = "unauthenticated"
    http_status = 401


class Forbidden(WorkflowError):
    code = "forbidden"
    http_status = 403


class InvalidTransition(WorkflowError):
    code = "invalid_transition"
    http_status = 409


class NotFound(WorkflowError):
    code = "not_found"
    http_status = 404


class ConcurrentModification(WorkflowError):
    code = "concurrent_modification"
    http_status = 409
    retryable = True
