# cp_core/common/api/exceptions.py

from __future__ import annotations

import logging
import uuid
from typing import Any

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotAuthenticated, PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    Safe to call from middleware and DRF exception handler.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    """
    Canonical error envelope.
    Reusable from Django middleware (JsonResponse) and DRF (Response).
    """
    rid = ensure_request_id(request)
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": rid,
        }
    }


class DomainAPIException(APIException):
    """
    Carries a service-layer error (status + machine code + message) into the envelope.
    """

    def __init__(self, *, status_code: int, error_code: str, message: str, details: dict[str, Any] | None = None):
        self.status_code = status_code
        self.error_code = error_code
        payload: dict[str, Any] = {"detail": message}
        if details:
            payload.update({k: (v if isinstance(v, (list, dict)) else str(v)) for k, v in details.items() if v is not None})
        super().__init__(detail=payload, code=error_code)

    @classmethod
    def from_error(cls, exc: Exception) -> "DomainAPIException":
        """Wrap a service error exposing `http_status`, `code`, `message` and `details`."""
        details = dict(getattr(exc, "details", None) or {})
        if getattr(exc, "retryable", False):
            details["retryable"] = "true"
        return cls(
            status_code=exc.http_status,
            error_code=exc.code,
            message=getattr(exc, "message", str(exc)),
            details=details,
        )


def _code_for(exc: Exception, http_status: int) -> str:
    explicit = getattr(exc, "error_code", None)
    if explicit:
        return explicit
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, NotAuthenticated):
        return "not_authenticated"
    if isinstance(exc, PermissionDenied):
        return "permission_denied"
    if isinstance(exc, Http404):
        return "not_found"
    if isinstance(exc, APIException):
        return getattr(exc, "default_code", "api_error") or "api_error"
    if http_status >= 500:
        return "server_error"
    return "error"


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")

    # service-layer errors carry their own status and machine code
    if not isinstance(exc, APIException) and hasattr(exc, "http_status") and hasattr(exc, "code"):
        exc = DomainAPIException.from_error(exc)

    response = drf_exception_handler(exc, context)

    # Truly unhandled error
    if response is None:
        logger.exception(
            "Unhandled API error",
            exc_info=exc,
            extra={"request_id": ensure_request_id(request)},
        )
        return Response(
            build_error_envelope(
                request=request,
                code="server_error",
                message="Unexpected server error.",
                details=None,
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    http_status = response.status_code
    code = _code_for(exc, http_status)

    # DRF standardizes errors into response.data
    data = response.data

    # Message + details rules:
    # 1) {"detail": "..."} only -> message=detail, details=None
    # 2) {"detail": "...", ...} -> message=detail, details={...without detail}
    # 3) Otherwise -> message="Request failed.", details=data
    message = "Request failed."
    details = data

    if isinstance(data, dict) and "detail" in data:
        message = str(data.get("detail"))
        rest = {k: (str(v) if not isinstance(v, (list, dict)) else v) for k, v in data.items() if k != "detail"}
        details = rest or None

    return Response(
        build_error_envelope(
            request=request,
            code=code,
            message=message,
            details=details,
        ),
        status=http_status,
        headers=response.headers,
    )
