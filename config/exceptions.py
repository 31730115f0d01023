from __future__ import annotations

import logging
import uuid
from typing import Any

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotAuthenticated, PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from patients.services.errors import (
    PatientConflictError,
    PatientNotFoundError,
    PatientServiceError,
    PatientValidationError,
)

logger = logging.getLogger(__name__)


SERVICE_ERROR_STATUS = {
    PatientValidationError: status.HTTP_400_BAD_REQUEST,
    PatientNotFoundError: status.HTTP_404_NOT_FOUND,
    PatientConflictError: status.HTTP_409_CONFLICT,
}


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    """
    Canonical error envelope: machine-readable code plus a human-readable message.
    """
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": ensure_request_id(request),
        },
    }


def _code_for(exc: Exception, http_status: int) -> str:
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


def _message_for(data: Any) -> str:
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    if isinstance(data, list) and data:
        return str(data[0])
    return "Request could not be processed."


def _service_error_response(exc: PatientServiceError, request) -> Response:
    http_status = status.HTTP_400_BAD_REQUEST
    for cls, mapped in SERVICE_ERROR_STATUS.items():
        if isinstance(exc, cls):
            http_status = mapped
            break
    details = exc.errors if isinstance(exc, PatientValidationError) else None
    return Response(
        build_error_envelope(request=request, code=exc.code, message=str(exc), details=details),
        status=http_status,
    )


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")

    if isinstance(exc, PatientServiceError):
        return _service_error_response(exc, request)

    response = drf_exception_handler(exc, context)

    # Truly unhandled error
    if response is None:
        logger.exception("Unhandled API error (request_id=%s)", ensure_request_id(request))
        return Response(
            build_error_envelope(
                request=request,
                code="server_error",
                message="Unexpected server error.",
            ),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    data = response.data
    code = _code_for(exc, response.status_code)
    details = data if isinstance(exc, ValidationError) else None
    message = "Invalid input." if isinstance(exc, ValidationError) else _message_for(data)

    response.data = build_error_envelope(request=request, code=code, message=message, details=details)
    return response
