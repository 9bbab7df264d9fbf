from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    MethodNotAllowed,
    NotAcceptable,
    NotFound,
    ParseError,
    UnsupportedMediaType,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    NotAcceptable: "not_acceptable",
    UnsupportedMediaType: "unsupported_media_type",
    ParseError: "parse_error",
}


class ErpError(Exception):
    """Base class for recoverable billing engine failures."""

    code = "erp_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request failed."

    def __init__(self, message: str | None = None, errors: Any = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class NotFoundError(ErpError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Record was not found."


class InvalidAmountError(ErpError):
    code = "invalid_amount"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Payment amount must be greater than zero."


class ExceedsBalanceError(ErpError):
    code = "exceeds_balance"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Payment amount cannot be greater than the remaining balance."


class NegativeTotalError(ErpError):
    code = "negative_total"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Total cannot be negative."


class InvalidTransitionError(ErpError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Status transition is not allowed."


class CorruptPersistedStateError(ErpError):
    code = "corrupt_persisted_state"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Persisted state could not be decoded."

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message, errors={"key": key})


def build_error_envelope(
    *,
    code: str,
    message: str,
    errors: Any,
    status_code: int,
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(
            code=code,
            message=message,
            errors=errors,
            status_code=status_code,
        ),
        status=status_code,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    if isinstance(exc, ErpError):
        logger.info("erp_error code=%s message=%s", exc.code, exc.message)
        return error_response(
            code=exc.code,
            message=exc.message,
            errors=exc.errors,
            status_code=exc.status_code,
        )

    response = drf_exception_handler(exc, context)

    if response is None:
        view_name = context.get("view").__class__.__name__ if context.get("view") else "unknown"
        logger.exception("Unhandled API exception in %s", view_name)
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            errors=None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    status_code = response.status_code
    errors = _normalize_errors(response.data)
    message = _build_message(exc, response.data)
    code = _build_code(exc)

    response.data = build_error_envelope(
        code=code,
        message=message,
        errors=errors,
        status_code=status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    for exception_type, stable_code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return stable_code

    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))

    return "internal_server_error"


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = None
    if isinstance(data, Mapping):
        detail = data.get("detail")
    elif isinstance(data, str):
        detail = data

    if detail:
        return str(detail)

    if isinstance(exc, APIException):
        return str(getattr(exc, "detail", "Request failed."))

    return GENERIC_SERVER_ERROR_MESSAGE


def _normalize_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        if set(data.keys()) == {"detail"}:
            return None
        return data

    if isinstance(data, Sequence) and not isinstance(data, str):
        return data

    return None
