"""JSON envelopes and the exception handlers that produce them.

    success: {"data": ...}
    failure: {"error": {"code": "E_...", "message": "...", "request_id": "...", ...}}

Errors may add fields to the envelope through ApiError.extra_fields (the quota
rejection carries its limit and upgrade prompt that way).
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from codeloom.errors import ApiError, ApiErrorCode
from codeloom.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Framework-raised HTTPExceptions (unknown route, wrong method, ...)
_HTTP_STATUS_CODES: dict[int, ApiErrorCode] = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    409: ApiErrorCode.E_SESSION_BUSY,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode,
    message: str,
    request_id: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build the error envelope.

    The request id defaults to the one bound by RequestIDMiddleware and is
    omitted when there is none.
    """
    error: dict[str, Any] = {"code": code.value, "message": message, **extra}
    request_id = request_id or get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _json_error(status_code: int, code: ApiErrorCode, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message, **extra))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _json_error(exc.status_code, exc.code, exc.message, **exc.extra_fields())


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _json_error(exc.status_code, code, str(exc.detail or "An error occurred"))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with E_INTERNAL. The traceback is logged, never returned."""
    logger.exception("request.unhandled_exception", error_class=type(exc).__name__)
    return _json_error(500, ApiErrorCode.E_INTERNAL, "Internal server error")
