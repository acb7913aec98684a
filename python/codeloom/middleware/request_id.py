"""Request correlation middleware.

Each request gets one request id: the caller's X-Request-ID when it is
acceptable, a fresh uuid4 otherwise. The id is bound into the logging
context together with the viewer and route, stored on request.state, and
echoed on the response (streaming responses included, since headers go out
before the body).

Register it last so it wraps everything else.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from codeloom.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
USER_ID_HEADER = "X-User-Id"
MAX_REQUEST_ID_LENGTH = 128

_TOKEN = re.compile(r"[A-Za-z0-9._-]+")
_UUID = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    """Accept non-empty ids of at most 128 bytes made of [A-Za-z0-9._-]."""
    if not value or len(value.encode("utf-8")) > MAX_REQUEST_ID_LENGTH:
        return False
    return _TOKEN.fullmatch(value) is not None


def normalize_request_id(value: str) -> str:
    """Lowercase UUIDs so the same id always logs the same way."""
    return value.lower() if _UUID.fullmatch(value) else value


def resolve_request_id(incoming: str | None) -> str:
    if incoming and is_valid_request_id(incoming):
        return normalize_request_id(incoming)
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign request ids and write one access log line per request."""

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(
            request_id,
            user_id=request.headers.get(USER_ID_HEADER) or None,
            path=request.url.path,
            method=request.method,
        )

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request.failed")
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                logger.info(
                    "request.completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        finally:
            clear_request_context()
