"""Errors that end an HTTP request.

An ApiError raised anywhere below a route becomes the JSON error envelope
with the status mapped from its code. Model transport failures are not
ApiErrors: they live in codeloom.services.llm.errors and surface inside the
conversation as an error-flagged model message.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_FORBIDDEN = "E_FORBIDDEN"
    E_NOT_FOUND = "E_NOT_FOUND"
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_SESSION_BUSY = "E_SESSION_BUSY"
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_ATTACHMENT_UNREADABLE = "E_ATTACHMENT_UNREADABLE"
    E_ATTACHMENT_TOO_LARGE = "E_ATTACHMENT_TOO_LARGE"
    E_PROMPT_TOO_LARGE = "E_PROMPT_TOO_LARGE"
    E_QUOTA_EXCEEDED = "E_QUOTA_EXCEEDED"
    E_INTERNAL = "E_INTERNAL"


_CODES_BY_STATUS: dict[int, tuple[ApiErrorCode, ...]] = {
    400: (
        ApiErrorCode.E_INVALID_REQUEST,
        ApiErrorCode.E_ATTACHMENT_UNREADABLE,
        ApiErrorCode.E_ATTACHMENT_TOO_LARGE,
        ApiErrorCode.E_PROMPT_TOO_LARGE,
    ),
    401: (ApiErrorCode.E_UNAUTHENTICATED,),
    403: (ApiErrorCode.E_FORBIDDEN,),
    404: (ApiErrorCode.E_NOT_FOUND, ApiErrorCode.E_SESSION_NOT_FOUND),
    409: (ApiErrorCode.E_SESSION_BUSY,),
    429: (ApiErrorCode.E_QUOTA_EXCEEDED,),
    500: (ApiErrorCode.E_INTERNAL,),
}

ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    code: status for status, codes in _CODES_BY_STATUS.items() for code in codes
}


class ApiError(Exception):
    """A request failure with a stable code; status_code follows from the code."""

    def __init__(self, code: ApiErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)

    def extra_fields(self) -> dict:
        """Fields added to the error envelope next to code and message."""
        return {}


class NotFoundError(ApiError):
    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_SESSION_NOT_FOUND, message: str = "Not found"
    ):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class SessionBusyError(ApiError):
    """A generation is already in flight for the session."""

    def __init__(self, message: str = "A generation is already in progress for this session"):
        super().__init__(ApiErrorCode.E_SESSION_BUSY, message)


class QuotaExceededError(ApiError):
    """The viewer used up today's requests. Nothing was consumed or dispatched."""

    upgrade_prompt = "Upgrade to Premium for unlimited requests."

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(
            ApiErrorCode.E_QUOTA_EXCEEDED,
            f"You have reached the daily request limit ({limit}). {self.upgrade_prompt}",
        )

    def extra_fields(self) -> dict:
        return {"limit": self.limit, "upgrade_prompt": self.upgrade_prompt}
