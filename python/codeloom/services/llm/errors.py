"""Model transport failures.

Every adapter or network failure reaches the generation boundary as an
LLMError carrying an LLMErrorClass. Only E_LLM_RATE_LIMIT (HTTP 429 or a
RESOURCE_EXHAUSTED body) is retried; the dispatcher gives up on it with
RateLimitExhaustedError after its retry limit. Each class has one
user-facing message, shown as the error-flagged model message.
"""

from enum import Enum


class LLMErrorClass(str, Enum):
    """Normalized LLM error classifications."""

    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"


RETRYABLE_ERROR_CLASSES = frozenset({LLMErrorClass.RATE_LIMIT})

RATE_LIMIT_EXHAUSTED_MESSAGE = "Rate limit reached. Please wait a minute and try again."

ERROR_CLASS_TO_MESSAGE: dict[LLMErrorClass, str] = {
    LLMErrorClass.INVALID_KEY: (
        "The model service rejected our credentials. Please try again later."
    ),
    LLMErrorClass.RATE_LIMIT: RATE_LIMIT_EXHAUSTED_MESSAGE,
    LLMErrorClass.CONTEXT_TOO_LARGE: "The conversation is too long for the model. "
    "Start a new session or shorten the request.",
    LLMErrorClass.TIMEOUT: "The model took too long to respond. Please try again.",
    LLMErrorClass.PROVIDER_DOWN: "Communication error with the server. Please try again.",
    LLMErrorClass.MODEL_NOT_AVAILABLE: "The selected model is not available.",
}


class LLMError(Exception):
    """Exception for transport-level failures.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        status_code: Provider HTTP status (if any)
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        status_code: int | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.error_class in RETRYABLE_ERROR_CLASSES

    @property
    def user_message(self) -> str:
        """Message suitable for an error-flagged conversation message."""
        return ERROR_CLASS_TO_MESSAGE.get(
            self.error_class, ERROR_CLASS_TO_MESSAGE[LLMErrorClass.PROVIDER_DOWN]
        )


class RateLimitExhaustedError(LLMError):
    """Rate-limited on every attempt; surfaced as "try again later"."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(LLMErrorClass.RATE_LIMIT, RATE_LIMIT_EXHAUSTED_MESSAGE, status_code=429)

    @property
    def user_message(self) -> str:
        return RATE_LIMIT_EXHAUSTED_MESSAGE


# Checked in order; the first matching rule wins. Each rule is
# (status codes, lowercase body markers, class); either side may be empty.
_CLASSIFICATION_RULES: tuple[tuple[frozenset[int], tuple[str, ...], LLMErrorClass], ...] = (
    (frozenset(), ("api_key_invalid",), LLMErrorClass.INVALID_KEY),
    (frozenset({401, 403}), (), LLMErrorClass.INVALID_KEY),
    (frozenset({429}), ("resource_exhausted",), LLMErrorClass.RATE_LIMIT),
    (frozenset(), ("exceeds the maximum",), LLMErrorClass.CONTEXT_TOO_LARGE),
    (frozenset({404}), ("model not found",), LLMErrorClass.MODEL_NOT_AVAILABLE),
)


def classify_provider_error(status_code: int | None, json_body: dict | None) -> LLMErrorClass:
    """Map a Gemini HTTP failure onto an LLMErrorClass.

    Unrecognised failures, 5xx included, are PROVIDER_DOWN.
    """
    body = str(json_body).lower() if json_body else ""
    for statuses, markers, error_class in _CLASSIFICATION_RULES:
        if status_code in statuses or any(marker in body for marker in markers):
            return error_class
    return LLMErrorClass.PROVIDER_DOWN
