"""Model layer: request building, transport adapter and dispatch.

- Request building (system policy per mode and tier, history/artifact context)
- Gemini adapter over a shared httpx.AsyncClient (single-shot + streaming)
- Error classification and normalization
- Dispatch with rate-limit retry, backoff and cooperative cancellation

Usage:
    from codeloom.services.llm import Dispatcher, GeminiAdapter, RequestBuilder

    builder = RequestBuilder("gemini-2.5-flash")
    dispatcher = Dispatcher(GeminiAdapter(httpx_client), api_key="...")
    request = await builder.build("Add a navbar", mode=ChatMode.CREATOR, artifact=code)
    async for delta in dispatcher.generate_stream(request, token):
        ...

Rules:
- Adapters never retry and never log request/response bodies
- Raw provider errors bubble up to the dispatcher for classification
"""

from codeloom.services.llm.adapter import LLMAdapter
from codeloom.services.llm.dispatch import EMPTY_RESPONSE_TEXT, Dispatcher
from codeloom.services.llm.errors import (
    LLMError,
    LLMErrorClass,
    RateLimitExhaustedError,
    classify_provider_error,
)
from codeloom.services.llm.gemini_adapter import GeminiAdapter
from codeloom.services.llm.prompt import (
    BASE_SYSTEM_PROMPT,
    DEFAULT_TIER_POLICIES,
    REFUSAL_PHRASE,
    PolicyFragment,
    PromptTooLargeError,
    RequestBuilder,
    sponsor_policy,
    validate_prompt_size,
)
from codeloom.services.llm.types import (
    GenerationRequest,
    InlineDataPart,
    LLMChunk,
    LLMResponse,
    LLMUsage,
    RetryState,
    TextPart,
)

__all__ = [
    "BASE_SYSTEM_PROMPT",
    "DEFAULT_TIER_POLICIES",
    "Dispatcher",
    "EMPTY_RESPONSE_TEXT",
    "GeminiAdapter",
    "GenerationRequest",
    "InlineDataPart",
    "LLMAdapter",
    "LLMChunk",
    "LLMError",
    "LLMErrorClass",
    "LLMResponse",
    "LLMUsage",
    "PolicyFragment",
    "PromptTooLargeError",
    "REFUSAL_PHRASE",
    "RateLimitExhaustedError",
    "RequestBuilder",
    "RetryState",
    "TextPart",
    "classify_provider_error",
    "sponsor_policy",
    "validate_prompt_size",
]
