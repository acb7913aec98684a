"""Transport adapter interface.

An adapter turns a GenerationRequest into one provider call and nothing
more. Retry, backoff, cancellation and error classification belong to the
Dispatcher; adapters let httpx errors escape untouched. The httpx client is
owned by the app lifespan and passed in.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from codeloom.services.llm.types import GenerationRequest, LLMChunk, LLMResponse


class LLMAdapter(ABC):
    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    @abstractmethod
    async def generate(
        self,
        req: GenerationRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        """Single-shot call returning the whole answer.

        Raises:
            httpx.HTTPStatusError: Non-2xx provider response.
            httpx.TimeoutException / httpx.TransportError: Network failure.
        """

    @abstractmethod
    def generate_stream(
        self,
        req: GenerationRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        """Streamed call: text chunks, then one done chunk.

        Implementations are async generators. Besides the httpx errors of
        generate, a stream cut off before its terminal marker raises
        LLMError(E_LLM_PROVIDER_DOWN).
        """
