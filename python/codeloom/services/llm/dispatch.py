"""Dispatch/retry layer between the generation engine and the model adapter.

- Single-shot (generate) or streaming (generate_stream), selected by the caller
- Normalizes every transport failure into LLMError (one place, not per adapter)
- Retries rate-limited attempts with exponential backoff: retry n waits
  base_delay_ms * 2^n (4000, 8000, 16000 ms with the defaults), then raises
  RateLimitExhaustedError
- Everything else is fatal and propagates immediately
- Checks the CancellationToken before every attempt and before every delta;
  cancellation ends the call silently (None / end of iteration), never an error
- A failure after the first delta of an attempt is fatal for that attempt,
  even when it is rate-limit shaped: partial output is never replayed

Observability:
- llm.request.started / llm.request.finished / llm.request.failed per attempt
- llm.retry.scheduled / llm.retry.exhausted / llm.request.cancelled
- All events use safe_kv(); prompts and output text are never logged
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx

from codeloom.logging import get_logger
from codeloom.services.cancellation import CancellationToken
from codeloom.services.llm.adapter import LLMAdapter
from codeloom.services.llm.errors import (
    LLMError,
    LLMErrorClass,
    RateLimitExhaustedError,
    classify_provider_error,
)
from codeloom.services.llm.types import GenerationRequest, LLMUsage, RetryState
from codeloom.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 120
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 2000

EMPTY_RESPONSE_TEXT = "Sorry, I couldn't generate a response."

SleepFn = Callable[[float], Awaitable[None]]


def _safe_parse_json(response: httpx.Response) -> dict | None:
    """Safely parse JSON from response, returning None on failure."""
    try:
        return response.json()
    except Exception:
        return None


def normalize_transport_error(exc: Exception) -> LLMError:
    """Convert any adapter exception into an LLMError."""
    if isinstance(exc, LLMError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        return LLMError(LLMErrorClass.TIMEOUT, "Request timed out")

    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        json_body = _safe_parse_json(exc.response)
        return LLMError(
            classify_provider_error(status_code, json_body),
            f"Provider returned HTTP {status_code}",
            status_code=status_code,
        )

    if isinstance(exc, httpx.TransportError):
        return LLMError(LLMErrorClass.PROVIDER_DOWN, f"Transport error: {type(exc).__name__}")

    return LLMError(LLMErrorClass.PROVIDER_DOWN, f"Unexpected error: {type(exc).__name__}")


class Dispatcher:
    """Sends generation requests with retry, backoff and cancellation.

    Owns no global state: the adapter (and its HTTP client) and API key are
    injected by whoever owns the process/session context.
    """

    def __init__(
        self,
        adapter: LLMAdapter,
        *,
        api_key: str,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        sleep: SleepFn = asyncio.sleep,
    ):
        """Initialize dispatcher.

        Args:
            adapter: Provider adapter that performs the HTTP calls.
            api_key: Provider API key.
            timeout_s: Per-attempt request timeout in seconds.
            max_retries: Retries after rate-limited attempts (attempts = retries + 1).
            base_delay_ms: Base of the exponential backoff.
            sleep: Awaitable sleep, injectable so tests can record delays.
        """
        self._adapter = adapter
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._sleep = sleep

    def new_retry_state(self) -> RetryState:
        return RetryState(max_retries=self._max_retries, base_delay_ms=self._base_delay_ms)

    async def generate(self, req: GenerationRequest, token: CancellationToken) -> str | None:
        """Single-shot generation.

        Returns:
            The complete response text (EMPTY_RESPONSE_TEXT if the model returned
            nothing), or None when the token was aborted.

        Raises:
            RateLimitExhaustedError: Rate-limited on every attempt.
            LLMError: Any other provider/transport failure.
        """
        retry = self.new_retry_state()

        while True:
            if token.aborted:
                self._log_cancelled(req, retry, streaming=False)
                return None

            retry.attempts += 1
            base = self._log_fields(req, retry, streaming=False)
            logger.info("llm.request.started", **safe_kv(**base, prompt_chars=req.text_chars))
            start = time.monotonic()

            try:
                response = await self._adapter.generate(
                    req, api_key=self._api_key, timeout_s=self._timeout_s
                )
            except Exception as exc:
                error = normalize_transport_error(exc)
                self._log_failed(base, error, start)
                if token.aborted:
                    self._log_cancelled(req, retry, streaming=False)
                    return None
                if not error.retryable:
                    raise error from exc
                await self._backoff(retry, token, error)
                continue

            self._log_finished(base, start, len(response.text), response.usage)
            return response.text or EMPTY_RESPONSE_TEXT

    async def generate_stream(
        self, req: GenerationRequest, token: CancellationToken
    ) -> AsyncIterator[str]:
        """Streaming generation yielding text deltas in order.

        Terminates silently when the token is aborted (before an attempt or
        between deltas). Retries only attempts that failed before yielding output.

        Raises:
            RateLimitExhaustedError: Rate-limited on every attempt.
            LLMError: Any other failure, or any failure after partial output.
        """
        retry = self.new_retry_state()

        while True:
            if token.aborted:
                self._log_cancelled(req, retry, streaming=True)
                return

            retry.attempts += 1
            base = self._log_fields(req, retry, streaming=True)
            logger.info("llm.request.started", **safe_kv(**base, prompt_chars=req.text_chars))
            start = time.monotonic()

            output_chars = 0
            stream = self._adapter.generate_stream(
                req, api_key=self._api_key, timeout_s=self._timeout_s
            )
            try:
                async for chunk in stream:
                    if token.aborted:
                        self._log_cancelled(req, retry, streaming=True)
                        return
                    if chunk.done:
                        self._log_finished(base, start, output_chars, chunk.usage)
                        return
                    if chunk.delta_text:
                        output_chars += len(chunk.delta_text)
                        yield chunk.delta_text
                return
            except Exception as exc:
                error = normalize_transport_error(exc)
                self._log_failed(base, error, start, output_chars=output_chars)
                if token.aborted:
                    self._log_cancelled(req, retry, streaming=True)
                    return
                if output_chars or not error.retryable:
                    raise error from exc
                await self._backoff(retry, token, error)
            finally:
                await stream.aclose()

    async def _backoff(
        self, retry: RetryState, token: CancellationToken, error: LLMError
    ) -> None:
        """Wait before the next attempt, or raise when retries are exhausted."""
        if retry.exhausted:
            logger.warning(
                "llm.retry.exhausted",
                **safe_kv(attempts=retry.attempts, error_class=error.error_class.value),
            )
            raise RateLimitExhaustedError(retry.attempts) from error

        delay_ms = retry.next_delay_ms()
        retry.delays_ms.append(delay_ms)
        logger.warning(
            "llm.retry.scheduled",
            **safe_kv(
                attempt=retry.attempts,
                retry=retry.retries_used,
                max_retries=retry.max_retries,
                delay_ms=delay_ms,
            ),
        )
        await self._interruptible_sleep(delay_ms / 1000, token)

    async def _interruptible_sleep(self, delay_s: float, token: CancellationToken) -> None:
        """Sleep for delay_s, returning early if the token is aborted."""
        if token.aborted:
            return
        sleeper = asyncio.ensure_future(self._sleep(delay_s))
        waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()

    def _log_fields(self, req: GenerationRequest, retry: RetryState, streaming: bool) -> dict:
        return {
            "model_name": req.model_name,
            "mode": req.mode.value,
            "streaming": streaming,
            "attempt": retry.attempts,
            "attachment_count": req.attachment_count,
        }

    def _log_finished(
        self, base: dict, start: float, output_chars: int, usage: LLMUsage | None
    ) -> None:
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=int((time.monotonic() - start) * 1000),
                output_chars=output_chars,
                tokens_input=usage.prompt_tokens if usage else None,
                tokens_output=usage.completion_tokens if usage else None,
                tokens_total=usage.total_tokens if usage else None,
            ),
        )

    def _log_failed(
        self, base: dict, error: LLMError, start: float, output_chars: int = 0
    ) -> None:
        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                status_code=error.status_code,
                latency_ms=int((time.monotonic() - start) * 1000),
                output_chars=output_chars,
            ),
        )

    def _log_cancelled(self, req: GenerationRequest, retry: RetryState, streaming: bool) -> None:
        logger.info(
            "llm.request.cancelled",
            **safe_kv(model_name=req.model_name, streaming=streaming, attempt=retry.attempts),
        )
