"""Gemini transport.

Endpoints (v1beta):
- {GEMINI_BASE_URL}/{model}:generateContent
- {GEMINI_BASE_URL}/{model}:streamGenerateContent?alt=sse

The key travels in the x-goog-api-key header, never in the query string.

Every request is a single user turn. The rendered conversation text comes
first, attachments follow as inlineData parts, and the system policy goes to
systemInstruction:

    {
      "contents": [{"role": "user", "parts": [
        {"text": "..."},
        {"inlineData": {"mimeType": "image/png", "data": "<base64>"}}
      ]}],
      "systemInstruction": {"parts": [{"text": "..."}]},
      "generationConfig": {"maxOutputTokens": 8192, "temperature": 0.7}
    }

Streamed events are `data: {...}` lines holding the same candidate shape as
the single-shot response. The event whose candidate has a finishReason ends
the answer; usageMetadata may arrive on any event and the last one wins.
"""

import json
from collections.abc import AsyncIterator

import httpx

from codeloom.logging import get_logger
from codeloom.services.llm.adapter import LLMAdapter
from codeloom.services.llm.errors import LLMError, LLMErrorClass
from codeloom.services.llm.types import (
    ContentPart,
    GenerationRequest,
    InlineDataPart,
    LLMChunk,
    LLMResponse,
    LLMUsage,
    TextPart,
)

logger = get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
CONNECT_TIMEOUT_S = 10.0
_SSE_DATA_PREFIX = "data: "


def _wire_part(part: ContentPart) -> dict:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, InlineDataPart):
        return {"inlineData": {"mimeType": part.mime_type, "data": part.data_base64}}
    raise TypeError(f"Unsupported content part: {type(part).__name__}")


def _usage(payload: dict) -> LLMUsage | None:
    metadata = payload.get("usageMetadata")
    if not metadata:
        return None
    return LLMUsage(
        prompt_tokens=metadata.get("promptTokenCount"),
        completion_tokens=metadata.get("candidatesTokenCount"),
        total_tokens=metadata.get("totalTokenCount"),
    )


def _first_candidate(payload: dict) -> dict | None:
    candidates = payload.get("candidates") or []
    return candidates[0] if candidates else None


def _candidate_text(candidate: dict) -> str:
    parts = candidate.get("content", {}).get("parts", [])
    return "".join(part["text"] for part in parts if "text" in part)


async def _sse_payloads(response: httpx.Response) -> AsyncIterator[dict]:
    """Decoded JSON of each `data:` line; other lines and bad JSON are skipped."""
    async for line in response.aiter_lines():
        if not line.startswith(_SSE_DATA_PREFIX):
            continue
        try:
            yield json.loads(line[len(_SSE_DATA_PREFIX) :])
        except json.JSONDecodeError:
            logger.debug("llm.stream.bad_event")


class GeminiAdapter(LLMAdapter):
    """Google Gemini over its public REST API."""

    async def generate(
        self,
        req: GenerationRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> LLMResponse:
        response = await self._client.post(
            f"{GEMINI_BASE_URL}/{req.model_name}:generateContent",
            **self._request_kwargs(req, api_key, timeout_s),
        )
        response.raise_for_status()

        payload = response.json()
        candidate = _first_candidate(payload)
        if candidate is None:
            raise LLMError(LLMErrorClass.PROVIDER_DOWN, "Gemini response missing candidates")
        return LLMResponse(
            text=_candidate_text(candidate),
            usage=_usage(payload),
            finish_reason=candidate.get("finishReason"),
        )

    async def generate_stream(
        self,
        req: GenerationRequest,
        *,
        api_key: str,
        timeout_s: int,
    ) -> AsyncIterator[LLMChunk]:
        async with self._client.stream(
            "POST",
            f"{GEMINI_BASE_URL}/{req.model_name}:streamGenerateContent?alt=sse",
            **self._request_kwargs(req, api_key, timeout_s),
        ) as response:
            if response.is_error:
                # error classification reads the body
                await response.aread()
            response.raise_for_status()

            usage: LLMUsage | None = None
            async for payload in _sse_payloads(response):
                usage = _usage(payload) or usage
                candidate = _first_candidate(payload)
                if candidate is None:
                    continue

                text = _candidate_text(candidate)
                if text:
                    yield LLMChunk(delta_text=text, done=False)

                finish_reason = candidate.get("finishReason")
                if finish_reason:
                    yield LLMChunk(
                        delta_text="", done=True, usage=usage, finish_reason=finish_reason
                    )
                    return

        raise LLMError(LLMErrorClass.PROVIDER_DOWN, "Gemini stream ended without a finish reason")

    def _request_kwargs(self, req: GenerationRequest, api_key: str, timeout_s: int) -> dict:
        return {
            "headers": {"x-goog-api-key": api_key, "Content-Type": "application/json"},
            "json": self.build_body(req),
            "timeout": httpx.Timeout(timeout_s, connect=CONNECT_TIMEOUT_S),
        }

    @staticmethod
    def build_body(req: GenerationRequest) -> dict:
        body: dict = {
            "contents": [{"role": "user", "parts": [_wire_part(part) for part in req.parts]}],
        }
        if req.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": req.system_instruction}]}

        config = {
            key: value
            for key, value in (
                ("maxOutputTokens", req.max_output_tokens),
                ("temperature", req.temperature),
            )
            if value is not None
        }
        if config:
            body["generationConfig"] = config
        return body
