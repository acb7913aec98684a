"""Test helpers: scripted model adapter, recording sleep and builders."""

import base64
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from codeloom.services.llm.adapter import LLMAdapter
from codeloom.services.llm.errors import LLMError, LLMErrorClass
from codeloom.services.llm.types import GenerationRequest, LLMChunk, LLMResponse, TextPart
from codeloom.services.types import ChatMode

TEST_API_KEY = "test-key-not-real"
TEST_MODEL = "test-model"


def rate_limited() -> LLMError:
    return LLMError(LLMErrorClass.RATE_LIMIT, "Provider returned HTTP 429", status_code=429)


def provider_down() -> LLMError:
    return LLMError(LLMErrorClass.PROVIDER_DOWN, "Provider returned HTTP 503", status_code=503)


class Script:
    """One scripted attempt: deltas to emit, then optionally an error."""

    def __init__(self, deltas: list[str] | None = None, error: Exception | None = None):
        self.deltas = list(deltas or [])
        self.error = error


class ScriptedAdapter(LLMAdapter):
    """Adapter that replays one Script per attempt and records requests."""

    def __init__(self, *scripts: Script | list[str] | Exception):
        super().__init__(client=None)
        self._scripts = [self._coerce(s) for s in scripts]
        self.requests: list[GenerationRequest] = []
        self.api_keys: list[str] = []

    @staticmethod
    def _coerce(script) -> Script:
        if isinstance(script, Script):
            return script
        if isinstance(script, Exception):
            return Script(error=script)
        return Script(deltas=script)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def _next(self, req: GenerationRequest, api_key: str) -> Script:
        self.requests.append(req)
        self.api_keys.append(api_key)
        if not self._scripts:
            raise AssertionError("ScriptedAdapter ran out of scripts")
        return self._scripts.pop(0)

    async def generate(
        self, req: GenerationRequest, *, api_key: str, timeout_s: int
    ) -> LLMResponse:
        script = self._next(req, api_key)
        if script.error is not None:
            raise script.error
        return LLMResponse(text="".join(script.deltas), finish_reason="STOP")

    async def generate_stream(
        self, req: GenerationRequest, *, api_key: str, timeout_s: int
    ) -> AsyncIterator[LLMChunk]:
        script = self._next(req, api_key)
        for delta in script.deltas:
            yield LLMChunk(delta_text=delta, done=False)
        if script.error is not None:
            raise script.error
        yield LLMChunk(delta_text="", done=True, finish_reason="STOP")


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays and returns immediately."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FixedClock:
    """Epoch-millisecond clock that advances by one on each call."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


def utc(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def make_request(text: str = "Build a landing page", mode: ChatMode = ChatMode.CREATOR):
    return GenerationRequest(
        model_name=TEST_MODEL,
        system_instruction="system",
        parts=[TextPart(text=text)],
        mode=mode,
    )


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
