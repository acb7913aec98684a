"""Tests for SSE framing and stream teardown.

A generation must settle (session idle, record saved) however its stream
ends: after the done frame, when the client closes right after the meta
frame, or when the client is gone before the response body ever starts.
"""

import asyncio
import json

import pytest

from codeloom.api.routes.stream import GenerationStreamingResponse
from codeloom.services.llm.types import LLMChunk
from codeloom.services.sessions import stream_generation
from codeloom.services.workspace import GenerationStatus
from tests.helpers import ScriptedAdapter


class StallingAdapter(ScriptedAdapter):
    """Streams its first script, then waits forever for the next chunk."""

    def __init__(self, *scripts):
        super().__init__(*scripts)
        self.stalled = asyncio.Event()

    async def generate_stream(self, req, *, api_key, timeout_s):
        script = self._next(req, api_key)
        for delta in script.deltas:
            yield LLMChunk(delta_text=delta, done=False)
        self.stalled.set()
        await asyncio.Event().wait()


def frame_event(frame: str) -> tuple[str, dict]:
    event_line, data_line = frame.strip().split("\n")
    return event_line[len("event: ") :], json.loads(data_line[len("data: ") :])


class TestStreamGeneration:
    @pytest.mark.asyncio
    async def test_frames_in_order(self, make_workspace, free_user):
        workspace = make_workspace(ScriptedAdapter(["```html\n<p>x</p>\n```"]))
        generation = await workspace.begin("build", free_user)

        frames = [frame async for frame in stream_generation(workspace, generation)]

        names = [frame_event(f)[0] for f in frames]
        assert names == ["meta", "delta", "artifact", "done"]
        assert frame_event(frames[0])[1]["generation_id"] == generation.id
        assert frame_event(frames[-1])[1]["status"] == "complete"

    @pytest.mark.asyncio
    async def test_close_after_meta_settles(self, make_workspace, free_user, save_spy):
        adapter = ScriptedAdapter(["never"])
        workspace = make_workspace(adapter)
        generation = await workspace.begin("build", free_user)

        frames = stream_generation(workspace, generation)
        first = await frames.__anext__()
        await frames.aclose()

        assert frame_event(first)[0] == "meta"
        assert generation.result.status == GenerationStatus.CANCELLED
        assert generation.token.reason == "consumer_closed"
        assert not workspace.is_busy
        assert workspace.generation is None
        assert adapter.calls == 0
        assert len(save_spy) == 1


class TestGenerationStreamingResponse:
    @pytest.mark.asyncio
    async def test_disconnect_before_body_starts(self, make_workspace, free_user, save_spy):
        adapter = ScriptedAdapter(["never"])
        workspace = make_workspace(adapter)
        generation = await workspace.begin("build", free_user)
        response = GenerationStreamingResponse(
            workspace, generation, media_type="text/event-stream"
        )
        sent = []

        async def receive():
            return {"type": "http.disconnect"}

        async def send(message):
            sent.append(message)
            # The client is gone: nothing is ever delivered
            await asyncio.Event().wait()

        await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=5)

        assert all(m["type"] != "http.response.body" for m in sent)
        assert generation.settled
        assert generation.result.status == GenerationStatus.CANCELLED
        assert not workspace.is_busy
        assert adapter.calls == 0
        assert len(save_spy) == 1

    @pytest.mark.asyncio
    async def test_completed_response_saves_once(self, make_workspace, free_user, save_spy):
        workspace = make_workspace(ScriptedAdapter(["hello"]))
        generation = await workspace.begin("build", free_user)
        response = GenerationStreamingResponse(
            workspace, generation, media_type="text/event-stream"
        )
        bodies = []
        disconnected = asyncio.Event()

        async def receive():
            await disconnected.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            if message["type"] == "http.response.body":
                bodies.append(message.get("body", b""))
                if not message.get("more_body", False):
                    disconnected.set()

        await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=5)

        text = b"".join(bodies).decode()
        assert "event: meta" in text
        assert "event: done" in text
        assert generation.result.status == GenerationStatus.COMPLETE
        assert not workspace.is_busy
        assert len(save_spy) == 1

    @pytest.mark.asyncio
    async def test_disconnect_while_model_is_streaming(
        self, make_workspace, free_user, save_spy
    ):
        adapter = StallingAdapter(["```html\n<p>partial"])
        workspace = make_workspace(adapter)
        generation = await workspace.begin("build", free_user)
        response = GenerationStreamingResponse(
            workspace, generation, media_type="text/event-stream"
        )
        bodies = []

        async def receive():
            await adapter.stalled.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            if message["type"] == "http.response.body":
                bodies.append(message.get("body", b""))

        await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=5)

        assert "event: delta" in b"".join(bodies).decode()
        assert generation.result.status == GenerationStatus.CANCELLED
        assert not workspace.is_busy
        assert len(save_spy) == 1
        assert save_spy[0].code == "<p>partial"
        assert save_spy[0].creator_messages[-1].complete is False
