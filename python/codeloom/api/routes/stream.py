"""Generation API routes under /stream/*.

- POST /stream/sessions/{id}/messages: send content or a quick action
- POST /stream/sessions/{id}/start: run the bootstrap request of a new session

The pre-phase (busy check, quota, request building) runs before the
response starts, so its errors come back as regular JSON error envelopes.
With stream=true the response is SSE (meta, delta, artifact, done); with
stream=false the request is dispatched single-shot and the settled session
is returned as JSON.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from codeloom.api.deps import get_viewer, get_viewer_workspace
from codeloom.errors import InvalidRequestError
from codeloom.responses import success_response
from codeloom.schemas.session import SendMessageRequest
from codeloom.services import sessions as sessions_service
from codeloom.services.workspace import Generation, Workspace
from codeloom.storage.records import UserRecord

router = APIRouter(prefix="/stream", tags=["streaming"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


class GenerationStreamingResponse(StreamingResponse):
    """SSE response that settles its generation however the response ends.

    A client that disconnects before the first body chunk is sent leaves the
    body iterator unstarted, so its own cleanup never runs.
    """

    def __init__(self, workspace: Workspace, generation: Generation, **kwargs):
        super().__init__(sessions_service.stream_generation(workspace, generation), **kwargs)
        self.generation = generation

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()
            await self.generation.close()


def _sse_response(workspace: Workspace, generation: Generation) -> StreamingResponse:
    return GenerationStreamingResponse(
        workspace,
        generation,
        media_type="text/event-stream; charset=utf-8",
        headers=SSE_HEADERS,
    )


@router.post("/sessions/{session_id}/messages", response_model=None)
async def send_message(
    body: SendMessageRequest,
    viewer: Annotated[UserRecord, Depends(get_viewer)],
    workspace: Annotated[Workspace, Depends(get_viewer_workspace)],
) -> StreamingResponse | dict:
    """Send a message in the session's active mode.

    Errors (before the stream opens):
        E_SESSION_BUSY (409): A generation is already in flight.
        E_QUOTA_EXCEEDED (429): Daily limit reached.
        E_ATTACHMENT_UNREADABLE / E_ATTACHMENT_TOO_LARGE / E_PROMPT_TOO_LARGE (400)
    """
    generation = await sessions_service.begin_generation(
        workspace,
        viewer,
        content=body.content,
        quick_action=body.quick_action,
        attachments=body.attachments,
        stream=body.stream,
    )
    if not body.stream:
        return success_response(await sessions_service.run_to_completion(workspace, generation))
    return _sse_response(workspace, generation)


@router.post("/sessions/{session_id}/start", response_model=None)
async def start_session(
    viewer: Annotated[UserRecord, Depends(get_viewer)],
    workspace: Annotated[Workspace, Depends(get_viewer_workspace)],
) -> StreamingResponse | dict:
    """Stream the bootstrap request of a session that has no messages and no code.

    Sessions created in question mode only record the bootstrap message; the
    session state is returned as JSON instead of a stream.

    Errors:
        E_INVALID_REQUEST (400): The session already has messages or code.
    """
    if not workspace.needs_bootstrap:
        raise InvalidRequestError(message="Session has already started")
    generation = await workspace.start(viewer)
    if generation is None:
        return success_response(sessions_service.session_out(workspace).model_dump(mode="json"))
    return _sse_response(workspace, generation)
