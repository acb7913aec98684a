"""Session service layer for the HTTP routes.

Routes are transport-only: each calls one function here. Functions take the
resolved viewer/workspace, perform the workspace operation and return
response schemas. SSE framing of generation events also lives here.
"""

import json
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing

from codeloom.logging import get_logger
from codeloom.schemas.session import (
    AttachmentIn,
    CodeOut,
    CreateSessionRequest,
    HistoryOut,
    MessageOut,
    SessionOut,
    SessionSummaryOut,
)
from codeloom.services.conversations import ConversationMessage
from codeloom.services.extractor import message_prose
from codeloom.services.llm.attachments import InlineAttachment, guess_mime_type
from codeloom.services.types import ChatMode, QuickAction, Role
from codeloom.services.workspace import (
    ArtifactUpdated,
    Generation,
    GenerationDone,
    GenerationEvent,
    MessageDelta,
    Workspace,
    WorkspaceRegistry,
)
from codeloom.storage.records import ProjectConfig, UserRecord
from codeloom.storage.sessions import SessionStoreBase

logger = get_logger(__name__)


def format_sse_event(event: str, data: dict) -> str:
    """Format data as an SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


# =============================================================================
# Views
# =============================================================================


def message_out(message: ConversationMessage) -> MessageOut:
    return MessageOut(
        id=message.id,
        role=message.role.value,
        text=message.text,
        prose=message_prose(message.text) if message.role == Role.MODEL else message.text,
        timestamp=message.timestamp,
        is_error=message.is_error,
        complete=message.complete,
    )


def history_out(workspace: Workspace) -> HistoryOut:
    history = workspace.history
    return HistoryOut(
        cursor=history.cursor,
        length=len(history),
        can_undo=history.can_undo,
        can_redo=history.can_redo,
    )


def session_out(workspace: Workspace) -> SessionOut:
    conversations = workspace.conversations
    return SessionOut(
        id=workspace.id,
        name=workspace.name,
        prompt=workspace.config.prompt,
        language=workspace.config.language,
        model=workspace.config.model,
        chat_mode=conversations.active_mode,
        code=workspace.artifact,
        is_busy=workspace.is_busy,
        history=history_out(workspace),
        creator_messages=[message_out(m) for m in conversations.thread(ChatMode.CREATOR)],
        question_messages=[message_out(m) for m in conversations.thread(ChatMode.QUESTION)],
        last_modified=workspace.last_modified,
        remaining_requests=workspace.remaining_requests(),
    )


def code_out(workspace: Workspace) -> CodeOut:
    return CodeOut(code=workspace.artifact, history=history_out(workspace))


def done_out(done: GenerationDone) -> dict:
    data = {"status": done.status.value, "message_id": done.message_id}
    if done.error_code:
        data["error_code"] = done.error_code
        data["message"] = done.message
    return data


# =============================================================================
# Operations
# =============================================================================


async def create_session(
    registry: WorkspaceRegistry, viewer: UserRecord, body: CreateSessionRequest
) -> SessionOut:
    """Create and store a session; with body.start, run its bootstrap request single-shot."""
    config = ProjectConfig(
        prompt=body.prompt,
        language=body.language,
        model=body.model,
        chat_mode=body.chat_mode,
    )
    workspace = registry.add(
        Workspace.create(registry.services, config, name=body.name, owner_id=viewer.id)
    )
    await workspace.save()
    logger.info("session.created", session_id=workspace.id, chat_mode=body.chat_mode.value)

    if body.start:
        generation = await workspace.start(viewer, stream=False)
        if generation is not None:
            await generation.run()
    return session_out(workspace)


def list_sessions(sessions: SessionStoreBase, viewer: UserRecord) -> list[SessionSummaryOut]:
    return [
        SessionSummaryOut(
            id=record.id,
            name=record.name,
            language=record.config.language,
            last_modified=record.last_modified,
            message_count=len(record.creator_messages) + len(record.question_messages),
        )
        for record in sessions.list_recent(owner_id=viewer.id)
    ]


async def switch_mode(workspace: Workspace, mode: ChatMode) -> SessionOut:
    workspace.switch_mode(mode)
    await workspace.save()
    return session_out(workspace)


async def undo(workspace: Workspace) -> CodeOut:
    if workspace.undo() is not None:
        await workspace.save()
    return code_out(workspace)


async def redo(workspace: Workspace) -> CodeOut:
    if workspace.redo() is not None:
        await workspace.save()
    return code_out(workspace)


async def update_code(workspace: Workspace, viewer: UserRecord, code: str) -> CodeOut:
    workspace.edit_artifact(code, viewer)
    await workspace.save()
    return code_out(workspace)


def stop_generation(workspace: Workspace) -> dict:
    return {"stopped": workspace.stop()}


def to_attachments(items: Sequence[AttachmentIn]) -> list[InlineAttachment]:
    return [
        InlineAttachment(
            name=item.name,
            mime_type=item.mime_type or guess_mime_type(item.name),
            data_base64=item.data_base64,
        )
        for item in items
    ]


async def begin_generation(
    workspace: Workspace,
    viewer: UserRecord,
    *,
    content: str | None,
    quick_action: QuickAction | None,
    attachments: Sequence[AttachmentIn] = (),
    stream: bool = True,
) -> Generation:
    """Run the synchronous pre-phase; errors surface before any stream opens."""
    if quick_action is not None:
        return await workspace.quick_action(quick_action, viewer, stream=stream)
    return await workspace.begin(
        content, viewer, attachments=to_attachments(attachments), stream=stream
    )


async def run_to_completion(workspace: Workspace, generation: Generation) -> dict:
    done = await generation.run()
    return {"done": done_out(done), "session": session_out(workspace).model_dump(mode="json")}


# =============================================================================
# SSE
# =============================================================================


def _event_to_sse(event: GenerationEvent) -> str:
    if isinstance(event, MessageDelta):
        return format_sse_event("delta", {"message_id": event.message_id, "delta": event.delta})
    if isinstance(event, ArtifactUpdated):
        return format_sse_event("artifact", {"code": event.code})
    return format_sse_event("done", done_out(event))


async def stream_generation(workspace: Workspace, generation: Generation) -> AsyncIterator[str]:
    """SSE frames for one generation: meta, then delta/artifact events, then done.

    Closing the stream at any point, the meta frame included, cancels the
    generation.
    """
    try:
        yield format_sse_event(
            "meta",
            {
                "session_id": workspace.id,
                "generation_id": generation.id,
                "mode": generation.mode.value,
            },
        )
        async with aclosing(generation.events()) as events:
            async for event in events:
                yield _event_to_sse(event)
    finally:
        await generation.close()
