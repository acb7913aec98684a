"""Workspace sessions and the generation lifecycle.

A Workspace owns one session's artifact, version history and both
conversation threads. A user action goes through a synchronous pre-phase
(Workspace.begin) and then a Generation that streams and settles:

Pre-phase, in order (any failure leaves the session untouched):
1. Reject if a generation is already in flight (SessionBusyError)
2. Quota decision (QuotaExceededError, nothing consumed)
3. Build the request (attachment / prompt-size errors)
4. Persist the consumed quota on the user record
5. Append the user message to the active thread
6. Creator mode: push the pre-request artifact snapshot
7. Mark the thread busy and create the CancellationToken

Generation.events():
- Dispatches (streaming or single-shot) and applies deltas in order
- Creator mode re-runs the extractor after every delta; question mode never
  touches the artifact
- Checks the token before applying each delta; once aborted nothing else
  is mutated
- Dispatch failures become one error-flagged model message
- Settles exactly once (clear busy, save the session) on success, failure
  or cancellation, then emits GenerationDone
"""

import asyncio
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from codeloom.errors import ForbiddenError, SessionBusyError
from codeloom.logging import clear_generation_context, get_logger, set_generation_context
from codeloom.services.cancellation import CancellationToken
from codeloom.services.conversations import ConversationMessage, Conversations, now_ms
from codeloom.services.export import export_artifact
from codeloom.services.extractor import ArtifactExtractor
from codeloom.services.history import VersionHistory
from codeloom.services.llm.attachments import Attachment
from codeloom.services.llm.dispatch import EMPTY_RESPONSE_TEXT, Dispatcher
from codeloom.services.llm.errors import LLMError
from codeloom.services.llm.prompt import RequestBuilder
from codeloom.services.llm.types import GenerationRequest
from codeloom.services.quota import QuotaGovernor
from codeloom.services.redact import safe_kv
from codeloom.services.types import QUICK_ACTION_PROMPTS, ChatMode, QuickAction, Role
from codeloom.storage.records import (
    MessageRecord,
    ProjectConfig,
    SessionRecord,
    UserRecord,
)
from codeloom.storage.sessions import SessionStoreBase
from codeloom.storage.users import UserStoreBase

logger = get_logger(__name__)

BOOTSTRAP_PROMPT = "I want to build: {prompt}. Language: {language}"
MANUAL_EDIT_FORBIDDEN_MESSAGE = "Manual code editing is available to Premium subscribers only."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationStatus(str, Enum):
    """How a generation settled."""

    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class MessageDelta:
    """Text appended to the streaming model message."""

    message_id: str
    delta: str


@dataclass(frozen=True)
class ArtifactUpdated:
    """The artifact was replaced by a new extraction candidate."""

    code: str


@dataclass(frozen=True)
class GenerationDone:
    """Terminal event, emitted once after the session has settled."""

    status: GenerationStatus
    message_id: str | None = None
    error_code: str | None = None
    message: str | None = None


GenerationEvent = MessageDelta | ArtifactUpdated | GenerationDone


@dataclass
class WorkspaceServices:
    """Collaborators shared by every workspace of the process."""

    builder: RequestBuilder
    dispatcher: Dispatcher
    quota: QuotaGovernor
    sessions: SessionStoreBase
    users: UserStoreBase
    clock: Callable[[], int] = now_ms
    utcnow: Callable[[], datetime] = utcnow


class Generation:
    """One dispatched request: consumes the model output and settles once."""

    def __init__(
        self,
        workspace: "Workspace",
        request: GenerationRequest,
        mode: ChatMode,
        token: CancellationToken,
        *,
        stream: bool = True,
    ):
        self.id = str(uuid4())
        self.mode = mode
        self.stream = stream
        self.token = token
        self._workspace = workspace
        self._request = request
        self._extractor = ArtifactExtractor()
        self._message: ConversationMessage | None = None
        self._consumed = False
        self._done: GenerationDone | None = None
        self._saving: asyncio.Task | None = None

    @property
    def settled(self) -> bool:
        return self._done is not None

    @property
    def result(self) -> GenerationDone | None:
        return self._done

    def cancel(self, reason: str = "user_stop") -> None:
        """Abort the generation. Safe to call at any time, any number of times."""
        self.token.abort(reason)

    async def events(self) -> AsyncIterator[GenerationEvent]:
        """Run the generation, yielding events in order. Can only be consumed once."""
        if self._consumed:
            raise RuntimeError("Generation events can only be consumed once")
        self._consumed = True

        set_generation_context(self._workspace.id, self.id)
        try:
            async with aclosing(self._run()) as events:
                async for event in events:
                    yield event
        except Exception:
            await self._settle(GenerationStatus.ERROR)
            raise
        finally:
            # No-op unless the consumer went away mid-stream
            await self.close()
            clear_generation_context()

    async def close(self) -> None:
        """Cancel and settle a generation whose events will not be consumed (further).

        Also waits for the session write of a settle already under way.
        """
        if not self.settled:
            self.token.abort("consumer_closed")
            await self._settle(GenerationStatus.CANCELLED)
        elif self._saving is not None:
            await asyncio.shield(self._saving)

    async def run(self) -> GenerationDone:
        """Consume every event and return the terminal one."""
        async for _ in self.events():
            pass
        return self._done

    async def _run(self) -> AsyncIterator[GenerationEvent]:
        logger.info(
            "generation.started",
            **safe_kv(
                mode=self.mode.value,
                streaming=self.stream,
                prompt_chars=self._request.text_chars,
                attachment_count=self._request.attachment_count,
            ),
        )
        dispatcher = self._workspace.services.dispatcher
        error: LLMError | None = None
        try:
            if self.stream:
                deltas = dispatcher.generate_stream(self._request, self.token)
                async with aclosing(deltas):
                    async for delta in deltas:
                        if self.token.aborted:
                            break
                        for event in self._apply(delta):
                            yield event
            else:
                text = await dispatcher.generate(self._request, self.token)
                if text is not None and not self.token.aborted:
                    for event in self._apply(text):
                        yield event
        except LLMError as exc:
            error = exc

        if self.token.aborted:
            status = GenerationStatus.CANCELLED
        elif error is not None:
            status = GenerationStatus.ERROR
            self._record_error(error)
        else:
            status = GenerationStatus.COMPLETE
            self._record_complete()

        await self._settle(status, error)
        yield self._done

    def _apply(self, delta: str) -> list[GenerationEvent]:
        """Append one delta to the model message and re-run extraction."""
        events: list[GenerationEvent] = []
        thread = self._workspace.conversations.thread(self.mode)
        if self._message is None:
            self._message = thread.append_model("", complete=False)
        self._message.text += delta
        events.append(MessageDelta(message_id=self._message.id, delta=delta))

        if self.mode == ChatMode.CREATOR:
            candidate = self._extractor.feed(delta)
            if candidate is not None and candidate != self._workspace.artifact:
                self._workspace.artifact = candidate
                events.append(ArtifactUpdated(code=candidate))
        return events

    def _record_complete(self) -> None:
        if self._message is None:
            thread = self._workspace.conversations.thread(self.mode)
            self._message = thread.append_model(EMPTY_RESPONSE_TEXT)
        self._message.complete = True

    def _record_error(self, error: LLMError) -> None:
        thread = self._workspace.conversations.thread(self.mode)
        thread.append_model(error.user_message, is_error=True)

    async def _settle(self, status: GenerationStatus, error: LLMError | None = None) -> None:
        if self.settled:
            return
        self._done = GenerationDone(
            status=status,
            message_id=self._message.id if self._message else None,
            error_code=error.error_class.value if error else None,
            message=error.user_message if error else None,
        )
        self._workspace._release(self)

        logger.info(
            "generation.settled",
            **safe_kv(
                status=status.value,
                mode=self.mode.value,
                output_chars=len(self._extractor.text),
                artifact_chars=len(self._workspace.artifact),
                error_class=error.error_class.value if error else None,
                cancel_reason=self.token.reason,
            ),
        )
        # Own task: cancelling the consumer must not cut the write short
        self._saving = asyncio.create_task(self._workspace.save())
        await asyncio.shield(self._saving)


class Workspace:
    """One session: artifact, version history and both conversation threads."""

    def __init__(
        self,
        services: WorkspaceServices,
        *,
        session_id: str | None = None,
        name: str,
        config: ProjectConfig,
        owner_id: str | None = None,
        artifact: str = "",
        conversations: Conversations | None = None,
        last_modified: int | None = None,
    ):
        self.services = services
        self.id = session_id or str(uuid4())
        self.name = name
        self.config = config
        self.owner_id = owner_id
        self.artifact = artifact
        self.history = VersionHistory.seeded(artifact)
        self.conversations = conversations or Conversations(
            active_mode=config.chat_mode, clock=services.clock
        )
        self.last_modified = last_modified if last_modified is not None else services.clock()
        self._generation: Generation | None = None
        self._starting = False

    @classmethod
    def create(
        cls,
        services: WorkspaceServices,
        config: ProjectConfig,
        *,
        name: str | None = None,
        owner_id: str | None = None,
    ) -> "Workspace":
        """New, empty session for config."""
        return cls(services, name=name or config.prompt, config=config, owner_id=owner_id)

    @classmethod
    def from_record(cls, services: WorkspaceServices, record: SessionRecord) -> "Workspace":
        """Resume a stored session. History is seeded from the stored code."""
        conversations = Conversations(
            active_mode=record.config.chat_mode,
            creator_messages=[_message_from_record(m) for m in record.creator_messages],
            question_messages=[_message_from_record(m) for m in record.question_messages],
            clock=services.clock,
        )
        return cls(
            services,
            session_id=record.id,
            name=record.name,
            config=record.config,
            owner_id=record.owner_id,
            artifact=record.code,
            conversations=conversations,
            last_modified=record.last_modified,
        )

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            id=self.id,
            name=self.name,
            owner_id=self.owner_id,
            config=self.config.model_copy(update={"chat_mode": self.conversations.active_mode}),
            code=self.artifact,
            creator_messages=[
                MessageRecord.model_validate(m)
                for m in self.conversations.thread(ChatMode.CREATOR)
            ],
            question_messages=[
                MessageRecord.model_validate(m)
                for m in self.conversations.thread(ChatMode.QUESTION)
            ],
            last_modified=self.last_modified,
        )

    @property
    def is_busy(self) -> bool:
        return self._starting or self.conversations.is_busy

    @property
    def generation(self) -> Generation | None:
        """The in-flight generation, if any."""
        return self._generation

    @property
    def needs_bootstrap(self) -> bool:
        return self.conversations.is_empty and not self.artifact

    async def start(
        self,
        user: UserRecord,
        *,
        attachments: Sequence[Attachment] = (),
        stream: bool = True,
    ) -> Generation | None:
        """Kick off a brand-new session with its bootstrap request.

        Sessions created in question mode only record the bootstrap message.
        Returns None when nothing is dispatched.
        """
        if not self.needs_bootstrap:
            return None
        prompt = BOOTSTRAP_PROMPT.format(
            prompt=self.config.prompt, language=self.config.language
        )
        if self.conversations.active_mode != ChatMode.CREATOR:
            self.conversations.thread(ChatMode.CREATOR).append_user(prompt)
            await self.save()
            return None
        return await self.begin(prompt, user, attachments=attachments, stream=stream)

    async def quick_action(
        self, action: QuickAction, user: UserRecord, *, stream: bool = True
    ) -> Generation:
        return await self.begin(QUICK_ACTION_PROMPTS[action], user, stream=stream)

    async def begin(
        self,
        prompt: str,
        user: UserRecord,
        *,
        attachments: Sequence[Attachment] = (),
        stream: bool = True,
    ) -> Generation:
        """Run the pre-phase and return the generation to consume.

        Raises:
            SessionBusyError: A generation is already in flight.
            QuotaExceededError: The user reached the daily limit.
            AttachmentReadError: An attachment could not be read.
            AttachmentTooLargeError: An attachment exceeds the size ceiling.
            PromptTooLargeError: The rendered request is too large.
        """
        if self.is_busy:
            raise SessionBusyError()

        self._starting = True
        try:
            mode = self.conversations.active_mode
            thread = self.conversations.thread(mode)

            quota_state = self.services.quota.check_and_consume(
                user.quota_state(), self.services.utcnow()
            )

            request = await self.services.builder.build(
                prompt,
                mode=mode,
                history=thread.messages,
                artifact=self.artifact,
                attachments=attachments,
                tier=user.tier,
                model_name=self.config.model,
            )

            await asyncio.to_thread(self.services.users.save, user.with_quota(quota_state))

            thread.append_user(prompt)
            if mode == ChatMode.CREATOR:
                self.history.push_version(self.artifact)
            thread.mark_busy()
        finally:
            self._starting = False

        generation = Generation(self, request, mode, CancellationToken(), stream=stream)
        self._generation = generation
        logger.info(
            "generation.begun",
            **safe_kv(
                session_id=self.id,
                generation_id=generation.id,
                mode=mode.value,
                tier=user.tier.value,
                daily_count=quota_state.count,
            ),
        )
        return generation

    def stop(self, reason: str = "user_stop") -> bool:
        """Abort the in-flight generation. Returns False when nothing is running."""
        if self._generation is None:
            return False
        self._generation.cancel(reason)
        return True

    def switch_mode(self, mode: ChatMode) -> None:
        if self._starting:
            raise SessionBusyError("Cannot switch mode while a response is being generated")
        self.conversations.switch_mode(mode)

    def undo(self) -> str | None:
        """Step back one version. Returns the restored artifact, or None if at the start."""
        self._ensure_idle()
        restored = self.history.undo()
        if restored is not None:
            self.artifact = restored
        return restored

    def redo(self) -> str | None:
        """Step forward one version. Returns the restored artifact, or None if at the end."""
        self._ensure_idle()
        restored = self.history.redo()
        if restored is not None:
            self.artifact = restored
        return restored

    def edit_artifact(self, code: str, user: UserRecord) -> None:
        """Replace the artifact by hand (privileged tiers only) and record it as a version."""
        if not user.tier.is_privileged:
            raise ForbiddenError(message=MANUAL_EDIT_FORBIDDEN_MESSAGE)
        self._ensure_idle()
        self.artifact = code
        self.history.push_version(code)

    def export(self, user: UserRecord) -> str:
        return export_artifact(self.artifact, user.tier)

    def remaining_requests(self) -> int | None:
        """Requests the owner has left today; None when unlimited or ownerless."""
        if self.owner_id is None:
            return None
        owner = self.services.users.get(self.owner_id) or UserRecord(id=self.owner_id)
        return self.services.quota.remaining(owner.quota_state(), self.services.utcnow())

    async def save(self) -> None:
        """Write the session record to the store."""
        self.last_modified = self.services.clock()
        await asyncio.to_thread(self.services.sessions.save, self.to_record())

    def _ensure_idle(self) -> None:
        if self.is_busy:
            raise SessionBusyError()

    def _release(self, generation: Generation) -> None:
        self.conversations.thread(generation.mode).mark_idle()
        if self._generation is generation:
            self._generation = None


def _message_from_record(record: MessageRecord) -> ConversationMessage:
    return ConversationMessage(
        role=Role(record.role),
        text=record.text,
        id=record.id,
        timestamp=record.timestamp,
        is_error=record.is_error,
        complete=record.complete,
    )


@dataclass
class WorkspaceRegistry:
    """Live workspaces of the process, loaded from the session store on miss.

    At most max_live idle workspaces are kept, least recently used first out.
    Busy workspaces are never evicted. The store stays authoritative: an idle
    workspace whose record was evicted from the store is dropped here too.
    """

    services: WorkspaceServices
    max_live: int | None = None
    _workspaces: OrderedDict[str, Workspace] = field(default_factory=OrderedDict)

    def __post_init__(self):
        if self.max_live is None:
            self.max_live = self.services.sessions.max_records
        if self.max_live < 1:
            raise ValueError("max_live must be >= 1")

    def add(self, workspace: Workspace) -> Workspace:
        self._workspaces[workspace.id] = workspace
        self._workspaces.move_to_end(workspace.id)
        self._evict_idle(keep=workspace.id)
        return workspace

    def get(self, session_id: str) -> Workspace | None:
        workspace = self._workspaces.get(session_id)
        if workspace is not None and workspace.is_busy:
            return self.add(workspace)
        record = self.services.sessions.get(session_id)
        if record is None:
            self._discard(session_id)
            return None
        return self.add(workspace or Workspace.from_record(self.services, record))

    def _discard(self, session_id: str) -> None:
        if self._workspaces.pop(session_id, None) is not None:
            logger.info("workspace.dropped", session_id=session_id)

    def _evict_idle(self, keep: str) -> None:
        excess = len(self._workspaces) - self.max_live
        if excess <= 0:
            return
        idle = [
            sid for sid, ws in self._workspaces.items() if sid != keep and not ws.is_busy
        ]
        for session_id in idle[:excess]:
            del self._workspaces[session_id]

    def __len__(self) -> int:
        return len(self._workspaces)
