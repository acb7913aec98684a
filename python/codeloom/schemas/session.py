"""Session, message and generation request/response schemas."""

from pydantic import BaseModel, Field, model_validator

from codeloom.services.types import ChatMode, QuickAction

# =============================================================================
# Request Schemas
# =============================================================================


class CreateSessionRequest(BaseModel):
    """Request body for creating a session.

    When start is true, the bootstrap request is dispatched right away
    (single-shot) and the response contains the settled session.
    """

    prompt: str = Field(..., min_length=1, max_length=10_000)
    name: str | None = Field(None, max_length=200)
    language: str = Field("HTML/CSS/JS", min_length=1, max_length=50)
    model: str | None = Field(None, max_length=100)
    chat_mode: ChatMode = ChatMode.CREATOR
    start: bool = False


class SwitchModeRequest(BaseModel):
    mode: ChatMode


class UpdateCodeRequest(BaseModel):
    code: str


class AttachmentIn(BaseModel):
    """An uploaded file, base64-encoded."""

    name: str = Field(..., min_length=1, max_length=255)
    mime_type: str | None = Field(None, max_length=255)
    data_base64: str


class SendMessageRequest(BaseModel):
    """Request body for a generation.

    Exactly one of content or quick_action must be given.
    """

    content: str | None = Field(None, min_length=1, max_length=100_000)
    quick_action: QuickAction | None = None
    attachments: list[AttachmentIn] = Field(default_factory=list, max_length=10)
    stream: bool = True

    @model_validator(mode="after")
    def exactly_one_instruction(self) -> "SendMessageRequest":
        if (self.content is None) == (self.quick_action is None):
            raise ValueError("Provide exactly one of content or quick_action")
        return self


# =============================================================================
# Response Schemas
# =============================================================================


class MessageOut(BaseModel):
    """A conversation message.

    prose is the text with fenced code removed, for chat display.
    """

    id: str
    role: str  # "user" | "model"
    text: str
    prose: str
    timestamp: int
    is_error: bool
    complete: bool


class HistoryOut(BaseModel):
    cursor: int
    length: int
    can_undo: bool
    can_redo: bool


class SessionOut(BaseModel):
    """Full session state."""

    id: str
    name: str
    prompt: str
    language: str
    model: str | None
    chat_mode: ChatMode
    code: str
    is_busy: bool
    history: HistoryOut
    creator_messages: list[MessageOut]
    question_messages: list[MessageOut]
    last_modified: int
    # None for quota-exempt tiers
    remaining_requests: int | None = None


class SessionSummaryOut(BaseModel):
    """A stored session in the recent-sessions list."""

    id: str
    name: str
    language: str
    last_modified: int
    message_count: int


class CodeOut(BaseModel):
    """Artifact after undo/redo/edit."""

    code: str
    history: HistoryOut
