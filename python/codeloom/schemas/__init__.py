"""Pydantic schemas for request/response models."""

from codeloom.schemas.session import (
    AttachmentIn,
    CodeOut,
    CreateSessionRequest,
    HistoryOut,
    MessageOut,
    SendMessageRequest,
    SessionOut,
    SessionSummaryOut,
    SwitchModeRequest,
    UpdateCodeRequest,
)

__all__ = [
    "AttachmentIn",
    "CodeOut",
    "CreateSessionRequest",
    "HistoryOut",
    "MessageOut",
    "SendMessageRequest",
    "SessionOut",
    "SessionSummaryOut",
    "SwitchModeRequest",
    "UpdateCodeRequest",
]
