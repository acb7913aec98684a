"""Persisted record shapes for sessions and users.

These mirror the external store contract:
- SessionRecord: { id, name, config, code, creator_messages[], question_messages[], last_modified }
- UserRecord: { id, daily_requests_count, last_request_date, tier }

Timestamps are epoch milliseconds.
"""

from pydantic import BaseModel, ConfigDict, Field

from codeloom.services.quota import QuotaState
from codeloom.services.types import ChatMode, Role, Tier

DEFAULT_LANGUAGE = "HTML/CSS/JS"


class MessageRecord(BaseModel):
    """One stored conversation message."""

    id: str
    role: Role
    text: str
    timestamp: int
    is_error: bool = False
    complete: bool = True

    model_config = ConfigDict(from_attributes=True)


class ProjectConfig(BaseModel):
    """What the session was created to build."""

    prompt: str
    language: str = DEFAULT_LANGUAGE
    model: str | None = None
    chat_mode: ChatMode = ChatMode.CREATOR


class SessionRecord(BaseModel):
    """A stored workspace session."""

    id: str
    name: str
    owner_id: str | None = None
    config: ProjectConfig
    code: str = ""
    creator_messages: list[MessageRecord] = Field(default_factory=list)
    question_messages: list[MessageRecord] = Field(default_factory=list)
    last_modified: int


class UserRecord(BaseModel):
    """Stored quota and tier for one user."""

    id: str
    tier: Tier = Tier.FREE
    daily_requests_count: int = 0
    last_request_date: str | None = None

    def quota_state(self) -> QuotaState:
        return QuotaState(
            count=self.daily_requests_count,
            last_request_date=self.last_request_date,
            tier=self.tier,
        )

    def with_quota(self, state: QuotaState) -> "UserRecord":
        """Copy of this record carrying the consumed quota state."""
        return self.model_copy(
            update={
                "daily_requests_count": state.count,
                "last_request_date": state.last_request_date,
            }
        )
