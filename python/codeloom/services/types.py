"""Shared domain enums for the workspace engine.

- Role: who authored a conversation message (closed variant, never a free string)
- ChatMode: which conversation thread a request belongs to
- Tier: user privilege level (quota exemption, policy injection, manual edit)
- QuickAction: canned creator-mode requests
"""

from enum import Enum


class Role(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    MODEL = "model"


class ChatMode(str, Enum):
    """Conversation mode.

    CREATOR responses regenerate the full artifact; QUESTION responses explain
    without regenerating it. Each mode owns its own thread; both share one artifact.
    """

    CREATOR = "creator"
    QUESTION = "question"


class Tier(str, Enum):
    """User privilege level."""

    FREE = "free"
    PREMIUM = "premium"
    ADMIN = "admin"

    @property
    def is_privileged(self) -> bool:
        """Premium and admin users are quota-exempt and skip sponsor policy."""
        return self in (Tier.PREMIUM, Tier.ADMIN)


class QuickAction(str, Enum):
    """Canned creator-mode requests offered next to the chat input."""

    BUGS = "bugs"
    SECURITY = "security"
    DEPLOY = "deploy"


QUICK_ACTION_PROMPTS: dict[QuickAction, str] = {
    QuickAction.BUGS: "Please scan the code and find bugs.",
    QuickAction.SECURITY: "Please add security layers.",
    QuickAction.DEPLOY: "Please prepare the code for deployment.",
}
