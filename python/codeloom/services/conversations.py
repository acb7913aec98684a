"""Conversation threads for the two chat modes.

- One thread per ChatMode; both share the session's single artifact
- Threads are append-only; a model message's text grows in place while it streams
- Each thread carries a busy flag while its generation is in flight; sends and
  mode switches are refused while any thread is busy
- Switching mode never touches the other thread or the artifact
"""

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from uuid import uuid4

from codeloom.errors import SessionBusyError
from codeloom.services.types import ChatMode, Role


def now_ms() -> int:
    """Epoch milliseconds, the timestamp unit for messages and sessions."""
    return int(time.time() * 1000)


@dataclass
class ConversationMessage:
    """One conversation turn.

    Attributes:
        id: Message ID
        role: Author (user or model)
        text: Message text (grows while a model message streams)
        timestamp: Creation time in epoch milliseconds
        is_error: Whether this is an error notice rather than a model answer
        complete: False while the model message is still streaming, and stays
            False when its generation was cancelled or failed mid-stream
    """

    role: Role
    text: str
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: int = field(default_factory=now_ms)
    is_error: bool = False
    complete: bool = True


class ConversationThread:
    """Ordered messages of one mode."""

    def __init__(
        self,
        mode: ChatMode,
        messages: list[ConversationMessage] | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.mode = mode
        self._messages = list(messages or [])
        self._busy = False
        self._clock = clock

    @property
    def messages(self) -> list[ConversationMessage]:
        return list(self._messages)

    @property
    def is_busy(self) -> bool:
        return self._busy

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ConversationMessage]:
        return iter(list(self._messages))

    def mark_busy(self) -> None:
        if self._busy:
            raise SessionBusyError()
        self._busy = True

    def mark_idle(self) -> None:
        self._busy = False

    def append_user(self, text: str) -> ConversationMessage:
        message = ConversationMessage(role=Role.USER, text=text, timestamp=self._clock())
        self._messages.append(message)
        return message

    def append_model(
        self, text: str, *, complete: bool = True, is_error: bool = False
    ) -> ConversationMessage:
        message = ConversationMessage(
            role=Role.MODEL,
            text=text,
            timestamp=self._clock(),
            complete=complete,
            is_error=is_error,
        )
        self._messages.append(message)
        return message


class Conversations:
    """Both mode threads plus the active mode."""

    def __init__(
        self,
        active_mode: ChatMode = ChatMode.CREATOR,
        creator_messages: list[ConversationMessage] | None = None,
        question_messages: list[ConversationMessage] | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self._threads = {
            ChatMode.CREATOR: ConversationThread(ChatMode.CREATOR, creator_messages, clock),
            ChatMode.QUESTION: ConversationThread(ChatMode.QUESTION, question_messages, clock),
        }
        self._active_mode = active_mode

    @property
    def active_mode(self) -> ChatMode:
        return self._active_mode

    @property
    def active(self) -> ConversationThread:
        return self._threads[self._active_mode]

    @property
    def is_busy(self) -> bool:
        return any(thread.is_busy for thread in self._threads.values())

    @property
    def is_empty(self) -> bool:
        return all(len(thread) == 0 for thread in self._threads.values())

    def thread(self, mode: ChatMode) -> ConversationThread:
        return self._threads[mode]

    def switch_mode(self, mode: ChatMode) -> None:
        """Make mode the active thread.

        Raises:
            SessionBusyError: A generation is in flight.
        """
        if self.is_busy:
            raise SessionBusyError("Cannot switch mode while a response is being generated")
        self._active_mode = mode
