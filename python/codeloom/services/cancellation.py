"""Cooperative cancellation for in-flight generations.

One token is created per dispatch and shared between the dispatcher and the
stream consumer. Cancellation is checked:
- before every dispatch attempt (including retries)
- before every received delta is yielded or applied

Once aborted, nothing further is mutated for that generation. Aborting is
idempotent and never raises.
"""

import asyncio


class CancellationToken:
    """Stop signal for one generation."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "user_stop") -> None:
        """Signal cancellation. Only the first reason is kept."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Suspend until the token is aborted."""
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(aborted={self.aborted}, reason={self._reason!r})"
