"""Undo/redo log of artifact snapshots.

Invariants:
- cursor == -1 iff the history is empty, else 0 <= cursor < len(history)
- undo()/redo() only move the cursor; only push_version() changes the length
- push_version() after undo() discards the forward branch past the cursor
"""

from codeloom.logging import get_logger

logger = get_logger(__name__)


class VersionHistory:
    """Snapshot stack with a cursor.

    A snapshot is pushed right before a creator-mode request is dispatched,
    so it captures the pre-edit artifact.
    """

    def __init__(self, versions: list[str] | None = None, cursor: int | None = None):
        """Initialize history.

        Args:
            versions: Existing snapshots (oldest first).
            cursor: Current position; defaults to the newest snapshot.

        Raises:
            ValueError: If cursor is out of range for versions.
        """
        self._versions = list(versions or [])
        if cursor is None:
            cursor = len(self._versions) - 1
        if self._versions and not 0 <= cursor < len(self._versions):
            raise ValueError(f"cursor {cursor} out of range for {len(self._versions)} versions")
        if not self._versions and cursor != -1:
            raise ValueError("cursor must be -1 for an empty history")
        self._cursor = cursor

    @classmethod
    def seeded(cls, code: str) -> "VersionHistory":
        """History for a (resumed) session: [code] when non-empty, else empty."""
        return cls([code] if code else [])

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def versions(self) -> list[str]:
        return list(self._versions)

    @property
    def current(self) -> str | None:
        if self._cursor < 0:
            return None
        return self._versions[self._cursor]

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._versions) - 1

    def __len__(self) -> int:
        return len(self._versions)

    def push_version(self, text: str) -> bool:
        """Record a snapshot after the cursor, dropping any forward branch.

        Empty text is not recorded (there is nothing to go back to).

        Returns:
            True if a snapshot was recorded.
        """
        if not text:
            return False

        dropped = len(self._versions) - (self._cursor + 1)
        del self._versions[self._cursor + 1 :]
        self._versions.append(text)
        self._cursor = len(self._versions) - 1

        logger.debug(
            "history.version_pushed",
            version=self._cursor + 1,
            dropped_versions=dropped,
            snapshot_chars=len(text),
        )
        return True

    def undo(self) -> str | None:
        """Step back one snapshot.

        Returns:
            The snapshot now under the cursor, or None if already at the oldest.
        """
        if not self.can_undo:
            return None
        self._cursor -= 1
        return self._versions[self._cursor]

    def redo(self) -> str | None:
        """Step forward one snapshot.

        Returns:
            The snapshot now under the cursor, or None if already at the newest.
        """
        if not self.can_redo:
            return None
        self._cursor += 1
        return self._versions[self._cursor]
