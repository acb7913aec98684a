"""Incremental extraction of the code artifact from a growing model response.

The extractor is a two-state machine over the cumulative response text:

- OUTSIDE_BLOCK: looking for an opening fence. An opening fence is three
  backticks, an optional info word ([A-Za-z0-9_]*), and a newline. Until the
  newline arrives the fence is pending and nothing is consumed.
- INSIDE_OPEN_BLOCK: an opening fence was seen; looking for the next three
  backticks, which close the block.

Candidate artifact = every complete block's inner content (the single newline
before the closing fence dropped) followed by a blank line, in order of
appearance, plus the trailing content of a still-open block verbatim. All
fenced blocks are concatenated, even when a response mixes an explanatory
snippet with the real file: responses may split one large file across several
fenced chunks, so no block is ever dropped or deduplicated.

The candidate replaces the artifact only when it has non-whitespace content;
an empty or absent code block leaves the previous artifact untouched.

Each feed() resumes scanning where the previous one stopped, so a response is
scanned once overall regardless of how many deltas it arrives in.
"""

import re
from enum import Enum

FENCE = "```"

# Info word after an opening fence (e.g. ```html)
_FENCE_INFO = re.compile(r"[A-Za-z0-9_]*")

# Display-only stripping of fenced regions from message text
_COMPLETE_BLOCK = re.compile(r"```[\s\S]*?```")
_TRAILING_OPEN_BLOCK = re.compile(r"```[\s\S]*$")


class ExtractorState(str, Enum):
    OUTSIDE_BLOCK = "outside_block"
    INSIDE_OPEN_BLOCK = "inside_open_block"


class ArtifactExtractor:
    """Derives the latest code artifact from ordered text deltas.

    Usage:
        extractor = ArtifactExtractor()
        for delta in deltas:
            code = extractor.feed(delta)
            if code is not None:
                artifact = code
    """

    def __init__(self) -> None:
        self._text = ""
        self._blocks: list[str] = []
        # Where the outside-block scan resumes (after the last closed block)
        self._scan_pos = 0
        # Content start of the open block, None when outside
        self._open_start: int | None = None
        # Where the search for the closing fence resumes
        self._close_search_pos = 0

    @property
    def text(self) -> str:
        """Cumulative text received so far."""
        return self._text

    @property
    def state(self) -> ExtractorState:
        if self._open_start is None:
            return ExtractorState.OUTSIDE_BLOCK
        return ExtractorState.INSIDE_OPEN_BLOCK

    @property
    def completed_blocks(self) -> list[str]:
        """Inner contents of every closed block, in order."""
        return list(self._blocks)

    @property
    def candidate(self) -> str:
        """Current artifact candidate (may be empty)."""
        candidate = "".join(block + "\n\n" for block in self._blocks)
        if self._open_start is not None:
            candidate += self._text[self._open_start :]
        return candidate

    def feed(self, delta: str) -> str | None:
        """Append a delta and re-evaluate.

        Args:
            delta: Next text fragment, in received order.

        Returns:
            The new artifact text if the candidate is non-empty, else None
            (meaning: leave the current artifact as it is).
        """
        self._text += delta
        self._advance()
        candidate = self.candidate
        if candidate.strip():
            return candidate
        return None

    def _advance(self) -> None:
        text = self._text
        while True:
            if self._open_start is None:
                fence = text.find(FENCE, self._scan_pos)
                if fence == -1:
                    # Keep a possible partial fence at the tail in range for next time
                    self._scan_pos = max(self._scan_pos, len(text) - (len(FENCE) - 1))
                    return

                info_end = _FENCE_INFO.match(text, fence + len(FENCE)).end()
                if info_end == len(text):
                    # Opening fence line not terminated yet
                    self._scan_pos = fence
                    return
                if text[info_end] != "\n":
                    # Not an opening fence; rescan one character later
                    self._scan_pos = fence + 1
                    continue

                self._open_start = info_end + 1
                self._close_search_pos = self._open_start
            else:
                close = text.find(FENCE, self._close_search_pos)
                if close == -1:
                    self._close_search_pos = max(
                        self._open_start, len(text) - (len(FENCE) - 1)
                    )
                    return

                inner = text[self._open_start : close]
                if inner.endswith("\n"):
                    inner = inner[:-1]
                self._blocks.append(inner)

                self._open_start = None
                self._scan_pos = close + len(FENCE)


def extract_artifact(text: str) -> str | None:
    """Extract the artifact candidate from a complete (or partial) response.

    Returns:
        The candidate when non-empty, else None.
    """
    return ArtifactExtractor().feed(text)


def message_prose(text: str) -> str:
    """Strip fenced code (complete blocks and a trailing open block) for chat display."""
    if not text:
        return ""
    cleaned = _COMPLETE_BLOCK.sub("", text)
    cleaned = _TRAILING_OPEN_BLOCK.sub("", cleaned)
    return cleaned.strip()
