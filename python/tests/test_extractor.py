"""Tests for incremental artifact extraction.

Covers:
- Literal cases for closed, open and multiple fenced blocks
- Delta-by-delta feeding (including fences split across deltas)
- Empty candidates leave the artifact untouched (feed returns None)
- message_prose display stripping
"""

import pytest

from codeloom.services.extractor import (
    ArtifactExtractor,
    ExtractorState,
    extract_artifact,
    message_prose,
)


def feed_all(deltas: list[str]) -> tuple[ArtifactExtractor, str | None]:
    """Feed deltas in order, returning the extractor and the last applied artifact."""
    extractor = ArtifactExtractor()
    artifact = None
    for delta in deltas:
        candidate = extractor.feed(delta)
        if candidate is not None:
            artifact = candidate
    return extractor, artifact


class TestLiteralCases:
    """Whole-text extraction."""

    def test_closed_block_with_info_word(self):
        assert extract_artifact("```html\n<div>A</div>\n```") == "<div>A</div>\n\n"

    def test_open_block_yields_trailing_content(self):
        assert extract_artifact("```\nfoo") == "foo"

    def test_two_blocks_are_concatenated(self):
        assert extract_artifact("```\nA\n``````\nB\n```") == "A\n\nB\n\n"

    def test_two_blocks_with_prose_between(self):
        text = "First:\n```\nA\n```\nand then:\n```js\nB\n```\nDone."
        assert extract_artifact(text) == "A\n\nB\n\n"

    def test_closed_block_then_open_block(self):
        text = "```\nA\n```\nmore\n```css\nbody {"
        assert extract_artifact(text) == "A\n\nbody {"

    def test_inner_text_keeps_all_but_one_trailing_newline(self):
        assert extract_artifact("```\nA\n\n```") == "A\n\n\n"

    def test_no_fence_returns_none(self):
        refusal = "The bot only adds code, fixes errors and improves the code."
        assert extract_artifact(refusal) is None

    def test_empty_block_returns_none(self):
        assert extract_artifact("```html\n\n```") is None

    def test_whitespace_only_block_returns_none(self):
        assert extract_artifact("```\n   \n```") is None

    def test_fence_without_newline_is_not_an_opening(self):
        assert extract_artifact("use ``` inline please") is None

    def test_pending_opening_fence_is_not_consumed(self):
        assert extract_artifact("Here it is:\n```html") is None


class TestIncrementalFeeding:
    """Delta-by-delta behavior."""

    def test_progressive_updates_while_block_is_open(self):
        extractor = ArtifactExtractor()
        assert extractor.feed("Sure!\n") is None
        assert extractor.feed("```html\n<h1>") == "<h1>"
        assert extractor.state == ExtractorState.INSIDE_OPEN_BLOCK
        assert extractor.feed("Hi</h1>\n") == "<h1>Hi</h1>\n"
        assert extractor.feed("```") == "<h1>Hi</h1>\n\n"
        assert extractor.state == ExtractorState.OUTSIDE_BLOCK
        assert extractor.completed_blocks == ["<h1>Hi</h1>"]

    def test_opening_fence_split_across_deltas(self):
        _, artifact = feed_all(["`", "``h", "tml", "\n<p>x</p>\n`", "``"])
        assert artifact == "<p>x</p>\n\n"

    def test_closing_fence_split_across_deltas(self):
        extractor = ArtifactExtractor()
        extractor.feed("```\nabc\n`")
        assert extractor.state == ExtractorState.INSIDE_OPEN_BLOCK
        extractor.feed("`")
        assert extractor.state == ExtractorState.INSIDE_OPEN_BLOCK
        assert extractor.feed("`") == "abc\n\n"
        assert extractor.state == ExtractorState.OUTSIDE_BLOCK

    @pytest.mark.parametrize(
        "text",
        [
            "```html\n<div>A</div>\n```",
            "intro\n```\nA\n```\nmid\n```py\nB\n```\nend",
            "```\nA\n``````\nB\n```",
            "```css\nbody { color: red; }",
            "no code here at all",
        ],
    )
    def test_character_by_character_matches_whole_text(self, text):
        _, artifact = feed_all(list(text))
        assert artifact == extract_artifact(text)

    def test_empty_candidate_keeps_previous_artifact(self):
        """A response without code never yields a replacement."""
        _, artifact = feed_all(["I can only ", "help with code."])
        assert artifact is None

    def test_cumulative_text_is_tracked(self):
        extractor, _ = feed_all(["a", "b", "c"])
        assert extractor.text == "abc"


class TestMessageProse:
    """Display stripping of fenced regions."""

    def test_strips_complete_blocks(self):
        assert message_prose("Here:\n```html\n<p/>\n```\nEnjoy!") == "Here:\n\nEnjoy!"

    def test_strips_trailing_open_block(self):
        assert message_prose("Working on it\n```js\nconst a") == "Working on it"

    def test_empty_text(self):
        assert message_prose("") == ""
