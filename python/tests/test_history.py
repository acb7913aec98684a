"""Tests for the artifact version history."""

import pytest

from codeloom.services.history import VersionHistory


class TestVersionHistory:
    """push_version / undo / redo semantics."""

    def test_empty_history(self):
        history = VersionHistory()
        assert len(history) == 0
        assert history.cursor == -1
        assert history.current is None
        assert history.undo() is None
        assert history.redo() is None

    def test_seeded_with_code(self):
        history = VersionHistory.seeded("<p>v1</p>")
        assert history.versions == ["<p>v1</p>"]
        assert history.cursor == 0

    def test_seeded_without_code(self):
        history = VersionHistory.seeded("")
        assert len(history) == 0
        assert history.cursor == -1

    def test_push_moves_cursor_to_newest(self):
        history = VersionHistory()
        history.push_version("a")
        history.push_version("b")
        assert history.versions == ["a", "b"]
        assert history.cursor == 1
        assert history.current == "b"

    def test_push_ignores_empty_text(self):
        history = VersionHistory()
        assert history.push_version("") is False
        assert len(history) == 0

    def test_undo_and_redo_do_not_change_length(self):
        history = VersionHistory(["a", "b", "c"])
        assert history.undo() == "b"
        assert history.undo() == "a"
        assert history.undo() is None
        assert len(history) == 3
        assert history.redo() == "b"
        assert history.redo() == "c"
        assert history.redo() is None
        assert len(history) == 3

    def test_undo_then_redo_round_trip(self):
        history = VersionHistory()
        for text in ["v1", "v2", "v3"]:
            history.push_version(text)
        history.undo()
        before = history.current
        history.undo()
        assert history.redo() == before

    def test_push_after_undo_discards_forward_branch(self):
        history = VersionHistory(["a", "b", "c"])
        history.undo()
        history.undo()
        history.push_version("x")
        assert history.versions == ["a", "x"]
        assert history.cursor == 1
        assert history.can_redo is False
        assert history.redo() is None

    @pytest.mark.parametrize(
        "versions,cursor",
        [(["a"], 1), (["a", "b"], -1), ([], 0)],
    )
    def test_rejects_cursor_out_of_range(self, versions, cursor):
        with pytest.raises(ValueError):
            VersionHistory(versions, cursor)

    def test_interleaved_operations_keep_cursor_invariant(self):
        history = VersionHistory()
        operations = ["push:a", "push:b", "undo", "push:c", "redo", "undo", "undo", "push:d"]
        for op in operations:
            if op.startswith("push:"):
                history.push_version(op[5:])
            elif op == "undo":
                history.undo()
            else:
                history.redo()
            assert 0 <= history.cursor < len(history)
        assert history.versions == ["a", "d"]
