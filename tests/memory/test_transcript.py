"""Tests for transcripts and turn windowing."""

from pathlib import Path

import pytest

from keepsake.memory import ChatTurn, TranscriptStore, select_window


@pytest.fixture
def transcripts(tmp_path: Path) -> TranscriptStore:
    return TranscriptStore(tmp_path / "transcripts")


def turns(*pairs) -> list[ChatTurn]:
    return [ChatTurn(role=role, text=text, timestamp=float(i)) for i, (role, text) in enumerate(pairs)]


class TestSelectWindow:
    """Tests for select_window."""

    def test_last_user_turns_and_assistant(self):
        history = turns(
            ("user", "one"), ("assistant", "a1"), ("user", "two"),
            ("assistant", "a2"), ("user", "three"),
        )

        user_turns, assistant = select_window(history, recent=2)

        assert user_turns == ["two", "three"]
        assert assistant == "a2"

    def test_assistant_after_newest_user_ignored(self):
        history = turns(("assistant", "hello"), ("user", "hi there"), ("assistant", "reply"))

        user_turns, assistant = select_window(history)

        assert user_turns == ["hi there"]
        assert assistant == "hello"

    def test_no_user_turns(self):
        assert select_window(turns(("assistant", "hello"))) == ([], None)
        assert select_window([]) == ([], None)

    def test_blank_turns_skipped(self):
        user_turns, _ = select_window(turns(("user", "real"), ("user", "  ")))
        assert user_turns == ["real"]


class TestTranscriptStore:
    """Tests for TranscriptStore."""

    def test_add_and_get(self, transcripts: TranscriptStore):
        transcripts.add_turn("u1", "mom", "user", "hello")
        transcripts.add_turn("u1", "mom", "assistant", "hi")

        loaded = transcripts.get_turns("u1", "mom")

        assert [(t.role, t.text) for t in loaded] == [("user", "hello"), ("assistant", "hi")]

    def test_limit_keeps_newest(self, transcripts: TranscriptStore):
        for i in range(5):
            transcripts.add_turn("u1", "mom", "user", f"turn {i}")

        assert [t.text for t in transcripts.get_turns("u1", "mom", limit=2)] == ["turn 3", "turn 4"]

    def test_separate_subjects(self, transcripts: TranscriptStore):
        transcripts.add_turn("u1", "mom", "user", "about mom")
        transcripts.add_turn("u1", "dad", "user", "about dad")

        assert [t.text for t in transcripts.get_turns("u1", "mom")] == ["about mom"]

    def test_persists_across_instances(self, tmp_path: Path):
        TranscriptStore(tmp_path / "t").add_turn("u1", "mom", "user", "remember me")
        assert TranscriptStore(tmp_path / "t").get_turns("u1", "mom")[0].text == "remember me"

    def test_max_turns(self, tmp_path: Path):
        store = TranscriptStore(tmp_path / "t", max_turns=3)
        for i in range(5):
            store.add_turn("u1", "mom", "user", f"turn {i}")

        assert len(store.get_turns("u1", "mom")) == 3

    def test_corrupt_file_reads_empty(self, transcripts: TranscriptStore):
        transcripts.add_turn("u1", "mom", "user", "hello")
        transcripts._transcript_file("u1", "mom").write_text("{not json")

        assert transcripts.get_turns("u1", "mom") == []

    def test_clear(self, transcripts: TranscriptStore):
        transcripts.add_turn("u1", "mom", "user", "hello")
        transcripts.clear("u1", "mom")
        transcripts.clear("u1", "mom")

        assert transcripts.get_turns("u1", "mom") == []
