"""Chat transcript source: ordered turns per (identity, subject)."""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Protocol


@dataclass(frozen=True)
class ChatTurn:
    """One message in a conversation about a subject."""

    role: str
    text: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatTurn:
        return cls(
            role=str(data["role"]),
            text=str(data["text"]),
            timestamp=float(data.get("timestamp", 0.0)),
        )


class TranscriptSource(Protocol):
    """Where the pipeline reads prior turns from."""

    def get_turns(self, identity: str, subject: str, limit: int = 20) -> list[ChatTurn]:
        ...


def select_window(turns: list[ChatTurn], recent: int = 6) -> tuple[list[str], str | None]:
    """Pick the texts sent to extraction.

    Returns:
        The last ``recent`` user-turn texts (oldest first) and the text of the
        last assistant turn before the newest user turn, if any.
    """
    if recent <= 0:
        return [], None

    user_indexes = [i for i, turn in enumerate(turns) if turn.role == "user" and turn.text.strip()]
    if not user_indexes:
        return [], None

    user_turns = [turns[i].text for i in user_indexes[-recent:]]

    last_assistant = None
    for turn in reversed(turns[: user_indexes[-1]]):
        if turn.role == "assistant" and turn.text.strip():
            last_assistant = turn.text
            break

    return user_turns, last_assistant


class TranscriptStore:
    """Keeps transcripts as one JSON file per (identity, subject)."""

    def __init__(self, transcripts_dir: Path, max_turns: int = 200) -> None:
        self.transcripts_dir = transcripts_dir
        self.max_turns = max_turns
        self.transcripts_dir.mkdir(parents=True, exist_ok=True)

    def _transcript_file(self, identity: str, subject: str) -> Path:
        """Get the file path for a transcript."""
        digest = hashlib.sha256(f"{identity}\0{subject}".encode()).hexdigest()[:32]
        return self.transcripts_dir / f"{digest}.json"

    def _load(self, identity: str, subject: str) -> list[ChatTurn]:
        path = self._transcript_file(identity, subject)
        if not path.exists():
            return []

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [ChatTurn.from_dict(item) for item in data.get("turns", [])]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return []

    def _save(self, identity: str, subject: str, turns: list[ChatTurn]) -> None:
        path = self._transcript_file(identity, subject)
        data = {
            "identity": identity,
            "subject": subject,
            "turns": [turn.to_dict() for turn in turns[-self.max_turns:]],
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def add_turn(self, identity: str, subject: str, role: str, text: str) -> ChatTurn:
        """Append a turn to the transcript."""
        turn = ChatTurn(role=role, text=text)
        turns = self._load(identity, subject)
        turns.append(turn)
        self._save(identity, subject, turns)
        return turn

    def get_turns(self, identity: str, subject: str, limit: int = 20) -> list[ChatTurn]:
        """Most recent turns, oldest first."""
        if limit <= 0:
            return []
        return self._load(identity, subject)[-limit:]

    def clear(self, identity: str, subject: str) -> None:
        """Delete a transcript."""
        path = self._transcript_file(identity, subject)
        if path.exists():
            path.unlink()
