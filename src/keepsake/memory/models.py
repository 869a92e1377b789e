"""Data models for the memory pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FactCandidate:
    """A fact proposed by an extractor, before it is persisted.

    Attributes:
        category: Coarse taxonomy label (e.g. 'health', 'timeline').
        key: Stable identifier, unique per (identity, subject).
        value: The fact content.
        importance: Salience score, 1-5.
        confidence: Certainty score attached by the extractor, 1-5.
    """

    category: str
    key: str
    value: str
    importance: int = 3
    confidence: float = 3


@dataclass(frozen=True)
class Fact:
    """A fact stored about a subject.

    Attributes:
        identity: Owning actor.
        subject: The person or topic the fact is about.
        category: Coarse taxonomy label.
        key: Stable identifier, unique per (identity, subject).
        value: The fact content.
        importance: Salience score.
        confidence: Certainty score.
        id: Database ID, None for facts not yet stored.
        last_mentioned_at: ISO timestamp of the latest mention.
        created_at: ISO timestamp when created.
        updated_at: ISO timestamp when last updated.
    """

    identity: str
    subject: str
    category: str
    key: str
    value: str
    importance: int = 3
    confidence: float = 3
    id: int | None = None
    last_mentioned_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def as_known(self) -> dict[str, str]:
        """Shape sent to the extraction service as an already-known fact."""
        return {"key": self.key, "value": self.value, "category": self.category}


@dataclass
class ContinuitySummary:
    """Rolling cross-turn state for one (identity, subject) pair."""

    identity: str
    subject: str
    enabled: bool = True
    summary: str = ""
    open_loops: list[str] = field(default_factory=list)
    next_question: str = ""
    current_goal: str = ""
    last_advice: str = ""
    updated_at: str | None = None


@dataclass(frozen=True)
class ContinuityDelta:
    """Continuity update proposed by the extraction service."""

    summary: str = ""
    open_loops: tuple[str, ...] = ()
    next_question: str = ""
    current_goal: str = ""
    last_advice: str = ""

    def is_empty(self) -> bool:
        return not (
            self.summary
            or self.open_loops
            or self.next_question
            or self.current_goal
            or self.last_advice
        )


@dataclass
class ExtractionOutcome:
    """Result of one extraction run.

    Attributes:
        facts: Candidate facts (remote on success, local on fallback).
        mentioned_keys: Existing keys the service judged re-mentioned.
        continuity: Optional continuity update.
        error: Diagnostic error code, None on success.
        fallback_used: True when the local heuristics produced the facts.
        skipped: True when capture is disabled for the subject.
    """

    facts: list[FactCandidate] = field(default_factory=list)
    mentioned_keys: list[str] = field(default_factory=list)
    continuity: ContinuityDelta | None = None
    error: str | None = None
    fallback_used: bool = False
    skipped: bool = False


@dataclass
class DisplayMemory:
    """Presentation item that may stand for several stored facts.

    Never authoritative: edits and deletes resolve to ``source_fact_ids``.
    """

    id: int | None
    subject: str
    category: str
    key: str
    value: str
    importance: int
    confidence: float
    created_at: str | None
    updated_at: str | None
    last_mentioned_at: str | None
    source_fact_ids: list[int | None] = field(default_factory=list)
    is_merged: bool = False
    merged_ages: list[str] = field(default_factory=list)


@dataclass
class DisplaySection:
    """Display items sharing one category."""

    category: str
    memories: list[DisplayMemory] = field(default_factory=list)
