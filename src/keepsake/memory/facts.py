"""Fact upsert engine: filtering, idempotent writes and recency touches."""

from __future__ import annotations

import re
import sqlite3
from collections.abc import Callable
from datetime import datetime, timezone

from ..logging import EventLog
from .models import Fact, FactCandidate
from .result import ErrorKind, Result
from .store import MemoryStore

MIN_VALUE_LENGTH = 3
MIN_CONFIDENCE = 2

_AGE_REFERENCE_LABELS = {"age_reference", "age reference", "age"}
_BARE_AGE = re.compile(
    r"^\s*(?:age[d]?\s*)?\d{1,3}\s*(?:years?(?:\s*old)?|yrs?|y/?o)?\s*$", re.IGNORECASE
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def rejection_reason(fact: FactCandidate) -> str | None:
    """Why a candidate is too low-signal to store, or None if it is kept."""
    if not fact.key or not fact.key.strip():
        return "missing_key"
    if len(fact.value.strip()) < MIN_VALUE_LENGTH:
        return "value_too_short"
    if fact.confidence < MIN_CONFIDENCE:
        return "low_confidence"

    labels = {fact.category.strip().lower(), fact.key.strip().lower()}
    if labels & _AGE_REFERENCE_LABELS and _BARE_AGE.match(fact.value):
        return "bare_age_reference"
    return None


class FactStore:
    """Writes candidate facts into the facts table.

    Public methods never raise: failures are logged and reported through
    :class:`Result` so callers can run them fire-and-forget.
    """

    def __init__(
        self,
        store: MemoryStore,
        log: EventLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.log = log or EventLog()
        self.clock = clock

    def _now(self) -> str:
        return self.clock().isoformat()

    def filter_facts(self, facts: list[FactCandidate]) -> list[FactCandidate]:
        """Drop low-signal candidates."""
        kept = []
        for fact in facts:
            reason = rejection_reason(fact)
            if reason is None:
                kept.append(fact)
            else:
                self.log.detail("fact_rejected", key=fact.key, reason=reason)
        return kept

    async def upsert_facts(
        self, identity: str, subject: str, facts: list[FactCandidate]
    ) -> Result[int]:
        """Insert or update facts keyed by (identity, subject, key).

        Args:
            identity: Acting user.
            subject: Subject the facts are about.
            facts: Candidate facts; low-signal ones are dropped first.

        Returns:
            Result with the number of rows written.
        """
        kept = self.filter_facts(facts)
        if not kept:
            return Result.success(0)

        rows = [
            Fact(
                identity=identity,
                subject=subject,
                category=fact.category,
                key=fact.key.strip(),
                value=fact.value.strip(),
                importance=int(fact.importance),
                confidence=fact.confidence,
            )
            for fact in kept
        ]

        try:
            count = self.store.upsert_facts(rows, self._now())
        except sqlite3.Error as e:
            self.log.warning(
                "upsert_failed", identity=identity, subject=subject,
                count=len(rows), error=str(e),
            )
            return Result.failure(ErrorKind.PERSISTENCE, str(e))

        self.log.log("facts_upserted", identity=identity, subject=subject, count=count)
        return Result.success(count)

    async def touch_facts(self, identity: str, subject: str, keys: list[str]) -> Result[int]:
        """Refresh last_mentioned_at for facts that were mentioned again."""
        keys = [key for key in dict.fromkeys(keys) if key]
        if not keys:
            return Result.success(0)

        try:
            count = self.store.touch(identity, subject, keys, self._now())
        except sqlite3.Error as e:
            self.log.warning("touch_failed", identity=identity, subject=subject, error=str(e))
            return Result.failure(ErrorKind.PERSISTENCE, str(e))

        self.log.log("facts_touched", identity=identity, subject=subject, count=count)
        return Result.success(count)

    async def list_facts(
        self, identity: str, subject: str, limit: int | None = 25
    ) -> list[Fact]:
        """Facts ordered by importance, recency of mention, then update time.

        Returns an empty list on any read failure.
        """
        try:
            return self.store.select_facts(identity, subject, limit)
        except sqlite3.Error as e:
            self.log.warning("list_failed", identity=identity, subject=subject, error=str(e))
            return []

    async def edit_fact(
        self,
        identity: str,
        fact_id: int,
        *,
        value: str | None = None,
        category: str | None = None,
        importance: int | None = None,
    ) -> Result[bool]:
        """Apply a user edit to one stored fact."""
        if value is not None and not value.strip():
            return Result.success(False)
        try:
            updated = self.store.update_fact(
                identity, fact_id, self._now(),
                value=value.strip() if value is not None else None,
                category=category,
                importance=importance,
            )
        except sqlite3.Error as e:
            self.log.warning("edit_failed", identity=identity, fact_id=fact_id, error=str(e))
            return Result.failure(ErrorKind.PERSISTENCE, str(e))
        return Result.success(updated)

    async def delete_facts(self, identity: str, fact_ids: list[int]) -> Result[int]:
        """Delete stored facts by id (explicit user deletion)."""
        ids = [fact_id for fact_id in dict.fromkeys(fact_ids) if fact_id is not None]
        try:
            count = self.store.delete_facts(identity, ids)
        except sqlite3.Error as e:
            self.log.warning("delete_failed", identity=identity, error=str(e))
            return Result.failure(ErrorKind.PERSISTENCE, str(e))

        self.log.log("facts_deleted", identity=identity, count=count)
        return Result.success(count)
