"""Rolling continuity state per subject."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import datetime

from ..logging import EventLog
from .facts import utc_now
from .models import ContinuityDelta, ContinuitySummary
from .result import ErrorKind, Result
from .store import MemoryStore

MAX_OPEN_LOOPS = 8


def merge_open_loops(
    existing: list[str], new: list[str] | tuple[str, ...], limit: int = MAX_OPEN_LOOPS
) -> list[str]:
    """Union of loops keeping the most recent ``limit``.

    Loops mentioned again move to the end, so new entries are the last to be
    dropped when the list is truncated.
    """
    fresh = list(dict.fromkeys(loop.strip() for loop in new if loop and loop.strip()))
    kept = [
        loop.strip() for loop in existing
        if loop and loop.strip() and loop.strip() not in fresh
    ]
    merged = list(dict.fromkeys([*kept, *fresh]))
    return merged[-limit:]


class ContinuityManager:
    """Reads and merges the single continuity row of each subject."""

    def __init__(
        self,
        store: MemoryStore,
        log: EventLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.log = log or EventLog()
        self.clock = clock

    def _defaults(self, identity: str, subject: str) -> ContinuitySummary:
        return ContinuitySummary(identity=identity, subject=subject)

    async def get_continuity(self, identity: str, subject: str) -> ContinuitySummary:
        """Current state, or defaults (enabled) if absent or unreadable."""
        try:
            state = self.store.get_continuity(identity, subject)
        except sqlite3.Error as e:
            self.log.warning("continuity_read_failed", identity=identity, subject=subject, error=str(e))
            return self._defaults(identity, subject)
        return state or self._defaults(identity, subject)

    async def is_enabled(self, identity: str, subject: str) -> bool:
        state = await self.get_continuity(identity, subject)
        return state.enabled

    async def merge_continuity(
        self, identity: str, subject: str, delta: ContinuityDelta | None
    ) -> Result[ContinuitySummary]:
        """Merge a continuity update into the stored row.

        Open loops are unioned and capped. Text fields are replaced only by
        non-empty values. The prior state is read immediately before the write.
        """
        delta = delta or ContinuityDelta()
        existing = await self.get_continuity(identity, subject)

        merged = ContinuitySummary(
            identity=identity,
            subject=subject,
            enabled=existing.enabled,
            summary=delta.summary.strip() or existing.summary,
            open_loops=merge_open_loops(existing.open_loops, delta.open_loops),
            next_question=delta.next_question.strip() or existing.next_question,
            current_goal=delta.current_goal.strip() or existing.current_goal,
            last_advice=delta.last_advice.strip() or existing.last_advice,
        )

        now = self.clock().isoformat()
        try:
            self.store.upsert_continuity(merged, now)
        except sqlite3.Error as e:
            self.log.warning("continuity_write_failed", identity=identity, subject=subject, error=str(e))
            return Result.failure(ErrorKind.PERSISTENCE, str(e))

        merged.updated_at = now
        self.log.log(
            "continuity_merged", identity=identity, subject=subject,
            count=len(merged.open_loops),
        )
        return Result.success(merged)

    async def set_enabled(self, identity: str, subject: str, enabled: bool) -> Result[bool]:
        """Toggle fact capture for a subject without touching other fields.

        Disabling only stops new captures; stored facts stay visible.
        """
        try:
            self.store.set_enabled(identity, subject, enabled, self.clock().isoformat())
        except sqlite3.Error as e:
            self.log.warning("continuity_toggle_failed", identity=identity, subject=subject, error=str(e))
            return Result.failure(ErrorKind.PERSISTENCE, str(e))

        self.log.log("continuity_toggled", identity=identity, subject=subject, enabled=enabled)
        return Result.success(enabled)
