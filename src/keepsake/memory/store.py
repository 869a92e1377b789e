"""SQLite storage for facts and continuity state."""

import json
import sqlite3
from pathlib import Path

from .models import ContinuitySummary, Fact

_FACT_COLUMNS = (
    "id, identity, subject, category, key, value, importance, confidence, "
    "last_mentioned_at, created_at, updated_at"
)


class MemoryStore:
    """Persistent storage using SQLite.

    Facts are unique per (identity, subject, key); continuity rows are unique
    per (identity, subject). Every statement is scoped to the acting identity.
    Methods raise ``sqlite3.Error``; callers decide how failures surface.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS facts (
                id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                identity           TEXT NOT NULL,
                subject            TEXT NOT NULL,
                category           TEXT NOT NULL,
                key                TEXT NOT NULL,
                value              TEXT NOT NULL,
                importance         INTEGER NOT NULL DEFAULT 3,
                confidence         REAL NOT NULL DEFAULT 3,
                last_mentioned_at  TEXT,
                created_at         TEXT NOT NULL,
                updated_at         TEXT NOT NULL,
                UNIQUE(identity, subject, key)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_facts_subject ON facts(identity, subject)"
        )
        conn.execute("""
            CREATE TABLE IF NOT EXISTS continuity (
                identity       TEXT NOT NULL,
                subject        TEXT NOT NULL,
                enabled        INTEGER NOT NULL DEFAULT 1,
                summary        TEXT NOT NULL DEFAULT '',
                open_loops     TEXT NOT NULL DEFAULT '[]',
                next_question  TEXT NOT NULL DEFAULT '',
                current_goal   TEXT NOT NULL DEFAULT '',
                last_advice    TEXT NOT NULL DEFAULT '',
                updated_at     TEXT,
                PRIMARY KEY (identity, subject)
            )
        """)
        conn.commit()

    # -- facts -------------------------------------------------------------

    def upsert_facts(self, facts: list[Fact], now: str) -> int:
        """Insert or update facts in one transaction.

        Conflicts on (identity, subject, key) update the existing row. Both
        paths set ``updated_at`` and ``last_mentioned_at`` to ``now``.

        Args:
            facts: Facts to write; ``id`` and timestamps are ignored.
            now: ISO timestamp for this write.

        Returns:
            Number of rows written.
        """
        if not facts:
            return 0

        rows = [
            (
                f.identity, f.subject, f.category, f.key, f.value,
                f.importance, f.confidence, now, now, now,
            )
            for f in facts
        ]
        conn = self._get_connection()
        with conn:
            conn.executemany(
                """
                INSERT INTO facts (
                    identity, subject, category, key, value, importance,
                    confidence, last_mentioned_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(identity, subject, key) DO UPDATE SET
                    category = excluded.category,
                    value = excluded.value,
                    importance = excluded.importance,
                    confidence = excluded.confidence,
                    last_mentioned_at = excluded.last_mentioned_at,
                    updated_at = excluded.updated_at
                """,
                rows,
            )
        return len(rows)

    def touch(self, identity: str, subject: str, keys: list[str], now: str) -> int:
        """Set last_mentioned_at for existing facts with the given keys.

        Returns:
            Number of rows touched.
        """
        if not keys:
            return 0

        placeholders = ", ".join("?" for _ in keys)
        conn = self._get_connection()
        with conn:
            cursor = conn.execute(
                f"""
                UPDATE facts SET last_mentioned_at = ?
                WHERE identity = ? AND subject = ? AND key IN ({placeholders})
                """,
                (now, identity, subject, *keys),
            )
        return cursor.rowcount

    def select_facts(self, identity: str, subject: str, limit: int | None = None) -> list[Fact]:
        """Facts for a subject, most salient and most recent first."""
        conn = self._get_connection()
        cursor = conn.execute(
            f"""
            SELECT {_FACT_COLUMNS} FROM facts
            WHERE identity = ? AND subject = ?
            ORDER BY importance DESC,
                     last_mentioned_at IS NULL, last_mentioned_at DESC,
                     updated_at DESC
            LIMIT ?
            """,
            (identity, subject, -1 if limit is None else limit),
        )
        return [self._row_to_fact(row) for row in cursor.fetchall()]

    def get_fact(self, identity: str, fact_id: int) -> Fact | None:
        """Get one fact by id, or None if missing or not owned."""
        conn = self._get_connection()
        cursor = conn.execute(
            f"SELECT {_FACT_COLUMNS} FROM facts WHERE identity = ? AND id = ?",
            (identity, fact_id),
        )
        row = cursor.fetchone()
        return self._row_to_fact(row) if row else None

    def update_fact(
        self,
        identity: str,
        fact_id: int,
        now: str,
        *,
        value: str | None = None,
        category: str | None = None,
        importance: int | None = None,
    ) -> bool:
        """Apply a user edit to one fact.

        Returns:
            True if a fact was updated, False otherwise.
        """
        changes: dict[str, object] = {}
        if value is not None:
            changes["value"] = value
        if category is not None:
            changes["category"] = category
        if importance is not None:
            changes["importance"] = importance
        if not changes:
            return False

        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn = self._get_connection()
        with conn:
            cursor = conn.execute(
                f"UPDATE facts SET {assignments}, updated_at = ? WHERE identity = ? AND id = ?",
                (*changes.values(), now, identity, fact_id),
            )
        return cursor.rowcount > 0

    def delete_facts(self, identity: str, fact_ids: list[int]) -> int:
        """Delete facts by id.

        Returns:
            Number of facts deleted.
        """
        if not fact_ids:
            return 0

        placeholders = ", ".join("?" for _ in fact_ids)
        conn = self._get_connection()
        with conn:
            cursor = conn.execute(
                f"DELETE FROM facts WHERE identity = ? AND id IN ({placeholders})",
                (identity, *fact_ids),
            )
        return cursor.rowcount

    # -- continuity --------------------------------------------------------

    def get_continuity(self, identity: str, subject: str) -> ContinuitySummary | None:
        """Get the continuity row, or None if it was never created."""
        conn = self._get_connection()
        cursor = conn.execute(
            """
            SELECT identity, subject, enabled, summary, open_loops, next_question,
                   current_goal, last_advice, updated_at
            FROM continuity WHERE identity = ? AND subject = ?
            """,
            (identity, subject),
        )
        row = cursor.fetchone()
        if row is None:
            return None

        try:
            loops = json.loads(row["open_loops"] or "[]")
        except json.JSONDecodeError:
            loops = []
        if not isinstance(loops, list):
            loops = []

        return ContinuitySummary(
            identity=row["identity"],
            subject=row["subject"],
            enabled=bool(row["enabled"]),
            summary=row["summary"] or "",
            open_loops=[str(loop) for loop in loops],
            next_question=row["next_question"] or "",
            current_goal=row["current_goal"] or "",
            last_advice=row["last_advice"] or "",
            updated_at=row["updated_at"],
        )

    def upsert_continuity(self, state: ContinuitySummary, now: str) -> None:
        """Write every continuity field except ``enabled``.

        A new row starts with ``state.enabled``; an existing row keeps its flag
        so a concurrent toggle is not overwritten.
        """
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO continuity (
                    identity, subject, enabled, summary, open_loops,
                    next_question, current_goal, last_advice, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(identity, subject) DO UPDATE SET
                    summary = excluded.summary,
                    open_loops = excluded.open_loops,
                    next_question = excluded.next_question,
                    current_goal = excluded.current_goal,
                    last_advice = excluded.last_advice,
                    updated_at = excluded.updated_at
                """,
                (
                    state.identity,
                    state.subject,
                    int(state.enabled),
                    state.summary,
                    json.dumps(state.open_loops),
                    state.next_question,
                    state.current_goal,
                    state.last_advice,
                    now,
                ),
            )

    def set_enabled(self, identity: str, subject: str, enabled: bool, now: str) -> None:
        """Set only the ``enabled`` flag, creating the row if needed."""
        conn = self._get_connection()
        with conn:
            conn.execute(
                """
                INSERT INTO continuity (identity, subject, enabled, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(identity, subject) DO UPDATE SET
                    enabled = excluded.enabled
                """,
                (identity, subject, int(enabled), now),
            )

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _row_to_fact(self, row: sqlite3.Row) -> Fact:
        """Convert a database row to a Fact."""
        return Fact(
            id=row["id"],
            identity=row["identity"],
            subject=row["subject"],
            category=row["category"],
            key=row["key"],
            value=row["value"],
            importance=row["importance"],
            confidence=row["confidence"],
            last_mentioned_at=row["last_mentioned_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
