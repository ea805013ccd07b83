"""SQLite log of step status transitions."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path


class FlowTransitionStore:
    """Append-only transition log keyed by run id."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS step_transitions (
                    run_id TEXT NOT NULL,
                    step_id TEXT NOT NULL,
                    from_state TEXT NOT NULL,
                    to_state TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    reason TEXT NOT NULL
                )
                """
            )

    def record_transition(
        self,
        *,
        run_id: str,
        step_id: str,
        from_state: str,
        to_state: str,
        reason: str,
    ) -> None:
        """Insert one transition for a step."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO step_transitions (run_id, step_id, from_state, to_state, timestamp, reason)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (run_id, step_id, from_state, to_state, datetime.now(UTC).isoformat(), reason),
            )

    def list_transitions(self, run_id: str) -> list[tuple[str, str, str, str]]:
        """Return ``(step_id, from_state, to_state, reason)`` rows in insertion order."""
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT step_id, from_state, to_state, reason
                FROM step_transitions
                WHERE run_id = ?
                ORDER BY rowid ASC
                """,
                (run_id,),
            ).fetchall()
        return [(row[0], row[1], row[2], row[3]) for row in rows]
