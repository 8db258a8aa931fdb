"""
Session history storage using SQLite.

One row per refine call. The generate endpoint later attaches the final
output, and the feedback endpoint attaches ratings. Stages are stored as a
JSON string and decoded again on read.

Example:
    >>> async with SessionStore("data/promptforge.db") as sessions:
    ...     session_id = await sessions.create_session(
    ...         user_id="ip_127_0_0_1",
    ...         original_prompt="Explain quantum computing",
    ...         refined_prompt="Explain quantum computing to a beginner...",
    ...         stages=[{"stage": "generator", "output": "...", "reasoning": None}],
    ...         model="gemini-2.0-flash",
    ...         latency_ms=812,
    ...     )
    ...     record = await sessions.get_session(session_id)
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from promptforge.config.logging import get_logger

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    original_prompt TEXT NOT NULL,
    refined_prompt TEXT NOT NULL,
    stages TEXT NOT NULL,
    model TEXT NOT NULL,
    latency_ms INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    output_text TEXT,
    feedback_prompt REAL,
    feedback_output REAL,
    feedback_comment TEXT
);
CREATE INDEX IF NOT EXISTS ix_sessions_user_created ON sessions (user_id, created_at DESC);
"""

_FEEDBACK_COLUMNS = {
    "prompt": "feedback_prompt",
    "output": "feedback_output",
}


class SessionNotFoundError(KeyError):
    """Raised when a session id does not exist."""


class SessionStore:
    """
    Repository for session records.

    Args:
        database_path: SQLite file path, or ":memory:" for a throwaway database

    The connection is opened in initialize() so the store can be used as an
    async context manager alongside the other long-lived app resources.
    """

    def __init__(self, database_path: str | Path):
        self.database_path = str(database_path)
        self._conn: sqlite3.Connection | None = None

    async def initialize(self) -> None:
        """
        Open the database and create the schema if needed.

        Raises:
            RuntimeError: If the database cannot be opened
        """
        logger.info(f"Opening session database at {self.database_path}")
        try:
            if self.database_path != ":memory:":
                Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.database_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to open session database: {e}")
            raise RuntimeError(f"Could not open session database: {e}") from e

    async def shutdown(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Session database closed")

    async def __aenter__(self) -> "SessionStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("SessionStore not initialized. Call initialize() first.")
        return self._conn

    async def create_session(
        self,
        *,
        user_id: str,
        original_prompt: str,
        refined_prompt: str,
        stages: list[dict[str, Any]],
        model: str,
        latency_ms: int,
        session_id: str | None = None,
    ) -> str:
        """Insert a new session row and return its id."""
        session_id = session_id or str(uuid.uuid4())
        conn = self._connection()
        conn.execute(
            "INSERT INTO sessions (id, user_id, original_prompt, refined_prompt, stages, "
            "model, latency_ms, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                session_id,
                user_id,
                original_prompt,
                refined_prompt,
                json.dumps(stages),
                model,
                latency_ms,
                datetime.now(UTC).isoformat(),
            ),
        )
        conn.commit()
        return session_id

    async def set_output(self, session_id: str, output_text: str) -> bool:
        """Attach generated output to a session. Returns False if the id is unknown."""
        conn = self._connection()
        cursor = conn.execute(
            "UPDATE sessions SET output_text = ? WHERE id = ?",
            (output_text, session_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    async def set_feedback(
        self,
        session_id: str,
        kind: Literal["prompt", "output"],
        rating: float,
        comment: str | None = None,
    ) -> bool:
        """Record a rating for the refined prompt or the generated output."""
        column = _FEEDBACK_COLUMNS.get(kind)
        if column is None:
            raise ValueError(f"Unknown feedback type: {kind!r}")

        conn = self._connection()
        cursor = conn.execute(
            f"UPDATE sessions SET {column} = ?, feedback_comment = ? WHERE id = ?",
            (rating, comment, session_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    async def list_history(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent sessions for a caller, newest first."""
        cursor = self._connection().execute(
            "SELECT id, original_prompt, created_at FROM sessions "
            "WHERE user_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (user_id, limit),
        )
        return [dict(row) for row in cursor.fetchall()]

    async def get_session(self, session_id: str) -> dict[str, Any]:
        """
        Fetch a full session record.

        Raises:
            SessionNotFoundError: If no session has this id
        """
        row = self._connection().execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        if row is None:
            raise SessionNotFoundError(session_id)

        record = dict(row)
        record["stages"] = json.loads(record["stages"])
        return record
