"""SQLite-backed voting session storage."""

from __future__ import annotations

import contextlib
import sqlite3
from threading import RLock

from escrow_tribunal.services.database import connect, transaction
from escrow_tribunal.services.records import SessionRecord, VoteRecord


class DuplicateSessionError(Exception):
    """Raised when a second session is opened for the same case."""


class DuplicateVoteError(Exception):
    """Raised when a voter casts a second vote in the same session."""


class SessionStore:
    """SQLite-backed storage for voting sessions and their votes."""

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    case_id TEXT PRIMARY KEY,
                    started_by TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    finalized INTEGER NOT NULL DEFAULT 0,
                    consensus_percent INTEGER,
                    dispersion INTEGER,
                    outlier_threshold INTEGER,
                    reward_pool INTEGER,
                    finalized_at TEXT,
                    karma_applied INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS votes (
                    case_id TEXT NOT NULL REFERENCES sessions(case_id),
                    voter_id TEXT NOT NULL,
                    value INTEGER NOT NULL CHECK (value BETWEEN 0 AND 100),
                    karma INTEGER NOT NULL,
                    cast_at TEXT NOT NULL,
                    deviation INTEGER,
                    is_outlier INTEGER NOT NULL DEFAULT 0,
                    karma_delta INTEGER,
                    PRIMARY KEY (case_id, voter_id)
                );
                """
            )

    @staticmethod
    def _row_to_vote(row: sqlite3.Row) -> VoteRecord:
        return VoteRecord(
            case_id=str(row["case_id"]),
            voter_id=str(row["voter_id"]),
            value=int(row["value"]),
            karma=int(row["karma"]),
            cast_at=str(row["cast_at"]),
            deviation=int(row["deviation"]) if row["deviation"] is not None else None,
            is_outlier=bool(row["is_outlier"]),
            karma_delta=int(row["karma_delta"]) if row["karma_delta"] is not None else None,
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row, votes: list[VoteRecord]) -> SessionRecord:
        def _optional_int(column: str) -> int | None:
            value = row[column]
            return int(value) if value is not None else None

        return SessionRecord(
            case_id=str(row["case_id"]),
            started_by=str(row["started_by"]),
            start_time=str(row["start_time"]),
            end_time=str(row["end_time"]),
            finalized=bool(row["finalized"]),
            consensus_percent=_optional_int("consensus_percent"),
            dispersion=_optional_int("dispersion"),
            outlier_threshold=_optional_int("outlier_threshold"),
            reward_pool=_optional_int("reward_pool"),
            finalized_at=str(row["finalized_at"]) if row["finalized_at"] is not None else None,
            karma_applied=bool(row["karma_applied"]),
            votes=votes,
        )

    def insert_session(self, session: SessionRecord) -> None:
        """Open a session. A case gets at most one."""
        with self._lock:
            try:
                self._db.execute(
                    "INSERT INTO sessions (case_id, started_by, start_time, end_time) "
                    "VALUES (?, ?, ?, ?)",
                    (session.case_id, session.started_by, session.start_time, session.end_time),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateSessionError(
                    f"A voting session already exists for case_id={session.case_id}"
                ) from exc

    def get_session(self, case_id: str) -> SessionRecord | None:
        """Get a session including its votes."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM sessions WHERE case_id = ?", (case_id,)
            ).fetchone()
            if row is None:
                return None
            votes = self.get_votes(case_id)
        return self._row_to_session(row, votes)

    def insert_vote(self, vote: VoteRecord) -> None:
        """Append a vote. Votes are immutable once cast."""
        with self._lock:
            try:
                self._db.execute(
                    "INSERT INTO votes (case_id, voter_id, value, karma, cast_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (vote.case_id, vote.voter_id, vote.value, vote.karma, vote.cast_at),
                )
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower() or "primary key" in str(exc).lower():
                    raise DuplicateVoteError(
                        f"voter_id={vote.voter_id} already voted on case_id={vote.case_id}"
                    ) from exc
                raise

    def get_vote(self, case_id: str, voter_id: str) -> VoteRecord | None:
        """Get a single vote or None."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM votes WHERE case_id = ? AND voter_id = ?",
                (case_id, voter_id),
            ).fetchone()
        return self._row_to_vote(row) if row is not None else None

    def get_votes(self, case_id: str) -> list[VoteRecord]:
        """Votes for a session in casting order."""
        with self._lock:
            rows = self._db.execute(
                "SELECT * FROM votes WHERE case_id = ? ORDER BY cast_at, voter_id",
                (case_id,),
            ).fetchall()
        return [self._row_to_vote(row) for row in rows]

    def count_votes(self, case_id: str) -> int:
        """Number of votes cast in a session."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM votes WHERE case_id = ?", (case_id,)
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def persist_finalization(self, session: SessionRecord, votes: list[VoteRecord]) -> int:
        """Write session results and per-vote outcomes atomically.

        Returns 0 without writing anything if the session was already finalized.
        """
        with self._lock, transaction(self._db):
            cursor = self._db.execute(
                """
                UPDATE sessions
                SET finalized = 1, consensus_percent = ?, dispersion = ?,
                    outlier_threshold = ?, reward_pool = ?, finalized_at = ?
                WHERE case_id = ? AND finalized = 0
                """,
                (
                    session.consensus_percent,
                    session.dispersion,
                    session.outlier_threshold,
                    session.reward_pool,
                    session.finalized_at,
                    session.case_id,
                ),
            )
            if cursor.rowcount != 1:
                return 0
            for vote in votes:
                self._db.execute(
                    "UPDATE votes SET deviation = ?, is_outlier = ?, karma_delta = ? "
                    "WHERE case_id = ? AND voter_id = ?",
                    (
                        vote.deviation,
                        int(vote.is_outlier),
                        vote.karma_delta,
                        vote.case_id,
                        vote.voter_id,
                    ),
                )
            return 1

    def mark_karma_applied(self, case_id: str) -> int:
        """Flag a finalized session's karma as written. Returns 0 if already flagged."""
        with self._lock:
            cursor = self._db.execute(
                "UPDATE sessions SET karma_applied = 1 "
                "WHERE case_id = ? AND finalized = 1 AND karma_applied = 0",
                (case_id,),
            )
        return int(cursor.rowcount)

    def count_sessions(self, *, finalized: bool | None = None) -> int:
        """Count sessions, optionally only finalized or only open ones."""
        query = "SELECT COUNT(*) FROM sessions"
        params: list[object] = []
        if finalized is not None:
            query += " WHERE finalized = ?"
            params.append(int(finalized))
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock, contextlib.suppress(sqlite3.Error):
            self._db.close()
