"""SQLite-backed voter and karma audit storage."""

from __future__ import annotations

import contextlib
import sqlite3
from threading import RLock
from typing import Any

from escrow_tribunal.services.database import connect, transaction
from escrow_tribunal.services.records import KarmaAuditEntry, VoterRecord


class DuplicateVoterError(Exception):
    """Raised when inserting a voter record that already exists."""


class VoterStore:
    """SQLite-backed storage for voter records and the karma audit trail."""

    _VOTER_COLUMNS: tuple[str, ...] = (
        "voter_id",
        "karma",
        "active",
        "banned",
        "registered_at",
        "updated_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS voters (
                    voter_id TEXT PRIMARY KEY,
                    karma INTEGER NOT NULL CHECK (karma >= 0),
                    active INTEGER NOT NULL DEFAULT 1,
                    banned INTEGER NOT NULL DEFAULT 0,
                    registered_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS karma_audit (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    voter_id TEXT NOT NULL REFERENCES voters(voter_id),
                    old_karma INTEGER,
                    new_karma INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_karma_audit_voter ON karma_audit(voter_id, entry_id);
                CREATE INDEX IF NOT EXISTS ix_karma_audit_reason ON karma_audit(reason);
                """
            )

    @staticmethod
    def _row_to_voter(row: sqlite3.Row) -> VoterRecord:
        return VoterRecord(
            voter_id=str(row["voter_id"]),
            karma=int(row["karma"]),
            active=bool(row["active"]),
            banned=bool(row["banned"]),
            registered_at=str(row["registered_at"]),
            updated_at=str(row["updated_at"]),
        )

    def _insert_audit(self, entry: KarmaAuditEntry) -> None:
        self._db.execute(
            "INSERT INTO karma_audit (voter_id, old_karma, new_karma, reason, actor, recorded_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                entry.voter_id,
                entry.old_karma,
                entry.new_karma,
                entry.reason,
                entry.actor,
                entry.recorded_at,
            ),
        )

    def insert_voter(self, voter: VoterRecord, entry: KarmaAuditEntry) -> None:
        """Create a voter record together with its first audit entry."""
        with self._lock:
            try:
                with transaction(self._db):
                    self._db.execute(
                        "INSERT INTO voters "
                        "(voter_id, karma, active, banned, registered_at, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            voter.voter_id,
                            voter.karma,
                            int(voter.active),
                            int(voter.banned),
                            voter.registered_at,
                            voter.updated_at,
                        ),
                    )
                    self._insert_audit(entry)
            except sqlite3.IntegrityError as exc:
                raise DuplicateVoterError(f"Voter already exists: {voter.voter_id}") from exc

    def get_voter(self, voter_id: str) -> VoterRecord | None:
        """Look up a voter. Returns None if never registered."""
        with self._lock:
            row = self._db.execute(
                "SELECT * FROM voters WHERE voter_id = ?", (voter_id,)
            ).fetchone()
        return self._row_to_voter(row) if row is not None else None

    def update_voter(self, voter_id: str, updates: dict[str, Any], entry: KarmaAuditEntry) -> int:
        """Update voter columns and append an audit entry in one transaction."""
        if len(updates) == 0:
            return 0
        if any(column not in self._VOTER_COLUMNS or column == "voter_id" for column in updates):
            msg = "Attempted to update unknown voter column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [
            int(value) if isinstance(value, bool) else value for value in updates.values()
        ]
        params.append(voter_id)

        with self._lock, transaction(self._db):
            cursor = self._db.execute(
                "UPDATE voters SET " + set_clause + " WHERE voter_id = ?",  # nosec B608
                params,
            )
            if cursor.rowcount == 0:
                return 0
            self._insert_audit(entry)
            return int(cursor.rowcount)

    def apply_karma_changes(
        self,
        changes: dict[str, int],
        entries: list[KarmaAuditEntry],
        updated_at: str,
    ) -> bool:
        """
        Set new karma values for several voters atomically.

        Nothing is written if any entry's reason is already in the audit trail,
        so a batch keyed by its reason lands at most once. Returns whether the
        batch was written.
        """
        if len(changes) == 0:
            return False
        reasons = sorted({entry.reason for entry in entries})
        with self._lock, transaction(self._db):
            for reason in reasons:
                seen = self._db.execute(
                    "SELECT 1 FROM karma_audit WHERE reason = ? LIMIT 1", (reason,)
                ).fetchone()
                if seen is not None:
                    return False
            for voter_id, karma in sorted(changes.items()):
                self._db.execute(
                    "UPDATE voters SET karma = ?, updated_at = ? WHERE voter_id = ?",
                    (karma, updated_at, voter_id),
                )
            for entry in entries:
                self._insert_audit(entry)
            return True

    def get_audit_log(self, voter_id: str) -> list[KarmaAuditEntry]:
        """Audit entries for a voter, oldest first."""
        with self._lock:
            rows = self._db.execute(
                "SELECT voter_id, old_karma, new_karma, reason, actor, recorded_at "
                "FROM karma_audit WHERE voter_id = ? ORDER BY entry_id",
                (voter_id,),
            ).fetchall()
        return [
            KarmaAuditEntry(
                voter_id=str(row["voter_id"]),
                old_karma=int(row["old_karma"]) if row["old_karma"] is not None else None,
                new_karma=int(row["new_karma"]),
                reason=str(row["reason"]),
                actor=str(row["actor"]),
                recorded_at=str(row["recorded_at"]),
            )
            for row in rows
        ]

    def count_voters(self, *, active_only: bool = False) -> int:
        """Count voter records."""
        query = "SELECT COUNT(*) FROM voters"
        if active_only:
            query += " WHERE active = 1"
        with self._lock:
            row = self._db.execute(query).fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock, contextlib.suppress(sqlite3.Error):
            self._db.close()
