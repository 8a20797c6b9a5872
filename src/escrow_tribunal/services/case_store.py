"""SQLite-backed case storage."""

from __future__ import annotations

import contextlib
import sqlite3
from threading import RLock
from typing import Any

from escrow_tribunal.services.database import connect
from escrow_tribunal.services.records import (
    CaseRecord,
    CaseState,
    ReleaseRecord,
    ResolutionPath,
)


class DuplicateCaseError(Exception):
    """Raised when attempting to insert a case with a duplicate case_id."""


class DuplicateReleaseError(Exception):
    """Raised when a release for the same case and purpose was already recorded."""


class CaseStore:
    """SQLite-backed storage for cases and executed releases."""

    _CASE_COLUMNS: tuple[str, ...] = (
        "case_id",
        "client_id",
        "contractor_id",
        "contract_amount",
        "fee_amount",
        "state",
        "created_at",
        "verdict_percent",
        "verdict_explanation",
        "verdict_issued_at",
        "verdict_deadline",
        "client_accepted",
        "contractor_accepted",
        "dispute_raised_by",
        "dispute_raised_at",
        "resolution_path",
        "final_contractor_percent",
        "resolved_at",
    )
    _BOOL_COLUMNS = frozenset({"client_accepted", "contractor_accepted"})

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._db = connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS cases (
                    case_id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    contractor_id TEXT NOT NULL,
                    contract_amount INTEGER NOT NULL CHECK (contract_amount > 0),
                    fee_amount INTEGER NOT NULL CHECK (fee_amount >= 0),
                    state TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL,
                    verdict_percent INTEGER,
                    verdict_explanation TEXT,
                    verdict_issued_at TEXT,
                    verdict_deadline TEXT,
                    client_accepted INTEGER NOT NULL DEFAULT 0,
                    contractor_accepted INTEGER NOT NULL DEFAULT 0,
                    dispute_raised_by TEXT,
                    dispute_raised_at TEXT,
                    resolution_path TEXT,
                    final_contractor_percent INTEGER,
                    resolved_at TEXT
                );

                CREATE TABLE IF NOT EXISTS releases (
                    case_id TEXT NOT NULL REFERENCES cases(case_id),
                    purpose TEXT NOT NULL,
                    recipient_id TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    released_at TEXT NOT NULL,
                    PRIMARY KEY (case_id, purpose)
                );

                CREATE INDEX IF NOT EXISTS ix_cases_state ON cases(state);
                """
            )

    def _row_to_case(self, row: sqlite3.Row) -> CaseRecord:
        values: dict[str, Any] = {column: row[column] for column in self._CASE_COLUMNS}
        values["state"] = CaseState(values["state"])
        for column in self._BOOL_COLUMNS:
            values[column] = bool(values[column])
        if values["resolution_path"] is not None:
            values["resolution_path"] = ResolutionPath(values["resolution_path"])
        return CaseRecord(**values)

    @staticmethod
    def _to_column_value(value: object) -> object:
        if isinstance(value, bool):
            return int(value)
        return value

    def insert_case(self, case: CaseRecord) -> None:
        """Persist a new case."""
        columns = ", ".join(self._CASE_COLUMNS)
        placeholders = ", ".join("?" for _ in self._CASE_COLUMNS)
        params = [self._to_column_value(getattr(case, column)) for column in self._CASE_COLUMNS]
        with self._lock:
            try:
                self._db.execute(
                    f"INSERT INTO cases ({columns}) VALUES ({placeholders})",  # nosec B608
                    params,
                )
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower():
                    raise DuplicateCaseError(f"Case already exists: {case.case_id}") from exc
                raise

    def get_case(self, case_id: str) -> CaseRecord | None:
        """Look up a case by id. Returns None if not found."""
        with self._lock:
            row = self._db.execute("SELECT * FROM cases WHERE case_id = ?", (case_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_case(row)

    def update_case(
        self,
        case_id: str,
        updates: dict[str, Any],
        *,
        expected_state: CaseState | None,
    ) -> int:
        """Update case columns and return the number of affected rows.

        With ``expected_state`` set, the write only lands if the stored state still
        matches, so a concurrent transition makes this return 0.
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._CASE_COLUMNS or column == "case_id" for column in updates):
            msg = "Attempted to update unknown case column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._to_column_value(value) for value in updates.values()]

        query = "UPDATE cases SET " + set_clause + " WHERE case_id = ?"  # nosec B608
        params.append(case_id)
        if expected_state is not None:
            query += " AND state = ?"
            params.append(str(expected_state))

        with self._lock:
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def list_cases(self, state: CaseState | None) -> list[CaseRecord]:
        """List cases, optionally filtered by state."""
        query = "SELECT * FROM cases"
        params: list[object] = []
        if state is not None:
            query += " WHERE state = ?"
            params.append(str(state))
        query += " ORDER BY created_at, case_id"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_case(row) for row in rows]

    def count_cases(self) -> int:
        """Count all cases."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM cases").fetchone()
        return int(row[0]) if row is not None else 0

    def count_open(self) -> int:
        """Count cases that are not yet resolved."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM cases WHERE state != 'resolved'"
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def record_release(self, release: ReleaseRecord) -> None:
        """Record an executed release. Each (case, purpose) pair is stored once."""
        with self._lock:
            try:
                self._db.execute(
                    "INSERT INTO releases (case_id, purpose, recipient_id, amount, released_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        release.case_id,
                        release.purpose,
                        release.recipient_id,
                        release.amount,
                        release.released_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "unique" in str(exc).lower() or "primary key" in str(exc).lower():
                    raise DuplicateReleaseError(
                        f"Release already recorded: {release.case_id}/{release.purpose}"
                    ) from exc
                raise

    def get_releases(self, case_id: str) -> list[ReleaseRecord]:
        """Return executed releases for a case in execution order."""
        with self._lock:
            rows = self._db.execute(
                "SELECT case_id, purpose, recipient_id, amount, released_at FROM releases "
                "WHERE case_id = ? ORDER BY released_at, purpose",
                (case_id,),
            ).fetchall()
        return [
            ReleaseRecord(
                case_id=str(row["case_id"]),
                purpose=str(row["purpose"]),
                recipient_id=str(row["recipient_id"]),
                amount=int(row["amount"]),
                released_at=str(row["released_at"]),
            )
            for row in rows
        ]

    def total_released(self, case_id: str) -> int:
        """Sum of all releases recorded for a case."""
        with self._lock:
            row = self._db.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM releases WHERE case_id = ?",
                (case_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        """Close the database connection."""
        with self._lock, contextlib.suppress(sqlite3.Error):
            self._db.close()
