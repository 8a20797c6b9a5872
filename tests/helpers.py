"""Shared test helpers for tribunal tests."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from escrow_tribunal.config import Settings
from escrow_tribunal.core.lifespan import build_tribunal
from escrow_tribunal.exceptions import ServiceError

if TYPE_CHECKING:
    from escrow_tribunal.core.state import Tribunal

CLIENT_ID = "client-1"
CONTRACTOR_ID = "contractor-1"
AGENT_ID = "agent-adjudicator"
ADMIN_ID = "admin-ops"
VOTER_IDS = ["voter-a", "voter-b", "voter-c", "voter-d", "voter-e"]


class RecordingCustodian:
    """In-memory custodian that tracks balances per case and can fail on demand."""

    def __init__(self) -> None:
        self.deposits: list[tuple[str, str, int, bool]] = []
        self.releases: list[tuple[str, str, int]] = []
        self.held: dict[str, int] = defaultdict(int)
        self.paid: dict[str, int] = defaultdict(int)
        self.fail_deposit_on_call: int | None = None
        self.fail_release_for: set[str] = set()
        self._deposit_calls = 0

    def deposit(self, case_id: str, payer_id: str, amount: int, is_fee: bool) -> None:
        self._deposit_calls += 1
        if self.fail_deposit_on_call == self._deposit_calls:
            raise ServiceError("LEDGER_DOWN", "Deposit refused", 503)
        self.deposits.append((case_id, payer_id, amount, is_fee))
        self.held[case_id] += amount

    def release_funds(self, recipient_id: str, amount: int, case_id: str) -> None:
        if recipient_id in self.fail_release_for:
            msg = f"release to {recipient_id} refused"
            raise ConnectionError(msg)
        if amount > self.held[case_id]:
            msg = "release exceeds held balance"
            raise AssertionError(msg)
        self.releases.append((case_id, recipient_id, amount))
        self.held[case_id] -= amount
        self.paid[recipient_id] += amount

    def released_total(self, case_id: str) -> int:
        return sum(amount for cid, _, amount in self.releases if cid == case_id)


def make_settings(db_path: str = ":memory:", **overrides: dict[str, object]) -> Settings:
    """Build settings matching the shipped defaults, with per-section overrides."""
    data: dict[str, dict[str, object]] = {
        "service": {"name": "escrow-tribunal", "version": "0.1.0"},
        "logging": {"level": "WARNING", "directory": None},
        "database": {"path": db_path},
        "fees": {"fee_percent": 5, "min_fee": 1},
        "adjudication": {"acceptance_window_seconds": 259200, "max_explanation_length": 10000},
        "voting": {
            "duration_seconds": 432000,
            "min_duration_seconds": 3600,
            "max_duration_seconds": 2592000,
            "min_votes": 3,
            "outlier_multiplier": 3,
            "min_outlier_threshold": 15,
        },
        "karma": {"floor": 20, "start": 100, "max": 200, "max_penalty": 30},
        "roles": {"automated_agents": [AGENT_ID], "case_admins": [ADMIN_ID]},
    }
    for section, values in overrides.items():
        data[section] = {**data[section], **values}
    return Settings.model_validate(data)


def make_tribunal(
    custodian: RecordingCustodian | None = None,
    db_path: str = ":memory:",
    **overrides: dict[str, object],
) -> tuple[Tribunal, RecordingCustodian]:
    """Wire a tribunal over in-memory stores and a recording custodian."""
    custodian = custodian if custodian is not None else RecordingCustodian()
    tribunal = build_tribunal(make_settings(db_path, **overrides), custodian)
    return tribunal, custodian


def register_voters(tribunal: Tribunal, voter_ids: list[str] | None = None) -> None:
    for voter_id in voter_ids if voter_ids is not None else VOTER_IDS:
        tribunal.karma.register_voter(voter_id, ADMIN_ID)


def escalate_case(tribunal: Tribunal, amount: int = 1000, percent: int = 70) -> str:
    """Open a case, dispute it, issue a verdict, and have the contractor reject it."""
    case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, amount)
    tribunal.cases.raise_dispute(case.case_id, CLIENT_ID)
    tribunal.adjudication.submit_verdict(case.case_id, AGENT_ID, percent, "Partial delivery.")
    tribunal.adjudication.reject_verdict(case.case_id, CONTRACTOR_ID)
    return case.case_id
