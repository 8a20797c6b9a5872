"""Interfaces the tribunal consumes from its collaborators and stores."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from escrow_tribunal.services.records import (
        CaseRecord,
        CaseState,
        KarmaAuditEntry,
        ReleaseRecord,
        SessionRecord,
        VoteRecord,
        VoterRecord,
    )


class LedgerCustodian(Protocol):
    """External service of record holding and moving escrowed funds.

    Implementations signal failure by raising; the engine never inspects balances.
    """

    def deposit(self, case_id: str, payer_id: str, amount: int, is_fee: bool) -> None: ...

    def release_funds(self, recipient_id: str, amount: int, case_id: str) -> None: ...


class Capability(StrEnum):
    """Capabilities checked by the authorization provider."""

    AUTOMATED_AGENT = "automated_agent"
    VOTER = "voter"
    CASE_ADMIN = "case_admin"


@dataclass(frozen=True)
class AuthDecision:
    """Allow/deny answer with a human-readable reason."""

    allowed: bool
    reason: str


class AuthorizationProvider(Protocol):
    """Capability checks keyed by caller identity."""

    def authorize(self, caller: str, capability: Capability) -> AuthDecision: ...


class VoterEligibility(Protocol):
    """Anything that can answer whether a voter may currently vote."""

    def is_eligible(self, voter_id: str) -> bool: ...


class CaseRepository(Protocol):
    """Keyed storage for case records and their release log."""

    def insert_case(self, case: CaseRecord) -> None: ...

    def get_case(self, case_id: str) -> CaseRecord | None: ...

    def update_case(
        self,
        case_id: str,
        updates: dict[str, Any],
        *,
        expected_state: CaseState | None,
    ) -> int: ...

    def list_cases(self, state: CaseState | None) -> list[CaseRecord]: ...

    def count_cases(self) -> int: ...

    def count_open(self) -> int: ...

    def record_release(self, release: ReleaseRecord) -> None: ...

    def get_releases(self, case_id: str) -> list[ReleaseRecord]: ...

    def total_released(self, case_id: str) -> int: ...


class SessionRepository(Protocol):
    """Keyed storage for voting sessions and votes."""

    def insert_session(self, session: SessionRecord) -> None: ...

    def get_session(self, case_id: str) -> SessionRecord | None: ...

    def insert_vote(self, vote: VoteRecord) -> None: ...

    def get_vote(self, case_id: str, voter_id: str) -> VoteRecord | None: ...

    def get_votes(self, case_id: str) -> list[VoteRecord]: ...

    def persist_finalization(
        self,
        session: SessionRecord,
        votes: list[VoteRecord],
    ) -> int: ...

    def mark_karma_applied(self, case_id: str) -> int: ...


class VoterRepository(Protocol):
    """Keyed storage for voter records and their audit trail."""

    def insert_voter(self, voter: VoterRecord, entry: KarmaAuditEntry) -> None: ...

    def get_voter(self, voter_id: str) -> VoterRecord | None: ...

    def update_voter(
        self,
        voter_id: str,
        updates: dict[str, Any],
        entry: KarmaAuditEntry,
    ) -> int: ...

    def apply_karma_changes(
        self,
        changes: dict[str, int],
        entries: list[KarmaAuditEntry],
        updated_at: str,
    ) -> bool: ...

    def get_audit_log(self, voter_id: str) -> list[KarmaAuditEntry]: ...
