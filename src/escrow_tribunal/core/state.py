"""Tribunal state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from escrow_tribunal.schemas import CaseView, SessionView, VoterView, VoteView

if TYPE_CHECKING:
    from threading import RLock

    from escrow_tribunal.config import Settings
    from escrow_tribunal.services.adjudication_gate import AdjudicationGate
    from escrow_tribunal.services.case_registry import CaseRegistry
    from escrow_tribunal.services.case_store import CaseStore
    from escrow_tribunal.services.consensus_engine import ConsensusEngine
    from escrow_tribunal.services.karma_ledger import KarmaLedger
    from escrow_tribunal.services.protocols import AuthorizationProvider, LedgerCustodian
    from escrow_tribunal.services.session_store import SessionStore
    from escrow_tribunal.services.voter_store import VoterStore


@dataclass
class Tribunal:
    """Wired components sharing one lock and one set of stores."""

    settings: Settings
    lock: RLock
    custodian: LedgerCustodian
    authorizer: AuthorizationProvider
    case_store: CaseStore
    session_store: SessionStore
    voter_store: VoterStore
    cases: CaseRegistry
    adjudication: AdjudicationGate
    karma: KarmaLedger
    consensus: ConsensusEngine
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")

    def case_view(self, case_id: str) -> CaseView:
        """Read model for one case."""
        return CaseView.model_validate(self.cases.get_case(case_id))

    def session_view(self, case_id: str) -> SessionView:
        """Read model for a case's voting session, votes included."""
        return SessionView.model_validate(self.consensus.get_session(case_id))

    def vote_view(self, case_id: str, voter_id: str) -> VoteView:
        """Read model for one vote."""
        return VoteView.model_validate(self.consensus.get_vote(case_id, voter_id))

    def voter_view(self, voter_id: str) -> VoterView:
        """Read model for one voter."""
        return VoterView.model_validate(self.karma.get_voter(voter_id))

    def close(self) -> None:
        """Close every store connection."""
        self.case_store.close()
        self.session_store.close()
        self.voter_store.close()


_state_container: dict[str, Tribunal | None] = {"tribunal": None}


def get_tribunal() -> Tribunal:
    """Get the current tribunal."""
    tribunal = _state_container["tribunal"]
    if tribunal is None:
        msg = "Tribunal not initialized"
        raise RuntimeError(msg)
    return tribunal


def init_tribunal(tribunal: Tribunal) -> Tribunal:
    """Install the process-wide tribunal. Called during startup."""
    _state_container["tribunal"] = tribunal
    return tribunal


def reset_tribunal() -> None:
    """Reset the process-wide tribunal. Used in testing."""
    _state_container["tribunal"] = None
