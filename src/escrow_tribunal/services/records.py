"""Record types owned by the tribunal's components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class CaseState(StrEnum):
    """Lifecycle states of a case."""

    ACTIVE = "active"
    DISPUTE_RAISED = "dispute_raised"
    AUTOMATED_VERDICT_ISSUED = "automated_verdict_issued"
    ESCALATED_TO_CONSENSUS = "escalated_to_consensus"
    RESOLVED = "resolved"


# Forward-only transition graph
ALLOWED_TRANSITIONS: dict[CaseState, frozenset[CaseState]] = {
    CaseState.ACTIVE: frozenset({CaseState.DISPUTE_RAISED, CaseState.RESOLVED}),
    CaseState.DISPUTE_RAISED: frozenset({CaseState.AUTOMATED_VERDICT_ISSUED}),
    CaseState.AUTOMATED_VERDICT_ISSUED: frozenset(
        {CaseState.ESCALATED_TO_CONSENSUS, CaseState.RESOLVED}
    ),
    CaseState.ESCALATED_TO_CONSENSUS: frozenset({CaseState.RESOLVED}),
    CaseState.RESOLVED: frozenset(),
}


class ResolutionPath(StrEnum):
    """How a resolved case reached its outcome."""

    HAPPY_PATH = "happy_path"
    AUTOMATED_VERDICT = "automated_verdict"
    CONSENSUS = "consensus"


@dataclass
class CaseRecord:
    """A single client/contractor dispute instance."""

    case_id: str
    client_id: str
    contractor_id: str
    contract_amount: int
    fee_amount: int
    state: CaseState
    created_at: str
    verdict_percent: int | None = None
    verdict_explanation: str | None = None
    verdict_issued_at: str | None = None
    verdict_deadline: str | None = None
    client_accepted: bool = False
    contractor_accepted: bool = False
    dispute_raised_by: str | None = None
    dispute_raised_at: str | None = None
    resolution_path: ResolutionPath | None = None
    final_contractor_percent: int | None = None
    resolved_at: str | None = None

    @property
    def escrowed_total(self) -> int:
        """Everything deposited for this case: contract plus both fees."""
        return self.contract_amount + 2 * self.fee_amount

    def is_party(self, account_id: str) -> bool:
        """True when account_id is the client or the contractor."""
        return account_id in (self.client_id, self.contractor_id)


@dataclass
class ReleaseRecord:
    """One executed release instruction."""

    case_id: str
    purpose: str
    recipient_id: str
    amount: int
    released_at: str


@dataclass
class VoteRecord:
    """One voter's opinion in a consensus session."""

    case_id: str
    voter_id: str
    value: int
    karma: int
    cast_at: str
    deviation: int | None = None
    is_outlier: bool = False
    karma_delta: int | None = None


@dataclass
class SessionRecord:
    """Bounded-time consensus process for one escalated case."""

    case_id: str
    started_by: str
    start_time: str
    end_time: str
    finalized: bool = False
    consensus_percent: int | None = None
    dispersion: int | None = None
    outlier_threshold: int | None = None
    reward_pool: int | None = None
    finalized_at: str | None = None
    karma_applied: bool = False
    votes: list[VoteRecord] = field(default_factory=list)

    @property
    def active(self) -> bool:
        """Sessions accept votes until finalized (and before end_time)."""
        return not self.finalized


@dataclass
class VoterRecord:
    """Reputation state for one voter."""

    voter_id: str
    karma: int
    active: bool
    banned: bool
    registered_at: str
    updated_at: str


@dataclass
class KarmaAuditEntry:
    """A single karma or eligibility change."""

    voter_id: str
    old_karma: int | None
    new_karma: int
    reason: str
    actor: str
    recorded_at: str
