"""Karma-weighted voting sessions for escalated cases."""

from __future__ import annotations

from dataclasses import replace
from threading import RLock
from typing import TYPE_CHECKING

from escrow_tribunal.exceptions import (
    DeadlineExpiredError,
    DeadlineNotReachedError,
    InsufficientVotesError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from escrow_tribunal.logging import get_logger
from escrow_tribunal.services.consensus_math import compute_outcome, validate_percent
from escrow_tribunal.services.protocols import Capability
from escrow_tribunal.services.records import CaseState, ResolutionPath, SessionRecord, VoteRecord
from escrow_tribunal.services.session_store import DuplicateSessionError, DuplicateVoteError
from escrow_tribunal.services.timestamps import add_seconds, has_passed, now_iso, utc_now

if TYPE_CHECKING:
    from escrow_tribunal.services.adjudication_gate import AdjudicationGate
    from escrow_tribunal.services.case_registry import CaseRegistry
    from escrow_tribunal.services.consensus_math import OutlierRules
    from escrow_tribunal.services.karma_ledger import KarmaLedger
    from escrow_tribunal.services.protocols import AuthorizationProvider, SessionRepository
    from escrow_tribunal.services.records import CaseRecord


class ConsensusEngine:
    """
    Runs one bounded voting session per escalated case.

    Finalization order is: settle funds, persist session results, apply karma.
    A crash after settlement leaves the case Resolved with an unfinalized
    session, and a failed karma write leaves a finalized session without
    karma_applied. Calling finalize again completes the remaining steps
    without releasing funds or applying karma twice.
    """

    def __init__(
        self,
        store: SessionRepository,
        registry: CaseRegistry,
        gate: AdjudicationGate,
        karma: KarmaLedger,
        authorizer: AuthorizationProvider,
        outlier_rules: OutlierRules,
        duration_seconds: int,
        min_duration_seconds: int,
        max_duration_seconds: int,
        min_votes: int,
        lock: RLock | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._gate = gate
        self._karma = karma
        self._authorizer = authorizer
        self._outlier_rules = outlier_rules
        self._duration_seconds = duration_seconds
        self._min_duration_seconds = min_duration_seconds
        self._max_duration_seconds = max_duration_seconds
        self._min_votes = min_votes
        self._lock = lock if lock is not None else registry.lock
        self._logger = get_logger(__name__)

    def _is_admin(self, caller: str) -> bool:
        return self._authorizer.authorize(caller, Capability.CASE_ADMIN).allowed

    def get_session(self, case_id: str) -> SessionRecord:
        """Return a session (with its votes) or raise SESSION_NOT_FOUND."""
        session = self._store.get_session(case_id)
        if session is None:
            raise NotFoundError(
                "SESSION_NOT_FOUND", "Voting session not found", {"case_id": case_id}
            )
        return session

    def get_vote(self, case_id: str, voter_id: str) -> VoteRecord:
        """Return one vote or raise VOTE_NOT_FOUND."""
        self.get_session(case_id)
        vote = self._store.get_vote(case_id, voter_id)
        if vote is None:
            raise NotFoundError(
                "VOTE_NOT_FOUND", "Vote not found", {"case_id": case_id, "voter_id": voter_id}
            )
        return vote

    def list_votes(self, case_id: str) -> list[VoteRecord]:
        """Votes of a session in casting order."""
        self.get_session(case_id)
        return self._store.get_votes(case_id)

    def _resolve_duration(self, caller: str, duration_seconds: int | None) -> int:
        if duration_seconds is None:
            return self._duration_seconds
        if not self._is_admin(caller):
            raise UnauthorizedError(
                "Only case administrators can set a custom voting duration",
                {"caller": caller},
            )
        if (
            isinstance(duration_seconds, bool)
            or not isinstance(duration_seconds, int)
            or not self._min_duration_seconds <= duration_seconds <= self._max_duration_seconds
        ):
            raise InvalidInputError(
                "Voting duration out of range",
                {
                    "duration_seconds": duration_seconds,
                    "min_duration_seconds": self._min_duration_seconds,
                    "max_duration_seconds": self._max_duration_seconds,
                },
            )
        return duration_seconds

    def start_session(
        self,
        case_id: str,
        caller: str,
        duration_seconds: int | None = None,
    ) -> SessionRecord:
        """Open the voting session for an escalated case."""
        with self._lock:
            case = self._registry.get_case(case_id)
            if not case.is_party(caller) and not self._is_admin(caller):
                raise UnauthorizedError(
                    "Only a party or a case administrator can start voting",
                    {"case_id": case_id, "caller": caller},
                )
            duration = self._resolve_duration(caller, duration_seconds)

            case = self._gate.expire_if_due(case_id)
            if case.state != CaseState.ESCALATED_TO_CONSENSUS:
                raise InvalidStateError(
                    "Voting requires a case escalated to consensus",
                    {"case_id": case_id, "state": str(case.state)},
                )

            started = utc_now()
            session = SessionRecord(
                case_id=case_id,
                started_by=caller,
                start_time=now_iso(),
                end_time=add_seconds(started, duration),
            )
            try:
                self._store.insert_session(session)
            except DuplicateSessionError as exc:
                raise InvalidStateError(
                    "Voting session already exists for this case", {"case_id": case_id}
                ) from exc

        self._logger.info(
            "Voting session started",
            extra={
                "case_id": case_id,
                "started_by": caller,
                "end_time": session.end_time,
            },
        )
        return session

    def cast_vote(self, case_id: str, voter_id: str, contractor_percent: int) -> VoteRecord:
        """Record one eligible voter's percent for the contractor."""
        validate_percent(contractor_percent, "contractor_percent")
        decision = self._authorizer.authorize(voter_id, Capability.VOTER)

        with self._lock:
            if not decision.allowed or not self._karma.is_eligible(voter_id):
                raise UnauthorizedError(
                    "Caller is not an eligible voter",
                    {"voter_id": voter_id, "reason": decision.reason},
                )
            case = self._registry.get_case(case_id)
            if case.is_party(voter_id):
                raise UnauthorizedError(
                    "Parties cannot vote on their own case",
                    {"case_id": case_id, "voter_id": voter_id},
                )
            session = self.get_session(case_id)
            if not session.active:
                raise InvalidStateError(
                    "Voting session is finalized", {"case_id": case_id}
                )
            if has_passed(session.end_time):
                raise DeadlineExpiredError(
                    "Voting period has ended",
                    {"case_id": case_id, "end_time": session.end_time},
                )

            voter = self._karma.get_voter(voter_id)
            vote = VoteRecord(
                case_id=case_id,
                voter_id=voter_id,
                value=contractor_percent,
                karma=voter.karma,
                cast_at=now_iso(),
            )
            try:
                self._store.insert_vote(vote)
            except DuplicateVoteError as exc:
                raise InvalidStateError(
                    "Voter has already voted in this session",
                    {"case_id": case_id, "voter_id": voter_id},
                ) from exc

        self._logger.info(
            "Vote cast",
            extra={"case_id": case_id, "voter_id": voter_id, "karma": vote.karma},
        )
        return vote

    def _settled_case(self, case: CaseRecord) -> bool:
        return (
            case.state == CaseState.RESOLVED
            and case.resolution_path == ResolutionPath.CONSENSUS
        )

    def finalize(self, case_id: str, caller: str | None = None) -> SessionRecord:
        """
        Close the session: compute the consensus, pay out, and update karma.

        Anyone may call this once the voting period has ended. A session whose
        results were stored but whose karma write failed is completed by the
        next call; only a fully applied session is rejected as finalized.
        """
        with self._lock:
            session = self.get_session(case_id)
            if session.finalized and session.karma_applied:
                raise InvalidStateError(
                    "Voting session already finalized", {"case_id": case_id}
                )
            if not has_passed(session.end_time):
                raise DeadlineNotReachedError(
                    "Voting period has not ended",
                    {"case_id": case_id, "end_time": session.end_time},
                )
            votes = session.votes
            if len(votes) < self._min_votes:
                raise InsufficientVotesError(
                    f"At least {self._min_votes} votes are required",
                    {"case_id": case_id, "votes": len(votes), "min_votes": self._min_votes},
                )

            case = self._registry.get_case(case_id)
            resuming = self._settled_case(case)
            if case.state != CaseState.ESCALATED_TO_CONSENSUS and not resuming:
                raise InvalidStateError(
                    "Case is not awaiting consensus",
                    {"case_id": case_id, "state": str(case.state)},
                )

            current_karma = self._karma.current_karma_for(vote.voter_id for vote in votes)
            outcome = compute_outcome(
                case.client_id,
                case.contractor_id,
                case.contract_amount,
                case.fee_amount,
                votes,
                current_karma,
                self._karma.rules,
                self._outlier_rules,
            )

            if not resuming:
                self._registry.settle(
                    case, outcome.payouts, ResolutionPath.CONSENSUS, outcome.consensus_percent
                )

            if not session.finalized:
                results = replace(
                    session,
                    finalized=True,
                    consensus_percent=outcome.consensus_percent,
                    dispersion=outcome.dispersion,
                    outlier_threshold=outcome.outlier_threshold,
                    reward_pool=outcome.reward_pool,
                    finalized_at=now_iso(),
                    votes=outcome.votes,
                )
                if self._store.persist_finalization(results, outcome.votes) == 0:
                    raise InvalidStateError(
                        "Voting session already finalized", {"case_id": case_id}
                    )
            self._karma.apply_session_outcome(case_id, outcome.karma_changes, current_karma)
            self._store.mark_karma_applied(case_id)
            finalized = self.get_session(case_id)

        self._logger.info(
            "Voting session finalized",
            extra={
                "case_id": case_id,
                "caller": caller,
                "consensus_percent": outcome.consensus_percent,
                "dispersion": outcome.dispersion,
                "outliers": sum(1 for vote in outcome.votes if vote.is_outlier),
                "reward_pool": outcome.reward_pool,
                "resumed": resuming,
            },
        )
        return finalized
