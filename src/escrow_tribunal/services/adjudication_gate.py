"""Automated verdict gate: one appealable proposal per disputed case."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_tribunal.exceptions import (
    DeadlineExpiredError,
    DeadlineNotReachedError,
    InvalidInputError,
    InvalidStateError,
    UnauthorizedError,
)
from escrow_tribunal.logging import get_logger
from escrow_tribunal.services.consensus_math import (
    plan_full_fee_refund,
    plan_split_payouts,
    validate_percent,
)
from escrow_tribunal.services.protocols import Capability
from escrow_tribunal.services.records import CaseState, ResolutionPath
from escrow_tribunal.services.timestamps import add_seconds, has_passed, now_iso, utc_now

if TYPE_CHECKING:
    from escrow_tribunal.services.case_registry import CaseRegistry
    from escrow_tribunal.services.protocols import AuthorizationProvider
    from escrow_tribunal.services.records import CaseRecord


class AdjudicationGate:
    """Records automated verdicts and routes them to payout or escalation."""

    def __init__(
        self,
        registry: CaseRegistry,
        authorizer: AuthorizationProvider,
        acceptance_window_seconds: int,
        max_explanation_length: int,
    ) -> None:
        self._registry = registry
        self._authorizer = authorizer
        self._acceptance_window_seconds = acceptance_window_seconds
        self._max_explanation_length = max_explanation_length
        self._logger = get_logger(__name__)

    def submit_verdict(
        self,
        case_id: str,
        caller: str,
        contractor_percent: int,
        explanation: str,
    ) -> CaseRecord:
        """Record the automated agent's proposal and open the acceptance window."""
        decision = self._authorizer.authorize(caller, Capability.AUTOMATED_AGENT)
        if not decision.allowed:
            raise UnauthorizedError(
                "Caller is not an automated adjudicator",
                {"caller": caller, "reason": decision.reason},
            )
        validate_percent(contractor_percent, "contractor_percent")
        if not isinstance(explanation, str) or explanation.strip() == "":
            raise InvalidInputError("Explanation must be non-empty", {"field": "explanation"})
        if len(explanation) > self._max_explanation_length:
            raise InvalidInputError(
                f"Explanation exceeds maximum length of {self._max_explanation_length}",
                {"max_length": self._max_explanation_length, "actual_length": len(explanation)},
            )

        with self._registry.lock:
            case = self._registry.get_case(case_id)
            if case.state != CaseState.DISPUTE_RAISED:
                raise InvalidStateError(
                    "Verdicts can only be submitted for disputed cases",
                    {"case_id": case_id, "state": str(case.state)},
                )
            issued_at = utc_now()
            updated = self._registry.transition(
                case_id,
                CaseState.DISPUTE_RAISED,
                CaseState.AUTOMATED_VERDICT_ISSUED,
                {
                    "verdict_percent": contractor_percent,
                    "verdict_explanation": explanation,
                    "verdict_issued_at": now_iso(),
                    "verdict_deadline": add_seconds(issued_at, self._acceptance_window_seconds),
                },
            )

        self._logger.info(
            "Automated verdict issued",
            extra={
                "case_id": case_id,
                "contractor_percent": contractor_percent,
                "deadline": updated.verdict_deadline,
            },
        )
        return updated

    @staticmethod
    def _require_party(case: CaseRecord, caller: str, action: str) -> None:
        if not case.is_party(caller):
            raise UnauthorizedError(
                f"Only the client or contractor can {action} the verdict",
                {"case_id": case.case_id, "caller": caller},
            )

    @staticmethod
    def _require_verdict_issued(case: CaseRecord) -> None:
        if case.state != CaseState.AUTOMATED_VERDICT_ISSUED:
            raise InvalidStateError(
                "No open automated verdict for this case",
                {"case_id": case.case_id, "state": str(case.state)},
            )

    def _window_closed(self, case: CaseRecord) -> bool:
        return case.verdict_deadline is not None and has_passed(case.verdict_deadline)

    def _escalate(self, case: CaseRecord, reason: str) -> CaseRecord:
        escalated = self._registry.transition(
            case.case_id,
            CaseState.AUTOMATED_VERDICT_ISSUED,
            CaseState.ESCALATED_TO_CONSENSUS,
        )
        self._logger.info(
            "Case escalated to consensus",
            extra={"case_id": case.case_id, "reason": reason},
        )
        return escalated

    def _pay_out(self, case: CaseRecord) -> CaseRecord:
        if case.verdict_percent is None:
            msg = f"Case {case.case_id} has no verdict percent recorded"
            raise RuntimeError(msg)
        payouts = plan_split_payouts(
            case.client_id, case.contractor_id, case.contract_amount, case.verdict_percent
        ) + plan_full_fee_refund(case.client_id, case.contractor_id, case.fee_amount)
        return self._registry.settle(
            case,
            payouts,
            ResolutionPath.AUTOMATED_VERDICT,
            case.verdict_percent,
            {"client_accepted": True, "contractor_accepted": True},
        )

    def accept_verdict(self, case_id: str, caller: str) -> CaseRecord:
        """
        Record one party's acceptance; pay out once both have accepted.

        Accepted automated resolutions are free: both fees are refunded in full.
        The second acceptance is stored only together with the completed payout.
        If a release fails part way, either party may accept again to resume it,
        even after the window has closed.
        """
        with self._registry.lock:
            case = self._registry.get_case(case_id)
            self._require_party(case, caller, "accept")
            self._require_verdict_issued(case)

            if self._registry.payout_started(case_id):
                self._logger.info(
                    "Resuming automated verdict payout",
                    extra={"case_id": case_id, "party": caller},
                )
                return self._pay_out(case)

            if self._window_closed(case):
                self._escalate(case, "acceptance_window_expired")
                raise DeadlineExpiredError(
                    "Acceptance window has closed; case escalated to consensus",
                    {"case_id": case_id, "deadline": case.verdict_deadline},
                )

            if caller == case.client_id:
                flag, other_accepted = "client_accepted", case.contractor_accepted
            else:
                flag, other_accepted = "contractor_accepted", case.client_accepted
            if getattr(case, flag):
                raise InvalidStateError(
                    "Verdict already accepted by this party",
                    {"case_id": case_id, "caller": caller},
                )
            self._logger.info(
                "Automated verdict accepted",
                extra={"case_id": case_id, "party": caller},
            )
            if not other_accepted:
                return self._registry.update_fields(
                    case_id,
                    {flag: True},
                    expected_state=CaseState.AUTOMATED_VERDICT_ISSUED,
                )
            return self._pay_out(case)

    def reject_verdict(self, case_id: str, caller: str) -> CaseRecord:
        """Either party appeals the automated verdict to the voter panel."""
        with self._registry.lock:
            case = self._registry.get_case(case_id)
            self._require_party(case, caller, "reject")
            self._require_verdict_issued(case)
            if self._window_closed(case):
                reason = "acceptance_window_expired"
            else:
                reason = f"rejected_by:{caller}"
            return self._escalate(case, reason)

    def check_deadline(self, case_id: str) -> CaseRecord:
        """Escalate once the acceptance window has closed without full acceptance."""
        with self._registry.lock:
            case = self._registry.get_case(case_id)
            self._require_verdict_issued(case)
            if not self._window_closed(case):
                raise DeadlineNotReachedError(
                    "Acceptance window is still open",
                    {"case_id": case_id, "deadline": case.verdict_deadline},
                )
            return self._escalate(case, "acceptance_window_expired")

    def expire_if_due(self, case_id: str) -> CaseRecord:
        """
        Lazily apply window expiry; returns the case whether or not it changed.

        A case whose accepted payout is part way through is left for
        accept_verdict to resume.
        """
        with self._registry.lock:
            case = self._registry.get_case(case_id)
            if (
                case.state == CaseState.AUTOMATED_VERDICT_ISSUED
                and self._window_closed(case)
                and not self._registry.payout_started(case_id)
            ):
                return self._escalate(case, "acceptance_window_expired")
            return case
