"""Case lifecycle: opening, happy-path release, dispute raising, and transitions."""

from __future__ import annotations

import uuid
from threading import RLock
from typing import TYPE_CHECKING, Any

from escrow_tribunal.exceptions import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from escrow_tribunal.logging import get_logger
from escrow_tribunal.services.consensus_math import plan_full_fee_refund, plan_split_payouts
from escrow_tribunal.services.records import (
    ALLOWED_TRANSITIONS,
    CaseRecord,
    CaseState,
    ResolutionPath,
)
from escrow_tribunal.services.timestamps import now_iso

if TYPE_CHECKING:
    from escrow_tribunal.services.consensus_math import Payout
    from escrow_tribunal.services.escrow_coordinator import EscrowCoordinator
    from escrow_tribunal.services.protocols import CaseRepository


class CaseRegistry:
    """Owns case records and the forward-only state machine."""

    def __init__(
        self,
        store: CaseRepository,
        escrow: EscrowCoordinator,
        fee_percent: int,
        min_fee: int,
        lock: RLock | None = None,
    ) -> None:
        self._store = store
        self._escrow = escrow
        self._fee_percent = fee_percent
        self._min_fee = min_fee
        self._lock = lock if lock is not None else RLock()
        self._logger = get_logger(__name__)

    @property
    def lock(self) -> RLock:
        """Lock serializing every case mutation."""
        return self._lock

    @staticmethod
    def _new_case_id() -> str:
        return f"case-{uuid.uuid4()}"

    def compute_fee(self, amount: int) -> int:
        """Per-party fee: a fixed percentage of the amount, never below the minimum."""
        return max(amount * self._fee_percent // 100, self._min_fee)

    def get_case(self, case_id: str) -> CaseRecord:
        """Return a case or raise CASE_NOT_FOUND."""
        case = self._store.get_case(case_id)
        if case is None:
            raise NotFoundError("CASE_NOT_FOUND", "Case not found", {"case_id": case_id})
        return case

    def list_cases(self, state: CaseState | None = None) -> list[CaseRecord]:
        """List cases, optionally filtered by state."""
        return self._store.list_cases(state)

    def open_case(self, client_id: str, contractor_id: str, amount: int) -> CaseRecord:
        """Open a case and escrow the contract amount plus both fees."""
        for field_name, value in (("client_id", client_id), ("contractor_id", contractor_id)):
            if not isinstance(value, str) or value.strip() == "":
                raise InvalidInputError(
                    f"{field_name} must be a non-empty string",
                    {"field": field_name},
                    error="INVALID_PARTY",
                )
        if client_id == contractor_id:
            raise InvalidInputError(
                "Client and contractor must be different accounts",
                {"client_id": client_id, "contractor_id": contractor_id},
                error="INVALID_PARTY",
            )
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidInputError(
                "Amount must be a positive integer",
                {"amount": amount},
                error="INVALID_AMOUNT",
            )

        fee_amount = self.compute_fee(amount)
        case = CaseRecord(
            case_id=self._new_case_id(),
            client_id=client_id,
            contractor_id=contractor_id,
            contract_amount=amount,
            fee_amount=fee_amount,
            state=CaseState.ACTIVE,
            created_at=now_iso(),
        )

        with self._lock:
            self._escrow.escrow_case_funds(
                case.case_id, client_id, contractor_id, amount, fee_amount
            )
            self._store.insert_case(case)

        self._logger.info(
            "Case opened",
            extra={
                "case_id": case.case_id,
                "client_id": client_id,
                "contractor_id": contractor_id,
                "contract_amount": amount,
                "fee_amount": fee_amount,
            },
        )
        return case

    def payout_started(self, case_id: str) -> bool:
        """True once any release has been recorded for the case."""
        return self._store.total_released(case_id) > 0

    def transition(
        self,
        case_id: str,
        expected_state: CaseState,
        target_state: CaseState,
        updates: dict[str, Any] | None = None,
    ) -> CaseRecord:
        """
        Move a case along the transition graph.

        The write is conditional on the stored state still being ``expected_state``;
        losing a race raises InvalidStateError. Once a payout has started the only
        move left is to Resolved, so a half-paid case cannot be re-routed.
        """
        if target_state not in ALLOWED_TRANSITIONS[expected_state]:
            msg = f"Illegal transition {expected_state} -> {target_state}"
            raise ValueError(msg)

        changes: dict[str, Any] = dict(updates or {})
        changes["state"] = str(target_state)
        with self._lock:
            if target_state != CaseState.RESOLVED and self.payout_started(case_id):
                raise InvalidStateError(
                    "Payout already in progress for this case",
                    {"case_id": case_id, "state": str(expected_state)},
                )
            changed_rows = self._store.update_case(case_id, changes, expected_state=expected_state)
            if changed_rows == 0:
                current = self.get_case(case_id)
                raise InvalidStateError(
                    f"Case is not in {expected_state} state",
                    {"case_id": case_id, "state": str(current.state)},
                )
            case = self.get_case(case_id)

        self._logger.info(
            "Case transitioned",
            extra={
                "case_id": case_id,
                "from_state": str(expected_state),
                "to_state": str(target_state),
            },
        )
        return case

    def update_fields(
        self,
        case_id: str,
        updates: dict[str, Any],
        *,
        expected_state: CaseState,
    ) -> CaseRecord:
        """Change non-state fields while the case stays in ``expected_state``."""
        if "state" in updates:
            msg = "Use transition() to change state"
            raise ValueError(msg)
        with self._lock:
            if self._store.update_case(case_id, updates, expected_state=expected_state) == 0:
                current = self.get_case(case_id)
                raise InvalidStateError(
                    f"Case is not in {expected_state} state",
                    {"case_id": case_id, "state": str(current.state)},
                )
            return self.get_case(case_id)

    def settle(
        self,
        case: CaseRecord,
        payouts: list[Payout],
        resolution_path: ResolutionPath,
        final_contractor_percent: int,
        updates: dict[str, Any] | None = None,
    ) -> CaseRecord:
        """
        Release every payout, then mark the case Resolved.

        ``updates`` are written together with the Resolved state, so they only
        become visible once every release has gone through.
        """
        with self._lock:
            current = self.get_case(case.case_id)
            if current.state != case.state:
                raise InvalidStateError(
                    f"Case is not in {case.state} state",
                    {"case_id": case.case_id, "state": str(current.state)},
                )
            self._escrow.execute_payouts(current, payouts)
            return self.transition(
                case.case_id,
                case.state,
                CaseState.RESOLVED,
                {
                    **(updates or {}),
                    "resolution_path": str(resolution_path),
                    "final_contractor_percent": final_contractor_percent,
                    "resolved_at": now_iso(),
                },
            )

    def release_happy_path(self, case_id: str, caller: str) -> CaseRecord:
        """Client confirms the work: contractor is paid in full, fees go back."""
        with self._lock:
            case = self.get_case(case_id)
            if caller != case.client_id:
                raise UnauthorizedError(
                    "Only the client can release funds",
                    {"case_id": case_id, "caller": caller},
                )
            if case.state != CaseState.ACTIVE:
                raise InvalidStateError(
                    "Case is not active",
                    {"case_id": case_id, "state": str(case.state)},
                )

            payouts = plan_split_payouts(
                case.client_id, case.contractor_id, case.contract_amount, 100
            ) + plan_full_fee_refund(case.client_id, case.contractor_id, case.fee_amount)
            return self.settle(case, payouts, ResolutionPath.HAPPY_PATH, 100)

    def raise_dispute(self, case_id: str, caller: str) -> CaseRecord:
        """Either party freezes the case for adjudication."""
        with self._lock:
            case = self.get_case(case_id)
            if not case.is_party(caller):
                raise UnauthorizedError(
                    "Only the client or contractor can raise a dispute",
                    {"case_id": case_id, "caller": caller},
                )
            if case.state != CaseState.ACTIVE:
                raise InvalidStateError(
                    "Disputes can only be raised on active cases",
                    {"case_id": case_id, "state": str(case.state)},
                )
            if self.payout_started(case_id):
                raise InvalidStateError(
                    "Release already in progress; retry the release instead",
                    {"case_id": case_id, "released": self._store.total_released(case_id)},
                )
            return self.transition(
                case_id,
                CaseState.ACTIVE,
                CaseState.DISPUTE_RAISED,
                {"dispute_raised_by": caller, "dispute_raised_at": now_iso()},
            )

    def count_cases(self) -> int:
        """Count all cases."""
        return self._store.count_cases()

    def count_open(self) -> int:
        """Count cases not yet resolved."""
        return self._store.count_open()
