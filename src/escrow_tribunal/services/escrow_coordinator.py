"""Escrow deposit and release coordination against the ledger custodian."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_tribunal.exceptions import EscrowTransferFailedError, ServiceError
from escrow_tribunal.logging import get_logger
from escrow_tribunal.services.case_store import DuplicateReleaseError
from escrow_tribunal.services.records import ReleaseRecord
from escrow_tribunal.services.timestamps import now_iso

if TYPE_CHECKING:
    from escrow_tribunal.services.consensus_math import Payout
    from escrow_tribunal.services.protocols import CaseRepository, LedgerCustodian
    from escrow_tribunal.services.records import CaseRecord


class EscrowCoordinator:
    """Instructs the custodian and keeps the per-case release log consistent."""

    def __init__(self, custodian: LedgerCustodian, store: CaseRepository) -> None:
        self._custodian = custodian
        self._store = store
        self._logger = get_logger(__name__)

    def _deposit(self, case_id: str, payer_id: str, amount: int, is_fee: bool) -> None:
        try:
            self._custodian.deposit(case_id, payer_id, amount, is_fee)
        except ServiceError as exc:
            raise EscrowTransferFailedError(
                "Custodian rejected deposit",
                {"case_id": case_id, "payer_id": payer_id, "amount": amount, "cause": exc.error},
            ) from exc
        except Exception as exc:
            raise EscrowTransferFailedError(
                "Custodian rejected deposit",
                {"case_id": case_id, "payer_id": payer_id, "amount": amount},
            ) from exc

    def _release(self, recipient_id: str, amount: int, case_id: str) -> None:
        try:
            self._custodian.release_funds(recipient_id, amount, case_id)
        except ServiceError as exc:
            raise EscrowTransferFailedError(
                "Custodian rejected release",
                {
                    "case_id": case_id,
                    "recipient_id": recipient_id,
                    "amount": amount,
                    "cause": exc.error,
                },
            ) from exc
        except Exception as exc:
            raise EscrowTransferFailedError(
                "Custodian rejected release",
                {"case_id": case_id, "recipient_id": recipient_id, "amount": amount},
            ) from exc

    def escrow_case_funds(
        self,
        case_id: str,
        client_id: str,
        contractor_id: str,
        contract_amount: int,
        fee_amount: int,
    ) -> None:
        """
        Deposit contract amount and client fee from the client, then the contractor fee.

        If any deposit fails, the deposits already made are returned to their
        payers before EscrowTransferFailedError propagates.
        """
        plan: list[tuple[str, int, bool]] = [
            (client_id, contract_amount, False),
            (client_id, fee_amount, True),
            (contractor_id, fee_amount, True),
        ]
        completed: list[tuple[str, int]] = []
        for payer_id, amount, is_fee in plan:
            if amount <= 0:
                continue
            try:
                self._deposit(case_id, payer_id, amount, is_fee)
            except EscrowTransferFailedError as exc:
                self._compensate(case_id, completed, exc)
                raise
            completed.append((payer_id, amount))

    def _compensate(
        self,
        case_id: str,
        completed: list[tuple[str, int]],
        failure: EscrowTransferFailedError,
    ) -> None:
        for payer_id, amount in reversed(completed):
            try:
                self._release(payer_id, amount, case_id)
            except EscrowTransferFailedError:
                self._logger.exception(
                    "Compensating release failed after deposit failure",
                    extra={"case_id": case_id, "payer_id": payer_id, "amount": amount},
                )
                failure.details["compensation_failed"] = True
                continue
            self._logger.warning(
                "Deposit rolled back",
                extra={"case_id": case_id, "payer_id": payer_id, "amount": amount},
            )

    def execute_payouts(self, case: CaseRecord, payouts: list[Payout]) -> None:
        """
        Release every payout not yet recorded for this case.

        Payouts must account for everything escrowed. Releases already in the
        log are skipped, so a call that failed part way can simply be repeated.
        """
        planned_total = sum(payout.amount for payout in payouts)
        if planned_total != case.escrowed_total:
            msg = (
                f"Payout plan for {case.case_id} releases {planned_total}, "
                f"escrowed {case.escrowed_total}"
            )
            raise RuntimeError(msg)

        already_released = {
            release.purpose: release for release in self._store.get_releases(case.case_id)
        }
        for payout in payouts:
            if payout.amount <= 0:
                continue
            existing = already_released.get(payout.purpose)
            if existing is not None:
                if existing.amount != payout.amount or existing.recipient_id != payout.recipient_id:
                    msg = f"Recorded release {case.case_id}/{payout.purpose} differs from plan"
                    raise RuntimeError(msg)
                continue

            self._release(payout.recipient_id, payout.amount, case.case_id)
            try:
                self._store.record_release(
                    ReleaseRecord(
                        case_id=case.case_id,
                        purpose=payout.purpose,
                        recipient_id=payout.recipient_id,
                        amount=payout.amount,
                        released_at=now_iso(),
                    )
                )
            except DuplicateReleaseError:
                self._logger.warning(
                    "Release already recorded",
                    extra={"case_id": case.case_id, "purpose": payout.purpose},
                )

        if self._store.total_released(case.case_id) > case.escrowed_total:
            msg = f"Releases for {case.case_id} exceed escrowed total"
            raise RuntimeError(msg)
