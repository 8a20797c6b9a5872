"""Unit tests for CaseRegistry: opening, happy path, disputes, transitions."""

from __future__ import annotations

import pytest

from escrow_tribunal.exceptions import (
    EscrowTransferFailedError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from escrow_tribunal.services.consensus_math import Payout
from escrow_tribunal.services.records import CaseState, ResolutionPath
from tests.helpers import CLIENT_ID, CONTRACTOR_ID, RecordingCustodian, make_tribunal


@pytest.mark.unit
class TestOpenCase:
    """open_case() validation, fees, and escrow."""

    def test_open_case_escrows_amount_and_both_fees(self, wired) -> None:
        tribunal, custodian = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)

        assert case.state == CaseState.ACTIVE
        assert case.fee_amount == 50
        assert custodian.deposits == [
            (case.case_id, CLIENT_ID, 1000, False),
            (case.case_id, CLIENT_ID, 50, True),
            (case.case_id, CONTRACTOR_ID, 50, True),
        ]
        assert custodian.held[case.case_id] == 1100
        assert tribunal.cases.get_case(case.case_id) == case

    def test_fee_never_below_minimum(self, wired) -> None:
        tribunal, _ = wired
        assert tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 10).fee_amount == 1

    def test_same_party_rejected(self, wired) -> None:
        tribunal, custodian = wired
        with pytest.raises(InvalidInputError) as exc_info:
            tribunal.cases.open_case(CLIENT_ID, CLIENT_ID, 1000)
        assert exc_info.value.error == "INVALID_PARTY"
        assert custodian.deposits == []

    @pytest.mark.parametrize("amount", [0, -5, True])
    def test_non_positive_amount_rejected(self, wired, amount) -> None:
        tribunal, _ = wired
        with pytest.raises(InvalidInputError) as exc_info:
            tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, amount)
        assert exc_info.value.error == "INVALID_AMOUNT"

    def test_failed_deposit_refunds_earlier_deposits(self) -> None:
        custodian = RecordingCustodian()
        custodian.fail_deposit_on_call = 3
        tribunal, _ = make_tribunal(custodian)

        with pytest.raises(EscrowTransferFailedError) as exc_info:
            tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)

        assert exc_info.value.details["cause"] == "LEDGER_DOWN"
        case_id = custodian.deposits[0][0]
        assert custodian.held[case_id] == 0
        assert [(recipient, amount) for _, recipient, amount in custodian.releases] == [
            (CLIENT_ID, 50),
            (CLIENT_ID, 1000),
        ]
        assert tribunal.cases.count_cases() == 0
        tribunal.close()

    def test_unknown_case_not_found(self, wired) -> None:
        tribunal, _ = wired
        with pytest.raises(NotFoundError) as exc_info:
            tribunal.cases.get_case("case-missing")
        assert exc_info.value.error == "CASE_NOT_FOUND"
        assert exc_info.value.status_code == 404


@pytest.mark.unit
class TestHappyPath:
    """release_happy_path() pays the contractor and refunds both fees."""

    def test_client_release_conserves_funds(self, wired) -> None:
        tribunal, custodian = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)

        resolved = tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)

        assert resolved.state == CaseState.RESOLVED
        assert resolved.resolution_path == ResolutionPath.HAPPY_PATH
        assert resolved.final_contractor_percent == 100
        assert custodian.paid == {CONTRACTOR_ID: 1050, CLIENT_ID: 50}
        assert custodian.held[case.case_id] == 0
        assert tribunal.case_store.total_released(case.case_id) == 1100
        assert tribunal.cases.count_open() == 0

    def test_contractor_cannot_release(self, wired) -> None:
        tribunal, _ = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        with pytest.raises(UnauthorizedError):
            tribunal.cases.release_happy_path(case.case_id, CONTRACTOR_ID)

    def test_release_twice_is_invalid_state(self, wired) -> None:
        tribunal, custodian = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)

        with pytest.raises(InvalidStateError):
            tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)
        assert custodian.released_total(case.case_id) == 1100

    def test_failed_release_resumes_without_double_pay(self) -> None:
        custodian = RecordingCustodian()
        tribunal, _ = make_tribunal(custodian)
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        custodian.fail_release_for = {CLIENT_ID}

        with pytest.raises(EscrowTransferFailedError):
            tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)
        assert tribunal.cases.get_case(case.case_id).state == CaseState.ACTIVE

        custodian.fail_release_for = set()
        tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)

        assert custodian.paid == {CONTRACTOR_ID: 1050, CLIENT_ID: 50}
        assert custodian.released_total(case.case_id) == 1100
        tribunal.close()

    def test_half_released_case_cannot_be_disputed(self, wired) -> None:
        tribunal, custodian = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        custodian.fail_release_for = {CLIENT_ID}
        with pytest.raises(EscrowTransferFailedError):
            tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)
        assert custodian.paid[CONTRACTOR_ID] > 0

        for party in (CLIENT_ID, CONTRACTOR_ID):
            with pytest.raises(InvalidStateError):
                tribunal.cases.raise_dispute(case.case_id, party)
        assert tribunal.cases.get_case(case.case_id).state == CaseState.ACTIVE

        custodian.fail_release_for = set()
        resolved = tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)

        assert resolved.state == CaseState.RESOLVED
        assert custodian.paid == {CONTRACTOR_ID: 1050, CLIENT_ID: 50}
        assert custodian.held[case.case_id] == 0


@pytest.mark.unit
class TestDisputesAndTransitions:
    """raise_dispute() and the forward-only transition graph."""

    def test_either_party_can_raise(self, wired) -> None:
        tribunal, _ = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)

        disputed = tribunal.cases.raise_dispute(case.case_id, CONTRACTOR_ID)

        assert disputed.state == CaseState.DISPUTE_RAISED
        assert disputed.dispute_raised_by == CONTRACTOR_ID
        assert disputed.dispute_raised_at is not None

    def test_outsider_cannot_raise(self, wired) -> None:
        tribunal, _ = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        with pytest.raises(UnauthorizedError):
            tribunal.cases.raise_dispute(case.case_id, "stranger")

    def test_disputed_case_cannot_be_released(self, wired) -> None:
        tribunal, _ = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        tribunal.cases.raise_dispute(case.case_id, CLIENT_ID)
        with pytest.raises(InvalidStateError):
            tribunal.cases.release_happy_path(case.case_id, CLIENT_ID)
        with pytest.raises(InvalidStateError):
            tribunal.cases.raise_dispute(case.case_id, CONTRACTOR_ID)

    def test_backward_transition_rejected(self, wired) -> None:
        tribunal, _ = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        with pytest.raises(ValueError):
            tribunal.cases.transition(case.case_id, CaseState.RESOLVED, CaseState.ACTIVE)

    def test_stale_expected_state_loses(self, wired) -> None:
        tribunal, _ = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        tribunal.cases.raise_dispute(case.case_id, CLIENT_ID)
        with pytest.raises(InvalidStateError) as exc_info:
            tribunal.cases.transition(case.case_id, CaseState.ACTIVE, CaseState.RESOLVED)
        assert exc_info.value.details["state"] == "dispute_raised"

    def test_plan_not_matching_escrow_is_refused(self, wired) -> None:
        tribunal, custodian = wired
        case = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        with pytest.raises(RuntimeError):
            tribunal.cases.settle(
                case,
                [Payout("contract:contractor", CONTRACTOR_ID, 2000)],
                ResolutionPath.HAPPY_PATH,
                100,
            )
        assert custodian.releases == []

    def test_list_cases_by_state(self, wired) -> None:
        tribunal, _ = wired
        first = tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 1000)
        tribunal.cases.open_case(CLIENT_ID, CONTRACTOR_ID, 500)
        tribunal.cases.raise_dispute(first.case_id, CLIENT_ID)

        disputed = tribunal.cases.list_cases(CaseState.DISPUTE_RAISED)
        assert [case.case_id for case in disputed] == [first.case_id]
        assert tribunal.cases.count_cases() == 2
        assert tribunal.cases.count_open() == 2
