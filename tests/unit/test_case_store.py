"""Unit tests for CaseStore."""

import pytest

from escrow_tribunal.services.case_store import CaseStore, DuplicateCaseError, DuplicateReleaseError
from escrow_tribunal.services.records import CaseRecord, CaseState, ReleaseRecord


def _case(case_id: str = "case-1") -> CaseRecord:
    return CaseRecord(
        case_id=case_id,
        client_id="client-1",
        contractor_id="contractor-1",
        contract_amount=1000,
        fee_amount=50,
        state=CaseState.ACTIVE,
        created_at="2026-01-01T00:00:00.000000Z",
    )


@pytest.mark.unit
def test_insert_and_get_case(tmp_path) -> None:
    """insert_case() persists and get_case() retrieves the record."""
    store = CaseStore(db_path=str(tmp_path / "tribunal.db"))
    store.insert_case(_case())

    fetched = store.get_case("case-1")
    assert fetched == _case()
    assert fetched is not None
    assert fetched.escrowed_total == 1100
    assert store.get_case("missing") is None
    store.close()


@pytest.mark.unit
def test_duplicate_case_rejected(tmp_path) -> None:
    """A case id is stored once."""
    store = CaseStore(db_path=str(tmp_path / "tribunal.db"))
    store.insert_case(_case())
    with pytest.raises(DuplicateCaseError):
        store.insert_case(_case())
    store.close()


@pytest.mark.unit
def test_update_case_checks_expected_state(tmp_path) -> None:
    """update_case() only writes while the stored state matches."""
    store = CaseStore(db_path=str(tmp_path / "tribunal.db"))
    store.insert_case(_case())

    changed = store.update_case(
        "case-1",
        {"state": str(CaseState.DISPUTE_RAISED), "dispute_raised_by": "client-1"},
        expected_state=CaseState.ACTIVE,
    )
    stale = store.update_case(
        "case-1",
        {"state": str(CaseState.RESOLVED)},
        expected_state=CaseState.ACTIVE,
    )

    assert changed == 1
    assert stale == 0
    fetched = store.get_case("case-1")
    assert fetched is not None
    assert fetched.state == CaseState.DISPUTE_RAISED
    assert fetched.dispute_raised_by == "client-1"
    store.close()


@pytest.mark.unit
def test_update_case_rejects_unknown_column(tmp_path) -> None:
    """Only known columns can be written."""
    store = CaseStore(db_path=str(tmp_path / "tribunal.db"))
    store.insert_case(_case())
    with pytest.raises(ValueError):
        store.update_case("case-1", {"nope": 1}, expected_state=None)
    store.close()


@pytest.mark.unit
def test_list_and_count_cases(tmp_path) -> None:
    """list_cases() filters by state; count_open() excludes resolved cases."""
    store = CaseStore(db_path=str(tmp_path / "tribunal.db"))
    store.insert_case(_case("case-1"))
    store.insert_case(_case("case-2"))
    store.update_case("case-2", {"state": str(CaseState.RESOLVED)}, expected_state=None)

    assert [case.case_id for case in store.list_cases(CaseState.ACTIVE)] == ["case-1"]
    assert len(store.list_cases(None)) == 2
    assert store.count_cases() == 2
    assert store.count_open() == 1
    store.close()


@pytest.mark.unit
def test_release_log_is_unique_per_purpose(tmp_path) -> None:
    """record_release() stores each (case, purpose) once and totals add up."""
    store = CaseStore(db_path=":memory:")
    store.insert_case(_case())
    release = ReleaseRecord("case-1", "contract:contractor", "contractor-1", 700, "t")
    store.record_release(release)
    store.record_release(ReleaseRecord("case-1", "fee:client", "client-1", 50, "t"))

    with pytest.raises(DuplicateReleaseError):
        store.record_release(release)

    assert store.total_released("case-1") == 750
    assert {r.purpose for r in store.get_releases("case-1")} == {
        "contract:contractor",
        "fee:client",
    }
    store.close()
