"""Unit tests for the pure consensus and settlement functions."""

from __future__ import annotations

import pytest

from escrow_tribunal.exceptions import InvalidInputError, NoValidVotersError
from escrow_tribunal.services.consensus_math import (
    KarmaRules,
    OutlierRules,
    compute_outcome,
    distribute_pool,
    fee_refunds,
    mark_outliers,
    median_absolute_deviation,
    outlier_penalty,
    outlier_threshold,
    plan_consensus_settlement,
    split_amount,
    updated_karma,
    validate_percent,
    weighted_median,
)
from escrow_tribunal.services.records import VoteRecord

RULES = KarmaRules(floor=20, start=100, max=200, max_penalty=30)
OUTLIERS = OutlierRules(multiplier=3, minimum=15)


def _vote(voter_id: str, value: int, karma: int = 100) -> VoteRecord:
    return VoteRecord(
        case_id="case-1",
        voter_id=voter_id,
        value=value,
        karma=karma,
        cast_at="2026-01-01T00:00:00.000000Z",
    )


@pytest.mark.unit
class TestWeightedMedian:
    """Karma-weighted median selection."""

    def test_equal_weights_pick_middle_value(self) -> None:
        votes = [_vote("a", 20), _vote("b", 50), _vote("c", 80)]
        assert weighted_median(votes) == 50

    def test_far_outlier_does_not_move_median(self) -> None:
        votes = [_vote("a", 10), _vote("b", 70), _vote("c", 72)]
        assert weighted_median(votes) == 70

    def test_heavier_voter_dominates(self) -> None:
        votes = [_vote("a", 10, karma=10), _vote("b", 90, karma=190)]
        assert weighted_median(votes) == 90

    def test_exact_midpoint_favours_lower_value(self) -> None:
        votes = [_vote("a", 40), _vote("b", 60)]
        assert weighted_median(votes) == 40

    def test_independent_of_insertion_order(self) -> None:
        votes = [_vote("c", 78), _vote("a", 20), _vote("e", 82), _vote("b", 75), _vote("d", 80)]
        assert weighted_median(votes) == weighted_median(list(reversed(votes))) == 78

    def test_empty_votes_rejected(self) -> None:
        with pytest.raises(ValueError):
            weighted_median([])


@pytest.mark.unit
class TestDispersionAndOutliers:
    """MAD, threshold, and outlier marking."""

    def test_mad_odd_count(self) -> None:
        assert median_absolute_deviation([10, 70, 72], 70) == 2

    def test_mad_even_count_takes_upper_middle(self) -> None:
        assert median_absolute_deviation([1, 2, 3, 4], 2) == 1

    def test_threshold_never_below_minimum(self) -> None:
        assert outlier_threshold(0, OUTLIERS) == 15
        assert outlier_threshold(3, OUTLIERS) == 15
        assert outlier_threshold(10, OUTLIERS) == 30

    def test_deviation_equal_to_threshold_is_not_outlier(self) -> None:
        marked = mark_outliers([_vote("a", 50), _vote("b", 65)], 50, 15)
        assert [vote.is_outlier for vote in marked] == [False, False]
        assert [vote.deviation for vote in marked] == [0, 15]

    def test_mark_outliers_returns_copies(self) -> None:
        original = _vote("a", 10)
        marked = mark_outliers([original], 70, 15)
        assert marked[0].is_outlier is True
        assert original.deviation is None


@pytest.mark.unit
class TestKarmaRule:
    """Penalty and reward arithmetic."""

    def test_penalty_is_quadratic_and_capped(self) -> None:
        assert outlier_penalty(20, RULES) == 4
        assert outlier_penalty(58, RULES) == 30

    def test_outlier_loses_penalty(self) -> None:
        assert updated_karma(100, 58, True, RULES) == 70

    def test_outlier_never_below_floor(self) -> None:
        assert updated_karma(25, 90, True, RULES) == 20

    def test_close_vote_gains_three(self) -> None:
        assert updated_karma(100, 3, False, RULES) == 103

    def test_near_vote_gains_one(self) -> None:
        assert updated_karma(100, 8, False, RULES) == 101

    def test_neutral_band_unchanged(self) -> None:
        assert updated_karma(100, 12, False, RULES) == 100

    def test_reward_doubled_below_start(self) -> None:
        assert updated_karma(90, 3, False, RULES) == 96
        assert updated_karma(90, 8, False, RULES) == 92

    def test_reward_capped_at_max(self) -> None:
        assert updated_karma(199, 0, False, RULES) == 200


@pytest.mark.unit
class TestSettlementArithmetic:
    """Integer splits and pool distribution."""

    def test_split_truncates_toward_client(self) -> None:
        assert split_amount(999, 33) == (329, 670)

    def test_split_extremes(self) -> None:
        assert split_amount(1000, 0) == (0, 1000)
        assert split_amount(1000, 100) == (1000, 0)

    def test_fee_refunds_proportional(self) -> None:
        assert fee_refunds(50, 78) == (39, 11)
        assert fee_refunds(0, 50) == (0, 0)

    def test_pool_distribution_conserves_units(self) -> None:
        shares = distribute_pool(10, {"a": 1, "b": 2})
        assert shares == {"a": 3, "b": 7}

    def test_pool_leftover_ties_broken_by_voter_id(self) -> None:
        shares = distribute_pool(50, {"d": 100, "c": 100, "b": 100, "a": 100})
        assert shares == {"a": 13, "b": 13, "c": 12, "d": 12}

    def test_invalid_percent_rejected(self) -> None:
        for value in (-1, 101, True, 50.0):
            with pytest.raises(InvalidInputError) as exc_info:
                validate_percent(value)  # type: ignore[arg-type]
            assert exc_info.value.error == "INVALID_PERCENT"

    def test_all_outliers_fail_closed(self) -> None:
        marked = [
            VoteRecord("case-1", "a", 0, 100, "t", deviation=90, is_outlier=True),
            VoteRecord("case-1", "b", 100, 100, "t", deviation=90, is_outlier=True),
        ]
        with pytest.raises(NoValidVotersError):
            plan_consensus_settlement("client", "contractor", 1000, 50, 90, marked)


@pytest.mark.unit
class TestComputeOutcome:
    """The full finalization computation over one set of votes."""

    def test_worked_example(self) -> None:
        votes = [
            _vote("voter-a", 75),
            _vote("voter-b", 80),
            _vote("voter-c", 78),
            _vote("voter-d", 82),
            _vote("voter-e", 20),
        ]
        karma = {vote.voter_id: 100 for vote in votes}

        outcome = compute_outcome(
            "client", "contractor", 1000, 50, votes, karma, RULES, OUTLIERS
        )

        assert outcome.consensus_percent == 78
        assert outcome.dispersion == 3
        assert outcome.outlier_threshold == 15
        assert outcome.reward_pool == 50
        assert outcome.karma_changes == {
            "voter-a": 103,
            "voter-b": 103,
            "voter-c": 103,
            "voter-d": 103,
            "voter-e": 70,
        }
        assert outcome.reward_shares == {
            "voter-a": 13,
            "voter-b": 13,
            "voter-c": 12,
            "voter-d": 12,
        }
        by_purpose = {payout.purpose: payout.amount for payout in outcome.payouts}
        assert by_purpose["contract:contractor"] == 780
        assert by_purpose["contract:client"] == 220
        assert by_purpose["fee:contractor"] == 39
        assert by_purpose["fee:client"] == 11
        assert "reward:voter-e" not in by_purpose
        assert sum(by_purpose.values()) == 1100

    def test_voters_without_live_karma_are_untouched(self) -> None:
        votes = [_vote("a", 50), _vote("b", 52), _vote("c", 54)]
        outcome = compute_outcome(
            "client", "contractor", 100, 5, votes, {"a": 100, "c": 100}, RULES, OUTLIERS
        )
        assert "b" not in outcome.karma_changes
        assert next(vote for vote in outcome.votes if vote.voter_id == "b").karma_delta == 0
