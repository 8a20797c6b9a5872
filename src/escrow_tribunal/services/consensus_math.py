"""
Pure consensus arithmetic.

Everything here is integer-only and depends solely on its arguments, so every
participant derives identical results from the same persisted votes.
Vote order never matters: inputs are sorted before any accumulation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from escrow_tribunal.exceptions import InvalidInputError, NoValidVotersError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from escrow_tribunal.services.records import VoteRecord

CLOSE_DEVIATION = 5
CLOSE_REWARD = 3
NEAR_DEVIATION = 10
NEAR_REWARD = 1


@dataclass(frozen=True)
class KarmaRules:
    """Bounds and penalty cap for the karma update."""

    floor: int
    start: int
    max: int
    max_penalty: int


@dataclass(frozen=True)
class OutlierRules:
    """Threshold = max(multiplier * dispersion, minimum)."""

    multiplier: int
    minimum: int


@dataclass(frozen=True)
class Payout:
    """One release instruction. ``purpose`` is unique within a case."""

    purpose: str
    recipient_id: str
    amount: int


@dataclass
class ConsensusOutcome:
    """Everything finalization derives from a session's votes."""

    consensus_percent: int
    dispersion: int
    outlier_threshold: int
    votes: list[VoteRecord]
    karma_changes: dict[str, int]
    payouts: list[Payout]
    reward_pool: int
    reward_shares: dict[str, int] = field(default_factory=dict)


def validate_percent(value: int, field_name: str = "percent") -> int:
    """Reject anything outside the integer range 0..100."""
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise InvalidInputError(
            f"{field_name} must be an integer between 0 and 100",
            {"field": field_name, "value": value},
            error="INVALID_PERCENT",
        )
    return value


def _sorted_votes(votes: Sequence[VoteRecord]) -> list[VoteRecord]:
    return sorted(votes, key=lambda vote: (vote.value, vote.voter_id))


def weighted_median(votes: Sequence[VoteRecord]) -> int:
    """
    Karma-weighted median of vote values.

    Votes are sorted ascending by value and karma is accumulated in that order;
    the first value whose cumulative weight reaches half of the total wins.
    Landing exactly on the midpoint therefore picks the lower value.
    """
    if len(votes) == 0:
        msg = "weighted_median requires at least one vote"
        raise ValueError(msg)

    ordered = _sorted_votes(votes)
    total_weight = sum(vote.karma for vote in ordered)
    if total_weight <= 0:
        # Degenerate weights: fall back to the plain lower median
        return ordered[(len(ordered) - 1) // 2].value

    cumulative = 0
    for vote in ordered:
        cumulative += vote.karma
        if 2 * cumulative >= total_weight:
            return vote.value
    return ordered[-1].value


def median_absolute_deviation(values: Sequence[int], center: int) -> int:
    """Unweighted median of |value - center|; even counts take the upper middle element."""
    if len(values) == 0:
        return 0
    deviations = sorted(abs(value - center) for value in values)
    return deviations[len(deviations) // 2]


def outlier_threshold(dispersion: int, rules: OutlierRules) -> int:
    """Scale dispersion, never letting the threshold collapse toward zero."""
    return max(rules.multiplier * dispersion, rules.minimum)


def mark_outliers(
    votes: Sequence[VoteRecord],
    consensus: int,
    threshold: int,
) -> list[VoteRecord]:
    """Return copies of the votes with deviation and outlier flag filled in."""
    marked: list[VoteRecord] = []
    for vote in _sorted_votes(votes):
        deviation = abs(vote.value - consensus)
        marked.append(replace(vote, deviation=deviation, is_outlier=deviation > threshold))
    return marked


def outlier_penalty(deviation: int, rules: KarmaRules) -> int:
    """Quadratic penalty, capped."""
    return min(deviation * deviation // 100, rules.max_penalty)


def accuracy_reward(deviation: int) -> int:
    """Reward for a non-outlier vote; zero in the neutral band."""
    if deviation <= CLOSE_DEVIATION:
        return CLOSE_REWARD
    if deviation <= NEAR_DEVIATION:
        return NEAR_REWARD
    return 0


def updated_karma(current: int, deviation: int, is_outlier: bool, rules: KarmaRules) -> int:
    """
    Apply the karma rule to one voter.

    Outliers lose ``min(deviation**2 // 100, max_penalty)`` but never drop below
    the floor. Accurate voters gain +3 / +1, doubled while below the starting
    score, and never exceed the maximum.
    """
    if is_outlier:
        return max(current - outlier_penalty(deviation, rules), rules.floor)

    delta = accuracy_reward(deviation)
    if delta > 0 and current < rules.start:
        delta *= 2
    return min(current + delta, rules.max)


def split_amount(amount: int, contractor_percent: int) -> tuple[int, int]:
    """Split by percentage, truncating; the client share absorbs the remainder."""
    validate_percent(contractor_percent, "contractor_percent")
    contractor_share = amount * contractor_percent // 100
    return contractor_share, amount - contractor_share


def fee_refunds(fee_amount: int, contractor_percent: int) -> tuple[int, int]:
    """
    Each party's fee refund is proportional to its own winning share.

    Returns (contractor_refund, client_refund). Both truncate, so the sum can be
    below ``2 * fee_amount``; the difference funds the voter reward pool.
    """
    validate_percent(contractor_percent, "contractor_percent")
    contractor_refund = fee_amount * contractor_percent // 100
    client_refund = fee_amount * (100 - contractor_percent) // 100
    return contractor_refund, client_refund


def distribute_pool(pool: int, weights: Mapping[str, int]) -> dict[str, int]:
    """
    Split ``pool`` proportionally to ``weights`` without losing a unit.

    Each share is truncated first; leftover units go one at a time to the
    largest fractional remainders, ties broken by voter id.
    """
    total_weight = sum(weights.values())
    if pool <= 0 or total_weight <= 0:
        return {voter_id: 0 for voter_id in weights}

    shares: dict[str, int] = {}
    remainders: list[tuple[int, str]] = []
    for voter_id in sorted(weights):
        numerator = pool * weights[voter_id]
        shares[voter_id] = numerator // total_weight
        remainders.append((numerator % total_weight, voter_id))

    leftover = pool - sum(shares.values())
    for _, voter_id in sorted(remainders, key=lambda item: (-item[0], item[1]))[:leftover]:
        shares[voter_id] += 1
    return shares


def plan_split_payouts(
    client_id: str,
    contractor_id: str,
    contract_amount: int,
    contractor_percent: int,
) -> list[Payout]:
    """Release instructions for the contract amount only."""
    contractor_share, client_share = split_amount(contract_amount, contractor_percent)
    return [
        Payout("contract:contractor", contractor_id, contractor_share),
        Payout("contract:client", client_id, client_share),
    ]


def plan_full_fee_refund(client_id: str, contractor_id: str, fee_amount: int) -> list[Payout]:
    """Both fees returned to their depositors."""
    return [
        Payout("fee:client", client_id, fee_amount),
        Payout("fee:contractor", contractor_id, fee_amount),
    ]


def plan_consensus_settlement(
    client_id: str,
    contractor_id: str,
    contract_amount: int,
    fee_amount: int,
    consensus_percent: int,
    marked_votes: Sequence[VoteRecord],
) -> tuple[list[Payout], int, dict[str, int]]:
    """
    Settlement after a consensus verdict.

    Returns (payouts, reward_pool, reward_shares). Fails closed with
    NoValidVotersError when no non-outlier voter remains to receive the pool.
    """
    valid_weights = {vote.voter_id: vote.karma for vote in marked_votes if not vote.is_outlier}
    if len(valid_weights) == 0:
        raise NoValidVotersError(
            "No non-outlier voters to receive the reward pool",
            {"vote_count": len(marked_votes)},
        )

    payouts = plan_split_payouts(client_id, contractor_id, contract_amount, consensus_percent)
    contractor_refund, client_refund = fee_refunds(fee_amount, consensus_percent)
    payouts.append(Payout("fee:contractor", contractor_id, contractor_refund))
    payouts.append(Payout("fee:client", client_id, client_refund))

    reward_pool = 2 * fee_amount - contractor_refund - client_refund
    reward_shares = distribute_pool(reward_pool, valid_weights)
    for voter_id in sorted(reward_shares):
        payouts.append(Payout(f"reward:{voter_id}", voter_id, reward_shares[voter_id]))

    return payouts, reward_pool, reward_shares


def compute_outcome(
    client_id: str,
    contractor_id: str,
    contract_amount: int,
    fee_amount: int,
    votes: Sequence[VoteRecord],
    current_karma: Mapping[str, int],
    karma_rules: KarmaRules,
    outlier_rules: OutlierRules,
) -> ConsensusOutcome:
    """
    Run finalization steps 1-6 over a session's votes.

    ``current_karma`` holds the live score of every voter whose record may be
    updated; voters missing from it keep their record untouched.
    """
    consensus = weighted_median(votes)
    dispersion = median_absolute_deviation([vote.value for vote in votes], consensus)
    threshold = outlier_threshold(dispersion, outlier_rules)
    marked = mark_outliers(votes, consensus, threshold)

    karma_changes: dict[str, int] = {}
    final_votes: list[VoteRecord] = []
    for vote in marked:
        deviation = vote.deviation if vote.deviation is not None else 0
        current = current_karma.get(vote.voter_id)
        if current is None:
            final_votes.append(replace(vote, karma_delta=0))
            continue
        new_karma = updated_karma(current, deviation, vote.is_outlier, karma_rules)
        karma_changes[vote.voter_id] = new_karma
        final_votes.append(replace(vote, karma_delta=new_karma - current))

    payouts, reward_pool, reward_shares = plan_consensus_settlement(
        client_id,
        contractor_id,
        contract_amount,
        fee_amount,
        consensus,
        final_votes,
    )

    return ConsensusOutcome(
        consensus_percent=consensus,
        dispersion=dispersion,
        outlier_threshold=threshold,
        votes=final_votes,
        karma_changes=karma_changes,
        payouts=payouts,
        reward_pool=reward_pool,
        reward_shares=reward_shares,
    )
