"""Jury vote aggregation."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from arena.lib.models import ConsensusLevel, JuryTally, JuryVote, Side, VoteSnapshot

HIGH_CONSENSUS = 0.8
MEDIUM_CONSENSUS = 0.6


def consensus_level(votes_a: int, votes_b: int) -> ConsensusLevel:
    total = votes_a + votes_b
    share = max(votes_a, votes_b) / total if total else 0.0
    if share >= HIGH_CONSENSUS:
        return ConsensusLevel.HIGH
    if share >= MEDIUM_CONSENSUS:
        return ConsensusLevel.MEDIUM
    return ConsensusLevel.LOW


def average_confidence(confidences: Sequence[int]) -> float:
    """Mean confidence to one decimal place, halves rounded up."""
    if not confidences:
        return 0.0
    mean = Decimal(sum(confidences)) / Decimal(len(confidences))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def tally_votes(
    votes: Sequence[JuryVote | VoteSnapshot], expected_jurors: int
) -> JuryTally:
    """
    Summarise a room's jury.

    The majority is a plain count (ties give no majority). Consensus is
    reported only once every expected juror has voted.
    """
    votes_a = sum(1 for v in votes if v.vote == Side.A)
    votes_b = sum(1 for v in votes if v.vote == Side.B)
    total = len(votes)

    if votes_a > votes_b:
        majority: Side | None = Side.A
    elif votes_b > votes_a:
        majority = Side.B
    else:
        majority = None

    average = average_confidence([v.confidence for v in votes])

    return JuryTally(
        votes_a=votes_a,
        votes_b=votes_b,
        total_votes=total,
        expected_jurors=expected_jurors,
        majority_side=majority,
        consensus_level=(
            consensus_level(votes_a, votes_b) if total and total >= expected_jurors else None
        ),
        average_confidence=average,
    )
