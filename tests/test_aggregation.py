"""Jury tally and consensus."""

import pytest

from arena.lib.models import ConsensusLevel, Side, VoteSnapshot
from arena.orchestrator.aggregation import consensus_level, tally_votes


def votes(*entries: tuple[str, int]) -> list[VoteSnapshot]:
    return [
        VoteSnapshot(juror_number=i, vote=Side(side), confidence=confidence, reasoning="r")
        for i, (side, confidence) in enumerate(entries, start=1)
    ]


def test_majority_with_medium_consensus():
    tally = tally_votes(
        votes(("A", 9), ("A", 8), ("A", 7), ("A", 9), ("A", 8), ("B", 6), ("B", 7)),
        expected_jurors=7,
    )
    assert tally.votes_a == 5
    assert tally.votes_b == 2
    assert tally.total_votes == 7
    assert tally.majority_side == Side.A
    assert tally.consensus_level == ConsensusLevel.MEDIUM
    assert tally.average_confidence == 7.7


@pytest.mark.parametrize(
    "votes_a,votes_b,expected",
    [
        (7, 0, ConsensusLevel.HIGH),
        (6, 1, ConsensusLevel.HIGH),
        (5, 2, ConsensusLevel.MEDIUM),
        (4, 3, ConsensusLevel.LOW),
        (2, 5, ConsensusLevel.MEDIUM),
        (4, 1, ConsensusLevel.HIGH),
        (3, 2, ConsensusLevel.MEDIUM),
    ],
)
def test_consensus_thresholds(votes_a, votes_b, expected):
    assert consensus_level(votes_a, votes_b) == expected


def test_tie_has_no_majority():
    tally = tally_votes(votes(("A", 5), ("B", 5)), expected_jurors=2)
    assert tally.majority_side is None
    assert tally.consensus_level == ConsensusLevel.LOW


def test_partial_jury_reports_no_consensus():
    tally = tally_votes(votes(("B", 9), ("B", 9), ("B", 9)), expected_jurors=7)
    assert tally.majority_side == Side.B
    assert tally.consensus_level is None


def test_empty_jury():
    tally = tally_votes([], expected_jurors=7)
    assert tally.total_votes == 0
    assert tally.majority_side is None
    assert tally.average_confidence == 0.0


@pytest.mark.parametrize(
    "confidences,expected",
    [
        ([7, 7, 7, 8], 7.3),
        ([6, 7, 7, 7, 7, 7, 7, 7], 6.9),
        ([1, 2], 1.5),
        ([9, 8, 7, 9, 8, 6, 7], 7.7),
    ],
)
def test_average_confidence_rounds_half_up(confidences, expected):
    tally = tally_votes(
        votes(*(("A", c) for c in confidences)), expected_jurors=len(confidences)
    )
    assert tally.average_confidence == expected
