"""Consensus gate: approval rate over a vote set and the advance-or-retry rule."""

from collections.abc import Sequence
from dataclasses import dataclass

from spec_council.models import ExpertVote

DEFAULT_THRESHOLD = 0.6
DEFAULT_MAX_ROUNDS = 3


def approval_rate(votes: Sequence[ExpertVote]) -> float:
    """Fraction of approving votes. Exactly 0.0 for an empty vote set."""
    if not votes:
        return 0.0
    return sum(1 for v in votes if v.approved) / len(votes)


@dataclass(frozen=True)
class ConsensusPolicy:
    threshold: float = DEFAULT_THRESHOLD
    max_rounds: int = DEFAULT_MAX_ROUNDS

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {self.threshold}")
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {self.max_rounds}")

    def should_advance(self, rate: float, round_number: int) -> bool:
        """Advance to the final document on enough approval or once the round cap is reached."""
        return rate >= self.threshold or round_number >= self.max_rounds


def should_advance(rate: float, round_number: int, policy: ConsensusPolicy = ConsensusPolicy()) -> bool:
    return policy.should_advance(rate, round_number)
