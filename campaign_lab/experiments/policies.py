"""
Reallocation policies for the two allocation modes.

- StaticPolicy: the allocator's split holds for the experiment lifetime.
- ThompsonSamplingPolicy: shares follow the posterior probability that each
  variant is the best one (Beta-Bernoulli posteriors, Monte Carlo).

The core only computes shares; pushing them to the ad-serving side is the
caller's job.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Optional, Protocol, Sequence, Tuple

import deal

from campaign_lab.experiments.allocator import HUNDRED, TrafficAllocation
from campaign_lab.experiments.models import AllocationMode
from campaign_lab.experiments.stats_engine import VariantStat


class ReallocationPolicy(Protocol):
    def reallocate(
        self,
        allocation: TrafficAllocation,
        stats: Sequence[VariantStat],
    ) -> Tuple[Fraction, ...]:
        ...


class StaticPolicy:
    """No-op: returns the allocator's shares."""

    def reallocate(
        self,
        allocation: TrafficAllocation,
        stats: Sequence[VariantStat],
    ) -> Tuple[Fraction, ...]:
        return allocation.shares()


@dataclass
class ThompsonSamplingPolicy:
    draws: int = 2000
    # Minimum share (percent) kept on every arm so none starves completely
    floor_percent: Fraction = Fraction(1)
    rng: random.Random = field(default_factory=lambda: random.Random(0))

    def __post_init__(self) -> None:
        if self.draws <= 0:
            raise ValueError("draws must be > 0")
        if self.floor_percent < 0:
            raise ValueError("floor_percent must be >= 0")

    def win_counts(self, stats: Sequence[VariantStat]) -> Tuple[int, ...]:
        wins = [0] * len(stats)
        for _ in range(self.draws):
            samples = [
                self.rng.betavariate(1 + s.conversions, 1 + (s.traffic - s.conversions))
                for s in stats
            ]
            wins[max(range(len(samples)), key=samples.__getitem__)] += 1
        return tuple(wins)

    def win_probabilities(self, stats: Sequence[VariantStat]) -> Tuple[float, ...]:
        return tuple(w / self.draws for w in self.win_counts(stats))

    @deal.post(lambda result: sum(result) == HUNDRED, message="shares sum to 100")
    def reallocate(
        self,
        allocation: TrafficAllocation,
        stats: Sequence[VariantStat],
    ) -> Tuple[Fraction, ...]:
        if allocation.is_inert or len(stats) != allocation.variant_count:
            return allocation.shares()

        n = len(stats)
        floor = min(self.floor_percent, HUNDRED / n)
        spare = HUNDRED - floor * n
        wins = self.win_counts(stats)
        return tuple(floor + spare * Fraction(w, self.draws) for w in wins)


def policy_for(mode: AllocationMode, rng: Optional[random.Random] = None) -> ReallocationPolicy:
    if AllocationMode(mode) is AllocationMode.DYNAMIC_MAB:
        return ThompsonSamplingPolicy(rng=rng or random.Random(0))
    return StaticPolicy()
