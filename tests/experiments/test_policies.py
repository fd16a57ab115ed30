from __future__ import annotations

import random
from fractions import Fraction

import pytest

from campaign_lab.experiments.allocator import HUNDRED, allocate
from campaign_lab.experiments.models import AllocationMode
from campaign_lab.experiments.policies import StaticPolicy, ThompsonSamplingPolicy, policy_for
from campaign_lab.experiments.stats_engine import VariantEvent, VariantStatsEngine


def _stats(*rows):
    engine = VariantStatsEngine([f"v{i}" for i in range(len(rows))])
    for idx, (traffic, conversions) in enumerate(rows):
        engine.apply(VariantEvent(idx, traffic_delta=traffic, conversion_delta=conversions))
    return engine.snapshot()


def test_static_policy_returns_allocator_shares():
    alloc = allocate(40, 3)
    assert StaticPolicy().reallocate(alloc, _stats((10, 1), (10, 5), (10, 2))) == alloc.shares()


class TestThompsonSampling:
    def test_shares_sum_to_hundred(self):
        policy = ThompsonSamplingPolicy(rng=random.Random(1))
        shares = policy.reallocate(allocate(50, 3), _stats((100, 10), (100, 30), (100, 12)))
        assert sum(shares) == HUNDRED
        assert all(isinstance(s, Fraction) for s in shares)

    def test_best_arm_gets_most_traffic(self):
        policy = ThompsonSamplingPolicy(rng=random.Random(1))
        shares = policy.reallocate(allocate(50, 3), _stats((400, 40), (400, 120), (400, 44)))
        assert shares[1] == max(shares)
        assert shares[1] > 90

    def test_floor_keeps_every_arm_alive(self):
        policy = ThompsonSamplingPolicy(floor_percent=Fraction(5), rng=random.Random(3))
        shares = policy.reallocate(allocate(50, 2), _stats((1000, 10), (1000, 500)))
        assert min(shares) >= 5

    def test_reproducible_with_same_seed(self):
        stats = _stats((50, 5), (50, 8))
        a = ThompsonSamplingPolicy(rng=random.Random(9)).reallocate(allocate(50, 2), stats)
        b = ThompsonSamplingPolicy(rng=random.Random(9)).reallocate(allocate(50, 2), stats)
        assert a == b

    def test_length_mismatch_falls_back_to_allocation(self):
        alloc = allocate(50, 3)
        assert ThompsonSamplingPolicy().reallocate(alloc, _stats((1, 0), (1, 1))) == alloc.shares()

    def test_win_probabilities_sum_to_one(self):
        probs = ThompsonSamplingPolicy(draws=500).win_probabilities(_stats((10, 2), (10, 3)))
        assert sum(probs) == pytest.approx(1.0)

    def test_invalid_draws(self):
        with pytest.raises(ValueError):
            ThompsonSamplingPolicy(draws=0)


def test_policy_for_modes():
    assert isinstance(policy_for(AllocationMode.STATIC), StaticPolicy)
    assert isinstance(policy_for("dynamic_mab"), ThompsonSamplingPolicy)
