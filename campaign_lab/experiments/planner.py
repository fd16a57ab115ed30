"""
SampleSizePlanner - minimum sample and estimated duration for an experiment.

The per-variant baseline is a heuristic minimum-detectable-effect size, not
a power calculation; it is a constructor parameter so products can tune it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import deal

from campaign_lab.config.thresholds import (
    AB_TEST_THRESHOLD,
    BASE_SAMPLE_PER_VARIANT,
    CYCLE_DAYS,
)
from campaign_lab.experiments.errors import DivideByZeroGuard


@dataclass(frozen=True)
class SamplePlan:
    variant_count: int
    min_sample_size: int
    daily_traffic: int
    estimated_duration: Optional[int]
    error: Optional[DivideByZeroGuard] = None

    @property
    def duration_known(self) -> bool:
        return self.estimated_duration is not None

    def duration_or_raise(self) -> int:
        if self.estimated_duration is None:
            raise self.error or DivideByZeroGuard("estimated duration undefined")
        return self.estimated_duration

    def to_dict(self) -> dict:
        return {
            "variant_count": self.variant_count,
            "min_sample_size": self.min_sample_size,
            "daily_traffic": self.daily_traffic,
            "estimated_duration_days": self.estimated_duration,
            "error": self.error.code if self.error else None,
        }


@dataclass(frozen=True)
class SampleSizePlanner:
    base_sample_per_variant: int = BASE_SAMPLE_PER_VARIANT
    cycle_days: int = CYCLE_DAYS

    @classmethod
    def from_settings(cls, settings) -> SampleSizePlanner:
        return cls(
            base_sample_per_variant=settings.base_sample_per_variant,
            cycle_days=settings.cycle_days,
        )

    @deal.pre(lambda self, variant_count, audience_size: variant_count >= 1, message="variant_count >= 1")
    @deal.pre(lambda self, variant_count, audience_size: audience_size >= 0, message="audience_size >= 0")
    @deal.raises(deal.PreContractError)
    def plan(self, variant_count: int, audience_size: int) -> SamplePlan:
        total_sample_needed = self.base_sample_per_variant * variant_count
        # Audience is assumed to be reached over one weekly cycle of touchpoints
        daily_traffic = int(audience_size) // self.cycle_days

        if daily_traffic == 0:
            return SamplePlan(
                variant_count=variant_count,
                min_sample_size=total_sample_needed,
                daily_traffic=0,
                estimated_duration=None,
                error=DivideByZeroGuard(
                    "audience yields zero daily traffic",
                    details={"audience_size": audience_size, "cycle_days": self.cycle_days},
                ),
            )

        duration = math.ceil(total_sample_needed / daily_traffic)
        return SamplePlan(
            variant_count=variant_count,
            min_sample_size=total_sample_needed,
            daily_traffic=daily_traffic,
            estimated_duration=max(duration, 1),
        )


def is_ab_test_eligible(audience_size: int, threshold: int = AB_TEST_THRESHOLD) -> bool:
    """A/B testing is only offered once the audience is large enough to split."""
    return audience_size >= threshold
