"""
TrafficAllocator - splits 100% of traffic between control and treatments.

Arithmetic is exact (Fraction); rounding happens only in the display
helpers so that shares always add back up to exactly 100.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Optional, Tuple

import deal

from campaign_lab.config.thresholds import CONTROL_PERCENT_MAX, CONTROL_PERCENT_MIN

HUNDRED = Fraction(100)


@dataclass(frozen=True)
class TrafficAllocation:
    control_percent: Fraction
    per_treatment_percent: Fraction
    variant_count: int

    @property
    def treatment_count(self) -> int:
        return max(self.variant_count - 1, 0)

    @property
    def is_inert(self) -> bool:
        return self.variant_count <= 1

    def shares(self) -> Tuple[Fraction, ...]:
        """Exact per-variant percentages, control first."""
        return (self.control_percent,) + (self.per_treatment_percent,) * self.treatment_count

    def display(self) -> Tuple[float, ...]:
        return tuple(round(float(s), 1) for s in self.shares())

    @property
    def per_treatment_display(self) -> float:
        return round(float(self.per_treatment_percent), 1)

    def to_dict(self) -> dict:
        return {
            "variant_count": self.variant_count,
            "control_percent": round(float(self.control_percent), 1),
            "per_treatment_percent": self.per_treatment_display,
            "shares": list(self.display()),
        }


@deal.pre(lambda control_traffic_percent, variant_count: variant_count >= 1, message="variant_count >= 1")
@deal.post(lambda result: sum(result.shares()) == HUNDRED, message="shares sum to 100")
@deal.raises(deal.PreContractError)
def allocate(control_traffic_percent: Optional[float], variant_count: int) -> TrafficAllocation:
    """
    control = clamp(control_traffic_percent, 1, 90)
    per_treatment = (100 - control) / (variant_count - 1)

    - variant_count == 1: inert, everything to control.
    - control_traffic_percent None: equal-split default floor(100 / n).
    """
    if variant_count == 1:
        return TrafficAllocation(control_percent=HUNDRED, per_treatment_percent=Fraction(0), variant_count=1)

    if control_traffic_percent is None:
        control = Fraction(100 // variant_count)
    else:
        control = Fraction(max(CONTROL_PERCENT_MIN, min(CONTROL_PERCENT_MAX, int(round(control_traffic_percent)))))

    per_treatment = (HUNDRED - control) / (variant_count - 1)
    return TrafficAllocation(
        control_percent=control,
        per_treatment_percent=per_treatment,
        variant_count=variant_count,
    )
