"""
Simulated telemetry feed for the live monitor.

Each tick routes 0-4 visitors to every variant and converts each visitor
with probability base_cvr (times the variant's performance multiplier).
Variant B gets `uplift` by default so demos converge on a winner.
All randomness comes from the injected Random, so runs are reproducible.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

from campaign_lab.experiments.stats_engine import VariantEvent


@dataclass
class TelemetrySimulator:
    variant_count: int
    rng: random.Random = field(default_factory=lambda: random.Random(42))
    base_cvr: float = 0.2
    uplift: float = 1.2
    max_traffic_per_tick: int = 4
    multipliers: Optional[Sequence[float]] = None

    def __post_init__(self) -> None:
        if self.variant_count < 1:
            raise ValueError("variant_count must be >= 1")
        if not (0.0 <= self.base_cvr <= 1.0):
            raise ValueError("base_cvr must be in [0, 1]")
        if self.multipliers is None:
            self.multipliers = [self.uplift if i == 1 else 1.0 for i in range(self.variant_count)]
        elif len(self.multipliers) != self.variant_count:
            raise ValueError("multipliers must match variant_count")

    def tick(self) -> List[VariantEvent]:
        events: List[VariantEvent] = []
        for idx, mult in enumerate(self.multipliers or ()):
            p = min(1.0, self.base_cvr * mult)
            visitors = self.rng.randint(0, self.max_traffic_per_tick)
            conversions = sum(1 for _ in range(visitors) if self.rng.random() < p)
            roi_delta = (self.rng.random() * 0.05 - 0.02) * mult
            events.append(
                VariantEvent(
                    variant_index=idx,
                    traffic_delta=visitors,
                    conversion_delta=conversions,
                    roi_delta=roi_delta,
                )
            )
        return events

    def stream(self, ticks: int) -> Iterator[VariantEvent]:
        for _ in range(ticks):
            yield from self.tick()
