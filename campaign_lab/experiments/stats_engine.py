"""
VariantStatsEngine - live statistics for one running A/B experiment.

Consumes (variant_index, traffic_delta, conversion_delta) events and, on
every applied event, recomputes for ALL variants:
- conversion rate (cvr)
- Wald confidence interval around cvr
- chance to beat control, via the normal approximation
    P(cvr_i > cvr_c) = Phi((cvr_i - cvr_c) / sqrt(se_i^2 + se_c^2))
- winner flag: chance_to_beat > 95 AND traffic > 100

Malformed events are rejected BEFORE touching state (reject-before-apply).
One writer per engine; readers take copy-on-read snapshots.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from math import erf, sqrt
from statistics import NormalDist
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Tuple

from campaign_lab.config.thresholds import (
    CONTROL_NONE,
    DEFAULT_CONFIDENCE_LEVEL,
    WINNER_CHANCE_THRESHOLD,
    WINNER_MIN_TRAFFIC,
    Z_SCORES,
)
from campaign_lab.experiments.errors import InvalidEventError
from infra.logging_config import get_logger

if TYPE_CHECKING:
    from campaign_lab.experiments.models import ExperimentConfig
    from infra.config_loader import ExperimentSettings

logger = get_logger(__name__)


def _normal_cdf(z: float) -> float:
    """
    Standard normal CDF via erf.

    Phi(z) = 0.5 * [1 + erf(z / sqrt(2))]
    """
    return 0.5 * (1.0 + erf(z / sqrt(2.0)))


def z_for_confidence(confidence_level: float) -> float:
    """Two-sided z-score; the common levels use the rounded textbook values."""
    known = Z_SCORES.get(round(confidence_level, 4))
    if known is not None:
        return known
    return NormalDist().inv_cdf(0.5 + confidence_level / 2.0)


def variant_display_name(value: str, index: int) -> str:
    if value == CONTROL_NONE:
        return "No strategy"
    return value or f"Variant {index + 1}"


def variant_id(index: int) -> str:
    return chr(ord("A") + index)


@dataclass(frozen=True)
class VariantEvent:
    variant_index: int
    traffic_delta: int
    conversion_delta: int
    roi_delta: float = 0.0


@dataclass
class VariantStat:
    id: str
    name: str
    traffic: int = 0
    conversions: int = 0
    cvr: float = 0.0
    roi: float = 0.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)
    chance_to_beat: float = 0.0
    is_winner: bool = False
    # Standard error behind the interval; kept for the chance-to-beat math
    se: float = field(default=0.0, repr=False)

    def to_dict(self) -> dict:
        low, high = self.confidence_interval
        return {
            "id": self.id,
            "name": self.name,
            "traffic": self.traffic,
            "conversions": self.conversions,
            "cvr": round(self.cvr, 4),
            "roi": round(self.roi, 2),
            "confidence_interval": [round(low, 4), round(high, 4)],
            "chance_to_beat": round(self.chance_to_beat, 1),
            "is_winner": self.is_winner,
        }


class VariantStatsEngine:
    """
    Usage:
        engine = VariantStatsEngine(["20% off", "free shipping"])
        engine.apply(VariantEvent(1, traffic_delta=4, conversion_delta=1))
        rows = engine.snapshot()
    """

    def __init__(
        self,
        variant_values: Sequence[str],
        *,
        confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
        winner_chance_threshold: float = WINNER_CHANCE_THRESHOLD,
        winner_min_traffic: int = WINNER_MIN_TRAFFIC,
    ) -> None:
        if len(variant_values) < 1:
            raise ValueError("at least one variant (the control) is required")
        self.confidence_level = confidence_level
        self.z = z_for_confidence(confidence_level)
        self.winner_chance_threshold = winner_chance_threshold
        self.winner_min_traffic = winner_min_traffic
        self._stats: List[VariantStat] = [
            VariantStat(id=variant_id(i), name=variant_display_name(v, i))
            for i, v in enumerate(variant_values)
        ]
        self._lock = threading.Lock()
        self._closed = False
        self.events_applied = 0
        self.events_dropped = 0

    @classmethod
    def from_config(
        cls,
        config: ExperimentConfig,
        settings: Optional[ExperimentSettings] = None,
    ) -> VariantStatsEngine:
        kwargs = {}
        if settings is not None:
            kwargs = {
                "winner_chance_threshold": settings.winner_chance_threshold,
                "winner_min_traffic": settings.winner_min_traffic,
            }
        return cls(config.variants, confidence_level=config.confidence_level, **kwargs)

    @property
    def variant_count(self) -> int:
        return len(self._stats)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Gate the engine. Later events are dropped (logged), never applied."""
        self._closed = True

    # --- writes ---

    def apply(self, event: VariantEvent) -> bool:
        """
        Apply one event. Returns False if the engine is closed and the event
        was dropped; raises InvalidEventError for malformed events.
        """
        with self._lock:
            if self._closed:
                self.events_dropped += 1
                logger.info(
                    "event dropped: experiment stopped",
                    extra={"extra_data": {"variant_index": event.variant_index}},
                )
                return False

            self._validate(event)

            stat = self._stats[event.variant_index]
            stat.traffic += event.traffic_delta
            stat.conversions += event.conversion_delta
            stat.roi += event.roi_delta
            self._recompute()
            self.events_applied += 1
            return True

    def apply_many(self, events: Iterable[VariantEvent]) -> int:
        applied = 0
        for event in events:
            if self.apply(event):
                applied += 1
        return applied

    def _validate(self, event: VariantEvent) -> None:
        details = {
            "variant_index": event.variant_index,
            "traffic_delta": event.traffic_delta,
            "conversion_delta": event.conversion_delta,
        }
        if not (0 <= event.variant_index < len(self._stats)):
            self._reject("unknown variant index", details)
        if event.traffic_delta < 0 or event.conversion_delta < 0:
            self._reject("negative delta", details)

        stat = self._stats[event.variant_index]
        new_traffic = stat.traffic + event.traffic_delta
        new_conversions = stat.conversions + event.conversion_delta
        if new_conversions > new_traffic:
            # Upstream counting bug, not a recoverable state
            details.update({"traffic": new_traffic, "conversions": new_conversions})
            self._reject("conversions exceed traffic", details)

    def _reject(self, reason: str, details: dict) -> None:
        logger.warning("event rejected: %s", reason, extra={"extra_data": details})
        raise InvalidEventError(reason, details=details)

    def _recompute(self) -> None:
        for stat in self._stats:
            stat.cvr = stat.conversions / stat.traffic if stat.traffic > 0 else 0.0
            # traffic 0 -> cvr 0 -> se 0, so substituting 1 is harmless
            stat.se = sqrt(stat.cvr * (1.0 - stat.cvr) / (stat.traffic or 1))
            low = max(0.0, stat.cvr - self.z * stat.se)
            high = stat.cvr + self.z * stat.se
            stat.confidence_interval = (low, high)

        control = self._stats[0]
        baseline = 100.0 / len(self._stats)
        for idx, stat in enumerate(self._stats):
            if idx == 0:
                # Control cannot beat itself; report the even-split reference
                stat.chance_to_beat = baseline
                stat.is_winner = False
                continue
            stat.chance_to_beat = chance_to_beat(stat.cvr, stat.se, control.cvr, control.se)
            stat.is_winner = (
                stat.chance_to_beat > self.winner_chance_threshold
                and stat.traffic > self.winner_min_traffic
                # An empty or thin control has no baseline to beat
                and control.traffic > self.winner_min_traffic
            )

    # --- reads ---

    def snapshot(self) -> Tuple[VariantStat, ...]:
        with self._lock:
            return tuple(replace(s) for s in self._stats)

    def get(self, variant: str) -> Optional[VariantStat]:
        for stat in self.snapshot():
            if stat.id == variant:
                return stat
        return None

    def winners(self) -> List[str]:
        return [s.id for s in self.snapshot() if s.is_winner]


def chance_to_beat(cvr: float, se: float, control_cvr: float, control_se: float) -> float:
    """Probability (0-100) that a variant's true rate exceeds the control's."""
    diff = cvr - control_cvr
    denom = sqrt(se * se + control_se * control_se)
    if denom == 0.0:
        if diff > 0:
            return 100.0
        if diff < 0:
            return 0.0
        return 50.0
    return 100.0 * _normal_cdf(diff / denom)
