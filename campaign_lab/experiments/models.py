"""
ExperimentConfig - immutable A/B test configuration for one campaign scheme.

Every transition returns a NEW config; nothing is mutated in place.

Variant list rules:
- index 0 is the control and tracks the scheme's own value for the variable
- enabled configs hold 2..MAX_VARIANTS entries
- disabled configs hold a single control-only entry
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Optional, Tuple

from campaign_lab.config.thresholds import (
    CONTROL_PERCENT_MAX,
    CONTROL_PERCENT_MIN,
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_CONTROL_PERCENT,
    MAX_VARIANTS,
    MIN_VARIANTS,
)
from campaign_lab.experiments.errors import (
    CapacityExceeded,
    InvalidTransition,
    MinimumVariantsViolation,
)
from campaign_lab.experiments.planner import SampleSizePlanner

if TYPE_CHECKING:
    from campaign_lab.experiments.allocator import TrafficAllocation


class TestVariable(str, Enum):
    """Scheme dimension under test."""

    __test__ = False  # not a pytest class

    BENEFIT = "benefit"
    CHANNEL = "channel"
    GAMEPLAY = "gameplay"


class AllocationMode(str, Enum):
    STATIC = "static"
    DYNAMIC_MAB = "dynamic_mab"


def clamp_control_percent(percent: float) -> int:
    return max(CONTROL_PERCENT_MIN, min(CONTROL_PERCENT_MAX, int(round(percent))))


@dataclass(frozen=True)
class ExperimentConfig:
    enabled: bool = False
    variable: Optional[TestVariable] = None
    variants: Tuple[str, ...] = ("",)
    control_traffic_percent: int = DEFAULT_CONTROL_PERCENT
    allocation_mode: AllocationMode = AllocationMode.STATIC
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL
    # Planner inputs, kept so the plan follows every change in variant count
    audience_size: Optional[int] = None
    planner: Optional[SampleSizePlanner] = field(default=None, repr=False)
    # Planner output, never set by a user
    min_sample_size: int = 0
    estimated_duration: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.variants:
            raise MinimumVariantsViolation("variants must contain at least the control")
        if self.enabled:
            if self.variable is None:
                raise InvalidTransition("enabled experiment requires a test variable")
            if len(self.variants) < MIN_VARIANTS:
                raise MinimumVariantsViolation(
                    f"enabled experiment needs >= {MIN_VARIANTS} variants, got {len(self.variants)}"
                )
            if len(self.variants) > MAX_VARIANTS:
                raise CapacityExceeded(
                    f"at most {MAX_VARIANTS} variants allowed, got {len(self.variants)}"
                )
        if not (CONTROL_PERCENT_MIN <= self.control_traffic_percent <= CONTROL_PERCENT_MAX):
            raise ValueError(
                f"control_traffic_percent must be in [{CONTROL_PERCENT_MIN}, {CONTROL_PERCENT_MAX}]"
            )
        if not (0.0 < self.confidence_level < 1.0):
            raise ValueError("confidence_level must be in (0, 1)")

    # --- constructors ---

    @classmethod
    def disabled(cls, control_value: str = "") -> ExperimentConfig:
        return cls(enabled=False, variable=None, variants=(control_value,))

    # --- derived ---

    @property
    def variant_count(self) -> int:
        return len(self.variants)

    @property
    def control(self) -> str:
        return self.variants[0]

    def allocation(self) -> TrafficAllocation:
        from campaign_lab.experiments.allocator import allocate

        if not self.enabled:
            return allocate(None, 1)
        return allocate(self.control_traffic_percent, self.variant_count)

    # --- transitions ---

    def enable_test(
        self,
        variable: TestVariable | str,
        scheme_config: Mapping[str, str],
    ) -> ExperimentConfig:
        """Start a fresh test on `variable`: [scheme value, ''] at 50/50, static."""
        var = TestVariable(variable)
        return self._replan(
            enabled=True,
            variable=var,
            variants=(str(scheme_config.get(var.value, "")), ""),
            control_traffic_percent=DEFAULT_CONTROL_PERCENT,
            allocation_mode=AllocationMode.STATIC,
            confidence_level=DEFAULT_CONFIDENCE_LEVEL,
        )

    def disable_test(self) -> ExperimentConfig:
        """Always succeeds. Treatment variants are dropped for good."""
        return self._replan(
            enabled=False,
            variable=None,
            variants=(self.variants[0],),
            control_traffic_percent=DEFAULT_CONTROL_PERCENT,
            allocation_mode=AllocationMode.STATIC,
        )

    def switch_variable(
        self,
        variable: TestVariable | str,
        scheme_config: Mapping[str, str],
    ) -> ExperimentConfig:
        self._require_enabled("switch_variable")
        var = TestVariable(variable)
        return self._replan(
            variable=var,
            variants=(str(scheme_config.get(var.value, "")), ""),
            control_traffic_percent=DEFAULT_CONTROL_PERCENT,
        )

    def add_variant(self, value: str = "") -> ExperimentConfig:
        self._require_enabled("add_variant")
        if self.variant_count >= MAX_VARIANTS:
            raise CapacityExceeded(
                f"already at {MAX_VARIANTS} variants",
                details={"variant_count": self.variant_count},
            )
        return self._replan(variants=self.variants + (value,))

    def remove_variant(self, index: int) -> ExperimentConfig:
        self._require_enabled("remove_variant")
        if self.variant_count <= MIN_VARIANTS:
            raise MinimumVariantsViolation(
                f"cannot drop below {MIN_VARIANTS} variants",
                details={"variant_count": self.variant_count},
            )
        if index == 0:
            raise InvalidTransition("the control variant cannot be removed")
        self._check_index(index)
        return self._replan(variants=tuple(v for i, v in enumerate(self.variants) if i != index))

    def set_variant(self, index: int, value: str) -> ExperimentConfig:
        self._check_index(index)
        variants = list(self.variants)
        variants[index] = value
        return replace(self, variants=tuple(variants))

    def sync_control(self, variable: TestVariable | str, value: str) -> ExperimentConfig:
        """Scheme config edit: the control follows it when that variable is under test."""
        if not self.enabled or self.variable != TestVariable(variable):
            return self
        return self.set_variant(0, value)

    def set_control_traffic(self, percent: float) -> ExperimentConfig:
        # Out-of-range slider values are clamped, never rejected
        return replace(self, control_traffic_percent=clamp_control_percent(percent))

    def set_allocation_mode(self, mode: AllocationMode | str) -> ExperimentConfig:
        return replace(self, allocation_mode=AllocationMode(mode))

    def with_plan(
        self,
        audience_size: int,
        planner: Optional[SampleSizePlanner] = None,
    ) -> ExperimentConfig:
        """
        Record the audience (and planner) and compute min_sample_size /
        estimated_duration for the current variant count. Later transitions
        that change the variant count re-plan from the recorded inputs.
        """
        if not self.enabled:
            return self
        return self._replan(audience_size=audience_size, planner=planner or self.planner)

    # --- helpers ---

    def _replan(self, **changes) -> ExperimentConfig:
        cfg = replace(self, **changes)
        if not cfg.enabled or cfg.audience_size is None:
            # Nothing to plan from; drop any plan made for another variant count
            return replace(cfg, min_sample_size=0, estimated_duration=None)
        plan = (cfg.planner or SampleSizePlanner()).plan(cfg.variant_count, cfg.audience_size)
        return replace(
            cfg,
            min_sample_size=plan.min_sample_size,
            estimated_duration=plan.estimated_duration,
        )

    def _require_enabled(self, op: str) -> None:
        if not self.enabled:
            raise InvalidTransition(f"{op} requires an enabled experiment")

    def _check_index(self, index: int) -> None:
        if not (0 <= index < self.variant_count):
            raise InvalidTransition(
                f"variant index {index} out of range",
                details={"variant_count": self.variant_count},
            )
