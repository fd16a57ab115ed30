from campaign_lab.experiments.allocator import TrafficAllocation, allocate
from campaign_lab.experiments.errors import (
    CapacityExceeded,
    DivideByZeroGuard,
    ExperimentError,
    GatewayUnavailable,
    InvalidEventError,
    InvalidTransition,
    MinimumVariantsViolation,
)
from campaign_lab.experiments.models import AllocationMode, ExperimentConfig, TestVariable
from campaign_lab.experiments.monitor import ExperimentMonitor, ExperimentPhase, WinnerAck
from campaign_lab.experiments.planner import SamplePlan, SampleSizePlanner, is_ab_test_eligible
from campaign_lab.experiments.policies import StaticPolicy, ThompsonSamplingPolicy, policy_for
from campaign_lab.experiments.stats_engine import VariantEvent, VariantStat, VariantStatsEngine

__all__ = [
    "AllocationMode",
    "CapacityExceeded",
    "DivideByZeroGuard",
    "ExperimentConfig",
    "ExperimentError",
    "ExperimentMonitor",
    "ExperimentPhase",
    "GatewayUnavailable",
    "InvalidEventError",
    "InvalidTransition",
    "MinimumVariantsViolation",
    "SamplePlan",
    "SampleSizePlanner",
    "StaticPolicy",
    "TestVariable",
    "ThompsonSamplingPolicy",
    "TrafficAllocation",
    "VariantEvent",
    "VariantStat",
    "VariantStatsEngine",
    "WinnerAck",
    "allocate",
    "is_ab_test_eligible",
    "policy_for",
]
