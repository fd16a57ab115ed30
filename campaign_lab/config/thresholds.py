"""Canonical thresholds for the A/B experiment core."""

from __future__ import annotations

# Variant list bounds (index 0 is always the control)
MAX_VARIANTS = 10
MIN_VARIANTS = 2

# A/B testing is only offered for audiences at least this large
AB_TEST_THRESHOLD = 5000

# Traffic split
CONTROL_PERCENT_MIN = 1
CONTROL_PERCENT_MAX = 90
DEFAULT_CONTROL_PERCENT = 50

# Sample-size heuristic (not a power calculation)
BASE_SAMPLE_PER_VARIANT = 1500
CYCLE_DAYS = 7

# Winner gate: chance_to_beat > 95 AND traffic > 100
WINNER_CHANCE_THRESHOLD = 95.0
WINNER_MIN_TRAFFIC = 100

DEFAULT_CONFIDENCE_LEVEL = 0.95
# Two-sided z-scores for the common confidence levels
Z_SCORES = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}

# Variant value meaning "no strategy applied" on the control arm
CONTROL_NONE = "CONTROL_NONE"
