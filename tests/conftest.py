from __future__ import annotations

from hypothesis import HealthCheck, settings

# Engine property tests recompute every variant per event; slow CI boxes trip
# the too_slow health check and the per-example deadline.
settings.register_profile(
    "campaign_lab_stable",
    suppress_health_check=[HealthCheck.too_slow],
    deadline=None,
)

settings.load_profile("campaign_lab_stable")
