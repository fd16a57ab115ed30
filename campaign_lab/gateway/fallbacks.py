"""
Deterministic fallback values for every gateway call.

Everything here is pure: same input (and seed) -> same output. The random
metric perturbation threads its seed explicitly so tests can assert exact
values, not just ranges.
"""

from __future__ import annotations

import math
import random
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from campaign_lab.experiments.stats_engine import VariantStat
from campaign_lab.gateway.schemas import (
    AbTestConclusion,
    Activity,
    AttributionFactor,
    AttributionFactors,
    AttributionInsight,
    AttributionOverview,
    AttributionReport,
    AttributionSuggestion,
    AudienceAnalysisResult,
    AudienceProfile,
    DataTable,
    GeneratedFeature,
    Metrics,
    ParsedGoal,
    ProfileItem,
    Scheme,
    SchemaAugmentation,
    SchemeSettings,
    StrategyType,
)

# Perturbation bounds for recalculated metrics
METRIC_FACTOR_BOUNDS = (0.9, 1.1)
COST_FACTOR_BOUNDS = (0.95, 1.05)


def perturb(value: float, seed: int, low: float = 0.9, high: float = 1.1) -> Tuple[float, int]:
    """
    Scale value by a factor drawn uniformly from [low, high].

    Returns (new_value, next_seed); feeding next_seed into the following
    call gives a reproducible sequence.
    """
    if low > high:
        raise ValueError("low must be <= high")
    rng = random.Random(seed)
    factor = low + rng.random() * (high - low)
    next_seed = rng.getrandbits(32)
    return value * factor, next_seed


def perturb_metrics(metrics: Metrics, seed: int) -> Tuple[Metrics, int]:
    lo, hi = METRIC_FACTOR_BOUNDS
    # roi, gmv and audience move together, like the scheme's scale changed
    factor, seed = perturb(1.0, seed, lo, hi)
    cost, seed = perturb(metrics.cost, seed, *COST_FACTOR_BOUNDS)
    cvr, seed = perturb(metrics.conversion_rate, seed, lo, hi)
    return (
        Metrics(
            roi=round(metrics.roi * factor, 2),
            gmv=math.floor(metrics.gmv * factor),
            cost=math.floor(cost),
            audience_size=math.floor(metrics.audience_size * factor),
            conversion_rate=round(cvr, 3),
        ),
        seed,
    )


def _day(offset: int, today: Optional[date] = None) -> str:
    return ((today or date.today()) + timedelta(days=offset)).isoformat()


def mock_schemes(today: Optional[date] = None) -> List[Scheme]:
    return [
        Scheme(
            id="1",
            name="Care repurchase - balanced",
            type=StrategyType.BALANCED,
            description="Balances reach and ROI with a mid-value coupon for a mid-size audience.",
            tags=["Recommended", "Steady"],
            audience_tags=["Active members", "Repurchased in 30 days"],
            start_date=_day(1, today),
            end_date=_day(15, today),
            metrics=Metrics(roi=2.8, gmv=320000, cost=114000, audience_size=15000, conversion_rate=0.085),
            settings=SchemeSettings(
                audience="Bought personal care in the last 90 days, medium activity",
                benefit="20% off coupon (min spend 59)",
                gameplay="Stacked discounts",
                channel="1:1 messaging (8pm)",
            ),
            confidence="high",
            confidence_reason="Based on 15 similar past activities",
        ),
        Scheme(
            id="2",
            name="High-value deep dive",
            type=StrategyType.PRECISION,
            description="Maximises ROI with a low-value, high-threshold coupon for high-intent users.",
            tags=["High ROI", "Precision"],
            audience_tags=["High net worth", "Promotion seekers"],
            start_date=_day(1, today),
            end_date=_day(15, today),
            metrics=Metrics(roi=3.5, gmv=180000, cost=51000, audience_size=8000, conversion_rate=0.12),
            settings=SchemeSettings(
                audience="Top 20% value users in personal care",
                benefit="10 off over 99",
                gameplay="Double points",
                channel="SMS + app push",
            ),
            confidence="high",
            confidence_reason="Model confidence > 90%",
        ),
        Scheme(
            id="3",
            name="Broad reach expansion",
            type=StrategyType.EXPANSION,
            description="Maximises reach with a low-threshold coupon to wake dormant users.",
            tags=["Wide net", "Win-back"],
            audience_tags=["Dormant users", "Price sensitive"],
            start_date=_day(1, today),
            end_date=_day(15, today),
            metrics=Metrics(roi=1.9, gmv=450000, cost=236000, audience_size=60000, conversion_rate=0.045),
            settings=SchemeSettings(
                audience="No purchase in 180 days",
                benefit="5 off, no minimum",
                gameplay="Check-in rewards",
                channel="SMS",
            ),
            confidence="medium",
            confidence_reason="Dormant-user response varies widely",
        ),
    ]


def fallback_schemes(goal: ParsedGoal, today: Optional[date] = None) -> List[Scheme]:
    """Mock schemes with cost clamped to the requested budget."""
    out = []
    for scheme in mock_schemes(today):
        cost = scheme.metrics.cost
        if goal.budget > 0:
            cost = min(cost, goal.budget)
        out.append(
            scheme.model_copy(update={"metrics": scheme.metrics.model_copy(update={"cost": cost})})
        )
    return out


def fallback_goal(text: str) -> ParsedGoal:
    return ParsedGoal(
        category="Any",
        target_type="New customer acquisition",
        target_audience_name="Potential new customers",
        target_audience_features="Recently registered users without an order",
        target_audience_tags=[],
        suggested_tags=["Registered in last 30 days", "No first purchase"],
        time_value=14,
        time_unit="days",
        budget=50000,
        original_text=text,
    )


def fallback_audience() -> AudienceAnalysisResult:
    return AudienceAnalysisResult(
        name="High-potential female shoppers",
        description="Fallback audience focused on recently active, high-spend female users.",
        tags=["High net worth", "Active members", "Young parents"],
        estimated_size=12500,
        lookalike_size=35000,
        predicted_roi=0.15,
        match_score=88,
        reasoning="Historically high conversion with a clear preference for premium products.",
        profile=AudienceProfile(
            age=[
                ProfileItem(label="18-25", value=20, tgi=105),
                ProfileItem(label="26-35", value=50, tgi=130),
                ProfileItem(label="36+", value=30, tgi=95),
            ],
            gender=[
                ProfileItem(label="Female", value=85, tgi=140),
                ProfileItem(label="Male", value=15, tgi=40),
            ],
            city=[
                ProfileItem(label="Shanghai", value=30, tgi=150),
                ProfileItem(label="Beijing", value=25, tgi=140),
                ProfileItem(label="Hangzhou", value=15, tgi=120),
            ],
            interest=["Beauty", "Luxury"],
        ),
    )


FALLBACK_CONCLUSION = AbTestConclusion(
    winner="Variant B",
    uplift=12.5,
    confidence=98.2,
    description=(
        "The stacked-discount variant converted 12.5% better than control at 98% "
        "confidence. Roll it out to future activities."
    ),
)


def conclusion_from_stats(stats: Sequence[VariantStat]) -> Optional[AbTestConclusion]:
    """Summarise live stats: the treatment most likely to beat control."""
    if len(stats) < 2:
        return None
    control = stats[0]
    best = max(stats[1:], key=lambda s: s.chance_to_beat)
    uplift = 0.0
    if control.cvr > 0:
        uplift = (best.cvr - control.cvr) / control.cvr * 100.0
    verdict = "is statistically significant" if best.is_winner else "is not yet significant"
    return AbTestConclusion(
        winner=best.name,
        uplift=round(uplift, 1),
        confidence=round(best.chance_to_beat, 1),
        description=(
            f"{best.name} ({best.id}) converts at {best.cvr:.2%} vs control {control.cvr:.2%}; "
            f"the difference {verdict}."
        ),
    )


def default_overview(activity: Activity) -> AttributionOverview:
    return AttributionOverview(
        final_roi=activity.roi * 1.1,
        target_roi=activity.roi,
        final_gmv=activity.budget * activity.roi * 1.1,
        total_cost=activity.budget,
        conversion_rate=0.05,
    )


def fallback_report(activity: Activity, stats: Optional[Sequence[VariantStat]] = None) -> AttributionReport:
    report = AttributionReport(
        activity_id=activity.id,
        generated_time=datetime.now(timezone.utc).isoformat(),
        overview=AttributionOverview(
            final_roi=3.5,
            target_roi=3.0,
            final_gmv=150000,
            total_cost=42000,
            conversion_rate=0.08,
        ),
        factors=AttributionFactors(
            audience=AttributionFactor(name="Audience", contribution=40, uplift=15, detail="High-value users responded best"),
            benefit=AttributionFactor(name="Benefit", contribution=25, uplift=8, detail="20% coupon had the best redemption"),
            content=AttributionFactor(name="Content", contribution=20, uplift=5, detail="Warm copy drove the most clicks"),
            channel=AttributionFactor(name="Channel", contribution=15, uplift=3, detail="1:1 messaging had the best ROI"),
        ),
        insights=[
            AttributionInsight(
                id="1",
                type="positive",
                title="Men aged 25-35 beat expectations",
                description="Conversion reached 11.2%, well above the 8.5% average.",
                z_score=2.25,
                data_point="conversion rate",
            )
        ],
        suggestions=[
            AttributionSuggestion(
                id="s1",
                type="new_activity",
                title="Re-target non-converted users",
                impact="Recover 15% of drop-off",
                difficulty="Low",
                action_label="Create",
            )
        ],
    )
    if activity.ab_test_enabled:
        report.ab_test_conclusion = ab_conclusion(stats)
    return report


def ab_conclusion(stats: Optional[Sequence[VariantStat]]) -> AbTestConclusion:
    if stats:
        derived = conclusion_from_stats(stats)
        if derived is not None:
            return derived
    return FALLBACK_CONCLUSION.model_copy()


def fallback_feature_sql(table: DataTable) -> str:
    return (
        "/* Generation failed (quota or network error). Fallback SQL: */\n"
        f"SELECT user_id, COUNT(*) AS feature_value\nFROM {table.name}\nGROUP BY user_id"
    )


def _table_kind(table: DataTable) -> str:
    name = table.name.lower()
    if "order" in name or "trade" in name:
        return "order"
    if "user" in name or "member" in name:
        return "user"
    return "generic"


def fallback_features(table: DataTable) -> List[GeneratedFeature]:
    """Canned features picked by table-name keywords (orders, users, anything else)."""
    kind = _table_kind(table)
    src = table.name
    if kind == "order":
        specs = [
            ("Last 30 days spend", "last_30d_gmv", "Total paid amount over the last 30 days", "RFM",
             f"SELECT user_id, SUM(pay_amount) AS feature_value FROM {src} "
             "WHERE pay_time >= DATE_SUB(NOW(), INTERVAL 30 DAY) GROUP BY user_id"),
            ("Average order value", "avg_order_value", "Mean paid amount per order", "RFM",
             f"SELECT user_id, AVG(pay_amount) AS feature_value FROM {src} GROUP BY user_id"),
            ("Preferred order hour", "pref_active_hour", "Hour of day the user orders most often", "Preference",
             f"SELECT user_id, HOUR(pay_time) AS feature_value FROM {src} "
             "GROUP BY user_id ORDER BY COUNT(*) DESC LIMIT 1"),
        ]
    elif kind == "user":
        specs = [
            ("Member lifecycle stage", "lifecycle_stage", "New or mature, from registration time", "Lifecycle",
             "SELECT user_id, CASE WHEN DATEDIFF(NOW(), registration_time) < 30 "
             f"THEN 'New' ELSE 'Mature' END AS feature_value FROM {src}"),
            ("Age group", "age_group", "Ten-year age band from birthday", "Custom",
             f"SELECT user_id, FLOOR(DATEDIFF(NOW(), birthday) / 365 / 10) * 10 AS feature_value FROM {src}"),
        ]
    else:
        specs = [
            ("Record count", "record_count", "Number of rows per key", "Custom",
             f"SELECT id, COUNT(*) AS feature_value FROM {src} GROUP BY id"),
        ]
    return [
        GeneratedFeature(
            id=f"auto_feat_fallback_{table.id}_{i}",
            table_id=table.id,
            name=name,
            code=code,
            description=f"{desc} (fallback)",
            categories=[category],
            rule_sql=sql,
        )
        for i, (name, code, desc, category, sql) in enumerate(specs)
    ]


def fallback_augmentation() -> SchemaAugmentation:
    return SchemaAugmentation(
        table_desc="Description unavailable (network or quota limit)",
        column_descs={},
    )


FALLBACK_CATEGORIES = ("Custom",)
