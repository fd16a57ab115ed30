from __future__ import annotations

import json
import logging
from typing import List

import pytest

from campaign_lab.experiments.models import ExperimentConfig, TestVariable
from campaign_lab.experiments.stats_engine import VariantEvent, VariantStatsEngine
from campaign_lab.gateway import fallbacks
from campaign_lab.gateway.schemas import (
    Activity,
    DataColumn,
    DataTable,
    Metrics,
    ParsedGoal,
    Scheme,
    SchemeSettings,
)
from campaign_lab.gateway.service import ExternalGenerationGateway


class RateLimitError(Exception):
    pass


class FakeGenerator:
    """Returns queued replies in order; exceptions in the queue are raised."""

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.prompts: List[str] = []

    def generate(self, prompt: str, *, system: str = "") -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def scheme():
    return Scheme(
        id="s1",
        name="Spring promo",
        metrics=Metrics(roi=2.0, gmv=100_000, cost=50_000, audience_size=20_000, conversion_rate=0.1),
        settings=SchemeSettings(benefit="20% off", channel="SMS", gameplay="Double points"),
    )


@pytest.fixture
def ab_activity(scheme):
    ab = ExperimentConfig.disabled("20% off").enable_test(TestVariable.BENEFIT, scheme.settings.as_mapping())
    return Activity(
        id="act-1",
        name="Spring promo",
        budget=50_000,
        roi=2.0,
        status="ended",
        scheme_detail=scheme.model_copy(update={"ab_test": ab}),
    )


class TestFallbackLogging:
    def test_quota_error_logs_warning_and_falls_back(self, caplog):
        gw = ExternalGenerationGateway(FakeGenerator(RateLimitError("429 Too Many Requests")))
        with caplog.at_level(logging.WARNING):
            schemes = gw.generate_schemes(ParsedGoal(budget=30_000))
        assert [s.id for s in schemes] == ["1", "2", "3"]
        assert all(s.metrics.cost <= 30_000 for s in schemes)
        assert gw.fallbacks_served == 1
        levels = [r.levelno for r in caplog.records if r.name == "campaign_lab.gateway.service"]
        assert levels == [logging.WARNING]

    def test_malformed_reply_logs_error(self, caplog):
        gw = ExternalGenerationGateway(FakeGenerator("sorry, no JSON today"))
        with caplog.at_level(logging.WARNING):
            result = gw.analyze_audience_goal("young parents")
        assert result.estimated_size == 12_500
        assert result.match_score == 88
        levels = [r.levelno for r in caplog.records if r.name == "campaign_lab.gateway.service"]
        assert levels == [logging.ERROR]

    def test_never_retries(self):
        gen = FakeGenerator(TimeoutError("timed out"), "unused")
        gw = ExternalGenerationGateway(gen)
        gw.optimize_prompt("sell more")
        assert len(gen.prompts) == 1


class TestOperations:
    def test_optimize_prompt(self):
        gw = ExternalGenerationGateway(FakeGenerator("  Sell skincare to new moms, 30k, 2 weeks \n"))
        assert gw.optimize_prompt("sell stuff") == "Sell skincare to new moms, 30k, 2 weeks"

    def test_optimize_prompt_fallback_is_identity(self):
        gw = ExternalGenerationGateway(FakeGenerator(ConnectionError("down")))
        assert gw.optimize_prompt("sell stuff") == "sell stuff"

    def test_parse_user_goal(self):
        reply = json.dumps({"category": "Beauty", "budget": 30000, "timeValue": 7, "timeUnit": "days"})
        goal = ExternalGenerationGateway(FakeGenerator(reply)).parse_user_goal("beauty push")
        assert goal.category == "Beauty"
        assert goal.budget == 30000
        assert goal.original_text == "beauty push"

    def test_parse_user_goal_fallback(self):
        goal = ExternalGenerationGateway(FakeGenerator(RuntimeError("boom"))).parse_user_goal("x")
        assert goal.budget == 50_000
        assert goal.time_value == 14
        assert goal.time_unit == "days"

    def test_generate_schemes_accepts_camel_case(self):
        reply = json.dumps(
            [
                {
                    "id": "a",
                    "name": "Lean",
                    "type": "precision",
                    "metrics": {"roi": 3, "gmv": 10, "cost": 3, "audienceSize": 100, "conversionRate": 0.1},
                    "config": {"benefit": "5 off"},
                }
            ]
        )
        schemes = ExternalGenerationGateway(FakeGenerator(reply)).generate_schemes(ParsedGoal())
        assert schemes[0].metrics.audience_size == 100
        assert schemes[0].settings.benefit == "5 off"

    def test_recalculate_metrics_fallback_is_seeded(self, scheme):
        a = ExternalGenerationGateway(FakeGenerator(RuntimeError("x")), fallback_seed=3)
        b = ExternalGenerationGateway(FakeGenerator(RuntimeError("x")), fallback_seed=3)
        ra = a.recalculate_metrics(scheme, "benefit -> 30% off")
        rb = b.recalculate_metrics(scheme, "benefit -> 30% off")
        assert ra == rb
        assert 1.8 <= ra.roi <= 2.2
        assert 47_500 <= ra.cost <= 52_500
        assert 18_000 <= ra.audience_size <= 22_000
        assert 0.09 <= ra.conversion_rate <= 0.11

    def test_recalculate_metrics_parses_reply(self, scheme):
        reply = json.dumps({"roi": 2.5, "gmv": 1, "cost": 1, "audienceSize": 1, "conversionRate": 0.2})
        out = ExternalGenerationGateway(FakeGenerator(reply)).recalculate_metrics(scheme, "x")
        assert out.roi == 2.5
        assert out.audience_size == 1

    def test_recalculate_metrics_successive_fallbacks_differ(self, scheme):
        gw = ExternalGenerationGateway(FakeGenerator(RuntimeError(), RuntimeError()), fallback_seed=3)
        assert gw.recalculate_metrics(scheme, "a") != gw.recalculate_metrics(scheme, "b")

    def test_feature_sql(self):
        table = DataTable(id="t1", name="orders")
        cols = [DataColumn(table_id="t1", name="user_id", type="string")]
        gw = ExternalGenerationGateway(FakeGenerator("```sql\nSELECT user_id FROM orders\n```"))
        assert gw.generate_feature_sql("orders per user", table, cols) == "SELECT user_id FROM orders"

    def test_feature_sql_fallback(self):
        table = DataTable(id="t1", name="orders")
        sql = ExternalGenerationGateway(FakeGenerator(TimeoutError())).generate_feature_sql("x", table, [])
        assert "FROM orders" in sql
        assert "GROUP BY user_id" in sql


class TestAttributionReport:
    def test_fallback_report_carries_ab_conclusion(self, ab_activity):
        gw = ExternalGenerationGateway(FakeGenerator(RateLimitError("rate limit")))
        report = gw.generate_attribution_report(ab_activity)
        assert report.activity_id == "act-1"
        assert report.overview.final_roi == 3.5
        assert report.ab_test_conclusion is not None
        assert report.ab_test_conclusion.winner == "Variant B"
        assert report.ab_test_conclusion.confidence == 98.2

    def test_live_report_carries_ab_conclusion_from_stats(self, ab_activity):
        engine = VariantStatsEngine(["20% off", "Free shipping"])
        engine.apply(VariantEvent(0, traffic_delta=150, conversion_delta=60))
        engine.apply(VariantEvent(1, traffic_delta=150, conversion_delta=90))
        reply = json.dumps({"insights": [], "suggestions": []})
        report = ExternalGenerationGateway(FakeGenerator(reply)).generate_attribution_report(
            ab_activity, engine.snapshot()
        )
        # Missing overview is derived from the activity
        assert report.overview.final_roi == pytest.approx(2.2)
        assert report.overview.total_cost == 50_000
        conclusion = report.ab_test_conclusion
        assert conclusion is not None
        assert conclusion.winner == "Free shipping"
        assert conclusion.uplift == 50.0
        assert conclusion.confidence > 99

    def test_no_conclusion_without_ab(self, scheme):
        activity = Activity(id="a", name="n", scheme_detail=scheme)
        report = ExternalGenerationGateway(FakeGenerator(RuntimeError())).generate_attribution_report(activity)
        assert report.ab_test_conclusion is None

    def test_report_dumps_camel_case(self, ab_activity):
        report = fallbacks.fallback_report(ab_activity)
        dumped = report.model_dump(by_alias=True)
        assert "abTestConclusion" in dumped
        assert "finalRoi" in dumped["overview"]


def test_perturb_is_pure_and_bounded():
    v1, s1 = fallbacks.perturb(100.0, 7, 0.9, 1.1)
    v2, s2 = fallbacks.perturb(100.0, 7, 0.9, 1.1)
    assert (v1, s1) == (v2, s2)
    assert 90.0 <= v1 <= 110.0
    v3, _ = fallbacks.perturb(100.0, s1, 0.9, 1.1)
    assert 90.0 <= v3 <= 110.0
    with pytest.raises(ValueError):
        fallbacks.perturb(1.0, 1, 2.0, 1.0)


class TestFeatureStore:
    def test_auto_discover_features(self):
        reply = json.dumps(
            [
                {
                    "name": "Order count",
                    "code": "order_cnt",
                    "description": "Orders per user",
                    "category": "RFM",
                    "ruleSql": "SELECT user_id, COUNT(*) FROM orders GROUP BY user_id",
                },
                {"name": "Churn risk", "code": "churn_risk", "ruleSql": "SELECT 1"},
            ]
        )
        table = DataTable(id="t1", name="orders")
        features = ExternalGenerationGateway(FakeGenerator(reply)).auto_discover_features(table, [])
        assert [f.code for f in features] == ["order_cnt", "churn_risk"]
        assert features[0].categories == ["RFM"]
        assert features[1].categories == ["Custom"]
        assert all(f.table_id == "t1" and f.creation_type == "auto" for f in features)
        assert features[0].id != features[1].id

    @pytest.mark.parametrize(
        "table_name,codes",
        [
            ("dwd_trade_order_detail", ["last_30d_gmv", "avg_order_value", "pref_active_hour"]),
            ("member_profile", ["lifecycle_stage", "age_group"]),
            ("page_views", ["record_count"]),
        ],
    )
    def test_auto_discover_fallback_by_table_kind(self, table_name, codes):
        table = DataTable(id="t9", name=table_name)
        gw = ExternalGenerationGateway(FakeGenerator(ConnectionError("down")))
        features = gw.auto_discover_features(table, [])
        assert [f.code for f in features] == codes
        assert all(table_name in f.rule_sql for f in features)
        assert gw.fallbacks_served == 1

    def test_auto_discover_empty_reply_falls_back(self):
        table = DataTable(id="t1", name="events")
        features = ExternalGenerationGateway(FakeGenerator("[]")).auto_discover_features(table, [])
        assert [f.code for f in features] == ["record_count"]

    def test_augment_data_schema(self):
        reply = json.dumps(
            {
                "tableDesc": "Order lines",
                "columns": [
                    {"name": "user_id", "description": "Buyer"},
                    {"name": "pay_amount", "description": ""},
                ],
            }
        )
        out = ExternalGenerationGateway(FakeGenerator(reply)).augment_data_schema("orders", ["user_id", "pay_amount"])
        assert out.table_desc == "Order lines"
        assert out.column_descs == {"user_id": "Buyer"}

    def test_augment_data_schema_fallback(self, caplog):
        gw = ExternalGenerationGateway(FakeGenerator(RateLimitError("429")))
        with caplog.at_level(logging.WARNING):
            out = gw.augment_data_schema("orders", ["user_id"])
        assert out.column_descs == {}
        assert "unavailable" in out.table_desc
        levels = [r.levelno for r in caplog.records if r.name == "campaign_lab.gateway.service"]
        assert levels == [logging.WARNING]

    def test_suggest_feature_categories(self):
        gw = ExternalGenerationGateway(FakeGenerator('["Monetary", "RFM"]'))
        assert gw.suggest_feature_categories("GMV", "spend", "SELECT 1", ["RFM"]) == ["Monetary", "RFM"]

    def test_suggest_feature_categories_fallback(self):
        gw = ExternalGenerationGateway(FakeGenerator('{"not": "a list"}'))
        assert gw.suggest_feature_categories("GMV", "spend", "SELECT 1") == ["Custom"]
