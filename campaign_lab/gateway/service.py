"""
ExternalGenerationGateway: the single boundary to the generative service.

Every public call returns a usable value. A failed or malformed generation
is logged (quota/network as warning, anything else as error) and replaced
by the deterministic fallback from campaign_lab.gateway.fallbacks. Calls
are never retried.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from pydantic import TypeAdapter

from campaign_lab.experiments.stats_engine import VariantStat
from campaign_lab.gateway import fallbacks
from campaign_lab.gateway.client import (
    QUOTA,
    NETWORK,
    AnthropicTextGenerator,
    TextGenerator,
    classify_error,
    extract_json,
)
from campaign_lab.gateway.schemas import (
    Activity,
    AttributionReport,
    AudienceAnalysisResult,
    DataColumn,
    DataTable,
    GeneratedFeature,
    Metrics,
    ParsedGoal,
    SchemaAugmentation,
    Scheme,
)
from infra.config_loader import GatewaySettings, get_app_config
from infra.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_SCHEME_LIST = TypeAdapter(List[Scheme])

SYSTEM_PROMPT = (
    "You are a marketing strategy assistant for a retail campaign console. "
    "When asked for JSON, reply with JSON only, using camelCase keys."
)


class ExternalGenerationGateway:
    """
    Wraps a TextGenerator with response validation and fallbacks.

    Usage:
        gw = ExternalGenerationGateway.from_settings()
        goal = gw.parse_user_goal("Win back dormant buyers with 30k")
        schemes = gw.generate_schemes(goal)
    """

    def __init__(self, generator: TextGenerator, *, fallback_seed: int = 7) -> None:
        self.generator = generator
        self._seed = fallback_seed
        self.fallbacks_served = 0

    @classmethod
    def from_settings(cls, settings: Optional[GatewaySettings] = None) -> ExternalGenerationGateway:
        settings = settings or get_app_config().gateway
        return cls(
            AnthropicTextGenerator.from_settings(settings),
            fallback_seed=settings.fallback_seed,
        )

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _call(self, op: str, prompt: str, parse: Callable[[str], T], fallback: Callable[[], T]) -> T:
        try:
            raw = self.generator.generate(prompt, system=SYSTEM_PROMPT)
            return parse(raw)
        except Exception as exc:
            self._log_failure(op, exc)
            self.fallbacks_served += 1
            return fallback()

    @staticmethod
    def _log_failure(op: str, exc: Exception) -> None:
        kind = classify_error(exc)
        extra = {"extra_data": {"operation": op, "error_kind": kind, "error_type": type(exc).__name__}}
        if kind in (QUOTA, NETWORK):
            logger.warning("%s failed (%s), serving fallback: %s", op, kind, exc, extra=extra)
        else:
            logger.error("%s failed unexpectedly, serving fallback: %s", op, exc, extra=extra)

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def optimize_prompt(self, text: str) -> str:
        prompt = (
            "Rewrite this marketing goal so it states the category, target audience, "
            "budget and timeframe clearly. Reply with the rewritten text only.\n\n"
            f"{text}"
        )

        def parse(raw: str) -> str:
            cleaned = raw.strip()
            if not cleaned:
                raise ValueError("empty rewrite")
            return cleaned

        return self._call("optimize_prompt", prompt, parse, lambda: text)

    def parse_user_goal(self, text: str) -> ParsedGoal:
        prompt = (
            "Extract the campaign goal from this request as a JSON object with keys "
            "category, targetType, targetAudienceName, targetAudienceFeatures, "
            "targetAudienceTags, suggestedTags, timeValue, timeUnit (days|hours), budget.\n\n"
            f"{text}"
        )

        def parse(raw: str) -> ParsedGoal:
            data = extract_json(raw)
            if not isinstance(data, dict):
                raise ValueError("goal must be a JSON object")
            data.setdefault("originalText", text)
            return ParsedGoal.model_validate(data)

        return self._call("parse_user_goal", prompt, parse, lambda: fallbacks.fallback_goal(text))

    def analyze_audience_goal(self, description: str) -> AudienceAnalysisResult:
        prompt = (
            "Design a target audience for this goal. Reply with a JSON object with keys "
            "name, description, tags, estimatedSize, lookalikeSize, predictedRoi, "
            "profile {age, gender, city, interest}, matchScore, reasoning.\n\n"
            f"{description}"
        )

        def parse(raw: str) -> AudienceAnalysisResult:
            return AudienceAnalysisResult.model_validate(extract_json(raw))

        return self._call("analyze_audience_goal", prompt, parse, fallbacks.fallback_audience)

    def generate_schemes(self, goal: ParsedGoal) -> List[Scheme]:
        prompt = (
            "Propose three campaign schemes (balanced, precision, expansion) as a JSON array. "
            "Each item has id, name, type, description, tags, audienceTags, startDate, endDate, "
            "metrics {roi, gmv, cost, audienceSize, conversionRate}, "
            "config {audience, benefit, gameplay, channel}, confidence, confidenceReason.\n\n"
            f"Goal: {goal.model_dump_json(by_alias=True)}"
        )

        def parse(raw: str) -> List[Scheme]:
            schemes = _SCHEME_LIST.validate_python(extract_json(raw))
            if not schemes:
                raise ValueError("no schemes returned")
            return schemes

        return self._call("generate_schemes", prompt, parse, lambda: fallbacks.fallback_schemes(goal))

    def recalculate_metrics(self, scheme: Scheme, change: str) -> Metrics:
        """Re-estimate a scheme's metrics after a settings edit."""
        prompt = (
            "A campaign scheme's settings changed. Re-estimate its metrics and reply with a "
            "JSON object {roi, gmv, cost, audienceSize, conversionRate}.\n\n"
            f"Scheme: {scheme.model_dump_json(by_alias=True)}\nChange: {change}"
        )

        def parse(raw: str) -> Metrics:
            data = extract_json(raw)
            if isinstance(data, dict) and isinstance(data.get("metrics"), dict):
                data = data["metrics"]
            return Metrics.model_validate(data)

        def fallback() -> Metrics:
            metrics, self._seed = fallbacks.perturb_metrics(scheme.metrics, self._seed)
            return metrics

        return self._call("recalculate_metrics", prompt, parse, fallback)

    def generate_attribution_report(
        self,
        activity: Activity,
        stats: Optional[Sequence[VariantStat]] = None,
    ) -> AttributionReport:
        summary: Dict[str, Any] = {
            "name": activity.name,
            "budget": activity.budget,
            "roi": activity.roi,
            "status": activity.status,
        }
        if stats:
            summary["variants"] = [s.to_dict() for s in stats]
        prompt = (
            "Write an attribution report for this finished campaign as a JSON object with keys "
            "overview {finalRoi, targetRoi, finalGmv, totalCost, conversionRate}, "
            "factors {audience, benefit, content, channel: {name, contribution, uplift, detail}}, "
            "insights, suggestions.\n\n"
            f"{json.dumps(summary)}"
        )

        def parse(raw: str) -> AttributionReport:
            data = extract_json(raw)
            if not isinstance(data, dict):
                raise ValueError("report must be a JSON object")
            data["activityId"] = activity.id
            data["generatedTime"] = datetime.now(timezone.utc).isoformat()
            if not data.get("overview"):
                data["overview"] = fallbacks.default_overview(activity).model_dump(by_alias=True)
            report = AttributionReport.model_validate(data)
            if activity.ab_test_enabled:
                report.ab_test_conclusion = fallbacks.ab_conclusion(stats)
            return report

        return self._call(
            "generate_attribution_report",
            prompt,
            parse,
            lambda: fallbacks.fallback_report(activity, stats),
        )

    def generate_feature_sql(
        self,
        description: str,
        table: DataTable,
        columns: Sequence[DataColumn],
    ) -> str:
        cols = ", ".join(f"{c.name} {c.type}" for c in columns)
        prompt = (
            f"Table {table.name} has columns: {cols}.\n"
            f"Write one SQL query computing this per-user feature: {description}\n"
            "Reply with SQL only."
        )

        def parse(raw: str) -> str:
            sql = raw.strip()
            if sql.startswith("```"):
                sql = sql.strip("`")
                if sql.lower().startswith("sql"):
                    sql = sql[3:]
                sql = sql.strip()
            if not sql:
                raise ValueError("empty SQL")
            return sql

        return self._call(
            "generate_feature_sql", prompt, parse, lambda: fallbacks.fallback_feature_sql(table)
        )

    def auto_discover_features(
        self,
        table: DataTable,
        columns: Sequence[DataColumn],
    ) -> List[GeneratedFeature]:
        cols = "\n".join(f"{c.name} ({c.type}): {c.description}" for c in columns)
        prompt = (
            "Suggest 3 to 5 per-user features for marketing analysis of this table. Reply with a "
            "JSON array of objects with keys name, code (snake_case), description, "
            "category (RFM|Lifecycle|Preference|Risk|Custom), ruleSql.\n\n"
            f"Table: {table.name} ({table.description})\nColumns:\n{cols}"
        )

        def parse(raw: str) -> List[GeneratedFeature]:
            data = extract_json(raw)
            if not isinstance(data, list) or not data:
                raise ValueError("features must be a non-empty JSON array")
            features = []
            for i, item in enumerate(data):
                if not isinstance(item, dict):
                    raise ValueError(f"feature {i} is not an object")
                item = dict(item)
                category = item.pop("category", None)
                item.setdefault("categories", [category] if category else ["Custom"])
                item["id"] = f"auto_feat_{table.id}_{i}"
                item["tableId"] = table.id
                item["creationType"] = "auto"
                features.append(GeneratedFeature.model_validate(item))
            return features

        return self._call(
            "auto_discover_features", prompt, parse, lambda: fallbacks.fallback_features(table)
        )

    def augment_data_schema(self, table_name: str, column_names: Sequence[str]) -> SchemaAugmentation:
        """Business-friendly descriptions for a table and its columns."""
        prompt = (
            "Describe this table and its columns for business users. Reply with a JSON object "
            "{tableDesc, columns: [{name, description}]}.\n\n"
            f"Table: {table_name}\nColumns: {', '.join(column_names)}"
        )

        def parse(raw: str) -> SchemaAugmentation:
            data = extract_json(raw)
            if not isinstance(data, dict):
                raise ValueError("schema description must be a JSON object")
            column_descs = {
                c["name"]: c["description"]
                for c in data.get("columns") or []
                if isinstance(c, dict) and c.get("name") and c.get("description")
            }
            return SchemaAugmentation(
                table_desc=data.get("tableDesc") or "Generated description",
                column_descs=column_descs,
            )

        return self._call("augment_data_schema", prompt, parse, fallbacks.fallback_augmentation)

    def suggest_feature_categories(
        self,
        name: str,
        description: str,
        sql: str,
        existing: Sequence[str] = (),
    ) -> List[str]:
        prompt = (
            "Suggest the 1 or 2 most relevant categories for this feature, preferring the existing "
            "ones when they fit. Reply with a JSON array of strings.\n\n"
            f"Feature: {name}\nDescription: {description}\nSQL: {sql}\n"
            f"Existing categories: {', '.join(existing)}"
        )

        def parse(raw: str) -> List[str]:
            data = extract_json(raw)
            if not isinstance(data, list) or not all(isinstance(c, str) for c in data):
                raise ValueError("categories must be a JSON array of strings")
            return [c for c in data if c.strip()]

        return self._call(
            "suggest_feature_categories", prompt, parse, lambda: list(fallbacks.FALLBACK_CATEGORIES)
        )
