"""
Request/response shapes exchanged with the generation service.

The service speaks camelCase JSON; models accept either casing and dump
camelCase with by_alias=True.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, InstanceOf
from pydantic.alias_generators import to_camel

from campaign_lab.experiments.models import ExperimentConfig


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StrategyType(str, Enum):
    BALANCED = "balanced"
    PRECISION = "precision"
    EXPANSION = "expansion"
    INNOVATION = "innovation"


class Metrics(_Wire):
    roi: float = Field(..., description="Return on investment multiple")
    gmv: float = Field(..., ge=0)
    cost: float = Field(..., ge=0)
    audience_size: int = Field(..., ge=0)
    conversion_rate: float = Field(..., ge=0)


class SchemeSettings(_Wire):
    audience: str = ""
    benefit: str = ""
    gameplay: str = ""
    channel: str = ""

    def as_mapping(self) -> dict:
        return self.model_dump()


class Scheme(_Wire):
    id: str
    name: str
    type: StrategyType = StrategyType.BALANCED
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    audience_tags: List[str] = Field(default_factory=list)
    metrics: Metrics
    settings: SchemeSettings = Field(default_factory=SchemeSettings, alias="config")
    ab_test: Optional[InstanceOf[ExperimentConfig]] = Field(default=None, exclude=True)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    confidence: Literal["high", "medium", "low"] = "medium"
    confidence_reason: str = ""

    @property
    def ab_test_enabled(self) -> bool:
        return self.ab_test is not None and self.ab_test.enabled


class ParsedGoal(_Wire):
    category: str = "Any"
    target_type: str = ""
    target_audience_name: str = ""
    target_audience_features: str = ""
    target_audience_tags: List[str] = Field(default_factory=list)
    suggested_tags: List[str] = Field(default_factory=list)
    time_value: int = Field(14, ge=0)
    time_unit: Literal["days", "hours"] = "days"
    budget: float = Field(0.0, ge=0)
    original_text: str = ""


class ProfileItem(_Wire):
    label: str
    value: float
    tgi: float


class AudienceProfile(_Wire):
    age: List[ProfileItem] = Field(default_factory=list)
    gender: List[ProfileItem] = Field(default_factory=list)
    city: List[ProfileItem] = Field(default_factory=list)
    interest: List[str] = Field(default_factory=list)


class AudienceAnalysisResult(_Wire):
    name: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    estimated_size: int = Field(..., ge=0)
    lookalike_size: int = Field(0, ge=0)
    predicted_roi: float = 0.0
    profile: AudienceProfile = Field(default_factory=AudienceProfile)
    match_score: float = Field(0.0, ge=0, le=100)
    reasoning: str = ""


class AttributionFactor(_Wire):
    name: str
    contribution: float
    uplift: float
    detail: str = ""


class AttributionFactors(_Wire):
    audience: AttributionFactor
    benefit: AttributionFactor
    content: AttributionFactor
    channel: AttributionFactor


class AttributionOverview(_Wire):
    final_roi: float
    target_roi: float
    final_gmv: float
    total_cost: float
    conversion_rate: float


class AttributionInsight(_Wire):
    id: str
    type: Literal["positive", "negative"]
    title: str
    description: str = ""
    z_score: float = 0.0
    data_point: str = ""


class AttributionSuggestion(_Wire):
    id: str
    type: Literal["new_activity", "template", "config"]
    title: str
    impact: str = ""
    difficulty: Literal["Low", "Medium", "High"] = "Medium"
    action_label: str = ""


class AbTestConclusion(_Wire):
    winner: str
    uplift: float
    confidence: float = Field(..., ge=0, le=100)
    description: str = ""


class AttributionReport(_Wire):
    activity_id: str
    generated_time: str
    overview: AttributionOverview
    factors: Optional[AttributionFactors] = None
    ab_test_conclusion: Optional[AbTestConclusion] = None
    insights: List[AttributionInsight] = Field(default_factory=list)
    suggestions: List[AttributionSuggestion] = Field(default_factory=list)


class Activity(_Wire):
    id: str
    name: str
    category: str = ""
    budget: float = Field(0.0, ge=0)
    roi: float = 0.0
    status: Literal["active", "draft", "ended", "paused"] = "draft"
    scheme_detail: Optional[Scheme] = None

    @property
    def ab_test_enabled(self) -> bool:
        return self.scheme_detail is not None and self.scheme_detail.ab_test_enabled


class DataColumn(_Wire):
    table_id: str
    name: str
    type: str
    description: str = ""
    is_primary_key: bool = False


class DataTable(_Wire):
    id: str
    name: str
    description: str = ""
    row_count: int = Field(0, ge=0)


class GeneratedFeature(_Wire):
    """A per-user feature proposed for the feature store."""

    id: str = ""
    table_id: Optional[str] = None
    name: str
    code: str
    categories: List[str] = Field(default_factory=list)
    description: str = ""
    status: Literal["draft", "published", "calculating", "pending", "ready"] = "ready"
    rule_sql: str = ""
    creation_type: Literal["auto", "manual", "ai"] = "auto"


class SchemaAugmentation(_Wire):
    table_desc: str
    column_descs: Dict[str, str] = Field(default_factory=dict)
