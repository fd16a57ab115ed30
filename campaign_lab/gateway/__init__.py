from campaign_lab.gateway.client import AnthropicTextGenerator, TextGenerator, classify_error, extract_json
from campaign_lab.gateway.fallbacks import perturb
from campaign_lab.gateway.schemas import (
    AbTestConclusion,
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
    SchemeSettings,
)
from campaign_lab.gateway.service import ExternalGenerationGateway

__all__ = [
    "AbTestConclusion",
    "Activity",
    "AnthropicTextGenerator",
    "AttributionReport",
    "AudienceAnalysisResult",
    "DataColumn",
    "DataTable",
    "ExternalGenerationGateway",
    "GeneratedFeature",
    "Metrics",
    "ParsedGoal",
    "SchemaAugmentation",
    "Scheme",
    "SchemeSettings",
    "TextGenerator",
    "classify_error",
    "extract_json",
    "perturb",
]
