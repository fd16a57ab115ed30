from __future__ import annotations

from typing import Any, Dict, Optional


class ExperimentError(Exception):
    """Base for every typed failure of the experiment core."""

    code = "EXPERIMENT_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidEventError(ExperimentError):
    """Negative delta, unknown variant, or conversions > traffic after update."""

    code = "INVALID_EVENT"


class CapacityExceeded(ExperimentError):
    code = "CAPACITY_EXCEEDED"


class MinimumVariantsViolation(ExperimentError):
    code = "MINIMUM_VARIANTS_VIOLATION"


class DivideByZeroGuard(ExperimentError):
    """Audience too small to yield any daily traffic; duration is undefined."""

    code = "DIVIDE_BY_ZERO_GUARD"


class InvalidTransition(ExperimentError):
    """Command not allowed in the current config or lifecycle state."""

    code = "INVALID_TRANSITION"


class GatewayUnavailable(ExperimentError):
    """Generation backend failed. Absorbed at the gateway boundary."""

    code = "GATEWAY_UNAVAILABLE"
