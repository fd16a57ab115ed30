from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Dict, Any

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from infra.logging_config import get_logger

logger = get_logger(__name__)


# =========================
# CONFIG MODELS
# =========================


class ExperimentSettings(BaseModel):
  """
  Knobs for the A/B experiment core: planning inputs and the winner gate.
  """

  ab_test_audience_threshold: int = Field(5000, ge=0)
  base_sample_per_variant: int = Field(1500, gt=0)
  cycle_days: int = Field(7, gt=0)
  winner_chance_threshold: float = Field(95.0, gt=0, lt=100)
  winner_min_traffic: int = Field(100, ge=0)
  default_control_percent: int = Field(50, ge=1, le=90)


class GatewaySettings(BaseModel):
  """
  Generative-AI boundary. There are no retry settings: every failure
  goes straight to the fallback value.
  """

  model: str = "claude-3-5-haiku-latest"
  timeout_s: float = Field(20.0, gt=0)
  max_tokens: int = Field(2048, gt=0)
  fallback_seed: int = 7
  api_key_present: bool = False


class LoggingConfig(BaseModel):
  level: str = "INFO"
  format: str = "json"

  @field_validator("format")
  @classmethod
  def _known_format(cls, v: str) -> str:
    v = v.strip().lower()
    if v not in ("json", "text"):
      raise ValueError("logging.format must be 'json' or 'text'")
    return v


class AppConfig(BaseModel):
  experiments: ExperimentSettings = Field(default_factory=ExperimentSettings)
  gateway: GatewaySettings = Field(default_factory=GatewaySettings)
  logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =========================
# LOADER
# =========================

_DEFAULT_CONFIG_PATH = (
  Path(__file__).resolve().parents[1] / "config" / "default.yml"
)

_APP_CONFIG: Optional[AppConfig] = None


def _read_raw_yaml(path: Path) -> Dict[str, Any]:
  """Read YAML safely. Any problem yields an empty mapping."""
  try:
    with path.open("r", encoding="utf-8") as f:
      data = yaml.safe_load(f) or {}
      if not isinstance(data, dict):
        logger.error(
          "Config YAML root is not a mapping, falling back to defaults",
          extra={"extra_data": {"config_path": str(path)}},
        )
        return {}
      return data
  except FileNotFoundError:
    logger.warning(
      "Config file not found, using defaults",
      extra={"extra_data": {"config_path": str(path)}},
    )
    return {}
  except (OSError, yaml.YAMLError) as exc:
    logger.error(
      "Error reading config file, using defaults",
      extra={
        "extra_data": {
          "config_path": str(path),
          "error": str(exc),
        }
      },
    )
    return {}


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
  value = raw.get(key, {})
  return dict(value) if isinstance(value, dict) else {}


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
  logging_section = _section(raw, "logging")
  gateway_section = _section(raw, "gateway")

  if os.getenv("LOG_LEVEL"):
    logging_section["level"] = os.getenv("LOG_LEVEL")
  if os.getenv("LOG_FORMAT"):
    logging_section["format"] = os.getenv("LOG_FORMAT")

  if os.getenv("CAMPAIGN_LAB_MODEL"):
    gateway_section["model"] = os.getenv("CAMPAIGN_LAB_MODEL")
  if os.getenv("CAMPAIGN_LAB_TIMEOUT_S"):
    gateway_section["timeout_s"] = os.getenv("CAMPAIGN_LAB_TIMEOUT_S")
  # Only presence is recorded; the key itself never enters the config.
  gateway_section["api_key_present"] = bool(os.getenv("ANTHROPIC_API_KEY"))

  merged = dict(raw)
  merged["logging"] = logging_section
  merged["gateway"] = gateway_section
  return merged


def load_config(path: Optional[Path] = None) -> AppConfig:
  """
  Load configuration from YAML + environment and validate it with Pydantic.

  - No file -> defaults.
  - Invalid values -> defaults, logged as an error.
  - Without an explicit path the result is cached for the process.
  """
  global _APP_CONFIG

  if _APP_CONFIG is not None and path is None:
    return _APP_CONFIG

  load_dotenv(find_dotenv(usecwd=True))

  config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
  raw = _apply_env_overrides(_read_raw_yaml(config_path))

  try:
    app_config = AppConfig(
      experiments=ExperimentSettings(**_section(raw, "experiments")),
      gateway=GatewaySettings(**_section(raw, "gateway")),
      logging=LoggingConfig(**_section(raw, "logging")),
    )
  except ValidationError as exc:
    logger.error(
      "Invalid config, using defaults",
      extra={
        "extra_data": {
          "config_path": str(config_path),
          "error": str(exc),
        }
      },
    )
    app_config = AppConfig()

  if path is None:
    _APP_CONFIG = app_config

  logger.debug(
    "Config loaded",
    extra={"extra_data": {"config_path": str(config_path)}},
  )
  return app_config


def get_app_config() -> AppConfig:
  """Shortcut for the process-wide config."""
  return load_config()


def reset_app_config() -> None:
  global _APP_CONFIG
  _APP_CONFIG = None
