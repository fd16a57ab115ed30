from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING, Any, Dict, Optional, TextIO

if TYPE_CHECKING:
    from infra.config_loader import LoggingConfig


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        # Fields passed as extra={"extra_data": {...}}
        if hasattr(record, "extra_data"):
            log_entry.update(getattr(record, "extra_data"))

        if record.exc_info:
            log_entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(
    config: Optional["LoggingConfig"] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Install a single stream handler (stdout by default) on the root logger.

    Importing this module configures nothing; call setup_logging() from an
    entrypoint. A second call replaces the handler instead of stacking one.
    """
    if config is None:
        from infra.config_loader import get_app_config

        config = get_app_config().logging

    log_level = getattr(logging, config.level.upper(), logging.INFO)

    if config.format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=[handler], force=True)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_kv(logger: logging.Logger, msg: str, **kv: Any) -> None:
    if not kv:
        logger.info(msg)
        return
    extra = " ".join([f"{k}={kv[k]!r}" for k in sorted(kv.keys())])
    logger.info("%s | %s", msg, extra)
