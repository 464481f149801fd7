"""
Logging setup for rulebook.

Library modules log through ``logging.getLogger(__name__)`` and never install
handlers themselves. Applications (and the CLI) call ``setup_logging()`` once;
the ``json`` format emits one object per line with the record's extra fields,
so confrontation logs can be collected alongside other structured logs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

_CONFIGURED = False

# attributes every LogRecord has; anything else was passed through ``extra``
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class LoggingSettings(BaseModel):
    """How log records are rendered and where they go."""

    level: str = Field(default="WARNING", description="Root log level name")
    log_format: Literal["text", "json"] = Field(default="text", description="Output format")
    log_file: Optional[str] = Field(default=None, description="Write to this file instead of stderr")

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level '{value}'")
        return level


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(settings: Optional[LoggingSettings] = None, force: bool = False) -> None:
    """
    Configure root logging once.

    Args:
        settings: Logging settings; defaults are read from RULEBOOK_LOG_* variables
        force: Reconfigure even if logging was already set up
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    if settings is None:
        from rulebook.config import get_settings

        env = get_settings()
        settings = LoggingSettings(level=env.log_level, log_format=env.log_format, log_file=env.log_file)

    if settings.log_file:
        handler: logging.Handler = logging.FileHandler(settings.log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)

    if settings.log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_rulebook", False):
            root.removeHandler(existing)
            existing.close()
    handler._rulebook = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(settings.level)
    _CONFIGURED = True
