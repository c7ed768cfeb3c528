"""Structured logging setup for the Predictor service.

Every log line includes: timestamp, level, module tag, message, and structured data.
Affiliate partner codes and secret-looking fields are masked before output.

Usage:
    from backend.common.logging import get_logger
    logger = get_logger("ENGINE")
    logger.info("Prediction revealed", extra={"data": {"tier": "Easy", "value": "1.23x"}})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime

# Module tags for structured logging
MODULE_TAGS = {
    "ENGINE",
    "CATALOG",
    "SESSION",
    "DEPOSIT",
    "API",
    "SYSTEM",
    "TEST",
}

REDACTED = "[REDACTED]"

# Field names whose values never reach the log
SECRET_WORDS = ("secret", "password", "token", "credential", "partner_code")

_SECRET_FIELD_PATTERN = re.compile(
    r'"([^"]*(?:' + "|".join(SECRET_WORDS) + r')[^"]*)":\s*"([^"]*)"',
    re.IGNORECASE,
)

# Affiliate links carry the partner code in the `p` query parameter
_PARTNER_CODE_PATTERN = re.compile(r"([?&]p=)[^&\s\"']+")


def is_secret_key(key: str) -> bool:
    """Check if a field name marks its value as secret."""
    key_lower = key.lower()
    return any(word in key_lower for word in SECRET_WORDS)


def redact(text: str) -> str:
    """Mask partner codes in affiliate URLs and values of secret fields."""
    text = _PARTNER_CODE_PATTERN.sub(rf"\g<1>{REDACTED}", text)
    return _SECRET_FIELD_PATTERN.sub(rf'"\1": "{REDACTED}"', text)


class StructuredFormatter(logging.Formatter):
    """Formats log records as structured, human-readable lines.

    Output format:
        2025-02-15T10:30:00Z | INFO | rid=3f2a9c1e | ENGINE | Prediction revealed | {"tier": "Easy"}
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        module_tag = getattr(record, "module_tag", "SYSTEM")

        # Set by RequestIdMiddleware for the duration of a request
        from backend.common.middleware import request_id_var

        rid = request_id_var.get("")

        parts = [timestamp, record.levelname]
        if rid:
            parts.append(f"rid={rid[:8]}")
        parts.extend([module_tag, redact(record.getMessage())])

        data = getattr(record, "data", None)
        if data is not None:
            try:
                parts.append(redact(json.dumps(data, default=str)))
            except (TypeError, ValueError):
                parts.append(redact(str(data)))

        return " | ".join(parts)


class StdoutHandler(logging.StreamHandler):
    """StreamHandler that looks up sys.stdout per record.

    Loggers are created at import time; resolving the stream on emit keeps
    output going wherever stdout points now (pytest capture, uvicorn reload).
    """

    def __init__(self) -> None:
        super().__init__(sys.stdout)

    def emit(self, record: logging.LogRecord) -> None:
        self.stream = sys.stdout
        super().emit(record)


class ModuleTagLogger(logging.LoggerAdapter):
    """Logger adapter that injects module_tag and supports structured data.

    Usage:
        logger = get_logger("SESSION")
        logger.info("Session saved", extra={"data": {"session_id": "abc"}})
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = kwargs.get("extra", {})
        extra["module_tag"] = self.extra.get("module_tag", "SYSTEM")
        kwargs["extra"] = extra
        return msg, kwargs


_loggers: dict[str, ModuleTagLogger] = {}


def get_logger(module_tag: str) -> ModuleTagLogger:
    """Get a structured logger with the given module tag.

    The level comes from the LOG_LEVEL setting when the tag is first used.

    Args:
        module_tag: One of the MODULE_TAGS (ENGINE, SESSION, API, etc.)

    Returns:
        A logger adapter that injects the module tag into every log line.
    """
    if module_tag in _loggers:
        return _loggers[module_tag]

    from backend.common.config import get_settings

    logger = logging.getLogger(f"predictor.{module_tag.lower()}")
    if not logger.handlers:
        handler = StdoutHandler()
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(get_settings().log_level.upper())
        logger.propagate = False

    adapter = ModuleTagLogger(logger, {"module_tag": module_tag})
    _loggers[module_tag] = adapter
    return adapter
