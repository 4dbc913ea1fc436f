"""Logging setup for the agent process."""

from __future__ import annotations

import logging
import re
import sys

LOGGER_NAME = "preview_agent"

_REDACT_PATTERN = re.compile(r"(?i)(authorization|token|password)=([^\s,;]+)")


class RedactSecretsFilter(logging.Filter):
    """Mask credential values that end up in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        lowered = message.lower()
        if any(key in lowered for key in ("authorization", "token", "password")):
            record.msg = _REDACT_PATTERN.sub(r"\1=[redacted]", message)
            record.args = ()
        return True


def configure_logging(level: str = "info") -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RedactSecretsFilter())
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    for existing in logger.handlers:
        existing.close()
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(level or "info").upper(), logging.INFO))
    logger.propagate = False
    return logger
