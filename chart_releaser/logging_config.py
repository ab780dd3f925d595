"""
Logging Configuration for chart-releaser.

Text or JSON log records for the ``chart_releaser`` logger hierarchy.
GitHub tokens are masked before a record reaches any handler: push URLs
carry the token (``https://x-access-token:<token>@github.com/...``) and
git command lines are logged at debug level.

Release context passed as ``extra={"chart": ..., "release": ...}`` is added
to JSON records.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
REDACTED = "***"
CONTEXT_FIELDS = ("chart", "version", "release")

_TOKEN_PATTERNS = [
    # Credentials embedded in a URL
    re.compile(r"(?<=://)[^/@\s:]+:[^/@\s]+(?=@)"),
    # GitHub personal access, OAuth, app and fine-grained tokens
    re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b"),
]


def redact_tokens(text: str) -> str:
    """Mask access tokens in text."""
    for pattern in _TOKEN_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


class TokenRedactionFilter(logging.Filter):
    """Masks access tokens in the rendered message of every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_tokens(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value

        if record.exc_info:
            log_data["exception"] = redact_tokens(self.formatException(record.exc_info))

        return json.dumps(log_data)


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
    format: Literal["json", "text"] = "text",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the ``chart_releaser`` logger hierarchy.

    Args:
        level: Logging level
        format: Log format (json or text)
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("chart_releaser")
    logger.setLevel(getattr(logging, level))

    # Reconfiguring replaces previous handlers
    logger.handlers.clear()

    formatter: logging.Formatter
    if format == "json":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)
    redaction = TokenRedactionFilter()

    handlers: list = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(getattr(logging, level))
        handler.setFormatter(formatter)
        handler.addFilter(redaction)
        logger.addHandler(handler)

    return logger
