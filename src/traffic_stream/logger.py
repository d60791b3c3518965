import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .config import LoggingConfig, get_default_config

# Formatter instances are shared between loggers with the same settings
_formatter_cache: Dict[str, logging.Formatter] = {}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _context_items(record: logging.LogRecord) -> Dict[str, Any]:
    """Extract ctx_ prefixed extras from a record"""
    return {
        key[4:]: value
        for key, value in record.__dict__.items()
        if key.startswith("ctx_")
    }


class StructuredFormatter(logging.Formatter):
    """JSON formatter, one object per line"""

    def __init__(self, config: Optional[LoggingConfig] = None):
        super().__init__()
        self.config = config or get_default_config().logging

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.config.include_timestamp:
            log_entry["timestamp"] = _timestamp()

        log_entry.update(_context_items(record))

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, separators=(",", ":"), default=str)


class PlainTextFormatter(logging.Formatter):
    """Human readable formatter with trailing key=value context"""

    def __init__(self, config: Optional[LoggingConfig] = None):
        super().__init__()
        self.config = config or get_default_config().logging

    def format(self, record: logging.LogRecord) -> str:
        parts = []

        if self.config.include_timestamp:
            parts.append(f"[{_timestamp()}]")

        parts.extend([record.levelname, record.name, record.getMessage()])

        context = _context_items(record)
        if context:
            parts.append(" ".join(f"{k}={v}" for k, v in context.items()))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _get_formatter_cache_key(config: LoggingConfig) -> str:
    return f"{config.formatter_type}_{config.include_timestamp}"


def _get_or_create_formatter(config: LoggingConfig) -> logging.Formatter:
    """Get formatter from cache or create new one"""
    cache_key = _get_formatter_cache_key(config)

    if cache_key not in _formatter_cache:
        if config.formatter_type == "plain":
            formatter = PlainTextFormatter(config)
        else:  # default to json
            formatter = StructuredFormatter(config)
        _formatter_cache[cache_key] = formatter

    return _formatter_cache[cache_key]


def get_logger(name: str, config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Create a logger under the ``traffic_stream`` namespace"""
    if not name.startswith("traffic_stream"):
        name = f"traffic_stream.{name}"
    logger = logging.getLogger(name)

    if not logger.handlers:
        config = config or get_default_config().logging
        logger.setLevel(getattr(logging, config.log_level.upper()))

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(_get_or_create_formatter(config))
        logger.addHandler(console_handler)

        # Let pytest's caplog and host applications see the records too
        logger.propagate = True

    return logger


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    exc_info: Any = None,
    **extra: Any,
) -> None:
    """Log with extra fields rendered by the structured formatters"""
    ctx_context = {f"ctx_{k}": v for k, v in extra.items() if v is not None}
    getattr(logger, level)(message, extra=ctx_context, exc_info=exc_info)
