"""Logging setup and configuration utilities."""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Iterable, List, Optional

import structlog
from structlog.typing import EventDict, FilteringBoundLogger, WrappedLogger

from ..config import settings


MASK = "***"


class RedactSecrets:
    """structlog processor masking API keys in every string value of an event."""

    SECRET_REGEX = re.compile(r"(?i)\b(api[_-]?key|authorization|x-api-key)(\s*[:=]\s*)(?:bearer\s+)?([^\s,'\"]+)")
    BEARER_REGEX = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-]+")
    KEY_REGEX = re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}")

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        # Longest first so a key containing another is masked whole
        self.secrets: List[str] = sorted({s for s in secrets if s}, key=len, reverse=True)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, MASK)
        text = self.SECRET_REGEX.sub(lambda m: f"{m.group(1)}{m.group(2)}{MASK}", text)
        text = self.BEARER_REGEX.sub(f"Bearer {MASK}", text)
        return self.KEY_REGEX.sub(MASK, text)

    def _walk(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, dict):
            return {k: self._walk(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self._walk(v) for v in value)
        return value

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        return {key: self._walk(value) for key, value in event_dict.items()}


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    secrets: Optional[Iterable[str]] = None,
) -> FilteringBoundLogger:
    """
    Set up structured logging with appropriate configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format type ("json" or "text")
        log_file: Path to log file (optional)
        secrets: Literal values to mask; defaults to the configured API keys

    Returns:
        Configured structlog logger
    """
    level = log_level or settings.logging.level
    format_type = log_format or settings.logging.format
    file_path = log_file or settings.logging.file
    secret_values = settings.secret_values() if secrets is None else list(secrets)

    logging_level = getattr(logging, level.upper())

    handlers: List[logging.Handler] = []

    # stderr keeps the chat transcript on stdout clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging_level)
    handlers.append(console_handler)

    if file_path:
        file_path_obj = Path(file_path)
        file_path_obj.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=_parse_size(settings.logging.max_size),
            backupCount=settings.logging.backup_count,
        )
        file_handler.setLevel(logging_level)
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging_level,
        handlers=handlers,
        format="%(message)s",  # Let structlog handle formatting
        force=True,
    )
    # httpx logs full request lines at INFO
    logging.getLogger("httpx").setLevel(max(logging_level, logging.WARNING))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        RedactSecrets(secret_values),
    ]

    if format_type == "json":
        processors.extend([
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        processors.extend([
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger()
    logger.debug("Logging configured", level=level, format=format_type, file=file_path)

    return logger


def _parse_size(size_str: str) -> int:
    """Parse size string (e.g., '10MB') into bytes."""
    size_str = size_str.upper().strip()

    multipliers = {
        'KB': 1024,
        'MB': 1024 * 1024,
        'GB': 1024 * 1024 * 1024,
        'K': 1024,
        'M': 1024 * 1024,
        'G': 1024 * 1024 * 1024,
        'B': 1,
    }

    for suffix, multiplier in multipliers.items():
        if size_str.endswith(suffix):
            try:
                number = float(size_str[:-len(suffix)])
                return int(number * multiplier)
            except ValueError:
                break

    return 10 * 1024 * 1024


def set_log_level(level: str) -> None:
    """Dynamically change the log level."""
    logging_level = getattr(logging, level.upper())
    logging.getLogger().setLevel(logging_level)

    for handler in logging.getLogger().handlers:
        handler.setLevel(logging_level)
