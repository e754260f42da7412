"""
Logging configuration: stdlib handlers with structlog event rendering.
"""
import logging
import sys
from typing import Any, List, Optional, Sequence

import structlog

REDACTED = "******"


def setup_logging(log_level: str = "INFO", json: Optional[bool] = None) -> None:
    """
    Configures structlog on top of the standard library logging module.

    :param log_level: Level name, e.g. INFO or DEBUG.
    :param json: Force JSON output; defaults to JSON unless stderr is a TTY.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    if json is None:
        json = not sys.stderr.isatty()

    # Clear any existing handlers to prevent duplicates
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    renderer = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def redact_command(command: Sequence[str], secrets: Sequence[str] = ()) -> List[str]:
    """Copy of an argv with every secret value masked."""
    masked = [s for s in secrets if s]
    return [REDACTED if arg in masked else arg for arg in command]


def redact_text(text: str, secrets: Sequence[str] = ()) -> str:
    """Copy of free text, such as captured stderr, with every secret value masked."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)
