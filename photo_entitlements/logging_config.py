"""Structured logging configuration using structlog.

All modules log through `get_logger(__name__)` and emit snake_case event
names with keyword fields, e.g.::

    logger.info("purchase_recorded", session_id=short_id(session_id), items=2)

Output is JSON by default (one object per line) or coloured console output
for local development. Events go through stdlib logging, so uvicorn and
pytest's caplog see them.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, Processor

APP_NAME = "photo-entitlements"

# Event fields that carry download credentials
CREDENTIAL_FIELDS = ("session_id",)


def short_id(value: str, keep: int = 16) -> str:
    """Truncate an identifier for logging.

    Session ids are bearer credentials for downloads, so logs carry only
    a prefix.

    Example:
        short_id("cs_test_a1b2c3d4e5f6g7h8i9") -> "cs_test_a1b2c3d4..."
    """
    if len(value) <= keep:
        return value
    return value[:keep] + "..."


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def mask_credentials(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten session ids that reach the renderer untruncated."""
    for field in CREDENTIAL_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, str):
            event_dict[field] = short_id(value)
    return event_dict


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog for the service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON; if False, use colored console output
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    # basicConfig is a no-op once handlers exist (uvicorn, pytest)
    logging.getLogger().setLevel(numeric_level)

    renderer: Processor
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            add_app_context,
            mask_credentials,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind fields to every event logged by the current request.

    Example:
        bind_context(request_id="abc123", product_id="sunset-01")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
