"""
Structured logging configuration using structlog.

Every log line is a snake_case event name plus keyword fields, rendered as
JSON in deployed environments and as colored key/value pairs locally.

Usage:
    from apps.core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("subscription_created", organization_id=str(org.id), plan="starter")

Request-scoped fields (request_id, user_id, organization_id) are bound by
RequestContextMiddleware and merged into every event logged while the
request is being handled.
"""

import logging
import sys
from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor


def _stringify_identifiers(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Render UUIDs and Decimals as strings.

    Billing events carry primary keys and money amounts; JSON renderers
    would otherwise fall back to repr() for both.
    """
    for key, value in event_dict.items():
        if isinstance(value, UUID | Decimal):
            event_dict[key] = str(value)
    return event_dict


def _convert_duration_to_milliseconds(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Round request durations measured in seconds to whole milliseconds."""
    if "duration_s" in event_dict:
        event_dict["duration_ms"] = round(event_dict.pop("duration_s") * 1000, 2)
    return event_dict


def configure_logging(json_format: bool = True, log_level: str = "INFO") -> None:
    """
    Configure structlog for the application.

    Uses stdlib integration so Django's own loggers share the same output.

    Args:
        json_format: If True, output JSON (production). If False, pretty console output.
        log_level: Minimum log level to output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _stringify_identifiers,
        _convert_duration_to_milliseconds,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        A bound structlog logger with context support.
    """
    return structlog.get_logger(name)


def bind_contextvars(**kwargs: Any) -> None:
    """Bind key-value pairs to every event logged in the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    """
    Clear all bound context variables.

    Call this at the end of request processing to prevent
    context leakage between requests.
    """
    structlog.contextvars.clear_contextvars()
