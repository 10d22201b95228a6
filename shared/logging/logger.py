"""
Logger Implementation
=====================

Configures structlog for structured logging with:
- JSON output in production
- Console output in development
- Pipeline stage / item context binding for drainer workers

Version: 0.1.0
"""

import datetime
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import Processor


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger


_SERVICE_NAME = "factline"

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "api_key",
        "secret",
        "token",
        "authorization",
        "private_key",
    }
)


def _add_service_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add service-level context to all log entries."""
    event_dict.setdefault("service", _SERVICE_NAME)
    event_dict.setdefault("version", "0.1.0")
    return event_dict


def _add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    event_dict["timestamp"] = datetime.datetime.now(datetime.UTC).isoformat()
    return event_dict


def _censor_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Censor sensitive data in logs."""

    def censor_dict(d: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in d.items():
            if any(s in key.lower() for s in SENSITIVE_KEYS):
                result[key] = "***REDACTED***"
            elif isinstance(value, dict):
                result[key] = censor_dict(value)
            else:
                result[key] = value
        return result

    return censor_dict(event_dict)


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "factline",
) -> None:
    """
    Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output JSON format (True for production)
        service_name: Name of the service for context
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service_name

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # SQL echo and HTTP client chatter drown the pipeline events
    for noisy_logger in ["httpx", "httpcore", "asyncio", "sqlalchemy.engine", "anthropic"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_timestamp,
        _add_service_context,
        _censor_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_handler = logging.StreamHandler(sys.stdout)
    root_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(root_handler)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        BoundLogger: Structured logger with context binding support

    Example:
        logger = get_logger(__name__)
        logger.info("rule_created", rule_id="abc123", concept_slug="pdv-standardna-stopa")
    """
    return structlog.stdlib.get_logger(name)


@contextmanager
def stage_context(stage: str, **kwargs: Any) -> Iterator[None]:
    """
    Bind a pipeline stage (and optional item ids) to every log emitted
    inside the block.

    Example:
        with stage_context("compose", pointer_ids=ids):
            logger.info("composition_started")
    """
    with structlog.contextvars.bound_contextvars(stage=stage, **kwargs):
        yield
