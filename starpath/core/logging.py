"""Structured logging configuration."""

import logging
import sys

import structlog
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import add_logger_name

from starpath.core.config import settings

# Libraries whose INFO output drowns the reward events
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "uvicorn.access")


def add_service_context(logger, method_name, event_dict):
    """Stamp every event with the service name and environment."""
    event_dict.setdefault("service", settings.SERVICE_NAME)
    event_dict.setdefault("environment", settings.ENVIRONMENT)
    return event_dict


def setup_logging():
    """Configure structlog on top of stdlib logging.

    JSON lines in deployed environments, console output with LOG_FORMAT=plain.
    """
    if settings.LOG_FORMAT == "json":
        renderer = JSONRenderer()
        tracebacks = structlog.processors.dict_tracebacks
    else:
        renderer = structlog.dev.ConsoleRenderer()
        tracebacks = structlog.processors.StackInfoRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            add_log_level,
            add_logger_name,
            add_service_context,
            TimeStamper(fmt="iso"),
            tracebacks,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.LOG_LEVEL),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))


def bind_request_context(**values):
    """Attach values (request id, learner id) to every log line of the current task."""
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context():
    structlog.contextvars.clear_contextvars()
