"""Logging setup: structlog over the stdlib, with request and site context.

Every event carries the request's correlation id (asgi-correlation-id) and,
inside ``site_context``, the site (and phase/step) being worked on, so a
retried write or a dropped live feed can be traced back to one site without
threading ids through every call. Third-party loggers (uvicorn, redis, boto)
go through the same renderer and are held at WARNING.
"""

import logging
import logging.config
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from asgi_correlation_id.context import correlation_id

QUIET_LOGGERS = (
    "uvicorn.access",
    "asyncio",
    "redis",
    "botocore",
    "boto3",
    "s3transfer",
    "urllib3",
)


def add_correlation_id(logger, method, event_dict):
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def drop_color_message(logger, method, event_dict):
    # uvicorn duplicates its message with ANSI codes under this key
    event_dict.pop("color_message", None)
    return event_dict


@contextmanager
def site_context(site_id: str, **ids: str | None) -> Iterator[None]:
    """Bind ``site_id`` and any non-empty ``phase_id``/``step_id``/... to every event in the block."""
    bound = {"site_id": site_id, **{key: value for key, value in ids.items() if value}}
    tokens = structlog.contextvars.bind_contextvars(**bound)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def _logging_config(log_level: str, renderer) -> dict:
    pre_chain = _shared_processors()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": pre_chain,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    }


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        drop_color_message,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_logging(debug: bool = False, log_level: str | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Call this BEFORE any other sitetrack imports (structlog caches the
    processor chain on first use).

    Args:
        debug: Console renderer and DEBUG level when True, JSON and INFO otherwise
        log_level: Explicit root level, overriding the one implied by ``debug``
    """
    level = (log_level or ("DEBUG" if debug else "INFO")).upper()
    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()

    logging.config.dictConfig(_logging_config(level, renderer))

    structlog.configure(
        processors=_shared_processors() + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
