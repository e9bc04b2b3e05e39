"""Structured logging for the billing backend.

structlog renders JSON in production and a colored console in debug mode.
Stdlib loggers (uvicorn, sqlalchemy, stripe, botocore) share the same
processor chain, so every line carries the request's correlation id and
webhook signatures or bearer tokens never reach the output.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

# Field names whose values must never reach log output
REDACTED_FIELDS = frozenset({"signature", "stripe_signature", "authorization", "token"})

# Chatty third-party loggers held at WARNING
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "stripe", "botocore")


def add_correlation_id(logger, method, event_dict):
    """Attach the X-Request-ID of the current request, if any."""
    request_id = correlation_id.get(None)
    if request_id:
        event_dict["correlation_id"] = request_id
    return event_dict


def redact_secrets(logger, method, event_dict):
    for key in REDACTED_FIELDS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def build_processors() -> list:
    """Processors applied to both structlog and stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def _logging_config(log_level: str, processors: list, renderer) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "billing": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": processors,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            },
        },
        "handlers": {
            "stdout": {"class": "logging.StreamHandler", "formatter": "billing", "stream": "ext://sys.stdout"},
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    }


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog and route stdlib logging through it.

    Call before any module binds a logger: structlog caches the processor
    chain on first use.
    """
    processors = build_processors()
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig(_logging_config(log_level, processors, renderer))

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
