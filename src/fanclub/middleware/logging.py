"""Structured logging with structlog.

structlog events and plain stdlib records (uvicorn, SQLAlchemy, botocore)
share one processor chain and leave through a single root handler, as JSON
lines or as console output.
"""

import logging
from typing import Any

import structlog

from fanclub.config import Settings

HANDLER_NAME = "fanclub"

# Chatty libraries that only matter when something is wrong
QUIET_LOGGERS = ("sqlalchemy.engine", "botocore", "aiobotocore", "httpx")

# Event keys whose values never reach a log line
REDACTED_KEYS = frozenset({"admin_token", "x_admin_token", "authorization", "cookie", "cookies", "password", "secret"})
REDACTED = "[redacted]"


def redact_secrets(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask credentials bound to the context or passed as event keys."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]


def _build_handler(log_format: str) -> logging.Handler:
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
    )
    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)
    return handler


def setup_logging(settings: Settings) -> None:
    """Route structlog and stdlib logging through one formatter. Safe to call again."""
    structlog.configure(
        processors=[*_shared_processors(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for handler in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(handler)
    root.addHandler(_build_handler(settings.log_format))

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
