"""Structured logging — JSON in prod, coloured console in dev.

Secrets never reach a log line: ``redact_secrets`` masks any event key that
names a credential before rendering.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from config.settings import settings

_SECRET_MARKERS = (
    "secret",
    "passphrase",
    "private_key",
    "password",
    "api_key",
    "authorization",
)
_SECRET_SUFFIXES = ("signature",)

_REDACTED = "***"


def _is_secret_key(key: object) -> bool:
    lowered = str(key).lower().replace("-", "_")
    return lowered.endswith(_SECRET_SUFFIXES) or any(
        marker in lowered for marker in _SECRET_MARKERS
    )


def redact_secrets(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor: mask values whose key looks like a credential."""
    for key in list(event_dict):
        if _is_secret_key(key):
            event_dict[key] = _REDACTED
        elif isinstance(event_dict[key], dict):
            event_dict[key] = {
                k: (_REDACTED if _is_secret_key(k) else v)
                for k, v in event_dict[key].items()
            }
    return event_dict


def setup_logging() -> None:
    """Configure structlog processors and stdlib integration."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_secrets,
    ]

    if settings.APP_ENV == "dev":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

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
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.LOG_LEVEL.upper())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound logger for the given module name."""
    setup_logging()
    return structlog.get_logger(name)
