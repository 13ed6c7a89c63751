"""Structured logging with structlog.

Sign-in links, refresh tokens and passwords travel through request bodies
and log calls; every event passes ``redact_secrets`` before rendering.
"""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from rankshare.config import Settings

SECRET_KEYS = frozenset({
    "password",
    "password_confirm",
    "token",
    "access_token",
    "refresh_token",
    "link_url",
    "authorization",
})

REDACTED = "[redacted]"

# Chatty below WARNING unless debug is on.
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "httpx", "httpcore")


def redact_secrets(
    _logger: Any,  # noqa: ANN401
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Replace the values of secret-bearing keys, one level deep."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {k: REDACTED if k.lower() in SECRET_KEYS else v for k, v in value.items()}
    return event_dict


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON (production) or console (development) output."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    if not settings.debug:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(level, logging.WARNING))
