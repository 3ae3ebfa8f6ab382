"""Structured logging configuration with structlog."""

import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

from educhain.config import Settings

WALLET_KEYS = ("wallet", "wallet_address")


def abbreviate_wallets(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Log wallet addresses as ``0x1234...abcd``."""
    for key in WALLET_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > 12:
            event_dict[key] = f"{value[:6]}...{value[-4:]}"
    return event_dict


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output.

    Request handlers bind ``request_id``, ``profile_id`` and ``wallet`` to the
    context, so every event logged while serving a caller carries them.
    """
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            abbreviate_wallets,
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
    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))
