"""
Structured logging setup.

Every module logs through `structlog.get_logger()`; this only decides how
events are rendered.
"""

import logging
from contextvars import ContextVar, Token
from typing import Any, Optional

import structlog

# Prefix of the replica a task is working on, bound by the owner of the store.
_replica_prefix: ContextVar[Optional[str]] = ContextVar("replica_prefix", default=None)


def bind_replica_prefix(prefix: Optional[str]) -> Token:
    """Tag log events from the current context with prefix; returns a reset token."""
    return _replica_prefix.set(prefix)


def reset_replica_prefix(token: Token) -> None:
    _replica_prefix.reset(token)


def add_replica_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor that tags events with the current replica prefix."""
    prefix = _replica_prefix.get()
    if prefix and "prefix" not in event_dict:
        event_dict["replica_prefix"] = prefix
    return event_dict


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """
    Configure structlog.

    Args:
        level: Standard logging level name
        fmt: "json" for machine-readable output, "text" for console output
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_replica_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )
