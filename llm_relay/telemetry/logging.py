"""Structured logging configuration.

llm_relay itself only ever calls ``structlog.get_logger(__name__)``; the
host application decides how those events are rendered. This module is a
convenience for applications that have no logging setup of their own.

Features:
- JSON-formatted logs in production (human-readable in dev)
- Chat id and history scope in every entry of a conversation
- ISO8601 timestamps in UTC
- Stack traces for exceptions

Log format (production):
    {
        "timestamp": "2026-02-17T10:30:45.123456Z",
        "level": "warning",
        "logger": "llm_relay.model_router.attempt",
        "event": "attempt.failed",
        "chat_id": "42",
        "scope": "support-bot",
        "label": "groq",
        "model_id": "llama-3.1-70b-versatile",
        "failure_kind": "timeout"
    }
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor


def configure_logging(
    *,
    json_logs: bool = False,
    log_level: str = "INFO",
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_logs: Use JSON format (True for production, False for dev)
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ------------------------------------------------------------------ #
# Context Binding Helpers
# ------------------------------------------------------------------ #


def bind_chat_context(chat_id: str | int, scope: str | None = None) -> None:
    """Bind conversation identifiers to log context for this task.

    Args:
        chat_id: Conversation identifier
        scope: History scope (bot/app name)
    """
    if scope is None:
        structlog.contextvars.bind_contextvars(chat_id=str(chat_id))
    else:
        structlog.contextvars.bind_contextvars(chat_id=str(chat_id), scope=scope)


def clear_context() -> None:
    """Clear all context variables (useful for testing)."""
    structlog.contextvars.clear_contextvars()
