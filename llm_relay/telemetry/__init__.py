"""Logging setup for applications embedding llm_relay."""

from __future__ import annotations

from llm_relay.telemetry.logging import bind_chat_context, clear_context, configure_logging

__all__ = ["bind_chat_context", "clear_context", "configure_logging"]
