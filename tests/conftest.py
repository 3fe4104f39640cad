"""
Shared test fixtures for pytest.

Provides common fakes for all test modules:
- ScriptedClient: completion client with scripted replies (no network)
- completion_response: builds an OpenAI-shaped completion response
- hooks / events: EventHooks with a recording subscriber
- memory_store: in-memory history store
- sqlite_url: per-test SQLite database URL under tmp_path
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest
import structlog

from llm_relay.config import get_settings
from llm_relay.events import EventHooks, ResolutionEvent
from llm_relay.memory.store import InMemoryHistoryStore

# ------------------------------------------------------------------ #
# Per-test: clear settings cache and log context
# ------------------------------------------------------------------ #


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Clear the lru_cache on get_settings so env overrides take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    structlog.contextvars.clear_contextvars()


# ------------------------------------------------------------------ #
# Fakes
# ------------------------------------------------------------------ #


class ScriptedClient:
    """Completion client that replays scripted outcomes in order.

    Each reply is either a string (returned) or an exception (raised). The
    last reply repeats once the script runs out. An optional delay (seconds)
    is awaited before each reply.
    """

    def __init__(self, *replies: Any, delay: float = 0.0, model_id: str = "scripted-model") -> None:
        self.replies = list(replies)
        self.delay = delay
        self.model_id = model_id
        self.requests: list[Any] = []
        self.last_used_model: str | None = None

    async def ask(self, request: Any) -> str:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        self.last_used_model = self.model_id
        return reply

    @property
    def call_count(self) -> int:
        return len(self.requests)


def completion_response(text: Any, *, usage: Any = None) -> SimpleNamespace:
    """Build an OpenAI-shaped chat completion response."""
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=usage,
    )


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture
def events() -> list[ResolutionEvent]:
    return []


@pytest.fixture
def hooks(events) -> EventHooks:
    return EventHooks([events.append])


@pytest.fixture
async def memory_store():
    store = InMemoryHistoryStore()
    yield store
    await store.close()


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'history.db'}"
