"""Conversation history: stores and the memory bridge."""

from __future__ import annotations

from llm_relay.memory.bridge import ConversationMemory
from llm_relay.memory.store import (
    DEFAULT_MAX_ENTRIES,
    HistoryStore,
    InMemoryHistoryStore,
    SQLHistoryStore,
    get_history_store,
    persistable_turns,
)

__all__ = [
    "DEFAULT_MAX_ENTRIES",
    "ConversationMemory",
    "HistoryStore",
    "InMemoryHistoryStore",
    "SQLHistoryStore",
    "get_history_store",
    "persistable_turns",
]
