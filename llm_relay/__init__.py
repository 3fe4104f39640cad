"""llm_relay - multi-provider chat completion with fallback, racing and memory."""

from __future__ import annotations

from llm_relay.attachments import Attachment
from llm_relay.config import Settings, get_settings
from llm_relay.content import AskRequest, ConversationTurn
from llm_relay.errors import (
    ConfigurationError,
    ExhaustionError,
    MissingChatIdError,
    PersistenceError,
    ProviderError,
    RelayError,
    TranscriptionInputError,
)
from llm_relay.events import EventHooks, EventKind, ResolutionEvent
from llm_relay.factory import build_provider, build_provider_router, memory_from_settings, router_from_settings
from llm_relay.memory import ConversationMemory, HistoryStore, InMemoryHistoryStore, SQLHistoryStore
from llm_relay.model_router import ProviderRouter, Resolver
from llm_relay.providers import ChatProvider, GroqProvider, MistralProvider, OpenRouterProvider

__version__ = "0.1.0"

__all__ = [
    "AskRequest",
    "Attachment",
    "ChatProvider",
    "ConfigurationError",
    "ConversationMemory",
    "ConversationTurn",
    "EventHooks",
    "EventKind",
    "ExhaustionError",
    "GroqProvider",
    "HistoryStore",
    "InMemoryHistoryStore",
    "MissingChatIdError",
    "MistralProvider",
    "OpenRouterProvider",
    "PersistenceError",
    "ProviderError",
    "ProviderRouter",
    "RelayError",
    "ResolutionEvent",
    "Resolver",
    "SQLHistoryStore",
    "Settings",
    "TranscriptionInputError",
    "build_provider",
    "build_provider_router",
    "get_settings",
    "memory_from_settings",
    "router_from_settings",
]
