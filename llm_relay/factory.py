"""Builders that assemble providers, routers and memory from configuration.

Every class in llm_relay can be constructed directly. These helpers cover
the common wiring: one ChatProvider per provider that has an API key, a
ProviderRouter over them, and optionally a history store plus memory
bridge, all driven either by explicit arguments or by Settings.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from llm_relay.config import Settings, get_settings
from llm_relay.errors import ConfigurationError
from llm_relay.events import EventHooks
from llm_relay.memory.bridge import ConversationMemory
from llm_relay.memory.store import HistoryStore, get_history_store
from llm_relay.model_router.router import ProviderBinding, ProviderRouter
from llm_relay.providers import PROVIDER_CLASSES, ChatProvider

log = structlog.get_logger(__name__)

DEFAULT_PRIMARY = {"provider": "mistral", "name": "mistral-small-latest"}


def build_provider(provider_id: str, *, api_key: str, **options: Any) -> ChatProvider:
    """Instantiate the provider registered under provider_id.

    Raises:
        ConfigurationError: If provider_id is unknown or api_key is missing
    """
    provider_class = PROVIDER_CLASSES.get(provider_id)
    if provider_class is None:
        raise ConfigurationError(
            f"Unknown provider {provider_id!r}; expected one of {sorted(PROVIDER_CLASSES)}"
        )
    return provider_class(api_key=api_key, **options)


def build_provider_router(
    api_keys: Mapping[str, str | None],
    *,
    model: Mapping[str, str] | None = None,
    fallback_models: Mapping[str, Sequence[str]] | None = None,
    temperature: float = 0.7,
    max_tokens: int = 1000,
    request_timeout_ms: int = 20_000,
    first_to_finish: bool = False,
    hooks: EventHooks | None = None,
) -> ProviderRouter:
    """Build a ProviderRouter with one provider per non-empty API key.

    Providers are registered in api_keys order. The provider named by
    model["provider"] uses model["name"] as its primary model and goes
    first; the rest keep their own default model.

    Args:
        api_keys: Provider id -> API key; empty keys disable the provider
        model: {"provider": ..., "name": ...} for the primary provider
        fallback_models: Provider id -> fallback model ids
        temperature: Sampling temperature for every provider
        max_tokens: Output token limit for every provider
        request_timeout_ms: Per-model timeout for every provider
        first_to_finish: Race models inside providers and providers in the router
        hooks: Observability subscribers shared by every resolver

    Raises:
        ConfigurationError: If api_keys is not a mapping
    """
    if not isinstance(api_keys, Mapping):
        raise ConfigurationError("api_keys must be a mapping of provider id to key")

    model = DEFAULT_PRIMARY if model is None else model
    primary = model.get("provider")
    fallback_models = fallback_models or {}

    bindings: list[ProviderBinding] = []
    for provider_id, key in api_keys.items():
        if not key:
            continue
        if provider_id not in PROVIDER_CLASSES:
            log.warning("factory.unknown_provider_skipped", provider_id=provider_id)
            continue

        options: dict[str, Any] = {
            "temperature": temperature,
            "max_tokens": max_tokens,
            "request_timeout_ms": request_timeout_ms,
            "first_to_finish": first_to_finish,
            "hooks": hooks,
        }
        if provider_id == primary and model.get("name"):
            options["model"] = model["name"]
        fallbacks = fallback_models.get(provider_id)
        if fallbacks:
            options["fallback_models"] = list(fallbacks)

        bindings.append(
            ProviderBinding(provider_id, build_provider(provider_id, api_key=key, **options))
        )

    return ProviderRouter(
        bindings, primary=primary, first_to_finish=first_to_finish, hooks=hooks
    )


def router_from_settings(settings: Settings | None = None, *, hooks: EventHooks | None = None) -> ProviderRouter:
    """Build the multi-provider router described by settings."""
    settings = settings or get_settings()
    return build_provider_router(
        settings.api_keys(),
        model={"provider": settings.primary_provider, "name": settings.primary_model},
        fallback_models=settings.fallback_models(),
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        request_timeout_ms=settings.request_timeout_ms,
        first_to_finish=settings.first_to_finish,
        hooks=hooks,
    )


def memory_from_settings(
    settings: Settings | None = None,
    *,
    delegate: Any = None,
    store: HistoryStore | None = None,
    hooks: EventHooks | None = None,
) -> ConversationMemory:
    """Build a ConversationMemory wired to the configured store.

    Args:
        settings: Configuration; the cached settings when None
        delegate: Completion client to wrap; the configured router when None
        store: History store; built from settings.history_url when None
        hooks: Observability subscribers for a router built here
    """
    settings = settings or get_settings()
    return ConversationMemory(
        delegate if delegate is not None else router_from_settings(settings, hooks=hooks),
        store if store is not None else get_history_store(settings),
        scope=settings.history_scope,
        history_limit=settings.history_limit,
    )
