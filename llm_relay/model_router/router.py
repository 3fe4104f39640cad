"""Provider router - fallback and racing across whole providers.

The router applies the same Resolver one level up: each candidate is a
provider, and each attempt is that provider's full ``ask`` including its
own model-level fallback. A provider that exhausts all of its models
counts as a single failure here.

Ordering:
- The designated primary provider goes first when it is bound
- Remaining providers follow in registration order

Capabilities:
- ask: every bound provider
- transcribe: providers exposing ``transcribe``; sequential or raced
- classify: providers exposing ``classify``; ALWAYS the first capable
  provider only. Moderation results are not comparable across providers,
  so classification never falls back and never races.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import structlog

from llm_relay.content import AskRequest
from llm_relay.errors import ConfigurationError
from llm_relay.events import EventHooks
from llm_relay.model_router.resolver import Resolver

log = structlog.get_logger(__name__)


@runtime_checkable
class CompletionClient(Protocol):
    last_used_model: str | None

    async def ask(self, request: AskRequest | None = None, **fields: Any) -> str: ...


@runtime_checkable
class Transcriber(Protocol):
    async def transcribe(self, file: Any, **options: Any) -> str: ...


@runtime_checkable
class Classifier(Protocol):
    async def classify(self, inputs: Any, **options: Any) -> Any: ...


@dataclass(frozen=True)
class ProviderBinding:
    provider_id: str
    client: CompletionClient


@dataclass(frozen=True)
class LastUsed:
    provider_id: str
    model_id: str | None


class ProviderRouter:
    """Cross-provider fallback/racing over a set of provider bindings."""

    def __init__(
        self,
        bindings: Iterable[ProviderBinding],
        *,
        primary: str | None = None,
        first_to_finish: bool = False,
        hooks: EventHooks | None = None,
    ) -> None:
        """Initialize router.

        Args:
            bindings: Providers in registration order
            primary: Provider id tried (or raced) first when bound
            first_to_finish: Race providers instead of trying them in order
            hooks: Observability subscribers

        Raises:
            ConfigurationError: If two bindings share a provider id
        """
        self._bindings: dict[str, ProviderBinding] = {}
        for binding in bindings:
            if binding.provider_id in self._bindings:
                raise ConfigurationError(f"Provider {binding.provider_id!r} is bound more than once")
            self._bindings[binding.provider_id] = binding

        self.primary = primary
        self.first_to_finish = first_to_finish
        # Providers carry their own per-model timeouts; none at this layer.
        self._resolver = Resolver(
            timeout_ms=0, first_to_finish=first_to_finish, label="providers", hooks=hooks
        )
        self._transcription_resolver = Resolver(
            timeout_ms=0,
            first_to_finish=first_to_finish,
            label="transcription providers",
            hooks=hooks,
        )
        self.last_used: LastUsed | None = None

        log.info(
            "provider_router.initialized",
            providers=list(self._bindings),
            primary=primary,
            first_to_finish=first_to_finish,
        )

    @property
    def last_used_model(self) -> str | None:
        return self.last_used.model_id if self.last_used else None

    def client(self, provider_id: str) -> CompletionClient:
        return self._bindings[provider_id].client

    def ordered_providers(self) -> list[str]:
        """Return bound provider ids, primary first.

        Raises:
            ConfigurationError: If no providers are bound
        """
        available = list(self._bindings)
        if not available:
            raise ConfigurationError("Unconfigured: no AI providers are bound")
        if self.primary and self.primary in self._bindings:
            return [self.primary, *(p for p in available if p != self.primary)]
        return available

    async def ask(self, request: AskRequest | None = None, **fields: Any) -> str:
        """Resolve request across providers.

        Accepts an AskRequest or its fields as keyword arguments.

        Raises:
            ConfigurationError: If no providers are bound
            ExhaustionError: If every provider failed
        """
        if request is None:
            request = AskRequest(**fields)
        providers = self.ordered_providers()
        resolved = await self._resolver.resolve_text(
            providers, lambda provider_id: self.client(provider_id).ask(request)
        )
        self._record_winner(resolved.model_id)
        return resolved.text

    async def transcribe(self, file: Any, **options: Any) -> str:
        """Transcribe audio using providers with transcription support.

        Raises:
            ConfigurationError: If no bound provider can transcribe
            ExhaustionError: If every capable provider failed
        """
        providers = [p for p in self.ordered_providers() if isinstance(self.client(p), Transcriber)]
        if not providers:
            raise ConfigurationError("No providers with transcription support are configured")

        resolved = await self._transcription_resolver.resolve_text(
            providers, lambda provider_id: self.client(provider_id).transcribe(file, **options)
        )
        self._record_winner(resolved.model_id)
        return resolved.text

    async def classify(self, inputs: Any, **options: Any) -> Any:
        """Moderate inputs with the first provider that supports it.

        Raises:
            ConfigurationError: If inputs is missing/empty or no provider can classify
        """
        if inputs is None or (isinstance(inputs, list | tuple) and len(inputs) == 0):
            raise ConfigurationError("inputs is required for classify()")

        providers = [p for p in self.ordered_providers() if isinstance(self.client(p), Classifier)]
        if not providers:
            raise ConfigurationError("No providers with classify() support are configured")

        provider_id = providers[0]
        result = await self.client(provider_id).classify(inputs, **options)
        self._record_winner(provider_id)
        return result

    def _record_winner(self, provider_id: str) -> None:
        client = self.client(provider_id)
        self.last_used = LastUsed(
            provider_id=provider_id,
            model_id=getattr(client, "last_used_model", None),
        )
        log.debug(
            "provider_router.resolved",
            provider_id=provider_id,
            model_id=self.last_used.model_id,
        )
