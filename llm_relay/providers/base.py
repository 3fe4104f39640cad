"""Shared machinery for chat-completion providers.

Every provider is the same composition:
- a model roster (primary + fallbacks)
- one Resolver that runs the fallback/racing strategy over that roster
- a memoized ModelClient per model id that performs the actual LiteLLM call

Subclasses only describe what differs between backends: the LiteLLM
model prefix, extra request parameters, which attachment kinds are
accepted, and how prior turns are serialized.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import litellm
import structlog

from llm_relay.content import AskRequest, ConversationTurn, build_user_content
from llm_relay.errors import (
    ConfigurationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderUnavailableError,
    TranscriptionInputError,
)
from llm_relay.events import EventHooks
from llm_relay.model_router.resolver import Resolver
from llm_relay.model_router.roster import build_roster

log = structlog.get_logger(__name__)


@dataclass
class ModelClient:
    """Call settings for one model, reused across requests.

    Attributes:
        model_id: Model id as configured by the caller
        litellm_model: Provider-prefixed id understood by LiteLLM
        params: Extra keyword arguments for litellm.acompletion()
    """

    model_id: str
    litellm_model: str
    params: dict[str, Any] = field(default_factory=dict)

    async def complete(self, messages: list[dict[str, Any]]) -> Any:
        """Send one chat completion request.

        Raises:
            ProviderRateLimitError: Upstream rate limit
            ProviderUnavailableError: Upstream service unavailable
            ProviderError: Any other failure
        """
        log.debug(
            "provider.completion_request",
            model=self.litellm_model,
            message_count=len(messages),
        )
        try:
            response = await litellm.acompletion(
                model=self.litellm_model,
                messages=messages,
                **self.params,
            )
        except litellm.exceptions.RateLimitError as exc:
            raise ProviderRateLimitError(f"Rate limit from {self.model_id}: {exc}") from exc
        except litellm.exceptions.ServiceUnavailableError as exc:
            raise ProviderUnavailableError(f"{self.model_id} unavailable: {exc}") from exc
        except Exception as exc:
            raise ProviderError(f"{self.model_id} completion failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        if usage:
            log.info(
                "provider.completion_done",
                model=self.litellm_model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            )
        return response


@dataclass(frozen=True)
class AudioInput:
    """Transcription input after loading: inline bytes or a remote URL."""

    filename: str
    content: bytes | None = None
    url: str | None = None


async def load_audio(file: Any, *, allow_url: bool = False, default_name: str = "audio.mp3") -> AudioInput:
    """Read a transcription input (path, URL, bytes or binary stream).

    Raises:
        ConfigurationError: If file is missing
        TranscriptionInputError: If file has an unsupported type
    """
    if file is None or file == "" or file == b"":
        raise ConfigurationError("file is required for transcribe()")

    if isinstance(file, str | Path):
        text = str(file)
        if allow_url and text.startswith(("http://", "https://")):
            return AudioInput(filename=text.rsplit("/", 1)[-1] or default_name, url=text)
        path = Path(text)
        content = await asyncio.to_thread(path.read_bytes)
        return AudioInput(filename=path.name, content=content)

    if isinstance(file, bytes | bytearray):
        return AudioInput(filename=default_name, content=bytes(file))

    read = getattr(file, "read", None)
    if callable(read):
        data = read()
        if asyncio.iscoroutine(data):
            data = await data
        if isinstance(data, bytes | bytearray):
            name = Path(str(getattr(file, "name", default_name))).name
            return AudioInput(filename=name, content=bytes(data))

    raise TranscriptionInputError("file must be a path, URL, bytes, or a binary stream")


class ChatProvider:
    """Base class for one chat backend with model-level fallback/racing."""

    provider_id: ClassVar[str] = "provider"
    default_model: ClassVar[str] = ""
    litellm_prefix: ClassVar[str] = ""
    accepts_video: ClassVar[bool] = True
    # Some backends only accept string content for prior turns.
    stringify_history: ClassVar[bool] = False

    def __init__(
        self,
        *,
        api_key: str,
        model: str | None = None,
        fallback_models: list[str] | tuple[str, ...] = (),
        temperature: float = 0.7,
        max_tokens: int = 1000,
        request_timeout_ms: int = 20_000,
        first_to_finish: bool = False,
        hooks: EventHooks | None = None,
    ) -> None:
        """Initialize provider.

        Args:
            api_key: Provider API key (required)
            model: Primary model id; the provider default when None
            fallback_models: Models tried (or raced) after the primary
            temperature: Sampling temperature
            max_tokens: Maximum output tokens
            request_timeout_ms: Per-model time budget; 0 disables it
            first_to_finish: Race all models and keep the first answer
            hooks: Observability subscribers

        Raises:
            ConfigurationError: If api_key is missing
        """
        if not api_key:
            raise ConfigurationError(f"api_key is required for {type(self).__name__}")
        self._api_key = api_key
        self.models = build_roster(self.default_model if model is None else model, fallback_models)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout_ms = max(int(request_timeout_ms or 0), 0)
        self._hooks = hooks or EventHooks()
        self._resolver = Resolver(
            timeout_ms=self.request_timeout_ms,
            first_to_finish=first_to_finish,
            label=self.provider_id,
            hooks=self._hooks,
        )
        self._transcription_resolver = Resolver(
            timeout_ms=self.request_timeout_ms,
            first_to_finish=first_to_finish,
            label=f"{self.provider_id} transcription models",
            hooks=self._hooks,
        )
        self._clients: dict[str, ModelClient] = {}
        self.last_used_model: str | None = None

    @property
    def first_to_finish(self) -> bool:
        return self._resolver.first_to_finish

    # ------------------------------------------------------------------ #
    # Clients
    # ------------------------------------------------------------------ #

    def client_params(self) -> dict[str, Any]:
        """Keyword arguments sent with every completion for this provider."""
        return {
            "api_key": self._api_key,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    def client_for(self, model_id: str) -> ModelClient:
        """Return the cached client for model_id, creating it on first use."""
        client = self._clients.get(model_id)
        if client is None:
            client = ModelClient(
                model_id=model_id,
                litellm_model=f"{self.litellm_prefix}/{model_id}" if self.litellm_prefix else model_id,
                params=self.client_params(),
            )
            self._clients[model_id] = client
        return client

    # ------------------------------------------------------------------ #
    # Payload shaping
    # ------------------------------------------------------------------ #

    def format_turn(self, turn: ConversationTurn) -> dict[str, Any]:
        if self.stringify_history:
            return {"role": turn.role, "content": turn.content_as_text()}
        return turn.to_message()

    def build_user_message(self, request: AskRequest) -> dict[str, Any] | None:
        content = build_user_content(
            request.user,
            list(request.attachments),
            allow_video=self.accepts_video,
            provider=self.provider_id,
        )
        if content is None:
            return None
        return {"role": "user", "content": content}

    def build_messages(self, request: AskRequest) -> list[dict[str, Any]]:
        """Shape request into the ordered message list: system, history, user."""
        messages: list[dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.extend(self.format_turn(turn) for turn in request.prior_turns())
        user_message = self.build_user_message(request)
        if user_message is not None:
            messages.append(user_message)
        return messages

    @staticmethod
    def extract_text(response: Any) -> str:
        """Extract assistant text from an OpenAI-shaped completion response."""
        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, KeyError, TypeError):
            return ""
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            chunks = []
            for chunk in content:
                if isinstance(chunk, str):
                    chunks.append(chunk)
                elif isinstance(chunk, dict):
                    chunks.append(str(chunk.get("text") or chunk.get("content") or ""))
            return "\n".join(chunks).strip()
        return ""

    # ------------------------------------------------------------------ #
    # Calls
    # ------------------------------------------------------------------ #

    async def ask(self, request: AskRequest | None = None, **fields: Any) -> str:
        """Send a prompt, falling back (or racing) across configured models.

        Accepts either an AskRequest or its fields as keyword arguments
        (system=, user=, messages=, attachments=).

        Raises:
            ConfigurationError: If no models are configured
            ExhaustionError: If every model failed
        """
        if request is None:
            request = AskRequest(**fields)
        if not self.models:
            raise ConfigurationError(f"No {self.provider_id} models configured")

        messages = self.build_messages(request)
        resolved = await self._resolver.resolve_text(
            self.models, lambda model_id: self._complete(model_id, messages)
        )
        self.last_used_model = resolved.model_id
        return resolved.text

    async def _complete(self, model_id: str, messages: list[dict[str, Any]]) -> str:
        response = await self.client_for(model_id).complete(messages)
        return self.extract_text(response)
