"""Provider clients: one ChatProvider subclass per backend."""

from __future__ import annotations

from llm_relay.providers.base import AudioInput, ChatProvider, ModelClient, load_audio
from llm_relay.providers.groq import GroqProvider
from llm_relay.providers.mistral import MistralProvider
from llm_relay.providers.openrouter import OpenRouterProvider

PROVIDER_CLASSES: dict[str, type[ChatProvider]] = {
    OpenRouterProvider.provider_id: OpenRouterProvider,
    MistralProvider.provider_id: MistralProvider,
    GroqProvider.provider_id: GroqProvider,
}

__all__ = [
    "PROVIDER_CLASSES",
    "AudioInput",
    "ChatProvider",
    "GroqProvider",
    "MistralProvider",
    "ModelClient",
    "OpenRouterProvider",
    "load_audio",
]
