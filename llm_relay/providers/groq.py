"""Groq provider - fast inference chat plus Whisper transcription."""

from __future__ import annotations

from typing import Any

import litellm

from llm_relay.errors import ProviderError
from llm_relay.providers.base import ChatProvider, load_audio

DEFAULT_TRANSCRIPTION_MODEL = "whisper-large-v3-turbo"


class GroqProvider(ChatProvider):
    """Chat completions and audio transcription through Groq.

    Groq accepts images but not video; prior turns must be plain strings,
    so structured history is JSON-encoded.
    """

    provider_id = "groq"
    default_model = "llama-3.1-70b-versatile"
    litellm_prefix = "groq"
    accepts_video = False
    stringify_history = True

    async def transcribe(
        self,
        file: Any,
        *,
        model: str | None = DEFAULT_TRANSCRIPTION_MODEL,
        temperature: float = 0,
        **unused: Any,
    ) -> str:
        """Transcribe audio to text.

        Args:
            file: Path, bytes, or binary stream
            model: Transcription model; None falls back to the chat roster
            temperature: Sampling temperature
            **unused: Options meant for other providers, ignored

        Raises:
            ConfigurationError: If file is missing
            ExhaustionError: If every transcription model failed
        """
        audio = await load_audio(file)
        models = [model] if model else (self.models or [DEFAULT_TRANSCRIPTION_MODEL])

        async def run_once(model_id: str) -> str:
            try:
                response = await litellm.atranscription(
                    model=f"{self.litellm_prefix}/{model_id}",
                    file=(audio.filename, audio.content),
                    api_key=self._api_key,
                    temperature=temperature,
                    response_format="verbose_json",
                )
            except Exception as exc:
                raise ProviderError(f"Groq transcription with {model_id} failed: {exc}") from exc
            return getattr(response, "text", None) or ""

        resolved = await self._transcription_resolver.resolve_text(models, run_once)
        self.last_used_model = resolved.model_id
        return resolved.text
