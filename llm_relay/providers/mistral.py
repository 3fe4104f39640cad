"""Mistral provider - chat, Voxtral transcription, and moderation.

Chat goes through LiteLLM like every other provider. Transcription and
moderation call the Mistral REST API directly with httpx.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from llm_relay.errors import ConfigurationError, ProviderError
from llm_relay.providers.base import ChatProvider, load_audio

log = structlog.get_logger(__name__)

MISTRAL_API_URL = "https://api.mistral.ai/v1"
DEFAULT_TRANSCRIPTION_MODEL = "voxtral-mini-latest"
DEFAULT_MODERATION_MODEL = "mistral-moderation-latest"


class MistralProvider(ChatProvider):
    """Chat completions, transcription and moderation through Mistral.

    Mistral chat does not take video attachments, and prior turns are
    JSON-encoded when they carry structured content.
    """

    provider_id = "mistral"
    default_model = "mistral-small-latest"
    litellm_prefix = "mistral"
    accepts_video = False
    stringify_history = True

    def __init__(self, *, api_key: str, api_url: str = MISTRAL_API_URL, **options: Any) -> None:
        self.api_url = api_url.rstrip("/")
        super().__init__(api_key=api_key, **options)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"}

    async def transcribe(
        self,
        file: Any,
        *,
        model: str | None = DEFAULT_TRANSCRIPTION_MODEL,
        language: str | None = None,
        timestamp_granularities: list[str] | None = None,
        **unused: Any,
    ) -> str:
        """Transcribe audio to text.

        Args:
            file: Path, http(s) URL, bytes, or binary stream
            model: Transcription model; None falls back to the chat roster
            language: Optional language hint
            timestamp_granularities: Optional granularities ("segment", ...)
            **unused: Options meant for other providers, ignored

        Raises:
            ConfigurationError: If file is missing
            ExhaustionError: If every transcription model failed
        """
        audio = await load_audio(file, allow_url=True)
        models = [model] if model else (self.models or [DEFAULT_TRANSCRIPTION_MODEL])

        form: dict[str, Any] = {}
        if language:
            form["language"] = language
        if timestamp_granularities:
            form["timestamp_granularities"] = list(timestamp_granularities)
        if audio.url:
            form["file_url"] = audio.url

        async def run_once(model_id: str) -> str:
            files = None if audio.url else {"file": (audio.filename, audio.content)}
            try:
                async with httpx.AsyncClient(timeout=None) as client:
                    response = await client.post(
                        f"{self.api_url}/audio/transcriptions",
                        headers=self._headers(),
                        data={**form, "model": model_id},
                        files=files,
                    )
                    response.raise_for_status()
            except httpx.HTTPError as exc:
                raise ProviderError(f"Mistral transcription with {model_id} failed: {exc}") from exc
            return str(response.json().get("text") or "")

        try:
            resolved = await self._transcription_resolver.resolve_text(models, run_once)
        except Exception as exc:
            log.error("mistral.transcription_failed", error=str(exc))
            raise
        self.last_used_model = resolved.model_id
        return resolved.text

    async def classify(
        self,
        inputs: str | list[str],
        *,
        model: str = DEFAULT_MODERATION_MODEL,
        request_timeout_ms: int | None = None,
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """Moderate text.

        A single input returns one {"categories", "scores"} mapping; a list
        returns one mapping per input.

        Raises:
            ConfigurationError: If inputs is missing or empty
            ProviderError: On HTTP failure or timeout
        """
        if inputs is None or (isinstance(inputs, list) and not inputs):
            raise ConfigurationError("inputs is required for classify()")

        is_list = isinstance(inputs, list)
        normalized = inputs if is_list else [inputs]
        timeout_ms = self.request_timeout_ms if request_timeout_ms is None else int(request_timeout_ms)
        timeout = timeout_ms / 1000 if timeout_ms > 0 else None

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(
                    f"{self.api_url}/moderations",
                    headers=self._headers(),
                    json={"model": model, "input": normalized},
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Moderation model {model} timed out after {timeout_ms}ms") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Moderation with {model} failed: {exc}") from exc

        self.last_used_model = model
        mapped = [
            {
                "categories": result.get("categories") or {},
                "scores": result.get("category_scores") or {},
            }
            for result in response.json().get("results") or []
        ]
        if is_list:
            return mapped
        return mapped[0] if mapped else {"categories": {}, "scores": {}}
