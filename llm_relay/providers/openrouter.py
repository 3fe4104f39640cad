"""OpenRouter provider - generic OpenAI-compatible chat API."""

from __future__ import annotations

from typing import Any

from llm_relay.providers.base import ChatProvider

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# Attribution headers so OpenRouter knows which client is calling.
DEFAULT_HEADERS = {
    "HTTP-Referer": "https://pypi.org/project/llm-relay/",
    "X-Title": "llm-relay",
}


class OpenRouterProvider(ChatProvider):
    """Chat completions through OpenRouter.

    Structured history content and image/video attachments are passed
    through as typed content parts.
    """

    provider_id = "openrouter"
    default_model = "meta-llama/llama-3.3-70b-instruct:free"
    litellm_prefix = "openrouter"

    def __init__(
        self,
        *,
        api_key: str,
        default_headers: dict[str, str] | None = None,
        base_url: str = OPENROUTER_BASE_URL,
        **options: Any,
    ) -> None:
        self.default_headers = {**DEFAULT_HEADERS, **(default_headers or {})}
        self.base_url = base_url.rstrip("/")
        super().__init__(api_key=api_key, **options)

    def client_params(self) -> dict[str, Any]:
        return {
            **super().client_params(),
            "api_base": self.base_url,
            "extra_headers": dict(self.default_headers),
        }
