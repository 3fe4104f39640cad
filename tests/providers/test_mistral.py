"""Tests for Mistral transcription and moderation over the REST API.

httpx.AsyncClient is swapped for one backed by httpx.MockTransport, so
requests are inspected without touching the network.
"""

from __future__ import annotations

import json

import httpx
import pytest

from llm_relay.errors import ConfigurationError, ExhaustionError, ProviderError
from llm_relay.providers.mistral import MistralProvider

_RealAsyncClient = httpx.AsyncClient


@pytest.fixture
def mistral_api(monkeypatch):
    """Route Mistral HTTP calls to a handler; returns the list of captured requests."""
    captured: list[httpx.Request] = []
    state = {"handler": None}

    def transport_handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return state["handler"](request)

    def client_factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(transport_handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)

    def install(handler):
        state["handler"] = handler
        return captured

    return install


# ------------------------------------------------------------------ #
# Transcription
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_transcribe_uploads_file(mistral_api):
    requests = mistral_api(lambda request: httpx.Response(200, json={"text": " bonjour "}))
    provider = MistralProvider(api_key="secret")

    text = await provider.transcribe(b"RIFFdata", language="fr")

    assert text == "bonjour"
    assert provider.last_used_model == "voxtral-mini-latest"
    request = requests[0]
    assert request.url == "https://api.mistral.ai/v1/audio/transcriptions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = request.content
    assert b'name="model"' in body and b"voxtral-mini-latest" in body
    assert b'name="language"' in body
    assert b"RIFFdata" in body


@pytest.mark.asyncio
async def test_transcribe_remote_url_is_passed_by_reference(mistral_api):
    requests = mistral_api(lambda request: httpx.Response(200, json={"text": "hello"}))
    provider = MistralProvider(api_key="secret")

    assert await provider.transcribe("https://example.com/voice.mp3") == "hello"

    body = requests[0].content.decode()
    assert "file_url=https%3A%2F%2Fexample.com%2Fvoice.mp3" in body


@pytest.mark.asyncio
async def test_transcribe_http_error_is_exhaustion(mistral_api):
    mistral_api(lambda request: httpx.Response(500, json={"message": "boom"}))
    provider = MistralProvider(api_key="secret")

    with pytest.raises(ExhaustionError, match="voxtral-mini-latest"):
        await provider.transcribe(b"RIFFdata")


@pytest.mark.asyncio
async def test_transcribe_requires_file(mistral_api):
    requests = mistral_api(lambda request: httpx.Response(200, json={"text": "x"}))

    with pytest.raises(ConfigurationError):
        await MistralProvider(api_key="secret").transcribe(None)

    assert requests == []


# ------------------------------------------------------------------ #
# Moderation
# ------------------------------------------------------------------ #

_MODERATION_RESULTS = {
    "results": [
        {"categories": {"hate": False}, "category_scores": {"hate": 0.01}},
        {"categories": {"hate": True}, "category_scores": {"hate": 0.97}},
    ]
}


@pytest.mark.asyncio
async def test_classify_single_input_returns_one_result(mistral_api):
    requests = mistral_api(lambda request: httpx.Response(200, json=_MODERATION_RESULTS))
    provider = MistralProvider(api_key="secret")

    result = await provider.classify("hello")

    assert result == {"categories": {"hate": False}, "scores": {"hate": 0.01}}
    assert provider.last_used_model == "mistral-moderation-latest"
    payload = json.loads(requests[0].content)
    assert payload == {"model": "mistral-moderation-latest", "input": ["hello"]}
    assert requests[0].url == "https://api.mistral.ai/v1/moderations"


@pytest.mark.asyncio
async def test_classify_list_returns_list(mistral_api):
    mistral_api(lambda request: httpx.Response(200, json=_MODERATION_RESULTS))

    result = await MistralProvider(api_key="secret").classify(["hello", "bad words"])

    assert result == [
        {"categories": {"hate": False}, "scores": {"hate": 0.01}},
        {"categories": {"hate": True}, "scores": {"hate": 0.97}},
    ]


@pytest.mark.asyncio
async def test_classify_timeout_names_model(mistral_api):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    mistral_api(timeout)

    with pytest.raises(ProviderError, match="timed out after 50ms"):
        await MistralProvider(api_key="secret").classify("hello", request_timeout_ms=50)


@pytest.mark.asyncio
async def test_classify_http_error(mistral_api):
    mistral_api(lambda request: httpx.Response(401, json={"message": "unauthorized"}))

    with pytest.raises(ProviderError, match="Moderation with mistral-moderation-latest failed"):
        await MistralProvider(api_key="secret").classify("hello")


@pytest.mark.asyncio
async def test_classify_requires_inputs(mistral_api):
    requests = mistral_api(lambda request: httpx.Response(200, json=_MODERATION_RESULTS))

    with pytest.raises(ConfigurationError):
        await MistralProvider(api_key="secret").classify([])

    assert requests == []
