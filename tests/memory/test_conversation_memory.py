"""Tests for ConversationMemory (the history bridge).

Tests cover:
- Missing chat id fails before any store read or network attempt
- History is replayed oldest-first ahead of the new user turn
- User and assistant turns are persisted after a successful answer
- Failed answers persist nothing
- Persistence failures are logged, never raised
- Structured user content is stored normalized; the delegate gets the raw
  input so each provider shapes its own payload
- clear() and last_used_model passthrough
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from conftest import ScriptedClient, completion_response
from structlog.testing import capture_logs

from llm_relay.content import AskRequest, ConversationTurn
from llm_relay.errors import ExhaustionError, MissingChatIdError
from llm_relay.factory import build_provider_router
from llm_relay.memory.bridge import ConversationMemory
from llm_relay.memory.store import InMemoryHistoryStore


@pytest.mark.asyncio
@pytest.mark.parametrize("chat_id", [None, "", 0])
async def test_missing_chat_id_makes_no_calls(chat_id):
    delegate = ScriptedClient("never")
    store = AsyncMock(spec=InMemoryHistoryStore)
    memory = ConversationMemory(delegate, store)

    with pytest.raises(MissingChatIdError):
        await memory.ask(chat_id, user="hello")

    assert delegate.call_count == 0
    store.read_recent.assert_not_called()


@pytest.mark.asyncio
async def test_first_turn_is_persisted(memory_store):
    delegate = ScriptedClient("Hi there!")
    memory = ConversationMemory(delegate, memory_store, scope="bot")

    answer = await memory.ask("chat-1", system="Be nice", user="Hello")
    await memory.flush()

    assert answer == "Hi there!"
    assert await memory_store.read_recent("bot", "chat-1") == [
        ConversationTurn(role="user", content="Hello"),
        ConversationTurn(role="assistant", content="Hi there!"),
    ]


@pytest.mark.asyncio
async def test_history_is_replayed_before_new_input(memory_store):
    delegate = ScriptedClient("first answer", "second answer")
    memory = ConversationMemory(delegate, memory_store, scope="bot")

    await memory.ask("chat-1", user="first question")
    await memory.flush()
    await memory.ask("chat-1", request=AskRequest(system="sys", user="second question"))
    await memory.flush()

    sent = delegate.requests[-1]
    assert sent.system == "sys"
    assert sent.user == "second question"
    assert list(sent.messages) == [
        ConversationTurn(role="user", content="first question"),
        ConversationTurn(role="assistant", content="first answer"),
    ]
    assert len(await memory_store.read_recent("bot", "chat-1")) == 4


@pytest.mark.asyncio
async def test_history_limit_bounds_replay(memory_store):
    delegate = ScriptedClient("ok")
    memory = ConversationMemory(delegate, memory_store, scope="bot", history_limit=2)

    for i in range(3):
        await memory.ask("chat-1", user=f"question {i}")
        await memory.flush()

    replayed = delegate.requests[-1].messages
    assert [t.content for t in replayed] == ["question 1", "ok"]


@pytest.mark.asyncio
async def test_caller_messages_follow_stored_history(memory_store):
    await memory_store.append_and_prune("bot", "chat-1", [ConversationTurn(role="user", content="stored")])
    delegate = ScriptedClient("ok")
    memory = ConversationMemory(delegate, memory_store, scope="bot")

    await memory.ask("chat-1", user="new", messages=[{"role": "assistant", "content": "caller"}])

    assert list(delegate.requests[0].messages) == [
        ConversationTurn(role="user", content="stored"),
        {"role": "assistant", "content": "caller"},
    ]


@pytest.mark.asyncio
async def test_failed_answer_persists_nothing(memory_store):
    delegate = ScriptedClient(ExhaustionError(None, label="providers"))
    memory = ConversationMemory(delegate, memory_store, scope="bot")

    with pytest.raises(ExhaustionError):
        await memory.ask("chat-1", user="hello")
    await memory.flush()

    assert await memory_store.read_recent("bot", "chat-1") == []


@pytest.mark.asyncio
async def test_persistence_failure_is_logged_not_raised():
    store = InMemoryHistoryStore()
    store.append_and_prune = AsyncMock(side_effect=OSError("database offline"))
    memory = ConversationMemory(ScriptedClient("answer"), store, scope="bot")

    with capture_logs() as logs:
        answer = await memory.ask("chat-1", user="hello")
        await memory.flush()

    assert answer == "answer"
    failures = [entry for entry in logs if entry["event"] == "history.persist_failed"]
    assert len(failures) == 1
    assert failures[0]["error"] == "database offline"


@pytest.mark.asyncio
async def test_attachments_are_stored_normalized_and_sent_raw(memory_store):
    delegate = ScriptedClient("a cat")
    memory = ConversationMemory(delegate, memory_store, scope="bot")

    await memory.ask(
        "chat-1",
        user="What is this?",
        attachments=[{"type": "image", "url": "https://example.com/cat.png"}],
    )
    await memory.flush()

    expected = [
        {"type": "text", "text": "What is this?"},
        {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
    ]
    sent = delegate.requests[0]
    assert sent.user == "What is this?"
    assert sent.attachments == ({"type": "image", "url": "https://example.com/cat.png"},)
    stored = await memory_store.read_recent("bot", "chat-1")
    assert stored[0] == ConversationTurn(role="user", content=expected)


@pytest.mark.asyncio
async def test_clear_forgets_conversation(memory_store):
    memory = ConversationMemory(ScriptedClient("ok"), memory_store, scope="bot")
    await memory.ask("chat-1", user="hello")
    await memory.flush()

    await memory.clear("chat-1")

    assert await memory_store.read_recent("bot", "chat-1") == []


@pytest.mark.asyncio
async def test_clear_requires_chat_id(memory_store):
    memory = ConversationMemory(ScriptedClient("ok"), memory_store)

    with pytest.raises(MissingChatIdError):
        await memory.clear(None)


@pytest.mark.asyncio
async def test_last_used_model_passthrough(memory_store):
    memory = ConversationMemory(ScriptedClient("ok", model_id="llama"), memory_store)

    assert memory.last_used_model is None
    await memory.ask("chat-1", user="hi")

    assert memory.last_used_model == "llama"


@pytest.mark.asyncio
async def test_sql_backed_conversation(sqlite_url):
    from llm_relay.memory.store import SQLHistoryStore

    store = SQLHistoryStore(sqlite_url)
    delegate = ScriptedClient("one", "two")
    memory = ConversationMemory(delegate, store, scope="bot")
    try:
        await memory.ask(7, user="first")
        await memory.flush()
        await memory.ask(7, user="second")
        await memory.flush()
        stored = await store.read_recent("bot", "7")
    finally:
        await memory.close()

    assert [t.content for t in delegate.requests[1].messages] == ["first", "one"]
    assert [t.content for t in stored] == ["first", "one", "second", "two"]


@pytest.mark.asyncio
async def test_router_delegate_lets_each_provider_shape_attachments(memory_store):
    router = build_provider_router({"groq": "k"})
    memory = ConversationMemory(router, memory_store, scope="bot")
    video = {"type": "video", "url": "https://example.com/clip.mp4"}
    completion = AsyncMock(return_value=completion_response("a clip"))

    with patch("llm_relay.providers.base.litellm.acompletion", completion):
        answer = await memory.ask("chat-1", user="look", attachments=[video])
    await memory.flush()

    assert answer == "a clip"
    sent = completion.await_args.kwargs["messages"]
    assert sent[-1] == {"role": "user", "content": "look"}
    assert not any("input_video" in str(message["content"]) for message in sent)

    stored = await memory_store.read_recent("bot", "chat-1")
    assert stored[0] == ConversationTurn(
        role="user",
        content=[
            {"type": "text", "text": "look"},
            {"type": "input_video", "video": {"url": "https://example.com/clip.mp4"}},
        ],
    )
