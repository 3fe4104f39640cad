"""Conversation memory bridge.

Gives stateless completion backends multi-turn memory by composition:
ConversationMemory wraps anything with ``async ask(request)`` (a single
provider or a ProviderRouter) and a HistoryStore.

Flow for one ask:
1. Reject a missing chat id before touching the store or the network
2. Read the most recent turns for (scope, chat_id), oldest first
3. Normalize the new user input into its stored form
4. Delegate the raw input with history as prior messages; each provider
   shapes its own payload (e.g. dropping video it cannot take)
5. Schedule persistence of the user and assistant turns, return at once

Persistence runs on a BackgroundTasks runner. A failed write is logged as
``history.persist_failed`` and never reaches the caller.
"""

from __future__ import annotations

from typing import Any

import structlog

from llm_relay.content import AskRequest, ConversationTurn, build_user_content
from llm_relay.errors import ConfigurationError, MissingChatIdError
from llm_relay.infra.background import BackgroundTask, BackgroundTasks
from llm_relay.memory.store import HistoryStore
from llm_relay.model_router.router import CompletionClient

log = structlog.get_logger(__name__)


def _log_persist_failure(task: BackgroundTask, exc: BaseException) -> None:
    log.error(
        "history.persist_failed",
        task_id=task.id,
        error=str(exc),
        error_type=type(exc).__name__,
    )


class ConversationMemory:
    """History-backed ask() over any completion client."""

    def __init__(
        self,
        delegate: CompletionClient,
        store: HistoryStore,
        *,
        scope: str = "default",
        history_limit: int = 10,
        background: BackgroundTasks | None = None,
    ) -> None:
        """Initialize memory bridge.

        Args:
            delegate: Provider or router that performs the completion
            store: History store shared across conversations
            scope: Partition name, typically the bot or app name
            history_limit: Most recent turns replayed per request
            background: Runner for persistence writes; one is created if None

        Raises:
            ConfigurationError: If store is missing or scope is empty
        """
        if store is None:
            raise ConfigurationError("store is required for ConversationMemory")
        if not scope:
            raise ConfigurationError("scope must be a non-empty string")
        self.delegate = delegate
        self.store = store
        self.scope = scope
        self.history_limit = max(int(history_limit), 0)
        self._background = background or BackgroundTasks(on_failure=_log_persist_failure)

    @property
    def last_used_model(self) -> str | None:
        return getattr(self.delegate, "last_used_model", None)

    async def ask(self, chat_id: str | int | None, request: AskRequest | None = None, **fields: Any) -> str:
        """Ask with conversation history for chat_id.

        Accepts an AskRequest or its fields as keyword arguments. Prior
        messages passed in the request follow the stored history.

        Raises:
            MissingChatIdError: If chat_id is missing (no store or network call is made)
            ConfigurationError: If the delegate has nothing configured
            ExhaustionError: If every candidate failed (nothing is persisted)
        """
        if not chat_id:
            raise MissingChatIdError("chat_id is required for history-bound ask()")
        if request is None:
            request = AskRequest(**fields)

        with structlog.contextvars.bound_contextvars(chat_id=str(chat_id), scope=self.scope):
            history = await self.store.read_recent(self.scope, chat_id, self.history_limit)
            content = build_user_content(
                request.user,
                list(request.attachments),
                allow_video=getattr(self.delegate, "accepts_video", True),
                provider=getattr(self.delegate, "provider_id", "provider"),
            )
            response = await self.delegate.ask(request.with_history(history))

            turns: list[ConversationTurn] = []
            if content is not None:
                turns.append(ConversationTurn(role="user", content=content))
            turns.append(ConversationTurn(role="assistant", content=response))
            self._background.submit(
                self.store.append_and_prune(self.scope, chat_id, turns),
                name="history.persist",
            )
            log.debug("history.persist_scheduled", replayed=len(history), turns=len(turns))
        return response

    async def clear(self, chat_id: str | int | None) -> None:
        """Delete every stored turn for chat_id.

        Raises:
            MissingChatIdError: If chat_id is missing
        """
        if not chat_id:
            raise MissingChatIdError("chat_id is required for clear()")
        await self.store.clear(self.scope, chat_id)

    async def flush(self) -> None:
        """Wait for scheduled persistence and pruning to finish."""
        await self._background.drain()
        await self.store.flush()

    async def close(self) -> None:
        await self._background.shutdown()
        await self.store.close()
