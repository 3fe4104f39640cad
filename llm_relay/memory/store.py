"""Conversation history stores.

Defines the HistoryStore ABC and two concrete implementations:
- SQLHistoryStore: async SQLAlchemy backend (SQLite via aiosqlite, Postgres, ...)
- InMemoryHistoryStore: dict-based backend for tests/dev

Each (scope, chat_id) partition is an append-only, insertion-ordered log of
turns. Reads return the newest N turns re-ordered oldest-first for replay.
After every append the partition is pruned to the newest ``max_entries``
turns in the background; a failed prune is only logged, and the next
append prunes again.

The factory function get_history_store() selects the backend from
settings.
"""

from __future__ import annotations

import asyncio
import json
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    insert,
    select,
)
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from llm_relay.content import ConversationTurn
from llm_relay.errors import ConfigurationError, PersistenceError
from llm_relay.infra.background import BackgroundTask, BackgroundTasks

if TYPE_CHECKING:
    from llm_relay.config import Settings

log = structlog.get_logger(__name__)

DEFAULT_MAX_ENTRIES = 80
_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _log_prune_failure(task: BackgroundTask, exc: BaseException) -> None:
    log.error("history.prune_failed", task_id=task.id, error=str(exc), error_type=type(exc).__name__)


def persistable_turns(turns: Iterable[ConversationTurn | dict[str, Any]] | None) -> list[ConversationTurn]:
    """Keep only turns with both a role and non-empty content.

    Incomplete turns are dropped whole, never partially stored.
    """
    kept: list[ConversationTurn] = []
    for turn in turns or []:
        if isinstance(turn, ConversationTurn):
            role, content = turn.role, turn.content
        elif isinstance(turn, dict):
            role, content = turn.get("role"), turn.get("content")
        else:
            continue
        if not role:
            continue
        candidate = ConversationTurn(role=role, content=content)
        if candidate.is_persistable:
            kept.append(candidate)
    return kept


class HistoryStore(ABC):
    """Abstract per-conversation message log with retention pruning."""

    def __init__(self, *, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 1:
            raise ConfigurationError("max_entries must be positive")
        self.max_entries = max_entries
        self._pruning = BackgroundTasks(on_failure=_log_prune_failure)

    @abstractmethod
    async def read_recent(self, scope: str, chat_id: str | int, limit: int = 10) -> list[ConversationTurn]:
        """Return up to limit most recent turns, oldest first."""

    async def append_and_prune(
        self,
        scope: str,
        chat_id: str | int,
        turns: Iterable[ConversationTurn | dict[str, Any]],
    ) -> None:
        """Insert turns, then prune the partition to max_entries in the background.

        Raises:
            PersistenceError: If the insert fails
        """
        if not scope or not chat_id:
            return
        kept = persistable_turns(turns)
        if not kept:
            return
        key = str(chat_id)
        try:
            await self._insert(scope, key, kept)
        except Exception as exc:
            raise PersistenceError(f"Failed to append history for {scope}/{key}: {exc}") from exc
        self._pruning.submit(self._prune_partition(scope, key), name="history.prune")

    async def _prune_partition(self, scope: str, chat_id: str) -> None:
        try:
            await self._prune(scope, chat_id)
        except Exception as exc:
            raise PersistenceError(f"Failed to prune history for {scope}/{chat_id}: {exc}") from exc

    @abstractmethod
    async def clear(self, scope: str, chat_id: str | int) -> None:
        """Delete every turn for (scope, chat_id)."""

    async def flush(self) -> None:
        """Wait for scheduled pruning to finish."""
        await self._pruning.drain()

    async def close(self) -> None:
        """Release resources. Safe to call more than once."""
        await self.flush()

    @abstractmethod
    async def _insert(self, scope: str, chat_id: str, turns: list[ConversationTurn]) -> None: ...

    @abstractmethod
    async def _prune(self, scope: str, chat_id: str) -> None: ...


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------


def _history_table(name: str, metadata: MetaData) -> Table:
    table = Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("scope", String(255), nullable=False),
        Column("chat_id", String(255), nullable=False),
        Column("role", String(32), nullable=False),
        # JSON-encoded: plain text or a list of typed content parts
        Column("content", Text, nullable=False),
        Column("created_at", String(40), nullable=False),
    )
    Index(f"ix_{name}_scope_chat", table.c.scope, table.c.chat_id, table.c.id)
    return table


class SQLHistoryStore(HistoryStore):
    """History store on any async SQLAlchemy engine.

    The engine is created lazily on first use. Concurrent first callers
    share one in-flight connection attempt; a failed attempt is forgotten
    so the next call tries again.
    """

    def __init__(
        self,
        url: str,
        *,
        table: str = "ai_memory",
        max_entries: int = DEFAULT_MAX_ENTRIES,
        echo: bool = False,
    ) -> None:
        if not url:
            raise ConfigurationError("url is required for SQLHistoryStore")
        if not _TABLE_NAME_RE.match(table):
            raise ConfigurationError(f"Invalid history table name: {table!r}")
        super().__init__(max_entries=max_entries)
        self._url = url
        self._echo = echo
        self._metadata = MetaData()
        self._table = _history_table(table, self._metadata)
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker | None = None
        self._connecting: asyncio.Future[async_sessionmaker] | None = None
        self.connect_count = 0

    # ---------------------------------------------------------------- #
    # Lifecycle
    # ---------------------------------------------------------------- #

    async def connect(self) -> async_sessionmaker:
        """Return the session factory, connecting on first use."""
        if self._session_factory is not None:
            return self._session_factory
        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._open())
            self._connecting.add_done_callback(self._forget_failed_connect)
        # shield: one caller being cancelled must not cancel the shared attempt
        return await asyncio.shield(self._connecting)

    def _forget_failed_connect(self, future: asyncio.Future[async_sessionmaker]) -> None:
        if future.cancelled() or future.exception() is not None:
            self._connecting = None

    async def _open(self) -> async_sessionmaker:
        self.connect_count += 1
        engine = create_async_engine(self._url, echo=self._echo)
        try:
            await self._create_schema(engine)
        except Exception:
            await engine.dispose()
            raise
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        log.info("history.sql.connected", table=self._table.name)
        return self._session_factory

    @retry(
        retry=retry_if_exception_type((OperationalError, OSError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True,
    )
    async def _create_schema(self, engine: AsyncEngine) -> None:
        async with engine.begin() as conn:
            await conn.run_sync(self._metadata.create_all)

    async def close(self) -> None:
        await super().close()
        engine = self._engine
        self._engine = None
        self._session_factory = None
        self._connecting = None
        if engine is not None:
            await engine.dispose()
            log.info("history.sql.closed", table=self._table.name)

    # ---------------------------------------------------------------- #
    # Operations
    # ---------------------------------------------------------------- #

    async def read_recent(self, scope: str, chat_id: str | int, limit: int = 10) -> list[ConversationTurn]:
        if not scope or not chat_id or limit <= 0:
            return []
        session_factory = await self.connect()
        t = self._table
        stmt = (
            select(t.c.role, t.c.content)
            .where(t.c.scope == scope, t.c.chat_id == str(chat_id))
            .order_by(t.c.id.desc())
            .limit(limit)
        )
        async with session_factory() as session:
            rows = (await session.execute(stmt)).all()

        turns = [{"role": row.role, "content": json.loads(row.content)} for row in reversed(rows)]
        return persistable_turns(turns)

    async def _insert(self, scope: str, chat_id: str, turns: list[ConversationTurn]) -> None:
        session_factory = await self.connect()
        now = datetime.now(UTC).isoformat()
        rows = [
            {
                "scope": scope,
                "chat_id": chat_id,
                "role": turn.role,
                "content": json.dumps(turn.content),
                "created_at": now,
            }
            for turn in turns
        ]
        async with session_factory() as session:
            await session.execute(insert(self._table), rows)
            await session.commit()
        log.debug("history.sql.appended", scope=scope, chat_id=chat_id, count=len(rows))

    async def _prune(self, scope: str, chat_id: str) -> None:
        session_factory = await self.connect()
        t = self._table
        stale_ids = (
            select(t.c.id)
            .where(t.c.scope == scope, t.c.chat_id == chat_id)
            .order_by(t.c.id.desc())
            .offset(self.max_entries)
        )
        async with session_factory() as session:
            stale = [row.id for row in (await session.execute(stale_ids)).all()]
            if not stale:
                return
            await session.execute(delete(t).where(t.c.id.in_(stale)))
            await session.commit()
        log.debug("history.sql.pruned", scope=scope, chat_id=chat_id, removed=len(stale))

    async def clear(self, scope: str, chat_id: str | int) -> None:
        if not scope or not chat_id:
            return
        session_factory = await self.connect()
        t = self._table
        async with session_factory() as session:
            await session.execute(delete(t).where(t.c.scope == scope, t.c.chat_id == str(chat_id)))
            await session.commit()
        log.info("history.cleared", scope=scope, chat_id=str(chat_id))


# ---------------------------------------------------------------------------
# In-memory backend (testing / dev)
# ---------------------------------------------------------------------------


@dataclass
class _StoredTurn:
    turn: ConversationTurn
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class InMemoryHistoryStore(HistoryStore):
    """Process-local history store. Contents are lost on restart."""

    def __init__(self, *, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        super().__init__(max_entries=max_entries)
        self._log: dict[tuple[str, str], list[_StoredTurn]] = {}

    async def read_recent(self, scope: str, chat_id: str | int, limit: int = 10) -> list[ConversationTurn]:
        if not scope or not chat_id or limit <= 0:
            return []
        entries = self._log.get((scope, str(chat_id)), [])
        return [entry.turn for entry in entries[-limit:]]

    async def _insert(self, scope: str, chat_id: str, turns: list[ConversationTurn]) -> None:
        self._log.setdefault((scope, chat_id), []).extend(_StoredTurn(turn) for turn in turns)

    async def _prune(self, scope: str, chat_id: str) -> None:
        entries = self._log.get((scope, chat_id))
        if entries and len(entries) > self.max_entries:
            del entries[: len(entries) - self.max_entries]

    async def clear(self, scope: str, chat_id: str | int) -> None:
        if not scope or not chat_id:
            return
        self._log.pop((scope, str(chat_id)), None)
        log.info("history.cleared", scope=scope, chat_id=str(chat_id))


def get_history_store(settings: Settings) -> HistoryStore:
    """Return the history store configured by settings.history_url."""
    if settings.history_url.startswith("memory://"):
        return InMemoryHistoryStore(max_entries=settings.history_max_entries)
    return SQLHistoryStore(
        settings.history_url,
        table=settings.history_table,
        max_entries=settings.history_max_entries,
    )
