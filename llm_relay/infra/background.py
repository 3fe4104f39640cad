"""
Fire-and-forget background tasks with explicit lifecycle tracking.

Used for work that must never block or fail the caller's result, such as
persisting conversation turns after an answer has already been returned
and pruning history past its retention ceiling.

Key features:
- Tasks tracked PENDING → RUNNING → COMPLETED/FAILED
- Injectable failure handler (default: structured error log)
- Optional completion hook, fired after every task (tests await on it)
- No retries: a failed task is reported once and dropped
- drain() to await everything in flight (shutdown, tests)
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class TaskStatus(StrEnum):
    """Task lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BackgroundTask:
    """Represents one scheduled coroutine."""
    name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


FailureHandler = Callable[[BackgroundTask, BaseException], None]
CompletionHook = Callable[[BackgroundTask], None | Awaitable[None]]


def log_failure(task: BackgroundTask, exc: BaseException) -> None:
    log.error(
        "background.task_failed",
        task_id=task.id,
        task_name=task.name,
        error=str(exc),
        error_type=type(exc).__name__,
    )


class BackgroundTasks:
    """
    Tracks fire-and-forget coroutines on the running event loop.

    Example usage:
        tasks = BackgroundTasks(on_failure=report_to_sentry)
        tasks.submit(store.append_and_prune(...), name="history.persist")
        ...
        await tasks.shutdown()
    """

    def __init__(
        self,
        *,
        on_failure: FailureHandler | None = None,
        on_complete: CompletionHook | None = None,
    ) -> None:
        self._on_failure = on_failure or log_failure
        self._on_complete = on_complete
        self._running: dict[str, asyncio.Task[None]] = {}
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._running)

    def submit(self, coro: Coroutine[Any, Any, Any], *, name: str = "background") -> BackgroundTask:
        """Schedule coro without awaiting it.

        Raises:
            RuntimeError: If called after shutdown()
        """
        if self._closed:
            coro.close()
            raise RuntimeError("BackgroundTasks is shut down")

        task = BackgroundTask(name=name)
        runner = asyncio.ensure_future(self._execute(task, coro))
        self._running[task.id] = runner
        runner.add_done_callback(lambda _: self._running.pop(task.id, None))

        log.debug("background.task_submitted", task_id=task.id, task_name=name)
        return task

    async def drain(self) -> None:
        """Wait until every submitted task (including ones they submit) is done."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Refuse new work and wait for in-flight tasks."""
        self._closed = True
        await self.drain()
        log.debug("background.shutdown_complete")

    async def _execute(self, task: BackgroundTask, coro: Coroutine[Any, Any, Any]) -> None:
        task.status = TaskStatus.RUNNING
        task.started_at = datetime.now(UTC)
        try:
            await coro
        except asyncio.CancelledError:
            task.status = TaskStatus.FAILED
            task.error = "cancelled"
            task.completed_at = datetime.now(UTC)
            raise
        except Exception as exc:
            task.status = TaskStatus.FAILED
            task.error = str(exc)
            task.completed_at = datetime.now(UTC)
            try:
                self._on_failure(task, exc)
            except Exception as handler_exc:
                log.error(
                    "background.failure_handler_failed",
                    task_id=task.id,
                    error=str(handler_exc),
                )
        else:
            task.status = TaskStatus.COMPLETED
            task.completed_at = datetime.now(UTC)
        await self._notify_complete(task)

    async def _notify_complete(self, task: BackgroundTask) -> None:
        if self._on_complete is None:
            return
        try:
            result = self._on_complete(task)
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            log.warning("background.completion_hook_failed", task_id=task.id, error=str(exc))
