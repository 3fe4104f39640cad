"""Attempt runner - one candidate, one network call, one verdict.

An attempt either produces non-empty text (Success) or a classified
Failure. The runner never raises: network errors, timeouts and empty
replies all become Failure values so the resolver can decide what to do
next.

Timeouts abandon the network call rather than cancelling it. The call
keeps running as an orphaned task; its eventual result is consumed and
ignored. This mirrors transports that have no cancellation, and it means a
timed-out request may still be billed by the provider.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from llm_relay.events import EventHooks, EventKind, ResolutionEvent

log = structlog.get_logger(__name__)

AttemptCall = Callable[[], Awaitable[str]]


class FailureKind(StrEnum):
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    EMPTY_RESPONSE = "empty_response"


@dataclass(frozen=True)
class Success:
    model_id: str
    text: str


@dataclass(frozen=True)
class Failure:
    """A failed attempt.

    Attributes:
        model_id: Candidate that failed
        kind: Classified cause
        message: Human-readable cause
        error: Original exception, when the failure came from one
    """

    model_id: str
    kind: FailureKind
    message: str
    error: BaseException | None = None


AttemptOutcome = Success | Failure


class AttemptRunner:
    """Runs single attempts with an optional time budget.

    Abandoned (timed-out) calls are kept in ``_orphans`` until they finish
    so the event loop does not garbage-collect them mid-flight.
    """

    def __init__(self, *, label: str = "models", hooks: EventHooks | None = None) -> None:
        self._label = label
        self._hooks = hooks or EventHooks()
        self._orphans: set[asyncio.Future[str]] = set()

    @property
    def orphan_count(self) -> int:
        return len(self._orphans)

    async def run(self, model_id: str, call: AttemptCall, timeout_ms: int = 0) -> AttemptOutcome:
        """Execute one attempt and classify the outcome.

        Args:
            model_id: Candidate identifier (model or provider id)
            call: Zero-argument factory returning the network awaitable
            timeout_ms: Time budget; 0 waits indefinitely

        Returns:
            Success with stripped, non-empty text, or a Failure
        """
        try:
            if timeout_ms > 0:
                raw = await self._run_with_timeout(model_id, call, timeout_ms)
                if raw is None:
                    return self._fail(
                        model_id,
                        FailureKind.TIMEOUT,
                        f"Model {model_id} timed out after {timeout_ms}ms",
                    )
            else:
                raw = await call()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return self._fail(model_id, FailureKind.PROVIDER_ERROR, str(exc) or type(exc).__name__, exc)

        text = raw.strip() if isinstance(raw, str) else ""
        if not text:
            return self._fail(model_id, FailureKind.EMPTY_RESPONSE, f"Empty response from {model_id}")
        return Success(model_id=model_id, text=text)

    async def _run_with_timeout(self, model_id: str, call: AttemptCall, timeout_ms: int) -> str | None:
        """Race the call against a timer. Returns None on expiry."""
        work = asyncio.ensure_future(call())
        done, _ = await asyncio.wait({work}, timeout=timeout_ms / 1000)
        if work in done:
            return work.result()

        # Abandon, do not cancel: the call may still complete in the background.
        self._orphans.add(work)
        work.add_done_callback(self._reap_orphan)
        return None

    def _reap_orphan(self, future: asyncio.Future[str]) -> None:
        self._orphans.discard(future)
        if not future.cancelled() and future.exception() is not None:
            log.debug("attempt.orphan_failed", label=self._label, error=str(future.exception()))

    def _fail(
        self,
        model_id: str,
        kind: FailureKind,
        message: str,
        error: BaseException | None = None,
    ) -> Failure:
        log.warning(
            "attempt.failed",
            label=self._label,
            model_id=model_id,
            failure_kind=kind.value,
            error_message=message,
        )
        self._hooks.emit(
            ResolutionEvent(
                kind=EventKind.ATTEMPT_FAILED,
                label=self._label,
                model_id=model_id,
                failure_kind=kind.value,
                message=message,
            )
        )
        return Failure(model_id=model_id, kind=kind, message=message, error=error)
