"""Observability hook for resolution events.

Library internals never print. Every notable event is logged through
structlog and also offered to caller-registered subscribers, so an
application can feed failures into its own metrics or alerting without
parsing log output.

Example:
    hooks = EventHooks()
    hooks.subscribe(lambda event: counter.labels(event.kind).inc())
    provider = GroqProvider(api_key=..., hooks=hooks)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

log = structlog.get_logger(__name__)


class EventKind(StrEnum):
    ATTEMPT_FAILED = "attempt.failed"
    RESOLVED = "resolution.resolved"
    EXHAUSTED = "resolution.exhausted"


@dataclass(frozen=True)
class ResolutionEvent:
    """One observable step of a resolution run.

    Attributes:
        kind: What happened
        label: Which resolver emitted it (provider id or "providers")
        model_id: Candidate the event refers to (model or provider id)
        failure_kind: FailureKind value for failures, else None
        message: Failure message, else None
    """

    kind: EventKind
    label: str
    model_id: str | None = None
    failure_kind: str | None = None
    message: str | None = None


EventSubscriber = Callable[[ResolutionEvent], None]


class EventHooks:
    """Fan-out of resolution events to subscribed callables."""

    def __init__(self, subscribers: list[EventSubscriber] | None = None) -> None:
        self._subscribers: list[EventSubscriber] = list(subscribers or [])

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def emit(self, event: ResolutionEvent) -> None:
        """Deliver event to every subscriber.

        A failing subscriber is logged and skipped; it never breaks the
        resolution that emitted the event.
        """
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as exc:
                log.warning(
                    "events.subscriber_failed",
                    kind=event.kind.value,
                    error=str(exc),
                )
