"""Resolution strategies - sequential fallback and first-to-finish racing.

The Resolver turns a roster of candidates into exactly one answer or one
aggregated failure. It is the single implementation shared by every
provider (model-level resolution) and by the multi-provider router
(provider-level resolution).

Sequential strategy (default, and always used for a single candidate):
1. Try candidates in roster order
2. Stop at the first Success
3. On Failure, remember it as the last failure and move on
4. If the roster is exhausted, report the LAST failure

Racing strategy (first_to_finish=True and more than one candidate):
1. Launch every candidate at once with the same request payload
2. The first Success by completion time settles the result, exactly once
3. Losers keep running to completion; their outcomes are discarded apart
   from failure bookkeeping
4. If everything fails, report the failure that completed last

Racing never cancels losing attempts. Every candidate in the roster is
called on every request, so quota/cost scales with roster size.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog

from llm_relay.errors import ConfigurationError, ExhaustionError
from llm_relay.events import EventHooks, EventKind, ResolutionEvent
from llm_relay.model_router.attempt import (
    AttemptOutcome,
    AttemptRunner,
    Failure,
    FailureKind,
    Success,
)

log = structlog.get_logger(__name__)

AttemptFactory = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class Resolved:
    text: str
    model_id: str


@dataclass(frozen=True)
class Exhausted:
    last_failure: Failure | None


ResolutionResult = Resolved | Exhausted


class Resolver:
    """Sequential/racing resolution over a roster of candidates."""

    def __init__(
        self,
        *,
        timeout_ms: int = 20_000,
        first_to_finish: bool = False,
        label: str = "models",
        hooks: EventHooks | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            timeout_ms: Per-attempt time budget; 0 disables it
            first_to_finish: Race all candidates instead of trying them in order
            label: Name used in logs, events and exhaustion messages
            hooks: Observability subscribers
        """
        self.timeout_ms = max(int(timeout_ms or 0), 0)
        self.first_to_finish = first_to_finish
        self.label = label
        self._hooks = hooks or EventHooks()
        self._runner = AttemptRunner(label=label, hooks=self._hooks)
        self._inflight: set[asyncio.Task[AttemptOutcome]] = set()

    @property
    def inflight_count(self) -> int:
        """Racing attempts still running after their race was settled."""
        return len(self._inflight)

    async def resolve(self, roster: Sequence[str], attempt_factory: AttemptFactory) -> ResolutionResult:
        """Run the configured strategy over roster.

        Args:
            roster: Candidate ids in priority order
            attempt_factory: Maps a candidate id to its network awaitable

        Returns:
            Resolved with the winning text, or Exhausted with the last failure

        Raises:
            ConfigurationError: If the roster is empty (no attempt is made)
        """
        if not roster:
            raise ConfigurationError(f"No {self.label} configured")

        if not self.first_to_finish or len(roster) == 1:
            result = await self._sequential(roster, attempt_factory)
        else:
            result = await self._race(roster, attempt_factory)

        if isinstance(result, Resolved):
            self._hooks.emit(
                ResolutionEvent(kind=EventKind.RESOLVED, label=self.label, model_id=result.model_id)
            )
        else:
            failure = result.last_failure
            log.error(
                "resolver.exhausted",
                label=self.label,
                attempted=list(roster),
                last_model_id=failure.model_id if failure else None,
                last_error=failure.message if failure else None,
            )
            self._hooks.emit(
                ResolutionEvent(
                    kind=EventKind.EXHAUSTED,
                    label=self.label,
                    model_id=failure.model_id if failure else None,
                    failure_kind=failure.kind.value if failure else None,
                    message=failure.message if failure else None,
                )
            )
        return result

    async def resolve_text(self, roster: Sequence[str], attempt_factory: AttemptFactory) -> Resolved:
        """Like resolve(), but raise ExhaustionError instead of returning Exhausted."""
        result = await self.resolve(roster, attempt_factory)
        if isinstance(result, Exhausted):
            failure = result.last_failure
            raise ExhaustionError(failure, label=self.label) from (failure.error if failure else None)
        return result

    def _call_for(self, model_id: str, attempt_factory: AttemptFactory) -> Callable[[], Awaitable[str]]:
        return lambda: attempt_factory(model_id)

    async def _sequential(self, roster: Sequence[str], attempt_factory: AttemptFactory) -> ResolutionResult:
        last_failure: Failure | None = None
        for model_id in roster:
            outcome = await self._runner.run(
                model_id, self._call_for(model_id, attempt_factory), self.timeout_ms
            )
            if isinstance(outcome, Success):
                return Resolved(text=outcome.text, model_id=outcome.model_id)
            last_failure = outcome
        return Exhausted(last_failure=last_failure)

    async def _race(self, roster: Sequence[str], attempt_factory: AttemptFactory) -> ResolutionResult:
        loop = asyncio.get_running_loop()
        settled: asyncio.Future[ResolutionResult] = loop.create_future()
        remaining = len(roster)
        last_failure: Failure | None = None

        # Done-callbacks fire in completion order, which is what "first to
        # finish" and "last to fail" are measured against.
        def on_done(task: asyncio.Task[AttemptOutcome], model_id: str) -> None:
            nonlocal remaining, last_failure
            self._inflight.discard(task)
            remaining -= 1

            if task.cancelled():
                outcome: AttemptOutcome = Failure(
                    model_id=model_id,
                    kind=FailureKind.PROVIDER_ERROR,
                    message=f"Attempt for {model_id} was cancelled",
                )
            else:
                outcome = task.result()

            if isinstance(outcome, Success):
                if not settled.done():
                    settled.set_result(Resolved(text=outcome.text, model_id=outcome.model_id))
                return

            last_failure = outcome
            if remaining == 0 and not settled.done():
                settled.set_result(Exhausted(last_failure=last_failure))

        for model_id in roster:
            task = asyncio.ensure_future(
                self._runner.run(model_id, self._call_for(model_id, attempt_factory), self.timeout_ms)
            )
            self._inflight.add(task)
            task.add_done_callback(lambda t, m=model_id: on_done(t, m))

        return await settled
