"""Tests for Resolver: sequential fallback and first-to-finish racing.

Tests cover:
- Sequential: roster order, stop at first success, two failures then success
- Exhaustion reports the LAST failure's cause, including an error followed by a timeout
- Empty roster fails fast without any attempt
- Racing: fastest success wins, settles once, losers are not cancelled
- Racing exhaustion reports the failure that completed last
- Racing with a single candidate behaves sequentially
"""

from __future__ import annotations

import asyncio

import pytest

from llm_relay.errors import ConfigurationError, ExhaustionError, ProviderError
from llm_relay.events import EventKind
from llm_relay.model_router.attempt import FailureKind
from llm_relay.model_router.resolver import Exhausted, Resolved, Resolver


def _scripted(outcomes: dict[str, object], calls: list[str], delays: dict[str, float] | None = None):
    """Attempt factory: each model id maps to a reply string or an exception."""
    delays = delays or {}

    async def attempt(model_id: str) -> str:
        calls.append(model_id)
        if model_id in delays:
            await asyncio.sleep(delays[model_id])
        outcome = outcomes[model_id]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return attempt


# ------------------------------------------------------------------ #
# Sequential
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_sequential_primary_success_makes_one_call():
    calls: list[str] = []
    resolver = Resolver()

    result = await resolver.resolve(["a", "b"], _scripted({"a": "A", "b": "B"}, calls))

    assert result == Resolved(text="A", model_id="a")
    assert calls == ["a"]


@pytest.mark.asyncio
async def test_sequential_falls_back_after_two_failures(hooks, events):
    calls: list[str] = []
    resolver = Resolver(label="groq", hooks=hooks)
    attempt = _scripted({"a": RuntimeError("boom"), "b": "   ", "c": "answer"}, calls)

    result = await resolver.resolve(["a", "b", "c"], attempt)

    assert result == Resolved(text="answer", model_id="c")
    assert calls == ["a", "b", "c"]
    assert [e.kind for e in events] == [
        EventKind.ATTEMPT_FAILED,
        EventKind.ATTEMPT_FAILED,
        EventKind.RESOLVED,
    ]
    assert [e.failure_kind for e in events[:2]] == ["provider_error", "empty_response"]


@pytest.mark.asyncio
async def test_sequential_exhaustion_reports_last_failure(hooks, events):
    calls: list[str] = []
    resolver = Resolver(hooks=hooks)
    attempt = _scripted({"a": RuntimeError("first"), "b": RuntimeError("second")}, calls)

    result = await resolver.resolve(["a", "b"], attempt)

    assert isinstance(result, Exhausted)
    assert result.last_failure.model_id == "b"
    assert result.last_failure.message == "second"
    assert events[-1].kind == EventKind.EXHAUSTED
    assert events[-1].model_id == "b"


@pytest.mark.asyncio
async def test_resolve_text_raises_with_last_cause():
    calls: list[str] = []
    resolver = Resolver(label="mistral")
    cause = RuntimeError("rate limited")
    attempt = _scripted({"a": RuntimeError("first"), "b": cause}, calls)

    with pytest.raises(ExhaustionError) as exc_info:
        await resolver.resolve_text(["a", "b"], attempt)

    assert "All mistral failed" in str(exc_info.value)
    assert "rate limited" in str(exc_info.value)
    assert exc_info.value.failure.model_id == "b"
    assert exc_info.value.__cause__ is cause


@pytest.mark.asyncio
async def test_duplicate_roster_entries_are_tried_twice():
    calls: list[str] = []
    state = {"n": 0}

    async def attempt(model_id: str) -> str:
        calls.append(model_id)
        state["n"] += 1
        if state["n"] == 1:
            raise RuntimeError("transient")
        return "second time lucky"

    result = await Resolver().resolve(["a", "a"], attempt)

    assert result == Resolved(text="second time lucky", model_id="a")
    assert calls == ["a", "a"]


@pytest.mark.asyncio
async def test_empty_roster_fails_fast():
    calls: list[str] = []

    with pytest.raises(ConfigurationError):
        await Resolver().resolve([], _scripted({}, calls))

    assert calls == []


@pytest.mark.asyncio
async def test_sequential_timeout_moves_to_next_candidate():
    calls: list[str] = []
    resolver = Resolver(timeout_ms=10)
    attempt = _scripted({"slow": "too late", "fast": "on time"}, calls, delays={"slow": 0.2})

    result = await resolver.resolve(["slow", "fast"], attempt)

    assert result == Resolved(text="on time", model_id="fast")


@pytest.mark.asyncio
async def test_sequential_all_timeouts_report_timeout():
    calls: list[str] = []
    resolver = Resolver(timeout_ms=5)
    attempt = _scripted({"a": "x", "b": "y"}, calls, delays={"a": 0.1, "b": 0.1})

    result = await resolver.resolve(["a", "b"], attempt)

    assert isinstance(result, Exhausted)
    assert result.last_failure.kind == FailureKind.TIMEOUT
    assert result.last_failure.message == "Model b timed out after 5ms"


@pytest.mark.asyncio
async def test_exhaustion_after_error_then_timeout_reports_timeout():
    calls: list[str] = []
    resolver = Resolver(timeout_ms=5, label="groq")
    attempt = _scripted({"a": ProviderError("x"), "b": "late"}, calls, delays={"b": 0.1})

    with pytest.raises(ExhaustionError) as exc_info:
        await resolver.resolve_text(["a", "b"], attempt)

    failure = exc_info.value.failure
    assert calls == ["a", "b"]
    assert failure.model_id == "b"
    assert failure.kind == FailureKind.TIMEOUT
    assert failure.message == "Model b timed out after 5ms"
    assert "Last error (b, timeout)" in str(exc_info.value)


# ------------------------------------------------------------------ #
# Racing
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_race_fastest_success_wins():
    calls: list[str] = []
    resolver = Resolver(first_to_finish=True, timeout_ms=0)
    attempt = _scripted(
        {"slow": "slow answer", "fast": "fast answer"},
        calls,
        delays={"slow": 0.05, "fast": 0.0},
    )

    result = await resolver.resolve(["slow", "fast"], attempt)

    assert result == Resolved(text="fast answer", model_id="fast")
    # Every candidate is launched with the same request.
    assert sorted(calls) == ["fast", "slow"]


@pytest.mark.asyncio
async def test_race_losers_keep_running_and_settle_once(hooks, events):
    resolver = Resolver(first_to_finish=True, timeout_ms=0, hooks=hooks)
    loser_finished = asyncio.Event()

    async def attempt(model_id: str) -> str:
        if model_id == "loser":
            await asyncio.sleep(0.05)
            loser_finished.set()
            return "loser answer"
        return "winner answer"

    result = await resolver.resolve(["loser", "winner"], attempt)

    assert result == Resolved(text="winner answer", model_id="winner")
    assert resolver.inflight_count == 1

    await asyncio.wait_for(loser_finished.wait(), timeout=1)
    await asyncio.sleep(0.01)
    assert resolver.inflight_count == 0
    # Only one resolution was reported even though both succeeded.
    assert [e.kind for e in events].count(EventKind.RESOLVED) == 1


@pytest.mark.asyncio
async def test_race_failure_before_success_still_resolves():
    calls: list[str] = []
    resolver = Resolver(first_to_finish=True, timeout_ms=0)
    attempt = _scripted(
        {"broken": RuntimeError("down"), "ok": "fine"},
        calls,
        delays={"ok": 0.02},
    )

    result = await resolver.resolve(["broken", "ok"], attempt)

    assert result == Resolved(text="fine", model_id="ok")


@pytest.mark.asyncio
async def test_race_exhaustion_reports_last_completed_failure():
    calls: list[str] = []
    resolver = Resolver(first_to_finish=True, timeout_ms=0)
    attempt = _scripted(
        {"a": RuntimeError("a failed late"), "b": RuntimeError("b failed early")},
        calls,
        delays={"a": 0.03, "b": 0.0},
    )

    result = await resolver.resolve(["a", "b"], attempt)

    assert isinstance(result, Exhausted)
    assert result.last_failure.model_id == "a"
    assert result.last_failure.message == "a failed late"


@pytest.mark.asyncio
async def test_race_timeouts_count_as_failures():
    calls: list[str] = []
    resolver = Resolver(first_to_finish=True, timeout_ms=10)
    attempt = _scripted({"a": "x", "b": "y"}, calls, delays={"a": 0.2, "b": 0.2})

    result = await resolver.resolve(["a", "b"], attempt)

    assert isinstance(result, Exhausted)
    assert result.last_failure.kind == FailureKind.TIMEOUT


@pytest.mark.asyncio
async def test_race_single_candidate_is_sequential():
    calls: list[str] = []
    resolver = Resolver(first_to_finish=True)

    result = await resolver.resolve(["only"], _scripted({"only": "answer"}, calls))

    assert result == Resolved(text="answer", model_id="only")
    assert resolver.inflight_count == 0
