"""Request resolution: which model(s) to call, in what order, and what counts as an answer.

This package holds the single fallback/racing engine shared by every
provider and by the multi-provider router:
- roster: ordered candidate list for one logical call
- attempt: one bounded network call with a uniform success/failure verdict
- resolver: sequential fallback and first-to-finish racing
- router: the same strategies applied across whole providers
"""

from __future__ import annotations

from llm_relay.model_router.attempt import (
    AttemptOutcome,
    AttemptRunner,
    Failure,
    FailureKind,
    Success,
)
from llm_relay.model_router.resolver import Exhausted, ResolutionResult, Resolved, Resolver
from llm_relay.model_router.roster import build_roster
from llm_relay.model_router.router import (
    Classifier,
    CompletionClient,
    LastUsed,
    ProviderBinding,
    ProviderRouter,
    Transcriber,
)

__all__ = [
    "AttemptOutcome",
    "AttemptRunner",
    "Classifier",
    "CompletionClient",
    "Exhausted",
    "Failure",
    "FailureKind",
    "LastUsed",
    "ProviderBinding",
    "ProviderRouter",
    "ResolutionResult",
    "Resolved",
    "Resolver",
    "Success",
    "Transcriber",
    "build_roster",
]
