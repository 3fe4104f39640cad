"""Exception hierarchy surfaced to callers of llm_relay.

Only two kinds of error ever reach a caller of ``ask``:
- ConfigurationError: raised before any network attempt is made
- ExhaustionError: every candidate model (or provider) failed

Individual attempt failures are recovered inside the resolver and never
raised directly. PersistenceError exists so background history writes have
a typed failure to hand to their failure handler; it is never raised out of
``ask``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llm_relay.model_router.attempt import Failure


class RelayError(Exception):
    """Base exception for all llm_relay failures."""


class ConfigurationError(RelayError):
    """Missing models, providers, credentials or required identifiers."""


class MissingChatIdError(ConfigurationError):
    """A history-bound call was made without a chat id."""


class TranscriptionInputError(ConfigurationError):
    """Transcription input is not a path, URL, bytes or binary stream."""


class ProviderError(RelayError):
    """A single provider call failed."""


class ProviderRateLimitError(ProviderError):
    """Upstream rate limit exceeded."""


class ProviderUnavailableError(ProviderError):
    """Upstream service is unavailable."""


class ExhaustionError(RelayError):
    """Every candidate in a roster or provider set failed.

    The message always carries the cause of the *last* failure so the most
    recent, most specific reason reaches the caller.
    """

    def __init__(self, failure: Failure | None, *, label: str = "models") -> None:
        self.failure = failure
        if failure is None:
            message = f"All {label} failed"
        else:
            message = (
                f"All {label} failed. Last error ({failure.model_id}, "
                f"{failure.kind.value}): {failure.message}"
            )
        super().__init__(message)


class PersistenceError(RelayError):
    """A history store write or prune failed."""
