"""Model roster construction."""

from __future__ import annotations

from collections.abc import Iterable


def build_roster(primary: str | None, fallbacks: Iterable[str | None] = ()) -> list[str]:
    """Return candidate model ids for one logical call, primary first.

    Empty and None entries are dropped. Nothing else is de-duplicated: a
    model deliberately listed twice is tried twice.
    """
    candidates = [primary, *fallbacks]
    return [model for model in candidates if model and str(model).strip()]
