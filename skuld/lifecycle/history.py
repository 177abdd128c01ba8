"""Bounded per-experiment event history."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skuld.models.state import LifecycleEvent, LifecycleState

DEFAULT_HISTORY_LIMIT = 100


def append_event(
    state: LifecycleState, event: LifecycleEvent, limit: int = DEFAULT_HISTORY_LIMIT
) -> None:
    """Append *event*, evicting the oldest entries beyond *limit*."""
    state.history.append(event)
    overflow = len(state.history) - limit
    if overflow > 0:
        del state.history[:overflow]


def recent_events(state: LifecycleState, limit: int = 50) -> list[LifecycleEvent]:
    """Newest first. Ties on timestamp keep reverse insertion order."""
    if limit <= 0:
        return []
    ordered = sorted(
        enumerate(state.history),
        key=lambda pair: (pair[1].timestamp, pair[0]),
        reverse=True,
    )
    return [event for _, event in ordered[:limit]]
