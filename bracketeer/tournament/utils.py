"""Utility functions for tournament management."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bracketeer.core.constants import (
    TOURNAMENT_ONGOING,
    TOURNAMENT_PAST,
    TOURNAMENT_UPCOMING,
)
from bracketeer.utils import now_ms, to_millis


def get_tournament_status(tournament: Mapping[str, Any], now: int | None = None) -> str:
    """Derive upcoming/ongoing/past from the champion and the schedule."""
    now = now_ms() if now is None else now
    if tournament.get("champion"):
        return TOURNAMENT_PAST
    starts_at = to_millis(tournament.get("startsAt"), 0)
    ends_at = to_millis(tournament.get("endsAt"), 0)
    if ends_at and now >= ends_at:
        return TOURNAMENT_PAST
    if starts_at and now >= starts_at:
        return TOURNAMENT_ONGOING
    return TOURNAMENT_UPCOMING
