"""Readiness window computations and ready-timeout forfeits."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bracketeer.bracket.board import team_id as slot_team_id
from bracketeer.core.constants import (
    FORFEIT_READY_TIMEOUT,
    FORFEIT_READY_TIMEOUT_BOTH,
    MATCH_COMPLETED,
    READY_CONFIRM_WINDOW_MS,
    READY_COUNTDOWN,
    READY_EXPIRED,
    READY_IN_PROGRESS,
    READY_READY,
    READY_WAITING,
    VETO_READY_DELAY_MS,
)
from bracketeer.utils import now_ms, to_int

from .models import ReadyCheck


def get_ready_deadline(
    match: Mapping[str, Any], window_ms: int = READY_CONFIRM_WINDOW_MS
) -> int | None:
    """Return when the readiness window of a scheduled match closes."""
    scheduled_at = to_int(match.get("scheduledAt"), None)
    if not scheduled_at:
        return None
    return scheduled_at + window_ms


def _saved_ready(match: Mapping[str, Any]) -> Mapping[str, Any]:
    saved = match.get("readyCheck")
    return saved if isinstance(saved, Mapping) else {}


def is_ready_expired(
    match: Mapping[str, Any],
    now: int,
    window_ms: int = READY_CONFIRM_WINDOW_MS,
) -> bool:
    """True once the deadline has passed without both sides being ready."""
    if match.get("status") == MATCH_COMPLETED:
        return False
    deadline_at = get_ready_deadline(match, window_ms)
    if deadline_at is None or now <= deadline_at:
        return False
    saved = _saved_ready(match)
    return not (saved.get("teamAReady") is True and saved.get("teamBReady") is True)


def build_ready_check(
    match: Mapping[str, Any],
    now: int | None = None,
    window_ms: int = READY_CONFIRM_WINDOW_MS,
    delay_ms: int = VETO_READY_DELAY_MS,
) -> ReadyCheck | None:
    """Return the read-side view of the readiness window, or None if unscheduled."""
    now = now_ms() if now is None else now
    scheduled_at = to_int(match.get("scheduledAt"), None)
    if not scheduled_at:
        return None
    deadline_at = scheduled_at + window_ms
    saved = _saved_ready(match)
    team_a_ready = saved.get("teamAReady") is True
    team_b_ready = saved.get("teamBReady") is True
    team_a_ready_at = to_int(saved.get("teamAReadyAt"), None)
    team_b_ready_at = to_int(saved.get("teamBReadyAt"), None)
    both_ready = team_a_ready and team_b_ready

    veto_opens_at = to_int(saved.get("vetoOpensAt"), None)
    if veto_opens_at is None and both_ready:
        confirmed_at = max(team_a_ready_at or 0, team_b_ready_at or 0, scheduled_at)
        veto_opens_at = confirmed_at + delay_ms

    if now < scheduled_at:
        status = READY_WAITING
    elif now > deadline_at and not both_ready:
        status = READY_EXPIRED
    elif both_ready and veto_opens_at and now < veto_opens_at:
        status = READY_COUNTDOWN
    elif both_ready:
        status = READY_READY
    else:
        status = READY_IN_PROGRESS

    return {
        "status": status,
        "windowStartAt": scheduled_at,
        "deadlineAt": deadline_at,
        "vetoOpensAt": veto_opens_at,
        "teamAReady": team_a_ready,
        "teamBReady": team_b_ready,
        "teamAReadyAt": team_a_ready_at,
        "teamBReadyAt": team_b_ready_at,
        "updatedAt": to_int(saved.get("updatedAt"), None),
    }


def build_ready_timeout_outcome(
    match: Mapping[str, Any],
    ready_check: Mapping[str, Any] | None = None,
    now: int | None = None,
    window_ms: int = READY_CONFIRM_WINDOW_MS,
) -> dict[str, Any] | None:
    """Compute the forfeit a lapsed readiness window resolves to.

    Returns ``{"payload": ..., "error": ...}`` where ``payload`` holds the
    match fields to persist, or ``None`` while the window is still open or
    both sides confirmed. One ready side wins 1-0; no ready side completes
    the match without a winner.
    """
    now = now_ms() if now is None else now
    ready = dict(ready_check if ready_check is not None else _saved_ready(match))
    team_a_ready = ready.get("teamAReady") is True
    team_b_ready = ready.get("teamBReady") is True
    if team_a_ready and team_b_ready:
        return None
    deadline_at = get_ready_deadline(match, window_ms)
    if deadline_at is None or now <= deadline_at:
        return None

    ready.update(status=READY_EXPIRED, updatedAt=now)
    team_a = match.get("teamA") or None
    team_b = match.get("teamB") or None
    if team_a_ready != team_b_ready:
        winner, loser = (team_a, team_b) if team_a_ready else (team_b, team_a)
        return {
            "payload": {
                "status": MATCH_COMPLETED,
                "winnerTeamId": slot_team_id(winner) or None,
                "teamAScore": 1 if team_a_ready else 0,
                "teamBScore": 1 if team_b_ready else 0,
                "winner": winner,
                "loser": loser,
                "forfeit": {
                    "type": FORFEIT_READY_TIMEOUT,
                    "loserTeamId": slot_team_id(loser) or None,
                    "at": now,
                },
                "readyCheck": ready,
                "finishedAt": now,
                "updatedAt": now,
            },
            "error": "Ready check window expired. Technical defeat assigned.",
        }
    return {
        "payload": {
            "status": MATCH_COMPLETED,
            "winnerTeamId": None,
            "teamAScore": 0,
            "teamBScore": 0,
            "winner": None,
            "loser": None,
            "forfeit": {"type": FORFEIT_READY_TIMEOUT_BOTH, "at": now},
            "readyCheck": ready,
            "finishedAt": now,
            "updatedAt": now,
        },
        "error": "Ready check window expired. Both teams received technical defeat.",
    }


def confirm_ready(
    match: Mapping[str, Any],
    team_id: str | None,
    now: int | None = None,
    window_ms: int = READY_CONFIRM_WINDOW_MS,
    delay_ms: int = VETO_READY_DELAY_MS,
) -> dict[str, Any]:
    """Mark one side of a match ready.

    ``team_id`` is the side the acting captain leads, or None when the caller
    captains neither side. A lapsed window is reported as
    ``{"ok": True, "expired": True, "timeout": ...}`` so the caller can
    apply the forfeit instead.
    """
    now = now_ms() if now is None else now
    team_a_id = slot_team_id(match.get("teamA"))
    team_b_id = slot_team_id(match.get("teamB"))
    if not team_a_id or not team_b_id:
        return {"ok": False, "error": "Match teams are not ready", "status": 409}
    if match.get("status") == MATCH_COMPLETED:
        return {"ok": False, "error": "Match already completed", "status": 409}

    scheduled_at = to_int(match.get("scheduledAt"), None)
    if not scheduled_at:
        return {"ok": False, "error": "Match schedule is not set", "status": 409}
    if now < scheduled_at:
        return {
            "ok": False,
            "error": "Ready check is locked until match start",
            "status": 409,
        }

    existing = _saved_ready(match)
    timeout = build_ready_timeout_outcome(match, existing, now, window_ms)
    if timeout is not None:
        return {"ok": True, "expired": True, "timeout": timeout}

    if team_id not in (team_a_id, team_b_id):
        return {
            "ok": False,
            "error": "Only captains can confirm readiness",
            "status": 403,
        }

    team_a_ready = existing.get("teamAReady") is True
    team_b_ready = existing.get("teamBReady") is True
    team_a_ready_at = to_int(existing.get("teamAReadyAt"), None)
    team_b_ready_at = to_int(existing.get("teamBReadyAt"), None)
    if team_id == team_a_id and not team_a_ready:
        team_a_ready, team_a_ready_at = True, now
    if team_id == team_b_id and not team_b_ready:
        team_b_ready, team_b_ready_at = True, now

    both_ready = team_a_ready and team_b_ready
    veto_opens_at = None
    if both_ready:
        veto_opens_at = to_int(existing.get("vetoOpensAt"), now + delay_ms)
    ready_check: ReadyCheck = {
        "status": READY_READY if both_ready else READY_IN_PROGRESS,
        "windowStartAt": scheduled_at,
        "deadlineAt": scheduled_at + window_ms,
        "vetoOpensAt": veto_opens_at,
        "teamAReady": team_a_ready,
        "teamBReady": team_b_ready,
        "teamAReadyAt": team_a_ready_at,
        "teamBReadyAt": team_b_ready_at,
        "updatedAt": now,
    }
    return {"ok": True, "expired": False, "readyCheck": ready_check, "vetoOpensAt": veto_opens_at}
