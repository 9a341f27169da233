"""Un-propagation of a match result through the matches derived from it."""

from __future__ import annotations

from collections import deque
from typing import Any

from bracketeer.core.constants import (
    MATCH_COMPLETED,
    MATCH_PENDING,
    MATCH_WAITING,
    STAGE_GRAND_FINAL,
    STAGE_GROUP,
    STAGE_LOWER,
    STAGE_PLAYOFF,
    STAGE_UPPER,
)
from bracketeer.utils import now_ms, to_int

from .board import MatchBoard, has_both_teams, team_id
from .models import Match

_CLEARED_RESULT = {
    "winnerTeamId": None,
    "winner": None,
    "loser": None,
    "teamAScore": 0,
    "teamBScore": 0,
    "mapScores": [],
    "scheduledAt": None,
    "readyCheck": None,
    "veto": None,
    "forfeit": None,
    "finishedAt": None,
}


def is_bye(match: Match) -> bool:
    """A completed match that only ever had one side."""
    return (
        match.get("status") == MATCH_COMPLETED
        and not match.get("forfeit")
        and not has_both_teams(match)
        and bool(match.get("winnerTeamId"))
    )


def is_downstream(candidate: Match, origin: Match) -> bool:
    """Return True when ``candidate`` can only have been filled after ``origin``."""
    candidate_stage = candidate.get("stage")
    origin_stage = origin.get("stage")
    if candidate_stage == STAGE_GROUP:
        return False
    if candidate_stage == origin_stage:
        return to_int(candidate.get("round"), 1) > to_int(origin.get("round"), 1)
    if origin_stage == STAGE_GROUP:
        return candidate_stage == STAGE_PLAYOFF
    if origin_stage == STAGE_UPPER:
        return candidate_stage in (STAGE_LOWER, STAGE_GRAND_FINAL)
    if origin_stage == STAGE_LOWER:
        return candidate_stage == STAGE_GRAND_FINAL
    return False


def _result_team_ids(match: Match) -> list[str]:
    ids = [match.get("winnerTeamId"), team_id(match.get("winner")), team_id(match.get("loser"))]
    result: list[str] = []
    for value in ids:
        if value and value not in result:
            result.append(value)
    return result


def _forfeit_sources(match: Match) -> list[str]:
    forfeit = match.get("forfeit") or {}
    sources = list(forfeit.get("sourceMatchIds") or [])
    if forfeit.get("sourceMatchId"):
        sources.append(forfeit["sourceMatchId"])
    return sources


def reset_match(board: MatchBoard, match_id: str, now: int | None = None) -> dict[str, Any]:
    """Clear a match result and every slot that was derived from it.

    The walk starts from the match's winner and loser. Each downstream match
    holding one of those teams loses that slot, and its own recorded winner
    and loser are queued in turn, so arbitrarily deep chains are undone.
    """
    now = now_ms() if now is None else now
    match = board.get(match_id)
    if match is None:
        return {"ok": False, "error": "Match not found", "status": 404}
    if is_bye(match):
        return {"ok": False, "error": "Bye matches cannot be reset", "status": 409}

    origin_snapshot: Match = dict(match)  # type: ignore[assignment]
    queue: deque[tuple[str | None, Match]] = deque([(None, origin_snapshot)])
    queue.extend((tid, origin_snapshot) for tid in _result_team_ids(match))
    affected = set(_result_team_ids(match))
    board.update(
        match_id,
        status=MATCH_PENDING if has_both_teams(match) else MATCH_WAITING,
        updatedAt=now,
        **_CLEARED_RESULT,
    )

    # A None team entry follows forfeits that name the origin as their source.
    seen: set[tuple[str | None, str]] = set()
    cleared: list[str] = []
    while queue:
        current_team, origin = queue.popleft()
        if (current_team, origin["id"]) in seen:
            continue
        seen.add((current_team, origin["id"]))

        for candidate in board.all():
            if candidate["id"] == match_id or not is_downstream(candidate, origin):
                continue
            if current_team is None:
                if origin["id"] not in _forfeit_sources(candidate):
                    continue
                slots = []
            else:
                slots = [
                    s for s in ("teamA", "teamB") if team_id(candidate.get(s)) == current_team
                ]
                if not slots:
                    continue
            snapshot: Match = dict(candidate)  # type: ignore[assignment]
            for slot in slots:
                candidate[slot] = None  # type: ignore[literal-required]
            board.update(
                candidate["id"],
                status=MATCH_PENDING if has_both_teams(candidate) else MATCH_WAITING,
                updatedAt=now,
                **_CLEARED_RESULT,
            )
            if candidate["id"] not in cleared:
                cleared.append(candidate["id"])
            queue.append((None, snapshot))
            for tid in _result_team_ids(snapshot):
                affected.add(tid)
                queue.append((tid, snapshot))

    board.update_tournament(champion=None, upperChampion=None, lowerChampion=None, endsAt=None)
    return {
        "ok": True,
        "affectedTeamIds": sorted(affected),
        "clearedMatchIds": cleared,
    }
