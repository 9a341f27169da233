"""Result submission, series validation and match setting edits."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from bracketeer.core.constants import ALLOWED_BEST_OF, MATCH_COMPLETED
from bracketeer.utils import normalize_uid_list, now_ms, to_int, to_millis

from .board import MatchBoard, team_id
from .models import MapScore, Match, ResultSubmission
from .progression import progress_completed_match, progress_double_forfeit_match


def effective_best_of(value: Any) -> int:
    """Return a supported best-of value, defaulting to 1."""
    best_of = to_int(value, 1)
    return best_of if best_of in ALLOWED_BEST_OF else 1


def normalize_map_scores(raw: Iterable[Any] | None, max_len: int = 5) -> list[MapScore]:
    """Keep at most ``max_len`` decided maps with non-negative scores."""
    if not isinstance(raw, (list, tuple)):
        return []
    rows: list[MapScore] = []
    for row in list(raw)[: max(1, to_int(max_len, 5))]:
        row = row if isinstance(row, Mapping) else {}
        score_a = max(0, to_int(row.get("teamAScore"), 0))
        score_b = max(0, to_int(row.get("teamBScore"), 0))
        if score_a != score_b:
            rows.append({"teamAScore": score_a, "teamBScore": score_b})
    return rows


def build_series_outcome(
    match: Mapping[str, Any],
    winner_team_id: str,
    map_scores: Iterable[Any],
    best_of: int,
) -> dict[str, Any]:
    """Derive the series score from per-map scores and check the winner."""
    best_of = effective_best_of(best_of)
    required_wins = best_of // 2 + 1
    maps = normalize_map_scores(map_scores, best_of)
    if not maps:
        return {"ok": False, "error": "Map scores are required"}

    team_a_score = sum(1 for row in maps if row["teamAScore"] > row["teamBScore"])
    team_b_score = len(maps) - team_a_score
    if team_a_score < required_wins and team_b_score < required_wins:
        return {"ok": False, "error": "Series winner is not determined by map scores"}
    if team_a_score >= required_wins and team_b_score >= required_wins:
        return {"ok": False, "error": "Invalid series score"}

    expected = team_id(match.get("teamA")) if team_a_score > team_b_score else team_id(
        match.get("teamB")
    )
    if not expected or expected != winner_team_id:
        return {"ok": False, "error": "Winner does not match map scores"}
    return {
        "ok": True,
        "teamAScore": team_a_score,
        "teamBScore": team_b_score,
        "mapScores": maps,
    }


def _participant_ids(match: Match) -> list[str]:
    return normalize_uid_list([team_id(match.get("teamA")), team_id(match.get("teamB"))])


def _run_progression(board: MatchBoard, match_id: str, now: int) -> str | None:
    """Propagate a completion.

    On failure the board is rolled back to the completed match alone, so no
    half-propagated bracket is persisted; reconciliation or a reset repairs it.
    """
    match = board.get(match_id) or {}
    saved = board.checkpoint()
    try:
        if match.get("winnerTeamId"):
            progressed = progress_completed_match(board, match_id, now)
        else:
            progressed = progress_double_forfeit_match(board, match_id, now)
    except Exception as e:
        board.restore(saved)
        logging.error(f"Error progressing match {match_id}: {e}")
        return None
    return progressed.get("nextMatchId")


def record_match_result(
    board: MatchBoard,
    match_id: str,
    submission: ResultSubmission,
    now: int | None = None,
) -> dict[str, Any]:
    """Complete a match with a winner and propagate it.

    Re-submitting the recorded winner succeeds with ``alreadyCompleted`` and
    changes nothing; a different winner for a completed match is rejected.
    """
    now = now_ms() if now is None else now
    match = board.get(match_id)
    if match is None:
        return {"ok": False, "error": "Match not found", "status": 404}
    problem = submission.validate()
    if problem:
        return {"ok": False, "error": problem, "status": 400}

    winner_team_id = str(submission.winner_team_id).strip()
    if match.get("status") == MATCH_COMPLETED:
        if match.get("winnerTeamId") and match.get("winnerTeamId") == winner_team_id:
            return {
                "ok": True,
                "alreadyCompleted": True,
                "nextMatchId": None,
                "affectedTeamIds": _participant_ids(match),
            }
        return {"ok": False, "error": "Match result already set", "status": 409}

    if team_id(match.get("teamA")) == winner_team_id:
        winner, loser = match.get("teamA"), match.get("teamB")
    elif team_id(match.get("teamB")) == winner_team_id:
        winner, loser = match.get("teamB"), match.get("teamA")
    else:
        return {"ok": False, "error": "winnerTeamId must be teamA or teamB", "status": 400}
    if not team_id(loser):
        return {"ok": False, "error": "Match is missing an opponent", "status": 409}

    best_of = (
        submission.best_of
        if submission.best_of is not None
        else effective_best_of(match.get("bestOf"))
    )
    team_a_score = to_int(submission.team_a_score, 0)
    team_b_score = to_int(submission.team_b_score, 0)
    map_scores: list[MapScore] = []
    if submission.map_scores:
        series = build_series_outcome(match, winner_team_id, submission.map_scores, best_of)
        if not series["ok"]:
            return {"ok": False, "error": series["error"], "status": 400}
        team_a_score = series["teamAScore"]
        team_b_score = series["teamBScore"]
        map_scores = series["mapScores"]
    elif best_of > 1:
        required_wins = best_of // 2 + 1
        winner_is_a = team_id(match.get("teamA")) == winner_team_id
        decided = team_a_score >= required_wins or team_b_score >= required_wins
        agrees = team_a_score > team_b_score if winner_is_a else team_b_score > team_a_score
        if not decided or not agrees:
            return {
                "ok": False,
                "error": "Invalid series score for selected bestOf",
                "status": 400,
            }

    board.update(
        match_id,
        status=MATCH_COMPLETED,
        winnerTeamId=winner_team_id,
        winner=winner,
        loser=loser,
        teamAScore=team_a_score,
        teamBScore=team_b_score,
        mapScores=map_scores,
        bestOf=best_of,
        forfeit=None,
        finishedAt=now,
        updatedAt=now,
    )
    return {
        "ok": True,
        "alreadyCompleted": False,
        "nextMatchId": _run_progression(board, match_id, now),
        "affectedTeamIds": _participant_ids(match),
    }


def apply_forfeit_outcome(
    board: MatchBoard, match_id: str, payload: Mapping[str, Any], now: int | None = None
) -> dict[str, Any]:
    """Persist a computed forfeit onto the board and propagate it."""
    now = now_ms() if now is None else now
    match = board.get(match_id)
    if match is None:
        return {"ok": False, "error": "Match not found", "status": 404}
    if match.get("status") == MATCH_COMPLETED:
        return {"ok": True, "alreadyCompleted": True, "nextMatchId": None}
    board.update(match_id, **payload)
    return {
        "ok": True,
        "alreadyCompleted": False,
        "nextMatchId": _run_progression(board, match_id, now),
        "affectedTeamIds": _participant_ids(match),
    }


def update_match_settings(
    board: MatchBoard,
    match_id: str,
    changes: Mapping[str, Any],
    now: int | None = None,
) -> dict[str, Any]:
    """Edit ``scheduledAt`` and/or ``bestOf`` of a match that is not completed."""
    now = now_ms() if now is None else now
    has_schedule = "scheduledAt" in changes
    has_best_of = "bestOf" in changes
    if not has_schedule and not has_best_of:
        return {"ok": False, "error": "scheduledAt or bestOf is required", "status": 400}

    fields: dict[str, Any] = {"updatedAt": now, "mapScores": []}
    if has_schedule:
        raw = changes.get("scheduledAt")
        if raw is None or raw == "":
            scheduled_at = None
        else:
            scheduled_at = to_millis(raw)
            if scheduled_at is None:
                return {"ok": False, "error": "Invalid match schedule date", "status": 400}
        fields.update(scheduledAt=scheduled_at, readyCheck=None, veto=None)
    if has_best_of:
        best_of = to_int(changes.get("bestOf"), 0)
        if best_of not in ALLOWED_BEST_OF:
            return {"ok": False, "error": "bestOf must be one of 1, 3, 5", "status": 400}
        fields.update(bestOf=best_of, veto=None)

    match = board.get(match_id)
    if match is None:
        return {"ok": False, "error": "Match not found", "status": 404}
    if match.get("status") == MATCH_COMPLETED:
        return {"ok": False, "error": "Cannot edit completed match", "status": 409}
    board.update(match_id, **fields)
    return {"ok": True, "nextMatchId": None}
