"""Bracket fixtures shared by the engine tests."""

from bracketeer.bracket.board import MatchBoard
from bracketeer.bracket.builder import build_elimination_tree_matches
from bracketeer.bracket.models import ResultSubmission
from bracketeer.bracket.results import apply_forfeit_outcome, record_match_result
from bracketeer.match.ready import build_ready_timeout_outcome
from tests.conftest import make_registrations

NOW = 1_700_000_000_000


def seed_number(team):
    return int(team["teamId"][1:])


def play_out(board, now=NOW, limit=500, pick=None):
    """Play every playable match.

    The better seed wins unless ``pick(match)`` returns the winning snapshot.
    """
    for _ in range(limit):
        playable = [
            m
            for m in board.all()
            if m["status"] == "pending" and m.get("teamA") and m.get("teamB")
        ]
        if not playable:
            return
        match = playable[0]
        winner = pick(match) if pick else None
        winner = winner or min(match["teamA"], match["teamB"], key=seed_number)
        outcome = record_match_result(
            board, match["id"], ResultSubmission(winner_team_id=winner["teamId"]), now
        )
        assert outcome["ok"], outcome
    raise AssertionError("bracket did not settle")


def single_board(count):
    """Return a freshly generated single elimination board."""
    return MatchBoard(
        {"bracketType": "single_elimination"},
        build_elimination_tree_matches(make_registrations(count), now=NOW),
    )


def double_board(count):
    """Return a freshly generated double elimination board."""
    return MatchBoard(
        {"bracketType": "double_elimination"},
        build_elimination_tree_matches(make_registrations(count), "upper", "u", NOW),
    )


def double_forfeit(board, match_id, now=NOW):
    """Let the readiness window of a match lapse with nobody ready."""
    match = board.get(match_id)
    match["scheduledAt"] = now - 600_000
    timeout = build_ready_timeout_outcome(match, {}, now)
    return apply_forfeit_outcome(board, match_id, timeout["payload"], now)
