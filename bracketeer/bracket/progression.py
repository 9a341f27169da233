"""Propagation of completed matches through elimination brackets.

All functions here work on a :class:`MatchBoard` loaded once per transaction.
Cascades (walkovers, double forfeits, lower bracket byes) are driven by a
worklist instead of recursive reads, so one call always finishes with the
whole board settled.
"""

from __future__ import annotations

import logging
import math
import re
from collections import deque
from typing import Any

from bracketeer.core.constants import (
    BRACKET_DOUBLE_ELIMINATION,
    BRACKET_GROUP_PLAYOFF,
    FORFEIT_DOUBLE_BOTH_SOURCES,
    FORFEIT_OPPONENT_ABSENT,
    GRAND_FINAL_MATCH_ID,
    MATCH_COMPLETED,
    MATCH_PENDING,
    MATCH_WAITING,
    PREFIX_STAGES,
    STAGE_GRAND_FINAL,
    STAGE_GROUP,
    STAGE_LOWER,
    STAGE_PLAYOFF,
    STAGE_PREFIXES,
    STAGE_SINGLE,
    STAGE_UPPER,
)
from bracketeer.utils import now_ms, to_int

from .board import (
    MatchBoard,
    has_any_team,
    has_both_teams,
    is_completed,
    is_void,
    team_id,
)
from .builder import new_match
from .models import Match, TeamSnapshot

ROUND_INDEX_PATTERN = re.compile(r"^(?:[a-z]+_?)?r?(\d+)_m(\d+)$", re.IGNORECASE)

# Slot states used while settling the lower bracket
_TEAM = "team"
_AWAITING = "awaiting"
_DEAD = "dead"


def parse_round_and_index(match_id: str, fallback_round: int = 1) -> tuple[int, int]:
    """Extract ``(round, index)`` from an id such as ``u2_m3``."""
    found = ROUND_INDEX_PATTERN.match(str(match_id or ""))
    if not found:
        return to_int(fallback_round, 1), 1
    return int(found.group(1)), int(found.group(2))


def stage_for_prefix(prefix: str) -> str:
    """Map an id prefix to its stage name."""
    return PREFIX_STAGES.get(prefix, STAGE_PLAYOFF)


def slot_for_index(index: int) -> str:
    """Odd positions feed the next match's team A, even ones team B."""
    return "teamA" if index % 2 == 1 else "teamB"


def other_slot(slot: str) -> str:
    """Return the opposite side of a match."""
    return "teamB" if slot == "teamA" else "teamA"


def get_terminal_stage(bracket_type: str | None) -> str:
    """Return the stage whose final decides the tournament."""
    if bracket_type == BRACKET_GROUP_PLAYOFF:
        return STAGE_PLAYOFF
    if bracket_type == BRACKET_DOUBLE_ELIMINATION:
        return STAGE_GRAND_FINAL
    return STAGE_SINGLE


def _status_for(match: Match) -> str:
    return MATCH_PENDING if has_both_teams(match) else MATCH_WAITING


def _winner_snapshot(match: Match) -> TeamSnapshot | None:
    if match.get("winner"):
        return match["winner"]
    winner_id = match.get("winnerTeamId")
    for slot in ("teamA", "teamB"):
        if winner_id and team_id(match.get(slot)) == winner_id:
            return match[slot]  # type: ignore[literal-required]
    return None


def is_stage_final(board: MatchBoard, stage: str, round_num: int) -> bool:
    """Return True when a match of this round is the last one of its stage.

    A round with two or more active matches always feeds another round. With
    fewer, the round is final only if it is also the last round of the tree
    that was generated for the stage, so a round whose siblings have not been
    created yet is not mistaken for the final.
    """
    active = [m for m in board.in_round(stage, round_num) if has_any_team(m)]
    if len(active) > 1:
        return False
    expected = board.expected_rounds(stage)
    return expected is None or round_num >= expected


def place_team(
    board: MatchBoard,
    match_id: str,
    round_num: int,
    stage: str,
    slot: str,
    team: TeamSnapshot | None,
    now: int,
) -> Match:
    """Upsert a match with ``team`` in ``slot`` and refresh its status."""
    existing = board.get(match_id)
    if existing is None:
        match = new_match(match_id, round_num, stage, now, **{slot: team})
        match["status"] = _status_for(match)
        return board.put(match)
    if is_completed(existing):
        logging.warning(f"Match {match_id} is already completed; {slot} left as is.")
        return existing
    existing[slot] = team  # type: ignore[literal-required]
    return board.update(match_id, status=_status_for(existing), updatedAt=now)


def advance_tree_match(
    board: MatchBoard,
    match_id: str,
    winner: TeamSnapshot | None,
    fallback_round: int = 1,
    prefix: str = "r",
    now: int | None = None,
) -> str | None:
    """Move a winner into the next match of its tree.

    Returns the next match id, or None when the match was the stage final.
    """
    now = now_ms() if now is None else now
    round_num, index = parse_round_and_index(match_id, fallback_round)
    stage = stage_for_prefix(prefix)
    if is_stage_final(board, stage, round_num):
        return None

    next_id = f"{prefix}{round_num + 1}_m{math.ceil(index / 2)}"
    place_team(board, next_id, round_num + 1, stage, slot_for_index(index), winner, now)
    return next_id


class _Progression:
    """Worklist runner shared by the completed and double-forfeit entry points."""

    def __init__(self, board: MatchBoard, now: int) -> None:
        self.board = board
        self.now = now
        self.queue: deque[str] = deque()
        self.double = board.tournament.get(
            "bracketType"
        ) == BRACKET_DOUBLE_ELIMINATION or bool(board.in_round(STAGE_UPPER, 1))

    def run(self, match_id: str) -> str | None:
        first_next: str | None = None
        first = True
        self.queue.append(match_id)
        while self.queue:
            while self.queue:
                current = self.queue.popleft()
                next_id = self._step(current)
                if first:
                    first_next, first = next_id, False
            if self.double:
                self._settle_double_elimination()
        return first_next

    def _step(self, match_id: str) -> str | None:
        match = self.board.get(match_id)
        if not is_completed(match):
            return None
        if is_void(match):
            return self._progress_void(match)  # type: ignore[arg-type]
        return self._progress_win(match)  # type: ignore[arg-type]

    # Completed with a winner

    def _progress_win(self, match: Match) -> str | None:
        stage = match.get("stage")
        winner = _winner_snapshot(match)
        if stage == STAGE_GROUP:
            return None
        if stage == STAGE_GRAND_FINAL:
            self._crown(winner)
            return None
        if stage == STAGE_LOWER:
            return self._advance_lower(match, winner)

        prefix = STAGE_PREFIXES.get(str(stage), "p")
        next_id = advance_tree_match(
            self.board,
            match["id"],
            winner,
            to_int(match.get("round"), 1),
            prefix,
            self.now,
        )
        if stage == STAGE_UPPER:
            self._drop_to_lower(match)
            if next_id is None:
                self.board.update_tournament(upperChampion=winner)
        elif next_id is None:
            self._crown(winner)
        if next_id is not None:
            self._check_walkover(next_id, prefix)
        return next_id

    def _crown(self, winner: TeamSnapshot | None) -> None:
        self.board.update_tournament(champion=winner, endsAt=self.now)
        logging.info(f"Champion decided: {team_id(winner) or 'none'}")

    def _check_walkover(self, next_id: str, prefix: str) -> None:
        """Award the next match when its other source ended without a winner."""
        nxt = self.board.get(next_id)
        if nxt is None or is_completed(nxt) or has_both_teams(nxt):
            return
        round_num, index = parse_round_and_index(next_id)
        for slot in ("teamA", "teamB"):
            if not team_id(nxt.get(slot)):
                continue
            source_index = 2 * index if slot == "teamA" else 2 * index - 1
            source_id = f"{prefix}{round_num - 1}_m{source_index}"
            if is_void(self.board.get(source_id)):
                self._award_walkover(next_id, slot, source_id)
            return

    def _award_walkover(self, match_id: str, winner_slot: str, source_id: str) -> None:
        match = self.board.get(match_id)
        winner = match[winner_slot]  # type: ignore[index]
        self.board.update(
            match_id,
            status=MATCH_COMPLETED,
            winnerTeamId=team_id(winner),
            winner=winner,
            loser=None,
            teamAScore=1 if winner_slot == "teamA" else 0,
            teamBScore=1 if winner_slot == "teamB" else 0,
            forfeit={
                "type": FORFEIT_OPPONENT_ABSENT,
                "sourceMatchId": source_id,
                "at": self.now,
            },
            finishedAt=self.now,
            updatedAt=self.now,
        )
        self.queue.append(match_id)

    # Completed without a winner

    def _progress_void(self, match: Match) -> str | None:
        stage = match.get("stage")
        if stage == STAGE_GROUP or stage == STAGE_LOWER:
            return None
        if stage == STAGE_GRAND_FINAL:
            self.board.update_tournament(champion=None, endsAt=self.now)
            return None

        prefix = STAGE_PREFIXES.get(str(stage), "p")
        round_num, index = parse_round_and_index(match["id"], to_int(match.get("round"), 1))
        if is_stage_final(self.board, str(stage), round_num):
            if stage != STAGE_UPPER:
                self.board.update_tournament(champion=None, endsAt=self.now)
                logging.info("Final ended in a double forfeit; no champion.")
            return None

        next_id = f"{prefix}{round_num + 1}_m{math.ceil(index / 2)}"
        nxt = self.board.get(next_id)
        if nxt is None:
            nxt = self.board.put(new_match(next_id, round_num + 1, str(stage), self.now))
        if is_completed(nxt):
            return next_id

        opposing = other_slot(slot_for_index(index))
        if team_id(nxt.get(opposing)):
            self._award_walkover(next_id, opposing, match["id"])
            return next_id

        sibling_index = index + 1 if index % 2 == 1 else index - 1
        sibling_id = f"{prefix}{round_num}_m{sibling_index}"
        if is_void(self.board.get(sibling_id)):
            self._void_match(next_id, sorted([match["id"], sibling_id]))
        return next_id

    def _void_match(self, match_id: str, source_ids: list[str]) -> None:
        self.board.update(
            match_id,
            status=MATCH_COMPLETED,
            winnerTeamId=None,
            winner=None,
            loser=None,
            teamAScore=0,
            teamBScore=0,
            forfeit={
                "type": FORFEIT_DOUBLE_BOTH_SOURCES,
                "sourceMatchIds": source_ids,
                "at": self.now,
            },
            finishedAt=self.now,
            updatedAt=self.now,
        )
        self.queue.append(match_id)

    # Double elimination

    def _upper_rounds(self) -> int:
        return self.board.expected_rounds(STAGE_UPPER) or 1

    def _lower_rounds(self) -> int:
        return 2 * (self._upper_rounds() - 1)

    def _lower_count(self, lower_round: int) -> int:
        return 2 ** max(0, self._upper_rounds() - (lower_round + 1) // 2 - 1)

    def _drop_to_lower(self, match: Match) -> None:
        """Send an upper bracket loser to the lower match of its upper round."""
        loser = match.get("loser")
        if not team_id(loser):
            return
        upper_round, index = parse_round_and_index(match["id"], to_int(match.get("round"), 1))
        if self._lower_rounds() == 0:
            self.board.update_tournament(lowerChampion=loser)
            return
        if upper_round == 1:
            lower_round, lower_index, slot = 1, math.ceil(index / 2), slot_for_index(index)
        else:
            lower_round, lower_index, slot = 2 * (upper_round - 1), index, "teamB"
        place_team(
            self.board,
            f"l{lower_round}_m{lower_index}",
            lower_round,
            STAGE_LOWER,
            slot,
            loser,
            self.now,
        )

    def _advance_lower(self, match: Match, winner: TeamSnapshot | None) -> str | None:
        lower_round, index = parse_round_and_index(match["id"], to_int(match.get("round"), 1))
        if lower_round >= self._lower_rounds():
            self.board.update_tournament(lowerChampion=winner)
            return None
        if lower_round % 2 == 1:
            next_index, slot = index, "teamA"
        else:
            next_index, slot = math.ceil(index / 2), slot_for_index(index)
        next_id = f"l{lower_round + 1}_m{next_index}"
        place_team(self.board, next_id, lower_round + 1, STAGE_LOWER, slot, winner, self.now)
        return next_id

    def _lower_source(self, lower_round: int, index: int, slot: str) -> tuple[str, int, int]:
        """Return (stage, round, index) of the match that feeds a lower slot."""
        if lower_round == 1:
            return STAGE_UPPER, 1, 2 * index - 1 if slot == "teamA" else 2 * index
        if lower_round % 2 == 0:
            if slot == "teamA":
                return STAGE_LOWER, lower_round - 1, index
            return STAGE_UPPER, lower_round // 2 + 1, index
        return STAGE_LOWER, lower_round - 1, 2 * index - 1 if slot == "teamA" else 2 * index

    def _lower_slot_state(self, lower_round: int, index: int, slot: str) -> str:
        match = self.board.get(f"l{lower_round}_m{index}")
        if match is not None and team_id(match.get(slot)):
            return _TEAM
        stage, source_round, source_index = self._lower_source(lower_round, index, slot)
        if stage == STAGE_UPPER:
            source = self.board.get(f"u{source_round}_m{source_index}")
            if is_completed(source) and not team_id(source.get("loser")):  # type: ignore[union-attr]
                return _DEAD
            return _AWAITING
        return self._lower_match_state(source_round, source_index)

    def _lower_match_state(self, lower_round: int, index: int) -> str:
        """Whether a lower match will ever produce a winner."""
        match = self.board.get(f"l{lower_round}_m{index}")
        if match is not None:
            return _DEAD if is_void(match) else _AWAITING
        states = {
            self._lower_slot_state(lower_round, index, slot) for slot in ("teamA", "teamB")
        }
        return _DEAD if states == {_DEAD} else _AWAITING

    def _settle_double_elimination(self) -> None:
        for lower_round in range(1, self._lower_rounds() + 1):
            for index in range(1, self._lower_count(lower_round) + 1):
                match_id = f"l{lower_round}_m{index}"
                match = self.board.get(match_id)
                if is_completed(match):
                    continue
                state_a = self._lower_slot_state(lower_round, index, "teamA")
                state_b = self._lower_slot_state(lower_round, index, "teamB")
                if {state_a, state_b} == {_TEAM, _DEAD}:
                    slot = "teamA" if state_a == _TEAM else "teamB"
                    source_id = self._source_id(lower_round, index, other_slot(slot))
                    if is_void(self.board.get(source_id)):
                        self._award_walkover(match_id, slot, source_id)
                    else:
                        self._complete_bye(match_id, slot)
                elif state_a == state_b == _DEAD and match is not None:
                    sources = [
                        self._source_id(lower_round, index, slot) for slot in ("teamA", "teamB")
                    ]
                    self._void_match(match_id, sources)
        if not self.queue:
            self._finish_double_elimination()

    def _source_id(self, lower_round: int, index: int, slot: str) -> str:
        stage, source_round, source_index = self._lower_source(lower_round, index, slot)
        return f"{STAGE_PREFIXES[stage]}{source_round}_m{source_index}"

    def _complete_bye(self, match_id: str, slot: str) -> None:
        match = self.board.get(match_id)
        winner = match[slot]  # type: ignore[index]
        self.board.update(
            match_id,
            status=MATCH_COMPLETED,
            winnerTeamId=team_id(winner),
            winner=winner,
            loser=None,
            finishedAt=self.now,
            updatedAt=self.now,
        )
        self.queue.append(match_id)

    def _bracket_result(self, stage: str) -> tuple[str, TeamSnapshot | None]:
        """Read a bracket's result from its final match.

        The ``upperChampion``/``lowerChampion`` fields are only consulted when
        the board cannot tell, since a reset clears them while leaving
        completed finals outside its reach untouched.
        """
        upper_final = self.board.get(f"u{self._upper_rounds()}_m1")
        if stage == STAGE_UPPER:
            state: str = _AWAITING
            result = None
            if is_completed(upper_final):
                result = _winner_snapshot(upper_final)  # type: ignore[arg-type]
                state = _TEAM if result else _DEAD
            field = "upperChampion"
        else:
            lower_rounds = self._lower_rounds()
            if lower_rounds == 0:
                state, result = _AWAITING, None
                if is_completed(upper_final):
                    result = upper_final.get("loser")  # type: ignore[union-attr]
                    state = _TEAM if team_id(result) else _DEAD
            else:
                lower_final = self.board.get(f"l{lower_rounds}_m1")
                result = None
                if is_completed(lower_final):
                    result = _winner_snapshot(lower_final)  # type: ignore[arg-type]
                if result:
                    state = _TEAM
                else:
                    state = self._lower_match_state(lower_rounds, 1)
            field = "lowerChampion"

        recorded = self.board.tournament.get(field)
        if state == _AWAITING and team_id(recorded):
            return _TEAM, recorded
        if state == _TEAM and team_id(recorded) != team_id(result):
            self.board.update_tournament(**{field: result})
        return state, result

    def _finish_double_elimination(self) -> None:
        """Create the grand final, or decide the tournament without one."""
        if self.board.tournament.get("champion"):
            return
        upper_state, upper = self._bracket_result(STAGE_UPPER)
        lower_state, lower = self._bracket_result(STAGE_LOWER)

        if upper_state == _TEAM and lower_state == _TEAM:
            grand_final = self.board.get(GRAND_FINAL_MATCH_ID)
            if grand_final is None:
                self.board.put(
                    new_match(
                        GRAND_FINAL_MATCH_ID,
                        1,
                        STAGE_GRAND_FINAL,
                        self.now,
                        status=MATCH_PENDING,
                        teamA=upper,
                        teamB=lower,
                    )
                )
                logging.info("Grand final created.")
            elif not is_completed(grand_final) and not has_both_teams(grand_final):
                self.board.update(
                    GRAND_FINAL_MATCH_ID,
                    teamA=upper,
                    teamB=lower,
                    status=MATCH_PENDING,
                    updatedAt=self.now,
                )
        elif {upper_state, lower_state} == {_TEAM, _DEAD}:
            self._crown(upper if upper_state == _TEAM else lower)
        elif upper_state == lower_state == _DEAD and self.board.tournament.get("endsAt") is None:
            self.board.update_tournament(champion=None, endsAt=self.now)


def progress_completed_match(
    board: MatchBoard, match_id: str, now: int | None = None
) -> dict[str, Any]:
    """Propagate a match that was just completed with a winner."""
    now = now_ms() if now is None else now
    return {"nextMatchId": _Progression(board, now).run(match_id)}


def progress_double_forfeit_match(
    board: MatchBoard, match_id: str, now: int | None = None
) -> dict[str, Any]:
    """Propagate a match that was just completed without a winner."""
    now = now_ms() if now is None else now
    return {"nextMatchId": _Progression(board, now).run(match_id)}


def reconcile_tournament_completion(
    board: MatchBoard, now: int | None = None
) -> TeamSnapshot | None:
    """Re-record the champion when the terminal stage is fully decided.

    This is a best-effort repair for results that propagated without the
    champion write. It trusts the highest stored round of the terminal stage
    to be the final, which may not hold after uneven double forfeits.
    """
    now = now_ms() if now is None else now
    stage = get_terminal_stage(board.tournament.get("bracketType"))
    finals = board.in_round(stage, board.max_round(stage))
    if len(finals) != 1 or not is_completed(finals[0]):
        return None
    winner = _winner_snapshot(finals[0])
    if not winner:
        return None
    if team_id(board.tournament.get("champion")) != team_id(winner):
        board.update_tournament(champion=winner, endsAt=now)
        logging.info(f"Reconciled champion {team_id(winner)}.")
    return winner
