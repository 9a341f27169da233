"""In-memory snapshot of a tournament's matches for one transaction."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any

from bracketeer.core.constants import MATCH_COMPLETED

from .builder import next_power_of_two
from .models import Match


def has_any_team(match: Mapping[str, Any] | None) -> bool:
    """Return True when at least one side of the match holds a team."""
    if not match:
        return False
    return bool(
        (match.get("teamA") or {}).get("teamId")
        or (match.get("teamB") or {}).get("teamId")
    )


def has_both_teams(match: Mapping[str, Any] | None) -> bool:
    """Return True when both sides of the match hold a team."""
    if not match:
        return False
    return bool(
        (match.get("teamA") or {}).get("teamId")
        and (match.get("teamB") or {}).get("teamId")
    )


def team_id(team: Mapping[str, Any] | None) -> str | None:
    """Return a snapshot's team id, or None for an empty slot."""
    if not team:
        return None
    return team.get("teamId") or None


def is_completed(match: Mapping[str, Any] | None) -> bool:
    """Return True when the match is completed."""
    return bool(match) and match.get("status") == MATCH_COMPLETED  # type: ignore[union-attr]


def is_void(match: Mapping[str, Any] | None) -> bool:
    """Return True for a completed match that produced no winner."""
    return is_completed(match) and not match.get("winnerTeamId")  # type: ignore[union-attr]


class MatchBoard:
    """Holds a tournament and all of its matches while the engine works on them.

    The board is loaded once per transaction. Engine functions read and write
    matches through it, and the caller persists ``changed_matches()``,
    ``deleted_match_ids()`` and ``tournament_updates`` afterwards.
    """

    def __init__(
        self,
        tournament: Mapping[str, Any] | None = None,
        matches: Iterable[Mapping[str, Any]] = (),
    ) -> None:
        """Initialize the board with deep copies of the given documents."""
        self.tournament: dict[str, Any] = copy.deepcopy(dict(tournament or {}))
        self._matches: dict[str, Match] = {}
        for match in matches:
            doc = copy.deepcopy(dict(match))
            self._matches[str(doc["id"])] = doc  # type: ignore[assignment]
        self._changed: set[str] = set()
        self._deleted: set[str] = set()
        self.tournament_updates: dict[str, Any] = {}

    @classmethod
    def from_snapshots(cls, tournament_snap: Any, match_snaps: Iterable[Any]) -> MatchBoard:
        """Build a board from Firestore document snapshots."""
        tournament = tournament_snap.to_dict() or {}
        tournament["id"] = tournament_snap.id
        matches = []
        for snap in match_snaps:
            data = snap.to_dict() or {}
            data["id"] = snap.id
            matches.append(data)
        return cls(tournament, matches)

    # Reads

    def get(self, match_id: str) -> Match | None:
        """Return the match with the given id, or None."""
        return self._matches.get(match_id)

    def __contains__(self, match_id: object) -> bool:
        return match_id in self._matches

    def all(self, stage: str | None = None) -> list[Match]:
        """Return every match, optionally restricted to one stage."""
        matches = list(self._matches.values())
        if stage is not None:
            matches = [m for m in matches if m.get("stage") == stage]
        return sorted(matches, key=lambda m: m["id"])

    def in_round(self, stage: str, round_num: int) -> list[Match]:
        """Return the matches of one stage and round."""
        return [m for m in self.all(stage) if m.get("round") == round_num]

    def max_round(self, stage: str) -> int:
        """Return the highest round number stored for a stage (0 if none)."""
        return max((int(m.get("round") or 0) for m in self.all(stage)), default=0)

    def expected_rounds(self, stage: str) -> int | None:
        """Return the depth of a generated tree stage, from its first round."""
        first_round = len(self.in_round(stage, 1))
        if first_round == 0:
            return None
        size = next_power_of_two(first_round * 2)
        return size.bit_length() - 1

    # Writes

    def put(self, match: Match) -> Match:
        """Insert or replace a match and mark it changed."""
        match_id = str(match["id"])
        self._matches[match_id] = match
        self._changed.add(match_id)
        self._deleted.discard(match_id)
        return match

    def update(self, match_id: str, **fields: Any) -> Match:
        """Apply field changes to an existing match and mark it changed."""
        match = self._matches[match_id]
        match.update(fields)  # type: ignore[typeddict-item]
        self._changed.add(match_id)
        return match

    def delete(self, match_id: str) -> None:
        """Remove a match from the board."""
        if self._matches.pop(match_id, None) is not None:
            self._deleted.add(match_id)
        self._changed.discard(match_id)

    def update_tournament(self, **fields: Any) -> None:
        """Record tournament field changes."""
        self.tournament.update(fields)
        self.tournament_updates.update(fields)

    def checkpoint(self) -> dict[str, Any]:
        """Return a copy of the board state that ``restore`` can roll back to."""
        return copy.deepcopy(
            {
                "tournament": self.tournament,
                "matches": self._matches,
                "changed": self._changed,
                "deleted": self._deleted,
                "tournament_updates": self.tournament_updates,
            }
        )

    def restore(self, saved: Mapping[str, Any]) -> None:
        """Roll the board back to a checkpoint, keeping match dicts in place."""
        saved = copy.deepcopy(dict(saved))
        matches: dict[str, Match] = {}
        for match_id, doc in saved["matches"].items():
            current = self._matches.get(match_id)
            if current is not None:
                current.clear()
                current.update(doc)
                doc = current
            matches[match_id] = doc
        self._matches = matches
        self.tournament.clear()
        self.tournament.update(saved["tournament"])
        self._changed = saved["changed"]
        self._deleted = saved["deleted"]
        self.tournament_updates = saved["tournament_updates"]

    def changed_matches(self) -> list[Match]:
        """Return the matches that must be written back."""
        return [self._matches[mid] for mid in sorted(self._changed)]

    def deleted_match_ids(self) -> list[str]:
        """Return the ids of matches that must be deleted."""
        return sorted(self._deleted)

    def has_changes(self) -> bool:
        """Return True when anything needs persisting."""
        return bool(self._changed or self._deleted or self.tournament_updates)
