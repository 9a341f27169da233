"""Data models for bracket registrations and matches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, TypedDict

from bracketeer.core.constants import ALLOWED_BEST_OF
from bracketeer.core.types import FirestoreDocument


class MemberSnapshot(TypedDict, total=False):
    """A team member frozen at registration time."""

    uid: str
    name: str
    avatarUrl: str | None
    elo: int
    fragpunkId: str | None
    role: str  # captain/player


class TeamSnapshot(TypedDict, total=False):
    """The team payload embedded into match slots and champion fields."""

    registrationId: str
    teamId: str
    teamName: str
    avatarUrl: str | None
    avgElo: int
    captainUid: str | None
    memberUids: list[str]
    members: list[MemberSnapshot]


class Registration(FirestoreDocument, total=False):
    """A registration document in the tournament sub-collection."""

    teamId: str
    teamName: str
    teamAvatarUrl: str | None
    captainUid: str
    memberUids: list[str]
    avgEloSnapshot: int
    membersSnapshot: list[dict[str, Any]]


class Forfeit(TypedDict, total=False):
    """Why a match was completed without being played."""

    type: str
    loserTeamId: str | None
    sourceMatchId: str
    sourceMatchIds: list[str]
    at: int


class MapScore(TypedDict):
    """The score of one map of a series."""

    teamAScore: int
    teamBScore: int


class Match(FirestoreDocument, total=False):
    """A match document in the tournament sub-collection."""

    round: int
    stage: str
    group: str
    status: str  # waiting/pending/completed
    teamA: TeamSnapshot | None
    teamB: TeamSnapshot | None
    winnerTeamId: str | None
    winner: TeamSnapshot | None
    loser: TeamSnapshot | None
    teamAScore: int
    teamBScore: int
    bestOf: int
    mapScores: list[MapScore]
    scheduledAt: int | None
    readyCheck: dict[str, Any] | None
    veto: dict[str, Any] | None
    forfeit: Forfeit | None
    finishedAt: int | None


class RankedRow(TypedDict):
    """A team's standing within its group."""

    teamId: str
    registration: Registration
    wins: int
    losses: int
    avgElo: int


class Group(TypedDict):
    """A group of registrations keyed by a letter."""

    key: str
    items: list[Registration]


@dataclass
class ResultSubmission:
    """Dataclass for a match result submission."""

    winner_team_id: str
    team_a_score: int | None = None
    team_b_score: int | None = None
    map_scores: list[dict[str, Any]] = field(default_factory=list)
    best_of: int | None = None

    def validate(self) -> str | None:
        """Return the first problem with the submission, if any."""
        if not str(self.winner_team_id or "").strip():
            return "winnerTeamId is required"
        if self.best_of is not None and self.best_of not in ALLOWED_BEST_OF:
            return "bestOf must be one of 1, 3, 5"
        if (self.team_a_score or 0) < 0 or (self.team_b_score or 0) < 0:
            return "Scores cannot be negative"
        return None
