"""Data models for tournaments."""

from __future__ import annotations

from typing import Any, TypedDict

from bracketeer.bracket.models import TeamSnapshot
from bracketeer.core.types import FirestoreDocument


class Requirements(TypedDict, total=False):
    """Entry requirements checked against every member at registration."""

    minElo: int
    minMatches: int


class Tournament(FirestoreDocument, total=False):
    """A tournament document in Firestore."""

    title: str
    bracketType: str  # single_elimination/double_elimination/group_playoff
    teamFormat: str  # 1x1/2x2/3x3/5x5
    maxTeams: int
    registeredTeams: int
    requirements: Requirements
    mapPool: list[str]
    startsAt: Any
    endsAt: Any
    champion: TeamSnapshot | None
    upperChampion: TeamSnapshot | None
    lowerChampion: TeamSnapshot | None


class TeamEntry(TypedDict, total=False):
    """A team (or solo player) as handed to registration."""

    teamId: str
    name: str
    avatarUrl: str
    captainUid: str
    memberUids: list[str]


class MemberProfile(TypedDict, total=False):
    """The profile stats of one member at registration time."""

    uid: str
    name: str
    avatarUrl: str
    elo: int
    matches: int
    fragpunkId: str
