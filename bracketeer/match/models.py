"""Data models for the match setup protocol (ready check and map veto)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TypedDict

from bracketeer.core.constants import VETO_DONE, VETO_PENDING


class ReadyCheck(TypedDict, total=False):
    """The readiness window persisted on a match."""

    status: str  # waiting/in_progress/ready/ready_countdown/expired
    windowStartAt: int
    deadlineAt: int
    vetoOpensAt: Optional[int]
    teamAReady: bool
    teamBReady: bool
    teamAReadyAt: Optional[int]
    teamBReadyAt: Optional[int]
    updatedAt: Optional[int]


class VetoStep(TypedDict):
    """One entry of the veto history."""

    idx: int
    action: str  # ban/pick/decider
    map: str
    teamId: str
    uid: str
    auto: bool
    at: int


class Veto(TypedDict, total=False):
    """The serialized veto persisted on a match."""

    mode: str
    bestOf: int
    script: list[str]
    status: str  # pending/done
    done: bool
    availableMaps: list[str]
    history: list[VetoStep]
    picks: list[str]
    decider: str
    seriesMaps: list[str]
    stepIndex: int
    nextAction: str
    nextTeamId: str
    openedAt: int
    turnStartedAt: Optional[int]
    updatedAt: int
    teamAId: str
    teamBId: str


@dataclass
class VetoState:
    """Working copy of a veto, rebuilt from the match on every call."""

    best_of: int
    script: list[str]
    team_a_id: str
    team_b_id: str
    available_maps: list[str]
    history: list[VetoStep] = field(default_factory=list)
    picks: list[str] = field(default_factory=list)
    decider: str = ""
    step_index: int = 0
    next_action: str = ""
    next_team_id: str = ""
    opened_at: int = 0
    turn_started_at: Optional[int] = None
    done: bool = False
    updated_at: int = 0

    @property
    def status(self) -> str:
        """Return the persisted status of the veto."""
        return VETO_DONE if self.done else VETO_PENDING

    def mark_done(self) -> None:
        """Close the veto."""
        self.done = True
        self.next_action = VETO_DONE
        self.next_team_id = ""
        self.turn_started_at = None
