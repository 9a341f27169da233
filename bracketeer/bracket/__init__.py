"""Bracket generation and progression."""

from .board import MatchBoard
from .models import Match, Registration, TeamSnapshot

__all__ = ["Match", "MatchBoard", "Registration", "TeamSnapshot"]
