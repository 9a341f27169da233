"""Tournament registration, bracket generation and match orchestration."""

from .models import Tournament
from .services import TournamentService

__all__ = ["Tournament", "TournamentService"]
