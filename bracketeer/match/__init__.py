"""Match setup protocol: ready check and map veto."""

from .models import ReadyCheck, Veto, VetoState

__all__ = ["ReadyCheck", "Veto", "VetoState"]
