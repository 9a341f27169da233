"""Core module for the bracketeer engine."""

from .types import EngineOutcome, FirestoreDocument

__all__ = ["EngineOutcome", "FirestoreDocument"]
