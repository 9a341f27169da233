"""Core data types for the bracketeer engine."""

from typing import Any, TypedDict


class _FirestoreDocumentBase(TypedDict):
    id: str


class FirestoreDocument(_FirestoreDocumentBase, total=False):
    """Generic Firestore document structure."""

    createdAt: Any
    updatedAt: Any


class EngineOutcome(TypedDict, total=False):
    """Structured result returned by engine operations instead of raising."""

    ok: bool
    error: str
    status: int
