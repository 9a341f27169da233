"""Common utilities for tests."""

from __future__ import annotations

import unittest.mock
from typing import Any, Callable

from mockfirestore import CollectionReference
from mockfirestore.document import DocumentReference


def patch_mockfirestore() -> None:
    """Apply monkeypatches so mockfirestore accepts transactional reads."""

    if not hasattr(DocumentReference, "_orig_get"):
        DocumentReference._orig_get = DocumentReference.get

        def doc_get(self: Any, field_paths: Any = None, transaction: Any = None) -> Any:
            return self._orig_get()

        DocumentReference.get = doc_get

    if not hasattr(CollectionReference, "_orig_stream"):
        CollectionReference._orig_stream = CollectionReference.stream

        def collection_stream(self: Any, transaction: Any = None) -> Any:
            return self._orig_stream()

        CollectionReference.stream = collection_stream

    def doc_ref_eq(self: Any, other: Any) -> bool:
        if not isinstance(other, DocumentReference):
            return False
        return self._path == other._path

    if not hasattr(DocumentReference, "_orig_eq"):
        DocumentReference._orig_eq = DocumentReference.__eq__
        DocumentReference.__eq__ = doc_ref_eq
        DocumentReference.__hash__ = lambda self: hash(tuple(self._path))


class MockTransaction:
    """Buffers writes and applies them to the mock database on commit."""

    def __init__(self, db: Any) -> None:
        self.db = db
        self.writes: list[tuple[str, Any, Any]] = []
        self.commit = unittest.mock.MagicMock(side_effect=self._real_commit)
        self.rollback = unittest.mock.MagicMock(side_effect=self.writes.clear)

    def set(self, ref: Any, data: Any, merge: bool = False) -> None:
        self.writes.append(("set", ref, data))

    def update(self, ref: Any, data: Any) -> None:
        self.writes.append(("update", ref, data))

    def delete(self, ref: Any) -> None:
        self.writes.append(("delete", ref, None))

    def _real_commit(self) -> None:
        for op, ref, data in self.writes:
            if op == "set":
                ref.set(data)
            elif op == "update":
                ref.update(data)
            else:
                ref.delete()
        self.writes.clear()


def mock_transactional(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Stand-in for ``firestore.transactional`` that commits on success."""

    def wrapper(transaction: MockTransaction, *args: Any, **kwargs: Any) -> Any:
        try:
            result = fn(transaction, *args, **kwargs)
        except Exception:
            transaction.rollback()
            raise
        transaction.commit()
        return result

    return wrapper


def make_registration(team_id: str, elo: int = 500, **fields: Any) -> dict[str, Any]:
    """Return a registration document for a single-member team."""
    registration = {
        "id": team_id,
        "teamId": team_id,
        "teamName": f"Team {team_id}",
        "captainUid": f"{team_id}-captain",
        "memberUids": [f"{team_id}-captain"],
        "avgEloSnapshot": elo,
        "membersSnapshot": [
            {"uid": f"{team_id}-captain", "name": f"Captain {team_id}", "elo": elo}
        ],
    }
    registration.update(fields)
    return registration


def make_registrations(count: int) -> list[dict[str, Any]]:
    """Return ``count`` registrations t1..tN, t1 seeded strongest."""
    return [make_registration(f"t{i}", 2000 - i * 10) for i in range(1, count + 1)]


def make_team(team_id: str) -> dict[str, Any]:
    """Return a minimal team snapshot for a match slot."""
    return {"teamId": team_id, "teamName": f"Team {team_id}", "captainUid": f"{team_id}-captain"}
