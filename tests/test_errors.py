"""Tests for engine errors and their JSON handlers."""

from __future__ import annotations

import unittest

from bracketeer import create_app
from bracketeer.errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    raise_for_outcome,
)


class RaiseForOutcomeTestCase(unittest.TestCase):
    """Test case for mapping engine outcomes to exceptions."""

    def test_ok_outcome_is_returned(self) -> None:
        outcome = {"ok": True, "nextMatchId": "r2_m1"}

        self.assertIs(raise_for_outcome(outcome), outcome)

    def test_status_picks_error_class(self) -> None:
        cases = [
            (400, ValidationError),
            (403, ForbiddenError),
            (404, NotFoundError),
            (409, ConflictError),
        ]
        for status, error_cls in cases:
            with self.subTest(status=status):
                with self.assertRaises(error_cls) as ctx:
                    raise_for_outcome({"ok": False, "error": "nope", "status": status})
                self.assertEqual(ctx.exception.message, "nope")
                self.assertEqual(ctx.exception.status_code, status)

    def test_unknown_status_and_defaults(self) -> None:
        with self.assertRaises(AppError) as ctx:
            raise_for_outcome({"ok": False, "error": "teapot", "status": 418})
        self.assertEqual(ctx.exception.status_code, 418)

        with self.assertRaises(ValidationError) as ctx:
            raise_for_outcome({"ok": False})
        self.assertEqual(ctx.exception.message, "Request failed.")


class ErrorHandlersTestCase(unittest.TestCase):
    """Test case for the JSON error handlers."""

    def setUp(self) -> None:
        self.app = create_app({"TESTING": True})

        @self.app.route("/raise/<kind>")
        def raise_error(kind):
            errors = {
                "conflict": ConflictError("Match already completed"),
                "forbidden": ForbiddenError("Only captains can use ban/pick"),
                "missing": NotFoundError("Match not found"),
                "app": AppError("Boom", 500),
            }
            raise errors[kind]

        self.client = self.app.test_client()

    def test_handlers_return_json(self) -> None:
        cases = [
            ("conflict", 409, "Match already completed"),
            ("forbidden", 403, "Only captains can use ban/pick"),
            ("missing", 404, "Match not found"),
            ("app", 500, "Boom"),
        ]
        for kind, status, message in cases:
            with self.subTest(kind=kind):
                response = self.client.get(f"/raise/{kind}")
                self.assertEqual(response.status_code, status)
                self.assertEqual(response.get_json(), {"ok": False, "error": message})


if __name__ == "__main__":
    unittest.main()
