"""Tests for result submission and match settings."""

from __future__ import annotations

import unittest
from unittest.mock import patch

from bracketeer.bracket.builder import new_match
from bracketeer.bracket.models import ResultSubmission
from bracketeer.bracket.results import (
    build_series_outcome,
    effective_best_of,
    normalize_map_scores,
    record_match_result,
    update_match_settings,
)
from bracketeer.utils import to_millis
from tests.helpers import NOW, play_out, single_board


class ResultSubmissionTestCase(unittest.TestCase):
    """Test case for recording match results."""

    def setUp(self) -> None:
        self.board = single_board(4)

    def test_record_sets_winner_and_loser(self) -> None:
        outcome = record_match_result(
            self.board,
            "r1_m1",
            ResultSubmission(winner_team_id="t4", team_a_score=0, team_b_score=1),
            NOW,
        )

        self.assertTrue(outcome["ok"])
        self.assertFalse(outcome["alreadyCompleted"])
        self.assertEqual(outcome["nextMatchId"], "r2_m1")
        self.assertEqual(outcome["affectedTeamIds"], ["t1", "t4"])
        match = self.board.get("r1_m1")
        self.assertEqual(match["status"], "completed")
        self.assertEqual(match["winner"]["teamId"], "t4")
        self.assertEqual(match["loser"]["teamId"], "t1")
        self.assertEqual(match["teamBScore"], 1)
        self.assertEqual(match["finishedAt"], NOW)

    def test_same_winner_twice_is_a_no_op(self) -> None:
        submission = ResultSubmission(winner_team_id="t1")
        record_match_result(self.board, "r1_m1", submission, NOW)
        changed_before = [m["id"] for m in self.board.changed_matches()]

        outcome = record_match_result(self.board, "r1_m1", submission, NOW + 10)

        self.assertTrue(outcome["ok"])
        self.assertTrue(outcome["alreadyCompleted"])
        self.assertIsNone(outcome["nextMatchId"])
        self.assertEqual(self.board.get("r1_m1")["finishedAt"], NOW)
        self.assertEqual([m["id"] for m in self.board.changed_matches()], changed_before)

    def test_different_winner_rejected(self) -> None:
        record_match_result(self.board, "r1_m1", ResultSubmission(winner_team_id="t1"), NOW)

        outcome = record_match_result(
            self.board, "r1_m1", ResultSubmission(winner_team_id="t4"), NOW
        )

        self.assertFalse(outcome["ok"])
        self.assertEqual(outcome["status"], 409)
        self.assertEqual(self.board.get("r1_m1")["winnerTeamId"], "t1")

    def test_winner_must_play_in_match(self) -> None:
        outcome = record_match_result(
            self.board, "r1_m1", ResultSubmission(winner_team_id="t2"), NOW
        )

        self.assertEqual(outcome["status"], 400)
        self.assertEqual(outcome["error"], "winnerTeamId must be teamA or teamB")

    def test_missing_opponent_rejected(self) -> None:
        board = single_board(3)

        outcome = record_match_result(board, "r2_m1", ResultSubmission(winner_team_id="t1"), NOW)

        self.assertEqual(outcome["status"], 409)

    def test_unknown_match(self) -> None:
        outcome = record_match_result(
            self.board, "r7_m1", ResultSubmission(winner_team_id="t1"), NOW
        )

        self.assertEqual(outcome["status"], 404)

    def test_submission_validation(self) -> None:
        cases = [
            (ResultSubmission(winner_team_id=""), "winnerTeamId is required"),
            (ResultSubmission(winner_team_id="t1", best_of=2), "bestOf must be one of 1, 3, 5"),
            (ResultSubmission(winner_team_id="t1", team_a_score=-1), "Scores cannot be negative"),
        ]
        for submission, message in cases:
            with self.subTest(message=message):
                outcome = record_match_result(self.board, "r1_m1", submission, NOW)
                self.assertEqual(outcome["status"], 400)
                self.assertEqual(outcome["error"], message)

    def test_series_from_map_scores(self) -> None:
        submission = ResultSubmission(
            winner_team_id="t1",
            best_of=3,
            map_scores=[
                {"teamAScore": 13, "teamBScore": 7},
                {"teamAScore": 5, "teamBScore": 13},
                {"teamAScore": 13, "teamBScore": 11},
            ],
        )

        outcome = record_match_result(self.board, "r1_m1", submission, NOW)

        self.assertTrue(outcome["ok"])
        match = self.board.get("r1_m1")
        self.assertEqual((match["teamAScore"], match["teamBScore"]), (2, 1))
        self.assertEqual(len(match["mapScores"]), 3)
        self.assertEqual(match["bestOf"], 3)

    def test_series_score_without_maps(self) -> None:
        self.board.update("r1_m1", bestOf=3)

        undecided = record_match_result(
            self.board,
            "r1_m1",
            ResultSubmission(winner_team_id="t1", team_a_score=1, team_b_score=0),
            NOW,
        )
        decided = record_match_result(
            self.board,
            "r1_m1",
            ResultSubmission(winner_team_id="t1", team_a_score=2, team_b_score=1),
            NOW,
        )

        self.assertEqual(undecided["error"], "Invalid series score for selected bestOf")
        self.assertTrue(decided["ok"])

    def test_failed_progression_is_rolled_back(self) -> None:
        def half_progress(board, match_id, now):
            board.put(new_match("r2_m1", 2, "single", now, teamA=board.get(match_id)["winner"]))
            board.update_tournament(champion={"teamId": "t1"})
            raise RuntimeError("lost connection")

        with patch(
            "bracketeer.bracket.results.progress_completed_match", side_effect=half_progress
        ), self.assertLogs(level="ERROR") as logs:
            outcome = record_match_result(
                self.board, "r1_m1", ResultSubmission(winner_team_id="t1"), NOW
            )

        self.assertTrue(outcome["ok"])
        self.assertIsNone(outcome["nextMatchId"])
        self.assertIn("lost connection", logs.output[0])
        self.assertEqual(self.board.get("r1_m1")["status"], "completed")
        self.assertEqual(self.board.get("r1_m1")["winnerTeamId"], "t1")
        self.assertIsNone(self.board.get("r2_m1"))
        self.assertNotIn("champion", self.board.tournament_updates)
        self.assertEqual([m["id"] for m in self.board.changed_matches()], ["r1_m1"])


class SeriesOutcomeTestCase(unittest.TestCase):
    """Test case for deriving a series from map scores."""

    match = {"teamA": {"teamId": "a"}, "teamB": {"teamId": "b"}}

    def test_effective_best_of(self) -> None:
        self.assertEqual(effective_best_of(3), 3)
        self.assertEqual(effective_best_of("5"), 5)
        self.assertEqual(effective_best_of(4), 1)
        self.assertEqual(effective_best_of(None), 1)

    def test_normalize_drops_ties_and_clamps(self) -> None:
        rows = normalize_map_scores(
            [
                {"teamAScore": 10, "teamBScore": 10},
                {"teamAScore": -3, "teamBScore": 4},
                "junk",
                {"teamAScore": "13", "teamBScore": 2},
            ]
        )

        self.assertEqual(
            rows,
            [{"teamAScore": 0, "teamBScore": 4}, {"teamAScore": 13, "teamBScore": 2}],
        )
        self.assertEqual(normalize_map_scores(None), [])

    def test_winner_must_match_maps(self) -> None:
        maps = [{"teamAScore": 2, "teamBScore": 13}, {"teamAScore": 9, "teamBScore": 13}]

        mismatch = build_series_outcome(self.match, "a", maps, 3)
        outcome = build_series_outcome(self.match, "b", maps, 3)

        self.assertEqual(mismatch["error"], "Winner does not match map scores")
        self.assertEqual((outcome["teamAScore"], outcome["teamBScore"]), (0, 2))

    def test_undecided_series(self) -> None:
        outcome = build_series_outcome(
            self.match, "a", [{"teamAScore": 13, "teamBScore": 1}], 3
        )

        self.assertEqual(outcome["error"], "Series winner is not determined by map scores")

    def test_maps_required(self) -> None:
        outcome = build_series_outcome(self.match, "a", [], 1)

        self.assertEqual(outcome["error"], "Map scores are required")


class MatchSettingsTestCase(unittest.TestCase):
    """Test case for schedule and best-of edits."""

    def setUp(self) -> None:
        self.board = single_board(4)
        self.board.update(
            "r1_m1",
            scheduledAt=NOW,
            readyCheck={"teamAReady": True},
            veto={"status": "pending"},
        )

    def test_schedule_from_iso_string(self) -> None:
        outcome = update_match_settings(
            self.board, "r1_m1", {"scheduledAt": "2026-01-01T00:00:00Z"}, NOW
        )

        self.assertTrue(outcome["ok"])
        match = self.board.get("r1_m1")
        self.assertEqual(match["scheduledAt"], 1_767_225_600_000)
        self.assertEqual(match["scheduledAt"], to_millis("2026-01-01T00:00:00+00:00"))
        self.assertIsNone(match["readyCheck"])
        self.assertIsNone(match["veto"])

    def test_clear_schedule(self) -> None:
        update_match_settings(self.board, "r1_m1", {"scheduledAt": ""}, NOW)

        self.assertIsNone(self.board.get("r1_m1")["scheduledAt"])

    def test_best_of_resets_veto_only(self) -> None:
        update_match_settings(self.board, "r1_m1", {"bestOf": 3}, NOW)

        match = self.board.get("r1_m1")
        self.assertEqual(match["bestOf"], 3)
        self.assertIsNone(match["veto"])
        self.assertEqual(match["readyCheck"], {"teamAReady": True})
        self.assertEqual(match["scheduledAt"], NOW)

    def test_rejections(self) -> None:
        cases = [
            ({}, 400),
            ({"scheduledAt": "not a date"}, 400),
            ({"bestOf": 2}, 400),
        ]
        for changes, status in cases:
            with self.subTest(changes=changes):
                outcome = update_match_settings(self.board, "r1_m1", changes, NOW)
                self.assertEqual(outcome["status"], status)

        self.assertEqual(
            update_match_settings(self.board, "r9_m1", {"bestOf": 3}, NOW)["status"], 404
        )

    def test_completed_match_locked(self) -> None:
        play_out(self.board)

        outcome = update_match_settings(self.board, "r1_m1", {"bestOf": 5}, NOW)

        self.assertEqual(outcome["status"], 409)
        self.assertEqual(outcome["error"], "Cannot edit completed match")


if __name__ == "__main__":
    unittest.main()
