"""Tests for bracket generation."""

from __future__ import annotations

import unittest

from bracketeer.bracket.builder import (
    build_elimination_tree_matches,
    build_group_matches,
    build_groups,
    next_power_of_two,
    normalize_team_from_registration,
    rank_group,
    select_playoff_qualifiers,
)
from tests.conftest import make_registration, make_registrations

NOW = 1_700_000_000_000


class BuilderTestCase(unittest.TestCase):
    """Test case for the elimination tree builder."""

    def by_id(self, matches):
        return {m["id"]: m for m in matches}

    def test_next_power_of_two(self) -> None:
        self.assertEqual(next_power_of_two(1), 1)
        self.assertEqual(next_power_of_two(2), 2)
        self.assertEqual(next_power_of_two(5), 8)
        self.assertEqual(next_power_of_two(16), 16)

    def test_eight_teams_pair_top_and_bottom_seeds(self) -> None:
        """Slot i meets slot size-1-i in round one."""
        matches = self.by_id(build_elimination_tree_matches(make_registrations(8), now=NOW))

        self.assertEqual(sorted(matches), ["r1_m1", "r1_m2", "r1_m3", "r1_m4"])
        pairs = [
            (matches[f"r1_m{i}"]["teamA"]["teamId"], matches[f"r1_m{i}"]["teamB"]["teamId"])
            for i in range(1, 5)
        ]
        self.assertEqual(pairs, [("t1", "t8"), ("t2", "t7"), ("t3", "t6"), ("t4", "t5")])
        for match in matches.values():
            self.assertEqual(match["status"], "pending")
            self.assertEqual(match["stage"], "single")
            self.assertEqual(match["round"], 1)
            self.assertEqual(match["createdAt"], NOW)

    def test_seeding_orders_by_elo_not_input_order(self) -> None:
        registrations = [
            make_registration("low", 100),
            make_registration("high", 900),
            make_registration("mid", 500),
            make_registration("top", 1200),
        ]
        matches = self.by_id(build_elimination_tree_matches(registrations, now=NOW))

        self.assertEqual(matches["r1_m1"]["teamA"]["teamId"], "top")
        self.assertEqual(matches["r1_m1"]["teamB"]["teamId"], "low")
        self.assertEqual(matches["r1_m2"]["teamA"]["teamId"], "high")
        self.assertEqual(matches["r1_m2"]["teamB"]["teamId"], "mid")

    def test_three_teams_bye_and_waiting_match(self) -> None:
        """The top seed gets a bye and waits for the other semi-final."""
        matches = self.by_id(build_elimination_tree_matches(make_registrations(3), now=NOW))

        self.assertEqual(sorted(matches), ["r1_m1", "r1_m2", "r2_m1"])
        bye = matches["r1_m1"]
        self.assertEqual(bye["status"], "completed")
        self.assertEqual(bye["winnerTeamId"], "t1")
        self.assertIsNone(bye["teamB"])
        self.assertEqual(bye["finishedAt"], NOW)

        self.assertEqual(matches["r1_m2"]["status"], "pending")

        final = matches["r2_m1"]
        self.assertEqual(final["status"], "waiting")
        self.assertEqual(final["teamA"]["teamId"], "t1")
        self.assertIsNone(final["teamB"])

    def test_five_teams_carry_byes_into_round_two(self) -> None:
        matches = self.by_id(build_elimination_tree_matches(make_registrations(5), now=NOW))

        for index in (1, 2, 3):
            self.assertEqual(matches[f"r1_m{index}"]["status"], "completed")
        self.assertEqual(matches["r1_m4"]["status"], "pending")
        self.assertEqual(matches["r2_m1"]["status"], "pending")
        self.assertEqual(matches["r2_m1"]["teamA"]["teamId"], "t1")
        self.assertEqual(matches["r2_m1"]["teamB"]["teamId"], "t2")
        self.assertEqual(matches["r2_m2"]["status"], "waiting")
        self.assertEqual(matches["r2_m2"]["teamA"]["teamId"], "t3")
        self.assertNotIn("r3_m1", matches)

    def test_two_teams_single_final(self) -> None:
        matches = build_elimination_tree_matches(make_registrations(2), now=NOW)

        self.assertEqual([m["id"] for m in matches], ["r1_m1"])
        self.assertEqual(matches[0]["status"], "pending")

    def test_upper_stage_prefix(self) -> None:
        matches = build_elimination_tree_matches(
            make_registrations(4), stage="upper", prefix="u", now=NOW
        )

        self.assertEqual([m["id"] for m in matches], ["u1_m1", "u1_m2"])
        self.assertTrue(all(m["stage"] == "upper" for m in matches))

    def test_normalize_team_marks_captain(self) -> None:
        registration = make_registration(
            "t1",
            1000,
            memberUids=["t1-captain", "u2"],
            membersSnapshot=[{"uid": "t1-captain", "name": "Cap", "elo": 1000}],
        )

        team = normalize_team_from_registration(registration)

        self.assertEqual(team["teamId"], "t1")
        self.assertEqual(team["avgElo"], 1000)
        self.assertEqual([m["role"] for m in team["members"]], ["captain", "player"])
        # Members missing from the snapshot fall back to defaults.
        self.assertEqual(team["members"][1]["name"], "u2")
        self.assertEqual(team["members"][1]["elo"], 500)


class GroupBuilderTestCase(unittest.TestCase):
    """Test case for group stage generation and ranking."""

    def test_snake_seeding_balances_groups(self) -> None:
        groups = build_groups(make_registrations(8))

        self.assertEqual([g["key"] for g in groups], ["A", "B"])
        self.assertEqual([r["teamId"] for r in groups[0]["items"]], ["t1", "t4", "t5", "t8"])
        self.assertEqual([r["teamId"] for r in groups[1]["items"]], ["t2", "t3", "t6", "t7"])

    def test_small_field_uses_one_group(self) -> None:
        groups = build_groups(make_registrations(3))

        self.assertEqual(len(groups), 1)
        self.assertEqual(len(groups[0]["items"]), 3)

    def test_round_robin_matches(self) -> None:
        matches = build_group_matches(build_groups(make_registrations(8)), now=NOW)

        self.assertEqual(len(matches), 12)
        group_a = [m for m in matches if m["group"] == "A"]
        self.assertEqual([m["id"] for m in group_a], [f"g_A_m{i}" for i in range(1, 7)])
        self.assertTrue(all(m["stage"] == "group" and m["round"] == 1 for m in matches))
        self.assertTrue(all(m["status"] == "pending" for m in matches))

    def test_rank_group_wins_then_elo(self) -> None:
        registrations = {
            "a": make_registration("a", 900),
            "b": make_registration("b", 1200),
            "c": make_registration("c", 1000),
        }
        matches = [
            {
                "status": "completed",
                "teamA": {"teamId": "a"},
                "teamB": {"teamId": "b"},
                "winnerTeamId": "a",
            },
            {
                "status": "completed",
                "teamA": {"teamId": "b"},
                "teamB": {"teamId": "c"},
                "winnerTeamId": "b",
            },
            {
                "status": "completed",
                "teamA": {"teamId": "c"},
                "teamB": {"teamId": "a"},
                "winnerTeamId": "c",
            },
        ]

        rows = rank_group(matches, registrations)

        # All on one win; elo breaks the tie.
        self.assertEqual([row["teamId"] for row in rows], ["b", "c", "a"])
        self.assertTrue(all(row["wins"] == 1 and row["losses"] == 1 for row in rows))

    def test_select_playoff_qualifiers_per_group(self) -> None:
        registrations = make_registrations(8)
        matches = build_group_matches(build_groups(registrations), now=NOW)
        for match in matches:
            match["status"] = "completed"
            match["winnerTeamId"] = match["teamA"]["teamId"]

        qualifiers = select_playoff_qualifiers(matches, registrations, 2)

        self.assertEqual([q["teamId"] for q in qualifiers], ["t1", "t4", "t2", "t3"])


if __name__ == "__main__":
    unittest.main()
