"""Pure functions that turn registrations into initial match records."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from bracketeer.core.constants import (
    DEFAULT_MEMBER_ELO,
    DEFAULT_TEAM_NAME,
    GROUP_TARGET_SIZE,
    MATCH_COMPLETED,
    MATCH_PENDING,
    MATCH_WAITING,
    PLAYOFF_QUALIFIERS_PER_GROUP,
    STAGE_GROUP,
    STAGE_SINGLE,
)
from bracketeer.utils import normalize_uid_list, now_ms, to_int

from .models import Group, Match, RankedRow, Registration, TeamSnapshot


class _Awaiting:
    """Placeholder for a slot that an unplayed match will fill later."""

    def __repr__(self) -> str:
        return "AWAITING"


AWAITING = _Awaiting()


def next_power_of_two(n: int) -> int:
    """Return the smallest power of two that is >= n."""
    power = 1
    while power < n:
        power *= 2
    return power


def new_match(
    match_id: str, round_num: int, stage: str, now: int, **fields: Any
) -> Match:
    """Return a blank match document with the given overrides applied."""
    match: dict[str, Any] = {
        "id": match_id,
        "round": round_num,
        "stage": stage,
        "status": MATCH_WAITING,
        "teamA": None,
        "teamB": None,
        "winnerTeamId": None,
        "winner": None,
        "loser": None,
        "teamAScore": 0,
        "teamBScore": 0,
        "bestOf": 1,
        "mapScores": [],
        "scheduledAt": None,
        "readyCheck": None,
        "veto": None,
        "forfeit": None,
        "finishedAt": None,
        "createdAt": now,
        "updatedAt": now,
    }
    match.update(fields)
    return match  # type: ignore[return-value]


def normalize_team_from_registration(registration: Mapping[str, Any]) -> TeamSnapshot:
    """Build the team snapshot embedded into matches from a registration."""
    captain_uid = str(registration.get("captainUid") or "")
    member_uids = normalize_uid_list(registration.get("memberUids") or [])

    snapshot_by_uid: dict[str, dict[str, Any]] = {}
    for member in registration.get("membersSnapshot") or []:
        if not isinstance(member, Mapping):
            continue
        uid = str(member.get("uid") or "").strip()
        if not uid:
            continue
        snapshot_by_uid[uid] = {
            "uid": uid,
            "name": str(member.get("name") or uid),
            "avatarUrl": str(member.get("avatarUrl") or ""),
            "elo": to_int(member.get("elo"), DEFAULT_MEMBER_ELO),
            "fragpunkId": str(member.get("fragpunkId") or ""),
        }

    members = []
    for uid in member_uids:
        member = snapshot_by_uid.get(uid) or {
            "uid": uid,
            "name": uid,
            "avatarUrl": "",
            "elo": DEFAULT_MEMBER_ELO,
            "fragpunkId": "",
        }
        members.append({**member, "role": "captain" if uid == captain_uid else "player"})

    registration_id = (
        registration.get("id")
        or registration.get("registrationId")
        or registration.get("teamId")
        or ""
    )
    return {
        "registrationId": registration_id,
        "teamId": registration.get("teamId") or registration.get("id") or "",
        "teamName": registration.get("teamName") or DEFAULT_TEAM_NAME,
        "avatarUrl": registration.get("teamAvatarUrl")
        or registration.get("avatarUrl")
        or "",
        "avgElo": to_int(registration.get("avgEloSnapshot"), 0),
        "captainUid": captain_uid,
        "memberUids": member_uids,
        "members": members,
    }


def sort_by_seed(registrations: Iterable[Registration]) -> list[Registration]:
    """Order registrations by average elo, strongest first (stable)."""
    return sorted(
        registrations,
        key=lambda reg: to_int(reg.get("avgEloSnapshot"), 0),
        reverse=True,
    )


def _is_team(entry: Any) -> bool:
    return isinstance(entry, dict)


def build_elimination_tree_matches(
    registrations: Iterable[Registration],
    stage: str = STAGE_SINGLE,
    prefix: str = "r",
    now: int | None = None,
) -> list[Match]:
    """Seed registrations into an elimination tree and emit its known matches.

    Round one pairs slot ``i`` against slot ``size - 1 - i``. A side facing an
    empty slot is a bye: its match is emitted already completed and the side
    is carried into the next round. A side whose opponent comes from a match
    that is not decided yet is emitted as a ``waiting`` match holding that
    side. Pairings with no team on either side produce no record.
    """
    now = now_ms() if now is None else now
    seeded = [normalize_team_from_registration(reg) for reg in sort_by_seed(registrations)]
    size = next_power_of_two(max(2, len(seeded)))
    slots: list[Any] = seeded + [None] * (size - len(seeded))
    pairs = [(slots[i], slots[size - 1 - i]) for i in range(size // 2)]

    matches: list[Match] = []
    round_num = 1
    while pairs:
        carried: list[Any] = []
        for index, (team_a, team_b) in enumerate(pairs, start=1):
            match_id = f"{prefix}{round_num}_m{index}"
            if _is_team(team_a) and _is_team(team_b):
                matches.append(
                    new_match(
                        match_id,
                        round_num,
                        stage,
                        now,
                        status=MATCH_PENDING,
                        teamA=team_a,
                        teamB=team_b,
                    )
                )
                carried.append(AWAITING)
            elif _is_team(team_a) or _is_team(team_b):
                team = team_a if _is_team(team_a) else team_b
                opponent = team_b if _is_team(team_a) else team_a
                slot = "teamA" if _is_team(team_a) else "teamB"
                if opponent is AWAITING:
                    matches.append(
                        new_match(match_id, round_num, stage, now, **{slot: team})
                    )
                    carried.append(AWAITING)
                else:
                    matches.append(
                        new_match(
                            match_id,
                            round_num,
                            stage,
                            now,
                            status=MATCH_COMPLETED,
                            winnerTeamId=team["teamId"],
                            winner=team,
                            finishedAt=now,
                            **{slot: team},
                        )
                    )
                    carried.append(team)
            else:
                awaiting = team_a is AWAITING or team_b is AWAITING
                carried.append(AWAITING if awaiting else None)

        if len(carried) <= 1:
            break
        pairs = [
            (carried[i], carried[i + 1] if i + 1 < len(carried) else None)
            for i in range(0, len(carried), 2)
        ]
        round_num += 1

    return matches


def build_groups(registrations: Iterable[Registration]) -> list[Group]:
    """Split registrations into balanced groups using snake seeding."""
    seeded = sort_by_seed(registrations)
    if len(seeded) < GROUP_TARGET_SIZE:
        group_count = 1
    else:
        group_count = max(2, math.ceil(len(seeded) / GROUP_TARGET_SIZE))

    buckets: list[list[Registration]] = [[] for _ in range(group_count)]
    for i, registration in enumerate(seeded):
        band, offset = divmod(i, group_count)
        index = offset if band % 2 == 0 else group_count - 1 - offset
        buckets[index].append(registration)

    return [
        {"key": chr(ord("A") + idx), "items": items}
        for idx, items in enumerate(buckets)
        if items
    ]


def build_group_matches(groups: Iterable[Group], now: int | None = None) -> list[Match]:
    """Build the round-robin matches of every group."""
    now = now_ms() if now is None else now
    matches: list[Match] = []
    for group in groups:
        teams = [normalize_team_from_registration(item) for item in group["items"]]
        idx = 1
        for i in range(len(teams)):
            for j in range(i + 1, len(teams)):
                matches.append(
                    new_match(
                        f"g_{group['key']}_m{idx}",
                        1,
                        STAGE_GROUP,
                        now,
                        group=group["key"],
                        status=MATCH_PENDING,
                        teamA=teams[i],
                        teamB=teams[j],
                    )
                )
                idx += 1
    return matches


def rank_group(
    matches: Iterable[Match], registrations_by_team_id: Mapping[str, Registration]
) -> list[RankedRow]:
    """Rank a group's teams by wins, then by average elo."""
    stats: dict[str, RankedRow] = {}

    def ensure(team_id: str) -> RankedRow:
        if team_id not in stats:
            registration = registrations_by_team_id.get(team_id) or {}
            stats[team_id] = {
                "teamId": team_id,
                "registration": registration,  # type: ignore[typeddict-item]
                "wins": 0,
                "losses": 0,
                "avgElo": to_int(registration.get("avgEloSnapshot"), 0),
            }
        return stats[team_id]

    for match in matches:
        team_a = (match.get("teamA") or {}).get("teamId")
        team_b = (match.get("teamB") or {}).get("teamId")
        if not team_a or not team_b:
            continue
        ensure(team_a)
        ensure(team_b)
        winner_id = match.get("winnerTeamId")
        if match.get("status") != MATCH_COMPLETED or not winner_id:
            continue
        loser_id = team_b if winner_id == team_a else team_a
        ensure(winner_id)["wins"] += 1
        ensure(loser_id)["losses"] += 1

    return sorted(stats.values(), key=lambda row: (-row["wins"], -row["avgElo"]))


def select_playoff_qualifiers(
    group_matches: Iterable[Match],
    registrations: Iterable[Registration],
    per_group: int = PLAYOFF_QUALIFIERS_PER_GROUP,
) -> list[Registration]:
    """Pick the top teams of every group, groups ordered by key."""
    registrations_by_team_id = {
        (reg.get("teamId") or reg.get("id")): reg for reg in registrations
    }
    by_group: dict[str, list[Match]] = {}
    for match in group_matches:
        by_group.setdefault(str(match.get("group") or ""), []).append(match)

    qualifiers: list[Registration] = []
    for key in sorted(by_group):
        for row in rank_group(by_group[key], registrations_by_team_id)[:per_group]:
            registration = row["registration"] or {"teamId": row["teamId"]}
            qualifiers.append(registration)  # type: ignore[arg-type]
    return qualifiers
