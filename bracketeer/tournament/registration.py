"""Registration snapshots and entry checks."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from bracketeer.core.constants import (
    ALLOWED_TEAM_FORMATS,
    DEFAULT_MEMBER_ELO,
    DEFAULT_TEAM_NAME,
)
from bracketeer.utils import normalize_uid_list, now_ms, to_int

from .models import MemberProfile, TeamEntry

SOLO_FORMAT = "1x1"


def team_size_by_format(team_format: Any) -> int:
    """Return the number of main players a format requires (1 to 5)."""
    left = str(team_format or "5x5").lower().split("x")[0]
    return min(max(to_int(left, 5), 1), 5)


def check_roster(tournament: Mapping[str, Any], team: TeamEntry) -> str | None:
    """Return why the roster does not fit the tournament format, if it does not."""
    team_format = str(tournament.get("teamFormat") or "").lower()
    if team_format not in ALLOWED_TEAM_FORMATS:
        return f"Unsupported team format {team_format or '?'}"
    member_uids = normalize_uid_list(team.get("memberUids") or [])
    need = team_size_by_format(team_format)
    if team_format == SOLO_FORMAT:
        if len(member_uids) != 1:
            return "Solo registration takes exactly one player"
        return None
    if len(member_uids) < need or len(member_uids) > need + 1:
        return (
            f"Team must have {need} main players (+ optional 1 reserve) "
            f"for {team_format}"
        )
    if str(team.get("captainUid") or "") not in member_uids:
        return "Team captain must be on the roster"
    return None


def check_requirements(
    tournament: Mapping[str, Any], members: Iterable[MemberProfile]
) -> str | None:
    """Return the first member failing the entry requirements, as a message."""
    requirements = tournament.get("requirements") or {}
    min_elo = to_int(requirements.get("minElo"), 0)
    min_matches = to_int(requirements.get("minMatches"), 0)
    for member in members:
        elo = to_int(member.get("elo"), DEFAULT_MEMBER_ELO)
        matches = to_int(member.get("matches"), 0)
        if elo < min_elo or matches < min_matches:
            return f"Member {member.get('uid')} does not meet requirements"
    return None


def build_registration(
    team: TeamEntry,
    members: Iterable[MemberProfile],
    now: int | None = None,
) -> dict[str, Any]:
    """Freeze a team and its members' profiles into a registration document."""
    now = now_ms() if now is None else now
    member_uids = normalize_uid_list(team.get("memberUids") or [])
    profiles = {str(m.get("uid") or ""): m for m in members}

    snapshots = []
    total_elo = 0
    total_matches = 0
    for uid in member_uids:
        profile = profiles.get(uid) or {}
        elo = to_int(profile.get("elo"), DEFAULT_MEMBER_ELO)
        matches = to_int(profile.get("matches"), 0)
        total_elo += elo
        total_matches += matches
        snapshots.append({
            "uid": uid,
            "name": str(profile.get("name") or uid),
            "avatarUrl": str(profile.get("avatarUrl") or ""),
            "fragpunkId": str(profile.get("fragpunkId") or ""),
            "elo": elo,
        })

    team_id = str(team.get("teamId") or (member_uids[0] if member_uids else ""))
    count = max(1, len(member_uids))
    return {
        "teamId": team_id,
        "teamName": str(team.get("name") or DEFAULT_TEAM_NAME),
        "teamAvatarUrl": str(team.get("avatarUrl") or ""),
        "captainUid": str(team.get("captainUid") or team_id),
        "memberUids": member_uids,
        "membersSnapshot": snapshots,
        "avgEloSnapshot": round(total_elo / count),
        "matchesSnapshot": round(total_matches / count),
        "createdAt": now,
    }
