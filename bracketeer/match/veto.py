"""Map ban/pick state machine with timed auto-steps."""

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping
from typing import Any

from bracketeer.bracket.board import team_id as slot_team_id
from bracketeer.core.constants import (
    ALLOWED_BEST_OF,
    DEFAULT_MAP_POOL,
    MATCH_COMPLETED,
    MIN_MAP_POOL_SIZE,
    SYSTEM_AUTO_DECIDER_UID,
    SYSTEM_AUTO_UID,
    SYSTEM_DECIDER_UID,
    VETO_BAN,
    VETO_DECIDER,
    VETO_DONE,
    VETO_PICK,
    VETO_SCRIPTS,
    VETO_TURN_MS,
)
from bracketeer.utils import normalize_map_pool, now_ms, to_int

from .models import Veto, VetoState, VetoStep

_TURN_ACTIONS = (VETO_BAN, VETO_PICK)


def _best_of(value: Any) -> int:
    best_of = to_int(value, 1)
    return best_of if best_of in ALLOWED_BEST_OF else 1


def get_veto_script(best_of: int = 1, pool_size: int | None = None) -> list[str]:
    """Return the ban/pick order for a series.

    Every scripted step removes one map, so a pool of ``n`` maps needs
    ``n - 1`` steps before the decider. Extra maps get leading bans; a short
    pool drops trailing bans first and then trailing picks.
    """
    script = list(VETO_SCRIPTS.get(_best_of(best_of), ()))
    if not script or pool_size is None:
        return script
    steps = script[:-1]
    needed = max(0, pool_size - 1)
    if len(steps) < needed:
        steps = [VETO_BAN] * (needed - len(steps)) + steps
    for action in (VETO_BAN, VETO_PICK):
        index = len(steps) - 1
        while len(steps) > needed and index >= 0:
            if steps[index] == action:
                del steps[index]
            index -= 1
    return steps + [VETO_DECIDER]


def build_series_maps(
    picks: Iterable[str], decider: str = "", best_of: int = 1
) -> list[str]:
    """Return the maps of the series: picks in order, then the decider."""
    if _best_of(best_of) == 1:
        return [decider] if decider else []
    maps: list[str] = []
    for name in picks:
        if name and name not in maps:
            maps.append(name)
    if decider and decider not in maps:
        maps.append(decider)
    return maps


def _scripted_action(state: VetoState) -> str:
    if state.script:
        if state.step_index < len(state.script):
            return state.script[state.step_index]
        return VETO_DONE
    return VETO_BAN if len(state.available_maps) > 1 else VETO_DECIDER


def init_veto_state(
    match: Mapping[str, Any],
    map_pool: Iterable[str] = DEFAULT_MAP_POOL,
    now: int | None = None,
) -> VetoState:
    """Rebuild the working veto state from a match document."""
    now = now_ms() if now is None else now
    existing = match.get("veto") if isinstance(match.get("veto"), Mapping) else {}
    ready = match.get("readyCheck") if isinstance(match.get("readyCheck"), Mapping) else {}
    team_a_id = slot_team_id(match.get("teamA"))
    team_b_id = slot_team_id(match.get("teamB"))
    best_of = _best_of(match.get("bestOf"))
    veto_opens_at = to_int(ready.get("vetoOpensAt"), to_int(existing.get("openedAt"), now))

    pool = normalize_map_pool(map_pool, DEFAULT_MAP_POOL)
    if existing.get("availableMaps") is not None:
        available = [str(m) for m in existing.get("availableMaps") or [] if m]
    else:
        available = pool
    history = list(existing.get("history") or existing.get("bans") or [])
    script = existing.get("script")
    if not isinstance(script, list):
        script = get_veto_script(best_of, len(pool))

    state = VetoState(
        best_of=best_of,
        script=list(script),
        team_a_id=team_a_id,
        team_b_id=team_b_id,
        available_maps=available,
        history=history,
        picks=[str(m) for m in existing.get("picks") or [] if m],
        decider=str(existing.get("decider") or ""),
        step_index=max(0, to_int(existing.get("stepIndex"), len(history))),
        next_team_id=str(existing.get("nextTeamId") or team_a_id),
        opened_at=to_int(existing.get("openedAt"), veto_opens_at),
        updated_at=to_int(existing.get("updatedAt"), now),
    )
    state.turn_started_at = to_int(
        existing.get("turnStartedAt"), to_int(existing.get("updatedAt"), veto_opens_at)
    )
    state.next_action = str(existing.get("nextAction") or _scripted_action(state))
    if state.next_action == VETO_DONE or state.decider:
        state.mark_done()
    return state


def serialize_veto_state(state: VetoState) -> Veto:
    """Return the dict persisted on the match."""
    return {
        "mode": f"bo{state.best_of}",
        "bestOf": state.best_of,
        "script": list(state.script),
        "status": state.status,
        "done": state.done,
        "availableMaps": list(state.available_maps),
        "history": list(state.history),
        "picks": list(state.picks),
        "decider": state.decider,
        "seriesMaps": build_series_maps(state.picks, state.decider, state.best_of),
        "stepIndex": state.step_index,
        "nextAction": VETO_DONE if state.done else state.next_action,
        "nextTeamId": "" if state.done else state.next_team_id,
        "openedAt": state.opened_at,
        "turnStartedAt": None if state.done else state.turn_started_at,
        "updatedAt": state.updated_at,
        "teamAId": state.team_a_id,
        "teamBId": state.team_b_id,
    }


def _log_step(
    state: VetoState, action: str, map_name: str, uid: str, auto: bool, at: int
) -> None:
    entry: VetoStep = {
        "idx": len(state.history) + 1,
        "action": action,
        "map": map_name,
        "teamId": state.next_team_id or "",
        "uid": uid,
        "auto": auto,
        "at": at,
    }
    state.history.append(entry)


def finalize_decider_if_needed(
    state: VetoState, now: int, uid: str = SYSTEM_DECIDER_UID
) -> bool:
    """Assign the last remaining map as decider once the script reaches it."""
    if state.done or state.next_action != VETO_DECIDER:
        return False
    if len(state.available_maps) != 1:
        return False
    state.decider = state.available_maps[0]
    _log_step(state, VETO_DECIDER, state.decider, uid, True, now)
    state.available_maps = []
    state.step_index += 1
    state.updated_at = now
    state.mark_done()
    return True


def apply_veto_step(
    state: VetoState,
    team_id: str,
    uid: str,
    action: str | None,
    map_name: str,
    now: int,
    auto: bool = False,
) -> dict[str, Any]:
    """Apply one ban or pick for the team whose turn it is."""
    expected = state.next_action
    if state.done or expected not in _TURN_ACTIONS:
        return {"ok": False, "error": "Ban/pick already completed"}
    if action and action != expected:
        return {"ok": False, "error": f"Expected action {expected}"}
    if str(team_id or "") != state.next_team_id:
        return {"ok": False, "error": "It is not your turn"}
    if map_name not in state.available_maps:
        return {"ok": False, "error": "Map is not available for veto"}

    _log_step(state, expected, map_name, uid, auto, now)
    state.available_maps = [m for m in state.available_maps if m != map_name]
    if expected == VETO_PICK and map_name not in state.picks:
        state.picks.append(map_name)
    state.step_index += 1
    state.next_team_id = (
        state.team_b_id if state.next_team_id == state.team_a_id else state.team_a_id
    )
    state.next_action = _scripted_action(state)
    state.turn_started_at = now
    state.updated_at = now
    if state.next_action == VETO_DONE:
        state.mark_done()
    finalize_decider_if_needed(state, now, SYSTEM_AUTO_DECIDER_UID)
    return {"ok": True}


def _step_rng(match: Mapping[str, Any], state: VetoState) -> random.Random:
    seed = f"{match.get('id') or ''}:{state.step_index}:{state.turn_started_at}"
    return random.Random(seed)


def _veto_is_open(match: Mapping[str, Any], now: int) -> bool:
    ready = match.get("readyCheck") if isinstance(match.get("readyCheck"), Mapping) else {}
    veto_opens_at = to_int(ready.get("vetoOpensAt"), None)
    return (
        ready.get("teamAReady") is True
        and ready.get("teamBReady") is True
        and bool(veto_opens_at)
        and now >= veto_opens_at
    )


def advance_timed_veto(
    match: Mapping[str, Any],
    map_pool: Iterable[str] = DEFAULT_MAP_POOL,
    now: int | None = None,
    turn_ms: int = VETO_TURN_MS,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Replay every turn that timed out since the last recorded step.

    Each lapsed turn bans or picks a random available map for the team on
    turn, at the instant the turn ran out. Without an explicit ``rng`` the
    choice is seeded from the match id, step index and turn start, so
    calling this again with a later ``now`` reproduces the same history.
    """
    now = now_ms() if now is None else now
    unchanged = {"veto": match.get("veto") or None, "changed": False}
    if not slot_team_id(match.get("teamA")) or not slot_team_id(match.get("teamB")):
        return unchanged
    if match.get("status") == MATCH_COMPLETED or not _veto_is_open(match, now):
        return unchanged
    pool = normalize_map_pool(map_pool)
    if len(pool) < MIN_MAP_POOL_SIZE:
        return unchanged

    state = init_veto_state(match, pool, now)
    changed = not match.get("veto")
    if not state.done and (
        not state.turn_started_at or state.turn_started_at < state.opened_at
    ):
        state.turn_started_at = state.opened_at
        changed = True
    changed = finalize_decider_if_needed(state, now) or changed

    while (
        not state.done
        and state.next_action in _TURN_ACTIONS
        and state.available_maps
        and now >= (state.turn_started_at or 0) + turn_ms
    ):
        timeout_at = (state.turn_started_at or 0) + turn_ms
        chooser = rng or _step_rng(match, state)
        map_name = chooser.choice(state.available_maps)
        outcome = apply_veto_step(
            state,
            state.next_team_id,
            SYSTEM_AUTO_UID,
            state.next_action,
            map_name,
            timeout_at,
            auto=True,
        )
        if not outcome["ok"]:
            break
        changed = True

    if changed:
        state.updated_at = max(state.updated_at, now)
    return {"veto": serialize_veto_state(state), "changed": changed}


def apply_manual_veto_move(
    match: Mapping[str, Any],
    map_pool: Iterable[str] = DEFAULT_MAP_POOL,
    team_id: str | None = None,
    uid: str | None = None,
    action: str | None = None,
    map_name: str | None = None,
    now: int | None = None,
    turn_ms: int = VETO_TURN_MS,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Apply a captain's ban or pick after catching up on lapsed turns.

    A rejected move still returns the caught-up ``veto`` together with
    ``changed`` so timed steps can be persisted before the rejection is
    reported.
    """
    now = now_ms() if now is None else now
    map_name = str(map_name or "").strip()
    action = str(action or "").strip().lower()
    if not map_name or not team_id or not uid:
        return {"ok": False, "error": "Invalid params", "status": 400}
    if action and action not in _TURN_ACTIONS:
        return {"ok": False, "error": "Invalid veto action", "status": 400}

    ready = match.get("readyCheck") if isinstance(match.get("readyCheck"), Mapping) else {}
    if not (ready.get("teamAReady") is True and ready.get("teamBReady") is True):
        return {
            "ok": False,
            "error": "Both captains must confirm readiness first",
            "status": 409,
        }
    if not _veto_is_open(match, now):
        return {
            "ok": False,
            "error": "Ban/pick opens shortly after both teams are ready",
            "status": 409,
        }
    pool = normalize_map_pool(map_pool)
    if len(pool) < MIN_MAP_POOL_SIZE:
        return {"ok": False, "error": "Map pool is not configured", "status": 409}

    evolved = advance_timed_veto(match, pool, now, turn_ms, rng)
    caught_up = {**match, "veto": evolved["veto"]}
    state = init_veto_state(caught_up, pool, now)
    if state.done or state.next_action not in _TURN_ACTIONS:
        return {
            "ok": False,
            "error": "Ban/pick already completed",
            "status": 409,
            "veto": evolved["veto"],
            "changed": evolved["changed"],
        }

    outcome = apply_veto_step(state, team_id, uid, action or None, map_name, now)
    if not outcome["ok"]:
        return {
            "ok": False,
            "error": outcome["error"],
            "status": 409,
            "veto": evolved["veto"],
            "changed": evolved["changed"],
        }
    return {"ok": True, "veto": serialize_veto_state(state), "changed": True}
