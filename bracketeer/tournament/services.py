"""Service layer running the tournament engine inside Firestore transactions."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, cast

from firebase_admin import firestore
from flask import current_app

from bracketeer.bracket.board import MatchBoard, has_both_teams, is_completed, team_id
from bracketeer.bracket.builder import (
    build_elimination_tree_matches,
    build_group_matches,
    build_groups,
    select_playoff_qualifiers,
)
from bracketeer.bracket.models import ResultSubmission
from bracketeer.bracket.progression import reconcile_tournament_completion
from bracketeer.bracket.reset import reset_match as reset_board_match
from bracketeer.bracket.results import (
    apply_forfeit_outcome,
    record_match_result,
)
from bracketeer.bracket.results import (
    update_match_settings as update_board_match_settings,
)
from bracketeer.core.constants import (
    ALLOWED_BRACKET_TYPES,
    BRACKET_DOUBLE_ELIMINATION,
    BRACKET_GROUP_PLAYOFF,
    FORFEIT_READY_TIMEOUT_BOTH,
    MATCHES_COLLECTION,
    MIN_BRACKET_PARTICIPANTS,
    REGISTRATIONS_COLLECTION,
    STAGE_GROUP,
    STAGE_PLAYOFF,
    STAGE_SINGLE,
    STAGE_UPPER,
    TOURNAMENT_UPCOMING,
    TOURNAMENTS_COLLECTION,
)
from bracketeer.core.settings import EngineSettings
from bracketeer.errors import NotFoundError, raise_for_outcome
from bracketeer.match.ready import build_ready_check, build_ready_timeout_outcome
from bracketeer.match.ready import confirm_ready as confirm_match_ready
from bracketeer.match.veto import advance_timed_veto, apply_manual_veto_move
from bracketeer.utils import normalize_uid_list, now_ms, to_int

from .models import MemberProfile, TeamEntry
from .registration import build_registration, check_requirements, check_roster
from .utils import get_tournament_status

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.collection import CollectionReference
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction


class TournamentService:
    """Handles business logic and data access for tournament brackets."""

    # Transaction plumbing

    @staticmethod
    def _run(
        db: Client | None,
        tournament_id: str,
        body: Callable[..., dict[str, Any]],
    ) -> dict[str, Any]:
        """Run ``body(transaction, tournament_ref)`` in one transaction."""
        if db is None:
            db = firestore.client()
        tournament_ref = db.collection(TOURNAMENTS_COLLECTION).document(tournament_id)
        run = firestore.transactional(body)
        return cast(dict[str, Any], run(db.transaction(), tournament_ref))

    @staticmethod
    def _matches_ref(tournament_ref: DocumentReference) -> CollectionReference:
        return tournament_ref.collection(MATCHES_COLLECTION)

    @staticmethod
    def _registrations_ref(tournament_ref: DocumentReference) -> CollectionReference:
        return tournament_ref.collection(REGISTRATIONS_COLLECTION)

    @staticmethod
    def _read_tournament(
        transaction: Transaction, tournament_ref: DocumentReference
    ) -> Any:
        tournament_snap = cast(Any, tournament_ref.get(transaction=transaction))
        if not tournament_snap.exists:
            raise NotFoundError("Tournament not found")
        return tournament_snap

    @staticmethod
    def _load_board(
        transaction: Transaction, tournament_ref: DocumentReference
    ) -> MatchBoard:
        """Read the tournament and all of its matches once."""
        tournament_snap = TournamentService._read_tournament(transaction, tournament_ref)
        matches_ref = TournamentService._matches_ref(tournament_ref)
        match_snaps = matches_ref.stream(transaction=transaction)
        return MatchBoard.from_snapshots(tournament_snap, match_snaps)

    @staticmethod
    def _load_registrations(
        transaction: Transaction, tournament_ref: DocumentReference
    ) -> list[dict[str, Any]]:
        registrations_ref = TournamentService._registrations_ref(tournament_ref)
        registrations = []
        for snap in registrations_ref.stream(transaction=transaction):
            data = snap.to_dict() or {}
            data["id"] = snap.id
            data.setdefault("teamId", snap.id)
            registrations.append(data)
        return registrations

    @staticmethod
    def _persist(
        transaction: Transaction,
        tournament_ref: DocumentReference,
        board: MatchBoard,
        now: int,
    ) -> None:
        """Write every change recorded on the board."""
        matches_ref = TournamentService._matches_ref(tournament_ref)
        for match_id in board.deleted_match_ids():
            transaction.delete(matches_ref.document(match_id))
        for match in board.changed_matches():
            transaction.set(matches_ref.document(match["id"]), dict(match))
        if board.tournament_updates:
            transaction.update(
                tournament_ref, {**board.tournament_updates, "updatedAt": now}
            )

    @staticmethod
    def _require_match(board: MatchBoard, match_id: str) -> dict[str, Any]:
        match = board.get(match_id)
        if match is None:
            raise NotFoundError("Match not found")
        return cast(dict[str, Any], match)

    @staticmethod
    def _captain_team_id(
        transaction: Transaction,
        tournament_ref: DocumentReference,
        match: Mapping[str, Any],
        uid: str,
    ) -> str | None:
        """Return the side ``uid`` captains; solo entries fall back to the team id."""
        registrations_ref = TournamentService._registrations_ref(tournament_ref)
        for slot in ("teamA", "teamB"):
            side_id = team_id(match.get(slot))
            if not side_id:
                continue
            snap = cast(
                Any, registrations_ref.document(side_id).get(transaction=transaction)
            )
            registration = (snap.to_dict() or {}) if snap.exists else {}
            if uid and uid == str(registration.get("captainUid") or side_id):
                return side_id
        return None

    @staticmethod
    def _reconcile(board: MatchBoard, now: int) -> None:
        """Best-effort champion repair; never fails the calling operation."""
        try:
            reconcile_tournament_completion(board, now)
        except Exception as e:
            current_app.logger.warning(f"Tournament reconciliation failed: {e}")

    @staticmethod
    def _log_champion(tournament_id: str, board: MatchBoard) -> None:
        updates = board.tournament_updates
        if "endsAt" in updates and updates.get("endsAt") is not None:
            current_app.logger.info(
                f"Tournament {tournament_id} decided, champion: "
                f"{team_id(updates.get('champion')) or 'none'}"
            )

    @staticmethod
    def _resolve_ready_timeout(
        tournament_id: str,
        board: MatchBoard,
        match_id: str,
        settings: EngineSettings,
        now: int,
    ) -> dict[str, Any] | None:
        """Apply the forfeit of a lapsed readiness window, if there is one."""
        match = board.get(match_id) or {}
        if is_completed(match) or not has_both_teams(match):
            return None
        timeout = build_ready_timeout_outcome(
            match, None, now, settings.ready_window_ms
        )
        if timeout is None:
            return None
        payload = timeout["payload"]
        applied = apply_forfeit_outcome(board, match_id, payload, now)
        TournamentService._reconcile(board, now)
        double = payload["forfeit"]["type"] == FORFEIT_READY_TIMEOUT_BOTH
        current_app.logger.info(
            f"Ready check expired for {tournament_id}/{match_id}: {timeout['error']}"
        )
        return {
            "ok": True,
            "technicalForfeit": True,
            "doubleForfeit": double,
            "readyCheck": payload.get("readyCheck"),
            "veto": match.get("veto"),
            "nextMatchId": applied.get("nextMatchId"),
            "message": timeout["error"],
        }

    # Registration and generation

    @staticmethod
    def register_participant(
        tournament_id: str,
        team: TeamEntry,
        members: list[MemberProfile],
        db: Client | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Register a team, or a solo player, with frozen member snapshots."""
        now = now_ms() if now is None else now

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            tournament_snap = TournamentService._read_tournament(transaction, tournament_ref)
            tournament = tournament_snap.to_dict() or {}
            registrations = TournamentService._load_registrations(
                transaction, tournament_ref
            )

            if get_tournament_status(tournament, now) != TOURNAMENT_UPCOMING:
                return {"ok": False, "error": "Registration is closed", "status": 409}

            registration = build_registration(team, members, now)
            new_team_id = registration["teamId"]
            if not new_team_id:
                return {"ok": False, "error": "Team id is required", "status": 400}
            if any(reg["teamId"] == new_team_id for reg in registrations):
                return {"ok": True, "alreadyRegistered": True, "teamId": new_team_id}
            registered = to_int(tournament.get("registeredTeams"), 0)
            if registered >= to_int(tournament.get("maxTeams"), 0):
                return {"ok": False, "error": "Tournament is full", "status": 409}
            problem = check_roster(tournament, team)
            if problem:
                return {"ok": False, "error": problem, "status": 409}

            taken = {
                uid
                for reg in registrations
                for uid in normalize_uid_list(reg.get("memberUids") or [])
            }
            if taken.intersection(registration["memberUids"]):
                return {
                    "ok": False,
                    "error": "One or more team members already registered",
                    "status": 409,
                }
            problem = check_requirements(tournament, members)
            if problem:
                return {"ok": False, "error": problem, "status": 409}

            transaction.set(
                TournamentService._registrations_ref(tournament_ref).document(new_team_id),
                registration,
            )
            transaction.update(
                tournament_ref, {"registeredTeams": registered + 1, "updatedAt": now}
            )
            return {"ok": True, "alreadyRegistered": False, "teamId": new_team_id}

        outcome = TournamentService._run(db, tournament_id, body)
        if outcome.get("ok") and not outcome.get("alreadyRegistered"):
            current_app.logger.info(
                f"Team {outcome['teamId']} registered for tournament {tournament_id}"
            )
        return cast(dict[str, Any], raise_for_outcome(outcome))

    @staticmethod
    def generate_bracket(
        tournament_id: str, db: Client | None = None, now: int | None = None
    ) -> dict[str, Any]:
        """Replace every match of the tournament with a freshly seeded bracket."""
        now = now_ms() if now is None else now

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            registrations = TournamentService._load_registrations(
                transaction, tournament_ref
            )
            bracket_type = board.tournament.get("bracketType")
            if bracket_type not in ALLOWED_BRACKET_TYPES:
                return {"ok": False, "error": "Unsupported bracket type", "status": 400}
            if len(registrations) < MIN_BRACKET_PARTICIPANTS:
                return {
                    "ok": False,
                    "error": "At least 2 registered teams are required",
                    "status": 409,
                }

            for match in board.all():
                board.delete(match["id"])
            board.update_tournament(
                champion=None, upperChampion=None, lowerChampion=None, endsAt=None
            )
            if bracket_type == BRACKET_GROUP_PLAYOFF:
                matches = build_group_matches(build_groups(registrations), now)
            elif bracket_type == BRACKET_DOUBLE_ELIMINATION:
                matches = build_elimination_tree_matches(registrations, STAGE_UPPER, "u", now)
            else:
                matches = build_elimination_tree_matches(registrations, STAGE_SINGLE, "r", now)
            for match in matches:
                board.put(match)

            TournamentService._persist(transaction, tournament_ref, board, now)
            return {
                "ok": True,
                "bracketType": bracket_type,
                "matchIds": [m["id"] for m in matches],
            }

        outcome = TournamentService._run(db, tournament_id, body)
        if outcome.get("ok"):
            current_app.logger.info(
                f"Generated {outcome['bracketType']} bracket for {tournament_id} "
                f"with {len(outcome['matchIds'])} matches"
            )
        return cast(dict[str, Any], raise_for_outcome(outcome))

    @staticmethod
    def generate_playoff(
        tournament_id: str, db: Client | None = None, now: int | None = None
    ) -> dict[str, Any]:
        """Seed the playoff tree from the group standings."""
        now = now_ms() if now is None else now
        settings = EngineSettings.from_app(current_app)

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            registrations = TournamentService._load_registrations(
                transaction, tournament_ref
            )
            if board.tournament.get("bracketType") != BRACKET_GROUP_PLAYOFF:
                return {
                    "ok": False,
                    "error": "Playoff is only available for group_playoff tournaments",
                    "status": 409,
                }
            group_matches = board.all(STAGE_GROUP)
            if not group_matches:
                return {"ok": False, "error": "Group stage is not generated", "status": 409}
            if any(not is_completed(m) for m in group_matches):
                return {
                    "ok": False,
                    "error": "All group matches must be completed",
                    "status": 409,
                }
            qualifiers = select_playoff_qualifiers(
                group_matches, registrations, settings.playoff_qualifiers_per_group
            )
            if len(qualifiers) < MIN_BRACKET_PARTICIPANTS:
                return {
                    "ok": False,
                    "error": "Not enough qualified teams for playoff",
                    "status": 409,
                }

            for match in board.all(STAGE_PLAYOFF):
                board.delete(match["id"])
            board.update_tournament(champion=None, endsAt=None)
            matches = build_elimination_tree_matches(qualifiers, STAGE_PLAYOFF, "p", now)
            for match in matches:
                board.put(match)

            TournamentService._persist(transaction, tournament_ref, board, now)
            return {
                "ok": True,
                "qualifiedTeamIds": [q.get("teamId") for q in qualifiers],
                "matchIds": [m["id"] for m in matches],
            }

        outcome = TournamentService._run(db, tournament_id, body)
        if outcome.get("ok"):
            current_app.logger.info(
                f"Generated playoff for {tournament_id} with "
                f"{len(outcome['qualifiedTeamIds'])} qualifiers"
            )
        return cast(dict[str, Any], raise_for_outcome(outcome))

    # Results

    @staticmethod
    def submit_result(
        tournament_id: str,
        match_id: str,
        submission: ResultSubmission,
        db: Client | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Record a match result and propagate it through the bracket."""
        now = now_ms() if now is None else now

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            TournamentService._require_match(board, match_id)
            outcome = record_match_result(board, match_id, submission, now)
            if outcome.get("ok") and not outcome.get("alreadyCompleted"):
                TournamentService._reconcile(board, now)
                TournamentService._persist(transaction, tournament_ref, board, now)
                TournamentService._log_champion(tournament_id, board)
            return outcome

        return cast(
            dict[str, Any],
            raise_for_outcome(TournamentService._run(db, tournament_id, body)),
        )

    @staticmethod
    def update_match_settings(
        tournament_id: str,
        match_id: str,
        changes: Mapping[str, Any],
        db: Client | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Edit the schedule and/or best-of of a match that is not completed."""
        now = now_ms() if now is None else now

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            TournamentService._require_match(board, match_id)
            outcome = update_board_match_settings(board, match_id, changes, now)
            if outcome.get("ok"):
                TournamentService._persist(transaction, tournament_ref, board, now)
            return outcome

        return cast(
            dict[str, Any],
            raise_for_outcome(TournamentService._run(db, tournament_id, body)),
        )

    @staticmethod
    def reset_match(
        tournament_id: str,
        match_id: str,
        db: Client | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Clear a match result and everything derived from it."""
        now = now_ms() if now is None else now

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            TournamentService._require_match(board, match_id)
            outcome = reset_board_match(board, match_id, now)
            if outcome.get("ok"):
                TournamentService._persist(transaction, tournament_ref, board, now)
            return outcome

        outcome = TournamentService._run(db, tournament_id, body)
        if outcome.get("ok"):
            current_app.logger.info(
                f"Reset {tournament_id}/{match_id}, cleared "
                f"{len(outcome['clearedMatchIds'])} dependent matches"
            )
        return cast(dict[str, Any], raise_for_outcome(outcome))

    # Ready check and veto

    @staticmethod
    def confirm_ready(
        tournament_id: str,
        match_id: str,
        uid: str,
        db: Client | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Mark the acting captain's side ready, or resolve a lapsed window."""
        now = now_ms() if now is None else now
        settings = EngineSettings.from_app(current_app)

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            match = TournamentService._require_match(board, match_id)
            captain_of = TournamentService._captain_team_id(
                transaction, tournament_ref, match, uid
            )
            outcome = confirm_match_ready(
                match,
                captain_of,
                now,
                settings.ready_window_ms,
                settings.veto_ready_delay_ms,
            )
            if not outcome.get("ok"):
                return outcome
            if outcome.get("expired"):
                resolved = TournamentService._resolve_ready_timeout(
                    tournament_id, board, match_id, settings, now
                )
                TournamentService._persist(transaction, tournament_ref, board, now)
                TournamentService._log_champion(tournament_id, board)
                return cast(dict[str, Any], resolved)

            board.update(match_id, readyCheck=outcome["readyCheck"], updatedAt=now)
            TournamentService._persist(transaction, tournament_ref, board, now)
            return {
                "ok": True,
                "technicalForfeit": False,
                "readyCheck": outcome["readyCheck"],
                "vetoOpensAt": outcome["vetoOpensAt"],
            }

        return cast(
            dict[str, Any],
            raise_for_outcome(TournamentService._run(db, tournament_id, body)),
        )

    @staticmethod
    def submit_veto_move(  # noqa: PLR0913
        tournament_id: str,
        match_id: str,
        uid: str,
        action: str | None,
        map_name: str,
        db: Client | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Apply a captain's ban or pick.

        Turns that timed out before this call are replayed and saved first,
        so they persist even when the move itself is then rejected.
        """
        now = now_ms() if now is None else now
        settings = EngineSettings.from_app(current_app)

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            match = TournamentService._require_match(board, match_id)
            if not has_both_teams(match):
                return {"ok": False, "error": "Match teams are not ready", "status": 409}
            if is_completed(match):
                return {"ok": False, "error": "Match already completed", "status": 409}
            scheduled_at = to_int(match.get("scheduledAt"), None)
            if not scheduled_at or now < scheduled_at:
                return {
                    "ok": False,
                    "error": "Ban/pick is locked until match start",
                    "status": 409,
                }
            captain_of = TournamentService._captain_team_id(
                transaction, tournament_ref, match, uid
            )

            resolved = TournamentService._resolve_ready_timeout(
                tournament_id, board, match_id, settings, now
            )
            if resolved is not None:
                TournamentService._persist(transaction, tournament_ref, board, now)
                TournamentService._log_champion(tournament_id, board)
                return resolved
            if not captain_of:
                return {"ok": False, "error": "Only captains can use ban/pick", "status": 403}

            outcome = apply_manual_veto_move(
                match,
                settings.map_pool_for(board.tournament),
                captain_of,
                uid,
                action,
                map_name,
                now,
                settings.veto_turn_ms,
            )
            if outcome.get("changed") and outcome.get("veto"):
                board.update(match_id, veto=outcome["veto"], updatedAt=now)
                TournamentService._persist(transaction, tournament_ref, board, now)
            if not outcome.get("ok"):
                return {
                    "ok": False,
                    "error": outcome.get("error") or "Failed to apply veto step",
                    "status": outcome.get("status") or 409,
                }
            return {"ok": True, "technicalForfeit": False, "veto": outcome["veto"]}

        return cast(
            dict[str, Any],
            raise_for_outcome(TournamentService._run(db, tournament_id, body)),
        )

    @staticmethod
    def sync_match(
        tournament_id: str,
        match_id: str,
        db: Client | None = None,
        now: int | None = None,
    ) -> dict[str, Any]:
        """Bring a match up to date with the clock and return its read view."""
        now = now_ms() if now is None else now
        settings = EngineSettings.from_app(current_app)

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            match = TournamentService._require_match(board, match_id)
            resolved = TournamentService._resolve_ready_timeout(
                tournament_id, board, match_id, settings, now
            )
            if resolved is None and not is_completed(match):
                evolved = advance_timed_veto(
                    match,
                    settings.map_pool_for(board.tournament),
                    now,
                    settings.veto_turn_ms,
                )
                if evolved["changed"]:
                    board.update(match_id, veto=evolved["veto"], updatedAt=now)
            if board.has_changes():
                TournamentService._persist(transaction, tournament_ref, board, now)
                TournamentService._log_champion(tournament_id, board)

            view = dict(board.get(match_id) or match)
            ready_view = build_ready_check(
                view, now, settings.ready_window_ms, settings.veto_ready_delay_ms
            )
            if ready_view is not None:
                view["readyCheck"] = ready_view
            return {"ok": True, "match": view}

        outcome = TournamentService._run(db, tournament_id, body)
        return cast(dict[str, Any], raise_for_outcome(outcome))["match"]

    @staticmethod
    def reconcile_completion(
        tournament_id: str, db: Client | None = None, now: int | None = None
    ) -> dict[str, Any] | None:
        """Re-record the champion if the terminal stage is decided.

        Failures are logged and swallowed; this is a repair pass only.
        """
        now = now_ms() if now is None else now

        def body(
            transaction: Transaction, tournament_ref: DocumentReference
        ) -> dict[str, Any]:
            board = TournamentService._load_board(transaction, tournament_ref)
            champion = reconcile_tournament_completion(board, now)
            if board.has_changes():
                TournamentService._persist(transaction, tournament_ref, board, now)
            return {"ok": True, "champion": champion}

        try:
            outcome = TournamentService._run(db, tournament_id, body)
        except Exception as e:
            current_app.logger.warning(
                f"Reconciliation failed for tournament {tournament_id}: {e}"
            )
            return None
        return cast("dict[str, Any] | None", outcome.get("champion"))
