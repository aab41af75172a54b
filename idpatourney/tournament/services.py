"""Service layer for tournament setup and lifecycle."""

from __future__ import annotations

import logging
import string
from typing import TYPE_CHECKING, Any, cast

from firebase_admin import firestore

from idpatourney.constants import (
    SQUAD_OPEN,
    SQUADS,
    STAGES,
    TOURNAMENT_ACTIVE,
    TOURNAMENT_COMPLETED,
    TOURNAMENT_DRAFT,
    TOURNAMENT_PUBLISHED,
    TOURNAMENT_TRANSITIONS,
    TOURNAMENTS,
)
from idpatourney.core.transactions import get_in_transaction, run_transaction, utcnow
from idpatourney.errors import InvalidStatusTransition, NotFoundError, ValidationError
from idpatourney.ranking.services import LeaderboardService
from idpatourney.utils import snapshot_to_dict

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.transaction import Transaction

    from .models import TournamentSetup

logger = logging.getLogger(__name__)


def squad_name(index: int) -> str:
    """Return the display name of the n-th squad: Squad A, Squad B, ..."""
    if index < len(string.ascii_uppercase):
        return f"Squad {string.ascii_uppercase[index]}"
    return f"Squad {index + 1}"


class TournamentService:
    """Service class for tournament-related operations."""

    @staticmethod
    def get_tournament(tournament_id: str, db: Client | None = None) -> dict[str, Any]:
        """Fetch a tournament or raise NotFoundError."""
        if db is None:
            db = firestore.client()
        snap = cast(
            "DocumentSnapshot", db.collection(TOURNAMENTS).document(tournament_id).get()
        )
        tournament = snapshot_to_dict(snap)
        if tournament is None:
            raise NotFoundError("Tournament not found")
        return tournament

    @staticmethod
    def create_tournament(
        setup: TournamentSetup, db: Client | None = None
    ) -> dict[str, Any]:
        """Create a draft tournament and its empty squads."""
        if db is None:
            db = firestore.client()
        now = utcnow()
        payload = {
            "name": setup.name,
            "date": setup.date,
            "registrationOpens": setup.registration_opens,
            "registrationCloses": setup.registration_closes,
            "divisions": setup.divisions,
            "customCategories": setup.custom_categories,
            "capacity": setup.capacity,
            "squadConfig": {
                "numberOfSquads": setup.number_of_squads,
                "maxShootersPerSquad": setup.max_shooters_per_squad,
            },
            "status": TOURNAMENT_DRAFT,
            "createdAt": now,
            "updatedAt": now,
            **setup.extra,
        }
        _, ref = db.collection(TOURNAMENTS).add(payload)

        squad_ids = []
        for index in range(setup.number_of_squads):
            _, squad_ref = db.collection(SQUADS).add(
                {
                    "tournamentId": ref.id,
                    "name": squad_name(index),
                    "timeSlot": "TBD",
                    "maxShooters": setup.max_shooters_per_squad,
                    "currentShooters": 0,
                    "status": SQUAD_OPEN,
                    "createdAt": now,
                }
            )
            squad_ids.append(squad_ref.id)

        logger.info(f"Created tournament {ref.id} with {len(squad_ids)} squads")
        return {"tournamentId": ref.id, "squadIds": squad_ids}

    @staticmethod
    def add_stage(
        tournament_id: str, stage_data: dict[str, Any], db: Client | None = None
    ) -> str:
        """Add a stage to a tournament that has not started yet."""
        if db is None:
            db = firestore.client()
        tournament = TournamentService.get_tournament(tournament_id, db=db)
        if tournament.get("status") in (TOURNAMENT_ACTIVE, TOURNAMENT_COMPLETED):
            raise InvalidStatusTransition(
                "Stages cannot be added once the tournament has started."
            )
        existing = (
            db.collection(STAGES)
            .where(filter=firestore.FieldFilter("tournamentId", "==", tournament_id))
            .where(
                filter=firestore.FieldFilter(
                    "stageNumber", "==", stage_data["stageNumber"]
                )
            )
            .stream()
        )
        if any(True for _ in existing):
            raise ValidationError(
                f"Stage {stage_data['stageNumber']} already exists in this tournament."
            )
        _, ref = db.collection(STAGES).add(
            {**stage_data, "tournamentId": tournament_id, "createdAt": utcnow()}
        )
        return str(ref.id)

    @staticmethod
    def _transition(
        tournament_id: str, target: str, db: Client
    ) -> dict[str, Any]:
        """Move a tournament to ``target`` if the lifecycle allows it."""
        ref = db.collection(TOURNAMENTS).document(tournament_id)

        def _apply(transaction: Transaction) -> dict[str, Any]:
            snap = get_in_transaction(transaction, ref)
            if not snap.exists:
                raise NotFoundError("Tournament not found")
            data = snap.to_dict() or {}
            current = data.get("status", TOURNAMENT_DRAFT)
            if target not in TOURNAMENT_TRANSITIONS.get(current, ()):
                raise InvalidStatusTransition(
                    f"Cannot move tournament from {current} to {target}."
                )
            if target == TOURNAMENT_PUBLISHED and not data.get("divisions"):
                raise ValidationError("A tournament needs divisions to be published.")
            updates = {"status": target, "updatedAt": utcnow()}
            transaction.update(ref, updates)
            return {**data, **updates, "id": tournament_id}

        tournament = run_transaction(db, _apply)
        logger.info(f"Tournament {tournament_id} is now {target}")
        return tournament

    @staticmethod
    def publish_tournament(
        tournament_id: str, db: Client | None = None
    ) -> dict[str, Any]:
        """Open a draft tournament for registration."""
        if db is None:
            db = firestore.client()
        return TournamentService._transition(tournament_id, TOURNAMENT_PUBLISHED, db)

    @staticmethod
    def start_tournament(
        tournament_id: str, db: Client | None = None
    ) -> dict[str, Any]:
        """Start a published tournament; registrations are locked from now on."""
        if db is None:
            db = firestore.client()
        return TournamentService._transition(tournament_id, TOURNAMENT_ACTIVE, db)

    @staticmethod
    def complete_tournament(
        tournament_id: str, db: Client | None = None
    ) -> dict[str, Any]:
        """Complete an active tournament and store its final results."""
        if db is None:
            db = firestore.client()
        tournament = TournamentService._transition(
            tournament_id, TOURNAMENT_COMPLETED, db
        )
        results = LeaderboardService.refresh_match_results(tournament_id, db=db)
        tournament["resultCount"] = len(results)
        return tournament
