"""Service layer for leaderboards and scoring progress."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore

from idpatourney.constants import (
    FIRESTORE_BATCH_LIMIT,
    MATCH_RESULTS,
    REG_CHECKED_IN,
    REGISTRATIONS,
    SCORES,
    STAGES,
)
from idpatourney.core.transactions import utcnow
from idpatourney.errors import NotFoundError
from idpatourney.scoring.calculator import shooter_accuracy
from idpatourney.scoring.services import ScoringService

from .engine import compute_match_results, leaderboard_entries, rank_stage

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

    from .models import MatchResult, RankEntry

logger = logging.getLogger(__name__)


def _docs(query: Any) -> list[dict[str, Any]]:
    results = []
    for doc in query.stream():
        data = doc.to_dict() or {}
        data["id"] = doc.id
        results.append(data)
    return results


class LeaderboardService:
    """Service class for tournament rankings."""

    @staticmethod
    def _by_tournament(db: Client, collection: str, tournament_id: str) -> Any:
        return db.collection(collection).where(
            filter=firestore.FieldFilter("tournamentId", "==", tournament_id)
        )

    @staticmethod
    def load_tournament_data(
        db: Client, tournament_id: str
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]], list[dict[str, Any]]]:
        """Fetch the stages, scores and registrations of a tournament."""
        stages = _docs(LeaderboardService._by_tournament(db, STAGES, tournament_id))
        scores = _docs(LeaderboardService._by_tournament(db, SCORES, tournament_id))
        registrations = _docs(
            LeaderboardService._by_tournament(db, REGISTRATIONS, tournament_id)
        )
        return stages, scores, registrations

    @staticmethod
    def compute_results(
        tournament_id: str, db: Client | None = None
    ) -> list[MatchResult]:
        """Rank every scored shooter in the tournament."""
        if db is None:
            db = firestore.client()
        stages, scores, registrations = LeaderboardService.load_tournament_data(
            db, tournament_id
        )
        return compute_match_results(
            tournament_id, stages, scores, registrations, calculated_at=utcnow()
        )

    @staticmethod
    def refresh_match_results(
        tournament_id: str, db: Client | None = None
    ) -> list[MatchResult]:
        """Recompute and persist match results, replacing the previous set."""
        if db is None:
            db = firestore.client()
        results = LeaderboardService.compute_results(tournament_id, db=db)

        current_ids = {f"{tournament_id}_{r['shooterId']}" for r in results}
        stale_refs = [
            doc.reference
            for doc in LeaderboardService._by_tournament(
                db, MATCH_RESULTS, tournament_id
            ).stream()
            if doc.id not in current_ids
        ]

        writes: list[tuple[str, Any, Any]] = [
            ("delete", ref, None) for ref in stale_refs
        ]
        for result in results:
            ref = db.collection(MATCH_RESULTS).document(
                f"{tournament_id}_{result['shooterId']}"
            )
            writes.append(("set", ref, result))

        # Firestore batches are capped, so commit in chunks
        for start in range(0, len(writes), FIRESTORE_BATCH_LIMIT):
            batch = db.batch()
            for op, ref, data in writes[start : start + FIRESTORE_BATCH_LIMIT]:
                if op == "delete":
                    batch.delete(ref)
                else:
                    batch.set(ref, data)
            batch.commit()

        logger.info(
            f"Stored {len(results)} match results for tournament {tournament_id}"
        )
        return results

    @staticmethod
    def get_leaderboard(
        tournament_id: str,
        division: str | None = None,
        classification: str | None = None,
        db: Client | None = None,
    ) -> list[RankEntry]:
        """Return leaderboard rows, optionally filtered by division and class."""
        results = LeaderboardService.compute_results(tournament_id, db=db)
        return leaderboard_entries(results, division, classification)  # type: ignore[arg-type]

    @staticmethod
    def get_stage_rankings(
        stage_id: str, db: Client | None = None
    ) -> dict[str, list[dict[str, Any]]]:
        """Return the division rankings for one stage."""
        if db is None:
            db = firestore.client()
        stage = ScoringService.get_stage(db, stage_id)
        scores = _docs(
            db.collection(SCORES).where(
                filter=firestore.FieldFilter("stageId", "==", stage_id)
            )
        )
        registrations = _docs(
            LeaderboardService._by_tournament(
                db, REGISTRATIONS, stage.get("tournamentId", "")
            )
        )
        return rank_stage(scores, registrations)

    @staticmethod
    def get_squad_progress(
        squad_id: str, tournament_id: str, db: Client | None = None
    ) -> dict[str, Any]:
        """Return how many stages each checked-in squad member has been scored on."""
        if db is None:
            db = firestore.client()
        stages = _docs(LeaderboardService._by_tournament(db, STAGES, tournament_id))
        members = [
            reg
            for reg in _docs(
                db.collection(REGISTRATIONS).where(
                    filter=firestore.FieldFilter("squadId", "==", squad_id)
                )
            )
            if reg.get("status") == REG_CHECKED_IN
        ]
        scores = _docs(LeaderboardService._by_tournament(db, SCORES, tournament_id))
        scored = {(s["stageId"], s["shooterId"]) for s in scores}

        total_stages = len(stages)
        shooters = []
        for reg in members:
            completed = sum(
                1 for stage in stages if (stage["id"], reg["shooterId"]) in scored
            )
            shooters.append(
                {
                    "shooterId": reg["shooterId"],
                    "division": reg.get("division"),
                    "classification": reg.get("classification"),
                    "completedStages": completed,
                    "totalStages": total_stages,
                    "progressPercentage": (
                        round(completed / total_stages * 100) if total_stages else 0
                    ),
                }
            )

        stage_progress = []
        for stage in sorted(stages, key=lambda s: s.get("stageNumber", 0)):
            done = sum(
                1 for reg in members if (stage["id"], reg["shooterId"]) in scored
            )
            stage_progress.append(
                {
                    "stageId": stage["id"],
                    "stageNumber": stage.get("stageNumber"),
                    "name": stage.get("name"),
                    "scoredShooters": done,
                    "totalShooters": len(members),
                }
            )

        return {
            "squadId": squad_id,
            "shooters": shooters,
            "stages": stage_progress,
        }

    @staticmethod
    def get_shooter_progress(
        tournament_id: str, shooter_id: str, db: Client | None = None
    ) -> dict[str, Any]:
        """Return a shooter's completed stages, running totals and accuracy."""
        if db is None:
            db = firestore.client()
        stages = _docs(LeaderboardService._by_tournament(db, STAGES, tournament_id))
        if not stages:
            raise NotFoundError("Tournament has no stages")
        scores = [
            s
            for s in _docs(
                db.collection(SCORES).where(
                    filter=firestore.FieldFilter("shooterId", "==", shooter_id)
                )
            )
            if s.get("tournamentId") == tournament_id
        ]
        finished = [s for s in scores if not (s.get("dnf") or s.get("dq"))]
        total_stages = len(stages)
        return {
            "shooterId": shooter_id,
            "tournamentId": tournament_id,
            "completedStages": len(scores),
            "totalStages": total_stages,
            "progressPercentage": round(len(scores) / total_stages * 100),
            "totalTime": sum(s.get("finalTime", 0) for s in finished),
            "totalPointsDown": sum(s.get("pointsDown", 0) for s in scores),
            "totalPenalties": sum(s.get("penaltyTime", 0) for s in scores),
            "accuracy": shooter_accuracy(scores),
            "dnf": any(s.get("dnf") for s in scores),
            "dq": any(s.get("dq") for s in scores),
        }
