"""Service layer for stage scores.

Every score write, whether from the API, the offline queue or a conflict
resolution, goes through ScoringService so derived fields are always
recomputed from the raw strings and penalties.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from firebase_admin import firestore

from idpatourney.constants import REG_CANCELLED, REGISTRATIONS, SCORES, STAGES
from idpatourney.core.transactions import get_in_transaction, run_transaction, utcnow
from idpatourney.errors import (
    DuplicateResourceError,
    NotFoundError,
    ScoreConflictError,
)
from idpatourney.utils import parse_timestamp, snapshot_to_dict

from .calculator import calculate_score_breakdown, validate_score_input
from .conflicts import ConflictRecord, ConflictResolver, Resolution, ScoreVersion
from .models import normalize_penalties, normalize_strings

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.transaction import Transaction

    from .models import Penalties, ScoreSubmission, StringScore

logger = logging.getLogger(__name__)


class ScoringService:
    """Service class for score submission and updates."""

    @staticmethod
    def score_id(stage_id: str, shooter_id: str) -> str:
        """Return the natural key of the score for a shooter on a stage."""
        return f"{stage_id}_{shooter_id}"

    @staticmethod
    def get_stage(db: Client, stage_id: str) -> dict[str, Any]:
        """Fetch a stage or raise NotFoundError."""
        snap = cast("DocumentSnapshot", db.collection(STAGES).document(stage_id).get())
        stage = snapshot_to_dict(snap)
        if stage is None:
            raise NotFoundError("Stage not found")
        return stage

    @staticmethod
    def get_score(db: Client, score_id: str) -> dict[str, Any] | None:
        """Fetch a score by id."""
        snap = cast("DocumentSnapshot", db.collection(SCORES).document(score_id).get())
        return snapshot_to_dict(snap)

    @staticmethod
    def build_score_fields(
        stage: dict[str, Any],
        strings: list[StringScore],
        penalties: Penalties,
        dnf: bool,
        dq: bool,
    ) -> dict[str, Any]:
        """Validate the input against the stage and compute the derived fields."""
        validate_score_input(
            strings,
            penalties,
            round_count=stage.get("roundCount"),
            string_count=stage.get("strings"),
        )
        breakdown = calculate_score_breakdown(strings, penalties, dnf, dq)
        fields = {
            "strings": strings,
            "penalties": penalties,
            "dnf": dnf,
            "dq": dq,
        }
        fields.update(breakdown.to_fields())
        return fields

    @staticmethod
    def _registration_context(
        db: Client, tournament_id: str, shooter_id: str
    ) -> dict[str, Any]:
        """Return squad, division and classification from the registration."""
        query = (
            db.collection(REGISTRATIONS)
            .where(filter=firestore.FieldFilter("tournamentId", "==", tournament_id))
            .where(filter=firestore.FieldFilter("shooterId", "==", shooter_id))
        )
        for doc in query.stream():
            data = doc.to_dict() or {}
            if data.get("status") != REG_CANCELLED:
                return data
        return {}

    @staticmethod
    def submit_score(
        submission: ScoreSubmission, db: Client | None = None
    ) -> dict[str, Any]:
        """Create the score for a shooter on a stage."""
        if db is None:
            db = firestore.client()

        stage = ScoringService.get_stage(db, submission.stage_id)
        fields = ScoringService.build_score_fields(
            stage,
            submission.strings,
            submission.penalties,
            submission.dnf,
            submission.dq,
        )
        tournament_id = stage.get("tournamentId")
        context = ScoringService._registration_context(
            db, tournament_id, submission.shooter_id
        )
        now = utcnow()
        data = {
            "stageId": submission.stage_id,
            "tournamentId": tournament_id,
            "shooterId": submission.shooter_id,
            "squadId": submission.squad_id or context.get("squadId"),
            "division": submission.division or context.get("division"),
            "classification": (
                submission.classification or context.get("classification")
            ),
            "scoredBy": submission.scored_by,
            "scoredAt": now,
            "updatedAt": now,
            **fields,
        }
        score_id = ScoringService.score_id(submission.stage_id, submission.shooter_id)
        score_ref = db.collection(SCORES).document(score_id)

        def _create(transaction: Transaction) -> None:
            snap = get_in_transaction(transaction, score_ref)
            if snap.exists:
                raise DuplicateResourceError(
                    "Score already exists for this shooter on this stage. "
                    "Use updateScore instead."
                )
            transaction.set(score_ref, data)

        run_transaction(db, _create)
        logger.info(f"Score {score_id} submitted by {submission.scored_by}")
        return {"scoreId": score_id, "finalTime": data["finalTime"]}

    @staticmethod
    def update_score(  # noqa: PLR0913
        score_id: str,
        scored_by: str,
        strings: Any = None,
        penalties: Any = None,
        dnf: bool | None = None,
        dq: bool | None = None,
        base_version: Any = None,
        local_modified: Any = None,
        detect_conflicts: bool = False,
        db: Client | None = None,
    ) -> dict[str, Any]:
        """Rescore an existing score.

        When ``base_version`` is given, or ``detect_conflicts`` is set, the
        update is a replay of a local edit: if the server copy changed after
        that version and now differs, a ScoreConflictError carrying both
        versions is raised instead of overwriting it. A replay without a base
        version conflicts with any differing server copy.
        """
        if db is None:
            db = firestore.client()

        score_ref = db.collection(SCORES).document(score_id)
        current = ScoringService.get_score(db, score_id)
        if current is None:
            raise NotFoundError("Score not found")
        stage = ScoringService.get_stage(db, current["stageId"])

        new_strings = normalize_strings(
            strings if strings is not None else current.get("strings", [])
        )
        new_penalties = normalize_penalties(
            penalties if penalties is not None else current.get("penalties")
        )
        new_dnf = bool(current.get("dnf", False) if dnf is None else dnf)
        new_dq = bool(current.get("dq", False) if dq is None else dq)
        fields = ScoringService.build_score_fields(
            stage, new_strings, new_penalties, new_dnf, new_dq
        )
        base = parse_timestamp(base_version)
        local = ScoreVersion(
            strings=new_strings,
            penalties=new_penalties,
            dnf=new_dnf,
            dq=new_dq,
            last_modified=parse_timestamp(local_modified),
            modified_by=scored_by,
        )

        def _update(transaction: Transaction) -> dict[str, Any]:
            snap = get_in_transaction(transaction, score_ref)
            if not snap.exists:
                raise NotFoundError("Score not found")
            server_data = snap.to_dict() or {}
            if base is not None or detect_conflicts:
                conflict = ConflictResolver.detect(
                    score_id,
                    server_data.get("stageId", ""),
                    server_data.get("shooterId", ""),
                    local,
                    ScoreVersion.from_dict(server_data),
                    base,
                )
                if conflict is not None:
                    raise ScoreConflictError(conflict)
            updates = {**fields, "scoredBy": scored_by, "updatedAt": utcnow()}
            transaction.update(score_ref, updates)
            return {**server_data, **updates, "id": score_id}

        updated = run_transaction(db, _update)
        logger.info(f"Score {score_id} updated by {scored_by}")
        return updated

    @staticmethod
    def apply_resolution(
        conflict: ConflictRecord, resolution: Resolution, db: Client | None = None
    ) -> dict[str, Any]:
        """Write the chosen version back through the normal update path."""
        version = resolution.version
        updated = ScoringService.update_score(
            conflict.score_id,
            version.modified_by or conflict.local.modified_by or "system",
            strings=version.strings,
            penalties=version.penalties,
            dnf=version.dnf,
            dq=version.dq,
            db=db,
        )
        logger.info(
            f"Conflict on score {conflict.score_id} resolved with "
            f"{resolution.choice} ({resolution.reason})"
        )
        return updated
