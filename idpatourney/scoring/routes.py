"""Routes for the scoring blueprint."""

from __future__ import annotations

from typing import Any

from firebase_admin import firestore
from flask import current_app, jsonify, request

from idpatourney.errors import NotFoundError, ValidationError
from idpatourney.utils import serialize

from . import bp
from .models import ScoreSubmission
from .services import ScoringService


@bp.route("/scores", methods=["POST"])
def submit_score() -> Any:
    """Submit a new stage score."""
    data = request.get_json(silent=True) or {}
    submission = ScoreSubmission.from_dict(data)
    db = firestore.client()
    result = ScoringService.submit_score(submission, db=db)
    current_app.logger.info(
        f"Score {result['scoreId']} submitted for stage {submission.stage_id}"
    )
    return jsonify(result), 201


@bp.route("/scores/<string:score_id>", methods=["GET"])
def get_score(score_id: str) -> Any:
    """Return one score."""
    db = firestore.client()
    score = ScoringService.get_score(db, score_id)
    if score is None:
        raise NotFoundError("Score not found")
    return jsonify(serialize(score))


@bp.route("/scores/<string:score_id>", methods=["PUT"])
def update_score(score_id: str) -> Any:
    """Rescore a stage.

    Clients replaying an offline edit send ``baseVersion``; a newer server
    copy then answers 409 with both versions.
    """
    data = request.get_json(silent=True) or {}
    scored_by = data.get("scoredBy")
    if not scored_by:
        raise ValidationError("Missing required fields: scoredBy")
    db = firestore.client()
    updated = ScoringService.update_score(
        score_id,
        scored_by,
        strings=data.get("strings"),
        penalties=data.get("penalties"),
        dnf=data.get("dnf"),
        dq=data.get("dq"),
        base_version=data.get("baseVersion"),
        local_modified=data.get("lastModified"),
        db=db,
    )
    return jsonify(serialize(updated))
