"""Routes for the tournament blueprint."""

from __future__ import annotations

from typing import Any

from firebase_admin import firestore
from flask import current_app, jsonify, request

from idpatourney.errors import ValidationError
from idpatourney.utils import form_errors_message, serialize

from . import bp
from .forms import StageForm
from .models import TournamentSetup
from .services import TournamentService


@bp.route("/", methods=["POST"])
def create_tournament() -> Any:
    """Create a draft tournament with its squads."""
    setup = TournamentSetup.from_dict(request.get_json(silent=True) or {})
    db = firestore.client()
    result = TournamentService.create_tournament(setup, db=db)
    current_app.logger.info(f"Tournament {result['tournamentId']} created")
    return jsonify(result), 201


@bp.route("/<string:tournament_id>", methods=["GET"])
def view_tournament(tournament_id: str) -> Any:
    """Return a tournament."""
    db = firestore.client()
    return jsonify(serialize(TournamentService.get_tournament(tournament_id, db=db)))


@bp.route("/<string:tournament_id>/stages", methods=["POST"])
def add_stage(tournament_id: str) -> Any:
    """Add a stage to a tournament."""
    form = StageForm()
    if not form.validate_on_submit():
        raise ValidationError(form_errors_message(form))
    stage = {
        "name": form.name.data,
        "stageNumber": form.stageNumber.data,
        "strings": form.strings.data,
        "roundCount": form.roundCount.data,
        "scoringType": form.scoringType.data,
    }
    if form.parTime.data is not None:
        stage["parTime"] = float(form.parTime.data)
    db = firestore.client()
    stage_id = TournamentService.add_stage(tournament_id, stage, db=db)
    return jsonify({"stageId": stage_id}), 201


@bp.route("/<string:tournament_id>/publish", methods=["POST"])
def publish_tournament(tournament_id: str) -> Any:
    """Open registration."""
    db = firestore.client()
    tournament = TournamentService.publish_tournament(tournament_id, db=db)
    return jsonify(serialize(tournament))


@bp.route("/<string:tournament_id>/start", methods=["POST"])
def start_tournament(tournament_id: str) -> Any:
    """Start the tournament."""
    db = firestore.client()
    tournament = TournamentService.start_tournament(tournament_id, db=db)
    return jsonify(serialize(tournament))


@bp.route("/<string:tournament_id>/complete", methods=["POST"])
def complete_tournament(tournament_id: str) -> Any:
    """Complete the tournament and store final results."""
    db = firestore.client()
    tournament = TournamentService.complete_tournament(tournament_id, db=db)
    return jsonify(serialize(tournament))
