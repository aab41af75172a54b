"""Routes for leaderboards and scoring progress."""

from __future__ import annotations

from typing import Any

from firebase_admin import firestore
from flask import jsonify, request

from idpatourney.errors import ValidationError
from idpatourney.utils import serialize

from . import bp
from .services import LeaderboardService


@bp.route("/tournaments/<string:tournament_id>/leaderboard", methods=["GET"])
def leaderboard(tournament_id: str) -> Any:
    """Return the leaderboard, optionally filtered by division and class."""
    db = firestore.client()
    entries = LeaderboardService.get_leaderboard(
        tournament_id,
        division=request.args.get("division") or None,
        classification=request.args.get("classification") or None,
        db=db,
    )
    return jsonify({"tournamentId": tournament_id, "entries": entries})


@bp.route("/tournaments/<string:tournament_id>/results", methods=["POST"])
def refresh_results(tournament_id: str) -> Any:
    """Recompute and store match results."""
    db = firestore.client()
    results = LeaderboardService.refresh_match_results(tournament_id, db=db)
    return jsonify({"tournamentId": tournament_id, "results": serialize(results)})


@bp.route("/stages/<string:stage_id>/rankings", methods=["GET"])
def stage_rankings(stage_id: str) -> Any:
    """Return division rankings for a stage."""
    db = firestore.client()
    rankings = LeaderboardService.get_stage_rankings(stage_id, db=db)
    return jsonify({"stageId": stage_id, "divisions": rankings})


@bp.route(
    "/tournaments/<string:tournament_id>/shooters/<string:shooter_id>/progress",
    methods=["GET"],
)
def shooter_progress(tournament_id: str, shooter_id: str) -> Any:
    """Return a shooter's progress through the tournament."""
    db = firestore.client()
    return jsonify(
        LeaderboardService.get_shooter_progress(tournament_id, shooter_id, db=db)
    )


@bp.route("/squads/<string:squad_id>/progress", methods=["GET"])
def squad_progress(squad_id: str) -> Any:
    """Return scoring progress for a squad's checked-in shooters."""
    tournament_id = request.args.get("tournamentId")
    if not tournament_id:
        raise ValidationError("tournamentId is required")
    db = firestore.client()
    return jsonify(LeaderboardService.get_squad_progress(squad_id, tournament_id, db=db))
