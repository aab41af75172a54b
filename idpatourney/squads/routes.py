"""Routes for registrations and squads."""

from __future__ import annotations

from typing import Any

from firebase_admin import firestore
from flask import current_app, jsonify

from idpatourney.errors import ValidationError
from idpatourney.utils import form_errors_message, serialize

from . import bp, registrations_bp
from .forms import (
    CapacityForm,
    CheckInForm,
    OfficerForm,
    OwnerForm,
    RegistrationForm,
    TransferForm,
)
from .models import RegistrationRequest
from .repository import find_by_officer
from .services import SquadCapacityManager


def _validated(form: Any) -> Any:
    if not form.validate_on_submit():
        raise ValidationError(form_errors_message(form))
    return form


@registrations_bp.route("/", methods=["POST"])
def register() -> Any:
    """Register a shooter into a squad or onto its waitlist."""
    form = _validated(RegistrationForm())
    registration = RegistrationRequest(
        tournament_id=form.tournamentId.data,
        shooter_id=form.shooterId.data,
        squad_id=form.squadId.data,
        division=form.division.data,
        classification=form.classification.data,
        custom_categories=form.customCategories.data or [],
    )
    db = firestore.client()
    result = SquadCapacityManager.register(registration, db=db)
    return jsonify(result), 201


@registrations_bp.route("/<string:registration_id>/cancel", methods=["POST"])
def cancel(registration_id: str) -> Any:
    """Cancel a registration."""
    form = _validated(OwnerForm())
    db = firestore.client()
    result = SquadCapacityManager.cancel(registration_id, form.userId.data, db=db)
    return jsonify(result)


@registrations_bp.route("/<string:registration_id>/transfer", methods=["POST"])
def transfer(registration_id: str) -> Any:
    """Move a registration to another squad."""
    form = _validated(TransferForm())
    db = firestore.client()
    result = SquadCapacityManager.transfer(
        registration_id, form.newSquadId.data, form.userId.data, db=db
    )
    return jsonify(result)


@registrations_bp.route("/<string:registration_id>/check-in", methods=["POST"])
def check_in(registration_id: str) -> Any:
    """Check a shooter in at the range."""
    form = _validated(CheckInForm())
    db = firestore.client()
    registration = SquadCapacityManager.check_in(
        registration_id,
        division=form.division.data or None,
        classification=form.classification.data or None,
        db=db,
    )
    current_app.logger.info(f"Registration {registration_id} checked in")
    return jsonify(serialize(registration))


@registrations_bp.route(
    "/<string:registration_id>/waitlist-position", methods=["GET"]
)
def waitlist_position(registration_id: str) -> Any:
    """Return where a registration sits on its squad's waitlist."""
    db = firestore.client()
    position = SquadCapacityManager.waitlist_position(registration_id, db=db)
    if position is None:
        return jsonify({"position": None, "total": None})
    return jsonify(position)


@bp.route("/<string:squad_id>/close", methods=["POST"])
def close_squad(squad_id: str) -> Any:
    """Close a squad."""
    db = firestore.client()
    return jsonify(SquadCapacityManager.close_squad(squad_id, db=db))


@bp.route("/<string:squad_id>/open", methods=["POST"])
def open_squad(squad_id: str) -> Any:
    """Reopen a squad."""
    db = firestore.client()
    return jsonify(SquadCapacityManager.open_squad(squad_id, db=db))


@bp.route("/<string:squad_id>/capacity", methods=["POST"])
def set_capacity(squad_id: str) -> Any:
    """Change a squad's capacity."""
    form = _validated(CapacityForm())
    db = firestore.client()
    return jsonify(
        SquadCapacityManager.set_capacity(squad_id, form.maxShooters.data, db=db)
    )


@bp.route("/<string:squad_id>/reconcile", methods=["POST"])
def reconcile(squad_id: str) -> Any:
    """Recount a squad's shooters."""
    db = firestore.client()
    return jsonify(SquadCapacityManager.reconcile_squad(squad_id, db=db))


@bp.route("/<string:squad_id>/officer", methods=["POST"])
def assign_officer(squad_id: str) -> Any:
    """Assign a security officer."""
    form = _validated(OfficerForm())
    db = firestore.client()
    SquadCapacityManager.assign_officer(squad_id, form.officerId.data, db=db)
    return jsonify({"success": True})


@bp.route("/<string:squad_id>/officer", methods=["DELETE"])
def remove_officer(squad_id: str) -> Any:
    """Remove the security officer."""
    db = firestore.client()
    SquadCapacityManager.remove_officer(squad_id, db=db)
    return jsonify({"success": True})


@bp.route("/<string:squad_id>/roster", methods=["GET"])
def roster(squad_id: str) -> Any:
    """Return the squad roster and waitlist."""
    db = firestore.client()
    return jsonify(serialize(SquadCapacityManager.squad_roster(squad_id, db=db)))


@bp.route("/officers/<string:officer_id>", methods=["GET"])
def officer_squads(officer_id: str) -> Any:
    """Return the squads assigned to a security officer."""
    db = firestore.client()
    return jsonify(serialize(find_by_officer(db, officer_id)))


@bp.route("/tournaments/<string:tournament_id>/available", methods=["GET"])
def available_squads(tournament_id: str) -> Any:
    """Return squads with free slots."""
    db = firestore.client()
    return jsonify(
        serialize(SquadCapacityManager.available_squads(tournament_id, db=db))
    )
