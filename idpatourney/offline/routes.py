"""Routes for the offline sync queue."""

from __future__ import annotations

from typing import Any

from firebase_admin import firestore
from flask import current_app, jsonify, request

from idpatourney.errors import ValidationError
from idpatourney.utils import form_errors_message, serialize

from . import bp
from .forms import ResolveForm, UserForm
from .services import OfflineSyncService


def _validated(form: Any) -> Any:
    if not form.validate_on_submit():
        raise ValidationError(form_errors_message(form))
    return form


def _user_arg() -> str:
    user_id = request.args.get("userId")
    if not user_id:
        raise ValidationError("userId is required.")
    return user_id


@bp.route("/queue", methods=["POST"])
def enqueue() -> Any:
    """Queue an action taken while offline."""
    data = request.get_json(silent=True) or {}
    db = firestore.client()
    queue_id = OfflineSyncService.enqueue(
        data.get("userId", ""), data.get("action", ""), data.get("payload"), db=db
    )
    return jsonify({"queueId": queue_id}), 201


@bp.route("/queue/pending", methods=["GET"])
def pending() -> Any:
    """List a user's pending actions, oldest first."""
    db = firestore.client()
    items = OfflineSyncService.list_pending(_user_arg(), db=db)
    return jsonify({"items": serialize(items)})


@bp.route("/queue/<string:queue_id>/process", methods=["POST"])
def process(queue_id: str) -> Any:
    """Process one queued action."""
    db = firestore.client()
    outcome = OfflineSyncService.process_item(
        queue_id, db=db, max_retries=current_app.config["OFFLINE_MAX_RETRIES"]
    )
    return jsonify(serialize(outcome))


@bp.route("/queue/<string:queue_id>/resolve", methods=["POST"])
def resolve(queue_id: str) -> Any:
    """Settle a conflicted action."""
    form = _validated(ResolveForm())
    db = firestore.client()
    outcome = OfflineSyncService.resolve_conflict(queue_id, form.choice.data, db=db)
    current_app.logger.info(f"Queue item {queue_id} resolved with {form.choice.data}")
    return jsonify(serialize(outcome))


@bp.route("/queue/<string:queue_id>/dismiss", methods=["POST"])
def dismiss(queue_id: str) -> Any:
    """Remove a failed action."""
    db = firestore.client()
    OfflineSyncService.dismiss_item(queue_id, db=db)
    return jsonify({"success": True})


@bp.route("/queue/drain", methods=["POST"])
def drain() -> Any:
    """Process a user's pending actions in order."""
    form = _validated(UserForm())
    db = firestore.client()
    summary = OfflineSyncService.drain(
        form.userId.data,
        db=db,
        max_retries=current_app.config["OFFLINE_MAX_RETRIES"],
    )
    return jsonify(summary)


@bp.route("/queue/clear", methods=["POST"])
def clear_completed() -> Any:
    """Delete a user's completed actions past the retention window."""
    form = _validated(UserForm())
    db = firestore.client()
    removed = OfflineSyncService.clear_completed(
        form.userId.data,
        db=db,
        retention_hours=current_app.config["OFFLINE_RETENTION_HOURS"],
    )
    return jsonify({"removed": removed})


@bp.route("/status", methods=["GET"])
def status() -> Any:
    """Count a user's queued actions per status."""
    db = firestore.client()
    return jsonify(OfflineSyncService.get_sync_status(_user_arg(), db=db))
