"""Server side of the offline action queue.

Clients that lost connectivity replay their actions through this queue. Each
item is processed at most once to completion: completed items are skipped,
failed items stay failed, transient errors are retried a bounded number of
times and tournament rule violations are never retried.
"""

from __future__ import annotations

import datetime
import logging
from typing import TYPE_CHECKING, Any, Callable, cast

from firebase_admin import firestore

from idpatourney.constants import (
    ACTION_CREATE_REGISTRATION,
    ACTION_SUBMIT_SCORE,
    ACTION_UPDATE_PROFILE,
    ACTION_UPDATE_SCORE,
    OFFLINE_MAX_RETRIES,
    OFFLINE_QUEUE,
    OFFLINE_RETENTION_HOURS,
    PROCESSING_LEASE_SECONDS,
    QUEUE_ACTIONS,
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_PENDING,
    QUEUE_PROCESSING,
    QUEUE_STATUSES,
    USERS,
)
from idpatourney.core.transactions import get_in_transaction, run_transaction, utcnow
from idpatourney.errors import (
    AppError,
    DuplicateResourceError,
    NotFoundError,
    NotOwner,
    QueueItemBusy,
    QueueItemFailed,
    ScoreConflictError,
    ValidationError,
)
from idpatourney.scoring.calculator import validate_score_input
from idpatourney.scoring.conflicts import ConflictRecord, ConflictResolver, ScoreVersion
from idpatourney.scoring.models import (
    ScoreSubmission,
    normalize_penalties,
    normalize_strings,
)
from idpatourney.scoring.services import ScoringService
from idpatourney.squads.models import RegistrationRequest
from idpatourney.squads.repository import find_active_registration
from idpatourney.squads.services import SquadCapacityManager
from idpatourney.utils import parse_timestamp, snapshot_to_dict

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

logger = logging.getLogger(__name__)

PROFILE_PROTECTED_FIELDS = ("role", "email", "createdAt")


def _queue_order_key(item: dict[str, Any]) -> tuple[Any, str]:
    return (parse_timestamp(item.get("createdAt")), item["id"])


def validate_payload(action: str, payload: dict[str, Any]) -> None:
    """Reject payloads that could never succeed before they are queued."""
    if action == ACTION_SUBMIT_SCORE:
        submission = ScoreSubmission.from_dict(payload)
        validate_score_input(submission.strings, submission.penalties)
    elif action == ACTION_UPDATE_SCORE:
        missing = [k for k in ("scoreId", "scoredBy") if not payload.get(k)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        validate_score_input(
            normalize_strings(payload.get("strings") or []),
            normalize_penalties(payload.get("penalties")),
        )
    elif action == ACTION_UPDATE_PROFILE:
        updates = payload.get("updates")
        if not isinstance(updates, dict) or not updates:
            raise ValidationError("updates must be a non-empty object.")
        protected = [k for k in updates if k in PROFILE_PROTECTED_FIELDS]
        if protected:
            raise ValidationError(f"Cannot change {', '.join(protected)} offline.")
    elif action == ACTION_CREATE_REGISTRATION:
        required = ("tournamentId", "squadId", "division", "classification")
        missing = [k for k in required if not payload.get(k)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")


class OfflineSyncService:
    """Service class for the offline action queue."""

    @staticmethod
    def enqueue(
        user_id: str,
        action: str,
        payload: dict[str, Any],
        db: Client | None = None,
    ) -> str:
        """Queue an action for later processing and return its id."""
        if db is None:
            db = firestore.client()
        if not user_id:
            raise ValidationError("userId is required.")
        if action not in QUEUE_ACTIONS:
            raise ValidationError(f"Unknown action type: {action}")
        if not isinstance(payload, dict):
            raise ValidationError("payload must be an object.")
        validate_payload(action, payload)

        _, ref = db.collection(OFFLINE_QUEUE).add(
            {
                "userId": user_id,
                "action": action,
                "payload": payload,
                "createdAt": utcnow(),
                "retries": 0,
                "status": QUEUE_PENDING,
            }
        )
        logger.info(f"Queued {action} for user {user_id} as {ref.id}")
        return str(ref.id)

    @staticmethod
    def get_item(queue_id: str, db: Client | None = None) -> dict[str, Any]:
        """Fetch a queue item or raise NotFoundError."""
        if db is None:
            db = firestore.client()
        snap = cast(
            "DocumentSnapshot", db.collection(OFFLINE_QUEUE).document(queue_id).get()
        )
        item = snapshot_to_dict(snap)
        if item is None:
            raise NotFoundError("Queue item not found")
        return item

    @staticmethod
    def _items_for_user(
        db: Client, user_id: str, status: str | None = None
    ) -> list[dict[str, Any]]:
        query = db.collection(OFFLINE_QUEUE).where(
            filter=firestore.FieldFilter("userId", "==", user_id)
        )
        if status:
            query = query.where(filter=firestore.FieldFilter("status", "==", status))
        items = []
        for doc in query.stream():
            data = doc.to_dict() or {}
            data["id"] = doc.id
            items.append(data)
        return items

    @staticmethod
    def list_pending(user_id: str, db: Client | None = None) -> list[dict[str, Any]]:
        """Return a user's pending items, oldest first."""
        if db is None:
            db = firestore.client()
        items = OfflineSyncService._items_for_user(db, user_id, QUEUE_PENDING)
        return sorted(items, key=_queue_order_key)

    @staticmethod
    def list_unfinished(
        user_id: str, db: Client | None = None
    ) -> list[dict[str, Any]]:
        """Return a user's pending and in-flight items, oldest first.

        An item left in ``processing`` by a worker that died keeps its place in
        the order; once its lease expires the next processor takes it over.
        """
        if db is None:
            db = firestore.client()
        items = OfflineSyncService._items_for_user(
            db, user_id, QUEUE_PENDING
        ) + OfflineSyncService._items_for_user(db, user_id, QUEUE_PROCESSING)
        return sorted(items, key=_queue_order_key)

    @staticmethod
    def _claim(
        db: Client, ref: DocumentReference, queue_id: str
    ) -> tuple[bool, dict[str, Any]]:
        """Mark a pending item as processing; returns (claimed, item)."""

        def _apply(transaction: Transaction) -> tuple[bool, dict[str, Any]]:
            snap = get_in_transaction(transaction, ref)
            if not snap.exists:
                raise NotFoundError("Queue item not found")
            item = {**(snap.to_dict() or {}), "id": queue_id}
            status = item.get("status")
            if status == QUEUE_COMPLETED:
                return False, item
            if status == QUEUE_FAILED:
                raise QueueItemFailed(queue_id, item.get("error"))
            now = utcnow()
            if status == QUEUE_PROCESSING:
                started = parse_timestamp(item.get("processingStartedAt"))
                lease = datetime.timedelta(seconds=PROCESSING_LEASE_SECONDS)
                if started is not None and now - started < lease:
                    raise QueueItemBusy(queue_id)
            transaction.update(
                ref, {"status": QUEUE_PROCESSING, "processingStartedAt": now}
            )
            return True, item

        return run_transaction(db, _apply)

    @staticmethod
    def process_item(
        queue_id: str,
        db: Client | None = None,
        max_retries: int = OFFLINE_MAX_RETRIES,
    ) -> dict[str, Any]:
        """Process one queue item.

        Returns ``{"success": True, ...}`` when the action has been applied,
        now or before. Otherwise the returned status tells the caller whether
        the item will be retried (``pending``) or is frozen (``failed``).
        """
        if db is None:
            db = firestore.client()
        ref = db.collection(OFFLINE_QUEUE).document(queue_id)
        claimed, item = OfflineSyncService._claim(db, ref, queue_id)
        if not claimed:
            return {
                "success": True,
                "status": QUEUE_COMPLETED,
                "skipped": True,
                "result": item.get("result"),
            }

        try:
            result = OfflineSyncService._execute(item, db)
        except ScoreConflictError as e:
            return OfflineSyncService._fail_with_conflict(ref, queue_id, e)
        except AppError as e:
            # Tournament rules and bad input do not change on retry
            ref.update(
                {
                    "status": QUEUE_FAILED,
                    "error": e.message,
                    "errorType": type(e).__name__,
                    "failedAt": utcnow(),
                }
            )
            logger.warning(f"Queue item {queue_id} failed: {e.message}")
            return {
                "success": False,
                "status": QUEUE_FAILED,
                "retries": item.get("retries", 0),
                "error": e.message,
            }
        except Exception as e:
            return OfflineSyncService._record_transient_failure(
                ref, queue_id, item, e, max_retries
            )

        ref.update(
            {"status": QUEUE_COMPLETED, "completedAt": utcnow(), "result": result}
        )
        logger.info(f"Queue item {queue_id} ({item['action']}) completed")
        return {"success": True, "status": QUEUE_COMPLETED, "result": result}

    @staticmethod
    def _record_transient_failure(
        ref: DocumentReference,
        queue_id: str,
        item: dict[str, Any],
        error: Exception,
        max_retries: int,
    ) -> dict[str, Any]:
        retries = item.get("retries", 0) + 1
        message = str(error) or type(error).__name__
        if retries >= max_retries:
            ref.update(
                {
                    "status": QUEUE_FAILED,
                    "retries": retries,
                    "error": message,
                    "failedAt": utcnow(),
                }
            )
            logger.error(
                f"Queue item {queue_id} failed after {retries} attempts: {message}"
            )
            status = QUEUE_FAILED
        else:
            ref.update(
                {"status": QUEUE_PENDING, "retries": retries, "lastError": message}
            )
            logger.warning(
                f"Queue item {queue_id} attempt {retries} failed, will retry: "
                f"{message}"
            )
            status = QUEUE_PENDING
        return {
            "success": False,
            "status": status,
            "retries": retries,
            "error": message,
        }

    @staticmethod
    def _fail_with_conflict(
        ref: DocumentReference, queue_id: str, error: ScoreConflictError
    ) -> dict[str, Any]:
        conflict = error.conflict.to_dict()
        ref.update(
            {
                "status": QUEUE_FAILED,
                "error": error.message,
                "errorType": type(error).__name__,
                "conflict": conflict,
                "failedAt": utcnow(),
            }
        )
        logger.info(f"Queue item {queue_id} waits for manual conflict resolution")
        return {
            "success": False,
            "status": QUEUE_FAILED,
            "error": error.message,
            "conflict": conflict,
        }

    @staticmethod
    def _execute(item: dict[str, Any], db: Client) -> dict[str, Any]:
        handlers: dict[str, Callable[[dict[str, Any], Client], dict[str, Any]]] = {
            ACTION_SUBMIT_SCORE: OfflineSyncService._replay_submit_score,
            ACTION_UPDATE_SCORE: OfflineSyncService._replay_update_score,
            ACTION_UPDATE_PROFILE: OfflineSyncService._replay_update_profile,
            ACTION_CREATE_REGISTRATION: OfflineSyncService._replay_registration,
        }
        handler = handlers.get(item.get("action", ""))
        if handler is None:
            raise ValidationError(f"Unknown action type: {item.get('action')}")
        return handler(item, db)

    @staticmethod
    def _auto_resolving(
        write: Callable[[], dict[str, Any]], db: Client
    ) -> dict[str, Any]:
        """Run a score write, settling conflicts the automatic rules can decide."""
        try:
            return write()
        except ScoreConflictError as e:
            resolution = ConflictResolver.auto_resolve(e.conflict)
            if resolution is None:
                raise
            updated = ScoringService.apply_resolution(e.conflict, resolution, db=db)
            return {
                "scoreId": e.conflict.score_id,
                "finalTime": updated.get("finalTime"),
                "resolution": resolution.to_dict(),
            }

    @staticmethod
    def _replay_submit_score(item: dict[str, Any], db: Client) -> dict[str, Any]:
        payload = item.get("payload", {})
        submission = ScoreSubmission.from_dict(payload)
        score_id = ScoringService.score_id(submission.stage_id, submission.shooter_id)

        def _write() -> dict[str, Any]:
            existing = ScoringService.get_score(db, score_id)
            if existing is None:
                try:
                    return ScoringService.submit_score(submission, db=db)
                except DuplicateResourceError:
                    # Created by someone else since the lookup
                    existing = ScoringService.get_score(db, score_id) or {}
            local = ScoreVersion(
                strings=submission.strings,
                penalties=submission.penalties,
                dnf=submission.dnf,
                dq=submission.dq,
            )
            if local.same_content(ScoreVersion.from_dict(existing)):
                return {
                    "scoreId": score_id,
                    "finalTime": existing.get("finalTime"),
                    "skipped": True,
                }
            updated = ScoringService.update_score(
                score_id,
                submission.scored_by,
                strings=submission.strings,
                penalties=submission.penalties,
                dnf=submission.dnf,
                dq=submission.dq,
                base_version=payload.get("baseVersion"),
                local_modified=payload.get("lastModified"),
                detect_conflicts=True,
                db=db,
            )
            return {"scoreId": score_id, "finalTime": updated.get("finalTime")}

        return OfflineSyncService._auto_resolving(_write, db)

    @staticmethod
    def _replay_update_score(item: dict[str, Any], db: Client) -> dict[str, Any]:
        payload = item.get("payload", {})

        def _write() -> dict[str, Any]:
            updated = ScoringService.update_score(
                payload["scoreId"],
                payload["scoredBy"],
                strings=payload.get("strings"),
                penalties=payload.get("penalties"),
                dnf=payload.get("dnf"),
                dq=payload.get("dq"),
                base_version=payload.get("baseVersion"),
                local_modified=payload.get("lastModified"),
                detect_conflicts=True,
                db=db,
            )
            return {"scoreId": payload["scoreId"], "finalTime": updated.get("finalTime")}

        return OfflineSyncService._auto_resolving(_write, db)

    @staticmethod
    def _replay_update_profile(item: dict[str, Any], db: Client) -> dict[str, Any]:
        payload = item.get("payload", {})
        user_id = payload.get("userId") or item["userId"]
        if user_id != item["userId"]:
            raise NotOwner("Users can only update their own profile.")
        ref = db.collection(USERS).document(user_id)
        if not cast("DocumentSnapshot", ref.get()).exists:
            raise NotFoundError("User not found")
        ref.update({**payload["updates"], "updatedAt": utcnow()})
        return {"userId": user_id}

    @staticmethod
    def _replay_registration(item: dict[str, Any], db: Client) -> dict[str, Any]:
        payload = item.get("payload", {})
        shooter_id = payload.get("shooterId") or item["userId"]
        existing = find_active_registration(db, payload["tournamentId"], shooter_id)
        if existing is not None:
            return {
                "registrationId": existing["id"],
                "status": existing.get("status"),
                "skipped": True,
            }
        return SquadCapacityManager.register(
            RegistrationRequest(
                tournament_id=payload["tournamentId"],
                shooter_id=shooter_id,
                squad_id=payload["squadId"],
                division=payload["division"],
                classification=payload["classification"],
                custom_categories=list(payload.get("customCategories") or []),
            ),
            db=db,
        )

    @staticmethod
    def drain(
        user_id: str,
        db: Client | None = None,
        max_retries: int = OFFLINE_MAX_RETRIES,
    ) -> dict[str, Any]:
        """Process a user's unfinished items in order.

        Stops at the first item that will be retried, or that another worker
        still holds, so later actions never overtake earlier ones.
        """
        if db is None:
            db = firestore.client()
        summary = {"processed": 0, "failed": 0, "remaining": 0}
        pending = OfflineSyncService.list_unfinished(user_id, db=db)
        for index, item in enumerate(pending):
            try:
                outcome = OfflineSyncService.process_item(
                    item["id"], db=db, max_retries=max_retries
                )
            except QueueItemBusy:
                summary["remaining"] = len(pending) - index
                break
            if outcome["success"]:
                summary["processed"] += 1
            elif outcome["status"] == QUEUE_FAILED:
                summary["failed"] += 1
            else:
                summary["remaining"] = len(pending) - index
                break
        return summary

    @staticmethod
    def resolve_conflict(
        queue_id: str, choice: str, db: Client | None = None
    ) -> dict[str, Any]:
        """Settle a conflicted item with a person's choice and complete it."""
        if db is None:
            db = firestore.client()
        item = OfflineSyncService.get_item(queue_id, db=db)
        if item.get("status") != QUEUE_FAILED or not item.get("conflict"):
            raise ValidationError("Queue item has no conflict to resolve.")

        conflict = ConflictRecord.from_dict(item["conflict"])
        current = ScoringService.get_score(db, conflict.score_id)
        if current is not None:
            conflict.server = ScoreVersion.from_dict(current)
        resolution = ConflictResolver.resolve(conflict, choice)
        updated = ScoringService.apply_resolution(conflict, resolution, db=db)

        result = {
            "scoreId": conflict.score_id,
            "finalTime": updated.get("finalTime"),
            "resolution": resolution.to_dict(),
        }
        db.collection(OFFLINE_QUEUE).document(queue_id).update(
            {"status": QUEUE_COMPLETED, "completedAt": utcnow(), "result": result}
        )
        return {"success": True, "status": QUEUE_COMPLETED, "result": result}

    @staticmethod
    def dismiss_item(queue_id: str, db: Client | None = None) -> None:
        """Acknowledge and remove a failed item."""
        if db is None:
            db = firestore.client()
        item = OfflineSyncService.get_item(queue_id, db=db)
        if item.get("status") != QUEUE_FAILED:
            raise ValidationError("Only failed items can be dismissed.")
        db.collection(OFFLINE_QUEUE).document(queue_id).delete()

    @staticmethod
    def get_sync_status(user_id: str, db: Client | None = None) -> dict[str, int]:
        """Count a user's queue items per status."""
        if db is None:
            db = firestore.client()
        counts = dict.fromkeys(QUEUE_STATUSES, 0)
        items = OfflineSyncService._items_for_user(db, user_id)
        for item in items:
            status = item.get("status", QUEUE_PENDING)
            counts[status] = counts.get(status, 0) + 1
        counts["total"] = len(items)
        return counts

    @staticmethod
    def clear_completed(
        user_id: str,
        db: Client | None = None,
        retention_hours: int = OFFLINE_RETENTION_HOURS,
    ) -> int:
        """Delete completed items older than the retention window."""
        if db is None:
            db = firestore.client()
        cutoff = utcnow() - datetime.timedelta(hours=retention_hours)
        removed = 0
        for item in OfflineSyncService._items_for_user(db, user_id, QUEUE_COMPLETED):
            completed_at = parse_timestamp(item.get("completedAt"))
            if completed_at is not None and completed_at < cutoff:
                db.collection(OFFLINE_QUEUE).document(item["id"]).delete()
                removed += 1
        if removed:
            logger.info(f"Removed {removed} completed queue items for {user_id}")
        return removed
