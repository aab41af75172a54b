"""Client-side sync worker and its transports.

One SyncWorker runs per user session. It replays the local action queue into
the server queue strictly in order, one action at a time, and stops at the
first action that cannot be delivered yet.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Optional

import httpx

from idpatourney.constants import (
    ACTION_SUBMIT_SCORE,
    ACTION_UPDATE_SCORE,
    OFFLINE_MAX_RETRIES,
    OFFLINE_RETENTION_HOURS,
    QUEUE_ACTIONS,
    QUEUE_FAILED,
    SYNC_BACKOFF_SECONDS,
    SYNC_MAX_ATTEMPTS,
)
from idpatourney.errors import (
    AppError,
    NotFoundError,
    QueueItemBusy,
    QueueItemFailed,
    ValidationError,
)

from .services import OfflineSyncService, validate_payload

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

    from .store import OfflineStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class TransportError(Exception):
    """The server could not be reached; the action should be tried again."""


class LocalTransport:
    """Talks to an in-process OfflineSyncService."""

    def __init__(
        self, db: Optional[Client] = None, max_retries: int = OFFLINE_MAX_RETRIES
    ) -> None:
        self.db = db
        self.max_retries = max_retries

    def enqueue(self, user_id: str, action: str, payload: dict[str, Any]) -> str:
        return OfflineSyncService.enqueue(user_id, action, payload, db=self.db)

    def process_item(self, queue_id: str) -> dict[str, Any]:
        try:
            return OfflineSyncService.process_item(
                queue_id, db=self.db, max_retries=self.max_retries
            )
        except QueueItemFailed as e:
            return {"success": False, "status": QUEUE_FAILED, "error": e.message}
        except QueueItemBusy as e:
            raise TransportError(e.message) from e

    def resolve_conflict(self, queue_id: str, choice: str) -> dict[str, Any]:
        return OfflineSyncService.resolve_conflict(queue_id, choice, db=self.db)


class HttpTransport:
    """Talks to the offline sync API over HTTP."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"User-Agent": "idpatourney-sync/1.0"},
        )

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, body: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            resp = self._client.post(path, json=body or {})
        except httpx.TransportError as e:
            raise TransportError(str(e) or type(e).__name__) from e

        if resp.status_code >= 500:
            raise TransportError(f"Server error {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.is_success:
            return data

        message = data.get("error") or f"HTTP {resp.status_code}"
        error_type = data.get("type")
        if error_type == "QueueItemFailed":
            return {"success": False, "status": QUEUE_FAILED, "error": message}
        if error_type == "QueueItemBusy":
            raise TransportError(message)
        if resp.status_code == 404:
            raise NotFoundError(message)
        if resp.status_code == 400:
            raise ValidationError(message)
        raise AppError(message, resp.status_code)

    def enqueue(self, user_id: str, action: str, payload: dict[str, Any]) -> str:
        data = self._post(
            "/offline/queue",
            {"userId": user_id, "action": action, "payload": payload},
        )
        return str(data["queueId"])

    def process_item(self, queue_id: str) -> dict[str, Any]:
        return self._post(f"/offline/queue/{queue_id}/process")

    def resolve_conflict(self, queue_id: str, choice: str) -> dict[str, Any]:
        return self._post(f"/offline/queue/{queue_id}/resolve", {"choice": choice})


class SyncWorker:
    """Replays one user's offline actions once connectivity returns."""

    def __init__(
        self,
        store: OfflineStore,
        transport: Any,
        user_id: str,
        backoff_seconds: float = SYNC_BACKOFF_SECONDS,
        max_attempts: int = SYNC_MAX_ATTEMPTS,
        max_retries: int = OFFLINE_MAX_RETRIES,
        retention_hours: int = OFFLINE_RETENTION_HOURS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.transport = transport
        self.user_id = user_id
        self.backoff_seconds = backoff_seconds
        self.max_attempts = max_attempts
        self.max_retries = max_retries
        self.retention_hours = retention_hours
        self._sleep = sleep
        self._drain_lock = threading.Lock()
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ── Recording actions ───────────────────────────────────────────────

    def queue_action(self, action: str, payload: dict[str, Any]) -> int:
        """Validate an action and append it to the local queue.

        Invalid input is rejected here and never queued.
        """
        if action not in QUEUE_ACTIONS:
            raise ValidationError(f"Unknown action type: {action}")
        validate_payload(action, payload)
        return self.store.enqueue(self.user_id, action, payload)

    def record_score(
        self, payload: dict[str, Any], base_version: Optional[int] = None
    ) -> int:
        """Save a score entered offline and queue it for sync.

        ``base_version`` is the server lastModified (epoch ms) of the copy the
        scorer started from, if any.
        """
        action = ACTION_UPDATE_SCORE if payload.get("scoreId") else ACTION_SUBMIT_SCORE
        validate_payload(action, payload)
        last_modified = self.store.save_score(
            payload["stageId"], payload["shooterId"], payload, base_version
        )
        stored = self.store.get_score(payload["stageId"], payload["shooterId"]) or {}
        queued = {
            **payload,
            "lastModified": last_modified,
            "baseVersion": stored.get("base_version"),
        }
        return self.queue_action(action, queued)

    # ── Draining ────────────────────────────────────────────────────────

    def _with_backoff(self, func: Callable[..., Any], *args: Any) -> Any:
        """Call the transport, retrying unreachable-server errors with backoff."""
        delay = self.backoff_seconds
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func(*args)
            except TransportError as e:
                if attempt == self.max_attempts:
                    raise
                logger.warning(
                    f"Sync attempt {attempt} failed ({e}); retrying in {delay:.1f}s"
                )
                self._sleep(delay)
                delay *= 2
        return None

    def drain(self) -> Optional[dict[str, int]]:
        """Replay pending actions in order.

        Returns None without doing anything if a drain is already running.
        """
        if not self._drain_lock.acquire(blocking=False):
            return None
        try:
            return self._drain()
        finally:
            self._drain_lock.release()

    def _drain(self) -> dict[str, int]:
        summary = {"processed": 0, "failed": 0, "remaining": 0}
        pending = self.store.list_pending(self.user_id)
        for index, action in enumerate(pending):
            try:
                remote_id = action["remote_id"]
                if remote_id is None:
                    remote_id = self._with_backoff(
                        self.transport.enqueue,
                        self.user_id,
                        action["action"],
                        action["payload"],
                    )
                    self.store.set_remote_id(action["id"], remote_id)
                outcome = self._with_backoff(self.transport.process_item, remote_id)
            except TransportError as e:
                retries = action["retries"] + 1
                self.store.record_retry(action["id"], retries, str(e))
                remaining = len(pending) - index
                if retries >= self.max_retries:
                    logger.error(
                        f"Action {action['id']} failed after {retries} "
                        f"sync attempts: {e}"
                    )
                    self.store.mark_failed(action["id"], str(e))
                    summary["failed"] += 1
                    remaining -= 1
                summary["remaining"] = remaining
                logger.info(f"Sync paused, {summary['remaining']} actions waiting")
                break
            except AppError as e:
                self.store.mark_failed(action["id"], e.message)
                summary["failed"] += 1
                continue

            if outcome.get("success"):
                self._mark_completed(action)
                summary["processed"] += 1
            elif outcome.get("status") == QUEUE_FAILED:
                self.store.mark_failed(
                    action["id"],
                    outcome.get("error") or "Action failed",
                    outcome.get("conflict"),
                )
                summary["failed"] += 1
            else:
                self.store.record_retry(
                    action["id"],
                    outcome.get("retries", action["retries"] + 1),
                    outcome.get("error") or "",
                )
                summary["remaining"] = len(pending) - index
                break

        self.store.purge_completed(self.retention_hours * 3600)
        return summary

    def _mark_completed(self, action: dict[str, Any]) -> None:
        self.store.mark_completed(action["id"])
        if action["action"] in (ACTION_SUBMIT_SCORE, ACTION_UPDATE_SCORE):
            payload = action["payload"]
            if payload.get("stageId") and payload.get("shooterId"):
                self.store.mark_score_synced(payload["stageId"], payload["shooterId"])

    def resolve_conflict(self, action_id: int, choice: str) -> dict[str, Any]:
        """Settle a conflicted action with the scorer's choice."""
        action = self.store.get_action(action_id)
        if action is None:
            raise NotFoundError("Action not found")
        if action["status"] != QUEUE_FAILED or not action["conflict"]:
            raise ValidationError("Action has no conflict to resolve.")
        outcome = self._with_backoff(
            self.transport.resolve_conflict, action["remote_id"], choice
        )
        if outcome.get("success"):
            self._mark_completed(action)
        return outcome

    # ── Background mode ─────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background thread that drains whenever woken."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"sync-{self.user_id}", daemon=True
        )
        self._thread.start()

    def notify_online(self) -> None:
        """Wake the background thread; connectivity is back."""
        self._wake.set()

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._wake.wait()
            self._wake.clear()
            if self._stopping.is_set():
                break
            try:
                self.drain()
            except Exception:
                logger.exception("Background sync failed")
