"""Durable client-side storage for offline scoring.

A single SQLite file (WAL mode) holds the local action queue, the scores
entered while offline and the cached tournament data the scorer works from.
The store is created explicitly and must be initialized before use.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional, Union

from idpatourney.constants import (
    QUEUE_COMPLETED,
    QUEUE_FAILED,
    QUEUE_PENDING,
    QUEUE_STATUSES,
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS actions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    action          TEXT NOT NULL,
    payload         TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    retries         INTEGER NOT NULL DEFAULT 0,
    remote_id       TEXT,
    last_error      TEXT,
    error           TEXT,
    conflict        TEXT,
    created_at      REAL NOT NULL,
    completed_at    REAL
);

CREATE INDEX IF NOT EXISTS idx_actions_user_status
    ON actions(user_id, status, id);

CREATE TABLE IF NOT EXISTS offline_scores (
    stage_id        TEXT NOT NULL,
    shooter_id      TEXT NOT NULL,
    data            TEXT NOT NULL,
    base_version    INTEGER,
    last_modified   INTEGER NOT NULL,
    synced          INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (stage_id, shooter_id)
);

CREATE TABLE IF NOT EXISTS cache (
    kind            TEXT NOT NULL,
    key             TEXT NOT NULL,
    data            TEXT NOT NULL,
    cached_at       REAL NOT NULL,
    PRIMARY KEY (kind, key)
);
"""


class StoreNotInitialized(RuntimeError):
    """The store was used before init() or after close()."""


def _row_to_action(row: sqlite3.Row) -> dict[str, Any]:
    action = dict(row)
    action["payload"] = json.loads(action["payload"])
    action["conflict"] = json.loads(action["conflict"]) if action["conflict"] else None
    return action


class OfflineStore:
    """SQLite-backed local store for one device."""

    def __init__(
        self,
        db_path: Union[str, Path],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def init(self) -> OfflineStore:
        """Open the database and create the schema."""
        if self._conn is not None:
            return self
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=10, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        self._conn = conn
        return self

    def close(self) -> None:
        """Close the database; the store can be initialized again later."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> OfflineStore:
        return self.init()

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @property
    def initialized(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotInitialized("OfflineStore.init() has not been called")
        return self._conn

    # ── Action queue ────────────────────────────────────────────────────

    def enqueue(self, user_id: str, action: str, payload: dict[str, Any]) -> int:
        """Append an action to the local queue and return its id."""
        with self._lock:
            cur = self.conn.execute(
                "INSERT INTO actions (user_id, action, payload, created_at) "
                "VALUES (?, ?, ?, ?)",
                (user_id, action, json.dumps(payload), self._clock()),
            )
            self.conn.commit()
            return int(cur.lastrowid)

    def get_action(self, action_id: int) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM actions WHERE id = ?", (action_id,)
            ).fetchone()
        return _row_to_action(row) if row else None

    def list_pending(self, user_id: str) -> list[dict[str, Any]]:
        """Pending actions in the order they were taken."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM actions WHERE user_id = ? AND status = ? "
                "ORDER BY id",
                (user_id, QUEUE_PENDING),
            ).fetchall()
        return [_row_to_action(r) for r in rows]

    def list_failed(self, user_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM actions WHERE user_id = ? AND status = ? "
                "ORDER BY id",
                (user_id, QUEUE_FAILED),
            ).fetchall()
        return [_row_to_action(r) for r in rows]

    def _update_action(self, action_id: int, **fields: Any) -> None:
        columns = ", ".join(f"{name} = ?" for name in fields)
        with self._lock:
            self.conn.execute(
                f"UPDATE actions SET {columns} WHERE id = ?",  # nosec B608
                (*fields.values(), action_id),
            )
            self.conn.commit()

    def set_remote_id(self, action_id: int, remote_id: str) -> None:
        """Remember the server queue id so the action is never sent twice."""
        self._update_action(action_id, remote_id=remote_id)

    def record_retry(self, action_id: int, retries: int, error: str) -> None:
        self._update_action(action_id, retries=retries, last_error=error)

    def mark_completed(self, action_id: int) -> None:
        self._update_action(
            action_id, status=QUEUE_COMPLETED, completed_at=self._clock()
        )

    def mark_failed(
        self,
        action_id: int,
        error: str,
        conflict: Optional[dict[str, Any]] = None,
    ) -> None:
        self._update_action(
            action_id,
            status=QUEUE_FAILED,
            error=error,
            conflict=json.dumps(conflict) if conflict else None,
        )

    def purge_completed(self, older_than_seconds: float) -> int:
        """Delete completed actions older than the retention window."""
        cutoff = self._clock() - older_than_seconds
        with self._lock:
            cur = self.conn.execute(
                "DELETE FROM actions WHERE status = ? AND completed_at < ?",
                (QUEUE_COMPLETED, cutoff),
            )
            self.conn.commit()
            return cur.rowcount

    def sync_status(self, user_id: str) -> dict[str, int]:
        """Count local actions per status."""
        counts = dict.fromkeys(QUEUE_STATUSES, 0)
        with self._lock:
            rows = self.conn.execute(
                "SELECT status, COUNT(*) AS n FROM actions WHERE user_id = ? "
                "GROUP BY status",
                (user_id,),
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["n"]
        counts["total"] = sum(row["n"] for row in rows)
        return counts

    # ── Offline scores ──────────────────────────────────────────────────

    def save_score(
        self,
        stage_id: str,
        shooter_id: str,
        data: dict[str, Any],
        base_version: Optional[int] = None,
    ) -> int:
        """Keep the latest local copy of a score; returns its lastModified (ms)."""
        last_modified = int(self._clock() * 1000)
        with self._lock:
            self.conn.execute(
                "INSERT INTO offline_scores "
                "(stage_id, shooter_id, data, base_version, last_modified, synced) "
                "VALUES (?, ?, ?, ?, ?, 0) "
                "ON CONFLICT(stage_id, shooter_id) DO UPDATE SET "
                "data = excluded.data, "
                "base_version = COALESCE(offline_scores.base_version, "
                "excluded.base_version), "
                "last_modified = excluded.last_modified, synced = 0",
                (stage_id, shooter_id, json.dumps(data), base_version, last_modified),
            )
            self.conn.commit()
        return last_modified

    def get_score(self, stage_id: str, shooter_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM offline_scores WHERE stage_id = ? AND shooter_id = ?",
                (stage_id, shooter_id),
            ).fetchone()
        if row is None:
            return None
        score = dict(row)
        score["data"] = json.loads(score["data"])
        score["synced"] = bool(score["synced"])
        return score

    def list_unsynced_scores(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM offline_scores WHERE synced = 0 "
                "ORDER BY last_modified"
            ).fetchall()
        scores = []
        for row in rows:
            score = dict(row)
            score["data"] = json.loads(score["data"])
            score["synced"] = False
            scores.append(score)
        return scores

    def mark_score_synced(self, stage_id: str, shooter_id: str) -> None:
        with self._lock:
            self.conn.execute(
                "UPDATE offline_scores SET synced = 1 "
                "WHERE stage_id = ? AND shooter_id = ?",
                (stage_id, shooter_id),
            )
            self.conn.commit()

    # ── Tournament cache ────────────────────────────────────────────────

    def cache_put(self, kind: str, key: str, data: Any) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO cache (kind, key, data, cached_at) "
                "VALUES (?, ?, ?, ?)",
                (kind, key, json.dumps(data), self._clock()),
            )
            self.conn.commit()

    def cache_get(self, kind: str, key: str) -> Any:
        with self._lock:
            row = self.conn.execute(
                "SELECT data FROM cache WHERE kind = ? AND key = ?", (kind, key)
            ).fetchone()
        return json.loads(row["data"]) if row else None

    def cache_tournament(self, tournament_id: str, bundle: dict[str, Any]) -> None:
        """Cache a tournament with its squads, stages and registrations."""
        self.cache_put("tournament", tournament_id, bundle)

    def get_cached_tournament(self, tournament_id: str) -> Optional[dict[str, Any]]:
        return self.cache_get("tournament", tournament_id)

    def cache_age(self, kind: str, key: str) -> Optional[float]:
        """Seconds since the entry was cached, or None when not cached."""
        with self._lock:
            row = self.conn.execute(
                "SELECT cached_at FROM cache WHERE kind = ? AND key = ?",
                (kind, key),
            ).fetchone()
        return self._clock() - row["cached_at"] if row else None

    def clear_cache(self) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM cache")
            self.conn.commit()
