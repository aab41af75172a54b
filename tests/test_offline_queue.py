"""Tests for the server side offline queue."""

from __future__ import annotations

import datetime
import unittest
from unittest.mock import patch

from idpatourney.errors import QueueItemBusy, QueueItemFailed, ValidationError
from idpatourney.offline.services import OfflineSyncService
from idpatourney.scoring.services import ScoringService
from tests.mock_utils import inline_transactions, make_db

NOW = datetime.datetime.now(datetime.timezone.utc)


def _score_payload(**overrides):
    payload = {
        "stageId": "stage1",
        "shooterId": "shooter1",
        "scoredBy": "so1",
        "strings": [{"time": 10.0, "hits": {"down0": 4, "down1": 2}}],
        "penalties": {},
    }
    payload.update(overrides)
    return payload


class OfflineQueueTestCase(unittest.TestCase):
    """Test case for OfflineSyncService."""

    def setUp(self) -> None:
        patcher = inline_transactions()
        patcher.start()
        self.addCleanup(patcher.stop)
        self.db = make_db()
        self.db.collection("tournaments").document("t1").set(
            {
                "status": "published",
                "divisions": ["SSP"],
                "registrationOpens": NOW - datetime.timedelta(days=1),
                "registrationCloses": NOW + datetime.timedelta(days=1),
            }
        )
        self.db.collection("squads").document("squadA").set(
            {
                "tournamentId": "t1",
                "maxShooters": 5,
                "currentShooters": 0,
                "status": "open",
            }
        )
        self.db.collection("stages").document("stage1").set(
            {"tournamentId": "t1", "stageNumber": 1, "strings": 1, "roundCount": 6}
        )
        self.db.collection("users").document("shooter1").set(
            {"name": "Sam", "role": "shooter", "email": "sam@example.com"}
        )

    def _enqueue(self, action, payload, user_id="so1"):
        return OfflineSyncService.enqueue(user_id, action, payload, db=self.db)

    def _process(self, queue_id):
        return OfflineSyncService.process_item(queue_id, db=self.db)

    def _item(self, queue_id):
        return OfflineSyncService.get_item(queue_id, db=self.db)

    def test_enqueue_rejects_invalid_actions(self) -> None:
        with self.assertRaises(ValidationError):
            self._enqueue("deleteTournament", {})
        with self.assertRaises(ValidationError):
            self._enqueue("submitScore", {"stageId": "stage1"})
        with self.assertRaises(ValidationError):
            self._enqueue(
                "submitScore",
                _score_payload(strings=[{"time": -2, "hits": {"down0": 1}}]),
            )
        with self.assertRaises(ValidationError):
            self._enqueue("updateProfile", {"updates": {"role": "admin"}})

    def test_enqueue_stores_pending_item(self) -> None:
        queue_id = self._enqueue("submitScore", _score_payload())
        item = self._item(queue_id)
        self.assertEqual(item["status"], "pending")
        self.assertEqual(item["retries"], 0)
        self.assertEqual(item["userId"], "so1")

    def test_process_submit_score_once(self) -> None:
        queue_id = self._enqueue("submitScore", _score_payload())
        outcome = self._process(queue_id)
        self.assertTrue(outcome["success"])
        self.assertEqual(outcome["result"]["finalTime"], 12.0)
        self.assertEqual(self._item(queue_id)["status"], "completed")

        again = self._process(queue_id)
        self.assertTrue(again["success"])
        self.assertTrue(again["skipped"])

    def test_replayed_identical_score_is_skipped(self) -> None:
        self._process(self._enqueue("submitScore", _score_payload()))
        outcome = self._process(self._enqueue("submitScore", _score_payload()))
        self.assertTrue(outcome["success"])
        self.assertTrue(outcome["result"]["skipped"])

    def test_business_rule_failure_is_not_retried(self) -> None:
        self.db.collection("squads").document("squadA").update({"status": "closed"})
        queue_id = self._enqueue(
            "createRegistration",
            {
                "tournamentId": "t1",
                "squadId": "squadA",
                "division": "SSP",
                "classification": "MM",
            },
            user_id="shooter1",
        )
        outcome = self._process(queue_id)
        self.assertFalse(outcome["success"])
        self.assertEqual(outcome["status"], "failed")
        item = self._item(queue_id)
        self.assertEqual(item["retries"], 0)
        self.assertEqual(item["errorType"], "SquadClosed")

        with self.assertRaises(QueueItemFailed):
            self._process(queue_id)

    def test_registration_replay_is_idempotent(self) -> None:
        payload = {
            "tournamentId": "t1",
            "squadId": "squadA",
            "division": "SSP",
            "classification": "MM",
        }
        first = self._process(self._enqueue("createRegistration", payload, "shooter1"))
        second = self._process(
            self._enqueue("createRegistration", payload, "shooter1")
        )
        self.assertEqual(first["result"]["status"], "registered")
        self.assertTrue(second["result"]["skipped"])
        self.assertEqual(
            first["result"]["registrationId"], second["result"]["registrationId"]
        )
        squad = self.db.collection("squads").document("squadA").get().to_dict()
        self.assertEqual(squad["currentShooters"], 1)

    def test_transient_failures_hit_the_retry_ceiling(self) -> None:
        queue_id = self._enqueue("submitScore", _score_payload())
        with patch.object(
            ScoringService, "submit_score", side_effect=RuntimeError("deadline")
        ):
            first = self._process(queue_id)
            second = self._process(queue_id)
            third = self._process(queue_id)
        self.assertEqual((first["status"], first["retries"]), ("pending", 1))
        self.assertEqual((second["status"], second["retries"]), ("pending", 2))
        self.assertEqual((third["status"], third["retries"]), ("failed", 3))
        self.assertEqual(self._item(queue_id)["error"], "deadline")
        with self.assertRaises(QueueItemFailed):
            self._process(queue_id)

    def test_item_being_processed_is_busy(self) -> None:
        queue_id = self._enqueue("submitScore", _score_payload())
        ref = self.db.collection("offline_queue").document(queue_id)
        ref.update({"status": "processing", "processingStartedAt": NOW})
        with self.assertRaises(QueueItemBusy):
            self._process(queue_id)

        ref.update({"processingStartedAt": NOW - datetime.timedelta(minutes=10)})
        self.assertTrue(self._process(queue_id)["success"])

    def test_conflict_waits_for_a_person(self) -> None:
        self._process(self._enqueue("submitScore", _score_payload()))
        local = _score_payload(
            scoredBy="so2",
            strings=[{"time": 9.0, "hits": {"down0": 5, "down1": 1}}],
        )
        queue_id = self._enqueue("submitScore", local, user_id="so2")
        outcome = self._process(queue_id)

        self.assertEqual(outcome["status"], "failed")
        self.assertEqual(outcome["conflict"]["server"]["strings"][0]["time"], 10.0)
        self.assertEqual(self._item(queue_id)["errorType"], "ScoreConflictError")

        resolved = OfflineSyncService.resolve_conflict(
            queue_id, "use_local", db=self.db
        )
        self.assertTrue(resolved["success"])
        self.assertEqual(resolved["result"]["finalTime"], 10.0)
        self.assertEqual(self._item(queue_id)["status"], "completed")
        score = ScoringService.get_score(self.db, "stage1_shooter1")
        self.assertEqual(score["strings"][0]["time"], 9.0)

    def test_local_dnf_resolves_automatically(self) -> None:
        self._process(self._enqueue("submitScore", _score_payload()))
        queue_id = self._enqueue(
            "submitScore", _score_payload(dnf=True, penalties={"procedural": 1})
        )
        outcome = self._process(queue_id)
        self.assertTrue(outcome["success"])
        self.assertEqual(outcome["result"]["resolution"]["choice"], "use_local")
        score = ScoringService.get_score(self.db, "stage1_shooter1")
        self.assertTrue(score["dnf"])

    def test_update_score_with_current_base_version(self) -> None:
        self._process(self._enqueue("submitScore", _score_payload()))
        current = ScoringService.get_score(self.db, "stage1_shooter1")
        queue_id = self._enqueue(
            "updateScore",
            {
                "scoreId": "stage1_shooter1",
                "scoredBy": "so1",
                "penalties": {"procedural": 1},
                "baseVersion": int(current["updatedAt"].timestamp() * 1000) + 1,
            },
        )
        outcome = self._process(queue_id)
        self.assertTrue(outcome["success"])
        self.assertEqual(outcome["result"]["finalTime"], 15.0)

    def test_profile_update(self) -> None:
        queue_id = self._enqueue(
            "updateProfile", {"updates": {"name": "Samantha"}}, user_id="shooter1"
        )
        self.assertTrue(self._process(queue_id)["success"])
        user = self.db.collection("users").document("shooter1").get().to_dict()
        self.assertEqual(user["name"], "Samantha")
        self.assertEqual(user["role"], "shooter")

        other = self._enqueue(
            "updateProfile",
            {"userId": "shooter1", "updates": {"name": "Hacked"}},
            user_id="so1",
        )
        self.assertEqual(self._process(other)["status"], "failed")

    def test_drain_processes_in_order_and_stops_at_retry(self) -> None:
        ids = [
            self._enqueue("submitScore", _score_payload(shooterId=f"shooter{i}"))
            for i in range(3)
        ]
        for offset, queue_id in enumerate(ids):
            self.db.collection("offline_queue").document(queue_id).update(
                {"createdAt": NOW + datetime.timedelta(seconds=offset)}
            )

        calls = []
        real_submit = ScoringService.submit_score

        def flaky(submission, db=None):
            calls.append(submission.shooter_id)
            if submission.shooter_id == "shooter1":
                raise RuntimeError("unavailable")
            return real_submit(submission, db=db)

        with patch.object(ScoringService, "submit_score", side_effect=flaky):
            summary = OfflineSyncService.drain("so1", db=self.db)

        self.assertEqual(summary, {"processed": 1, "failed": 0, "remaining": 2})
        self.assertEqual(calls, ["shooter0", "shooter1"])
        self.assertEqual(self._item(ids[2])["status"], "pending")

    def _stuck_then_pending(self, started_at):
        stuck = self._enqueue("submitScore", _score_payload())
        later = self._enqueue("submitScore", _score_payload(shooterId="shooter2"))
        queue = self.db.collection("offline_queue")
        queue.document(stuck).update(
            {
                "status": "processing",
                "processingStartedAt": started_at,
                "createdAt": NOW - datetime.timedelta(minutes=2),
            }
        )
        queue.document(later).update(
            {"createdAt": NOW - datetime.timedelta(minutes=1)}
        )
        return stuck, later

    def test_drain_takes_over_abandoned_item_first(self) -> None:
        stuck, later = self._stuck_then_pending(NOW - datetime.timedelta(hours=1))

        summary = OfflineSyncService.drain("so1", db=self.db)

        self.assertEqual(summary, {"processed": 2, "failed": 0, "remaining": 0})
        self.assertEqual(self._item(stuck)["status"], "completed")
        self.assertEqual(self._item(later)["status"], "completed")

    def test_drain_waits_behind_item_still_held(self) -> None:
        stuck, later = self._stuck_then_pending(NOW)

        summary = OfflineSyncService.drain("so1", db=self.db)

        self.assertEqual(summary, {"processed": 0, "failed": 0, "remaining": 2})
        self.assertEqual(self._item(stuck)["status"], "processing")
        self.assertEqual(self._item(later)["status"], "pending")

    def test_status_dismiss_and_clear(self) -> None:
        done = self._enqueue("submitScore", _score_payload())
        self._process(done)
        failed = self._enqueue(
            "updateScore", {"scoreId": "missing", "scoredBy": "so1"}
        )
        self._process(failed)
        self._enqueue("submitScore", _score_payload(shooterId="shooter2"))

        status = OfflineSyncService.get_sync_status("so1", db=self.db)
        self.assertEqual(
            (status["completed"], status["failed"], status["pending"]), (1, 1, 1)
        )
        self.assertEqual(status["total"], 3)

        # Only failed items can be dismissed
        with self.assertRaises(ValidationError):
            OfflineSyncService.dismiss_item(done, db=self.db)
        OfflineSyncService.dismiss_item(failed, db=self.db)

        self.assertEqual(OfflineSyncService.clear_completed("so1", db=self.db), 0)
        self.db.collection("offline_queue").document(done).update(
            {"completedAt": NOW - datetime.timedelta(hours=25)}
        )
        self.assertEqual(OfflineSyncService.clear_completed("so1", db=self.db), 1)
        remaining = OfflineSyncService.get_sync_status("so1", db=self.db)
        self.assertEqual(remaining["total"], 1)


if __name__ == "__main__":
    unittest.main()
