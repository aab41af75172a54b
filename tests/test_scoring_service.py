"""Tests for ScoringService using mockfirestore."""

from __future__ import annotations

import datetime
import unittest

from idpatourney.errors import (
    DuplicateResourceError,
    InvalidScoreInput,
    NotFoundError,
    ScoreConflictError,
)
from idpatourney.scoring.models import ScoreSubmission
from idpatourney.scoring.services import ScoringService
from tests.mock_utils import inline_transactions, make_db


def _payload(**overrides):
    payload = {
        "stageId": "stage1",
        "shooterId": "shooter1",
        "scoredBy": "so1",
        "strings": [{"time": 10.0, "hits": {"down0": 4, "down1": 2}}],
        "penalties": {"procedural": 1},
    }
    payload.update(overrides)
    return payload


class ScoringServiceTestCase(unittest.TestCase):
    """Test case for score submission and updates."""

    def setUp(self) -> None:
        patcher = inline_transactions()
        patcher.start()
        self.addCleanup(patcher.stop)
        self.db = make_db()
        self.db.collection("stages").document("stage1").set(
            {
                "tournamentId": "t1",
                "stageNumber": 1,
                "strings": 1,
                "roundCount": 6,
            }
        )
        self.db.collection("registrations").document("reg1").set(
            {
                "tournamentId": "t1",
                "shooterId": "shooter1",
                "squadId": "squadA",
                "division": "SSP",
                "classification": "MM",
                "status": "checked_in",
            }
        )

    def test_submit_score_computes_breakdown(self) -> None:
        result = ScoringService.submit_score(
            ScoreSubmission.from_dict(_payload()), db=self.db
        )
        self.assertEqual(result, {"scoreId": "stage1_shooter1", "finalTime": 15.0})

        score = ScoringService.get_score(self.db, "stage1_shooter1")
        self.assertEqual(score["rawTime"], 10.0)
        self.assertEqual(score["pointsDown"], 2)
        self.assertEqual(score["penaltyTime"], 3)
        self.assertEqual(score["tournamentId"], "t1")
        self.assertEqual(score["squadId"], "squadA")
        self.assertEqual(score["division"], "SSP")
        self.assertEqual(score["strings"][0]["hits"]["miss"], 0)

    def test_submit_twice_is_rejected(self) -> None:
        submission = ScoreSubmission.from_dict(_payload())
        ScoringService.submit_score(submission, db=self.db)
        with self.assertRaises(DuplicateResourceError):
            ScoringService.submit_score(submission, db=self.db)

    def test_submit_rejects_hits_over_round_count(self) -> None:
        payload = _payload(strings=[{"time": 5.0, "hits": {"down0": 6, "miss": 1}}])
        with self.assertRaises(InvalidScoreInput):
            ScoringService.submit_score(ScoreSubmission.from_dict(payload), db=self.db)
        self.assertIsNone(ScoringService.get_score(self.db, "stage1_shooter1"))

    def test_submit_for_unknown_stage(self) -> None:
        with self.assertRaises(NotFoundError):
            ScoringService.submit_score(
                ScoreSubmission.from_dict(_payload(stageId="missing")), db=self.db
            )

    def test_update_recomputes_and_keeps_unchanged_fields(self) -> None:
        ScoringService.submit_score(ScoreSubmission.from_dict(_payload()), db=self.db)
        updated = ScoringService.update_score(
            "stage1_shooter1", "so2", penalties={}, db=self.db
        )
        self.assertEqual(updated["finalTime"], 12.0)
        self.assertEqual(updated["scoredBy"], "so2")
        self.assertEqual(updated["strings"][0]["hits"]["down1"], 2)

    def test_update_missing_score(self) -> None:
        with self.assertRaises(NotFoundError):
            ScoringService.update_score("nope", "so1", db=self.db)

    def test_update_with_stale_base_version_conflicts(self) -> None:
        ScoringService.submit_score(ScoreSubmission.from_dict(_payload()), db=self.db)
        stale = datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc)
        with self.assertRaises(ScoreConflictError) as ctx:
            ScoringService.update_score(
                "stage1_shooter1",
                "so2",
                strings=[{"time": 9.0, "hits": {"down0": 6}}],
                base_version=stale,
                db=self.db,
            )
        conflict = ctx.exception.conflict
        self.assertEqual(conflict.server.strings[0]["time"], 10.0)
        self.assertEqual(conflict.local.strings[0]["time"], 9.0)
        self.assertEqual(ctx.exception.status_code, 409)

    def test_update_with_current_base_version_applies(self) -> None:
        ScoringService.submit_score(ScoreSubmission.from_dict(_payload()), db=self.db)
        current = ScoringService.get_score(self.db, "stage1_shooter1")
        updated = ScoringService.update_score(
            "stage1_shooter1",
            "so2",
            dnf=True,
            base_version=current["updatedAt"],
            db=self.db,
        )
        self.assertTrue(updated["dnf"])
        self.assertEqual(updated["stagePoints"], 0)


if __name__ == "__main__":
    unittest.main()
