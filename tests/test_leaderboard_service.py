"""Tests for LeaderboardService using mockfirestore."""

from __future__ import annotations

import unittest

from idpatourney.errors import NotFoundError
from idpatourney.ranking.services import LeaderboardService
from tests.mock_utils import inline_transactions, make_db


class LeaderboardServiceTestCase(unittest.TestCase):
    """Test case for leaderboards, stored results and progress."""

    def setUp(self) -> None:
        patcher = inline_transactions()
        patcher.start()
        self.addCleanup(patcher.stop)
        self.db = make_db()
        for number in (1, 2):
            self.db.collection("stages").document(f"stage{number}").set(
                {"tournamentId": "t1", "stageNumber": number, "name": f"Stage {number}"}
            )
        shooters = (
            ("alice", "SSP", "MM", "checked_in"),
            ("bob", "SSP", "EX", "checked_in"),
            ("carol", "CDP", "EX", "registered"),
        )
        for shooter_id, division, classification, status in shooters:
            self.db.collection("registrations").document(f"reg_{shooter_id}").set(
                {
                    "tournamentId": "t1",
                    "shooterId": shooter_id,
                    "squadId": "squadA",
                    "division": division,
                    "classification": classification,
                    "status": status,
                }
            )
        self._score("stage1", "alice", 10.0, down1=2)
        self._score("stage2", "alice", 12.0)
        self._score("stage1", "bob", 9.0)
        self._score("stage1", "carol", 20.0, miss=1)

    def _score(self, stage_id, shooter_id, time, down1=0, miss=0, dnf=False):
        strings = [{"time": time, "hits": {"down0": 3, "down1": down1, "miss": miss}}]
        final_time = time + down1 + 5 * miss
        self.db.collection("scores").document(f"{stage_id}_{shooter_id}").set(
            {
                "tournamentId": "t1",
                "stageId": stage_id,
                "shooterId": shooter_id,
                "strings": strings,
                "penalties": {},
                "dnf": dnf,
                "dq": False,
                "finalTime": final_time,
                "pointsDown": down1 + 5 * miss,
                "penaltyTime": 0,
            }
        )

    def test_leaderboard(self) -> None:
        entries = LeaderboardService.get_leaderboard("t1", db=self.db)
        self.assertEqual(
            [(e["shooterId"], e["rank"]) for e in entries],
            [("bob", 1), ("alice", 2), ("carol", 3)],
        )
        self.assertEqual(entries[1]["finalScore"], 24.0)
        self.assertEqual(entries[0]["completionPercentage"], 50)

        ssp = LeaderboardService.get_leaderboard("t1", division="SSP", db=self.db)
        self.assertEqual([e["shooterId"] for e in ssp], ["bob", "alice"])

    def test_refresh_match_results_replaces_stale_results(self) -> None:
        self.db.collection("match_results").document("t1_ghost").set(
            {"tournamentId": "t1", "shooterId": "ghost"}
        )
        results = LeaderboardService.refresh_match_results("t1", db=self.db)
        self.assertEqual(len(results), 3)

        stored = {
            doc.id: doc.to_dict()
            for doc in self.db.collection("match_results").stream()
            if doc.exists
        }
        self.assertEqual(set(stored), {"t1_alice", "t1_bob", "t1_carol"})
        self.assertEqual(stored["t1_bob"]["rankings"]["overallRank"], 1)
        self.assertIn("calculatedAt", stored["t1_bob"])

    def test_stage_rankings(self) -> None:
        rankings = LeaderboardService.get_stage_rankings("stage1", db=self.db)
        self.assertEqual([e["shooterId"] for e in rankings["SSP"]], ["bob", "alice"])
        self.assertEqual(rankings["CDP"][0]["rank"], 1)

    def test_squad_progress_counts_checked_in_shooters(self) -> None:
        progress = LeaderboardService.get_squad_progress("squadA", "t1", db=self.db)
        by_shooter = {s["shooterId"]: s for s in progress["shooters"]}
        self.assertEqual(set(by_shooter), {"alice", "bob"})
        self.assertEqual(by_shooter["alice"]["progressPercentage"], 100)
        self.assertEqual(by_shooter["bob"]["completedStages"], 1)
        self.assertEqual(progress["stages"][1]["scoredShooters"], 1)

    def test_shooter_progress(self) -> None:
        progress = LeaderboardService.get_shooter_progress("t1", "alice", db=self.db)
        self.assertEqual(progress["completedStages"], 2)
        self.assertEqual(progress["totalTime"], 24.0)
        self.assertEqual(progress["accuracy"], 100.0)

        with self.assertRaises(NotFoundError):
            LeaderboardService.get_shooter_progress("t2", "alice", db=self.db)


if __name__ == "__main__":
    unittest.main()
