"""Tests for tournament setup and lifecycle."""

from __future__ import annotations

import unittest

from idpatourney.errors import InvalidStatusTransition, ValidationError
from idpatourney.tournament.models import TournamentSetup
from idpatourney.tournament.services import TournamentService, squad_name
from tests.mock_utils import inline_transactions, make_db


def _setup_data(**overrides):
    data = {
        "name": "Spring Match",
        "date": "2026-05-02T08:00:00Z",
        "registrationOpens": "2026-03-01T00:00:00Z",
        "registrationCloses": "2026-04-25T00:00:00Z",
        "divisions": ["SSP", "CDP"],
        "capacity": 20,
        "squadConfig": {"numberOfSquads": 3, "maxShootersPerSquad": 7},
        "customCategories": [{"id": "ladies", "name": "Ladies"}],
        "location": "County Range",
    }
    data.update(overrides)
    return data


class TournamentSetupTestCase(unittest.TestCase):
    """Test case for tournament input validation."""

    def test_valid_setup(self) -> None:
        setup = TournamentSetup.from_dict(_setup_data())
        self.assertEqual(setup.number_of_squads, 3)
        self.assertEqual(setup.extra, {"location": "County Range"})
        self.assertEqual(setup.custom_categories[0]["name"], "Ladies")

    def test_registration_must_close_before_the_match(self) -> None:
        with self.assertRaises(ValidationError):
            TournamentSetup.from_dict(
                _setup_data(registrationCloses="2026-05-03T00:00:00Z")
            )
        with self.assertRaises(ValidationError):
            TournamentSetup.from_dict(
                _setup_data(registrationOpens="2026-04-26T00:00:00Z")
            )

    def test_unknown_division(self) -> None:
        with self.assertRaises(ValidationError):
            TournamentSetup.from_dict(_setup_data(divisions=["SSP", "LTD"]))

    def test_squads_must_hold_capacity(self) -> None:
        with self.assertRaises(ValidationError):
            TournamentSetup.from_dict(_setup_data(capacity=22))

    def test_duplicate_category(self) -> None:
        with self.assertRaises(ValidationError):
            TournamentSetup.from_dict(
                _setup_data(customCategories=[{"id": "vets"}, {"id": "vets"}])
            )

    def test_squad_names(self) -> None:
        self.assertEqual(squad_name(0), "Squad A")
        self.assertEqual(squad_name(25), "Squad Z")
        self.assertEqual(squad_name(26), "Squad 27")


class TournamentServiceTestCase(unittest.TestCase):
    """Test case for TournamentService."""

    def setUp(self) -> None:
        patcher = inline_transactions()
        patcher.start()
        self.addCleanup(patcher.stop)
        self.db = make_db()
        result = TournamentService.create_tournament(
            TournamentSetup.from_dict(_setup_data()), db=self.db
        )
        self.tournament_id = result["tournamentId"]
        self.squad_ids = result["squadIds"]

    def test_create_builds_draft_and_squads(self) -> None:
        tournament = TournamentService.get_tournament(self.tournament_id, db=self.db)
        self.assertEqual(tournament["status"], "draft")
        self.assertEqual(tournament["location"], "County Range")
        self.assertEqual(len(self.squad_ids), 3)
        squad_ref = self.db.collection("squads").document(self.squad_ids[1])
        squad = squad_ref.get().to_dict()
        self.assertEqual(squad["name"], "Squad B")
        self.assertEqual(squad["maxShooters"], 7)
        self.assertEqual(squad["currentShooters"], 0)
        self.assertEqual(squad["timeSlot"], "TBD")

    def test_lifecycle(self) -> None:
        with self.assertRaises(InvalidStatusTransition):
            TournamentService.start_tournament(self.tournament_id, db=self.db)
        published = TournamentService.publish_tournament(self.tournament_id, db=self.db)
        self.assertEqual(published["status"], "published")
        TournamentService.start_tournament(self.tournament_id, db=self.db)
        completed = TournamentService.complete_tournament(
            self.tournament_id, db=self.db
        )
        self.assertEqual(completed["status"], "completed")
        self.assertEqual(completed["resultCount"], 0)
        with self.assertRaises(InvalidStatusTransition):
            TournamentService.publish_tournament(self.tournament_id, db=self.db)

    def test_add_stage(self) -> None:
        stage = {
            "name": "El Presidente",
            "stageNumber": 1,
            "strings": 1,
            "roundCount": 12,
        }
        stage_id = TournamentService.add_stage(self.tournament_id, stage, db=self.db)
        stored = self.db.collection("stages").document(stage_id).get().to_dict()
        self.assertEqual(stored["tournamentId"], self.tournament_id)

        with self.assertRaises(ValidationError):
            TournamentService.add_stage(self.tournament_id, stage, db=self.db)

    def test_add_stage_after_start_is_rejected(self) -> None:
        TournamentService.publish_tournament(self.tournament_id, db=self.db)
        TournamentService.start_tournament(self.tournament_id, db=self.db)
        with self.assertRaises(InvalidStatusTransition):
            TournamentService.add_stage(
                self.tournament_id,
                {"name": "Late", "stageNumber": 2, "strings": 1, "roundCount": 6},
                db=self.db,
            )


if __name__ == "__main__":
    unittest.main()
