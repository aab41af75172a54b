"""Tests for score conflict detection and resolution."""

from __future__ import annotations

import datetime
import unittest

from idpatourney.errors import ValidationError
from idpatourney.scoring.conflicts import (
    MERGE,
    USE_LOCAL,
    USE_SERVER,
    ConflictRecord,
    ConflictResolver,
    ScoreVersion,
)

T0 = datetime.datetime(2026, 6, 6, 9, 0, tzinfo=datetime.timezone.utc)


def _version(time=10.0, down1=0, penalties=None, dnf=False, dq=False, minutes=0):
    return ScoreVersion.from_dict(
        {
            "strings": [{"time": time, "hits": {"down0": 5, "down1": down1}}],
            "penalties": penalties or {},
            "dnf": dnf,
            "dq": dq,
            "updatedAt": T0 + datetime.timedelta(minutes=minutes),
            "scoredBy": "so1",
        }
    )


def _conflict(local, server):
    return ConflictRecord("stage1_shooter1", "stage1", "shooter1", local, server)


class ConflictDetectionTestCase(unittest.TestCase):
    """Test case for conflict detection."""

    def test_identical_content_never_conflicts(self) -> None:
        self.assertIsNone(
            ConflictResolver.detect(
                "s", "stage1", "shooter1", _version(), _version(minutes=5), None
            )
        )

    def test_server_newer_than_base_conflicts(self) -> None:
        conflict = ConflictResolver.detect(
            "s",
            "stage1",
            "shooter1",
            _version(down1=1),
            _version(minutes=5),
            T0,
        )
        self.assertIsNotNone(conflict)
        self.assertEqual(conflict.to_dict()["stageId"], "stage1")

    def test_server_unchanged_since_base_does_not_conflict(self) -> None:
        self.assertIsNone(
            ConflictResolver.detect(
                "s",
                "stage1",
                "shooter1",
                _version(down1=1),
                _version(minutes=5),
                T0 + datetime.timedelta(minutes=5),
            )
        )

    def test_no_base_version_conflicts_on_any_difference(self) -> None:
        self.assertIsNotNone(
            ConflictResolver.detect(
                "s", "stage1", "shooter1", _version(down1=1), _version(), None
            )
        )


class AutoResolveTestCase(unittest.TestCase):
    """Test case for the automatic resolution rules."""

    def test_local_dnf_wins(self) -> None:
        resolution = ConflictResolver.auto_resolve(
            _conflict(_version(dnf=True), _version(down1=2))
        )
        self.assertEqual(resolution.choice, USE_LOCAL)
        self.assertTrue(resolution.automatic)

    def test_both_dnf_with_different_penalties_merges(self) -> None:
        local = _version(dnf=True, penalties={"procedural": 0})
        server = _version(dnf=True, penalties={"flagrant": 1})
        resolution = ConflictResolver.auto_resolve(_conflict(local, server))
        self.assertEqual(resolution.choice, MERGE)
        self.assertEqual(resolution.version.penalties["flagrant"], 1)
        self.assertTrue(resolution.version.dnf)

    def test_dnf_against_dq_needs_a_person(self) -> None:
        conflict = _conflict(_version(dnf=True), _version(dq=True, down1=2))
        self.assertIsNone(ConflictResolver.auto_resolve(conflict))
        self.assertNotIn(MERGE, ConflictResolver.manual_options(conflict))

    def test_server_dq_wins_over_plain_local(self) -> None:
        resolution = ConflictResolver.auto_resolve(
            _conflict(_version(down1=1), _version(dq=True))
        )
        self.assertEqual(resolution.choice, USE_SERVER)

    def test_timing_only_change_latest_wins(self) -> None:
        local = _version(time=9.5, minutes=10)
        server = _version(time=10.0, minutes=5)
        resolution = ConflictResolver.auto_resolve(_conflict(local, server))
        self.assertEqual(resolution.choice, USE_LOCAL)

        resolution = ConflictResolver.auto_resolve(
            _conflict(_version(time=9.5, minutes=1), server)
        )
        self.assertEqual(resolution.choice, USE_SERVER)

    def test_timing_tie_goes_to_server(self) -> None:
        resolution = ConflictResolver.auto_resolve(
            _conflict(_version(time=9.5, minutes=5), _version(time=10.0, minutes=5))
        )
        self.assertEqual(resolution.choice, USE_SERVER)

    def test_penalty_only_change_merges(self) -> None:
        local = _version(
            penalties={
                "procedural": 2,
                "other": [{"type": "custom", "count": 1, "seconds": 3}],
            }
        )
        server = _version(
            penalties={
                "procedural": 1,
                "nonThreat": 1,
                "other": [
                    {"type": "late", "count": 1, "seconds": 5},
                    {"type": "custom", "count": 1, "seconds": 3},
                ],
            }
        )
        resolution = ConflictResolver.auto_resolve(_conflict(local, server))
        self.assertEqual(resolution.choice, MERGE)
        merged = resolution.version.penalties
        self.assertEqual(merged["procedural"], 2)
        self.assertEqual(merged["nonThreat"], 1)
        self.assertEqual(
            [o["type"] for o in merged["other"]], ["late", "custom"]
        )

    def test_hits_and_times_differ_needs_a_person(self) -> None:
        conflict = _conflict(_version(time=9.0, down1=1), _version(time=10.0))
        self.assertIsNone(ConflictResolver.auto_resolve(conflict))
        self.assertEqual(
            set(ConflictResolver.manual_options(conflict)), {USE_LOCAL, USE_SERVER}
        )


class ManualResolveTestCase(unittest.TestCase):
    """Test case for resolving with a person's choice."""

    def test_manual_choice(self) -> None:
        local = _version(down1=1)
        server = _version(down1=2)
        resolution = ConflictResolver.resolve(_conflict(local, server), USE_SERVER)
        self.assertIs(resolution.version, server)
        self.assertFalse(resolution.automatic)

    def test_merge_unavailable_when_hits_differ(self) -> None:
        with self.assertRaises(ValidationError):
            ConflictResolver.resolve(
                _conflict(_version(down1=1), _version(down1=2)), MERGE
            )

    def test_conflict_round_trips_through_dict(self) -> None:
        conflict = _conflict(_version(down1=1), _version(minutes=3))
        restored = ConflictRecord.from_dict(conflict.to_dict())
        self.assertEqual(restored.server.last_modified, conflict.server.last_modified)
        self.assertTrue(restored.local.same_content(conflict.local))


if __name__ == "__main__":
    unittest.main()
