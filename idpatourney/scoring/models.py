"""Data models for the scoring blueprint."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, TypedDict

from idpatourney.constants import HIT_ZONES, STANDARD_PENALTIES
from idpatourney.core.types import FirestoreDocument
from idpatourney.errors import ValidationError


class HitZone(TypedDict):
    """Hits recorded on one string."""

    down0: int
    down1: int
    down3: int
    miss: int
    nonThreat: int


class StringScore(TypedDict):
    """One timed string of fire."""

    time: float
    hits: HitZone


class OtherPenalty(TypedDict, total=False):
    """A free-form penalty."""

    type: str
    count: int
    seconds: float
    description: str


class Penalties(TypedDict):
    """The five standard penalties plus free-form ones."""

    procedural: int
    nonThreat: int
    failureToNeutralize: int
    flagrant: int
    ftdr: int
    other: list[OtherPenalty]


class StageScore(FirestoreDocument, total=False):
    """A score document in Firestore."""

    stageId: str
    tournamentId: str
    shooterId: str
    squadId: str
    division: str
    classification: str
    scoredBy: str
    strings: list[StringScore]
    penalties: Penalties
    rawTime: float
    pointsDown: int
    penaltyTime: float
    finalTime: float
    stagePoints: float
    dnf: bool
    dq: bool
    scoredAt: Any


def _integral(value: Any) -> Any:
    """Turn whole floats into ints; leave everything else for validation."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def normalize_strings(strings: Any) -> list[StringScore]:
    """Fill in missing hit zones so every string has the full shape."""
    if not isinstance(strings, list):
        raise ValidationError("strings must be a list.")
    normalized = []
    for string in strings:
        if not isinstance(string, dict):
            raise ValidationError("Each string must be an object.")
        hits = string.get("hits") or {}
        if not isinstance(hits, dict):
            raise ValidationError("hits must be an object.")
        normalized.append(
            {
                "time": string.get("time", 0),
                "hits": {zone: _integral(hits.get(zone, 0)) for zone in HIT_ZONES},
            }
        )
    return normalized


def normalize_penalties(penalties: Any) -> Penalties:
    """Fill in missing penalty categories with zero."""
    penalties = penalties or {}
    if not isinstance(penalties, dict):
        raise ValidationError("penalties must be an object.")
    other = penalties.get("other") or []
    if not isinstance(other, list):
        raise ValidationError("penalties.other must be a list.")
    normalized: dict[str, Any] = {
        name: _integral(penalties.get(name, 0)) for name in STANDARD_PENALTIES
    }
    normalized["other"] = []
    for entry in other:
        if not isinstance(entry, dict):
            raise ValidationError("Each other penalty must be an object.")
        item = {
            "type": entry.get("type", "other"),
            "count": _integral(entry.get("count", 0)),
            "seconds": entry.get("seconds", 0),
        }
        if entry.get("description"):
            item["description"] = entry["description"]
        normalized["other"].append(item)
    return normalized  # type: ignore[return-value]


@dataclass
class ScoreBreakdown:
    """Derived score fields."""

    raw_time: float
    points_down: int
    penalty_time: float
    final_time: float
    stage_points: float
    dnf: bool = False
    dq: bool = False

    @property
    def finished(self) -> bool:
        """Whether the shooter completed the stage."""
        return not (self.dnf or self.dq)

    @property
    def sort_time(self) -> float:
        """Time used for ordering; DNF/DQ sorts as infinite."""
        return self.final_time if self.finished else float("inf")

    def to_fields(self) -> dict[str, Any]:
        """Return the Firestore field names for the breakdown."""
        return {
            "rawTime": self.raw_time,
            "pointsDown": self.points_down,
            "penaltyTime": self.penalty_time,
            "finalTime": self.final_time,
            "stagePoints": self.stage_points,
        }


@dataclass
class ScoreSubmission:
    """Dataclass for a score submission."""

    stage_id: str
    shooter_id: str
    scored_by: str
    strings: list[StringScore]
    penalties: Penalties
    dnf: bool = False
    dq: bool = False
    squad_id: Optional[str] = None
    division: Optional[str] = None
    classification: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScoreSubmission:
        """Build a submission from a JSON or queue payload."""
        missing = [
            key for key in ("stageId", "shooterId", "scoredBy") if not data.get(key)
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        return cls(
            stage_id=data["stageId"],
            shooter_id=data["shooterId"],
            scored_by=data["scoredBy"],
            strings=normalize_strings(data.get("strings", [])),
            penalties=normalize_penalties(data.get("penalties")),
            dnf=bool(data.get("dnf", False)),
            dq=bool(data.get("dq", False)),
            squad_id=data.get("squadId"),
            division=data.get("division"),
            classification=data.get("classification"),
        )
