"""Data models for the tournament blueprint."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, TypedDict

from idpatourney.constants import DIVISIONS
from idpatourney.core.types import FirestoreDocument
from idpatourney.errors import ValidationError
from idpatourney.utils import parse_timestamp


class CustomCategory(TypedDict, total=False):
    """A tournament specific ranking category, e.g. Ladies or Veterans."""

    id: str
    name: str
    description: str


class SquadConfig(TypedDict):
    """How many squads to create and how big they are."""

    numberOfSquads: int
    maxShootersPerSquad: int


class Tournament(FirestoreDocument, total=False):
    """A tournament document in Firestore."""

    name: str
    date: Any
    registrationOpens: Any
    registrationCloses: Any
    divisions: list[str]
    customCategories: list[CustomCategory]
    capacity: int
    squadConfig: SquadConfig
    status: str


class Stage(FirestoreDocument, total=False):
    """A stage document in Firestore."""

    tournamentId: str
    stageNumber: int
    name: str
    strings: int
    roundCount: int
    scoringType: str
    parTime: float


def _positive_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError(f"{key} must be a positive whole number.")
    return value


@dataclass
class TournamentSetup:
    """Validated input for creating a tournament."""

    name: str
    date: datetime.datetime
    registration_opens: datetime.datetime
    registration_closes: datetime.datetime
    divisions: list[str]
    capacity: int
    number_of_squads: int
    max_shooters_per_squad: int
    custom_categories: list[CustomCategory] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TournamentSetup:
        """Validate a JSON body and build the setup."""
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Tournament name is required.")

        date = parse_timestamp(data.get("date"))
        opens = parse_timestamp(data.get("registrationOpens"))
        closes = parse_timestamp(data.get("registrationCloses"))
        if date is None or opens is None or closes is None:
            raise ValidationError(
                "date, registrationOpens and registrationCloses are required."
            )
        if opens >= closes:
            raise ValidationError("Registration must open before it closes.")
        if closes > date:
            raise ValidationError("Registration must close before the tournament.")

        divisions = data.get("divisions") or []
        unknown = [d for d in divisions if d not in DIVISIONS]
        if not divisions or unknown:
            raise ValidationError(
                f"divisions must be a non-empty subset of {', '.join(DIVISIONS)}."
            )

        squad_config = data.get("squadConfig") or {}
        number_of_squads = _positive_int(squad_config, "numberOfSquads")
        max_per_squad = _positive_int(squad_config, "maxShootersPerSquad")
        capacity = _positive_int(data, "capacity")
        if number_of_squads * max_per_squad < capacity:
            raise ValidationError("Squads cannot hold the tournament capacity.")

        categories = []
        seen = set()
        for category in data.get("customCategories") or []:
            if not isinstance(category, dict) or not category.get("id"):
                raise ValidationError("Each custom category needs an id.")
            if category["id"] in seen:
                raise ValidationError(f"Duplicate custom category {category['id']}.")
            seen.add(category["id"])
            categories.append(
                {
                    "id": category["id"],
                    "name": category.get("name") or category["id"],
                    "description": category.get("description", ""),
                }
            )

        return cls(
            name=name,
            date=date,
            registration_opens=opens,
            registration_closes=closes,
            divisions=list(divisions),
            capacity=capacity,
            number_of_squads=number_of_squads,
            max_shooters_per_squad=max_per_squad,
            custom_categories=categories,  # type: ignore[arg-type]
            extra={
                k: data[k] for k in ("location", "description", "clubId") if k in data
            },
        )
