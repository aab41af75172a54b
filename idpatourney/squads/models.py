"""Data models for squads and registrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from idpatourney.core.types import FirestoreDocument


class Squad(FirestoreDocument, total=False):
    """A squad document in Firestore."""

    tournamentId: str
    name: str
    timeSlot: str
    maxShooters: int
    currentShooters: int
    status: str
    assignedOfficer: Optional[str]


class Registration(FirestoreDocument, total=False):
    """A registration document in Firestore."""

    tournamentId: str
    shooterId: str
    squadId: str
    division: str
    classification: str
    customCategories: list[str]
    status: str
    paymentStatus: str
    registeredAt: Any
    checkedInAt: Any
    cancelledAt: Any


@dataclass
class RegistrationRequest:
    """A shooter's request to join a squad."""

    tournament_id: str
    shooter_id: str
    squad_id: str
    division: str
    classification: str
    custom_categories: list[str] = field(default_factory=list)
