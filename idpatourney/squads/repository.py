"""Indexed Firestore lookups for squads and registrations.

Every lookup filters on indexed fields so it never scans a collection.
"""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore

from idpatourney.constants import REG_CANCELLED, REG_WAITLIST, REGISTRATIONS, SQUADS
from idpatourney.errors import ValidationError
from idpatourney.utils import parse_timestamp

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.query import Query

UNDATED = datetime.datetime.max.replace(tzinfo=datetime.timezone.utc)


def _to_dicts(query: Query) -> list[dict[str, Any]]:
    results = []
    for doc in query.stream():
        data = doc.to_dict() or {}
        data["id"] = doc.id
        results.append(data)
    return results


def squad_registrations_query(
    db: Client, squad_id: str, statuses: str | tuple[str, ...]
) -> Query:
    """Query the registrations of a squad in one or more statuses."""
    query = db.collection(REGISTRATIONS).where(
        filter=firestore.FieldFilter("squadId", "==", squad_id)
    )
    if isinstance(statuses, str):
        return query.where(filter=firestore.FieldFilter("status", "==", statuses))
    return query.where(filter=firestore.FieldFilter("status", "in", list(statuses)))


def shooter_registrations_query(
    db: Client, tournament_id: str, shooter_id: str
) -> Query:
    """Query every registration a shooter has for a tournament."""
    return (
        db.collection(REGISTRATIONS)
        .where(filter=firestore.FieldFilter("tournamentId", "==", tournament_id))
        .where(filter=firestore.FieldFilter("shooterId", "==", shooter_id))
    )


def find_by_squad_and_status(
    db: Client, squad_id: str, statuses: str | tuple[str, ...]
) -> list[dict[str, Any]]:
    """Return the registrations of a squad in the given status(es)."""
    return _to_dicts(squad_registrations_query(db, squad_id, statuses))


def find_active_registration(
    db: Client, tournament_id: str, shooter_id: str
) -> dict[str, Any] | None:
    """Return the shooter's non-cancelled registration for a tournament."""
    for reg in _to_dicts(shooter_registrations_query(db, tournament_id, shooter_id)):
        if reg.get("status") != REG_CANCELLED:
            return reg
    return None


def find_by_officer(
    db: Client, officer_id: str, tournament_id: str | None = None
) -> list[dict[str, Any]]:
    """Return the squads assigned to a security officer."""
    query = db.collection(SQUADS).where(
        filter=firestore.FieldFilter("assignedOfficer", "==", officer_id)
    )
    if tournament_id:
        query = query.where(
            filter=firestore.FieldFilter("tournamentId", "==", tournament_id)
        )
    return sorted(_to_dicts(query), key=lambda s: s.get("name", ""))


def waitlist_order_key(registration: dict[str, Any]) -> tuple[Any, str]:
    """FIFO order: earliest registeredAt first, ties by registration id.

    Registrations without a usable timestamp fall back to createdAt and then
    queue behind every dated registration.
    """
    registered_at = None
    for field in ("registeredAt", "createdAt"):
        try:
            registered_at = parse_timestamp(registration.get(field))
        except ValidationError:
            registered_at = None
        if registered_at is not None:
            break
    return (registered_at or UNDATED, registration["id"])


def ordered_waitlist(db: Client, squad_id: str) -> list[dict[str, Any]]:
    """Return a squad's waitlist in promotion order."""
    return sorted(
        find_by_squad_and_status(db, squad_id, REG_WAITLIST), key=waitlist_order_key
    )
