"""Squad capacity management.

SquadCapacityManager is the only code that changes a squad's shooter count.
Every operation runs in a single Firestore transaction that reads the squad
document, so concurrent registrations, cancellations and transfers on the same
squad are serialized by Firestore's optimistic retry and the count always
matches the number of slot-holding registrations.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from firebase_admin import firestore

from idpatourney.constants import (
    PAYMENT_PENDING,
    REG_CANCELLED,
    REG_CHECKED_IN,
    REG_REGISTERED,
    REG_WAITLIST,
    REGISTRATIONS,
    SLOT_HOLDING_STATUSES,
    SQUAD_CLOSED,
    SQUAD_FULL,
    SQUAD_OPEN,
    SQUADS,
    TOURNAMENT_ACTIVE,
    TOURNAMENT_COMPLETED,
    TOURNAMENT_PUBLISHED,
    TOURNAMENTS,
    USERS,
)
from idpatourney.core.transactions import (
    get_in_transaction,
    query_in_transaction,
    run_transaction,
    utcnow,
)
from idpatourney.errors import (
    AlreadyRegistered,
    CapacityBelowCurrent,
    DivisionNotAllowed,
    InvalidCategory,
    InvalidStatusTransition,
    NotFoundError,
    NotOwner,
    SquadClosed,
    TargetClosed,
    TargetFull,
    TournamentClosed,
    TournamentLocked,
    ValidationError,
)
from idpatourney.utils import parse_timestamp, snapshot_to_dict

from . import repository
from .repository import waitlist_order_key

if TYPE_CHECKING:
    import datetime

    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

    from .models import RegistrationRequest

logger = logging.getLogger(__name__)

OFFICER_ROLES = ("securityOfficer", "admin")
SQUAD_CHANGE_ATTEMPTS = 3


class _SquadChanged(Exception):
    """Raised inside a transaction when a registration moved squads."""

    def __init__(self, squad_id: str) -> None:
        self.squad_id = squad_id
        super().__init__(squad_id)


def _require(snap: Any, message: str) -> dict[str, Any]:
    data = snapshot_to_dict(snap)
    if data is None:
        raise NotFoundError(message)
    return data


def _snapshots_to_dicts(snaps: list[Any]) -> list[dict[str, Any]]:
    return [{**(snap.to_dict() or {}), "id": snap.id} for snap in snaps]


def squad_status(current: int, max_shooters: int, status: str | None) -> str:
    """Return the squad status for a shooter count; closed squads stay closed."""
    if status == SQUAD_CLOSED:
        return SQUAD_CLOSED
    return SQUAD_FULL if current >= max_shooters else SQUAD_OPEN


def plan_promotions(
    waitlist: list[dict[str, Any]], current: int, max_shooters: int
) -> list[dict[str, Any]]:
    """Pick the waitlisted registrations that fit, oldest first."""
    spare = max(0, max_shooters - current)
    return sorted(waitlist, key=waitlist_order_key)[:spare]


class SquadCapacityManager:
    """Service class for squad capacity, registrations and the waitlist."""

    @staticmethod
    def _write_squad_count(
        transaction: Transaction,
        db: Client,
        squad_ref: DocumentReference,
        squad: dict[str, Any],
        new_count: int,
        waitlist: list[dict[str, Any]],
        now: datetime.datetime,
        max_shooters: int | None = None,
        status: str | None = None,
    ) -> list[str]:
        """Promote waitlisted shooters into free slots and write the squad.

        Must be called after every read of the transaction.
        """
        max_shooters = squad["maxShooters"] if max_shooters is None else max_shooters
        promoted = plan_promotions(waitlist, new_count, max_shooters)
        for reg in promoted:
            transaction.update(
                db.collection(REGISTRATIONS).document(reg["id"]),
                {"status": REG_REGISTERED, "promotedAt": now},
            )
        new_count += len(promoted)
        updates = {
            "currentShooters": new_count,
            "status": squad_status(
                new_count, max_shooters, status or squad.get("status")
            ),
            "maxShooters": max_shooters,
        }
        transaction.update(squad_ref, updates)
        if promoted:
            logger.info(
                f"Promoted {len(promoted)} waitlisted shooters into squad "
                f"{squad_ref.id}"
            )
        return [reg["id"] for reg in promoted]

    @staticmethod
    def _check_registration_open(
        tournament: dict[str, Any], now: datetime.datetime
    ) -> None:
        if tournament.get("status") != TOURNAMENT_PUBLISHED:
            raise TournamentClosed()
        opens = parse_timestamp(tournament.get("registrationOpens"))
        closes = parse_timestamp(tournament.get("registrationCloses"))
        if (opens and now < opens) or (closes and now > closes):
            raise TournamentClosed("Registration window is closed.")

    @staticmethod
    def register(
        request: RegistrationRequest, db: Client | None = None
    ) -> dict[str, Any]:
        """Register a shooter into a squad, or onto its waitlist when full."""
        if db is None:
            db = firestore.client()
        tournament_ref = db.collection(TOURNAMENTS).document(request.tournament_id)
        squad_ref = db.collection(SQUADS).document(request.squad_id)
        existing_query = repository.shooter_registrations_query(
            db, request.tournament_id, request.shooter_id
        )
        reg_ref = db.collection(REGISTRATIONS).document()

        def _register(transaction: Transaction) -> dict[str, Any]:
            now = utcnow()
            tournament = _require(
                get_in_transaction(transaction, tournament_ref), "Tournament not found"
            )
            squad = _require(
                get_in_transaction(transaction, squad_ref), "Squad not found"
            )
            existing = _snapshots_to_dicts(
                query_in_transaction(transaction, existing_query)
            )

            SquadCapacityManager._check_registration_open(tournament, now)
            if request.division not in tournament.get("divisions", []):
                raise DivisionNotAllowed(request.division)
            if any(reg.get("status") != REG_CANCELLED for reg in existing):
                raise AlreadyRegistered()
            if squad.get("tournamentId") != request.tournament_id:
                raise ValidationError("Squad does not belong to this tournament.")
            if squad.get("status") == SQUAD_CLOSED:
                raise SquadClosed()
            known = {c.get("id") for c in tournament.get("customCategories", [])}
            unknown = set(request.custom_categories) - known
            if unknown:
                raise InvalidCategory(unknown)

            current = squad.get("currentShooters", 0)
            has_slot = current < squad["maxShooters"]
            status = REG_REGISTERED if has_slot else REG_WAITLIST
            transaction.set(
                reg_ref,
                {
                    "tournamentId": request.tournament_id,
                    "shooterId": request.shooter_id,
                    "squadId": request.squad_id,
                    "division": request.division,
                    "classification": request.classification,
                    "customCategories": list(request.custom_categories),
                    "status": status,
                    "paymentStatus": PAYMENT_PENDING,
                    "registeredAt": now,
                    "createdAt": now,
                },
            )
            if has_slot:
                transaction.update(
                    squad_ref,
                    {
                        "currentShooters": current + 1,
                        "status": squad_status(
                            current + 1, squad["maxShooters"], squad.get("status")
                        ),
                    },
                )
            return {"registrationId": reg_ref.id, "status": status}

        result = run_transaction(db, _register)
        logger.info(
            f"Shooter {request.shooter_id} {result['status']} in squad "
            f"{request.squad_id}"
        )
        return result

    @staticmethod
    def cancel(
        registration_id: str, user_id: str, db: Client | None = None
    ) -> dict[str, Any]:
        """Cancel a registration and hand its slot to the waitlist."""
        if db is None:
            db = firestore.client()
        reg_ref = db.collection(REGISTRATIONS).document(registration_id)
        preview = _require(
            cast("DocumentSnapshot", reg_ref.get()), "Registration not found"
        )
        tournament_ref = db.collection(TOURNAMENTS).document(preview["tournamentId"])

        def _cancel(transaction: Transaction, squad_id: str) -> dict[str, Any]:
            now = utcnow()
            squad_ref = db.collection(SQUADS).document(squad_id)
            waitlist_query = repository.squad_registrations_query(
                db, squad_id, REG_WAITLIST
            )
            reg = _require(
                get_in_transaction(transaction, reg_ref), "Registration not found"
            )
            if reg.get("shooterId") != user_id:
                raise NotOwner()
            if reg.get("squadId") != squad_id:
                raise _SquadChanged(reg.get("squadId"))
            tournament = _require(
                get_in_transaction(transaction, tournament_ref), "Tournament not found"
            )
            if tournament.get("status") in (TOURNAMENT_ACTIVE, TOURNAMENT_COMPLETED):
                raise TournamentLocked()
            if reg.get("status") == REG_CANCELLED:
                return {"success": True, "promoted": []}

            held_slot = reg.get("status") in SLOT_HOLDING_STATUSES
            squad: dict[str, Any] = {}
            waitlist: list[dict[str, Any]] = []
            if held_slot:
                squad = _require(
                    get_in_transaction(transaction, squad_ref), "Squad not found"
                )
                waitlist = [
                    w
                    for w in _snapshots_to_dicts(
                        query_in_transaction(transaction, waitlist_query)
                    )
                    if w["id"] != registration_id
                ]

            transaction.update(reg_ref, {"status": REG_CANCELLED, "cancelledAt": now})
            promoted: list[str] = []
            if held_slot:
                promoted = SquadCapacityManager._write_squad_count(
                    transaction,
                    db,
                    squad_ref,
                    squad,
                    max(0, squad.get("currentShooters", 0) - 1),
                    waitlist,
                    now,
                )
            return {"success": True, "promoted": promoted}

        squad_id = preview["squadId"]
        for _ in range(SQUAD_CHANGE_ATTEMPTS):
            try:
                result = run_transaction(db, _cancel, squad_id)
            except _SquadChanged as exc:
                logger.info(
                    f"Registration {registration_id} moved to squad "
                    f"{exc.squad_id} during cancel, retrying"
                )
                squad_id = exc.squad_id
                continue
            logger.info(f"Registration {registration_id} cancelled")
            return result
        raise InvalidStatusTransition(
            "Registration keeps changing squads; try cancelling again."
        )

    @staticmethod
    def transfer(
        registration_id: str,
        new_squad_id: str,
        user_id: str,
        db: Client | None = None,
    ) -> dict[str, Any]:
        """Move a registered shooter to another squad of the same tournament.

        Both squads change in one transaction, so the move is all-or-nothing.
        """
        if db is None:
            db = firestore.client()
        reg_ref = db.collection(REGISTRATIONS).document(registration_id)
        preview = _require(
            cast("DocumentSnapshot", reg_ref.get()), "Registration not found"
        )
        old_squad_id = preview["squadId"]
        if new_squad_id == old_squad_id:
            raise ValidationError("Registration is already in that squad.")
        old_ref = db.collection(SQUADS).document(old_squad_id)
        new_ref = db.collection(SQUADS).document(new_squad_id)
        tournament_ref = db.collection(TOURNAMENTS).document(preview["tournamentId"])
        waitlist_query = repository.squad_registrations_query(
            db, old_squad_id, REG_WAITLIST
        )

        def _transfer(transaction: Transaction) -> dict[str, Any]:
            now = utcnow()
            reg = _require(
                get_in_transaction(transaction, reg_ref), "Registration not found"
            )
            if reg.get("shooterId") != user_id:
                raise NotOwner()
            if reg.get("status") != REG_REGISTERED or reg.get("squadId") != old_squad_id:
                raise InvalidStatusTransition(
                    "Only registered shooters can change squads."
                )
            tournament = _require(
                get_in_transaction(transaction, tournament_ref), "Tournament not found"
            )
            if tournament.get("status") in (TOURNAMENT_ACTIVE, TOURNAMENT_COMPLETED):
                raise TournamentLocked()
            old_squad = _require(
                get_in_transaction(transaction, old_ref), "Squad not found"
            )
            new_squad = _require(
                get_in_transaction(transaction, new_ref), "Target squad not found"
            )
            waitlist = _snapshots_to_dicts(
                query_in_transaction(transaction, waitlist_query)
            )

            if new_squad.get("tournamentId") != reg.get("tournamentId"):
                raise ValidationError("Target squad belongs to another tournament.")
            if new_squad.get("status") == SQUAD_CLOSED:
                raise TargetClosed()
            new_count = new_squad.get("currentShooters", 0)
            if new_count >= new_squad["maxShooters"]:
                raise TargetFull()

            transaction.update(reg_ref, {"squadId": new_squad_id, "transferredAt": now})
            transaction.update(
                new_ref,
                {
                    "currentShooters": new_count + 1,
                    "status": squad_status(
                        new_count + 1, new_squad["maxShooters"], new_squad.get("status")
                    ),
                },
            )
            promoted = SquadCapacityManager._write_squad_count(
                transaction,
                db,
                old_ref,
                old_squad,
                max(0, old_squad.get("currentShooters", 0) - 1),
                waitlist,
                now,
            )
            return {"success": True, "squadId": new_squad_id, "promoted": promoted}

        result = run_transaction(db, _transfer)
        logger.info(
            f"Registration {registration_id} moved from {old_squad_id} to {new_squad_id}"
        )
        return result

    @staticmethod
    def check_in(
        registration_id: str,
        division: str | None = None,
        classification: str | None = None,
        db: Client | None = None,
    ) -> dict[str, Any]:
        """Check a shooter in, optionally correcting division or classification."""
        if db is None:
            db = firestore.client()
        reg_ref = db.collection(REGISTRATIONS).document(registration_id)
        preview = _require(
            cast("DocumentSnapshot", reg_ref.get()), "Registration not found"
        )
        tournament_ref = db.collection(TOURNAMENTS).document(preview["tournamentId"])

        def _check_in(transaction: Transaction) -> dict[str, Any]:
            reg = _require(
                get_in_transaction(transaction, reg_ref), "Registration not found"
            )
            tournament = _require(
                get_in_transaction(transaction, tournament_ref), "Tournament not found"
            )
            if reg.get("status") != REG_REGISTERED or reg.get("checkedInAt"):
                raise InvalidStatusTransition(
                    f"Cannot check in a registration with status {reg.get('status')}."
                )
            updates: dict[str, Any] = {
                "status": REG_CHECKED_IN,
                "checkedInAt": utcnow(),
            }
            if division:
                if division not in tournament.get("divisions", []):
                    raise DivisionNotAllowed(division)
                updates["division"] = division
            if classification:
                updates["classification"] = classification
            transaction.update(reg_ref, updates)
            return {**reg, **updates}

        return run_transaction(db, _check_in)

    @staticmethod
    def _set_squad_status(squad_id: str, db: Client, closed: bool) -> dict[str, Any]:
        squad_ref = db.collection(SQUADS).document(squad_id)
        waitlist_query = repository.squad_registrations_query(
            db, squad_id, REG_WAITLIST
        )

        def _apply(transaction: Transaction) -> dict[str, Any]:
            squad = _require(
                get_in_transaction(transaction, squad_ref), "Squad not found"
            )
            current = squad.get("currentShooters", 0)
            if closed:
                transaction.update(squad_ref, {"status": SQUAD_CLOSED})
                return {"squadId": squad_id, "status": SQUAD_CLOSED, "promoted": []}
            waitlist = _snapshots_to_dicts(
                query_in_transaction(transaction, waitlist_query)
            )
            promoted = SquadCapacityManager._write_squad_count(
                transaction,
                db,
                squad_ref,
                squad,
                current,
                waitlist,
                utcnow(),
                status=SQUAD_OPEN,
            )
            new_count = current + len(promoted)
            return {
                "squadId": squad_id,
                "status": squad_status(new_count, squad["maxShooters"], SQUAD_OPEN),
                "promoted": promoted,
            }

        return run_transaction(db, _apply)

    @staticmethod
    def close_squad(squad_id: str, db: Client | None = None) -> dict[str, Any]:
        """Close a squad to new registrations."""
        if db is None:
            db = firestore.client()
        result = SquadCapacityManager._set_squad_status(squad_id, db, closed=True)
        logger.info(f"Squad {squad_id} closed")
        return result

    @staticmethod
    def open_squad(squad_id: str, db: Client | None = None) -> dict[str, Any]:
        """Reopen a squad; free slots go to the waitlist first."""
        if db is None:
            db = firestore.client()
        result = SquadCapacityManager._set_squad_status(squad_id, db, closed=False)
        logger.info(f"Squad {squad_id} reopened as {result['status']}")
        return result

    @staticmethod
    def set_capacity(
        squad_id: str, max_shooters: int, db: Client | None = None
    ) -> dict[str, Any]:
        """Change a squad's capacity; growth promotes waitlisted shooters."""
        if db is None:
            db = firestore.client()
        if max_shooters < 1:
            raise ValidationError("maxShooters must be at least 1.")
        squad_ref = db.collection(SQUADS).document(squad_id)
        waitlist_query = repository.squad_registrations_query(
            db, squad_id, REG_WAITLIST
        )

        def _apply(transaction: Transaction) -> dict[str, Any]:
            squad = _require(
                get_in_transaction(transaction, squad_ref), "Squad not found"
            )
            current = squad.get("currentShooters", 0)
            if max_shooters < current:
                raise CapacityBelowCurrent(max_shooters, current)
            waitlist = _snapshots_to_dicts(
                query_in_transaction(transaction, waitlist_query)
            )
            promoted = SquadCapacityManager._write_squad_count(
                transaction,
                db,
                squad_ref,
                squad,
                current,
                waitlist,
                utcnow(),
                max_shooters=max_shooters,
            )
            return {
                "squadId": squad_id,
                "maxShooters": max_shooters,
                "currentShooters": current + len(promoted),
                "promoted": promoted,
            }

        return run_transaction(db, _apply)

    @staticmethod
    def reconcile_squad(squad_id: str, db: Client | None = None) -> dict[str, Any]:
        """Recount a squad's slot holders and repair its count and status."""
        if db is None:
            db = firestore.client()
        squad_ref = db.collection(SQUADS).document(squad_id)
        holders_query = repository.squad_registrations_query(
            db, squad_id, SLOT_HOLDING_STATUSES
        )
        waitlist_query = repository.squad_registrations_query(
            db, squad_id, REG_WAITLIST
        )

        def _apply(transaction: Transaction) -> dict[str, Any]:
            squad = _require(
                get_in_transaction(transaction, squad_ref), "Squad not found"
            )
            holders = query_in_transaction(transaction, holders_query)
            waitlist = _snapshots_to_dicts(
                query_in_transaction(transaction, waitlist_query)
            )
            previous = squad.get("currentShooters", 0)
            promoted = SquadCapacityManager._write_squad_count(
                transaction,
                db,
                squad_ref,
                squad,
                len(holders),
                waitlist,
                utcnow(),
            )
            return {
                "squadId": squad_id,
                "previousCount": previous,
                "currentShooters": len(holders) + len(promoted),
                "promoted": promoted,
            }

        result = run_transaction(db, _apply)
        if result["previousCount"] != result["currentShooters"]:
            logger.warning(
                f"Squad {squad_id} count repaired from {result['previousCount']} "
                f"to {result['currentShooters']}"
            )
        return result

    @staticmethod
    def assign_officer(
        squad_id: str, officer_id: str, db: Client | None = None
    ) -> None:
        """Assign a security officer to a squad."""
        if db is None:
            db = firestore.client()
        squad_ref = db.collection(SQUADS).document(squad_id)
        _require(cast("DocumentSnapshot", squad_ref.get()), "Squad not found")
        officer = _require(
            cast("DocumentSnapshot", db.collection(USERS).document(officer_id).get()),
            "User not found",
        )
        if officer.get("role") not in OFFICER_ROLES:
            raise ValidationError("User is not a security officer.")
        squad_ref.update({"assignedOfficer": officer_id})

    @staticmethod
    def remove_officer(squad_id: str, db: Client | None = None) -> None:
        """Remove the security officer from a squad."""
        if db is None:
            db = firestore.client()
        squad_ref = db.collection(SQUADS).document(squad_id)
        _require(cast("DocumentSnapshot", squad_ref.get()), "Squad not found")
        squad_ref.update({"assignedOfficer": None})

    @staticmethod
    def waitlist_position(
        registration_id: str, db: Client | None = None
    ) -> dict[str, Any] | None:
        """Return the 1-based waitlist position, or None if not waitlisted."""
        if db is None:
            db = firestore.client()
        reg = _require(
            cast(
                "DocumentSnapshot",
                db.collection(REGISTRATIONS).document(registration_id).get(),
            ),
            "Registration not found",
        )
        if reg.get("status") != REG_WAITLIST:
            return None
        waitlist = repository.ordered_waitlist(db, reg["squadId"])
        ids = [w["id"] for w in waitlist]
        return {"position": ids.index(registration_id) + 1, "total": len(ids)}

    @staticmethod
    def squad_roster(squad_id: str, db: Client | None = None) -> dict[str, Any]:
        """Return a squad with its slot holders and ordered waitlist."""
        if db is None:
            db = firestore.client()
        squad = _require(
            cast("DocumentSnapshot", db.collection(SQUADS).document(squad_id).get()),
            "Squad not found",
        )
        members = sorted(
            repository.find_by_squad_and_status(db, squad_id, SLOT_HOLDING_STATUSES),
            key=waitlist_order_key,
        )
        return {
            "squad": squad,
            "members": members,
            "waitlist": repository.ordered_waitlist(db, squad_id),
        }

    @staticmethod
    def available_squads(
        tournament_id: str, db: Client | None = None
    ) -> list[dict[str, Any]]:
        """Return the tournament's squads that still have free slots."""
        if db is None:
            db = firestore.client()
        squads = (
            db.collection(SQUADS)
            .where(filter=firestore.FieldFilter("tournamentId", "==", tournament_id))
            .where(filter=firestore.FieldFilter("status", "==", SQUAD_OPEN))
            .stream()
        )
        available = []
        for doc in squads:
            data = doc.to_dict() or {}
            spare = data.get("maxShooters", 0) - data.get("currentShooters", 0)
            if spare > 0:
                available.append({**data, "id": doc.id, "availableSlots": spare})
        return sorted(available, key=lambda s: s.get("name", ""))
