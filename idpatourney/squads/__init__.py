"""Squads and registrations blueprints."""

from flask import Blueprint

bp = Blueprint("squads", __name__, url_prefix="/squads")
registrations_bp = Blueprint("registrations", __name__, url_prefix="/registrations")

from . import routes  # noqa: E402, F401
from .models import Registration, Squad  # noqa: E402
from .services import SquadCapacityManager  # noqa: E402

__all__ = ["Registration", "Squad", "SquadCapacityManager", "registrations_bp", "routes"]
