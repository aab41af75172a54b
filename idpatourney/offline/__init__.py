"""Offline sync blueprint."""

from flask import Blueprint

bp = Blueprint("offline", __name__, url_prefix="/offline")

from . import routes  # noqa: E402, F401
from .services import OfflineSyncService  # noqa: E402

__all__ = ["OfflineSyncService", "routes"]
