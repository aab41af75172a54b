"""Ranking blueprint: leaderboards and scoring progress."""

from flask import Blueprint

bp = Blueprint("ranking", __name__, url_prefix="/scoring")

from . import routes  # noqa: E402, F401
from .services import LeaderboardService  # noqa: E402

__all__ = ["LeaderboardService", "routes"]
