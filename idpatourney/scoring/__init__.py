"""Scoring blueprint."""

from flask import Blueprint

bp = Blueprint("scoring", __name__, url_prefix="/scoring")

from . import routes  # noqa: E402, F401
from .conflicts import ConflictRecord, ConflictResolver, ScoreVersion  # noqa: E402
from .models import StageScore  # noqa: E402
from .services import ScoringService  # noqa: E402

__all__ = [
    "ConflictRecord",
    "ConflictResolver",
    "ScoreVersion",
    "ScoringService",
    "StageScore",
    "routes",
]
