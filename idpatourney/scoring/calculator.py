"""IDPA score arithmetic and score input validation.

Everything here is pure: the same strings and penalties always produce the
same breakdown, so clients can calculate optimistically before syncing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from idpatourney.constants import PENALTY_SECONDS, POINTS_DOWN, STANDARD_PENALTIES
from idpatourney.errors import InvalidScoreInput

from .models import ScoreBreakdown

if TYPE_CHECKING:
    from .models import HitZone, Penalties, StringScore

# Zones that count as a shot on the scoring area (non-threats are separate)
COUNTED_ZONES = ("down0", "down1", "down3", "miss")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def points_down_for_hits(hits: HitZone) -> int:
    """Return the points down for one string's hits."""
    return sum(POINTS_DOWN[zone] * hits.get(zone, 0) for zone in POINTS_DOWN)


def calculate_penalty_time(penalties: Penalties) -> float:
    """Return the penalty seconds for the standard and free-form penalties."""
    total: float = sum(
        PENALTY_SECONDS[name] * penalties.get(name, 0) for name in STANDARD_PENALTIES
    )
    for other in penalties.get("other", []):
        total += other.get("count", 0) * other.get("seconds", 0)
    return total


def calculate_score_breakdown(
    strings: list[StringScore],
    penalties: Penalties,
    dnf: bool = False,
    dq: bool = False,
) -> ScoreBreakdown:
    """Compute rawTime, pointsDown, penaltyTime and finalTime for a stage.

    DNF and DQ scores keep their arithmetic, but they earn no stage points
    and sort after every finisher.
    """
    raw_time = sum(string["time"] for string in strings)
    points_down = sum(points_down_for_hits(string["hits"]) for string in strings)
    penalty_time = calculate_penalty_time(penalties)
    final_time = raw_time + points_down + penalty_time
    finished = not (dnf or dq)
    return ScoreBreakdown(
        raw_time=raw_time,
        points_down=points_down,
        penalty_time=penalty_time,
        final_time=final_time,
        stage_points=final_time if finished else 0,
        dnf=dnf,
        dq=dq,
    )


def count_hits(strings: list[StringScore]) -> int:
    """Return the number of counted shots across all strings."""
    return sum(
        string["hits"].get(zone, 0) for string in strings for zone in COUNTED_ZONES
    )


def validate_score_input(
    strings: list[StringScore],
    penalties: Penalties,
    round_count: int | None = None,
    string_count: int | None = None,
) -> None:
    """Raise InvalidScoreInput listing every problem with the input.

    Values are never clamped; the scorer has to correct them.
    """
    errors = []
    if string_count is not None and len(strings) != string_count:
        errors.append(f"Expected {string_count} strings, got {len(strings)}")

    hits_valid = True
    for index, string in enumerate(strings, start=1):
        time = string.get("time")
        if not _is_number(time):
            errors.append(f"String {index}: time must be a number")
        elif time < 0:
            errors.append(f"String {index}: time cannot be negative")
        for zone, value in string["hits"].items():
            if not _is_count(value):
                errors.append(f"String {index}: {zone} must be a whole number")
                hits_valid = False
            elif value < 0:
                errors.append(f"String {index}: {zone} cannot be negative")
                hits_valid = False

    if hits_valid and round_count is not None:
        total = count_hits(strings)
        if total > round_count:
            errors.append(
                f"Total hits ({total}) exceed the stage round count ({round_count})"
            )

    for name in STANDARD_PENALTIES:
        value = penalties.get(name, 0)
        if not _is_count(value):
            errors.append(f"Penalty {name} must be a whole number")
        elif value < 0:
            errors.append(f"Penalty {name} cannot be negative")

    for index, other in enumerate(penalties.get("other", []), start=1):
        count = other.get("count", 0)
        seconds = other.get("seconds", 0)
        if not _is_count(count) or count < 0:
            errors.append(f"Other penalty {index}: count must be a whole number >= 0")
        if not _is_number(seconds) or seconds < 0:
            errors.append(f"Other penalty {index}: seconds must be a number >= 0")

    if errors:
        raise InvalidScoreInput(errors)


def shooter_accuracy(scores: list[dict[str, Any]]) -> float:
    """Return the share of scoring hits over all counted shots, as a percentage.

    Misses count against accuracy; down0, down1 and down3 are hits.
    """
    hits = 0
    misses = 0
    for score in scores:
        for string in score.get("strings", []):
            string_hits = string.get("hits", {})
            hits += (
                string_hits.get("down0", 0)
                + string_hits.get("down1", 0)
                + string_hits.get("down3", 0)
            )
            misses += string_hits.get("miss", 0)
    if hits + misses == 0:
        return 0.0
    return round(hits / (hits + misses) * 100, 1)
