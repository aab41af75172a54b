"""Pure ranking computation for IDPA tournaments.

Rankings are always recomputed for the whole tournament from the scores and
registrations; nothing here touches Firestore.
"""

from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any

from idpatourney.constants import REG_CANCELLED
from idpatourney.scoring.calculator import calculate_score_breakdown
from idpatourney.scoring.models import normalize_penalties, normalize_strings

from .models import MatchResult, RankEntry


def _is_out(result: dict[str, Any]) -> bool:
    return bool(result.get("dnf") or result.get("dq"))


def order_key(result: dict[str, Any]) -> tuple[int, float, str]:
    """Sort key: finishers by final score, then DNF/DQ, ties by shooter id."""
    if _is_out(result):
        return (1, 0.0, result["shooterId"])
    return (0, result["finalScore"], result["shooterId"])


def _stage_order_key(entry: dict[str, Any]) -> tuple[int, float, str]:
    if _is_out(entry):
        return (1, 0.0, entry["shooterId"])
    return (0, entry["finalTime"], entry["shooterId"])


def _active_registrations(
    registrations: list[dict[str, Any]],
) -> tuple[dict[str, dict[str, Any]], set[str]]:
    """Split registrations into active ones by shooter and cancelled shooters."""
    active = {}
    cancelled = set()
    for reg in registrations:
        if reg.get("status") == REG_CANCELLED:
            cancelled.add(reg["shooterId"])
        else:
            active[reg["shooterId"]] = reg
    return active, cancelled - set(active)


def _included_scores(
    scores: list[dict[str, Any]], registrations: list[dict[str, Any]]
) -> tuple[list[dict[str, Any]], dict[str, dict[str, Any]]]:
    active, cancelled = _active_registrations(registrations)
    included = [s for s in scores if s["shooterId"] not in cancelled]
    return included, active


def _breakdown(score: dict[str, Any]) -> Any:
    return calculate_score_breakdown(
        normalize_strings(score.get("strings", [])),
        normalize_penalties(score.get("penalties")),
        bool(score.get("dnf", False)),
        bool(score.get("dq", False)),
    )


def rank_stage(
    scores: list[dict[str, Any]],
    registrations: list[dict[str, Any]] | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Rank the scores of one stage within each division."""
    included, active = _included_scores(scores, registrations or [])
    by_division: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for score in included:
        reg = active.get(score["shooterId"], {})
        breakdown = _breakdown(score)
        division = reg.get("division") or score.get("division") or ""
        by_division[division].append(
            {
                "shooterId": score["shooterId"],
                "stageId": score.get("stageId"),
                "division": division,
                "classification": (
                    reg.get("classification") or score.get("classification") or ""
                ),
                "rawTime": breakdown.raw_time,
                "pointsDown": breakdown.points_down,
                "penaltyTime": breakdown.penalty_time,
                "finalTime": breakdown.final_time,
                "stagePoints": breakdown.stage_points,
                "dnf": breakdown.dnf,
                "dq": breakdown.dq,
            }
        )

    rankings = {}
    for division, entries in by_division.items():
        entries.sort(key=_stage_order_key)
        for rank, entry in enumerate(entries, start=1):
            entry["rank"] = rank
        rankings[division] = entries
    return rankings


def _new_result(
    tournament_id: str, shooter_id: str, reg: dict[str, Any], score: dict[str, Any]
) -> dict[str, Any]:
    return {
        "tournamentId": tournament_id,
        "shooterId": shooter_id,
        "division": reg.get("division") or score.get("division") or "",
        "classification": (
            reg.get("classification") or score.get("classification") or ""
        ),
        "customCategories": list(reg.get("customCategories", [])),
        "totalTime": 0,
        "totalPointsDown": 0,
        "totalPenalties": 0,
        "finalScore": 0,
        "completedStages": 0,
        "totalStages": 0,
        "completionPercentage": 0,
        "rankings": {
            "overallRank": 0,
            "divisionRank": 0,
            "classificationRank": 0,
            "customCategoryRanks": [],
        },
        "stageRanks": [],
        "dnf": False,
        "dq": False,
    }


def aggregate_results(
    tournament_id: str,
    stages: list[dict[str, Any]],
    scores: list[dict[str, Any]],
    registrations: list[dict[str, Any]],
) -> dict[str, dict[str, Any]]:
    """Sum each shooter's stage scores into an unranked match result."""
    included, active = _included_scores(scores, registrations)
    total_stages = len(stages)
    results: dict[str, dict[str, Any]] = {}

    for score in included:
        shooter_id = score["shooterId"]
        result = results.get(shooter_id)
        if result is None:
            result = _new_result(
                tournament_id, shooter_id, active.get(shooter_id, {}), score
            )
            results[shooter_id] = result

        breakdown = _breakdown(score)
        result["totalTime"] += breakdown.raw_time
        result["totalPointsDown"] += breakdown.points_down
        result["totalPenalties"] += breakdown.penalty_time
        if breakdown.finished:
            result["finalScore"] += breakdown.final_time
            result["completedStages"] += 1
        result["dnf"] = result["dnf"] or breakdown.dnf
        result["dq"] = result["dq"] or breakdown.dq

    for result in results.values():
        result["totalStages"] = total_stages
        if total_stages:
            result["completionPercentage"] = round(
                result["completedStages"] / total_stages * 100
            )
    return results


def assign_ranks(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order results and fill in the overall, division, class and category ranks."""
    ordered = sorted(results, key=order_key)
    division_counts: dict[str, int] = defaultdict(int)
    class_counts: dict[tuple[str, str], int] = defaultdict(int)
    category_counts: dict[str, int] = defaultdict(int)

    for overall, result in enumerate(ordered, start=1):
        division = result["division"]
        classification = result["classification"]
        division_counts[division] += 1
        class_counts[(division, classification)] += 1

        category_ranks = []
        for category_id in result.get("customCategories", []):
            category_counts[category_id] += 1
            category_ranks.append(
                {"categoryId": category_id, "rank": category_counts[category_id]}
            )

        result["rankings"] = {
            "overallRank": overall,
            "divisionRank": division_counts[division],
            "classificationRank": class_counts[(division, classification)],
            "customCategoryRanks": category_ranks,
        }
    return ordered


def compute_match_results(
    tournament_id: str,
    stages: list[dict[str, Any]],
    scores: list[dict[str, Any]],
    registrations: list[dict[str, Any]],
    calculated_at: datetime.datetime | None = None,
) -> list[MatchResult]:
    """Compute ranked match results for every shooter with at least one score."""
    results = aggregate_results(tournament_id, stages, scores, registrations)

    scores_by_stage: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for score in scores:
        scores_by_stage[score.get("stageId", "")].append(score)
    stage_order = sorted(
        stages, key=lambda s: (s.get("stageNumber", 0), s.get("id", ""))
    )
    for stage in stage_order:
        stage_id = stage.get("id", "")
        for entries in rank_stage(scores_by_stage[stage_id], registrations).values():
            for entry in entries:
                result = results.get(entry["shooterId"])
                if result is not None:
                    result["stageRanks"].append(
                        {"stageId": stage_id, "rank": entry["rank"]}
                    )

    ordered = assign_ranks(list(results.values()))
    if calculated_at is not None:
        for result in ordered:
            result["calculatedAt"] = calculated_at
    return ordered  # type: ignore[return-value]


def leaderboard_entries(
    results: list[dict[str, Any]],
    division: str | None = None,
    classification: str | None = None,
) -> list[RankEntry]:
    """Filter ranked results and pick the rank matching the filter."""
    if classification and division:
        rank_key = "classificationRank"
    elif division:
        rank_key = "divisionRank"
    else:
        rank_key = "overallRank"

    entries = []
    for result in sorted(results, key=order_key):
        if division and result["division"] != division:
            continue
        if classification and result["classification"] != classification:
            continue
        entries.append(
            {
                "rank": result["rankings"][rank_key],
                "shooterId": result["shooterId"],
                "division": result["division"],
                "classification": result["classification"],
                "finalScore": result["finalScore"],
                "totalTime": result["totalTime"],
                "totalPointsDown": result["totalPointsDown"],
                "totalPenalties": result["totalPenalties"],
                "completedStages": result["completedStages"],
                "totalStages": result["totalStages"],
                "completionPercentage": result["completionPercentage"],
                "dnf": result["dnf"],
                "dq": result["dq"],
            }
        )

    if classification and not division:
        # Classes are ranked within a division, so renumber across divisions
        for rank, entry in enumerate(entries, start=1):
            entry["rank"] = rank
    return entries  # type: ignore[return-value]
