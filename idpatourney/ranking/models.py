"""Data models for rankings."""

from __future__ import annotations

from typing import Any, TypedDict


class CategoryRank(TypedDict):
    """Rank within one custom category."""

    categoryId: str
    rank: int


class StageRank(TypedDict):
    """Division rank on one stage."""

    stageId: str
    rank: int


class Rankings(TypedDict):
    """Parallel rankings of one shooter."""

    overallRank: int
    divisionRank: int
    classificationRank: int
    customCategoryRanks: list[CategoryRank]


class _MatchResultBase(TypedDict):
    tournamentId: str
    shooterId: str
    division: str
    classification: str
    customCategories: list[str]
    totalTime: float
    totalPointsDown: int
    totalPenalties: float
    finalScore: float
    completedStages: int
    totalStages: int
    completionPercentage: int
    rankings: Rankings
    stageRanks: list[StageRank]
    dnf: bool
    dq: bool


class MatchResult(_MatchResultBase, total=False):
    """Aggregated tournament result for one shooter."""

    calculatedAt: Any


class RankEntry(TypedDict):
    """One leaderboard row."""

    rank: int
    shooterId: str
    division: str
    classification: str
    finalScore: float
    totalTime: float
    totalPointsDown: int
    totalPenalties: float
    completedStages: int
    totalStages: int
    completionPercentage: int
    dnf: bool
    dq: bool
