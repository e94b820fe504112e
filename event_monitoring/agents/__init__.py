"""Supervising agents."""

from .critic import (
    CriticAgent,
    RecommendationReview,
    RecoveryAction,
    RecoveryActionType,
    RecoveryResult,
    ReviewResult,
)

__all__ = [
    "CriticAgent",
    "RecommendationReview",
    "RecoveryAction",
    "RecoveryActionType",
    "RecoveryResult",
    "ReviewResult",
]
