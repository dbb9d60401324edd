"""
Quality module: six-dimension response scoring.

Components:
    QualityScorer: Evaluate responses, blend feedback, report trends
    QualityAssessment / QualityScores / UserFeedback: Assessment records
    QualityProfile: Per-operation weights and criteria
    ModelJudge: Optional judge-model relevance scoring with fallback
    compute_scores: Pure heuristic scoring entry point
"""

from aiops.quality.criteria import (
    DEFAULT_PROFILE,
    DIMENSIONS,
    QUALITY_PROFILES,
    QualityProfile,
    get_profile,
)
from aiops.quality.judge import ModelJudge, QualityJudge, parse_score
from aiops.quality.scorer import (
    ModelQuality,
    QualityAssessment,
    QualityScorer,
    QualityScores,
    QualitySummary,
    QualityTrend,
    UserFeedback,
    compute_scores,
    grade,
)

__all__ = [
    # Profiles
    "DIMENSIONS",
    "DEFAULT_PROFILE",
    "QUALITY_PROFILES",
    "QualityProfile",
    "get_profile",
    # Judge
    "QualityJudge",
    "ModelJudge",
    "parse_score",
    # Scoring
    "QualityScorer",
    "QualityAssessment",
    "QualityScores",
    "UserFeedback",
    "QualitySummary",
    "QualityTrend",
    "ModelQuality",
    "compute_scores",
    "grade",
]
