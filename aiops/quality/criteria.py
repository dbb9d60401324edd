"""
Quality Evaluation Profiles

Per-operation weights over the six quality dimensions plus the length
bounds, required elements and domain vocabulary the heuristics look for.
Weights in every profile sum to 1. Operations without a profile use
DEFAULT_PROFILE.
"""

from dataclasses import dataclass, field

DIMENSIONS = (
    "relevance",
    "coherence",
    "completeness",
    "accuracy",
    "creativity",
    "safety",
)


@dataclass(frozen=True)
class QualityProfile:
    """
    Evaluation criteria for one operation.

    Attributes:
        operation: Operation name the profile applies to
        weights: Weight per dimension, summing to 1
        min_length: Minimum expected response length in characters
        max_length: Maximum expected response length in characters
        required_elements: Phrases a complete answer contains
        domain_terms: Vocabulary that signals domain knowledge
    """

    operation: str
    weights: dict[str, float]
    min_length: int | None = None
    max_length: int | None = None
    required_elements: tuple[str, ...] = ()
    domain_terms: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        missing = set(DIMENSIONS) - set(self.weights)
        if missing:
            raise ValueError(f"Profile {self.operation} lacks weights for {sorted(missing)}")
        total = sum(self.weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Profile {self.operation} weights sum to {total}, expected 1")


def _weights(relevance, coherence, completeness, accuracy, creativity, safety):
    return dict(zip(DIMENSIONS, (relevance, coherence, completeness, accuracy, creativity, safety)))


QUALITY_PROFILES: dict[str, QualityProfile] = {
    "generate_okr": QualityProfile(
        operation="generate_okr",
        weights=_weights(0.25, 0.20, 0.25, 0.15, 0.10, 0.05),
        min_length=200,
        max_length=800,
        required_elements=("objective", "key result", "measurable"),
        domain_terms=("okr", "management", "metrics", "objectives"),
    ),
    "analyze_performance": QualityProfile(
        operation="analyze_performance",
        weights=_weights(0.20, 0.15, 0.20, 0.30, 0.10, 0.05),
        min_length=300,
        max_length=1000,
        required_elements=("analysis", "data", "conclusion"),
        domain_terms=("analysis", "performance", "metrics", "trends"),
    ),
    "generate_insights": QualityProfile(
        operation="generate_insights",
        weights=_weights(0.25, 0.20, 0.20, 0.15, 0.15, 0.05),
        min_length=250,
        max_length=700,
        required_elements=("insight", "recommendation"),
        domain_terms=("strategy", "optimization", "continuous improvement"),
    ),
    "chat_completion": QualityProfile(
        operation="chat_completion",
        weights=_weights(0.30, 0.25, 0.20, 0.15, 0.05, 0.05),
        min_length=50,
        max_length=500,
        domain_terms=("conversation", "context", "help"),
    ),
}

DEFAULT_PROFILE = QualityProfile(
    operation="default",
    weights=_weights(0.25, 0.20, 0.20, 0.20, 0.10, 0.05),
)


def get_profile(operation: str) -> QualityProfile:
    """Profile for an operation, falling back to DEFAULT_PROFILE."""
    return QUALITY_PROFILES.get(operation, DEFAULT_PROFILE)
