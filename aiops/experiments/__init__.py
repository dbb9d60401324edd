"""
Experiments Module: A/B Testing Across Model Configurations

Components:
    ABTestingFramework: Lifecycle, sticky assignment, execution, analysis
    ABTest / Variant / Objective: Experiment configuration
    ABExecution: One request served through a variant
    ABTestResults / VariantMetrics: Computed outcome
"""

from aiops.experiments.models import (
    ABExecution,
    ABTest,
    ABTestResults,
    ConfidenceInterval,
    Direction,
    ExperimentAnalysis,
    ExperimentStatus,
    ModelConfiguration,
    Objective,
    ObjectiveMetric,
    SignificanceStatus,
    UserAssignment,
    Variant,
    VariantMetrics,
)
from aiops.experiments.framework import (
    ABTestingFramework,
    assignment_point,
    pick_variant,
    validate_split,
    welch_t_test,
)

__all__ = [
    # Models
    "ABExecution",
    "ABTest",
    "ABTestResults",
    "ConfidenceInterval",
    "Direction",
    "ExperimentAnalysis",
    "ExperimentStatus",
    "ModelConfiguration",
    "Objective",
    "ObjectiveMetric",
    "SignificanceStatus",
    "UserAssignment",
    "Variant",
    "VariantMetrics",
    # Framework
    "ABTestingFramework",
    "assignment_point",
    "pick_variant",
    "validate_split",
    "welch_t_test",
]
