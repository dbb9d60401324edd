"""
Benchmark Module: Ranking Models on a Fixed Battery of Prompts

Components:
    BenchmarkRunner: Runs suites, records invocations, ranks models
    BenchmarkSuite / BenchmarkCase / BenchmarkCriteria: Suite definition
    DEFAULT_SUITE: Generation, analysis, embedding and chat cases
"""

from aiops.benchmark.suite import (
    DEFAULT_CASES,
    DEFAULT_SUITE,
    BenchmarkCase,
    BenchmarkCriteria,
    BenchmarkSuite,
    CaseCategory,
)
from aiops.benchmark.runner import (
    BenchmarkReport,
    BenchmarkResult,
    BenchmarkRunner,
    ModelBenchmarkSummary,
    parse_conversation,
    ranking_score,
    score_output,
    summarize,
)

__all__ = [
    # Suite
    "DEFAULT_CASES",
    "DEFAULT_SUITE",
    "BenchmarkCase",
    "BenchmarkCriteria",
    "BenchmarkSuite",
    "CaseCategory",
    # Runner
    "BenchmarkReport",
    "BenchmarkResult",
    "BenchmarkRunner",
    "ModelBenchmarkSummary",
    "parse_conversation",
    "ranking_score",
    "score_output",
    "summarize",
]
