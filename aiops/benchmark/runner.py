"""
Benchmark Runner

Runs every (model, case) pair of a suite through the model invocation
collaborator, scores each output against the case criteria, records
latency and cost into the Metrics Recorder, and ranks models by a fixed
blend of success rate, quality, latency and cost per token.

Ranking uses a stable sort, so models with equal scores keep the order
they were requested in.
"""

import asyncio
import logging
import re
import time
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from aiops.benchmark.suite import (
    DEFAULT_SUITE,
    BenchmarkCase,
    BenchmarkCriteria,
    BenchmarkSuite,
    CaseCategory,
)
from aiops.dispatcher.handlers import InvocationResult, ModelInvoker
from aiops.errors import NotFoundError
from aiops.metrics.recorder import MetricsRecorder
from aiops.metrics.stats import clamp, mean, median
from aiops.quality.heuristics import score_coherence
from aiops.registry.models import provider_for
from aiops.storage.repository import BENCHMARK_RESULTS, AppendOnlyStore

logger = logging.getLogger(__name__)

ANALYSIS_TEMPERATURE = 0.3
EMBEDDING_SCORE = 90.0

_SPEAKER = re.compile(r"(User|Assistant):")


@dataclass
class BenchmarkResult:
    """Outcome of one (model, case) pair."""

    run_id: str
    test_case_id: str
    category: str
    model: str
    provider: str
    success: bool
    latency_ms: float
    cost: float
    quality_score: float
    output_text: str
    input_tokens: int
    output_tokens: int
    expected_latency_ms: float
    timestamp: float
    error: str | None = None

    @property
    def meets_latency(self) -> bool:
        return self.latency_ms <= self.expected_latency_ms

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ModelBenchmarkSummary:
    model: str
    provider: str
    total_tests: int
    success_rate: float
    average_latency: float
    median_latency: float
    average_quality: float
    total_cost: float
    cost_per_token: float
    overall_score: float = 0.0
    rank: int = 0
    strengths: list[str] = field(default_factory=list)
    weaknesses: list[str] = field(default_factory=list)
    recommended_use_case: str = ""


@dataclass
class BenchmarkReport:
    run_id: str
    suite_id: str
    results: list[BenchmarkResult]
    summaries: list[ModelBenchmarkSummary]
    execution_time_ms: float
    timestamp: float


def parse_conversation(prompt: str) -> list[dict[str, str]]:
    """
    Split a ``User: ... Assistant: ...`` transcript into chat messages.

    Text without speaker markers becomes a single user message.
    """
    parts = _SPEAKER.split(prompt)
    messages = []
    # parts: [preamble, speaker, text, speaker, text, ...]
    for speaker, text in zip(parts[1::2], parts[2::2]):
        content = text.strip()
        if content:
            role = "user" if speaker == "User" else "assistant"
            messages.append({"role": role, "content": content})
    return messages or [{"role": "user", "content": prompt}]


def score_output(output: str, criteria: BenchmarkCriteria, category: CaseCategory) -> float:
    """
    Criteria score of an output, 0 to 100.

    Embeddings are checked structurally: a vector description scores 90.
    """
    if category == CaseCategory.EMBEDDING:
        return EMBEDDING_SCORE if "embedding_vector" in output else 0.0

    score = 100.0
    lowered = output.lower()

    if criteria.min_length and len(output) < criteria.min_length:
        score -= 20
    if criteria.max_length and len(output) > criteria.max_length:
        score -= 10

    score -= 15 * sum(1 for p in criteria.must_contain if p.lower() not in lowered)
    score -= 25 * sum(1 for p in criteria.must_not_contain if p.lower() in lowered)

    if criteria.relevance_keywords:
        found = sum(1 for k in criteria.relevance_keywords if k.lower() in lowered)
        if found / len(criteria.relevance_keywords) < 0.5:
            score -= 20

    if criteria.coherence_threshold is not None:
        if score_coherence(output) < criteria.coherence_threshold:
            score -= 15

    return clamp(score)


def ranking_score(summary: ModelBenchmarkSummary) -> float:
    """0.3 success + 0.25 quality + 0.2 latency + 0.25 cost per token."""
    latency_score = max(0.0, 100 - summary.average_latency / 100)
    cost_score = max(0.0, 100 - summary.cost_per_token * 100000)
    return (
        summary.success_rate * 0.3
        + summary.average_quality * 0.25
        + latency_score * 0.2
        + cost_score * 0.25
    )


def _category_performance(results: list[BenchmarkResult]) -> dict[str, float]:
    scores: dict[str, list[float]] = defaultdict(list)
    for result in results:
        bucket = scores[result.category]
        if result.success and result.quality_score > 0:
            bucket.append(result.quality_score)
    return {category: mean(values) for category, values in scores.items()}


def _strengths(results: list[BenchmarkResult]) -> list[str]:
    successful = [r for r in results if r.success]
    if not successful:
        return ["No strengths identified"]

    strengths = []
    avg_latency = mean([r.latency_ms for r in successful])
    avg_quality = mean([r.quality_score for r in successful])
    avg_cost = mean([r.cost for r in successful])

    if avg_latency < 2000:
        strengths.append("Very fast responses")
    elif avg_latency < 4000:
        strengths.append("Fast responses")
    if avg_quality > 85:
        strengths.append("High output quality")
    elif avg_quality > 75:
        strengths.append("Good output quality")
    if avg_cost < 0.001:
        strengths.append("Very economical")
    elif avg_cost < 0.005:
        strengths.append("Economical")
    if len(successful) == len(results):
        strengths.append("100% reliability")
    elif len(successful) / len(results) > 0.95:
        strengths.append("High reliability")

    for category, score in _category_performance(results).items():
        if score > 85:
            strengths.append(f"Excellent at {category}")
    return strengths or ["Standard performance"]


def _weaknesses(results: list[BenchmarkResult]) -> list[str]:
    if not results:
        return ["Not enough data"]

    weaknesses = []
    successful = [r for r in results if r.success]
    if len(successful) / len(results) < 0.9:
        weaknesses.append("Reliability problems")

    if successful:
        if mean([r.latency_ms for r in successful]) > 8000:
            weaknesses.append("High latency")
        if mean([r.quality_score for r in successful]) < 60:
            weaknesses.append("Output quality needs improvement")
        if mean([r.cost for r in successful]) > 0.01:
            weaknesses.append("High cost")
        if sum(1 for r in results if not r.meets_latency) > len(results) * 0.3:
            weaknesses.append("Misses latency expectations")

    for category, score in _category_performance(results).items():
        if score < 60:
            weaknesses.append(f"Weak at {category}")
    return weaknesses or ["No significant weaknesses"]


def _recommended_use_case(results: list[BenchmarkResult]) -> str:
    successful = [r for r in results if r.success]
    if not successful:
        return "Not recommended for production use"

    avg_latency = mean([r.latency_ms for r in successful])
    avg_cost = mean([r.cost for r in successful])

    performance = _category_performance(results)
    if performance:
        category, score = max(performance.items(), key=lambda kv: kv[1])
        if score > 80:
            if avg_latency < 3000 and avg_cost < 0.005:
                return f"Ideal for real-time, high-volume {category}"
            if avg_latency < 5000:
                return f"Recommended for {category} with fast turnaround"
            if avg_cost < 0.002:
                return f"Economical for batch {category}"
            return f"Suited to high-quality {category}"

    if avg_cost < 0.001:
        return "High-volume work on a limited budget"
    if avg_latency < 2000:
        return "Real-time applications"
    return "General use with balanced performance"


def summarize(
    results: list[BenchmarkResult], models: list[str]
) -> list[ModelBenchmarkSummary]:
    """
    Per-model summaries, ranked best first.

    Models without results are left out. Latency and quality averages
    only use successful results; cost per token uses all of them.
    """
    summaries = []
    for model in models:
        model_results = [r for r in results if r.model == model]
        if not model_results:
            continue
        successful = [r for r in model_results if r.success]
        latencies = [r.latency_ms for r in successful]
        qualities = [r.quality_score for r in successful if r.quality_score > 0]
        total_cost = sum(r.cost for r in model_results)
        total_tokens = sum(r.total_tokens for r in model_results)

        summaries.append(
            ModelBenchmarkSummary(
                model=model,
                provider=provider_for(model),
                total_tests=len(model_results),
                success_rate=len(successful) / len(model_results) * 100,
                average_latency=mean(latencies),
                median_latency=median(latencies),
                average_quality=mean(qualities),
                total_cost=total_cost,
                cost_per_token=total_cost / total_tokens if total_tokens else 0.0,
                strengths=_strengths(model_results),
                weaknesses=_weaknesses(model_results),
                recommended_use_case=_recommended_use_case(model_results),
            )
        )

    for summary in summaries:
        summary.overall_score = ranking_score(summary)
    summaries.sort(key=lambda s: s.overall_score, reverse=True)
    for rank, summary in enumerate(summaries, start=1):
        summary.rank = rank
    return summaries


class BenchmarkRunner:
    """
    Drive benchmark suites against models.

    Example:
        runner = BenchmarkRunner(invoker, recorder, store)
        report = await runner.run_benchmark(
            models=["openai/gpt-4o", "openai/gpt-4o-mini"], parallel=True
        )
        for summary in report.summaries:
            print(summary.rank, summary.model, f"{summary.overall_score:.1f}")
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        recorder: MetricsRecorder,
        store: AppendOnlyStore,
        clock: Callable[[], float] = time.time,
        timeout_seconds: float = 30.0,
        suites: list[BenchmarkSuite] | None = None,
    ):
        self._invoker = invoker
        self._recorder = recorder
        self._store = store
        self._clock = clock
        self._timeout = timeout_seconds
        self._suites = {s.id: s for s in (suites or [DEFAULT_SUITE])}

    def get_suites(self) -> list[BenchmarkSuite]:
        return list(self._suites.values())

    def add_suite(self, suite: BenchmarkSuite) -> BenchmarkSuite:
        self._suites[suite.id] = suite
        return suite

    def get_suite(self, suite_id: str) -> BenchmarkSuite:
        suite = self._suites.get(suite_id)
        if suite is None:
            raise NotFoundError(f"Benchmark suite not found: {suite_id}")
        return suite

    @staticmethod
    def _params_for(case: BenchmarkCase) -> dict[str, Any]:
        match case.category:
            case CaseCategory.CHAT_COMPLETION:
                return {"messages": parse_conversation(case.prompt)}
            case CaseCategory.ANALYSIS:
                return {"temperature": ANALYSIS_TEMPERATURE}
            case _:
                return {}

    async def _invoke(self, model: str, case: BenchmarkCase) -> InvocationResult:
        try:
            return await asyncio.wait_for(
                self._invoker.invoke(model, case.prompt, self._params_for(case)),
                self._timeout,
            )
        except asyncio.TimeoutError:
            error = f"timeout after {self._timeout}s"
            latency_ms = self._timeout * 1000
        except Exception as e:
            error = str(e)
            latency_ms = 0.0
        return InvocationResult(
            text="",
            input_tokens=0,
            output_tokens=0,
            latency_ms=latency_ms,
            model_used=model,
            provider=provider_for(model),
            error=error,
        )

    async def run_single(
        self,
        case: BenchmarkCase,
        model: str,
        run_id: str | None = None,
        user_id: str | None = None,
    ) -> BenchmarkResult:
        """Run one case against one model and record the invocation."""
        start = self._clock()
        outcome = await self._invoke(model, case)

        quality = (
            score_output(outcome.text, case.criteria, case.category)
            if outcome.success
            else 0.0
        )
        record = self._recorder.record_invocation(
            operation=f"benchmark_{case.id}",
            model=model,
            start_time=start,
            end_time=start + outcome.latency_ms / 1000,
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
            success=outcome.success,
            quality_score=quality if outcome.success else None,
            user_id=user_id,
            error=outcome.error,
        )
        if not outcome.success:
            logger.warning(
                f"Benchmark case {case.id} failed on {model}: {outcome.error}"
            )

        return BenchmarkResult(
            run_id=run_id or uuid.uuid4().hex,
            test_case_id=case.id,
            category=case.category.value,
            model=model,
            provider=provider_for(model),
            success=outcome.success,
            latency_ms=outcome.latency_ms,
            cost=record.cost,
            quality_score=quality,
            output_text=outcome.text,
            input_tokens=outcome.input_tokens,
            output_tokens=outcome.output_tokens,
            expected_latency_ms=case.expected_latency_ms,
            timestamp=start,
            error=outcome.error,
        )

    async def run_benchmark(
        self,
        suite_id: str = DEFAULT_SUITE.id,
        models: list[str] | None = None,
        case_ids: list[str] | None = None,
        parallel: bool = False,
        user_id: str | None = None,
    ) -> BenchmarkReport:
        """
        Run a suite and rank the models.

        Args:
            suite_id: Suite to run
            models: Models to test, in tie-break order (suite models if None)
            case_ids: Subset of case ids (all cases if None)
            parallel: Run every pair concurrently instead of one by one
            user_id: Attributed to the recorded invocations

        Returns:
            BenchmarkReport with one summary per model that produced results
        """
        suite = self.get_suite(suite_id)
        models = list(models or suite.models)
        cases = [c for c in suite.cases if case_ids is None or c.id in case_ids]
        run_id = uuid.uuid4().hex
        started = time.perf_counter()

        logger.info(
            f"Running benchmark suite {suite.name}: {len(models)} models x "
            f"{len(cases)} cases (parallel={parallel})"
        )

        pairs = [(model, case) for model in models for case in cases]
        if parallel:
            results = list(
                await asyncio.gather(
                    *(self.run_single(c, m, run_id, user_id) for m, c in pairs)
                )
            )
        else:
            results = [await self.run_single(c, m, run_id, user_id) for m, c in pairs]

        report = BenchmarkReport(
            run_id=run_id,
            suite_id=suite.id,
            results=results,
            summaries=summarize(results, models),
            execution_time_ms=(time.perf_counter() - started) * 1000,
            timestamp=self._clock(),
        )
        self._persist(report, models)
        logger.info(
            f"Benchmark run {run_id} finished in {report.execution_time_ms:.0f}ms"
        )
        return report

    def _persist(self, report: BenchmarkReport, models: list[str]) -> None:
        rows = []
        for result in report.results:
            row = asdict(result)
            row.update(
                suite_id=report.suite_id,
                models=models,
                execution_time_ms=report.execution_time_ms,
            )
            rows.append(row)
        self._store.append_many(BENCHMARK_RESULTS, rows)

    def latest_report(self) -> BenchmarkReport | None:
        """Rebuild the most recent run from the store, None if none ran."""
        rows = self._store.query(BENCHMARK_RESULTS)
        if not rows:
            return None
        run_id = rows[-1]["run_id"]
        run_rows = [r for r in rows if r["run_id"] == run_id]
        models = run_rows[0]["models"]
        results = [
            BenchmarkResult(
                **{k: v for k, v in r.items() if k in BenchmarkResult.__dataclass_fields__}
            )
            for r in run_rows
        ]
        return BenchmarkReport(
            run_id=run_id,
            suite_id=run_rows[0]["suite_id"],
            results=results,
            summaries=summarize(results, models),
            execution_time_ms=run_rows[0]["execution_time_ms"],
            timestamp=max(r.timestamp for r in results),
        )
