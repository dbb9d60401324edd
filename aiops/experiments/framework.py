"""
A/B Experimentation Framework

Runs controlled experiments across model configurations:

- Deterministic, sticky assignment of users to variants
- Execution through a variant's model, prompt template and parameters,
  reporting into the Metrics Recorder and the Quality Scorer
- Per-variant metrics with 95% confidence intervals
- Welch's two-sample t-test on raw per-execution values of the primary
  objective, comparing the best variant with the runner-up

Assignment: sha256 of ``user_id + test_id``, first 8 bytes as an integer
normalized to [0, 1), walked against cumulative traffic weights. Once
made, an assignment is permanent even if the traffic split changes.
"""

import asyncio
import hashlib
import logging
import math
import threading
import time
from typing import Callable

from scipy import stats

from aiops.alerting.engine import AlertingEngine
from aiops.alerting.models import AlertSeverity, AlertType
from aiops.dispatcher.handlers import InvocationResult, ModelInvoker
from aiops.errors import ConfigurationError, InvalidTransitionError, NotFoundError
from aiops.experiments.models import (
    ABExecution,
    ABTest,
    ABTestResults,
    ConfidenceInterval,
    Direction,
    ExperimentAnalysis,
    ExperimentStatus,
    Objective,
    ObjectiveMetric,
    SignificanceStatus,
    UserAssignment,
    Variant,
    VariantMetrics,
)
from aiops.metrics.recorder import MetricsRecorder
from aiops.metrics.stats import mean, stdev
from aiops.quality.scorer import QualityScorer
from aiops.storage.repository import (
    AB_ASSIGNMENTS,
    AB_EXECUTIONS,
    AB_TESTS,
    AppendOnlyStore,
    latest_by_id,
)

logger = logging.getLogger(__name__)

SPLIT_TOLERANCE = 0.01
Z_95 = 1.96
SUCCESS_QUALITY = 70.0
QUALITY_CONCERN_RATIO = 0.9


def assignment_point(user_id: str, test_id: str) -> float:
    """Stable position of a user within a test, in [0, 1)."""
    digest = hashlib.sha256(f"{user_id}{test_id}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / 2**64


def pick_variant(point: float, variants: list[Variant], split: list[float]) -> str:
    """Walk cumulative weights; rounding gaps fall to the last variant."""
    cumulative = 0.0
    for variant, share in zip(variants, split):
        cumulative += share / 100
        if point < cumulative:
            return variant.id
    return variants[-1].id


def validate_split(variants: list[Variant], split: list[float]) -> None:
    """
    Raises:
        ConfigurationError: Length mismatch, negative share, or a sum
            outside 100 +/- 0.01
    """
    if not variants:
        raise ConfigurationError("An experiment needs at least one variant")
    if len(variants) != len(split):
        raise ConfigurationError(
            f"Number of variants ({len(variants)}) must match traffic split "
            f"length ({len(split)})"
        )
    if any(share < 0 for share in split):
        raise ConfigurationError("Traffic split shares must not be negative")
    total = sum(split)
    if abs(total - 100) > SPLIT_TOLERANCE:
        raise ConfigurationError(f"Traffic split must sum to 100%, got {total:g}%")
    if len({v.id for v in variants}) != len(variants):
        raise ConfigurationError("Variant ids must be unique")


def objective_values(
    executions: list[ABExecution], metric: ObjectiveMetric
) -> list[float]:
    """Raw per-execution values of an objective metric."""
    match metric:
        case ObjectiveMetric.QUALITY:
            return [e.quality_score for e in executions]
        case ObjectiveMetric.LATENCY:
            return [e.latency_ms for e in executions]
        case ObjectiveMetric.COST:
            return [e.cost for e in executions]
        case ObjectiveMetric.USER_SATISFACTION:
            return [float(e.rating) for e in executions if e.rating is not None]
        case ObjectiveMetric.SUCCESS_RATE:
            return [
                100.0 if e.quality_score > SUCCESS_QUALITY else 0.0 for e in executions
            ]


def statistical_power(sample_size: int) -> float:
    """Coarse power estimate from the smaller compared sample."""
    if sample_size < 100:
        return 0.6
    if sample_size < 500:
        return 0.8
    return 0.9


def significance(p_value: float, confidence_level: float = 0.95) -> SignificanceStatus:
    """
    Classify a p-value against alpha = 1 - confidence_level.

    p < alpha is significant and p < alpha / 5 highly significant, so the
    default 0.95 level gives the 0.05 and 0.01 cut-offs.
    """
    alpha = 1 - confidence_level
    if p_value < alpha / 5:
        return SignificanceStatus.HIGHLY_SIGNIFICANT
    if p_value < alpha:
        return SignificanceStatus.SIGNIFICANT
    return SignificanceStatus.NOT_SIGNIFICANT


def welch_t_test(a: list[float], b: list[float]) -> tuple[float, float]:
    """
    Welch's t-test returning (t statistic, two-sided p-value).

    Two constant samples give nan from scipy; they are treated as
    certainly different (p = 0) when their means differ and identical
    (p = 1) otherwise, with a t statistic of 0 in both cases.
    """
    result = stats.ttest_ind(a, b, equal_var=False)
    t_stat, p_value = float(result.statistic), float(result.pvalue)
    if math.isnan(p_value):
        return 0.0, 1.0 if mean(a) == mean(b) else 0.0
    return t_stat, p_value


class ABTestingFramework:
    """
    Create, run and analyse A/B experiments.

    Example:
        framework = ABTestingFramework(store, invoker, recorder, scorer)
        test = framework.create_test(
            name="mini vs 4o",
            variants=[
                Variant(id="control", name="gpt-4o",
                        configuration=ModelConfiguration(model="openai/gpt-4o")),
                Variant(id="candidate", name="gpt-4o-mini",
                        configuration=ModelConfiguration(model="openai/gpt-4o-mini")),
            ],
            traffic_split=[50, 50],
        )
        framework.start_test(test.id)
        execution = await framework.execute_test(test.id, "user-1", "Draft Q3 OKRs")
    """

    def __init__(
        self,
        store: AppendOnlyStore,
        invoker: ModelInvoker,
        recorder: MetricsRecorder,
        scorer: QualityScorer,
        alerting: AlertingEngine | None = None,
        clock: Callable[[], float] = time.time,
        timeout_seconds: float = 30.0,
    ):
        """
        Args:
            store: Append-only store for tests, assignments and executions
            invoker: Model invocation collaborator
            recorder: Receives one MetricRecord per execution
            scorer: Scores every successful execution
            alerting: Receives ab_test_concern alerts, optional
            clock: Time source (unix seconds)
            timeout_seconds: Upper bound for a variant invocation
        """
        self._store = store
        self._invoker = invoker
        self._recorder = recorder
        self._scorer = scorer
        self._alerting = alerting
        self._clock = clock
        self._timeout = timeout_seconds

        self._lock = threading.Lock()
        self._tests: dict[str, ABTest] = {}
        self._assignments: dict[tuple[str, str], UserAssignment] = {}
        self._load()

    def _load(self) -> None:
        for row in latest_by_id(self._store.query(AB_TESTS)):
            test = ABTest.from_row(row)
            self._tests[test.id] = test
        for row in self._store.query(AB_ASSIGNMENTS):
            assignment = UserAssignment(
                test_id=row["test_id"],
                user_id=row["user_id"],
                variant_id=row["variant_id"],
                assigned_at=row["assigned_at"],
            )
            self._assignments.setdefault(
                (assignment.test_id, assignment.user_id), assignment
            )
        if self._tests:
            logger.info(
                f"Loaded {len(self._tests)} experiments and "
                f"{len(self._assignments)} assignments"
            )

    # ------------------------------------------------------------------
    # Test lifecycle
    # ------------------------------------------------------------------

    def create_test(
        self,
        name: str,
        variants: list[Variant],
        traffic_split: list[float],
        objective: Objective | None = None,
        minimum_sample_size: int = 100,
        confidence_level: float = 0.95,
        description: str = "",
        hypothesis: str = "",
        operation: str = "ab_test",
        created_by: str | None = None,
    ) -> ABTest:
        """
        Create a draft experiment.

        Raises:
            ConfigurationError: Invalid traffic split; nothing is stored
        """
        validate_split(variants, traffic_split)
        test = ABTest(
            name=name,
            description=description,
            hypothesis=hypothesis,
            variants=[
                v.model_copy(update={"allocated_traffic": share})
                for v, share in zip(variants, traffic_split)
            ],
            traffic_split=list(traffic_split),
            objective=objective or Objective(),
            operation=operation,
            minimum_sample_size=minimum_sample_size,
            confidence_level=confidence_level,
            created_by=created_by,
            created_at=self._clock(),
        )
        with self._lock:
            self._tests[test.id] = test
            self._store.append(AB_TESTS, test.to_row())
        logger.info(f"A/B test created: {test.name} ({test.id})")
        return test

    def get_test(self, test_id: str) -> ABTest:
        with self._lock:
            test = self._tests.get(test_id)
        if test is None:
            raise NotFoundError(f"A/B test not found: {test_id}")
        return test

    def list_tests(self, status: ExperimentStatus | None = None) -> list[ABTest]:
        """Experiments, newest first."""
        with self._lock:
            tests = list(self._tests.values())
        if status is not None:
            tests = [t for t in tests if t.status == status]
        return sorted(tests, key=lambda t: t.created_at, reverse=True)

    def _save(self, test: ABTest) -> None:
        self._tests[test.id] = test
        self._store.append(AB_TESTS, test.to_row())

    def _transition(
        self,
        test_id: str,
        allowed: tuple[ExperimentStatus, ...],
        target: ExperimentStatus,
        **changes,
    ) -> ABTest:
        with self._lock:
            test = self._tests.get(test_id)
            if test is None:
                raise NotFoundError(f"A/B test not found: {test_id}")
            if test.status not in allowed:
                raise InvalidTransitionError(
                    f"Cannot move test {test_id} from {test.status.value} to {target.value}"
                )
            updated = test.model_copy(update={"status": target, **changes})
            self._save(updated)
        logger.info(f"A/B test {test_id} is now {target.value}")
        return updated

    def start_test(self, test_id: str) -> ABTest:
        """draft or paused -> active"""
        test = self.get_test(test_id)
        return self._transition(
            test_id,
            (ExperimentStatus.DRAFT, ExperimentStatus.PAUSED),
            ExperimentStatus.ACTIVE,
            started_at=test.started_at or self._clock(),
        )

    def pause_test(self, test_id: str) -> ABTest:
        """active -> paused"""
        return self._transition(
            test_id, (ExperimentStatus.ACTIVE,), ExperimentStatus.PAUSED
        )

    def cancel_test(self, test_id: str) -> ABTest:
        """draft, active or paused -> cancelled"""
        return self._transition(
            test_id,
            (ExperimentStatus.DRAFT, ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED),
            ExperimentStatus.CANCELLED,
            ended_at=self._clock(),
        )

    def complete_test(self, test_id: str) -> ABTestResults:
        """
        Compute final results and close the experiment.

        With fewer combined samples than ``minimum_sample_size`` the
        results are ``inconclusive`` and no winner is declared.
        """
        test = self.get_test(test_id)
        if test.status not in (ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED):
            raise InvalidTransitionError(
                f"Cannot complete test {test_id} in {test.status.value} status"
            )
        results = self.calculate_results(test)
        self._transition(
            test_id,
            (ExperimentStatus.ACTIVE, ExperimentStatus.PAUSED),
            ExperimentStatus.COMPLETED,
            ended_at=self._clock(),
            results=results,
        )
        logger.info(
            f"A/B test {test_id} completed: {results.status.value}, "
            f"winner={results.winning_variant}, p={results.p_value:.4f}"
        )
        self._check_quality_concern(test, results)
        return results

    def update_traffic_split(self, test_id: str, traffic_split: list[float]) -> ABTest:
        """
        Change the split for future assignments; existing ones stay.

        Raises:
            ConfigurationError: Invalid split
            InvalidTransitionError: Test is completed or cancelled
        """
        with self._lock:
            test = self._tests.get(test_id)
            if test is None:
                raise NotFoundError(f"A/B test not found: {test_id}")
            if test.status in (ExperimentStatus.COMPLETED, ExperimentStatus.CANCELLED):
                raise InvalidTransitionError(
                    f"Cannot change the split of a {test.status.value} test"
                )
            validate_split(test.variants, traffic_split)
            updated = test.model_copy(
                update={
                    "traffic_split": list(traffic_split),
                    "variants": [
                        v.model_copy(update={"allocated_traffic": share})
                        for v, share in zip(test.variants, traffic_split)
                    ],
                }
            )
            self._save(updated)
        return updated

    # ------------------------------------------------------------------
    # Assignment and execution
    # ------------------------------------------------------------------

    def get_user_variant(self, test_id: str, user_id: str) -> str | None:
        """
        Variant id for a user, or None when the test is not active.

        The first assignment is stored and returned on every later call.
        """
        with self._lock:
            test = self._tests.get(test_id)
            if test is None or test.status != ExperimentStatus.ACTIVE:
                return None

            existing = self._assignments.get((test_id, user_id))
            if existing is not None:
                return existing.variant_id

            assignment = UserAssignment(
                test_id=test_id,
                user_id=user_id,
                variant_id=pick_variant(
                    assignment_point(user_id, test_id),
                    test.variants,
                    test.traffic_split,
                ),
                assigned_at=self._clock(),
            )
            self._assignments[(test_id, user_id)] = assignment
            self._store.append(
                AB_ASSIGNMENTS,
                {
                    "test_id": test_id,
                    "user_id": user_id,
                    "variant_id": assignment.variant_id,
                    "assigned_at": assignment.assigned_at,
                    "timestamp": assignment.assigned_at,
                },
            )
            return assignment.variant_id

    async def execute_test(
        self,
        test_id: str,
        user_id: str,
        input_text: str,
        params: dict | None = None,
    ) -> ABExecution:
        """
        Serve one request through the user's variant.

        A failed invocation is logged as a failed execution with quality 0
        and recorded as a failure in the Metrics Recorder.

        Raises:
            NotFoundError: Unknown test
            InvalidTransitionError: Test is not active
        """
        test = self.get_test(test_id)
        variant_id = self.get_user_variant(test_id, user_id)
        if variant_id is None:
            raise InvalidTransitionError(
                f"Test {test_id} is {test.status.value}; executions need an active test"
            )
        variant = test.get_variant(variant_id)
        config = variant.configuration

        prompt = variant.render_prompt(input_text)
        invoke_params = {
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        if config.system_prompt:
            invoke_params["system_prompt"] = config.system_prompt
        invoke_params.update(params or {})

        start = self._clock()
        result = await self._invoke(config.model, prompt, invoke_params)

        execution = ABExecution(
            test_id=test_id,
            variant_id=variant_id,
            user_id=user_id,
            operation=test.operation,
            prompt=prompt,
            response=result.text,
            latency_ms=result.latency_ms,
            success=result.success,
            error=result.error,
            timestamp=start,
        )

        if result.success:
            assessment = await self._scorer.evaluate(
                prompt=input_text,
                response=result.text,
                operation=test.operation,
                model=config.model,
                request_id=execution.id,
                user_id=user_id,
            )
            execution.quality_score = assessment.overall
            execution.assessment_id = assessment.id
        else:
            logger.warning(
                f"A/B execution failed: test={test_id}, variant={variant_id}, "
                f"model={config.model}, error={result.error}"
            )

        record = self._recorder.record_invocation(
            operation=test.operation,
            model=config.model,
            start_time=start,
            end_time=start + result.latency_ms / 1000,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            success=result.success,
            quality_score=execution.quality_score if result.success else None,
            user_id=user_id,
            error=result.error,
        )
        execution.cost = record.cost
        self.log_execution(execution)
        return execution

    async def _invoke(
        self, model_id: str, prompt: str, params: dict
    ) -> InvocationResult:
        try:
            return await asyncio.wait_for(
                self._invoker.invoke(model_id, prompt, params), self._timeout
            )
        except asyncio.TimeoutError:
            error = f"timeout after {self._timeout}s"
        except Exception as e:
            error = str(e)
        return InvocationResult(
            text="",
            input_tokens=0,
            output_tokens=0,
            latency_ms=self._timeout * 1000 if error.startswith("timeout") else 0.0,
            model_used=model_id,
            provider="unknown",
            error=error,
        )

    def log_execution(self, execution: ABExecution) -> None:
        """Append an execution row."""
        self._store.append(AB_EXECUTIONS, execution.to_row())

    def get_executions(
        self, test_id: str, variant_id: str | None = None
    ) -> list[ABExecution]:
        rows = self._store.query(AB_EXECUTIONS, test_id=test_id, variant_id=variant_id)
        return [ABExecution.from_row(r) for r in latest_by_id(rows)]

    def record_user_feedback(
        self,
        execution_id: str,
        rating: int,
        helpful: bool = True,
        comment: str | None = None,
    ) -> ABExecution:
        """
        Attach a 1-5 rating to an execution and its quality assessment.

        Raises:
            ValueError: Rating outside 1-5
            NotFoundError: Unknown execution
            InvalidTransitionError: Feedback already recorded
        """
        if not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")

        with self._lock:
            rows = self._store.query(AB_EXECUTIONS, id=execution_id)
            if not rows:
                raise NotFoundError(f"A/B execution not found: {execution_id}")
            execution = ABExecution.from_row(rows[-1])
            if execution.rating is not None:
                raise InvalidTransitionError(
                    f"Feedback already recorded for execution {execution_id}"
                )
            updated = execution.model_copy(update={"rating": rating, "helpful": helpful})
            self.log_execution(updated)

        if updated.assessment_id:
            try:
                self._scorer.attach_feedback(
                    updated.assessment_id, rating, helpful=helpful, comment=comment
                )
            except (NotFoundError, InvalidTransitionError) as e:
                logger.warning(f"Feedback not blended into assessment: {e}")
        return updated

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def calculate_variant_metrics(self, test: ABTest) -> dict[str, VariantMetrics]:
        """Observed metrics per variant, in variant order."""
        executions = self.get_executions(test.id)
        metrics: dict[str, VariantMetrics] = {}
        for variant in test.variants:
            items = [e for e in executions if e.variant_id == variant.id]
            if not items:
                metrics[variant.id] = VariantMetrics()
                continue
            qualities = [e.quality_score for e in items]
            ratings = [e.rating for e in items if e.rating is not None]
            center = mean(qualities)
            margin = Z_95 * stdev(qualities) / math.sqrt(len(qualities))
            metrics[variant.id] = VariantMetrics(
                sample_size=len(items),
                average_quality=center,
                average_latency=mean([e.latency_ms for e in items]),
                average_cost=mean([e.cost for e in items]),
                success_rate=(
                    sum(1 for q in qualities if q > SUCCESS_QUALITY) / len(items) * 100
                ),
                user_satisfaction=mean(ratings) if ratings else None,
                confidence_interval=ConfidenceInterval(
                    lower=center - margin, upper=center + margin
                ),
            )
        return metrics

    def calculate_results(
        self, test: ABTest, enforce_minimum: bool = True
    ) -> ABTestResults:
        """
        Significance of the difference between the two best variants.

        The variants are ranked by the mean of the primary objective in
        its direction; Welch's t-test runs on their raw per-execution
        values. A winner is declared only when p < 1 - confidence_level
        (0.05 at the default level).
        Interim projections pass ``enforce_minimum=False`` to skip the
        minimum sample size check.
        """
        metrics = self.calculate_variant_metrics(test)
        now = self._clock()
        total = sum(m.sample_size for m in metrics.values())

        def inconclusive(reason: str) -> ABTestResults:
            return ABTestResults(
                status=SignificanceStatus.INCONCLUSIVE,
                metrics=metrics,
                recommendations=[reason],
                calculated_at=now,
            )

        if len(test.variants) < 2:
            return inconclusive("At least two variants are needed for a comparison")
        if enforce_minimum and total < test.minimum_sample_size:
            return inconclusive(
                f"Need {test.minimum_sample_size - total} more samples"
            )

        executions = self.get_executions(test.id)
        samples = {
            v.id: objective_values(
                [e for e in executions if e.variant_id == v.id], test.objective.primary
            )
            for v in test.variants
        }
        candidates = [vid for vid, values in samples.items() if len(values) >= 2]
        if len(candidates) < 2:
            return inconclusive("At least two variants need two or more samples")

        maximize = test.objective.direction == Direction.MAXIMIZE
        ranked = sorted(
            candidates, key=lambda vid: mean(samples[vid]), reverse=maximize
        )
        best, runner_up = ranked[0], ranked[1]
        t_stat, p_value = welch_t_test(samples[best], samples[runner_up])
        status = significance(p_value, test.confidence_level)
        winner = best if status.is_significant else None

        return ABTestResults(
            status=status,
            p_value=p_value,
            t_statistic=t_stat,
            confidence=(1 - p_value) * 100,
            winning_variant=winner,
            compared_variants=[best, runner_up],
            statistical_power=statistical_power(
                min(len(samples[best]), len(samples[runner_up]))
            ),
            metrics=metrics,
            recommendations=self._result_recommendations(test, metrics, winner),
            calculated_at=now,
        )

    @staticmethod
    def _result_recommendations(
        test: ABTest, metrics: dict[str, VariantMetrics], winner: str | None
    ) -> list[str]:
        recommendations = []
        if winner is not None:
            won = metrics[winner]
            recommendations.append("Results are statistically significant")
            recommendations.append(
                f"Roll out variant {winner} (quality {won.average_quality:.1f}, "
                f"latency {won.average_latency:.0f}ms)"
            )
        else:
            recommendations.append("Results are not statistically significant")
            recommendations.append("Extend the test or increase the sample size")

        sampled = [m for m in metrics.values() if m.sample_size]
        if len(sampled) >= 2:
            recommendations.append(
                f"Best quality: {max(m.average_quality for m in sampled):.1f}"
            )
            recommendations.append(
                f"Best latency: {min(m.average_latency for m in sampled):.0f}ms"
            )
            recommendations.append(
                f"Best cost: ${min(m.average_cost for m in sampled):.4f}"
            )
        return recommendations

    def get_test_analysis(self, test_id: str) -> ExperimentAnalysis:
        """
        Current metrics with an interim projection.

        The projection is computed for active tests once half the minimum
        sample size has been collected.
        """
        test = self.get_test(test_id)
        metrics = self.calculate_variant_metrics(test)
        total = sum(m.sample_size for m in metrics.values())

        projected = None
        if (
            test.status == ExperimentStatus.ACTIVE
            and total >= test.minimum_sample_size * 0.5
        ):
            projected = self.calculate_results(test, enforce_minimum=False)

        recommendations = []
        if total < test.minimum_sample_size:
            recommendations.append(
                f"Need {test.minimum_sample_size - total} more samples to reach "
                "the minimum sample size"
            )
        if projected is not None and projected.status.is_significant:
            recommendations.append("Statistically significant results detected")
            if projected.winning_variant:
                recommendations.append(f"Leading variant: {projected.winning_variant}")
        sizes = [m.sample_size for m in metrics.values()]
        if len(sizes) >= 2 and max(sizes) > min(sizes) * 1.5:
            recommendations.append("Uneven sample distribution across variants")

        return ExperimentAnalysis(
            test=test,
            current_metrics=metrics,
            projected_results=projected,
            recommendations=recommendations,
        )

    def _check_quality_concern(self, test: ABTest, results: ABTestResults) -> None:
        winner = results.winning_variant
        if self._alerting is None or winner is None or winner == test.control.id:
            return
        control = results.metrics[test.control.id]
        won = results.metrics[winner]
        if control.sample_size and won.average_quality < (
            control.average_quality * QUALITY_CONCERN_RATIO
        ):
            self._alerting.create_alert(
                alert_type=AlertType.AB_TEST_CONCERN,
                severity=AlertSeverity.MEDIUM,
                title=f"A/B winner trades away quality: {test.name}",
                message=(
                    f"Winning variant {winner} averages quality "
                    f"{won.average_quality:.1f} versus control "
                    f"{control.average_quality:.1f}"
                ),
                metric_snapshot={
                    "winner_quality": won.average_quality,
                    "control_quality": control.average_quality,
                    "p_value": results.p_value,
                },
                details={"test_id": test.id, "winning_variant": winner},
            )
