"""
Quality Scorer

Computes a six-dimension quality assessment for a (prompt, response) pair,
blends in end-user feedback at most once, and summarizes assessments over
time, per operation and per model.

Every assessment is appended to the store; feedback appends a revised row
with the same id.
"""

import logging
import threading
import time
import uuid
from collections import Counter, OrderedDict, defaultdict
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

from aiops.errors import InvalidTransitionError, NotFoundError
from aiops.metrics.stats import clamp, mean
from aiops.quality import heuristics
from aiops.quality.criteria import DIMENSIONS, QualityProfile, get_profile
from aiops.quality.judge import QualityJudge
from aiops.storage.repository import QUALITY_ASSESSMENTS, AppendOnlyStore, latest_by_id

logger = logging.getLogger(__name__)

FEEDBACK_DISCREPANCY = 20.0
FEEDBACK_BLEND_FACTOR = 0.3


@dataclass
class QualityScores:
    """Sub-scores (0-100) and their weighted overall score."""

    relevance: float
    coherence: float
    completeness: float
    accuracy: float
    creativity: float
    safety: float
    overall: float = 0.0

    def dimensions(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in DIMENSIONS}

    def reweigh(self, weights: dict[str, float]) -> None:
        """Recompute ``overall`` from the sub-scores."""
        self.overall = clamp(sum(getattr(self, d) * weights[d] for d in DIMENSIONS))


@dataclass
class UserFeedback:
    """End-user verdict on a response."""

    rating: int  # 1-5
    helpful: bool = True
    issues: list[str] = field(default_factory=list)
    comment: str | None = None
    timestamp: float = 0.0


@dataclass
class QualityAssessment:
    """
    Quality evaluation of one response.

    Attributes:
        id: Assessment id
        request_id: Id of the invocation that produced the response
        operation: Operation name (selects the weight profile)
        model: Model that produced the response
        prompt: Prompt text
        response: Response text
        scores: Sub-scores and overall
        timestamp: Unix timestamp of evaluation
        user_id: Optional end-user id
        feedback: Attached feedback, if any
        judged: Whether relevance came from the judge model
    """

    id: str
    request_id: str
    operation: str
    model: str
    prompt: str
    response: str
    scores: QualityScores
    timestamp: float
    user_id: str | None = None
    feedback: UserFeedback | None = None
    judged: bool = False

    @property
    def overall(self) -> float:
        return self.scores.overall

    def to_row(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "QualityAssessment":
        data = dict(row)
        data["scores"] = QualityScores(**data["scores"])
        if data.get("feedback"):
            data["feedback"] = UserFeedback(**data["feedback"])
        return cls(**data)


@dataclass
class QualitySummary:
    """Aggregate of assessments in a window."""

    count: int
    average_overall: float
    averages: dict[str, float]
    distribution: dict[str, int]
    feedback_count: int
    average_rating: float
    helpful_rate: float


@dataclass
class QualityTrend:
    """Daily quality bucket."""

    date: str
    average_score: float
    count: int
    distribution: dict[str, int]
    top_issues: list[str]


@dataclass
class ModelQuality:
    """Per-model quality averages with strengths and weaknesses."""

    model: str
    count: int
    average_overall: float
    averages: dict[str, float]
    strengths: list[str]
    weaknesses: list[str]


def grade(score: float) -> str:
    """Bucket an overall score: excellent, good, fair or poor."""
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 60:
        return "fair"
    return "poor"


def compute_scores(
    prompt: str,
    response: str,
    profile: QualityProfile,
    relevance: float | None = None,
) -> QualityScores:
    """
    Score a response on all six dimensions with the heuristics.

    Args:
        prompt: Prompt text
        response: Response text
        profile: Weights and criteria
        relevance: Externally judged relevance overriding the heuristic

    Returns:
        QualityScores with ``overall`` computed from the profile weights
    """
    scores = QualityScores(
        relevance=(
            clamp(relevance)
            if relevance is not None
            else heuristics.score_relevance(prompt, response, profile)
        ),
        coherence=heuristics.score_coherence(response),
        completeness=heuristics.score_completeness(prompt, response, profile),
        accuracy=heuristics.score_accuracy(response),
        creativity=heuristics.score_creativity(response),
        safety=heuristics.score_safety(response),
    )
    scores.reweigh(profile.weights)
    return scores


class QualityScorer:
    """
    Evaluate responses and track their quality.

    Example:
        scorer = QualityScorer(store)
        assessment = await scorer.evaluate(
            prompt="Draft an OKR for Q4",
            response=text,
            operation="generate_okr",
            model="openai/gpt-4o-mini",
        )
        scorer.attach_feedback(assessment.id, rating=5)
    """

    def __init__(
        self,
        store: AppendOnlyStore,
        judge: QualityJudge | None = None,
        clock: Callable[[], float] = time.time,
        max_in_memory: int = 5000,
    ):
        """
        Args:
            store: Append-only store receiving every assessment revision
            judge: Optional relevance judge; heuristic only when None
            clock: Time source (unix seconds)
            max_in_memory: Recent assessments indexed in process
        """
        self._store = store
        self._judge = judge
        self._clock = clock
        self._max_in_memory = max_in_memory
        self._lock = threading.Lock()
        self._recent: OrderedDict[str, QualityAssessment] = OrderedDict()

    async def evaluate(
        self,
        prompt: str,
        response: str,
        operation: str = "default",
        model: str = "unknown",
        request_id: str | None = None,
        user_id: str | None = None,
        profile: QualityProfile | None = None,
    ) -> QualityAssessment:
        """
        Evaluate a response and persist the assessment.

        The judge, when configured, only replaces the relevance score and
        never fails the evaluation.

        Returns:
            The stored QualityAssessment
        """
        profile = profile or get_profile(operation)

        judged_relevance = None
        if self._judge is not None:
            try:
                judged_relevance = await self._judge.score_relevance(prompt, response, profile)
            except Exception:
                logger.exception(f"Relevance judge failed for {operation}; using heuristic")
                judged_relevance = None

        scores = compute_scores(prompt, response, profile, judged_relevance)
        assessment = QualityAssessment(
            id=uuid.uuid4().hex,
            request_id=request_id or uuid.uuid4().hex,
            operation=operation,
            model=model,
            prompt=prompt,
            response=response,
            scores=scores,
            timestamp=self._clock(),
            user_id=user_id,
            judged=judged_relevance is not None,
        )

        with self._lock:
            self._store.append(QUALITY_ASSESSMENTS, assessment.to_row())
            self._remember(assessment)

        logger.debug(
            f"Assessed {operation} from {model}: overall={scores.overall:.1f}"
            f"{' (judged)' if assessment.judged else ''}"
        )
        return assessment

    def _remember(self, assessment: QualityAssessment) -> None:
        self._recent[assessment.id] = assessment
        self._recent.move_to_end(assessment.id)
        while len(self._recent) > self._max_in_memory:
            self._recent.popitem(last=False)

    def get_assessment(self, assessment_id: str) -> QualityAssessment:
        """
        Look up an assessment by id.

        Raises:
            NotFoundError: If no such assessment exists
        """
        with self._lock:
            cached = self._recent.get(assessment_id)
        if cached is not None:
            return cached
        rows = self._store.query(QUALITY_ASSESSMENTS, id=assessment_id)
        if not rows:
            raise NotFoundError(f"Assessment {assessment_id} not found")
        return QualityAssessment.from_row(rows[-1])

    def attach_feedback(
        self,
        assessment_id: str,
        rating: int,
        helpful: bool = True,
        issues: list[str] | None = None,
        comment: str | None = None,
    ) -> QualityAssessment:
        """
        Attach user feedback and blend it into the scores once.

        When the rating-derived score (rating * 20) differs from the overall
        score by more than 20 points, every sub-score moves 30% of that gap
        toward it and the overall score is recomputed.

        Raises:
            ValueError: If rating is outside 1-5
            NotFoundError: If the assessment does not exist
            InvalidTransitionError: If feedback was already attached
        """
        if not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")

        with self._lock:
            assessment = self._recent.get(assessment_id)
            if assessment is None:
                rows = self._store.query(QUALITY_ASSESSMENTS, id=assessment_id)
                if not rows:
                    raise NotFoundError(f"Assessment {assessment_id} not found")
                assessment = QualityAssessment.from_row(rows[-1])
            if assessment.feedback is not None:
                raise InvalidTransitionError(
                    f"Feedback already attached to assessment {assessment_id}"
                )

            revised = replace(
                assessment,
                scores=replace(assessment.scores),
                feedback=UserFeedback(
                    rating=rating,
                    helpful=helpful,
                    issues=list(issues or []),
                    comment=comment,
                    timestamp=self._clock(),
                ),
            )
            self._blend_feedback(revised)
            # The cached copy only changes once the revision is stored.
            self._store.append(QUALITY_ASSESSMENTS, revised.to_row())
            self._remember(revised)

        return revised

    @staticmethod
    def _blend_feedback(assessment: QualityAssessment) -> None:
        expected = assessment.feedback.rating * 20
        gap = expected - assessment.scores.overall
        if abs(gap) <= FEEDBACK_DISCREPANCY:
            return
        shift = gap * FEEDBACK_BLEND_FACTOR
        for name in DIMENSIONS:
            setattr(
                assessment.scores,
                name,
                clamp(getattr(assessment.scores, name) + shift),
            )
        assessment.scores.reweigh(get_profile(assessment.operation).weights)
        logger.info(
            f"Feedback blended into assessment {assessment.id}: "
            f"overall now {assessment.scores.overall:.1f}"
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def list_assessments(
        self,
        start: float | None = None,
        end: float | None = None,
        operation: str | None = None,
        model: str | None = None,
    ) -> list[QualityAssessment]:
        """Current revision of every assessment in the window."""
        rows = self._store.query(
            QUALITY_ASSESSMENTS, start, end, operation=operation, model=model
        )
        return [QualityAssessment.from_row(r) for r in latest_by_id(rows)]

    def get_quality_metrics(
        self,
        start: float | None = None,
        end: float | None = None,
        operation: str | None = None,
        model: str | None = None,
    ) -> QualitySummary:
        """Averages per dimension, grade distribution and feedback stats."""
        assessments = self.list_assessments(start, end, operation, model)
        feedback = [a.feedback for a in assessments if a.feedback is not None]

        return QualitySummary(
            count=len(assessments),
            average_overall=mean([a.overall for a in assessments]),
            averages={
                d: mean([getattr(a.scores, d) for a in assessments]) for d in DIMENSIONS
            },
            distribution=dict(Counter(grade(a.overall) for a in assessments)),
            feedback_count=len(feedback),
            average_rating=mean([f.rating for f in feedback]),
            helpful_rate=(
                sum(1 for f in feedback if f.helpful) / len(feedback) * 100
                if feedback
                else 0.0
            ),
        )

    def get_quality_trends(
        self, days: int = 7, operation: str | None = None
    ) -> list[QualityTrend]:
        """
        Daily quality buckets for the last ``days`` days, oldest first.

        Days without assessments are omitted.
        """
        now = self._clock()
        start = now - days * 86400
        buckets: dict[int, list[QualityAssessment]] = defaultdict(list)
        for assessment in self.list_assessments(start, now, operation=operation):
            buckets[int((assessment.timestamp - start) // 86400)].append(assessment)

        trends = []
        for index in sorted(buckets):
            items = buckets[index]
            day = datetime.fromtimestamp(start + index * 86400, tz=timezone.utc)
            issues = Counter(
                issue
                for a in items
                if a.feedback is not None
                for issue in a.feedback.issues
            )
            trends.append(
                QualityTrend(
                    date=day.strftime("%Y-%m-%d"),
                    average_score=mean([a.overall for a in items]),
                    count=len(items),
                    distribution=dict(Counter(grade(a.overall) for a in items)),
                    top_issues=[issue for issue, _ in issues.most_common(3)],
                )
            )
        return trends

    def compare_model_quality(
        self, start: float | None = None, end: float | None = None
    ) -> list[ModelQuality]:
        """
        Per-model quality, best first.

        A dimension averaging above 85 is a strength, below 70 a weakness.
        """
        by_model: dict[str, list[QualityAssessment]] = defaultdict(list)
        for assessment in self.list_assessments(start, end):
            by_model[assessment.model].append(assessment)

        results = []
        for model, items in by_model.items():
            averages = {d: mean([getattr(a.scores, d) for a in items]) for d in DIMENSIONS}
            results.append(
                ModelQuality(
                    model=model,
                    count=len(items),
                    average_overall=mean([a.overall for a in items]),
                    averages=averages,
                    strengths=[d for d, v in averages.items() if v > 85],
                    weaknesses=[d for d, v in averages.items() if v < 70],
                )
            )
        results.sort(key=lambda m: m.average_overall, reverse=True)
        return results
