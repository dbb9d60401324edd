"""
Metrics Reporter for API Responses

Transforms aggregated MetricRecords into structured API responses: window
totals, a per-operation breakdown and the ranked model comparison.

The reporter bridges the recorder's internal statistics to the Pydantic
schemas used by the REST API.
"""

from aiops.metrics.recorder import MetricsRecorder
from aiops.schemas.api import (
    MetricsResponse,
    ModelStatsResponse,
    StatsResponse,
    stats_fields,
)


class MetricsReporter:
    """
    Generate metrics reports from the Metrics Recorder.

    Example:
        reporter = MetricsReporter(recorder)
        response = reporter.generate_report(start, end, model="openai/gpt-4o")
        return response  # Ready for JSON serialization
    """

    def __init__(self, recorder: MetricsRecorder):
        self._recorder = recorder

    def generate_report(
        self,
        start: float,
        end: float,
        operation: str | None = None,
        model: str | None = None,
        provider: str | None = None,
        user_id: str | None = None,
    ) -> MetricsResponse:
        """
        Generate a complete metrics report for a window.

        Filters apply to the totals and the operation breakdown; the model
        comparison always covers every model in the window.

        Returns:
            MetricsResponse ready for API serialization
        """
        filters = {
            k: v
            for k, v in {
                "operation": operation,
                "model": model,
                "provider": provider,
                "user_id": user_id,
            }.items()
            if v is not None
        }

        totals = self._recorder.aggregate(start, end, **filters)
        breakdown = self._recorder.get_operation_breakdown(start, end, **filters)
        comparison = self._recorder.get_model_comparison(start, end)

        return MetricsResponse(
            window_start=start,
            window_end=end,
            filters=filters,
            totals=StatsResponse(**stats_fields(totals)),
            operations={
                name: StatsResponse(**stats_fields(stats))
                for name, stats in breakdown.items()
            },
            models=[
                ModelStatsResponse(
                    model=c.model,
                    provider=c.provider,
                    score=round(c.score, 2),
                    **stats_fields(c.stats),
                )
                for c in comparison
            ],
        )
