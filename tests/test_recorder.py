"""
Metrics Recorder Tests

Validates recording, buffered persistence, aggregation, anomaly
detection and the per-model and per-operation breakdowns.

Test Categories:
1. TestMetricRecord - Derived fields and row conversion
2. TestRecording - record, record_invocation and track
3. TestFlush - Batched flushes and re-buffering on store failure
4. TestAggregate - Windowed statistics and filters
5. TestAnomalies - IQR outliers and error-rate spikes
6. TestBreakdowns - Model comparison and recommendations
"""

import pytest

from aiops.metrics import MetricRecord, MetricsRecorder, compute_stats
from aiops.storage import METRIC_RECORDS, InMemoryStore


class FlakyStore(InMemoryStore):
    """InMemoryStore whose writes fail while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = True

    def append_many(self, collection, rows):
        if self.failing:
            raise ConnectionError("store unavailable")
        super().append_many(collection, rows)


class TestMetricRecord:
    """Tests for the MetricRecord dataclass."""

    def test_latency_and_tokens(self, make_record):
        """Latency derives from start and end time."""
        record = make_record(latency_ms=1500, input_tokens=10, output_tokens=30)

        assert record.latency_ms == pytest.approx(1500, abs=0.01)
        assert record.total_tokens == 40
        assert record.timestamp == record.end_time

    def test_provider_derived_from_model(self, make_record):
        """Provider is filled in from the model prefix."""
        assert make_record(model="anthropic/claude-3-haiku").provider == "anthropic"

    def test_row_round_trip(self, make_record):
        """A stored row rebuilds an equal record."""
        record = make_record(quality_score=88.0, user_id="u1")

        row = record.to_row()

        assert row["timestamp"] == record.end_time
        assert MetricRecord.from_row(row) == record


class TestRecording:
    """Tests for the write path."""

    def test_record_invocation_prices_cost(self, recorder, clock):
        """Cost is computed from registry pricing when omitted."""
        record = recorder.record_invocation(
            operation="generate_okr",
            model="openai/gpt-4o",
            start_time=clock() - 2,
            end_time=clock(),
            input_tokens=1000,
            output_tokens=500,
        )

        assert record.cost == pytest.approx(0.0075)
        assert record.provider == "openai"

    def test_explicit_cost_is_kept(self, recorder, clock):
        """An explicit cost overrides registry pricing."""
        record = recorder.record_invocation(
            "generate_okr", "openai/gpt-4o", clock() - 1, clock(), 1000, 500, cost=0.5
        )

        assert record.cost == 0.5

    def test_quality_is_clamped(self, recorder, clock):
        """Quality scores are limited to 0-100."""
        record = recorder.record_invocation(
            "generate_okr", "openai/gpt-4o", clock() - 1, clock(), quality_score=140
        )

        assert record.quality_score == 100

    def test_recent_records(self, recorder, make_record):
        """get_recent returns the newest records in order."""
        for op in ("a", "b", "c"):
            recorder.record(make_record(operation=op))

        assert [r.operation for r in recorder.get_recent(2)] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_track_records_success(self, recorder, clock):
        """A tracked block is recorded with its duration and usage."""
        async with recorder.track("chat_completion", "openai/gpt-4o", user_id="u1") as call:
            clock.advance(1.5)
            call.input_tokens = 100
            call.output_tokens = 50
            call.quality_score = 82.0

        [record] = recorder.get_recent(1)
        assert record.success is True
        assert record.latency_ms == pytest.approx(1500)
        assert record.total_tokens == 150
        assert record.quality_score == 82.0
        assert record.user_id == "u1"

    @pytest.mark.asyncio
    async def test_track_records_failure_and_reraises(self, recorder, clock):
        """An exception inside the block is recorded as a failure."""
        with pytest.raises(RuntimeError):
            async with recorder.track("chat_completion", "openai/gpt-4o"):
                clock.advance(0.5)
                raise RuntimeError("provider exploded")

        [record] = recorder.get_recent(1)
        assert record.success is False
        assert record.error == "provider exploded"


class TestFlush:
    """Tests for buffered persistence."""

    def test_flush_moves_pending_to_store(self, recorder, store, make_record):
        """Flushed records land in the store and leave the buffer."""
        for _ in range(3):
            recorder.record(make_record())

        assert recorder.flush() == 3
        assert recorder.pending_count == 0
        assert store.count(METRIC_RECORDS) == 3

    def test_flush_respects_batch_size(self, store, clock, make_record):
        """One flush writes at most one batch; flush_all drains the rest."""
        recorder = MetricsRecorder(store, clock=clock, batch_size=2)
        for _ in range(5):
            recorder.record(make_record())

        assert recorder.flush() == 2
        assert recorder.flush_all() == 3
        assert recorder.pending_count == 0

    def test_failed_flush_rebuffers(self, clock, make_record):
        """A store failure puts the batch back and loses nothing."""
        store = FlakyStore()
        recorder = MetricsRecorder(store, clock=clock)
        for _ in range(3):
            recorder.record(make_record())

        assert recorder.flush() == 0
        assert recorder.pending_count == 3

        store.failing = False
        assert recorder.flush() == 3
        assert store.count(METRIC_RECORDS) == 3

    def test_queries_see_pending_and_flushed_once(self, recorder, make_record, clock):
        """Reads combine store and buffer without double counting."""
        recorder.record(make_record())
        recorder.record(make_record())
        recorder.flush()
        recorder.record(make_record())

        stats = recorder.aggregate(clock() - 60, clock())

        assert stats.count == 3


class TestAggregate:
    """Tests for windowed aggregation."""

    def test_empty_window(self, recorder, clock):
        """An empty window yields zero counts and rates."""
        stats = recorder.aggregate(clock() - 3600, clock())

        assert stats.count == 0
        assert stats.success_rate == 0.0
        assert stats.avg_latency == 0.0
        assert not stats.has_data

    def test_statistics(self, recorder, make_record, clock):
        """Latency, success, cost and quality are aggregated."""
        recorder.record(make_record(latency_ms=1000, quality_score=80, cost=0.001))
        recorder.record(make_record(latency_ms=2000, quality_score=90, cost=0.002))
        recorder.record(make_record(latency_ms=3000, success=False, cost=0.003))

        stats = recorder.aggregate(clock() - 60, clock())

        assert stats.count == 3
        assert stats.avg_latency == pytest.approx(2000, abs=0.1)
        assert stats.median_latency == pytest.approx(2000, abs=0.1)
        assert stats.success_rate == pytest.approx(200 / 3)
        assert stats.error_rate == pytest.approx(100 / 3)
        assert stats.total_cost == pytest.approx(0.006)
        assert stats.avg_quality == pytest.approx(85)
        assert stats.quality_samples == 2
        assert stats.total_tokens == 900

    def test_window_excludes_older_records(self, recorder, make_record, clock):
        """Records before the window start are not counted."""
        recorder.record(make_record(end=clock() - 7200))
        recorder.record(make_record())

        assert recorder.aggregate(clock() - 3600, clock()).count == 1

    def test_filters(self, recorder, make_record, clock):
        """Operation and model filters restrict the window."""
        recorder.record(make_record(operation="generate_okr", model="openai/gpt-4o"))
        recorder.record(make_record(operation="chat_completion", model="openai/gpt-4o"))
        recorder.record(make_record(operation="chat_completion", model="openai/gpt-4o-mini"))

        window = (clock() - 60, clock())

        assert recorder.aggregate(*window, operation="chat_completion").count == 2
        assert recorder.aggregate(*window, model="openai/gpt-4o").count == 2
        assert recorder.aggregate(*window, provider="openai").count == 3
        assert recorder.aggregate(*window, provider="anthropic").count == 0

    def test_compute_stats_empty(self):
        """compute_stats of nothing is all zeros."""
        assert compute_stats([]).count == 0


class TestAnomalies:
    """Tests for detect_anomalies()."""

    def test_latency_outlier_detected(self, recorder, make_record):
        """A latency far outside the IQR band is reported."""
        for latency in (1000, 1100, 1200, 1000, 1100, 1200, 1050, 1150):
            recorder.record(make_record(latency_ms=latency))
        recorder.record(make_record(latency_ms=20000, operation="analyze_performance"))

        anomalies = recorder.detect_anomalies(lookback_hours=1)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.type == "latency"
        assert anomaly.severity == "critical"
        assert anomaly.affected_operations == ["analyze_performance"]
        assert anomaly.value == pytest.approx(20000, abs=0.1)

    def test_too_few_points(self, recorder, make_record):
        """Fewer than four points never produce point anomalies."""
        for latency in (1000, 1000, 50000):
            recorder.record(make_record(latency_ms=latency))

        assert recorder.detect_anomalies(lookback_hours=1) == []

    def test_zero_spread_yields_nothing(self, recorder, make_record):
        """Identical values have no IQR and no outliers."""
        for _ in range(6):
            recorder.record(make_record(latency_ms=1000))

        assert recorder.detect_anomalies(lookback_hours=1) == []

    def test_error_rate_spike(self, recorder, make_record):
        """A high error rate versus an empty baseline is critical."""
        for i in range(10):
            recorder.record(make_record(latency_ms=1000, success=i % 2 == 0))

        anomalies = recorder.detect_anomalies(lookback_hours=1)

        assert [a.type for a in anomalies] == ["error_rate"]
        assert anomalies[0].severity == "critical"
        assert anomalies[0].value == pytest.approx(50.0)

    def test_unknown_sensitivity(self, recorder):
        """Unknown sensitivity profiles are rejected."""
        with pytest.raises(ValueError):
            recorder.detect_anomalies(sensitivity="extreme")


class TestBreakdowns:
    """Tests for model comparison, operation breakdown and recommendations."""

    def test_model_comparison_ranks_faster_cheaper_first(self, recorder, make_record, clock):
        """The fast, cheap, reliable model scores highest."""
        for _ in range(3):
            recorder.record(make_record(model="openai/gpt-4o", latency_ms=6000, cost=0.01))
            recorder.record(
                make_record(model="openai/gpt-4o-mini", latency_ms=800, cost=0.0005)
            )

        comparison = recorder.get_model_comparison(clock() - 60, clock())

        assert [c.model for c in comparison] == ["openai/gpt-4o-mini", "openai/gpt-4o"]
        assert comparison[0].score > comparison[1].score

    def test_operation_breakdown_busiest_first(self, recorder, make_record, clock):
        """Operations are ordered by request count."""
        recorder.record(make_record(operation="generate_okr"))
        for _ in range(3):
            recorder.record(make_record(operation="chat_completion"))

        breakdown = recorder.get_operation_breakdown(clock() - 60, clock())

        assert list(breakdown) == ["chat_completion", "generate_okr"]
        assert breakdown["chat_completion"].count == 3

    def test_slow_and_unreliable_operations(self, recorder, make_record, clock):
        """Slow and failing operations produce recommendations."""
        recorder.record(make_record(operation="analyze_performance", latency_ms=6000))
        recorder.record(make_record(operation="generate_insights", success=False))

        categories = {
            (r.category, r.affected[0])
            for r in recorder.get_recommendations(clock() - 60, clock())
        }

        assert ("performance", "analyze_performance") in categories
        assert ("reliability", "generate_insights") in categories

    def test_cheaper_model_recommendation(self, recorder, make_record, clock):
        """A much cheaper model at similar quality is recommended."""
        for _ in range(3):
            recorder.record(make_record(model="openai/gpt-4o", cost=0.01, quality_score=85))
            recorder.record(
                make_record(model="openai/gpt-4o-mini", cost=0.001, quality_score=84)
            )

        cost_recs = [
            r
            for r in recorder.get_recommendations(clock() - 60, clock())
            if r.category == "cost"
        ]

        assert len(cost_recs) == 1
        assert cost_recs[0].affected == ["openai/gpt-4o", "openai/gpt-4o-mini"]
