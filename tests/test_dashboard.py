"""
Dashboard Aggregator Tests

Validates snapshot composition, caching and the status helpers.

Test Categories:
1. TestHelpers - Time ranges, statuses, health and projections
2. TestSnapshot - Overview KPIs, trends and sections
3. TestCaching - Cached snapshots and invalidation
"""

import pytest

from aiops.alerting import AlertSeverity, AlertType
from aiops.dashboard.aggregator import (
    cost_projection,
    health_score,
    latency_distribution,
    latency_status,
    quality_status,
    resolve_time_range,
    success_status,
)
from aiops.experiments import ModelConfiguration, Variant
from aiops.metrics.recorder import compute_stats


class TestHelpers:
    """Tests for module-level helpers."""

    def test_known_time_ranges(self):
        """Known labels map to their length."""
        assert resolve_time_range("1h") == ("1h", 3600)
        assert resolve_time_range("7d") == ("7d", 7 * 86400)

    def test_unknown_time_range_falls_back(self):
        """Unknown labels mean 24h."""
        assert resolve_time_range("fortnight") == ("24h", 86400)

    @pytest.mark.parametrize(
        "latency,status", [(500, "good"), (2000, "warning"), (4999, "warning"), (5000, "critical")]
    )
    def test_latency_status(self, latency, status):
        """Latency thresholds are 2s and 5s."""
        assert latency_status(latency) == status

    @pytest.mark.parametrize(
        "rate,status", [(100, "good"), (99, "good"), (97, "warning"), (90, "critical")]
    )
    def test_success_status(self, rate, status):
        """Success thresholds are 99% and 95%."""
        assert success_status(rate) == status

    @pytest.mark.parametrize(
        "quality,status", [(90, "good"), (85, "good"), (75, "warning"), (50, "critical")]
    )
    def test_quality_status(self, quality, status):
        """Quality thresholds are 85 and 70."""
        assert quality_status(quality) == status

    def test_health_score(self, make_record):
        """Health blends performance, quality, reliability and cost."""
        stats = compute_stats(
            [make_record(latency_ms=1000, quality_score=80, cost=0.001)]
        )

        health = health_score(stats)

        assert health.performance == pytest.approx(90, abs=0.1)
        assert health.quality == 80
        assert health.reliability == 100
        assert health.cost == pytest.approx(99)
        assert health.status == "healthy"

    def test_health_critical(self, make_record):
        """Slow, failing, unscored traffic is critical."""
        stats = compute_stats([make_record(latency_ms=12000, success=False)])

        assert health_score(stats).status == "critical"

    def test_cost_projection(self):
        """Spend is projected to a day and a 30-day month."""
        projection = cost_projection(0.5, 3600)

        assert projection.daily == pytest.approx(12)
        assert projection.monthly == pytest.approx(360)

    def test_latency_distribution(self):
        """Latencies fall into half-open buckets."""
        distribution = latency_distribution([100, 500, 999, 1500, 4000, 9000])

        assert distribution == {
            "<500ms": 1,
            "500-1000ms": 2,
            "1000-2000ms": 1,
            "2000-5000ms": 1,
            ">5000ms": 1,
        }


class TestSnapshot:
    """Tests for get_dashboard() content."""

    @pytest.mark.asyncio
    async def test_overview_kpis(self, services, make_record, clock):
        """KPIs compare the window with the previous equal window."""
        recorder = services.recorder
        recorder.record(make_record(latency_ms=1000, end=clock() - 5400))
        for _ in range(3):
            recorder.record(make_record(latency_ms=1000, quality_score=90))

        dashboard = await services.dashboard.get_dashboard("1h")

        overview = dashboard.overview
        assert overview.total_requests.value == 3
        assert overview.total_requests.previous == 1
        assert overview.total_requests.change_percent == pytest.approx(200)
        assert overview.average_latency.status == "good"
        assert overview.quality_score.status == "good"
        assert overview.success_rate.unit == "%"
        assert overview.quick_stats.active_models == 1
        assert overview.quick_stats.top_operation == "generate_okr"
        assert dashboard.metadata.time_range == "1h"
        assert dashboard.metadata.window_end == clock()

    @pytest.mark.asyncio
    async def test_trends_have_fixed_points(self, services, make_record, clock):
        """The trend series always has 24 points covering the window."""
        services.recorder.record(make_record(end=clock() - 3000))
        services.recorder.record(make_record())

        trends = (await services.dashboard.get_dashboard("1h")).overview.trends

        assert len(trends) == 24
        assert sum(p.requests for p in trends) == 2
        assert trends[-1].requests == 1
        assert trends[0].timestamp == pytest.approx(clock() - 3600)

    @pytest.mark.asyncio
    async def test_unknown_range_uses_24h(self, services):
        """Unknown ranges are reported as 24h."""
        dashboard = await services.dashboard.get_dashboard("forever")

        assert dashboard.metadata.time_range == "24h"

    @pytest.mark.asyncio
    async def test_filters(self, services, make_record):
        """Filters restrict the metric sections and are echoed in metadata."""
        services.recorder.record(make_record(model="openai/gpt-4o"))
        services.recorder.record(make_record(model="openai/gpt-4o-mini"))

        dashboard = await services.dashboard.get_dashboard("1h", model="openai/gpt-4o")

        assert dashboard.overview.total_requests.value == 1
        assert dashboard.metadata.filters == {"model": "openai/gpt-4o"}

    @pytest.mark.asyncio
    async def test_empty_dashboard(self, services):
        """A dashboard with no data still renders."""
        dashboard = await services.dashboard.get_dashboard("1h")

        assert dashboard.overview.total_requests.value == 0
        assert dashboard.benchmarks["last_run"] is None
        assert dashboard.ab_tests["total"] == 0
        assert dashboard.alerts["active"] == []
        assert dashboard.recommendations == []

    @pytest.mark.asyncio
    async def test_sections_reflect_components(self, services):
        """Alerts, experiments and benchmarks appear in their sections."""
        services.alerting.create_alert(
            alert_type=AlertType.MODEL_FAILURE,
            severity=AlertSeverity.CRITICAL,
            title="Provider down",
            message="503",
        )
        test = services.experiments.create_test(
            "mini",
            [
                Variant(id="a", name="4o", configuration=ModelConfiguration(model="openai/gpt-4o")),
                Variant(
                    id="b", name="mini", configuration=ModelConfiguration(model="openai/gpt-4o-mini")
                ),
            ],
            [50, 50],
        )
        services.experiments.start_test(test.id)
        await services.benchmarks.run_benchmark(
            models=["openai/gpt-4o-mini"], case_ids=["okr_generation_basic"]
        )

        dashboard = await services.dashboard.get_dashboard("1h")

        assert dashboard.alerts["active_by_severity"] == {"critical": 1}
        assert dashboard.overview.quick_stats.active_alerts == 1
        assert dashboard.overview.quick_stats.running_tests == 1
        assert dashboard.ab_tests["active_tests"][0]["name"] == "mini"
        assert dashboard.benchmarks["top_performer"] == "openai/gpt-4o-mini"
        assert "openai/gpt-4o-mini" in dashboard.costs["by_model"]


class TestCaching:
    """Tests for snapshot caching."""

    @pytest.mark.asyncio
    async def test_second_load_is_cached(self, services, make_record):
        """Within the TTL a new record does not change the snapshot."""
        services.recorder.record(make_record())
        first = await services.dashboard.get_dashboard("1h")

        services.recorder.record(make_record())
        second = await services.dashboard.get_dashboard("1h")

        assert first.overview.total_requests.value == 1
        assert second.overview.total_requests.value == 1
        assert services.cache.get_stats().hits == 1

    @pytest.mark.asyncio
    async def test_expires_after_five_minutes(self, services, make_record, clock):
        """Snapshots are rebuilt once the dashboard TTL passes."""
        await services.dashboard.get_dashboard("1h")
        services.recorder.record(make_record())

        clock.advance(301)
        dashboard = await services.dashboard.get_dashboard("1h")

        assert dashboard.overview.total_requests.value == 1

    @pytest.mark.asyncio
    async def test_invalidate(self, services, make_record):
        """Invalidation forces a rebuild."""
        await services.dashboard.get_dashboard("1h")
        await services.dashboard.get_dashboard("24h")
        services.recorder.record(make_record())

        assert services.dashboard.invalidate() == 2
        dashboard = await services.dashboard.get_dashboard("1h")

        assert dashboard.overview.total_requests.value == 1

    @pytest.mark.asyncio
    async def test_filters_are_cached_separately(self, services, make_record):
        """Different filters do not share a snapshot."""
        services.recorder.record(make_record(model="openai/gpt-4o"))

        unfiltered = await services.dashboard.get_dashboard("1h")
        filtered = await services.dashboard.get_dashboard("1h", model="openai/gpt-4o-mini")

        assert unfiltered.overview.total_requests.value == 1
        assert filtered.overview.total_requests.value == 0
