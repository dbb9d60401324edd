"""
Service Container

Explicit wiring of every component around one store, one invoker and one
clock. Nothing is created at import time; the FastAPI lifespan (or a
script) builds the container, starts its periodic tasks and stops them.

Periodic tasks run as independent asyncio tasks, each with its own
interval, so a slow anomaly scan never delays a metrics flush.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from aiops.alerting import AlertingEngine, default_notifiers
from aiops.benchmark import BenchmarkRunner
from aiops.cache import MemoryTier, RedisTier, TieredCache
from aiops.cache.tiers import CacheTier
from aiops.config import Settings
from aiops.dashboard import DashboardAggregator
from aiops.dispatcher import ModelInvoker, ProviderInvoker
from aiops.experiments import ABTestingFramework
from aiops.metrics import MetricsRecorder, MetricsReporter
from aiops.quality import ModelJudge, QualityScorer
from aiops.storage import AppendOnlyStore, InMemoryStore, SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class AIOpsServices:
    """
    Every engine component, wired together.

    Example:
        services = AIOpsServices.build(get_settings())
        services.start()
        ...
        await services.stop()
    """

    settings: Settings
    store: AppendOnlyStore
    invoker: ModelInvoker
    recorder: MetricsRecorder
    reporter: MetricsReporter
    scorer: QualityScorer
    cache: TieredCache
    alerting: AlertingEngine
    experiments: ABTestingFramework
    benchmarks: BenchmarkRunner
    dashboard: DashboardAggregator
    clock: Callable[[], float] = time.time
    started_at: float | None = None
    _tasks: dict[str, asyncio.Task] = field(default_factory=dict, repr=False)

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: AppendOnlyStore | None = None,
        invoker: ModelInvoker | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "AIOpsServices":
        """
        Build the container from settings.

        Args:
            settings: Application settings
            store: Append-only store; SQLite when DATABASE_PATH is set,
                   in-memory otherwise
            invoker: Model invocation collaborator; provider SDKs when None
            clock: Time source shared by every component
        """
        if store is None:
            store = (
                SQLiteStore(settings.database_path)
                if settings.database_path
                else InMemoryStore()
            )
        if invoker is None:
            invoker = ProviderInvoker(settings)

        recorder = MetricsRecorder(
            store,
            clock=clock,
            batch_size=settings.metrics_flush_batch_size,
            max_history=settings.metrics_max_history,
        )

        judge = None
        if settings.judge_enabled:
            judge = ModelJudge(
                invoker,
                model_id=settings.judge_model,
                timeout_seconds=settings.judge_timeout_seconds,
            )
        scorer = QualityScorer(store, judge=judge, clock=clock)

        tiers: list[CacheTier] = [
            MemoryTier("memory", max_entries=settings.cache_max_entries, clock=clock)
        ]
        if settings.redis_url:
            tiers.append(RedisTier.from_url(settings.redis_url, clock=clock))
            logger.info("Shared cache tier: redis")
        cache = TieredCache(
            tiers,
            fallback=MemoryTier("fallback", max_entries=settings.cache_max_entries, clock=clock),
            default_ttl=settings.cache_default_ttl_seconds,
            clock=clock,
        )

        alerting = AlertingEngine(
            recorder,
            store,
            default_notifiers(settings),
            clock=clock,
            anomaly_sensitivity=settings.anomaly_sensitivity,
        )
        experiments = ABTestingFramework(
            store,
            invoker,
            recorder,
            scorer,
            alerting=alerting,
            clock=clock,
            timeout_seconds=settings.model_timeout_seconds,
        )
        benchmarks = BenchmarkRunner(
            invoker,
            recorder,
            store,
            clock=clock,
            timeout_seconds=settings.model_timeout_seconds,
        )
        dashboard = DashboardAggregator(
            recorder,
            scorer,
            alerting,
            experiments,
            benchmarks,
            cache,
            clock=clock,
            cache_ttl_seconds=settings.dashboard_cache_ttl_seconds,
            anomaly_sensitivity=settings.anomaly_sensitivity,
        )

        return cls(
            settings=settings,
            store=store,
            invoker=invoker,
            recorder=recorder,
            reporter=MetricsReporter(recorder),
            scorer=scorer,
            cache=cache,
            alerting=alerting,
            experiments=experiments,
            benchmarks=benchmarks,
            dashboard=dashboard,
            clock=clock,
        )

    @property
    def running_tasks(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def start(self) -> None:
        """Launch the periodic tasks on the running event loop."""
        if self._tasks:
            return
        s = self.settings
        loops = {
            "metrics_flush": self.recorder.run_flusher(s.metrics_flush_interval_seconds),
            "cache_sweep": self.cache.run_sweeper(s.cache_sweep_interval_seconds),
            "threshold_checks": self.alerting.run_threshold_checks(
                s.threshold_check_interval_seconds
            ),
            "anomaly_scans": self.alerting.run_anomaly_scans(
                s.anomaly_scan_interval_seconds
            ),
            "baseline_updates": self.alerting.run_baseline_updates(
                s.baseline_update_interval_seconds
            ),
        }
        for name, coro in loops.items():
            self._tasks[name] = asyncio.create_task(coro, name=f"aiops-{name}")
        self.started_at = self.clock()
        logger.info(f"Started periodic tasks: {', '.join(self._tasks)}")

    async def stop(self) -> None:
        """Cancel the periodic tasks and flush buffered metrics."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        flushed = await asyncio.to_thread(self.recorder.flush_all)
        logger.info(f"Periodic tasks stopped, final flush wrote {flushed} records")
