"""
Storage module: append-only persistence collaborator.

Public API:
- AppendOnlyStore: Interface implemented by every backend
- InMemoryStore: Thread-safe process-local backend
- SQLiteStore: Durable single-file backend
- latest_by_id: Collapse appended revisions to current state
- Collection name constants
"""

from aiops.storage.repository import (
    AB_ASSIGNMENTS,
    AB_EXECUTIONS,
    AB_TESTS,
    ALERTS,
    BENCHMARK_RESULTS,
    METRIC_RECORDS,
    QUALITY_ASSESSMENTS,
    AppendOnlyStore,
    InMemoryStore,
    SQLiteStore,
    latest_by_id,
)

__all__ = [
    # Backends
    "AppendOnlyStore",
    "InMemoryStore",
    "SQLiteStore",
    "latest_by_id",
    # Collections
    "METRIC_RECORDS",
    "QUALITY_ASSESSMENTS",
    "ALERTS",
    "AB_TESTS",
    "AB_EXECUTIONS",
    "AB_ASSIGNMENTS",
    "BENCHMARK_RESULTS",
]
