"""
Append-Only Store

The persistence collaborator for every record the engine produces:
metric records, quality assessments, alerts, A/B tests and executions,
benchmark results. Rows are appended and queried by time range and
equality filters; they are never updated in place. State changes are
written as new rows carrying the same ``id``, and readers that need the
current state collapse them with ``latest_by_id``.

Two implementations are provided:
    InMemoryStore: thread-safe list per collection (default, tests)
    SQLiteStore: durable single-file store
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable


METRIC_RECORDS = "metric_records"
QUALITY_ASSESSMENTS = "quality_assessments"
ALERTS = "alerts"
AB_TESTS = "ab_tests"
AB_EXECUTIONS = "ab_executions"
AB_ASSIGNMENTS = "ab_assignments"
BENCHMARK_RESULTS = "benchmark_results"


def _matches(row: dict, start: float | None, end: float | None, equals: dict) -> bool:
    ts = row.get("timestamp")
    if start is not None and (ts is None or ts < start):
        return False
    if end is not None and (ts is None or ts > end):
        return False
    for name, expected in equals.items():
        if expected is not None and row.get(name) != expected:
            return False
    return True


def latest_by_id(rows: Iterable[dict], id_field: str = "id") -> list[dict]:
    """
    Collapse appended revisions to the most recent row per id.

    Rows are assumed to be in append order. Insertion order of the first
    revision is preserved in the output.

    Args:
        rows: Rows in append order
        id_field: Field identifying a logical record

    Returns:
        One row per id, the last one written
    """
    latest: dict[Any, dict] = {}
    for row in rows:
        latest[row.get(id_field)] = row
    return list(latest.values())


class AppendOnlyStore(ABC):
    """
    Interface of the append-only persistence collaborator.

    Every row should carry a float ``timestamp`` (unix seconds) so that
    time-range queries work across collections.
    """

    @abstractmethod
    def append(self, collection: str, row: dict) -> None:
        """Append one row to a collection."""

    def append_many(self, collection: str, rows: list[dict]) -> None:
        """Append several rows; implementations may do this atomically."""
        for row in rows:
            self.append(collection, row)

    @abstractmethod
    def query(
        self,
        collection: str,
        start: float | None = None,
        end: float | None = None,
        **equals: Any,
    ) -> list[dict]:
        """
        Return rows in append order.

        Args:
            collection: Collection name
            start: Inclusive lower bound on ``timestamp``
            end: Inclusive upper bound on ``timestamp``
            **equals: Field equality filters; ``None`` values are ignored

        Returns:
            Copies of matching rows
        """


class InMemoryStore(AppendOnlyStore):
    """
    Thread-safe in-memory append-only store.

    Suitable for single-process deployments and tests. Rows are copied on
    the way in and out so callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, list[dict]] = defaultdict(list)

    def append(self, collection: str, row: dict) -> None:
        with self._lock:
            self._rows[collection].append(dict(row))

    def append_many(self, collection: str, rows: list[dict]) -> None:
        with self._lock:
            self._rows[collection].extend(dict(r) for r in rows)

    def query(
        self,
        collection: str,
        start: float | None = None,
        end: float | None = None,
        **equals: Any,
    ) -> list[dict]:
        with self._lock:
            snapshot = list(self._rows.get(collection, ()))
        return [dict(r) for r in snapshot if _matches(r, start, end, equals)]

    def count(self, collection: str) -> int:
        """Number of rows appended to a collection."""
        with self._lock:
            return len(self._rows.get(collection, ()))


class SQLiteStore(AppendOnlyStore):
    """
    Durable append-only store backed by a single SQLite file.

    Each row is stored as a JSON body next to its collection and timestamp.
    Time-range filtering happens in SQL; equality filters are applied to
    the decoded rows.
    """

    def __init__(self, db_path: str = "aiops.db"):
        """
        Initialize the store and create the table if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._write_lock = threading.Lock()
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    timestamp REAL,
                    body TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_collection_ts "
                "ON records (collection, timestamp)"
            )
            conn.commit()
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(Path(self.db_path)))

    def append(self, collection: str, row: dict) -> None:
        self.append_many(collection, [row])

    def append_many(self, collection: str, rows: list[dict]) -> None:
        if not rows:
            return
        payload = [
            (collection, row.get("timestamp"), json.dumps(row, default=str))
            for row in rows
        ]
        with self._write_lock:
            conn = self._connect()
            try:
                conn.executemany(
                    "INSERT INTO records (collection, timestamp, body) VALUES (?, ?, ?)",
                    payload,
                )
                conn.commit()
            finally:
                conn.close()

    def query(
        self,
        collection: str,
        start: float | None = None,
        end: float | None = None,
        **equals: Any,
    ) -> list[dict]:
        sql = "SELECT body FROM records WHERE collection = ?"
        params: list[Any] = [collection]
        if start is not None:
            sql += " AND timestamp >= ?"
            params.append(start)
        if end is not None:
            sql += " AND timestamp <= ?"
            params.append(end)
        sql += " ORDER BY seq ASC"

        conn = self._connect()
        try:
            cursor = conn.execute(sql, params)
            rows = [json.loads(body) for (body,) in cursor.fetchall()]
        finally:
            conn.close()
        return [r for r in rows if _matches(r, None, None, equals)]
