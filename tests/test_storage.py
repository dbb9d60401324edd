"""
Append-Only Store Tests

Validates the in-memory and SQLite stores and revision collapsing.

Test Categories:
1. TestInMemoryStore - Time-range and equality queries, row isolation
2. TestSQLiteStore - Durable rows across store instances
3. TestLatestById - Collapsing appended revisions
"""

import pytest

from aiops.storage import (
    ALERTS,
    METRIC_RECORDS,
    InMemoryStore,
    SQLiteStore,
    latest_by_id,
)


ROWS = [
    {"id": "a", "timestamp": 100.0, "model": "openai/gpt-4o", "value": 1},
    {"id": "b", "timestamp": 200.0, "model": "openai/gpt-4o-mini", "value": 2},
    {"id": "c", "timestamp": 300.0, "model": "openai/gpt-4o", "value": 3},
]


class TestInMemoryStore:
    """Tests for InMemoryStore."""

    @pytest.fixture
    def populated(self):
        """Store holding three metric rows."""
        store = InMemoryStore()
        store.append_many(METRIC_RECORDS, ROWS)
        return store

    def test_query_returns_rows_in_append_order(self, populated):
        """All rows come back in the order they were written."""
        rows = populated.query(METRIC_RECORDS)

        assert [r["id"] for r in rows] == ["a", "b", "c"]

    def test_time_range_is_inclusive(self, populated):
        """Both bounds of the time range are inclusive."""
        rows = populated.query(METRIC_RECORDS, start=200.0, end=300.0)

        assert [r["id"] for r in rows] == ["b", "c"]

    def test_equality_filter(self, populated):
        """Keyword filters match field values exactly."""
        rows = populated.query(METRIC_RECORDS, model="openai/gpt-4o")

        assert [r["id"] for r in rows] == ["a", "c"]

    def test_none_filters_are_ignored(self, populated):
        """A filter set to None does not restrict the result."""
        rows = populated.query(METRIC_RECORDS, model=None)

        assert len(rows) == 3

    def test_unknown_collection_is_empty(self, populated):
        """Querying a collection never written to returns nothing."""
        assert populated.query(ALERTS) == []

    def test_returned_rows_are_copies(self, populated):
        """Mutating a returned row does not change stored state."""
        populated.query(METRIC_RECORDS)[0]["value"] = 999

        assert populated.query(METRIC_RECORDS)[0]["value"] == 1

    def test_count(self, populated):
        """count reports the rows appended to a collection."""
        assert populated.count(METRIC_RECORDS) == 3
        assert populated.count(ALERTS) == 0


class TestSQLiteStore:
    """Tests for SQLiteStore."""

    def test_rows_survive_new_instance(self, tmp_path):
        """Rows written by one instance are read by another."""
        path = str(tmp_path / "aiops.db")
        SQLiteStore(path).append_many(METRIC_RECORDS, ROWS)

        rows = SQLiteStore(path).query(METRIC_RECORDS)

        assert [r["id"] for r in rows] == ["a", "b", "c"]
        assert rows[0]["model"] == "openai/gpt-4o"

    def test_time_range_and_filters(self, tmp_path):
        """SQL time bounds combine with equality filters."""
        store = SQLiteStore(str(tmp_path / "aiops.db"))
        store.append_many(METRIC_RECORDS, ROWS)

        rows = store.query(METRIC_RECORDS, start=150.0, model="openai/gpt-4o")

        assert [r["id"] for r in rows] == ["c"]

    def test_collections_are_separate(self, tmp_path):
        """Rows in one collection are invisible to another."""
        store = SQLiteStore(str(tmp_path / "aiops.db"))
        store.append(ALERTS, {"id": "x", "timestamp": 1.0})

        assert store.query(METRIC_RECORDS) == []
        assert len(store.query(ALERTS)) == 1

    def test_empty_append_many_is_noop(self, tmp_path):
        """Appending no rows writes nothing."""
        store = SQLiteStore(str(tmp_path / "aiops.db"))
        store.append_many(METRIC_RECORDS, [])

        assert store.query(METRIC_RECORDS) == []


class TestLatestById:
    """Tests for latest_by_id()."""

    def test_last_revision_wins(self):
        """The most recently appended revision of an id is returned."""
        rows = [
            {"id": "a", "status": "active"},
            {"id": "b", "status": "active"},
            {"id": "a", "status": "resolved"},
        ]

        latest = latest_by_id(rows)

        assert latest == [
            {"id": "a", "status": "resolved"},
            {"id": "b", "status": "active"},
        ]

    def test_custom_id_field(self):
        """Revisions can be keyed by any field."""
        rows = [{"run_id": 1, "v": 1}, {"run_id": 1, "v": 2}]

        assert latest_by_id(rows, id_field="run_id") == [{"run_id": 1, "v": 2}]
