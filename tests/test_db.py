"""Tests for timelimit.db — UsageStore."""

import sqlite3
from datetime import date, datetime

import pytest

from timelimit.db import UsageStore
from timelimit.errors import StorageError


@pytest.fixture
def store(tmp_path):
    """Yield an opened UsageStore using a temp directory."""
    s = UsageStore(path=tmp_path / "test.db")
    s.open()
    yield s
    s.close()


class TestLifecycle:
    def test_open_creates_file(self, tmp_path):
        path = tmp_path / "sub" / "test.db"
        s = UsageStore(path=path)
        s.open()
        assert path.exists()
        s.close()

    def test_context_manager(self, tmp_path):
        with UsageStore(path=tmp_path / "test.db") as s:
            assert s._conn is not None
        assert s._conn is None

    def test_double_close_safe(self, store):
        store.close()
        store.close()  # should not raise

    def test_ensure_conn_raises_when_closed(self, tmp_path):
        s = UsageStore(path=tmp_path / "test.db")
        with pytest.raises(RuntimeError, match="not open"):
            s._ensure_conn()


class TestSchema:
    def test_table_and_indexes_created(self, store):
        cur = store._conn.execute("SELECT type, name FROM sqlite_master ORDER BY name")
        names = {(t, n) for t, n in cur.fetchall()}
        assert ("table", "usage") in names
        assert ("index", "user_index") in names
        assert ("index", "day_index") in names

    def test_ensure_schema_is_idempotent(self, store):
        store.record_tick("kid")
        store.ensure_schema()
        store.ensure_schema()
        assert store.count() == 1

    def test_reopen_keeps_data(self, tmp_path):
        path = tmp_path / "test.db"
        with UsageStore(path=path) as s:
            s.record_tick("kid")
        with UsageStore(path=path) as s:
            assert s.count() == 1

    def test_existing_table_is_detected_by_name(self, tmp_path):
        """A table created by an older version (untyped id, no indexes) is reused as-is."""
        path = tmp_path / "legacy.db"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE usage(id PRIMARY KEY, user VARCHAR(20), day DATE, timestamp DATETIME)")
        conn.execute("INSERT INTO usage(user, day, timestamp) VALUES ('kid', '2026-03-02', '2026-03-02 10:00:00')")
        conn.commit()
        conn.close()

        with UsageStore(path=path) as s:
            assert s.count_today("kid", date(2026, 3, 2)) == 1
            s.record_tick("kid", datetime(2026, 3, 2, 10, 1))
            assert s.count_today("kid", date(2026, 3, 2)) == 2


class TestTicks:
    def test_count_empty(self, store):
        assert store.count_today("kid") == 0

    def test_n_ticks_counted(self, store):
        now = datetime(2026, 3, 2, 15, 0)
        for _ in range(7):
            store.record_tick("kid", now)
        assert store.count_today("kid", now.date()) == 7

    def test_default_now_is_today(self, store):
        store.record_tick("kid")
        store.record_tick("kid")
        assert store.count_today("kid") == 2

    def test_counts_are_per_user(self, store):
        now = datetime(2026, 3, 2, 15, 0)
        store.record_tick("kid", now)
        store.record_tick("kid", now)
        store.record_tick("parent", now)
        assert store.count_today("kid", now.date()) == 2
        assert store.count_today("parent", now.date()) == 1

    def test_counts_are_per_day(self, store):
        store.record_tick("kid", datetime(2026, 3, 1, 23, 59))
        store.record_tick("kid", datetime(2026, 3, 2, 0, 0))
        assert store.count_today("kid", date(2026, 3, 1)) == 1
        assert store.count_today("kid", date(2026, 3, 2)) == 1

    def test_row_fields(self, store):
        store.record_tick("kid", datetime(2026, 3, 2, 9, 5, 7))
        row = store._conn.execute("SELECT user, day, timestamp FROM usage").fetchone()
        assert row == ("kid", "2026-03-02", "2026-03-02 09:05:07")

    def test_write_failure_raises_storage_error(self, store):
        store._conn.execute("DROP TABLE usage")
        with pytest.raises(StorageError, match="unable to update time for kid"):
            store.record_tick("kid")

    def test_read_failure_raises_storage_error(self, store):
        store._conn.execute("DROP TABLE usage")
        with pytest.raises(StorageError):
            store.count_today("kid")


class TestDailyTotals:
    def test_empty(self, store):
        assert store.daily_totals("kid") == []

    def test_grouped_and_ordered(self, store):
        store.record_tick("kid", datetime(2026, 3, 5, 10, 0))
        store.record_tick("kid", datetime(2026, 3, 2, 10, 0))
        store.record_tick("kid", datetime(2026, 3, 2, 10, 1))
        store.record_tick("other", datetime(2026, 3, 3, 10, 0))
        assert store.daily_totals("kid") == [
            (date(2026, 3, 2), 2),
            (date(2026, 3, 5), 1),
        ]
