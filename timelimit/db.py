"""SQLite usage ledger — schema, connection, tick inserts and aggregates.

Every row in ``usage`` is one tick. The checker runs once per
``config.CHECK_INTERVAL`` so a tick counts as ``config.TICK_MINUTES`` of use,
which makes counting rows the same as counting minutes.
"""

import logging
import sqlite3
from datetime import date, datetime
from pathlib import Path

from timelimit.config import DB_PATH
from timelimit.errors import StorageError

log = logging.getLogger(__name__)

_TABLE = "usage"

_SCHEMA = [
    """CREATE TABLE usage (
        id INTEGER PRIMARY KEY,
        user VARCHAR(20) NOT NULL,
        day DATE NOT NULL,
        timestamp DATETIME NOT NULL
    )""",
    "CREATE INDEX user_index ON usage(user)",
    "CREATE INDEX day_index ON usage(day)",
]


class UsageStore:
    """Append-only store of usage ticks.

    Usage:
        store = UsageStore()
        store.open()
        ...
        store.close()

    Or as a context manager:
        with UsageStore() as store:
            ...
    """

    def __init__(self, path: Path | None = None):
        self.path = path or DB_PATH
        self._conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ── lifecycle ───────────────────────────────────────────────────────

    def open(self) -> None:
        """Open the database and ensure the schema exists."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), timeout=10.0)
            self._conn.execute("PRAGMA busy_timeout=5000")
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"cannot open {self.path}: {e}") from e
        log.debug("opening %s", self.path)
        self.ensure_schema()

    def close(self) -> None:
        """Close the database connection safely."""
        if self._conn:
            try:
                self._conn.close()
            except sqlite3.Error:
                log.exception("error during database close")
            finally:
                self._conn = None

    def _ensure_conn(self) -> sqlite3.Connection:
        """Return the active connection, raising if closed."""
        if self._conn is None:
            raise RuntimeError("database is not open — call .open() first")
        return self._conn

    def ensure_schema(self) -> None:
        """Create the usage table and its indexes unless a table of that name exists."""
        conn = self._ensure_conn()
        try:
            row = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (_TABLE,),
            ).fetchone()
            if row is not None:
                log.debug("table %s exists", _TABLE)
                return
            with conn:
                for statement in _SCHEMA:
                    log.debug(statement)
                    conn.execute(statement)
        except sqlite3.Error as e:
            raise StorageError(f"cannot create schema: {e}") from e
        log.info("created table %s in %s", _TABLE, self.path)

    # ── writes ──────────────────────────────────────────────────────────

    def record_tick(self, user: str, now: datetime | None = None) -> None:
        """Append one usage event for ``user`` stamped with the local time."""
        now = now or datetime.now()
        conn = self._ensure_conn()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO usage (user, day, timestamp) VALUES (?, ?, ?)",
                    (user, now.date().isoformat(), now.strftime("%Y-%m-%d %H:%M:%S")),
                )
        except sqlite3.Error as e:
            raise StorageError(f"unable to update time for {user}: {e}") from e

    # ── reads ───────────────────────────────────────────────────────────

    def count_today(self, user: str, today: date | None = None) -> int:
        """Number of ticks recorded for ``user`` on ``today`` (local date)."""
        today = today or date.today()
        conn = self._ensure_conn()
        try:
            cur = conn.execute(
                "SELECT COUNT(*) FROM usage WHERE user = ? AND day = ?",
                (user, today.isoformat()),
            )
            return int(cur.fetchone()[0])
        except sqlite3.Error as e:
            raise StorageError(f"unable to read usage for {user}: {e}") from e

    def daily_totals(self, user: str) -> list[tuple[date, int]]:
        """(day, ticks) for every recorded day of ``user``, oldest first."""
        conn = self._ensure_conn()
        try:
            cur = conn.execute(
                "SELECT day, COUNT(*) FROM usage WHERE user = ? "
                "GROUP BY day ORDER BY day",
                (user,),
            )
            rows = cur.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"unable to read daily totals for {user}: {e}") from e
        return [(date.fromisoformat(day), count) for day, count in rows]

    def count(self) -> int:
        """Return the total number of recorded ticks."""
        conn = self._ensure_conn()
        try:
            return conn.execute("SELECT COUNT(*) FROM usage").fetchone()[0]
        except sqlite3.Error as e:
            raise StorageError(f"unable to count usage: {e}") from e
