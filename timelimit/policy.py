"""Per-user weekly limit table and the time expressions it is written in.

The limit file is JSON, keyed by user name:

    {
        "kid": [
            ["Mon", "2 hours", "8:30 pm"],
            {"weekday": "Sat", "max_duration": "5 hours", "cutoff_time": "9:30 pm"}
        ]
    }

``max_duration`` is evaluated as an offset from the moment of the check
("5 hours" from now), so the allowance it yields is the same on every check.
The shrinking part of the budget comes from the ticks counted against it.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from timelimit.errors import ConfigError

log = logging.getLogger(__name__)

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_WEEKDAY_ALIASES = {
    name: label
    for label, full in zip(WEEKDAYS, (
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    ))
    for name in (label.lower(), full)
}

_UNITS = {
    "hour": "hours", "hours": "hours", "hr": "hours", "hrs": "hours", "h": "hours",
    "minute": "minutes", "minutes": "minutes", "min": "minutes", "mins": "minutes", "m": "minutes",
    "second": "seconds", "seconds": "seconds", "sec": "seconds", "secs": "seconds", "s": "seconds",
}

_DURATION_PART = re.compile(r"([+-]?\d+)\s*([a-z]+)")
_DURATION_FULL = re.compile(r"^\s*(?:[+-]?\d+\s*[a-z]+\s*)+$")
# "9:30 pm", "9pm", "21:30", "21:30:00"; a bare number or a date is not a clock time
_CLOCK_TIME = re.compile(
    r"^\s*\d{1,2}(?::\d{2}(?::\d{2})?\s*(?:[ap]\.?m\.?)?|\s*[ap]\.?m\.?)\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class PolicyEntry:
    """One weekday's limits for a user."""
    weekday: str
    max_duration: str
    cutoff_time: str

    def describe(self) -> str:
        return f"{self.weekday}, {self.max_duration}, until {self.cutoff_time}"


class PolicyTable:
    """Read-only mapping of user → weekly limits."""

    def __init__(self, entries: dict[str, list[PolicyEntry]] | None = None):
        self._entries = {user: tuple(items) for user, items in (entries or {}).items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user: str) -> bool:
        return user in self._entries

    @property
    def users(self) -> list[str]:
        return sorted(self._entries)

    def lookup(self, user: str, weekday: str) -> PolicyEntry | None:
        """Return the user's entry for ``weekday``, or None when there is none.

        When a user has several entries for the same weekday the first one wins.
        """
        for entry in self._entries.get(user, ()):
            if entry.weekday == weekday:
                return entry
        return None


# ── loading ─────────────────────────────────────────────────────────────


def normalize_weekday(value: str) -> str:
    """Map "monday", "MON", "Mon" → "Mon"."""
    label = _WEEKDAY_ALIASES.get(str(value).strip().lower())
    if label is None:
        raise ConfigError(f"unknown weekday: {value!r}")
    return label


def _parse_entry(user: str, raw) -> PolicyEntry:
    if isinstance(raw, dict):
        try:
            weekday, duration, cutoff = raw["weekday"], raw["max_duration"], raw["cutoff_time"]
        except KeyError as e:
            raise ConfigError(f"limit for {user!r} is missing {e.args[0]!r}") from e
    elif isinstance(raw, (list, tuple)) and len(raw) == 3:
        weekday, duration, cutoff = raw
    else:
        raise ConfigError(f"limit for {user!r} must be [weekday, max_duration, cutoff_time]: {raw!r}")

    if not isinstance(duration, str) or not isinstance(cutoff, str):
        raise ConfigError(f"limit for {user!r} must use string expressions: {raw!r}")
    return PolicyEntry(normalize_weekday(weekday), duration.strip(), cutoff.strip())


def parse_policies(data, strict: bool = True) -> PolicyTable:
    """Build a PolicyTable from decoded JSON.

    With ``strict`` a user listing the same weekday twice is rejected instead of
    letting the later entry be shadowed.
    """
    if not isinstance(data, dict):
        raise ConfigError("limit file must contain an object keyed by user name")

    table: dict[str, list[PolicyEntry]] = {}
    for user, raw_entries in data.items():
        if not isinstance(raw_entries, list):
            raise ConfigError(f"limits for {user!r} must be a list")
        entries = [_parse_entry(user, raw) for raw in raw_entries]
        seen: set[str] = set()
        for entry in entries:
            if entry.weekday in seen:
                if strict:
                    raise ConfigError(f"{user!r} has more than one limit for {entry.weekday}")
                log.warning("%s has more than one limit for %s; using the first", user, entry.weekday)
            seen.add(entry.weekday)
        table[user] = entries
    return PolicyTable(table)


def load_policies(path: Path, strict: bool = True) -> PolicyTable:
    """Load the limit table from ``path``. A missing file means no limits."""
    if not path.exists():
        log.debug("no limit file at %s", path)
        return PolicyTable()
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot read limit file {path}: {e}") from e
    table = parse_policies(data, strict=strict)
    log.debug("loaded limits for %d users from %s", len(table), path)
    return table


# ── time expressions ───────────────────────────────────────────────────


def weekday_label(now: datetime) -> str:
    return WEEKDAYS[now.weekday()]


def round_minutes(seconds: float) -> int:
    """Seconds → whole minutes, rounding halves away from zero."""
    minutes = seconds / 60
    return int(math.copysign(math.floor(abs(minutes) + 0.5), minutes))


def parse_relative(expr: str, now: datetime) -> datetime:
    """Resolve a relative expression such as "5 hours" or "1 hour 30 min" from ``now``."""
    text = expr.strip().lower()
    if not _DURATION_FULL.match(text):
        raise ConfigError(f"cannot parse duration: {expr!r}")
    delta = relativedelta()
    for amount, unit in _DURATION_PART.findall(text):
        field = _UNITS.get(unit)
        if field is None:
            raise ConfigError(f"unknown unit {unit!r} in duration {expr!r}")
        delta += relativedelta(**{field: int(amount)})
    return now + delta


def parse_time_of_day(expr: str, now: datetime) -> datetime:
    """Resolve a clock time such as "9:30 pm" to that time on ``now``'s date."""
    if not _CLOCK_TIME.match(expr):
        raise ConfigError(f"cannot parse time of day: {expr!r}")
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        parsed = date_parser.parse(expr, default=midnight)
    except (ValueError, OverflowError) as e:
        raise ConfigError(f"cannot parse time of day: {expr!r}") from e
    return datetime.combine(now.date(), parsed.time())


def allowed_minutes_from_now(duration: str, now: datetime) -> int:
    """Minutes between ``now`` and ``duration`` from now."""
    return round_minutes((parse_relative(duration, now) - now).total_seconds())


def minutes_until(cutoff: str, now: datetime) -> int:
    """Minutes from ``now`` until today's ``cutoff``; negative once it has passed."""
    return round_minutes((parse_time_of_day(cutoff, now) - now).total_seconds())
