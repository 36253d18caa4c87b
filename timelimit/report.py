"""Daily usage report — gap-filled series of minutes per day for one user."""

import json
from datetime import date, timedelta

import timelimit.config as config
from timelimit.db import UsageStore

BAR_WIDTH = 30


class DailyAggregator:
    """Builds the daily usage series from the usage store."""

    def __init__(self, store: UsageStore):
        self.store = store

    def build_series(self, user: str) -> dict[date, int]:
        """Minutes per day from the first to the last recorded day, missing days as 0."""
        totals = self.store.daily_totals(user)
        if not totals:
            return {}

        counts = dict(totals)
        first, last = min(counts), max(counts)
        series: dict[date, int] = {}
        day = first
        while day <= last:
            series[day] = counts.get(day, 0) * config.TICK_MINUTES
            day += timedelta(days=1)
        return series


def fmt_minutes(minutes: int) -> str:
    h, m = divmod(int(minutes), 60)
    if h:
        return f"{h}h {m:02d}m"
    return f"{m}m"


def render_json(series: dict[date, int]) -> str:
    return json.dumps({day.isoformat(): minutes for day, minutes in series.items()}, indent=2)


def render_text(user: str, series: dict[date, int]) -> str:
    if not series:
        return f"No usage recorded for {user}."

    total = sum(series.values())
    peak = max(series.values()) or 1
    first, last = next(iter(series)), next(reversed(series))

    lines = [
        "",
        "=" * 60,
        f"  Usage — {user}",
        f"  {first:%a %d %b %Y} to {last:%a %d %b %Y}",
        "=" * 60,
        "",
        f"  Total        {fmt_minutes(total)}",
        f"  Daily avg    {fmt_minutes(round(total / len(series)))}",
        f"  {'─' * 56}",
        "",
    ]
    for day, minutes in series.items():
        bar_len = int(minutes / peak * BAR_WIDTH)
        bar = "█" * bar_len + "░" * (BAR_WIDTH - bar_len)
        lines.append(f"  {day:%a %Y-%m-%d}  {bar} {fmt_minutes(minutes):>8s}")
    lines.append("")
    return "\n".join(lines)
