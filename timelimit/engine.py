"""Limit engine — one usage check per invocation.

Resolve the console user and today's limit, record a tick, then decide
between doing nothing, warning, and ending the session.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import timelimit.config as config
from timelimit.db import UsageStore
from timelimit.errors import CapabilityError, ConfigError, NoConsoleUserError, StorageError
from timelimit.policy import (
    PolicyEntry,
    PolicyTable,
    allowed_minutes_from_now,
    minutes_until,
    weekday_label,
)
from timelimit.session import SessionControl

log = logging.getLogger(__name__)

REASON_CUTOFF = "cutoff"
REASON_BUDGET = "budget"


@dataclass(frozen=True)
class UsageSnapshot:
    """Usage figures for one check, all in minutes."""
    user: str
    usage_minutes_today: int
    max_minutes: int
    minutes_until_cutoff: int

    @property
    def minutes_of_budget_remaining(self) -> int:
        return self.max_minutes - self.usage_minutes_today

    @property
    def remaining(self) -> int:
        return min(self.minutes_of_budget_remaining, self.minutes_until_cutoff)


@dataclass(frozen=True)
class Decision:
    warn_minutes: int | None
    enforce: bool
    reason: str | None = None


def should_warn(remain: int) -> bool:
    """True at 30, 25, 20, 15, 10, 5 and 1 minutes remaining."""
    if remain == 1:
        return True
    return 0 < remain <= config.WARNING_WINDOW and remain % config.WARNING_STEP == 0


def evaluate(usage: int, max_minutes: int, expire_minutes: int) -> Decision:
    """Decide what a check should do. Warning and enforcement are independent."""
    remain = min(max_minutes - usage, expire_minutes)
    warn = remain if should_warn(remain) else None
    if expire_minutes <= 0:
        return Decision(warn, True, REASON_CUTOFF)
    if usage >= max_minutes:
        return Decision(warn, True, REASON_BUDGET)
    return Decision(warn, False)


class LimitEngine:
    """Runs the usage check for whoever is at the console."""

    def __init__(
        self,
        store: UsageStore,
        policies: PolicyTable,
        session: SessionControl,
        clock: Callable[[], datetime] = datetime.now,
        grace_seconds: float = config.GRACE_SECONDS,
        action: str = config.ENFORCE_ACTION,
        speak_warnings: bool = config.SPEAK_WARNINGS,
    ):
        if action not in ("logout", "sleep"):
            raise ConfigError(f"unknown enforcement action: {action!r}")
        self.store = store
        self.policies = policies
        self.session = session
        self.clock = clock
        self.grace_seconds = grace_seconds
        self.action = action
        self.speak_warnings = speak_warnings

    def update(self) -> UsageSnapshot | None:
        """Run one check. Returns the usage snapshot, or None when no limit applies today."""
        try:
            user = self.session.current_user()
        except NoConsoleUserError as e:
            log.debug("idle: %s", e)
            return None
        now = self.clock()
        policy = self.policies.lookup(user, weekday_label(now))
        if policy is None:
            log.debug("no limit for %s on %s", user, weekday_label(now))
            return None

        log.info("user %s has limits: %s", user, policy.describe())
        try:
            self.store.record_tick(user, now)
        except StorageError:
            log.exception("could not record usage for %s", user)

        try:
            usage = self.store.count_today(user, now.date())
        except StorageError:
            log.exception("could not read usage for %s; assuming none", user)
            usage = 0

        snapshot = self._snapshot(user, policy, usage, now)
        self.check_time_limit(policy, snapshot)
        return snapshot

    def _snapshot(self, user: str, policy: PolicyEntry, usage: int, now: datetime) -> UsageSnapshot:
        return UsageSnapshot(
            user=user,
            usage_minutes_today=usage,
            max_minutes=allowed_minutes_from_now(policy.max_duration, now),
            minutes_until_cutoff=minutes_until(policy.cutoff_time, now),
        )

    def check_time_limit(self, policy: PolicyEntry, snapshot: UsageSnapshot) -> Decision:
        log.info(
            "duration remaining: %d minutes. time expires in %d minutes.",
            snapshot.minutes_of_budget_remaining, snapshot.minutes_until_cutoff,
        )
        decision = evaluate(
            snapshot.usage_minutes_today, snapshot.max_minutes, snapshot.minutes_until_cutoff,
        )
        self._write_status(snapshot)

        if decision.warn_minutes is not None:
            self._warn(decision.warn_minutes)

        if decision.enforce:
            if decision.reason == REASON_CUTOFF:
                msg = f"Today’s limit of {policy.cutoff_time} has ended."
            else:
                msg = f"Today’s usage limit of {policy.max_duration} has expired."
            verb = "logout" if self.action == "logout" else "sleep"
            self._enforce(f"{msg} System will {verb} in {self.grace_seconds:g} seconds.")
        return decision

    # ── actions ─────────────────────────────────────────────────────────

    def _write_status(self, snapshot: UsageSnapshot) -> None:
        line = (
            f"Used {snapshot.usage_minutes_today} min today, "
            f"{max(snapshot.remaining, 0)} min remaining"
        )
        try:
            self.session.write_status_line(line)
        except CapabilityError:
            log.exception("could not write status line")

    def _warn(self, remain: int) -> None:
        msg = f"{remain} minutes remaining."
        try:
            self.session.alert(config.ALERT_TITLE, msg)
            if self.speak_warnings:
                self.session.speak(msg)
        except CapabilityError:
            log.exception("could not show warning")

    def _enforce(self, msg: str) -> None:
        log.warning("enforcing limit: %s", msg)
        started = time.monotonic()
        try:
            self.session.notify(config.ALERT_TITLE, msg)
            self.session.alert(config.ALERT_TITLE, msg)
        except CapabilityError:
            log.exception("could not show enforcement alert")

        remaining = self.grace_seconds - (time.monotonic() - started)
        if remaining > 0:
            time.sleep(remaining)

        if self.action == "sleep":
            self.session.sleep_system()
        else:
            self.session.force_logout()
