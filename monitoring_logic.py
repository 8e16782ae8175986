"""
Reconciliation core for the app budget agent.

Pure, timestamp-driven decisions shared by every event handler:

1. Reset anchor and daily monitoring window.
2. Grace window after a reset.
3. Whether a native "limit reached" callback should be trusted.
4. Debouncing of "one more minute used" ticks.
5. Continuous-usage streak resets and nag notification cooldown.

Nothing in here performs I/O or keeps state between calls. Callers map
absent or malformed persisted values to ``None`` / ``0`` before calling.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

DEFAULT_UNSYNCED_WINDOW_SECONDS = 180.0
DEFAULT_MIN_SYNCED_USAGE_DELAY_SECONDS = 30.0
DEFAULT_USAGE_EVENT_MIN_INTERVAL_SECONDS = 50.0
DEFAULT_CONTINUOUS_MAX_GAP_SECONDS = 120.0

MINUTES_PER_DAY = 24 * 60

REASON_NONE = "none"
REASON_USAGE_NOT_SYNCED = "usage_not_synced"
REASON_USAGE_BELOW_LIMIT = "usage_below_limit"


@dataclass(frozen=True)
class ThresholdIgnoreReason:
    kind: str = REASON_NONE
    elapsed_seconds: Optional[int] = None
    used_minutes: Optional[int] = None
    limit_minutes: Optional[int] = None

    @classmethod
    def none(cls) -> "ThresholdIgnoreReason":
        return cls()

    @classmethod
    def usage_not_synced(cls, elapsed_seconds: int) -> "ThresholdIgnoreReason":
        return cls(kind=REASON_USAGE_NOT_SYNCED, elapsed_seconds=elapsed_seconds)

    @classmethod
    def usage_below_limit(cls, used_minutes: int, limit_minutes: int) -> "ThresholdIgnoreReason":
        return cls(
            kind=REASON_USAGE_BELOW_LIMIT,
            used_minutes=used_minutes,
            limit_minutes=limit_minutes,
        )

    @property
    def should_ignore(self) -> bool:
        return self.kind != REASON_NONE

    def describe(self) -> str:
        if self.kind == REASON_USAGE_NOT_SYNCED:
            return f"usage not synced (elapsed={self.elapsed_seconds}s)"
        if self.kind == REASON_USAGE_BELOW_LIMIT:
            return f"usage below limit (used={self.used_minutes}, limit={self.limit_minutes})"
        return "none"


# ---------------------------------------------------------- RESET SCHEDULE --


def _wall_time(now: datetime, day: date, hour: int, minute: int) -> datetime:
    """``hour:minute`` on ``day`` in the zone ``now`` lives in.

    ``datetime.now().astimezone()`` carries a fixed offset, which is wrong for
    any wall time on the other side of a DST switch. Such values are resolved
    through the system zone instead.
    """
    naive = datetime.combine(day, time(hour, minute))
    tz = now.tzinfo
    if tz is None:
        return naive
    if isinstance(tz, timezone) and now.utcoffset() == now.astimezone().utcoffset():
        return naive.astimezone()
    return naive.replace(tzinfo=tz)


def reset_anchor(now: datetime, reset_hour: int, reset_minute: int) -> datetime:
    """Return the most recent daily reset boundary at or before ``now``."""
    today_reset = _wall_time(now, now.date(), reset_hour, reset_minute)
    if now < today_reset:
        return _wall_time(now, now.date() - timedelta(days=1), reset_hour, reset_minute)
    return today_reset


def reset_interval(now: datetime, reset_hour: int, reset_minute: int) -> Tuple[datetime, datetime]:
    """The current reset period; 23 or 25 hours long on DST switch days."""
    anchor = reset_anchor(now, reset_hour, reset_minute)
    end = _wall_time(now, anchor.date() + timedelta(days=1), reset_hour, reset_minute)
    return anchor, end


def daily_window_end(reset_hour: int, reset_minute: int) -> Tuple[int, int]:
    """End of a repeating daily window starting at ``reset_hour:reset_minute``.

    The window spans 24 hours minus one minute so that start and end never
    coincide; equal start/end collapses the window on some schedulers.
    """
    start_total = reset_hour * 60 + reset_minute
    end_total = (start_total + MINUTES_PER_DAY - 1) % MINUTES_PER_DAY
    return end_total // 60, end_total % 60


# ------------------------------------------------------------ GRACE WINDOW --


def is_within_grace(now: datetime, last_reset: Optional[datetime], grace_seconds: float) -> bool:
    if last_reset is None:
        return False
    delta = (now - last_reset).total_seconds()
    return 0 <= delta < grace_seconds


# ------------------------------------------------------ THRESHOLD RECONCILE --


def usage_threshold_ignore_reason(
    now: datetime,
    last_reset: Optional[datetime],
    threshold_evaluation_start: Optional[datetime] = None,
    usage_updated_at: Optional[datetime] = None,
    has_usage_signal: bool = True,
    used_minutes: Optional[int] = None,
    limit_minutes: int = 0,
    unsynced_window_seconds: float = DEFAULT_UNSYNCED_WINDOW_SECONDS,
    min_synced_usage_delay_seconds: float = DEFAULT_MIN_SYNCED_USAGE_DELAY_SECONDS,
) -> ThresholdIgnoreReason:
    """Decide whether a native "limit reached" callback should be ignored.

    The native threshold is re-armed rather than recreated each day, so it
    can fire on carry-over accounting. This cross-checks the callback
    against the agent's own usage snapshot relative to the latest baseline
    (the reset, or a later rearm when ``threshold_evaluation_start`` is set).
    Past the unsynced window the native signal is trusted so that missing
    reports never leave an app unblocked forever.
    """
    if last_reset is None:
        return ThresholdIgnoreReason.none()

    baseline = last_reset
    if threshold_evaluation_start is not None and threshold_evaluation_start > baseline:
        baseline = threshold_evaluation_start
    elapsed = (now - baseline).total_seconds()
    synced_delay = None
    if usage_updated_at is not None:
        synced_delay = (usage_updated_at - baseline).total_seconds()

    # No report and no minute tick since baseline: zero evidence of usage.
    if synced_delay is None and not has_usage_signal:
        return ThresholdIgnoreReason.usage_not_synced(max(int(elapsed), 0))

    if synced_delay is None or synced_delay < min_synced_usage_delay_seconds:
        if 0 <= elapsed < unsynced_window_seconds:
            return ThresholdIgnoreReason.usage_not_synced(int(elapsed))
        return ThresholdIgnoreReason.none()

    if used_minutes is None:
        return ThresholdIgnoreReason.none()
    if used_minutes < limit_minutes:
        return ThresholdIgnoreReason.usage_below_limit(used_minutes, limit_minutes)
    return ThresholdIgnoreReason.none()


# ---------------------------------------------------------------- DEBOUNCE --


def should_accept_usage_minute_event(
    now: datetime,
    last_accepted_at: Optional[datetime],
    min_interval_seconds: float = DEFAULT_USAGE_EVENT_MIN_INTERVAL_SECONDS,
) -> bool:
    if last_accepted_at is None:
        return True
    delta = (now - last_accepted_at).total_seconds()
    if delta < 0:
        return False
    return delta >= min_interval_seconds


# ------------------------------------------------------ CONTINUOUS SESSION --


def should_reset_continuous_session(
    event_index: int,
    active_index: Optional[int],
    last_event_at: Optional[datetime],
    now: datetime,
    max_gap_seconds: float = DEFAULT_CONTINUOUS_MAX_GAP_SECONDS,
) -> bool:
    if active_index is None or active_index != event_index:
        return True
    if last_event_at is None:
        return True
    delta = (now - last_event_at).total_seconds()
    if delta < 0:
        return True
    return delta > max_gap_seconds


def should_notify_for_continuous_usage(
    streak_minutes: int,
    threshold_minutes: int,
    last_notified_at: Optional[datetime],
    now: datetime,
) -> bool:
    """Cooldown equals the threshold itself, so stricter thresholds nag more often."""
    if threshold_minutes <= 0:
        return False
    if streak_minutes < threshold_minutes:
        return False
    if last_notified_at is None:
        return True
    delta = (now - last_notified_at).total_seconds()
    if delta < 0:
        return True
    return delta >= threshold_minutes * 60


__all__ = [
    "ThresholdIgnoreReason",
    "REASON_NONE",
    "REASON_USAGE_NOT_SYNCED",
    "REASON_USAGE_BELOW_LIMIT",
    "reset_anchor",
    "reset_interval",
    "daily_window_end",
    "is_within_grace",
    "usage_threshold_ignore_reason",
    "should_accept_usage_minute_event",
    "should_reset_continuous_session",
    "should_notify_for_continuous_usage",
]
