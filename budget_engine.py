"""
Event handling and reconciliation for the app budget agent.

The engine turns monitoring callbacks, minute ticks and usage reports into
block / unblock / rearm / notify decisions. Every decision is taken from the
persisted ``BudgetState`` plus the pure checks in ``monitoring_logic``; the
engine talks to the outside world only through a ``DecisionSink``.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import monitoring_logic as logic
from budget_state import (
    KEY_APP_LIMITS,
    KEY_BLOCKED_TARGETS,
    KEY_CONTINUOUS_ACTIVE_INDEX,
    KEY_CONTINUOUS_ALERT_LIMITS,
    KEY_CONTINUOUS_LAST_EVENT_AT,
    KEY_CONTINUOUS_LAST_NOTIFIED_AT,
    KEY_CONTINUOUS_USAGE,
    KEY_LAST_REARM_AT,
    KEY_LAST_RESET_AT,
    KEY_MONITORING_ENABLED,
    KEY_ORDERED_TARGETS,
    KEY_REPORT_LAST_RUN_AT,
    KEY_SELECTED_TARGETS,
    KEY_USAGE_EVENT_ACCEPTED_AT,
    KEY_USAGE_MINUTES,
    KEY_USAGE_UPDATED_AT,
    BudgetState,
    dual_read_first,
    dual_read_max,
    dual_remove,
    dual_write,
    index_key,
)

logger = logging.getLogger("app-budget-agent.engine")

MONITOR_NAME = "daily-monitor"
LIMIT_EVENT_PREFIX = "limit_idx_"
USAGE_EVENT_PREFIX = "usage_idx_"

OUTCOME_GRACE = "grace"
OUTCOME_IGNORED = "ignored"
OUTCOME_BLOCKED = "blocked"
OUTCOME_ACCEPTED = "accepted"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_UNRESOLVED = "unresolved"
OUTCOME_UNKNOWN = "unknown"

SYNC_FRESH = "fresh"
SYNC_WARMING_UP = "warming_up"
SYNC_DELAYED = "delayed"


def _now_local() -> datetime:
    return datetime.now().astimezone()


class RearmError(RuntimeError):
    """Raised by a sink when the monitor registration could not be refreshed."""


@dataclass(frozen=True)
class MonitorSchedule:
    interval_start: Tuple[int, int]
    interval_end: Tuple[int, int]
    repeats: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interval_start": "%02d:%02d" % self.interval_start,
            "interval_end": "%02d:%02d" % self.interval_end,
            "repeats": self.repeats,
        }


@dataclass(frozen=True)
class ThresholdEvent:
    target: str
    threshold_minutes: int
    includes_past_activity: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "threshold_minutes": self.threshold_minutes,
            "includes_past_activity": self.includes_past_activity,
        }


class DecisionSink(ABC):
    """Outbound collaborator: the OS-level blocker, monitor and notifier."""

    @abstractmethod
    def block(self, target: str) -> None:
        ...

    @abstractmethod
    def unblock(self, target: str) -> None:
        ...

    @abstractmethod
    def rearm(self, schedule: MonitorSchedule, events: Dict[str, ThresholdEvent]) -> None:
        """Register the monitor; raise ``RearmError`` when that fails."""

    @abstractmethod
    def notify(self, target: str, index: int, streak_minutes: int, threshold_minutes: int) -> None:
        ...


@dataclass
class EngineSettings:
    default_limit_minutes: int = 30
    reset_grace_seconds: float = 30
    unsynced_threshold_ignore_window_seconds: float = logic.DEFAULT_UNSYNCED_WINDOW_SECONDS
    min_synced_usage_delay_seconds: float = logic.DEFAULT_MIN_SYNCED_USAGE_DELAY_SECONDS
    usage_event_min_interval_seconds: float = logic.DEFAULT_USAGE_EVENT_MIN_INTERVAL_SECONDS
    continuous_session_max_gap_seconds: float = logic.DEFAULT_CONTINUOUS_MAX_GAP_SECONDS
    rearm_cooldown_seconds: float = 30
    sync_stale_threshold_seconds: float = 180
    continuous_tracking_enabled: bool = True
    rearm_baseline_enabled: bool = True


@dataclass(frozen=True)
class UsageSegment:
    start: datetime
    end: datetime
    seconds_by_target: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncStatus:
    state: str
    usage_updated_at: Optional[datetime]
    blocked: List[str]
    reset_ran: bool


def _parse_index(name: str, prefix: str) -> Optional[int]:
    try:
        index = int(name[len(prefix):])
    except ValueError:
        return None
    return index if index >= 0 else None


class BudgetEngine:
    def __init__(
        self,
        state: BudgetState,
        sink: DecisionSink,
        settings: Optional[EngineSettings] = None,
    ):
        self.state = state
        self.sink = sink
        self.settings = settings or EngineSettings()
        self.last_threshold_decision: Optional[Dict[str, Any]] = None
        self._sync_warmup_until: Optional[datetime] = None
        self._was_sync_delayed = False

    # ------------------------------------------------------------ LIFECYCLE --

    def resume(self, now: Optional[datetime] = None) -> None:
        """Normalize state on startup (the foreground path of the app)."""
        now = now or _now_local()
        self.ensure_reset_anchor(now)
        if self.state.get_bool(KEY_MONITORING_ENABLED):
            self._sync_warmup_until = now + timedelta(seconds=self.settings.sync_stale_threshold_seconds)
        self.state.save()

    def arm_monitoring(
        self,
        targets: Iterable[str],
        limits: Optional[Dict[str, int]] = None,
        continuous_alert_limits: Optional[Dict[str, int]] = None,
        reset_hour: int = 0,
        reset_minute: int = 0,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or _now_local()
        ordered = sorted(set(targets))
        if not ordered:
            raise ValueError("At least one app must be selected to start monitoring.")
        if not 0 <= reset_hour <= 23 or not 0 <= reset_minute <= 59:
            raise ValueError(f"Invalid reset time {reset_hour}:{reset_minute}.")
        limits = limits or {}
        continuous_alert_limits = continuous_alert_limits or {}

        self.state.set_reset_time(reset_hour, reset_minute)
        self.reset_if_needed(now)

        app_limits: Dict[str, int] = {}
        alert_limits: Dict[str, int] = {}
        events: Dict[str, ThresholdEvent] = {}
        for index, target in enumerate(ordered):
            limit = int(limits.get(target, self.settings.default_limit_minutes))
            dual_write(app_limits, index, target, limit)
            dual_write(alert_limits, index, target, max(int(continuous_alert_limits.get(target, 0)), 0))
            events[f"{LIMIT_EVENT_PREFIX}{index}"] = ThresholdEvent(
                target, limit, includes_past_activity=False
            )
        self.state.set_str_list(KEY_SELECTED_TARGETS, ordered)
        self.state.set_str_list(KEY_ORDERED_TARGETS, ordered)
        self.state.set_int_map(KEY_APP_LIMITS, app_limits)
        self.state.set_int_map(KEY_CONTINUOUS_ALERT_LIMITS, alert_limits)

        logger.info("Requesting monitoring start for %d app(s).", len(ordered))
        self._clear_blocks()
        self.state.set_timestamp(
            KEY_LAST_RESET_AT, logic.reset_anchor(now, reset_hour, reset_minute)
        )
        self.state.save()
        self.sink.rearm(self._schedule(), events)

        self.state.set_timestamp(KEY_LAST_REARM_AT, now)
        self.state.set_bool(KEY_MONITORING_ENABLED, True)
        self._sync_warmup_until = now + timedelta(seconds=self.settings.sync_stale_threshold_seconds)
        self._was_sync_delayed = False
        self.state.save()
        logger.info("Monitoring started.")

    def stop_monitoring(self) -> None:
        self._clear_blocks()
        self.state.set_bool(KEY_MONITORING_ENABLED, False)
        self._sync_warmup_until = None
        self._was_sync_delayed = False
        self.state.save()
        logger.info("Monitoring stopped.")

    @property
    def monitoring_enabled(self) -> bool:
        return self.state.get_bool(KEY_MONITORING_ENABLED)

    # ---------------------------------------------------------------- RESET --

    def ensure_reset_anchor(self, now: Optional[datetime] = None) -> None:
        now = now or _now_local()
        if self.state.get_timestamp(KEY_LAST_RESET_AT) is None:
            hour, minute = self.state.reset_time()
            self.state.set_timestamp(KEY_LAST_RESET_AT, logic.reset_anchor(now, hour, minute))

    def reset_if_needed(self, now: Optional[datetime] = None) -> bool:
        now = now or _now_local()
        hour, minute = self.state.reset_time()
        anchor = logic.reset_anchor(now, hour, minute)
        last_reset = self.state.get_timestamp(KEY_LAST_RESET_AT)
        if last_reset is not None and last_reset >= anchor:
            logger.debug("Reset skipped (anchor=%s, last_reset=%s)", anchor, last_reset)
            return False

        self._clear_blocks()
        self.state.remove(KEY_USAGE_MINUTES)
        self.state.remove(KEY_USAGE_UPDATED_AT)
        self.state.remove(KEY_USAGE_EVENT_ACCEPTED_AT)
        self.state.clear_continuous_usage()
        self.state.set_timestamp(KEY_LAST_RESET_AT, anchor)
        logger.info("Daily reset ran (anchor=%s, last_reset_before=%s)", anchor, last_reset)
        return True

    def interval_did_start(self, now: Optional[datetime] = None) -> bool:
        ran = self.reset_if_needed(now)
        self.state.save()
        return ran

    def interval_did_end(self) -> None:
        logger.info("Monitoring interval ended.")

    # --------------------------------------------------------------- EVENTS --

    def handle_event(self, name: str, now: Optional[datetime] = None) -> str:
        now = now or _now_local()
        # A tick past the boundary must not count against yesterday.
        self.reset_if_needed(now)
        last_reset = self.state.get_timestamp(KEY_LAST_RESET_AT)
        if logic.is_within_grace(now, last_reset, self.settings.reset_grace_seconds):
            logger.info("Ignoring event %s within reset grace window.", name)
            self.rearm_monitoring_if_needed(f"grace_{name}", now)
            self.state.save()
            return OUTCOME_GRACE

        if name.startswith(USAGE_EVENT_PREFIX):
            index = _parse_index(name, USAGE_EVENT_PREFIX)
            outcome = OUTCOME_UNKNOWN if index is None else self._handle_usage_minute_event(name, index, now)
        elif name.startswith(LIMIT_EVENT_PREFIX):
            index = _parse_index(name, LIMIT_EVENT_PREFIX)
            outcome = OUTCOME_UNKNOWN if index is None else self._handle_limit_event(name, index, now)
        else:
            outcome = OUTCOME_UNKNOWN
        if outcome == OUTCOME_UNKNOWN:
            logger.warning("Ignoring unrecognized event %r.", name)
        self.state.save()
        return outcome

    def threshold_ignore_reason(
        self, index: int, target: str, now: datetime
    ) -> logic.ThresholdIgnoreReason:
        evaluation_start = None
        if self.settings.rearm_baseline_enabled:
            evaluation_start = self.state.get_timestamp(KEY_LAST_REARM_AT)
        accepted = self.state.get_timestamp_map(KEY_USAGE_EVENT_ACCEPTED_AT)
        used: Optional[int] = None
        if self.state.has_map(KEY_USAGE_MINUTES):
            used = dual_read_max(self.state.get_int_map(KEY_USAGE_MINUTES), index, target)
        return logic.usage_threshold_ignore_reason(
            now=now,
            last_reset=self.state.get_timestamp(KEY_LAST_RESET_AT),
            threshold_evaluation_start=evaluation_start,
            usage_updated_at=self.state.get_timestamp(KEY_USAGE_UPDATED_AT),
            has_usage_signal=index_key(index) in accepted,
            used_minutes=used,
            limit_minutes=self._limit_for(index, target),
            unsynced_window_seconds=self.settings.unsynced_threshold_ignore_window_seconds,
            min_synced_usage_delay_seconds=self.settings.min_synced_usage_delay_seconds,
        )

    def _handle_limit_event(self, name: str, index: int, now: datetime) -> str:
        target = self._resolve_target(index)
        if target is None:
            logger.warning("Could not resolve target for event %s.", name)
            return OUTCOME_UNRESOLVED

        reason = self.threshold_ignore_reason(index, target, now)
        self.last_threshold_decision = {
            "event": name,
            "target": target,
            "reason": reason.kind,
            "detail": reason.describe(),
            "at": now.isoformat(),
        }
        if reason.should_ignore:
            logger.info("Ignoring threshold %s for %s: %s", name, target, reason.describe())
            self.rearm_monitoring_if_needed(name, now)
            return OUTCOME_IGNORED

        self._apply_block(target, name)
        # Keep the usage snapshot consistent when only the limit threshold arrived.
        limit = self._limit_for(index, target)
        usage = self.state.get_int_map(KEY_USAGE_MINUTES)
        if dual_read_max(usage, index, target) < limit:
            dual_write(usage, index, target, limit)
            self.state.set_int_map(KEY_USAGE_MINUTES, usage)
            self.state.set_timestamp(KEY_USAGE_UPDATED_AT, now)
            logger.info("Raised usage to limit after threshold: idx=%d, used=%d", index, limit)
        return OUTCOME_BLOCKED

    def _handle_usage_minute_event(self, name: str, index: int, now: datetime) -> str:
        key = index_key(index)
        accepted = self.state.get_timestamp_map(KEY_USAGE_EVENT_ACCEPTED_AT)
        last_accepted = accepted.get(key)
        if not logic.should_accept_usage_minute_event(
            now, last_accepted, self.settings.usage_event_min_interval_seconds
        ):
            if last_accepted is not None:
                delta = int((now - last_accepted).total_seconds())
                logger.info("Skipping duplicate usage event: idx=%d, delta=%ds", index, delta)
            else:
                logger.info("Skipping duplicate usage event: idx=%d", index)
            return OUTCOME_DUPLICATE
        accepted[key] = now
        self.state.set_timestamp_map(KEY_USAGE_EVENT_ACCEPTED_AT, accepted)

        target = self._resolve_target(index)
        if target is None:
            logger.warning("Could not resolve target for usage event %s.", name)
            return OUTCOME_UNRESOLVED

        limit = self._limit_for(index, target)
        usage = self.state.get_int_map(KEY_USAGE_MINUTES)
        current = dual_read_max(usage, index, target)
        updated = min(max(current + 1, 1), limit)
        dual_write(usage, index, target, updated)
        self.state.set_int_map(KEY_USAGE_MINUTES, usage)
        self.state.set_timestamp(KEY_USAGE_UPDATED_AT, now)
        logger.info("Usage synced from minute event: idx=%d, used=%d, limit=%d", index, updated, limit)

        if self.settings.continuous_tracking_enabled:
            self._update_continuous_usage(target, index, now)

        if updated >= limit:
            self._apply_block(target, name)
            return OUTCOME_BLOCKED
        self.rearm_monitoring_if_needed(name, now, cooldown_seconds=0)
        return OUTCOME_ACCEPTED

    # ----------------------------------------------------------- CONTINUOUS --

    def _update_continuous_usage(self, target: str, index: int, now: datetime) -> None:
        usage = self.state.get_int_map(KEY_CONTINUOUS_USAGE)
        notified = self.state.get_timestamp_map(KEY_CONTINUOUS_LAST_NOTIFIED_AT)
        active_index = self.state.get_int(KEY_CONTINUOUS_ACTIVE_INDEX)
        last_event_at = self.state.get_timestamp(KEY_CONTINUOUS_LAST_EVENT_AT)

        if logic.should_reset_continuous_session(
            index, active_index, last_event_at, now,
            self.settings.continuous_session_max_gap_seconds,
        ):
            if active_index is not None and active_index != index:
                previous = self._resolve_target(active_index)
                usage[index_key(active_index)] = 0
                if previous is not None:
                    usage[previous] = 0
                dual_remove(notified, active_index, previous)
                logger.info("Continuous session switched: from=%d, to=%d", active_index, index)
            else:
                logger.info("Continuous session reset: idx=%d", index)
            dual_write(usage, index, target, 0)
            dual_remove(notified, index, target)

        streak = dual_read_max(usage, index, target) + 1
        dual_write(usage, index, target, streak)
        self.state.set_int_map(KEY_CONTINUOUS_USAGE, usage)
        self.state.set_timestamp(KEY_CONTINUOUS_LAST_EVENT_AT, now)
        self.state.set_int(KEY_CONTINUOUS_ACTIVE_INDEX, index)

        thresholds = self.state.get_int_map(KEY_CONTINUOUS_ALERT_LIMITS)
        threshold = max(dual_read_first(thresholds, index, target) or 0, 0)
        last_notified = dual_read_first(notified, index, target)
        if logic.should_notify_for_continuous_usage(streak, threshold, last_notified, now):
            self.sink.notify(target, index, streak, threshold)
            dual_write(notified, index, target, now)
            logger.info(
                "Continuous usage notification sent: idx=%d, streak=%d, threshold=%d",
                index, streak, threshold,
            )
        self.state.set_timestamp_map(KEY_CONTINUOUS_LAST_NOTIFIED_AT, notified)

    # ---------------------------------------------------------------- REARM --

    def rearm_monitoring_if_needed(
        self,
        reason: str,
        now: Optional[datetime] = None,
        cooldown_seconds: Optional[float] = None,
    ) -> bool:
        now = now or _now_local()
        if cooldown_seconds is None:
            cooldown_seconds = self.settings.rearm_cooldown_seconds
        last_rearm = self.state.get_timestamp(KEY_LAST_REARM_AT)
        if (
            cooldown_seconds > 0
            and last_rearm is not None
            and (now - last_rearm).total_seconds() < cooldown_seconds
        ):
            logger.info("Skipping monitor rearm (cooldown): reason=%s", reason)
            return False

        targets = self._targets_for_monitoring()
        if not targets:
            logger.warning("Aborting monitor rearm (no targets): reason=%s", reason)
            return False

        usage = self.state.get_int_map(KEY_USAGE_MINUTES)
        events: Dict[str, ThresholdEvent] = {}
        for index, target in enumerate(targets):
            limit = self._limit_for(index, target)
            # Rearm keeps counting the current day's usage.
            events[f"{LIMIT_EVENT_PREFIX}{index}"] = ThresholdEvent(
                target, limit, includes_past_activity=True
            )
            if dual_read_max(usage, index, target) < limit:
                # One newly consumed minute after each rearm.
                events[f"{USAGE_EVENT_PREFIX}{index}"] = ThresholdEvent(
                    target, 1, includes_past_activity=False
                )
        self.state.set_str_list(KEY_ORDERED_TARGETS, targets)

        try:
            self.sink.rearm(self._schedule(), events)
        except RearmError as exc:
            logger.error("Monitor rearm failed: reason=%s, error=%s", reason, exc)
            return False
        self.state.set_timestamp(KEY_LAST_REARM_AT, now)
        logger.info("Monitor re-registered: reason=%s", reason)
        return True

    # --------------------------------------------------------- USAGE REPORT --

    def ingest_usage_report(
        self, segments: Iterable[UsageSegment], now: Optional[datetime] = None
    ) -> Dict[str, int]:
        now = now or _now_local()
        self.reset_if_needed(now)
        self.state.set_timestamp(KEY_REPORT_LAST_RUN_AT, now)
        hour, minute = self.state.reset_time()
        period_start, period_end = logic.reset_interval(now, hour, minute)
        index_by_target = {target: index for index, target in enumerate(self._targets_for_monitoring())}

        usage_seconds: Dict[str, float] = {}
        indexed_matches = 0
        for segment in segments:
            duration = (segment.end - segment.start).total_seconds()
            if duration <= 0:
                continue
            overlap_start = max(period_start, segment.start)
            overlap_end = min(period_end, segment.end)
            if overlap_end <= overlap_start:
                continue
            ratio = (overlap_end - overlap_start).total_seconds() / duration
            for target, seconds in segment.seconds_by_target.items():
                if not math.isfinite(seconds):
                    logger.warning("Skipping non-finite usage for %s in report.", target)
                    continue
                portion = max(float(seconds), 0.0) * ratio
                usage_seconds[target] = usage_seconds.get(target, 0.0) + portion
                index = index_by_target.get(target)
                if index is not None:
                    key = index_key(index)
                    usage_seconds[key] = usage_seconds.get(key, 0.0) + portion
                    indexed_matches += 1

        reported = {key: int(seconds // 60) for key, seconds in usage_seconds.items()}
        usage = self.state.get_int_map(KEY_USAGE_MINUTES)
        for key, minutes in reported.items():
            usage[key] = max(usage.get(key, 0), minutes)
        self.state.set_int_map(KEY_USAGE_MINUTES, usage)
        self.state.set_timestamp(KEY_USAGE_UPDATED_AT, now)
        self.state.save()
        logger.info(
            "Usage report synced: keys=%d, idx_match=%d, ordered=%d",
            len(reported), indexed_matches, len(index_by_target),
        )
        return reported

    # ------------------------------------------------------------ RECONCILE --

    def sync_usage(self, now: Optional[datetime] = None) -> SyncStatus:
        now = now or _now_local()
        reset_ran = self.reset_if_needed(now)
        updated_at = self.state.get_timestamp(KEY_USAGE_UPDATED_AT)
        fresh = (
            updated_at is not None
            and (now - updated_at).total_seconds() <= self.settings.sync_stale_threshold_seconds
        )
        if fresh:
            sync_state = SYNC_FRESH
            self._sync_warmup_until = None
            if self._was_sync_delayed:
                logger.info("Usage sync recovered from delay.")
                self._was_sync_delayed = False
        elif self._sync_warmup_until is not None and now < self._sync_warmup_until:
            sync_state = SYNC_WARMING_UP
        else:
            sync_state = SYNC_DELAYED
            if not self._was_sync_delayed:
                logger.warning("Usage sync is delayed (last update %s).", updated_at)
                self._was_sync_delayed = True

        blocked = self.reconcile_blocks()
        self.state.save()
        return SyncStatus(sync_state, updated_at, blocked, reset_ran)

    def reconcile_blocks(self) -> List[str]:
        """Rebuild the blocked set from persisted usage so missed events cannot leave a gap."""
        blocked = self.state.get_str_list(KEY_BLOCKED_TARGETS)
        usage = self.state.get_int_map(KEY_USAGE_MINUTES)
        for index, target in enumerate(self._targets_for_monitoring()):
            used = dual_read_max(usage, index, target)
            limit = self._limit_for(index, target)
            if used >= limit and target not in blocked:
                blocked.append(target)
                logger.info("Reconciled block for %s (used=%d, limit=%d)", target, used, limit)
        self.state.set_str_list(KEY_BLOCKED_TARGETS, blocked)
        for target in blocked:
            self.sink.block(target)
        return blocked

    # -------------------------------------------------------------- QUERIES --

    def targets(self) -> List[str]:
        return self._targets_for_monitoring()

    def used_minutes(self, target: str) -> int:
        index = self._index_of(target)
        usage = self.state.get_int_map(KEY_USAGE_MINUTES)
        if index is None:
            return usage.get(target, 0)
        return dual_read_max(usage, index, target)

    def limit_minutes(self, target: str) -> int:
        index = self._index_of(target)
        if index is None:
            limit = self.state.get_int_map(KEY_APP_LIMITS).get(target)
            return self.settings.default_limit_minutes if limit is None else limit
        return self._limit_for(index, target)

    def continuous_alert_minutes(self, target: str) -> int:
        thresholds = self.state.get_int_map(KEY_CONTINUOUS_ALERT_LIMITS)
        index = self._index_of(target)
        if index is None:
            return thresholds.get(target, 0)
        return dual_read_first(thresholds, index, target) or 0

    def remaining_minutes(self, target: str) -> int:
        return max(self.limit_minutes(target) - self.used_minutes(target), 0)

    def is_blocked(self, target: str) -> bool:
        return target in self.state.get_str_list(KEY_BLOCKED_TARGETS)

    def status_snapshot(self) -> Dict[str, Any]:
        streaks = self.state.get_int_map(KEY_CONTINUOUS_USAGE)
        apps = []
        for index, target in enumerate(self._targets_for_monitoring()):
            apps.append({
                "id": target,
                "index": index,
                "used_minutes": self.used_minutes(target),
                "limit_minutes": self.limit_minutes(target),
                "remaining_minutes": self.remaining_minutes(target),
                "blocked": self.is_blocked(target),
                "continuous_minutes": dual_read_max(streaks, index, target),
            })
        last_reset = self.state.get_timestamp(KEY_LAST_RESET_AT)
        updated_at = self.state.get_timestamp(KEY_USAGE_UPDATED_AT)
        return {
            "monitoring": self.monitoring_enabled,
            "apps": apps,
            "last_reset_at": last_reset.isoformat() if last_reset else None,
            "usage_updated_at": updated_at.isoformat() if updated_at else None,
            "last_threshold_decision": self.last_threshold_decision,
        }

    # ------------------------------------------------------------- INTERNAL --

    def _targets_for_monitoring(self) -> List[str]:
        ordered = self.state.get_str_list(KEY_ORDERED_TARGETS)
        if ordered:
            return ordered
        return sorted(self.state.get_str_list(KEY_SELECTED_TARGETS))

    def _resolve_target(self, index: int) -> Optional[str]:
        targets = self._targets_for_monitoring()
        if 0 <= index < len(targets):
            return targets[index]
        return None

    def _index_of(self, target: str) -> Optional[int]:
        targets = self._targets_for_monitoring()
        return targets.index(target) if target in targets else None

    def _limit_for(self, index: int, target: str) -> int:
        limit = dual_read_first(self.state.get_int_map(KEY_APP_LIMITS), index, target)
        return self.settings.default_limit_minutes if limit is None else limit

    def _schedule(self) -> MonitorSchedule:
        hour, minute = self.state.reset_time()
        return MonitorSchedule((hour, minute), logic.daily_window_end(hour, minute), repeats=True)

    def _apply_block(self, target: str, reason: str) -> None:
        blocked = self.state.get_str_list(KEY_BLOCKED_TARGETS)
        if target not in blocked:
            blocked.append(target)
            self.state.set_str_list(KEY_BLOCKED_TARGETS, blocked)
        self.sink.block(target)
        logger.info("Threshold reached: %s, blocked=%d", reason, len(blocked))

    def _clear_blocks(self) -> None:
        for target in self.state.get_str_list(KEY_BLOCKED_TARGETS):
            self.sink.unblock(target)
        self.state.set_str_list(KEY_BLOCKED_TARGETS, [])
