from datetime import datetime, timedelta, timezone

import pytest

from monitoring_logic import (
    ThresholdIgnoreReason,
    daily_window_end,
    is_within_grace,
    reset_anchor,
    reset_interval,
    should_accept_usage_minute_event,
    should_notify_for_continuous_usage,
    should_reset_continuous_session,
    usage_threshold_ignore_reason,
)


def make_dt(year=2026, month=2, day=10, hour=10, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


# ---------------------------------------------------------------- reset anchor


def test_reset_anchor_uses_previous_day_when_now_is_before_reset_time():
    anchor = reset_anchor(make_dt(hour=0, minute=10), 1, 0)
    assert anchor == make_dt(day=9, hour=1, minute=0)


def test_reset_anchor_uses_today_when_now_is_at_reset_time():
    anchor = reset_anchor(make_dt(hour=1, minute=0), 1, 0)
    assert anchor == make_dt(day=10, hour=1, minute=0)


def test_reset_anchor_drops_seconds_and_never_exceeds_now():
    now = make_dt(hour=23, minute=59, second=59)
    anchor = reset_anchor(now, 4, 30)
    assert anchor == make_dt(hour=4, minute=30)
    assert anchor <= now


def test_reset_anchor_is_monotonic_and_stable_within_period():
    start = make_dt(hour=0, minute=0)
    anchors = [reset_anchor(start + timedelta(minutes=17 * i), 6, 15) for i in range(200)]
    assert anchors == sorted(anchors)
    assert reset_anchor(make_dt(hour=7), 6, 15) == reset_anchor(make_dt(hour=22), 6, 15)


def test_reset_interval_spans_one_day_from_anchor():
    start, end = reset_interval(make_dt(hour=3), 4, 0)
    assert start == make_dt(day=9, hour=4)
    assert end == make_dt(day=10, hour=4)


def test_daily_window_end_wraps_to_previous_minute():
    assert daily_window_end(0, 0) == (23, 59)
    assert daily_window_end(1, 0) == (0, 59)
    assert daily_window_end(12, 30) == (12, 29)


# ---------------------------------------------------------------------- grace


def test_is_within_grace_uses_half_open_interval():
    reset = make_dt()
    assert is_within_grace(reset + timedelta(seconds=29.9), reset, 30)
    assert not is_within_grace(reset + timedelta(seconds=30), reset, 30)


def test_is_within_grace_rejects_missing_reset_and_negative_delta():
    reset = make_dt()
    assert is_within_grace(reset, reset, 30)
    assert not is_within_grace(reset, None, 30)
    assert not is_within_grace(reset - timedelta(seconds=1), reset, 30)


# ------------------------------------------------------------------ threshold


def test_threshold_is_trusted_without_any_reset():
    reason = usage_threshold_ignore_reason(
        now=make_dt(), last_reset=None, usage_updated_at=None, used_minutes=None, limit_minutes=1
    )
    assert reason == ThresholdIgnoreReason.none()
    assert not reason.should_ignore


def test_threshold_ignored_as_unsynced_inside_window():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=120),
        last_reset=reset,
        usage_updated_at=None,
        used_minutes=None,
        limit_minutes=1,
    )
    assert reason == ThresholdIgnoreReason.usage_not_synced(120)
    assert reason.should_ignore


def test_threshold_trusted_after_unsynced_window():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=181),
        last_reset=reset,
        usage_updated_at=None,
        used_minutes=None,
        limit_minutes=1,
    )
    assert reason == ThresholdIgnoreReason.none()


def test_threshold_without_sync_or_signal_is_never_trusted():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=181),
        last_reset=reset,
        usage_updated_at=None,
        has_usage_signal=False,
        used_minutes=None,
        limit_minutes=1,
    )
    assert reason == ThresholdIgnoreReason.usage_not_synced(181)


def test_threshold_without_evidence_clamps_negative_elapsed_to_zero():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset - timedelta(seconds=5),
        last_reset=reset,
        has_usage_signal=False,
        limit_minutes=1,
    )
    assert reason == ThresholdIgnoreReason.usage_not_synced(0)


def test_threshold_uses_rearm_start_for_unsynced_window():
    reset = make_dt()
    rearm = reset + timedelta(seconds=7200)
    reason = usage_threshold_ignore_reason(
        now=rearm + timedelta(seconds=120),
        last_reset=reset,
        threshold_evaluation_start=rearm,
        usage_updated_at=rearm - timedelta(seconds=60),
        used_minutes=None,
        limit_minutes=1,
    )
    assert reason == ThresholdIgnoreReason.usage_not_synced(120)


def test_threshold_stops_rearm_unsynced_ignore_after_window():
    reset = make_dt()
    rearm = reset + timedelta(seconds=7200)
    reason = usage_threshold_ignore_reason(
        now=rearm + timedelta(seconds=181),
        last_reset=reset,
        threshold_evaluation_start=rearm,
        usage_updated_at=rearm - timedelta(seconds=60),
        used_minutes=None,
        limit_minutes=1,
    )
    assert reason == ThresholdIgnoreReason.none()


def test_threshold_ignores_evaluation_start_before_reset():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=120),
        last_reset=reset,
        threshold_evaluation_start=reset - timedelta(hours=5),
        usage_updated_at=None,
        used_minutes=None,
        limit_minutes=1,
    )
    assert reason == ThresholdIgnoreReason.usage_not_synced(120)


def test_threshold_sync_landing_too_soon_after_baseline_is_not_settled():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=100),
        last_reset=reset,
        usage_updated_at=reset + timedelta(seconds=29),
        used_minutes=0,
        limit_minutes=2,
    )
    assert reason == ThresholdIgnoreReason.usage_not_synced(100)


def test_threshold_ignored_when_usage_below_limit_after_sync():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=120),
        last_reset=reset,
        usage_updated_at=reset + timedelta(seconds=31),
        used_minutes=1,
        limit_minutes=2,
    )
    assert reason == ThresholdIgnoreReason.usage_below_limit(1, 2)
    assert reason.describe() == "usage below limit (used=1, limit=2)"


def test_threshold_trusted_when_usage_reached_limit():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=120),
        last_reset=reset,
        usage_updated_at=reset + timedelta(seconds=31),
        used_minutes=2,
        limit_minutes=2,
    )
    assert reason == ThresholdIgnoreReason.none()


def test_threshold_trusted_without_usage_snapshot_after_sync():
    reset = make_dt()
    reason = usage_threshold_ignore_reason(
        now=reset + timedelta(seconds=120),
        last_reset=reset,
        usage_updated_at=reset + timedelta(seconds=31),
        used_minutes=None,
        limit_minutes=2,
    )
    assert reason == ThresholdIgnoreReason.none()


def test_threshold_decision_is_idempotent_for_same_snapshot():
    reset = make_dt()
    kwargs = dict(
        now=reset + timedelta(seconds=90),
        last_reset=reset,
        usage_updated_at=reset + timedelta(seconds=40),
        used_minutes=3,
        limit_minutes=5,
    )
    assert usage_threshold_ignore_reason(**kwargs) == usage_threshold_ignore_reason(**kwargs)


# ------------------------------------------------------------------- debounce


def test_minute_event_accepted_without_prior_acceptance():
    assert should_accept_usage_minute_event(make_dt(), None)


def test_minute_event_rejected_inside_min_interval():
    last = make_dt()
    assert not should_accept_usage_minute_event(last + timedelta(seconds=20), last, 50)


def test_minute_event_accepted_at_min_interval():
    last = make_dt()
    assert should_accept_usage_minute_event(last + timedelta(seconds=50), last, 50)


def test_minute_event_rejected_when_clock_moves_backward():
    last = make_dt()
    assert not should_accept_usage_minute_event(last - timedelta(seconds=120), last, 50)


# ----------------------------------------------------------------- continuous


@pytest.mark.parametrize(
    "active_index, last_event_offset, expected",
    [
        (None, -30, True),
        (1, -30, True),
        (0, None, True),
        (0, -121, True),
        (0, 10, True),
        (0, -120, False),
        (0, -30, False),
    ],
)
def test_should_reset_continuous_session(active_index, last_event_offset, expected):
    now = make_dt()
    last_event_at = None if last_event_offset is None else now + timedelta(seconds=last_event_offset)
    assert should_reset_continuous_session(0, active_index, last_event_at, now, 120) is expected


def test_continuous_notify_disabled_with_zero_threshold():
    assert not should_notify_for_continuous_usage(500, 0, None, make_dt())


def test_continuous_notify_requires_streak_to_reach_threshold():
    assert not should_notify_for_continuous_usage(14, 15, None, make_dt())
    assert should_notify_for_continuous_usage(15, 15, None, make_dt())


def test_continuous_notify_cooldown_scales_with_threshold():
    last = make_dt()
    assert not should_notify_for_continuous_usage(20, 15, last, last + timedelta(seconds=15 * 60 - 1))
    assert should_notify_for_continuous_usage(30, 15, last, last + timedelta(seconds=15 * 60))
    assert not should_notify_for_continuous_usage(30, 30, last, last + timedelta(seconds=15 * 60))


def test_continuous_notify_on_clock_skew():
    last = make_dt()
    assert should_notify_for_continuous_usage(20, 15, last, last - timedelta(seconds=1))


# ------------------------------------------------------------------------ DST


def local(*args):
    return datetime(*args).astimezone()


def test_reset_anchor_is_stable_across_fall_back(central_european_tz):
    just_after_reset = local(2026, 10, 25, 0, 0, 5)
    after_switch = local(2026, 10, 25, 10, 0)
    assert just_after_reset.utcoffset() != after_switch.utcoffset()

    anchor = reset_anchor(just_after_reset, 0, 0)
    assert reset_anchor(after_switch, 0, 0) == anchor
    assert reset_anchor(local(2026, 10, 25, 23, 59), 0, 0) == anchor
    assert anchor.utcoffset() == timedelta(hours=2)


def test_reset_interval_follows_dst_length(central_european_tz):
    start, end = reset_interval(local(2026, 10, 25, 10, 0), 0, 0)
    assert end - start == timedelta(hours=25)

    start, end = reset_interval(local(2026, 3, 29, 10, 0), 0, 0)
    assert end - start == timedelta(hours=23)


def test_reset_anchor_before_reset_time_on_switch_day(central_european_tz):
    anchor = reset_anchor(local(2026, 10, 25, 3, 30), 4, 0)
    assert anchor == local(2026, 10, 24, 4, 0)
