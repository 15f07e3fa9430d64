"""Unit tests for Streak Tracker (progression/gamification/streak_tracker.py)"""
import pytest
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from progression.gamification.streak_tracker import (
    StreakTracker,
    apply_activity,
    build_streak_info,
    new_streak_state,
    next_milestone,
)
from progression.models import StreakState, StreakTransition, milestone_ledger_key


DAY_1 = date(2025, 3, 1)


def day(n: int) -> date:
    return DAY_1 + timedelta(days=n - 1)


def run_days(state: StreakState, days) -> StreakState:
    for d in days:
        state = apply_activity(state, day(d)).state
    return state


# ============================================================================
# Pure State Machine Tests
# ============================================================================

def test_first_activity_starts_streak():
    """First activity creates a streak of 1"""
    update = apply_activity(new_streak_state("u1", freeze_count=0), day(1))

    assert update.transition == StreakTransition.STARTED
    assert update.state.current_streak == 1
    assert update.state.longest_streak == 1
    assert update.state.last_active_day == day(1)


def test_consecutive_days_continue_streak():
    """Activity on days 1, 2, 3 gives a streak of 3"""
    state = run_days(new_streak_state("u1", freeze_count=0), [1, 2, 3])

    assert state.current_streak == 3
    assert state.longest_streak == 3


def test_same_day_activity_is_unchanged():
    """Second activity on the same day does not count again"""
    state = run_days(new_streak_state("u1"), [1, 2])
    update = apply_activity(state, day(2))

    assert update.transition == StreakTransition.UNCHANGED
    assert update.state == state


def test_missed_day_protected_by_freeze():
    """Day 5 after day 3 with a freeze continues to 4 and uses one freeze"""
    state = run_days(new_streak_state("u1", freeze_count=1), [1, 2, 3])
    update = apply_activity(state, day(5))

    assert update.transition == StreakTransition.PROTECTED
    assert update.state.current_streak == 4
    assert update.state.freeze_count == 0
    assert update.freezes_used == 1


def test_missed_day_without_freeze_resets():
    """Day 5 after day 3 without freezes resets to 1"""
    state = run_days(new_streak_state("u1", freeze_count=0), [1, 2, 3])
    update = apply_activity(state, day(5))

    assert update.transition == StreakTransition.RESET
    assert update.state.current_streak == 1
    assert update.state.longest_streak == 3  # Unchanged


def test_gap_larger_than_freezes_resets_without_consuming():
    """Two missed days with one freeze resets and keeps the freeze"""
    state = run_days(new_streak_state("u1", freeze_count=1), [1, 2])
    update = apply_activity(state, day(5))

    assert update.transition == StreakTransition.RESET
    assert update.state.current_streak == 1
    assert update.state.freeze_count == 1


def test_multiple_missed_days_consume_multiple_freezes():
    """Three missed days consume three freezes"""
    state = run_days(new_streak_state("u1", freeze_count=3), [1])
    update = apply_activity(state, day(5))

    assert update.transition == StreakTransition.PROTECTED
    assert update.state.current_streak == 2
    assert update.state.freeze_count == 0
    assert update.freezes_used == 3


def test_out_of_order_activity_is_ignored():
    """Activity for a day before the last active day changes nothing"""
    state = run_days(new_streak_state("u1"), [3, 4])
    update = apply_activity(state, day(2))

    assert update.transition == StreakTransition.OUT_OF_ORDER
    assert update.state == state
    assert update.milestones == []


def test_apply_activity_does_not_mutate_input():
    """The input state is left untouched"""
    state = new_streak_state("u1")
    apply_activity(state, day(1))

    assert state.current_streak == 0
    assert state.last_active_day is None


def test_milestone_crossed_once():
    """Moving from 6 to 7 emits exactly one milestone event"""
    state = run_days(new_streak_state("u1", freeze_count=0), range(1, 7))
    assert state.current_streak == 6
    assert state.achieved_milestones == []

    update = apply_activity(state, day(7))
    assert [m.milestone for m in update.milestones] == [7]
    assert update.milestones[0].reached_on == day(7)
    assert update.state.achieved_milestones == [7]

    # Re-processing the same day does not re-emit
    again = apply_activity(update.state, day(7))
    assert again.milestones == []
    assert again.state.achieved_milestones == [7]


def test_milestone_not_re_emitted_after_reset():
    """A milestone reached before a reset is never emitted again"""
    state = run_days(new_streak_state("u1", freeze_count=0), range(1, 8))
    assert state.achieved_milestones == [7]

    state = run_days(state, range(10, 17))  # Reset, then 7 more days
    assert state.current_streak == 7
    assert state.achieved_milestones == [7]


def test_next_milestone():
    assert next_milestone(0) == 7
    assert next_milestone(7) == 14
    assert next_milestone(100) == 365
    assert next_milestone(365) is None


# ============================================================================
# Stored Streak Tests
# ============================================================================

@pytest.mark.asyncio
async def test_record_activity_persists_state(store):
    """Recorded activity is committed to the store"""
    tracker = StreakTracker(store, default_freeze_count=2)

    await tracker.record_activity("u1", day(1))
    await tracker.record_activity("u1", day(2))

    snapshot = await store.load_user("u1")
    assert snapshot.streak.current_streak == 2
    assert snapshot.streak.freeze_count == 2


@pytest.mark.asyncio
async def test_record_activity_queues_milestone_reward(store):
    """Milestone outbox rows are written with the streak"""
    async with store.user_transaction("u1") as snapshot:
        snapshot.streak = StreakState(
            user_id="u1", current_streak=6, longest_streak=6, last_active_day=day(6)
        )

    tracker = StreakTracker(store)
    update = await tracker.record_activity("u1", day(7))

    snapshot = await store.load_user("u1")
    assert [m.milestone for m in update.milestones] == [7]
    assert milestone_ledger_key(7) in snapshot.outbox
    assert snapshot.streak.achieved_milestones == [7]

    # Same day again: nothing new queued
    again = await tracker.record_activity("u1", day(7))
    assert again.transition == StreakTransition.UNCHANGED
    assert len((await store.load_user("u1")).outbox) == 1


@pytest.mark.asyncio
async def test_record_out_of_order_leaves_store_untouched(store):
    tracker = StreakTracker(store)
    await tracker.record_activity("u1", day(5))

    update = await tracker.record_activity("u1", day(3))

    assert update.transition == StreakTransition.OUT_OF_ORDER
    snapshot = await store.load_user("u1")
    assert snapshot.streak.last_active_day == day(5)
    assert snapshot.streak.current_streak == 1


@pytest.mark.asyncio
async def test_record_event_time_uses_canonical_day(store):
    """Timestamps map to days in the canonical (UTC) timezone"""
    tracker = StreakTracker(store)

    await tracker.record_event_time("u1", datetime(2025, 3, 1, 23, 59, tzinfo=timezone.utc))
    update = await tracker.record_event_time("u1", datetime(2025, 3, 2, 0, 1, tzinfo=timezone.utc))

    assert update.transition == StreakTransition.CONTINUED
    assert update.state.current_streak == 2


# ============================================================================
# Day Settlement Tests
# ============================================================================

@pytest.mark.asyncio
async def test_settle_day_ends_unsaveable_streak(store):
    """Missed days beyond the remaining freezes end the streak"""
    async with store.user_transaction("u1") as snapshot:
        snapshot.streak = StreakState(
            user_id="u1", current_streak=9, longest_streak=12,
            last_active_day=day(1), freeze_count=1, achieved_milestones=[7]
        )

    tracker = StreakTracker(store)
    settled = await tracker.settle_day("u1", day(4))  # Days 2 and 3 missed

    assert settled is not None
    snapshot = await store.load_user("u1")
    assert snapshot.streak.current_streak == 0
    assert snapshot.streak.longest_streak == 12
    assert snapshot.streak.achieved_milestones == [7]
    assert snapshot.streak.freeze_count == 1


@pytest.mark.asyncio
async def test_settle_day_keeps_saveable_streak(store):
    """A streak that can still be continued today is untouched"""
    async with store.user_transaction("u1") as snapshot:
        snapshot.streak = StreakState(
            user_id="u1", current_streak=4, longest_streak=4,
            last_active_day=day(1), freeze_count=1
        )

    tracker = StreakTracker(store)

    assert await tracker.settle_day("u1", day(2)) is None  # Yesterday
    assert await tracker.settle_day("u1", day(3)) is None  # One missed, one freeze
    assert (await store.load_user("u1")).streak.current_streak == 4


@pytest.mark.asyncio
async def test_settle_day_unknown_user(store):
    tracker = StreakTracker(store)
    assert await tracker.settle_day("nobody", day(10)) is None


# ============================================================================
# Streak Info Tests
# ============================================================================

def test_streak_info_at_risk_late_in_day():
    """Last active yesterday with 2 hours left is at risk, not active"""
    state = StreakState(user_id="u1", current_streak=5, longest_streak=5, last_active_day=date(2025, 3, 1))
    info = build_streak_info(state, datetime(2025, 3, 2, 22, 0, tzinfo=timezone.utc))

    assert info.is_streak_active is False
    assert info.is_at_risk is True
    assert info.hours_until_streak_loss == 2.0
    assert info.next_milestone == 7


def test_streak_info_not_at_risk_early_in_day():
    state = StreakState(user_id="u1", current_streak=5, longest_streak=5, last_active_day=date(2025, 3, 1))
    info = build_streak_info(state, datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc))

    assert info.is_streak_active is False
    assert info.is_at_risk is False
    assert info.hours_until_streak_loss == 14.0


def test_streak_info_gap_covered_by_freezes_is_inactive():
    """Freezes keep the streak saveable but do not make it active"""
    state = StreakState(
        user_id="u1", current_streak=4, longest_streak=4,
        last_active_day=date(2025, 3, 1), freeze_count=2
    )
    info = build_streak_info(state, datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc))

    assert info.is_streak_active is False
    assert info.current_streak == 4
    assert info.streak_freeze_count == 2


def test_streak_info_uses_given_timezone():
    """15:30 UTC on Mar 2 is already Mar 3 in Tokyo"""
    state = StreakState(user_id="u1", current_streak=2, longest_streak=2, last_active_day=date(2025, 3, 3))
    now = datetime(2025, 3, 2, 15, 30, tzinfo=timezone.utc)

    assert build_streak_info(state, now, ZoneInfo("Asia/Tokyo")).is_streak_active is True
    assert build_streak_info(state, now, ZoneInfo("UTC")).is_streak_active is False


def test_streak_info_active_today():
    state = StreakState(user_id="u1", current_streak=3, longest_streak=3, last_active_day=date(2025, 3, 2))
    info = build_streak_info(state, datetime(2025, 3, 2, 18, 0, tzinfo=timezone.utc))

    assert info.is_streak_active is True
    assert info.is_at_risk is False
    assert info.hours_until_streak_loss == 30.0


def test_streak_info_lost_streak():
    state = StreakState(
        user_id="u1", current_streak=3, longest_streak=3,
        last_active_day=date(2025, 3, 1), freeze_count=0
    )
    info = build_streak_info(state, datetime(2025, 3, 5, 12, 0, tzinfo=timezone.utc))

    assert info.is_streak_active is False
    assert info.is_at_risk is False
    assert info.hours_until_streak_loss == 0.0


@pytest.mark.asyncio
async def test_get_streak_info_new_user(store):
    """Unknown users get an empty streak with the default freezes"""
    tracker = StreakTracker(store, default_freeze_count=2)
    info = await tracker.get_streak_info("new-user")

    assert info.current_streak == 0
    assert info.streak_freeze_count == 2
    assert info.is_streak_active is False
    assert info.next_milestone == 7
