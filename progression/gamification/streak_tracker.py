"""
Daily Activity Streak Tracking

Gap-based streak state machine (gap = activity day - last active day):
- first activity: streak starts at 1
- gap 0: already counted today, no change
- gap 1: streak continues
- gap > 1: missed days are bridged with freezes if enough remain,
  otherwise the streak resets to 1
- gap < 0: out-of-order activity, ignored

Features:
- Streak protection (freeze credits)
- Longest streak tracking
- Milestones at 7, 14, 30, 60, 100, 365 days, each emitted exactly once
- Day-boundary settlement for users who stopped posting

All days come from utils.datetime_helpers.activity_day() so every
computation shares the STREAK_TIMEZONE day boundary.
"""

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo
import logging

from progression.config import DEFAULT_FREEZE_COUNT, STREAK_REMINDER_HOURS
from progression.db.store import ProgressStore, UserSnapshot
from progression.models import (
    STREAK_MILESTONES,
    MilestoneEvent,
    PendingReward,
    RewardSource,
    StreakInfo,
    StreakState,
    StreakTransition,
    StreakUpdate,
    milestone_ledger_key,
)
from progression.observability.metrics import record_milestone
from progression.utils.datetime_helpers import activity_day as to_activity_day
from progression.utils.datetime_helpers import day_gap, get_streak_timezone, hours_until_day_end, now_utc

logger = logging.getLogger(__name__)


def new_streak_state(user_id: str, freeze_count: int = DEFAULT_FREEZE_COUNT) -> StreakState:
    return StreakState(user_id=user_id, freeze_count=freeze_count)


def apply_activity(state: StreakState, day: date, now: Optional[datetime] = None) -> StreakUpdate:
    """
    Apply one day of activity to a streak (pure; the input is not modified)

    Args:
        state: Current streak state
        day: Activity day in the canonical timezone
        now: Timestamp recorded as updated_at

    Returns:
        StreakUpdate with the new state, the transition taken, freezes
        consumed, and any milestones crossed for the first time
    """
    state = state.model_copy(deep=True)
    last_day = state.last_active_day
    freezes_used = 0

    if last_day is None:
        state.current_streak = 1
        transition = StreakTransition.STARTED

    else:
        gap = day_gap(last_day, day)

        if gap < 0:
            return StreakUpdate(state=state, transition=StreakTransition.OUT_OF_ORDER)

        if gap == 0:
            return StreakUpdate(state=state, transition=StreakTransition.UNCHANGED)

        if gap == 1:
            state.current_streak += 1
            transition = StreakTransition.CONTINUED

        else:
            missed = gap - 1
            if state.freeze_count >= missed:
                state.freeze_count -= missed
                state.current_streak += 1
                freezes_used = missed
                transition = StreakTransition.PROTECTED
            else:
                state.current_streak = 1
                transition = StreakTransition.RESET

    state.last_active_day = day
    state.longest_streak = max(state.longest_streak, state.current_streak)
    state.updated_at = now or now_utc()

    milestones = []
    for milestone in STREAK_MILESTONES:
        if milestone <= state.current_streak and milestone not in state.achieved_milestones:
            state.achieved_milestones.append(milestone)
            milestones.append(MilestoneEvent(user_id=state.user_id, milestone=milestone, reached_on=day))
    state.achieved_milestones.sort()

    return StreakUpdate(
        state=state,
        transition=transition,
        freezes_used=freezes_used,
        milestones=milestones
    )


def next_milestone(current_streak: int) -> Optional[int]:
    for milestone in STREAK_MILESTONES:
        if milestone > current_streak:
            return milestone
    return None


class StreakTracker:
    """Maintains per-user daily activity streaks in the progress store"""

    def __init__(
        self,
        store: ProgressStore,
        default_freeze_count: int = DEFAULT_FREEZE_COUNT,
        tz: Optional[ZoneInfo] = None
    ):
        self.store = store
        self.default_freeze_count = default_freeze_count
        self.tz = tz or get_streak_timezone()

    def today(self, now: Optional[datetime] = None) -> date:
        """Current activity day in the tracker's timezone"""
        return to_activity_day(now or now_utc(), self.tz)

    def _state_for(self, snapshot: UserSnapshot) -> StreakState:
        return snapshot.streak or new_streak_state(snapshot.user_id, self.default_freeze_count)

    async def record_activity(self, user_id: str, activity_day: date) -> StreakUpdate:
        """
        Record qualifying activity on a day

        Milestones crossed by this update are written to the reward outbox in
        the same commit as the streak itself.

        Args:
            user_id: User identifier
            activity_day: Day of activity (see datetime_helpers.activity_day)

        Returns:
            StreakUpdate describing what changed

        Raises:
            ConcurrentModificationError: user lock not acquired in time
            StorageError: store failure; nothing was committed
        """
        async with self.store.user_transaction(user_id) as snapshot:
            update = apply_activity(self._state_for(snapshot), activity_day)

            if update.transition == StreakTransition.OUT_OF_ORDER:
                logger.info(
                    f"Ignoring out-of-order activity for user {user_id}: "
                    f"{activity_day} is before last active day {update.state.last_active_day}"
                )
                return update

            if update.transition == StreakTransition.UNCHANGED:
                return update

            snapshot.streak = update.state
            for event in update.milestones:
                ledger_key = milestone_ledger_key(event.milestone)
                if ledger_key not in snapshot.ledger:
                    snapshot.outbox[ledger_key] = PendingReward(
                        ledger_key=ledger_key,
                        user_id=user_id,
                        source=RewardSource.MILESTONE,
                        source_id=str(event.milestone),
                        created_at=update.state.updated_at
                    )

        if update.transition == StreakTransition.PROTECTED:
            logger.info(f"User {user_id} used {update.freezes_used} freeze(s) to protect streak")
        elif update.transition == StreakTransition.RESET:
            logger.info(f"User {user_id} streak broken, starting fresh")

        for event in update.milestones:
            record_milestone(event.milestone)
            logger.info(f"User {user_id} reached {event.milestone}-day streak milestone")

        logger.debug(
            f"Updated streak for user {user_id}: {update.transition.value} -> "
            f"{update.state.current_streak} days"
        )
        return update

    async def record_event_time(self, user_id: str, timestamp: datetime) -> StreakUpdate:
        """Record activity at a timestamp, mapped to its canonical day"""
        return await self.record_activity(user_id, to_activity_day(timestamp, self.tz))

    async def settle_day(self, user_id: str, today: date) -> Optional[StreakState]:
        """
        Day-boundary tick: end streaks that can no longer be saved

        A streak is lost when the days missed since the last activity (not
        counting today, which the user may still post on) exceed the
        remaining freezes. Longest streak and milestones are untouched.

        Returns:
            The settled state if the streak was ended, else None
        """
        async with self.store.user_transaction(user_id) as snapshot:
            state = snapshot.streak
            if state is None or state.current_streak == 0 or state.last_active_day is None:
                return None

            missed = day_gap(state.last_active_day, today) - 1
            if missed <= state.freeze_count:
                return None

            state.current_streak = 0
            state.updated_at = now_utc()

        logger.info(f"Streak for user {user_id} ended after {missed} missed day(s)")
        return state

    async def get_streak_info(self, user_id: str, now: Optional[datetime] = None) -> StreakInfo:
        """
        Streak summary for display

        A user whose last active day was yesterday is at risk when fewer than
        STREAK_REMINDER_HOURS remain until the canonical midnight.
        """
        now = now or now_utc()
        snapshot = await self.store.load_user(user_id)
        state = self._state_for(snapshot)
        return build_streak_info(state, now, self.tz)


def build_streak_info(state: StreakState, now: datetime, tz: Optional[ZoneInfo] = None) -> StreakInfo:
    """Active means posted today; a streak from yesterday is only at risk"""
    today = to_activity_day(now, tz)
    hours_left = 0.0
    is_at_risk = False
    is_active = False

    if state.last_active_day is not None and state.current_streak > 0:
        days_since = day_gap(state.last_active_day, today)
        is_active = days_since == 0
        if days_since == 0:
            hours_left = hours_until_day_end(now, tz) + 24
        elif days_since == 1:
            hours_left = hours_until_day_end(now, tz)
            is_at_risk = hours_left <= STREAK_REMINDER_HOURS

    return StreakInfo(
        current_streak=state.current_streak,
        longest_streak=state.longest_streak,
        is_streak_active=is_active,
        next_milestone=next_milestone(state.current_streak),
        achieved_milestones=list(state.achieved_milestones),
        streak_freeze_count=state.freeze_count,
        last_active_day=state.last_active_day,
        is_at_risk=is_at_risk,
        hours_until_streak_loss=round(hours_left, 2)
    )
