"""
Reward Dispatcher

Applies rewards owed for unlocked achievements and streak milestones exactly
once. Every owed reward sits in the user's outbox (written in the same commit
as the unlock or milestone). Dispatching one reward is a single unit of work:

1. ledger entry already exists -> drop the outbox row, already_applied
2. verify the triggering unlock/milestone exists
3. apply the effect (points, badge/title/feature/cosmetic grant, freezes)
4. append the ledger entry, remove the outbox row, queue the notification

Notifications are sent after the commit and stay queued until delivered.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple, Union

from progression.config import DEFAULT_FREEZE_COUNT
from progression.db.store import ProgressStore, UserSnapshot
from progression.exceptions import NotificationError, ProgressionError, RewardDispatchError
from progression.gamification.catalog import AchievementCatalog
from progression.gamification.streak_tracker import new_streak_state
from progression.models import (
    DispatchStatus,
    MilestoneEvent,
    Reward,
    RewardLedgerEntry,
    RewardSource,
    RewardType,
    UnlockNotification,
    UnlockRecord,
    achievement_ledger_key,
    milestone_ledger_key,
)
from progression.observability.metrics import record_dispatch, record_notification
from progression.resilience.retry import retry_with_backoff
from progression.services.notifications import LoggingNotifier, Notifier
from progression.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)

# Streak milestone bonuses (points)
MILESTONE_REWARDS: Dict[int, Reward] = {
    7: Reward(type=RewardType.POINTS, value=50, title="One Week Streak!",
              description="You've posted for 7 days in a row!"),
    14: Reward(type=RewardType.POINTS, value=100, title="Two Week Streak!",
               description="14 days of sharing your food adventures!"),
    30: Reward(type=RewardType.POINTS, value=200, title="30-Day Streak!",
               description="A whole month of posting. Incredible dedication!"),
    60: Reward(type=RewardType.POINTS, value=300, title="60-Day Streak!",
               description="Two months strong!"),
    100: Reward(type=RewardType.POINTS, value=500, title="100-Day Streak!",
                description="Triple digits! You're a legend!"),
    365: Reward(type=RewardType.POINTS, value=1000, title="365-Day Streak!",
                description="A full year of daily posts!"),
}

Trigger = Union[UnlockRecord, MilestoneEvent]


def apply_reward(
    snapshot: UserSnapshot,
    reward: Reward,
    grant_id: str,
    default_freeze_count: int = DEFAULT_FREEZE_COUNT
) -> None:
    """Apply a reward's effect to the user's balance or streak"""
    if reward.type == RewardType.POINTS:
        snapshot.get_balance().points += reward.value

    elif reward.type == RewardType.STREAK_FREEZE:
        if snapshot.streak is None:
            snapshot.streak = new_streak_state(snapshot.user_id, default_freeze_count)
        snapshot.streak.freeze_count += reward.value

    else:
        balance = snapshot.get_balance()
        if grant_id not in balance.badges:
            balance.badges.append(grant_id)


class RewardDispatcher:
    """Exactly-once reward application with a per-user outbox"""

    def __init__(
        self,
        store: ProgressStore,
        catalog: AchievementCatalog,
        notifier: Optional[Notifier] = None,
        default_freeze_count: int = DEFAULT_FREEZE_COUNT
    ):
        self.store = store
        self.catalog = catalog
        self.notifier = notifier or LoggingNotifier()
        self.default_freeze_count = default_freeze_count

    def reward_for(self, source: RewardSource, source_id: str) -> Reward:
        if source == RewardSource.ACHIEVEMENT:
            return self.catalog.get(source_id).reward

        milestone = int(source_id)
        if milestone not in MILESTONE_REWARDS:
            raise RewardDispatchError(
                message=f"No reward defined for {milestone}-day milestone",
                ledger_key=milestone_ledger_key(milestone)
            )
        return MILESTONE_REWARDS[milestone]

    async def dispatch(self, trigger: Trigger) -> DispatchStatus:
        """
        Apply the reward for an unlock or milestone

        Args:
            trigger: UnlockRecord or MilestoneEvent

        Returns:
            applied, or already_applied if the ledger already holds it

        Raises:
            RewardDispatchError: the unlock/milestone does not exist
            StorageError: store failure; nothing was committed
        """
        if isinstance(trigger, UnlockRecord):
            source, source_id = RewardSource.ACHIEVEMENT, trigger.achievement_id
        else:
            source, source_id = RewardSource.MILESTONE, str(trigger.milestone)

        status, notification = await self._apply(trigger.user_id, source, source_id)
        if notification is not None:
            await self._deliver(trigger.user_id, [notification])
        return status

    async def _apply(
        self,
        user_id: str,
        source: RewardSource,
        source_id: str
    ) -> Tuple[DispatchStatus, Optional[UnlockNotification]]:
        if source == RewardSource.ACHIEVEMENT:
            ledger_key = achievement_ledger_key(source_id)
        else:
            ledger_key = milestone_ledger_key(int(source_id))

        async with self.store.user_transaction(user_id) as snapshot:
            if ledger_key in snapshot.ledger:
                snapshot.outbox.pop(ledger_key, None)
                status, notification = DispatchStatus.ALREADY_APPLIED, None

            else:
                self._verify_trigger(snapshot, source, source_id, ledger_key)
                reward = self.reward_for(source, source_id)
                now = now_utc()

                apply_reward(snapshot, reward, source_id, self.default_freeze_count)
                snapshot.ledger[ledger_key] = RewardLedgerEntry(
                    ledger_key=ledger_key,
                    user_id=user_id,
                    source=source,
                    source_id=source_id,
                    reward_type=reward.type,
                    value=reward.value,
                    granted_at=now
                )
                snapshot.outbox.pop(ledger_key, None)

                notification = UnlockNotification(
                    user_id=user_id,
                    ledger_key=ledger_key,
                    achievement_id=source_id if source == RewardSource.ACHIEVEMENT else None,
                    milestone=int(source_id) if source == RewardSource.MILESTONE else None,
                    reward=reward,
                    created_at=now
                )
                snapshot.notifications[ledger_key] = notification
                status = DispatchStatus.APPLIED

        record_dispatch(source.value, status.value)
        if status == DispatchStatus.APPLIED:
            logger.info(f"Applied reward {ledger_key} for user {user_id}")
        return status, notification

    def _verify_trigger(self, snapshot: UserSnapshot, source: RewardSource, source_id: str, ledger_key: str) -> None:
        if source == RewardSource.ACHIEVEMENT:
            exists = source_id in snapshot.unlocks
        else:
            exists = snapshot.streak is not None and int(source_id) in snapshot.streak.achieved_milestones

        if not exists:
            raise RewardDispatchError(
                message=f"Refusing to grant {ledger_key}: no matching {source.value} for user",
                ledger_key=ledger_key,
                user_id=snapshot.user_id
            )

    async def _deliver(self, user_id: str, notifications: List[UnlockNotification]) -> int:
        delivered = []
        for notification in notifications:
            try:
                await self.notifier.send(notification)
                delivered.append(notification.ledger_key)
                record_notification(True)
            except NotificationError as e:
                record_notification(False)
                logger.warning(f"Notification {notification.ledger_key} for user {user_id} stays queued: {e}")

        if delivered:
            async with self.store.user_transaction(user_id) as snapshot:
                for ledger_key in delivered:
                    snapshot.notifications.pop(ledger_key, None)
        return len(delivered)

    async def dispatch_pending(self, user_id: str) -> Dict[str, int]:
        """
        Drain a user's outbox and notification queue

        Failed rewards (including timed-out attempts) stay in the outbox with
        attempts/last_error updated.

        Returns:
            {'applied': n, 'already_applied': n, 'failed': n, 'notified': n}
        """
        summary = {"applied": 0, "already_applied": 0, "failed": 0, "notified": 0}
        snapshot = await self.store.load_user(user_id)

        for pending in list(snapshot.outbox.values()):
            try:
                status, _ = await retry_with_backoff(self._apply, user_id, pending.source, pending.source_id)
                summary[status.value] += 1
            except (ProgressionError, asyncio.TimeoutError) as e:
                summary["failed"] += 1
                record_dispatch(pending.source.value, "failed")
                await self._record_failure(user_id, pending.ledger_key, e)

        snapshot = await self.store.load_user(user_id)
        if snapshot.notifications:
            summary["notified"] = await self._deliver(user_id, list(snapshot.notifications.values()))

        return summary

    async def _record_failure(self, user_id: str, ledger_key: str, error: Exception) -> None:
        try:
            async with self.store.user_transaction(user_id) as snapshot:
                row = snapshot.outbox.get(ledger_key)
                if row is not None:
                    row.attempts += 1
                    row.last_error = (str(error) or type(error).__name__)[:500]
        except ProgressionError as e:
            logger.error(f"Could not record dispatch failure for {ledger_key}: {e}")

    async def retry_all(self) -> Dict[str, int]:
        """Run dispatch_pending for every user with a backlog"""
        totals = {"users": 0, "applied": 0, "already_applied": 0, "failed": 0, "notified": 0}
        for user_id in await self.store.users_with_backlog():
            summary = await self.dispatch_pending(user_id)
            totals["users"] += 1
            for key, value in summary.items():
                totals[key] += value

        if totals["users"]:
            logger.info(f"Reward backlog retry: {totals}")
        return totals
