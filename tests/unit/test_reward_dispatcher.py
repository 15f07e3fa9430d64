"""Unit tests for Reward Dispatcher (progression/gamification/reward_dispatcher.py)"""
import asyncio
import pytest
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, patch

from progression.exceptions import NotificationError, RewardDispatchError
from progression.gamification.reward_dispatcher import MILESTONE_REWARDS, RewardDispatcher
from progression.gamification.streak_tracker import StreakTracker
from progression.models import (
    DispatchStatus,
    MilestoneEvent,
    PendingReward,
    RewardSource,
    StreakState,
    UnlockRecord,
    achievement_ledger_key,
    milestone_ledger_key,
)
from progression.services.container import ServiceContainer
from progression.services.notifications import InMemoryNotifier, Notifier

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class FailingNotifier(Notifier):
    """Notifier whose channel is down"""

    def __init__(self):
        self.attempts = 0

    async def send(self, notification):
        self.attempts += 1
        raise NotificationError(message="channel unavailable")


@pytest.fixture
def dispatcher(store, catalog, notifier):
    return RewardDispatcher(store, catalog, notifier)


async def seed_unlock(store, user_id: str, achievement_id: str) -> UnlockRecord:
    """Store an unlock together with its outbox row"""
    record = UnlockRecord(user_id=user_id, achievement_id=achievement_id, unlocked_at=NOW)
    ledger_key = achievement_ledger_key(achievement_id)
    async with store.user_transaction(user_id) as snapshot:
        snapshot.unlocks[achievement_id] = record
        snapshot.outbox[ledger_key] = PendingReward(
            ledger_key=ledger_key,
            user_id=user_id,
            source=RewardSource.ACHIEVEMENT,
            source_id=achievement_id,
            created_at=NOW
        )
    return record


# ============================================================================
# Exactly-Once Tests
# ============================================================================

@pytest.mark.asyncio
async def test_dispatch_applies_points_once(dispatcher, store, notifier, user_id):
    """Dispatching the same unlock twice grants points once"""
    record = await seed_unlock(store, user_id, "first_italian")

    first = await dispatcher.dispatch(record)
    second = await dispatcher.dispatch(record)

    assert first == DispatchStatus.APPLIED
    assert second == DispatchStatus.ALREADY_APPLIED

    snapshot = await store.load_user(user_id)
    assert snapshot.balance.points == 25
    assert list(snapshot.ledger) == [achievement_ledger_key("first_italian")]
    assert snapshot.outbox == {}
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_concurrent_dispatch_applies_once(dispatcher, store, user_id):
    """Two dispatches racing an outbox drain still grant exactly once"""
    record = await seed_unlock(store, user_id, "first_italian")

    first, second, summary = await asyncio.gather(
        dispatcher.dispatch(record),
        dispatcher.dispatch(record),
        dispatcher.dispatch_pending(user_id)
    )

    applied = [first, second].count(DispatchStatus.APPLIED) + summary["applied"]
    assert applied == 1
    assert summary["failed"] == 0

    snapshot = await store.load_user(user_id)
    assert list(snapshot.ledger) == [achievement_ledger_key("first_italian")]
    assert snapshot.balance.points == 25
    assert snapshot.outbox == {}


@pytest.mark.asyncio
async def test_dispatch_pending_after_direct_dispatch(dispatcher, store, user_id):
    """An outbox row left behind after a grant is dropped, not re-applied"""
    record = await seed_unlock(store, user_id, "first_italian")
    await dispatcher.dispatch(record)

    # Simulate a stale outbox row
    async with store.user_transaction(user_id) as snapshot:
        snapshot.outbox[achievement_ledger_key("first_italian")] = PendingReward(
            ledger_key=achievement_ledger_key("first_italian"),
            user_id=user_id,
            source=RewardSource.ACHIEVEMENT,
            source_id="first_italian",
            created_at=NOW
        )

    summary = await dispatcher.dispatch_pending(user_id)

    assert summary["already_applied"] == 1
    assert summary["applied"] == 0
    snapshot = await store.load_user(user_id)
    assert snapshot.balance.points == 25
    assert snapshot.outbox == {}


@pytest.mark.asyncio
async def test_dispatch_without_unlock_is_refused(dispatcher, store, user_id):
    """No reward is granted for an unlock that was never recorded"""
    record = UnlockRecord(user_id=user_id, achievement_id="first_italian", unlocked_at=NOW)

    with pytest.raises(RewardDispatchError) as exc_info:
        await dispatcher.dispatch(record)

    assert exc_info.value.ledger_key == achievement_ledger_key("first_italian")
    snapshot = await store.load_user(user_id)
    assert snapshot.ledger == {}
    assert snapshot.balance is None


# ============================================================================
# Reward Effect Tests
# ============================================================================

@pytest.mark.asyncio
async def test_milestone_reward_grants_points(dispatcher, store, user_id):
    async with store.user_transaction(user_id) as snapshot:
        snapshot.streak = StreakState(
            user_id=user_id, current_streak=7, longest_streak=7,
            last_active_day=date(2025, 3, 7), achieved_milestones=[7]
        )

    status = await dispatcher.dispatch(MilestoneEvent(user_id=user_id, milestone=7, reached_on=date(2025, 3, 7)))

    assert status == DispatchStatus.APPLIED
    snapshot = await store.load_user(user_id)
    assert snapshot.balance.points == MILESTONE_REWARDS[7].value == 50
    assert milestone_ledger_key(7) in snapshot.ledger


@pytest.mark.asyncio
async def test_milestone_not_reached_is_refused(dispatcher, user_id):
    with pytest.raises(RewardDispatchError):
        await dispatcher.dispatch(MilestoneEvent(user_id=user_id, milestone=14, reached_on=date(2025, 3, 7)))


@pytest.mark.asyncio
async def test_streak_freeze_reward_adds_freezes(dispatcher, store, user_id):
    async with store.user_transaction(user_id) as snapshot:
        snapshot.streak = StreakState(user_id=user_id, current_streak=2, longest_streak=2, freeze_count=1)
    record = await seed_unlock(store, user_id, "streak_starter")

    await dispatcher.dispatch(record)

    snapshot = await store.load_user(user_id)
    assert snapshot.streak.freeze_count == 3
    assert snapshot.streak.current_streak == 2


@pytest.mark.asyncio
async def test_streak_freeze_reward_creates_streak_with_default(store, catalog, notifier, user_id):
    """A user without a streak starts from the dispatcher's freeze default"""
    dispatcher = RewardDispatcher(store, catalog, notifier, default_freeze_count=5)
    record = await seed_unlock(store, user_id, "streak_starter")

    await dispatcher.dispatch(record)

    snapshot = await store.load_user(user_id)
    assert snapshot.streak.freeze_count == 7
    assert snapshot.streak.current_streak == 0


def test_container_shares_freeze_default(store, catalog):
    container = ServiceContainer(store=store, catalog=catalog)
    container._streak_tracker = StreakTracker(store, default_freeze_count=0)

    assert container.dispatcher.default_freeze_count == 0


@pytest.mark.asyncio
async def test_grant_rewards_recorded_on_balance(dispatcher, store, user_id):
    """Badge/title/cosmetic rewards are recorded as grants"""
    await dispatcher.dispatch(await seed_unlock(store, user_id, "pasta_fan"))
    await dispatcher.dispatch(await seed_unlock(store, user_id, "hidden_gem"))

    snapshot = await store.load_user(user_id)
    assert snapshot.balance.badges == ["pasta_fan", "hidden_gem"]
    assert snapshot.balance.points == 0


# ============================================================================
# Outbox & Retry Tests
# ============================================================================

@pytest.mark.asyncio
async def test_dispatch_pending_drains_outbox(dispatcher, store, notifier, user_id):
    await seed_unlock(store, user_id, "first_italian")
    await seed_unlock(store, user_id, "first_like")

    summary = await dispatcher.dispatch_pending(user_id)

    assert summary == {"applied": 2, "already_applied": 0, "failed": 0, "notified": 2}
    snapshot = await store.load_user(user_id)
    assert snapshot.outbox == {}
    assert snapshot.notifications == {}
    assert snapshot.balance.points == 35
    assert {n.achievement_id for n in notifier.sent} == {"first_italian", "first_like"}


@pytest.mark.asyncio
async def test_failed_dispatch_stays_in_outbox(dispatcher, store, user_id):
    """A row whose unlock is missing is kept with the failure recorded"""
    ledger_key = achievement_ledger_key("first_italian")
    async with store.user_transaction(user_id) as snapshot:
        snapshot.outbox[ledger_key] = PendingReward(
            ledger_key=ledger_key,
            user_id=user_id,
            source=RewardSource.ACHIEVEMENT,
            source_id="first_italian",
            created_at=NOW
        )

    summary = await dispatcher.dispatch_pending(user_id)
    summary_again = await dispatcher.dispatch_pending(user_id)

    assert summary["failed"] == 1
    assert summary_again["failed"] == 1
    row = (await store.load_user(user_id)).outbox[ledger_key]
    assert row.attempts == 2
    assert "first_italian" in row.last_error


@pytest.mark.asyncio
async def test_timed_out_dispatch_recorded_and_drain_continues(dispatcher, store, user_id):
    """Timeouts are recorded as failures and later rows are still attempted"""
    await seed_unlock(store, user_id, "first_italian")
    await seed_unlock(store, user_id, "first_like")
    hung = AsyncMock(side_effect=asyncio.TimeoutError())

    with patch.object(dispatcher, "_apply", hung), \
         patch("progression.resilience.retry.asyncio.sleep", new=AsyncMock()):
        summary = await dispatcher.dispatch_pending(user_id)

    assert summary["failed"] == 2
    outbox = (await store.load_user(user_id)).outbox
    assert {row.attempts for row in outbox.values()} == {1}
    assert outbox[achievement_ledger_key("first_like")].last_error == "TimeoutError"

    summary = await dispatcher.dispatch_pending(user_id)

    assert summary["applied"] == 2
    assert (await store.load_user(user_id)).balance.points == 35


@pytest.mark.asyncio
async def test_notification_failure_keeps_reward_and_queue(store, catalog, user_id):
    """Reward is applied even when the notifier is down; notice stays queued"""
    failing = FailingNotifier()
    dispatcher = RewardDispatcher(store, catalog, failing)
    await seed_unlock(store, user_id, "first_italian")

    summary = await dispatcher.dispatch_pending(user_id)

    assert summary["applied"] == 1
    assert summary["notified"] == 0
    snapshot = await store.load_user(user_id)
    assert snapshot.balance.points == 25
    assert achievement_ledger_key("first_italian") in snapshot.notifications

    # Channel recovers
    recovered = InMemoryNotifier()
    dispatcher.notifier = recovered
    totals = await dispatcher.retry_all()

    assert totals["users"] == 1
    assert totals["notified"] == 1
    assert totals["applied"] == 0
    assert len(recovered.sent) == 1
    assert (await store.load_user(user_id)).notifications == {}


@pytest.mark.asyncio
async def test_retry_all_covers_every_user(dispatcher, store):
    await seed_unlock(store, "alice", "first_italian")
    await seed_unlock(store, "bob", "first_like")

    totals = await dispatcher.retry_all()

    assert totals["users"] == 2
    assert totals["applied"] == 2
    assert await store.users_with_backlog() == []


@pytest.mark.asyncio
async def test_retry_all_nothing_pending(dispatcher):
    totals = await dispatcher.retry_all()
    assert totals == {"users": 0, "applied": 0, "already_applied": 0, "failed": 0, "notified": 0}
