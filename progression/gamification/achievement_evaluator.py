"""
Achievement Evaluator

Advances progress for every catalog definition an activity event matches and
unlocks the ones that reach their target. Each event is applied in a single
per-user unit of work:

- events already applied (by idempotency key) are a no-op
- count: +1 per matching event
- distinctCount: size of the set of distinct payload[distinct_key] values
- maxStreak: highest current streak observed

An unlock writes the UnlockRecord, caps progress at the target, and queues a
PendingReward outbox row in the same commit, so a reward can never be lost
or granted without its unlock.
"""

import logging
from datetime import datetime
from typing import List, Optional

from progression.db.store import ProgressStore, UserSnapshot
from progression.gamification.catalog import AchievementCatalog
from progression.models import (
    AchievementDefinition,
    AchievementProgress,
    ActivityEvent,
    Aggregation,
    PendingReward,
    RewardSource,
    UnlockRecord,
    achievement_ledger_key,
)
from progression.observability.metrics import record_unlock
from progression.utils.datetime_helpers import now_utc

logger = logging.getLogger(__name__)


def criteria_match(definition: AchievementDefinition, payload: dict) -> bool:
    """True if every criteria entry matches the payload (case-insensitive)"""
    for key, expected in definition.requirement.criteria.items():
        actual = payload.get(key)
        if actual is None or str(actual).strip().lower() != str(expected).strip().lower():
            return False
    return True


def advance_progress(
    snapshot: UserSnapshot,
    definition: AchievementDefinition,
    event: ActivityEvent,
) -> Optional[AchievementProgress]:
    """
    Apply one event to one definition's progress

    Returns:
        Updated progress, or None if the event does not count toward it
    """
    requirement = definition.requirement
    progress = snapshot.progress.get(definition.id) or AchievementProgress(
        user_id=snapshot.user_id,
        achievement_id=definition.id
    )

    if requirement.aggregation == Aggregation.COUNT:
        new_value = progress.progress + 1

    elif requirement.aggregation == Aggregation.DISTINCT_COUNT:
        raw = event.payload.get(requirement.distinct_key)
        if raw is None or str(raw).strip() == "":
            return None
        values = snapshot.distinct_values.setdefault(definition.id, set())
        values.add(str(raw).strip().lower())
        new_value = len(values)

    elif requirement.aggregation == Aggregation.MAX_STREAK:
        current_streak = snapshot.streak.current_streak if snapshot.streak else 0
        new_value = max(progress.progress, current_streak)

    else:
        logger.warning(f"Unknown aggregation {requirement.aggregation} for {definition.id}")
        return None

    progress.progress = min(new_value, requirement.target_value)
    return progress


class AchievementEvaluator:
    """Evaluates activity events against the achievement catalog"""

    def __init__(self, store: ProgressStore, catalog: AchievementCatalog):
        self.store = store
        self.catalog = catalog

    async def evaluate(self, event: ActivityEvent) -> List[UnlockRecord]:
        """
        Apply an activity event to all matching achievements

        Args:
            event: Validated activity event

        Returns:
            Achievements newly unlocked by this event (empty if the event was
            already applied or matched nothing)

        Raises:
            ConcurrentModificationError: user lock not acquired in time
            StorageError: store failure; nothing was committed
        """
        candidates = self.catalog.for_event_type(event.type)
        unlocked: List[UnlockRecord] = []

        async with self.store.user_transaction(event.user_id) as snapshot:
            if event.idempotency_key in snapshot.applied_events:
                logger.debug(f"Event {event.idempotency_key} already applied for user {event.user_id}")
                return []

            now = now_utc()
            for definition in candidates:
                if definition.id in snapshot.unlocks:
                    continue
                if not criteria_match(definition, event.payload):
                    continue

                progress = advance_progress(snapshot, definition, event)
                if progress is None:
                    continue
                progress.updated_at = now

                if progress.progress >= definition.requirement.target_value:
                    record = self._unlock(snapshot, definition, progress, event, now)
                    unlocked.append(record)

                snapshot.progress[definition.id] = progress

            snapshot.applied_events[event.idempotency_key] = now

        for record in unlocked:
            definition = self.catalog.get(record.achievement_id)
            record_unlock(definition.rarity.value)
            logger.info(
                f"User {record.user_id} unlocked achievement '{definition.id}' "
                f"({definition.rarity.value})"
            )

        return unlocked

    def _unlock(
        self,
        snapshot: UserSnapshot,
        definition: AchievementDefinition,
        progress: AchievementProgress,
        event: ActivityEvent,
        now: datetime,
    ) -> UnlockRecord:
        progress.progress = definition.requirement.target_value
        progress.unlocked_at = now

        record = UnlockRecord(
            user_id=snapshot.user_id,
            achievement_id=definition.id,
            unlocked_at=now,
            event_key=event.idempotency_key
        )
        snapshot.unlocks[definition.id] = record

        ledger_key = achievement_ledger_key(definition.id)
        if ledger_key not in snapshot.ledger:
            snapshot.outbox[ledger_key] = PendingReward(
                ledger_key=ledger_key,
                user_id=snapshot.user_id,
                source=RewardSource.ACHIEVEMENT,
                source_id=definition.id,
                created_at=now
            )
        return record
