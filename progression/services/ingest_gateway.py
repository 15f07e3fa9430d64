"""
Event Ingest Gateway

Single entry point for activity events. Validates the event, deduplicates by
idempotency key, and routes it to the streak tracker and the achievement
evaluator (in that order, so maxStreak achievements see the streak produced
by the same event). Rewards owed as a result are dispatched afterwards;
dispatch failures never fail a submit.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from progression.config import DEDUP_RETENTION_HOURS, MAX_CLOCK_SKEW_HOURS, STREAK_EVENT_TYPES
from progression.db.store import ProgressStore
from progression.exceptions import ProgressionError, ValidationError
from progression.gamification.achievement_evaluator import AchievementEvaluator
from progression.gamification.reward_dispatcher import RewardDispatcher
from progression.gamification.streak_tracker import StreakTracker
from progression.models import ActivityEvent, StreakUpdate, SubmitResult, SubmitStatus, UnlockRecord
from progression.observability.metrics import event_processing_duration, record_event_submitted
from progression.resilience.retry import retry_with_backoff
from progression.utils.datetime_helpers import activity_day, now_utc

logger = logging.getLogger(__name__)


class EventIngestGateway:
    """Validates, deduplicates, and routes activity events"""

    def __init__(
        self,
        store: ProgressStore,
        streak_tracker: StreakTracker,
        evaluator: AchievementEvaluator,
        dispatcher: RewardDispatcher,
        streak_event_types: Iterable[str] = STREAK_EVENT_TYPES,
        max_clock_skew: timedelta = timedelta(hours=MAX_CLOCK_SKEW_HOURS),
        dedup_retention: timedelta = timedelta(hours=DEDUP_RETENTION_HOURS)
    ):
        self.store = store
        self.streak_tracker = streak_tracker
        self.evaluator = evaluator
        self.dispatcher = dispatcher
        self.streak_event_types = set(streak_event_types)
        self.max_clock_skew = max_clock_skew
        self.dedup_retention = dedup_retention

    def parse(self, raw: Union[ActivityEvent, dict, str, bytes], now: Optional[datetime] = None) -> ActivityEvent:
        """
        Turn a raw DTO into a validated ActivityEvent

        Raises:
            ValidationError: missing/empty fields, bad payload, or a
                timestamp too far in the future
        """
        if isinstance(raw, ActivityEvent):
            event = raw
        else:
            try:
                if isinstance(raw, (str, bytes)):
                    event = ActivityEvent.model_validate_json(raw)
                elif isinstance(raw, dict):
                    event = ActivityEvent.model_validate(raw)
                else:
                    raise ValidationError(message="event must be an object", field="event")
            except PydanticValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(part) for part in first.get("loc", ())) or "event"
                raise ValidationError(message=first.get("msg", "invalid event"), field=field, value=first.get("input"))

        now = now or now_utc()
        if event.timestamp > now + self.max_clock_skew:
            raise ValidationError(
                message=f"timestamp is more than {self.max_clock_skew} in the future",
                field="timestamp",
                value=event.timestamp.isoformat(),
                user_id=event.user_id
            )
        return event

    async def submit(self, raw: Union[ActivityEvent, dict, str, bytes]) -> SubmitResult:
        """
        Submit an activity event

        Returns:
            SubmitResult with status accepted, duplicate, or rejected

        Raises:
            StorageError / ConcurrentModificationError: processing failed after
                retries. The idempotency key is released so the caller can
                resubmit the same event.
        """
        try:
            event = self.parse(raw)
        except ValidationError as e:
            record_event_submitted(SubmitStatus.REJECTED.value)
            return SubmitResult(
                status=SubmitStatus.REJECTED,
                idempotency_key=_raw_key(raw),
                reason=f"{e.field}: {e.message}" if e.field else e.message
            )

        key = event.idempotency_key
        claimed = await retry_with_backoff(self.store.claim_event, key, event.user_id, now_utc())
        if not claimed:
            logger.info(f"Duplicate event {key} for user {event.user_id}")
            record_event_submitted(SubmitStatus.DUPLICATE.value)
            return SubmitResult(status=SubmitStatus.DUPLICATE, idempotency_key=key)

        completed = False
        try:
            with event_processing_duration.time():
                streak_update, unlocked = await self._process(event)
            await self.store.complete_event(key, now_utc())
            completed = True
        finally:
            if not completed:
                record_event_submitted("failed")
                await self.store.release_event(key)
                logger.warning(f"Released claim on event {key} after failed processing")

        record_event_submitted(SubmitStatus.ACCEPTED.value)

        try:
            await self.dispatcher.dispatch_pending(event.user_id)
        except (ProgressionError, asyncio.TimeoutError) as e:
            logger.warning(f"Reward dispatch deferred for user {event.user_id}: {e!r}")

        return SubmitResult(
            status=SubmitStatus.ACCEPTED,
            idempotency_key=key,
            unlocked=unlocked,
            milestones=streak_update.milestones if streak_update else [],
            streak=streak_update.state if streak_update else None
        )

    async def _process(self, event: ActivityEvent) -> Tuple[Optional[StreakUpdate], List[UnlockRecord]]:
        errors: List[Exception] = []
        streak_update: Optional[StreakUpdate] = None
        unlocked: List[UnlockRecord] = []

        if event.type in self.streak_event_types:
            try:
                streak_update = await retry_with_backoff(
                    self.streak_tracker.record_activity,
                    event.user_id,
                    activity_day(event.timestamp, self.streak_tracker.tz)
                )
            except Exception as e:
                logger.error(f"Streak update failed for event {event.idempotency_key}: {e}")
                errors.append(e)

        try:
            unlocked = await retry_with_backoff(self.evaluator.evaluate, event)
        except Exception as e:
            logger.error(f"Achievement evaluation failed for event {event.idempotency_key}: {e}")
            errors.append(e)

        if errors:
            raise errors[0]
        return streak_update, unlocked

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Forget idempotency keys older than the dedup retention window"""
        cutoff = (now or now_utc()) - self.dedup_retention
        return await self.store.purge_expired_events(cutoff)


def _raw_key(raw: Any) -> Optional[str]:
    if isinstance(raw, ActivityEvent):
        return raw.idempotency_key
    if isinstance(raw, dict):
        key = raw.get("idempotencyKey", raw.get("idempotency_key"))
        return key if isinstance(key, str) else None
    return None
