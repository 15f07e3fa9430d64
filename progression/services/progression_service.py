"""
Progression Service

Facade used by collaborators (API routes, jobs). Owns no state of its own;
every call goes through the components wired in the ServiceContainer.
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from progression.db.store import ProgressStore, UserSnapshot
from progression.gamification.catalog import AchievementCatalog
from progression.gamification.reward_dispatcher import RewardDispatcher
from progression.gamification.stats_aggregator import StatsAggregator
from progression.gamification.streak_tracker import StreakTracker
from progression.models import (
    AchievementDefinition,
    AchievementView,
    ActivityEvent,
    StatsSummary,
    StreakInfo,
    SubmitResult,
)
from progression.services.ingest_gateway import EventIngestGateway

logger = logging.getLogger(__name__)

SECRET_TITLE = "???"
SECRET_DESCRIPTION = "Keep exploring to unlock this secret achievement!"


def build_achievement_view(definition: AchievementDefinition, snapshot: UserSnapshot) -> AchievementView:
    """Achievement as seen by a user; locked secrets are redacted"""
    progress = snapshot.progress.get(definition.id)
    unlock = snapshot.unlocks.get(definition.id)
    target = definition.requirement.target_value
    value = progress.progress if progress else 0
    is_unlocked = unlock is not None
    redacted = definition.is_secret and not is_unlocked

    return AchievementView(
        achievement_id=definition.id,
        title=SECRET_TITLE if redacted else definition.title,
        description=SECRET_DESCRIPTION if redacted else definition.description,
        icon_ref=definition.icon_ref,
        category=definition.category,
        rarity=definition.rarity,
        is_unlocked=is_unlocked,
        unlocked_at=unlock.unlocked_at if unlock else None,
        progress=target if is_unlocked else value,
        target_value=target,
        progress_percentage=100.0 if is_unlocked else min(100.0, value / target * 100.0),
        is_progress_visible=definition.is_progress_visible,
        is_secret=definition.is_secret,
        reward=None if redacted else definition.reward
    )


class ProgressionService:
    """Collaborator-facing operations of the progression engine"""

    def __init__(
        self,
        store: ProgressStore,
        catalog: AchievementCatalog,
        gateway: EventIngestGateway,
        streak_tracker: StreakTracker,
        dispatcher: RewardDispatcher,
        stats: StatsAggregator
    ):
        self.store = store
        self.catalog = catalog
        self.gateway = gateway
        self.streak_tracker = streak_tracker
        self.dispatcher = dispatcher
        self.stats = stats

    async def submit_event(self, event: Union[ActivityEvent, dict, str, bytes]) -> SubmitResult:
        return await self.gateway.submit(event)

    async def get_achievements(self, user_id: str) -> List[AchievementView]:
        """All catalog achievements with the user's progress, in catalog order"""
        snapshot = await self.store.load_user(user_id)
        return [build_achievement_view(definition, snapshot) for definition in self.catalog.all()]

    async def get_achievement(self, user_id: str, achievement_id: str) -> AchievementView:
        """
        Raises:
            RecordNotFoundError: unknown achievement id
        """
        definition = self.catalog.get(achievement_id)
        snapshot = await self.store.load_user(user_id)
        return build_achievement_view(definition, snapshot)

    async def get_streak_info(self, user_id: str, now: Optional[datetime] = None) -> StreakInfo:
        return await self.streak_tracker.get_streak_info(user_id, now)

    async def get_stats(self, user_id: str) -> StatsSummary:
        return await self.stats.summarize(user_id)

    async def retry_pending_rewards(self) -> Dict[str, int]:
        return await self.dispatcher.retry_all()

    async def settle_streaks(self, today: Optional[date] = None) -> int:
        """
        Day-boundary job: end streaks that can no longer be saved

        Returns:
            Number of streaks ended
        """
        today = today or self.streak_tracker.today()
        ended = 0
        for user_id in await self.store.users_with_active_streaks():
            if await self.streak_tracker.settle_day(user_id, today) is not None:
                ended += 1
        logger.info(f"Settled streaks for {today}: {ended} ended")
        return ended

    async def purge_expired_events(self, now: Optional[datetime] = None) -> int:
        return await self.gateway.purge_expired(now)
