"""Achievement statistics (read-only)"""

import logging
from typing import Dict, Iterable

from progression.db.store import ProgressStore
from progression.gamification.catalog import AchievementCatalog
from progression.models import AchievementDefinition, RewardType, StatsSummary

logger = logging.getLogger(__name__)


def compute_summary(
    user_id: str,
    definitions: Iterable[AchievementDefinition],
    unlocked_ids: Iterable[str]
) -> StatsSummary:
    """
    Summarize unlocked achievements against the catalog

    Unlock ids no longer present in the catalog are ignored.

    Example:
        10 achievements, 3 unlocked -> completion_percentage == 30.0
    """
    definitions = list(definitions)
    unlocked = set(unlocked_ids)

    rarity_breakdown: Dict[str, int] = {}
    category_breakdown: Dict[str, int] = {}
    total_points = 0
    unlocked_count = 0

    for definition in definitions:
        if definition.id not in unlocked:
            continue
        unlocked_count += 1
        rarity_breakdown[definition.rarity.value] = rarity_breakdown.get(definition.rarity.value, 0) + 1
        category_breakdown[definition.category.value] = category_breakdown.get(definition.category.value, 0) + 1
        if definition.reward.type == RewardType.POINTS:
            total_points += definition.reward.value

    total_count = len(definitions)
    completion = unlocked_count * 100 / total_count if total_count else 0.0

    return StatsSummary(
        user_id=user_id,
        unlocked_count=unlocked_count,
        total_count=total_count,
        total_points=total_points,
        rarity_breakdown=rarity_breakdown,
        category_breakdown=category_breakdown,
        completion_percentage=completion
    )


class StatsAggregator:
    """Computes per-user achievement summaries from the progress store"""

    def __init__(self, store: ProgressStore, catalog: AchievementCatalog):
        self.store = store
        self.catalog = catalog

    async def summarize(self, user_id: str) -> StatsSummary:
        snapshot = await self.store.load_user(user_id)
        summary = compute_summary(user_id, self.catalog.all(), snapshot.unlocks.keys())
        logger.debug(
            f"Stats for user {user_id}: {summary.unlocked_count}/{summary.total_count} "
            f"({summary.completion_percentage:.1f}%)"
        )
        return summary
