"""
Gamification core for the progression engine

- Achievement catalog and evaluation (count, distinct count, max streak)
- Daily activity streaks with freezes and milestones
- Exactly-once reward dispatch through a per-user outbox
- Achievement statistics
"""

from progression.gamification.catalog import AchievementCatalog, load_catalog
from progression.gamification.streak_tracker import StreakTracker, apply_activity
from progression.gamification.achievement_evaluator import AchievementEvaluator
from progression.gamification.stats_aggregator import StatsAggregator, compute_summary
from progression.gamification.reward_dispatcher import MILESTONE_REWARDS, RewardDispatcher

__all__ = [
    "AchievementCatalog",
    "load_catalog",
    "StreakTracker",
    "apply_activity",
    "AchievementEvaluator",
    "StatsAggregator",
    "compute_summary",
    "MILESTONE_REWARDS",
    "RewardDispatcher",
]
