"""Data models for the progression engine"""

from progression.models.achievement import (
    AchievementCategory,
    AchievementDefinition,
    AchievementProgress,
    AchievementRarity,
    AchievementView,
    Aggregation,
    Requirement,
    Reward,
    RewardType,
    UnlockRecord,
)
from progression.models.streak import (
    STREAK_MILESTONES,
    MilestoneEvent,
    StreakInfo,
    StreakState,
    StreakTransition,
    StreakUpdate,
)
from progression.models.reward import (
    DispatchStatus,
    PendingReward,
    RewardBalance,
    RewardLedgerEntry,
    RewardSource,
    UnlockNotification,
    achievement_ledger_key,
    milestone_ledger_key,
)
from progression.models.event import ActivityEvent, EventType, SubmitResult, SubmitStatus
from progression.models.stats import StatsSummary

__all__ = [
    "AchievementCategory",
    "AchievementDefinition",
    "AchievementProgress",
    "AchievementRarity",
    "AchievementView",
    "Aggregation",
    "Requirement",
    "Reward",
    "RewardType",
    "UnlockRecord",
    "STREAK_MILESTONES",
    "MilestoneEvent",
    "StreakInfo",
    "StreakState",
    "StreakTransition",
    "StreakUpdate",
    "DispatchStatus",
    "PendingReward",
    "RewardBalance",
    "RewardLedgerEntry",
    "RewardSource",
    "UnlockNotification",
    "achievement_ledger_key",
    "milestone_ledger_key",
    "ActivityEvent",
    "EventType",
    "SubmitResult",
    "SubmitStatus",
    "StatsSummary",
]
