"""Achievement models"""
from enum import Enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AchievementCategory(str, Enum):
    """Achievement categories"""
    CULINARY = "culinary"
    SOCIAL = "social"
    EXPLORER = "explorer"
    CREATOR = "creator"
    COMMUNITY = "community"
    SEASONAL = "seasonal"
    MILESTONE = "milestone"
    SPECIAL = "special"


class AchievementRarity(str, Enum):
    """Achievement rarity tiers, totally ordered from common to legendary"""
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return _RARITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, AchievementRarity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, AchievementRarity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, AchievementRarity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, AchievementRarity):
            return NotImplemented
        return self.rank >= other.rank


_RARITY_ORDER = list(AchievementRarity)


class Aggregation(str, Enum):
    """How progress toward a requirement is counted"""
    COUNT = "count"
    DISTINCT_COUNT = "distinctCount"
    MAX_STREAK = "maxStreak"


class RewardType(str, Enum):
    """Reward effects"""
    POINTS = "points"
    BADGE = "badge"
    TITLE = "title"
    FEATURE = "feature"
    COSMETIC = "cosmetic"
    STREAK_FREEZE = "streakFreeze"


class Requirement(BaseModel):
    """Unlock condition for an achievement"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_type: str = Field(..., alias="eventType")
    target_value: int = Field(..., alias="targetValue", ge=1)
    aggregation: Aggregation = Aggregation.COUNT
    distinct_key: Optional[str] = Field(None, alias="distinctKey")
    criteria: dict[str, str] = Field(default_factory=dict)


class Reward(BaseModel):
    """Reward granted once on unlock"""
    model_config = ConfigDict(frozen=True)

    type: RewardType
    value: int = Field(0, ge=0)
    title: str
    description: str = ""


class AchievementDefinition(BaseModel):
    """Static catalog entry, read-only at runtime"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str
    description: str
    icon_ref: str = Field("", alias="iconRef")
    category: AchievementCategory
    rarity: AchievementRarity = AchievementRarity.COMMON
    requirement: Requirement
    reward: Reward
    is_secret: bool = Field(False, alias="isSecret")
    is_progress_visible: bool = Field(True, alias="isProgressVisible")


class AchievementProgress(BaseModel):
    """Per (user, achievement) progress counter"""
    user_id: str
    achievement_id: str
    progress: int = Field(0, ge=0)
    unlocked_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_unlocked(self) -> bool:
        return self.unlocked_at is not None


class UnlockRecord(BaseModel):
    """Immutable evidence that an achievement was unlocked"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    achievement_id: str
    unlocked_at: datetime
    event_key: Optional[str] = None


class AchievementView(BaseModel):
    """Achievement as shown to a collaborator"""
    achievement_id: str
    title: str
    description: str
    icon_ref: str
    category: AchievementCategory
    rarity: AchievementRarity
    is_unlocked: bool
    unlocked_at: Optional[datetime] = None
    progress: int
    target_value: int
    progress_percentage: float
    is_progress_visible: bool
    is_secret: bool = False
    reward: Optional[Reward] = None
