"""Reward ledger and notification models"""
from enum import Enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from progression.models.achievement import Reward, RewardType


class RewardSource(str, Enum):
    """What earned the reward"""
    ACHIEVEMENT = "achievement"
    MILESTONE = "milestone"


class DispatchStatus(str, Enum):
    """Outcome of dispatching a reward"""
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


def achievement_ledger_key(achievement_id: str) -> str:
    return f"{RewardSource.ACHIEVEMENT.value}:{achievement_id}"


def milestone_ledger_key(milestone: int) -> str:
    return f"{RewardSource.MILESTONE.value}:{milestone}"


class RewardLedgerEntry(BaseModel):
    """Append-only record of a granted reward, unique per (user, ledger_key)"""
    model_config = ConfigDict(frozen=True)

    ledger_key: str
    user_id: str
    source: RewardSource
    source_id: str
    reward_type: RewardType
    value: int
    granted_at: datetime


class PendingReward(BaseModel):
    """Outbox row for a reward that is owed but not yet applied"""
    ledger_key: str
    user_id: str
    source: RewardSource
    source_id: str
    created_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None


class RewardBalance(BaseModel):
    """Accumulated reward effects for a user"""
    user_id: str
    points: int = 0
    badges: List[str] = Field(default_factory=list)


class UnlockNotification(BaseModel):
    """Outbound notice to the notification collaborator"""
    user_id: str
    ledger_key: str
    achievement_id: Optional[str] = None
    milestone: Optional[int] = None
    reward: Reward
    created_at: datetime
