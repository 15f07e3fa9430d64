"""Pydantic models for API request/response validation"""
from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import date, datetime

from progression.models import AchievementView, StreakInfo


class AchievementListResponse(BaseModel):
    """All achievements with the user's progress"""
    user_id: str
    catalog_version: str
    achievements: List[AchievementView]


class StreakResponse(BaseModel):
    """Response with streak info"""
    user_id: str
    streak: StreakInfo


class RetryRewardsResponse(BaseModel):
    """Outcome of draining the reward backlog"""
    users: int = 0
    applied: int = 0
    already_applied: int = 0
    failed: int = 0
    notified: int = 0


class SettleStreaksRequest(BaseModel):
    """Day-boundary settlement request"""
    today: Optional[date] = Field(
        default=None,
        description="Day to settle against (defaults to today in STREAK_TIMEZONE)"
    )


class SettleStreaksResponse(BaseModel):
    """Day-boundary settlement result"""
    today: date
    streaks_ended: int


class PurgeResponse(BaseModel):
    """Expired dedup entries removed"""
    purged: int


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    storage: str = Field(..., description="Storage backend status")
    catalog_version: Optional[str] = Field(None, description="Loaded achievement catalog")
    timestamp: datetime = Field(..., description="Check timestamp")

