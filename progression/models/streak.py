"""Streak models"""
from enum import Enum
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

STREAK_MILESTONES: tuple[int, ...] = (7, 14, 30, 60, 100, 365)


class StreakTransition(str, Enum):
    """What a single activity did to the streak"""
    STARTED = "started"
    UNCHANGED = "unchanged"
    CONTINUED = "continued"
    PROTECTED = "protected"  # missed days bridged with freezes
    RESET = "reset"
    OUT_OF_ORDER = "out_of_order"


class StreakState(BaseModel):
    """Per-user daily activity streak"""
    user_id: str
    current_streak: int = Field(0, ge=0)
    longest_streak: int = Field(0, ge=0)
    last_active_day: Optional[date] = None
    freeze_count: int = Field(0, ge=0)
    achieved_milestones: List[int] = Field(default_factory=list)
    updated_at: Optional[datetime] = None


class MilestoneEvent(BaseModel):
    """Emitted once per newly crossed streak milestone"""
    model_config = ConfigDict(frozen=True)

    user_id: str
    milestone: int
    reached_on: date


class StreakUpdate(BaseModel):
    """Result of recording one day of activity"""
    state: StreakState
    transition: StreakTransition
    freezes_used: int = 0
    milestones: List[MilestoneEvent] = Field(default_factory=list)


class StreakInfo(BaseModel):
    """Streak as shown to a collaborator"""
    current_streak: int
    longest_streak: int
    is_streak_active: bool
    next_milestone: Optional[int] = None
    achieved_milestones: List[int] = Field(default_factory=list)
    streak_freeze_count: int
    last_active_day: Optional[date] = None
    is_at_risk: bool = False
    hours_until_streak_loss: float = 0.0
