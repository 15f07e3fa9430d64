"""Stats summary model"""
from pydantic import BaseModel, Field


class StatsSummary(BaseModel):
    """Read-only achievement summary for a user"""
    user_id: str
    unlocked_count: int
    total_count: int
    total_points: int
    rarity_breakdown: dict[str, int] = Field(default_factory=dict)
    category_breakdown: dict[str, int] = Field(default_factory=dict)
    completion_percentage: float
