"""Activity event models"""
from enum import Enum
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from progression.models.achievement import UnlockRecord
from progression.models.streak import MilestoneEvent, StreakState


class EventType(str, Enum):
    """Countable actions emitted by product features"""
    POST_CREATED = "postCreated"
    LIKE_GIVEN = "likeGiven"
    PLACE_VISITED = "placeVisited"
    FRIEND_ADDED = "friendAdded"
    COMMENT_ADDED = "commentAdded"
    REPLY_ADDED = "replyAdded"
    REFERRAL_COMPLETED = "referralCompleted"
    FOLLOWER_GAINED = "followerGained"


class ActivityEvent(BaseModel):
    """
    Immutable activity event supplied by a collaborator.

    The idempotency key identifies the logical action; re-delivery with the
    same key has no additional effect.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    idempotency_key: str = Field(..., alias="idempotencyKey", min_length=1)
    user_id: str = Field(..., alias="userId", min_length=1)
    type: str = Field(..., min_length=1)
    timestamp: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("idempotency_key", "user_id", "type")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, value: datetime) -> datetime:
        # Naive timestamps are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SubmitStatus(str, Enum):
    """Outcome of submitting an event"""
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


class SubmitResult(BaseModel):
    """Result returned by the ingest gateway"""
    status: SubmitStatus
    idempotency_key: Optional[str] = None
    reason: Optional[str] = None
    unlocked: List[UnlockRecord] = Field(default_factory=list)
    milestones: List[MilestoneEvent] = Field(default_factory=list)
    streak: Optional[StreakState] = None
