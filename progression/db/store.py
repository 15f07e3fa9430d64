"""
Progress Store interface

The store is the single source of truth for per-user progression state.
All mutations go through ``user_transaction()``, a per-user unit of work:

    async with store.user_transaction(user_id) as snapshot:
        snapshot.progress[...] = ...

The snapshot is committed in full when the block exits cleanly and discarded
otherwise (exception or cancellation). Two units of work for the same user
never interleave; different users never block each other.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncContextManager, Dict, List, Optional, Set

from progression.models import (
    AchievementProgress,
    PendingReward,
    RewardBalance,
    RewardLedgerEntry,
    StreakState,
    UnlockNotification,
    UnlockRecord,
)

# In-flight dedup claims older than this are considered abandoned
IN_FLIGHT_STALE_AFTER = timedelta(minutes=5)


@dataclass
class UserSnapshot:
    """Everything the engine holds for one user"""

    user_id: str
    progress: Dict[str, AchievementProgress] = field(default_factory=dict)
    distinct_values: Dict[str, Set[str]] = field(default_factory=dict)
    unlocks: Dict[str, UnlockRecord] = field(default_factory=dict)
    # Event keys already counted by the achievement evaluator -> applied_at
    applied_events: Dict[str, datetime] = field(default_factory=dict)
    streak: Optional[StreakState] = None
    balance: Optional[RewardBalance] = None
    ledger: Dict[str, RewardLedgerEntry] = field(default_factory=dict)
    outbox: Dict[str, PendingReward] = field(default_factory=dict)
    notifications: Dict[str, UnlockNotification] = field(default_factory=dict)

    def get_balance(self) -> RewardBalance:
        """Reward balance, created lazily"""
        if self.balance is None:
            self.balance = RewardBalance(user_id=self.user_id)
        return self.balance

    def clone(self) -> "UserSnapshot":
        return copy.deepcopy(self)


class ProgressStore(ABC):
    """Storage-agnostic progress store"""

    # ==========================================
    # Per-user state
    # ==========================================

    @abstractmethod
    def user_transaction(self, user_id: str) -> AsyncContextManager[UserSnapshot]:
        """
        Atomic read-modify-write of one user's state

        Raises:
            ConcurrentModificationError: user lock not acquired in time
            StorageError: the backing store failed; nothing was committed
        """

    @abstractmethod
    async def load_user(self, user_id: str) -> UserSnapshot:
        """Read-only copy of a user's state (empty snapshot for unknown users)"""

    @abstractmethod
    async def users_with_backlog(self) -> List[str]:
        """Users with unapplied rewards or undelivered notifications"""

    @abstractmethod
    async def users_with_active_streaks(self) -> List[str]:
        """Users whose current streak is above zero"""

    # ==========================================
    # Event dedup index
    # ==========================================

    @abstractmethod
    async def claim_event(self, idempotency_key: str, user_id: str, now: datetime) -> bool:
        """
        Claim an idempotency key for processing

        Returns:
            False if the key is already claimed or completed (duplicate)
        """

    @abstractmethod
    async def complete_event(self, idempotency_key: str, now: datetime) -> None:
        """Mark a claimed key as fully processed"""

    @abstractmethod
    async def release_event(self, idempotency_key: str) -> None:
        """Drop an in-flight claim so the event may be resubmitted"""

    @abstractmethod
    async def purge_expired_events(self, cutoff: datetime) -> int:
        """Delete dedup entries and applied-event marks older than cutoff"""
