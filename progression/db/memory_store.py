"""
In-memory Progress Store

Keeps all state in process memory with one asyncio.Lock per user. Suitable
for a single process, tests, and local development; nothing is persisted.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from progression.config import LOCK_TIMEOUT_SECONDS
from progression.db.store import IN_FLIGHT_STALE_AFTER, ProgressStore, UserSnapshot
from progression.exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)


@dataclass
class _DedupEntry:
    user_id: str
    claimed_at: datetime
    completed_at: Optional[datetime] = None


class InMemoryProgressStore(ProgressStore):
    """
    Process-local store (NOT persisted)

    One asyncio.Lock is kept per user for the life of the store; like the
    user snapshots themselves, locks are never evicted.
    """

    def __init__(self, lock_timeout: float = LOCK_TIMEOUT_SECONDS):
        self.lock_timeout = lock_timeout
        self._users: Dict[str, UserSnapshot] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._dedup: Dict[str, _DedupEntry] = {}
        logger.info("InMemoryProgressStore initialized - progression state is NOT persisted")

    @asynccontextmanager
    async def user_transaction(self, user_id: str) -> AsyncIterator[UserSnapshot]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError as e:
            raise ConcurrentModificationError(
                message=f"Timed out after {self.lock_timeout}s waiting for user lock",
                user_id=user_id,
                operation="user_transaction",
                cause=e
            )

        try:
            # Work on a copy; swap it in only if the block finishes
            working = self._users.get(user_id, UserSnapshot(user_id=user_id)).clone()
            yield working
            self._users[user_id] = working
        finally:
            lock.release()

    async def load_user(self, user_id: str) -> UserSnapshot:
        snapshot = self._users.get(user_id)
        if snapshot is None:
            return UserSnapshot(user_id=user_id)
        return snapshot.clone()

    async def users_with_backlog(self) -> List[str]:
        return [
            user_id for user_id, snapshot in self._users.items()
            if snapshot.outbox or snapshot.notifications
        ]

    async def users_with_active_streaks(self) -> List[str]:
        return [
            user_id for user_id, snapshot in self._users.items()
            if snapshot.streak is not None and snapshot.streak.current_streak > 0
        ]

    async def claim_event(self, idempotency_key: str, user_id: str, now: datetime) -> bool:
        entry = self._dedup.get(idempotency_key)
        if entry is not None:
            abandoned = entry.completed_at is None and now - entry.claimed_at > IN_FLIGHT_STALE_AFTER
            if not abandoned:
                return False
            logger.warning(f"Reclaiming abandoned in-flight event {idempotency_key}")

        self._dedup[idempotency_key] = _DedupEntry(user_id=user_id, claimed_at=now)
        return True

    async def complete_event(self, idempotency_key: str, now: datetime) -> None:
        entry = self._dedup.get(idempotency_key)
        if entry is not None:
            entry.completed_at = now

    async def release_event(self, idempotency_key: str) -> None:
        entry = self._dedup.get(idempotency_key)
        if entry is not None and entry.completed_at is None:
            del self._dedup[idempotency_key]

    async def purge_expired_events(self, cutoff: datetime) -> int:
        expired = [key for key, entry in self._dedup.items() if entry.claimed_at < cutoff]
        for key in expired:
            del self._dedup[key]

        # Applied-event marks share the dedup retention window
        for user_id in list(self._users):
            async with self.user_transaction(user_id) as snapshot:
                snapshot.applied_events = {
                    key: applied_at for key, applied_at in snapshot.applied_events.items()
                    if applied_at >= cutoff
                }

        if expired:
            logger.info(f"Purged {len(expired)} expired dedup entries")
        return len(expired)
