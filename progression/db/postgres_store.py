"""
PostgreSQL Progress Store

Each unit of work runs in one transaction guarded by a transaction-scoped
advisory lock on the user id, so concurrent events for the same user are
serialized while other users proceed in parallel. The user's rows are loaded,
mutated in memory, and only the differences are written back before commit.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List

import psycopg
from psycopg.types.json import Jsonb

from progression.config import LOCK_TIMEOUT_SECONDS
from progression.db.connection import Database
from progression.db.store import IN_FLIGHT_STALE_AFTER, ProgressStore, UserSnapshot
from progression.exceptions import wrap_external_exception
from progression.models import (
    AchievementProgress,
    PendingReward,
    RewardBalance,
    RewardLedgerEntry,
    StreakState,
    UnlockNotification,
    UnlockRecord,
)

logger = logging.getLogger(__name__)


class PostgresProgressStore(ProgressStore):
    """Durable store backed by PostgreSQL"""

    def __init__(self, db: Database, lock_timeout: float = LOCK_TIMEOUT_SECONDS):
        self.db = db
        self.lock_timeout = lock_timeout

    @asynccontextmanager
    async def user_transaction(self, user_id: str) -> AsyncIterator[UserSnapshot]:
        try:
            async with self.db.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.execute(
                            "SELECT set_config('lock_timeout', %s, true)",
                            (f"{int(self.lock_timeout * 1000)}ms",)
                        )
                        await cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (user_id,))

                        original = await self._load(cur, user_id)
                        working = original.clone()
                        yield working
                        await self._save(cur, original, working)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="user_transaction", user_id=user_id)

    async def load_user(self, user_id: str) -> UserSnapshot:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    return await self._load(cur, user_id)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="load_user", user_id=user_id)

    async def users_with_backlog(self) -> List[str]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        SELECT user_id FROM reward_outbox
                        UNION
                        SELECT user_id FROM pending_notifications
                        """
                    )
                    rows = await cur.fetchall()
                    return [row["user_id"] for row in rows]
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="users_with_backlog")

    async def users_with_active_streaks(self) -> List[str]:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT user_id FROM streak_state WHERE current_streak > 0")
                    rows = await cur.fetchall()
                    return [row["user_id"] for row in rows]
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="users_with_active_streaks")

    # ==========================================
    # Event dedup index
    # ==========================================

    async def claim_event(self, idempotency_key: str, user_id: str, now: datetime) -> bool:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO event_dedup_index (idempotency_key, user_id, claimed_at)
                        VALUES (%s, %s, %s)
                        ON CONFLICT (idempotency_key) DO UPDATE
                            SET user_id = EXCLUDED.user_id, claimed_at = EXCLUDED.claimed_at
                            WHERE event_dedup_index.completed_at IS NULL
                              AND event_dedup_index.claimed_at < %s
                        RETURNING idempotency_key
                        """,
                        (idempotency_key, user_id, now, now - IN_FLIGHT_STALE_AFTER)
                    )
                    row = await cur.fetchone()
                    await conn.commit()
                    return row is not None
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="claim_event", user_id=user_id)

    async def complete_event(self, idempotency_key: str, now: datetime) -> None:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "UPDATE event_dedup_index SET completed_at = %s WHERE idempotency_key = %s",
                        (now, idempotency_key)
                    )
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="complete_event")

    async def release_event(self, idempotency_key: str) -> None:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "DELETE FROM event_dedup_index WHERE idempotency_key = %s AND completed_at IS NULL",
                        (idempotency_key,)
                    )
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="release_event")

    async def purge_expired_events(self, cutoff: datetime) -> int:
        try:
            async with self.db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("DELETE FROM event_dedup_index WHERE claimed_at < %s", (cutoff,))
                    purged = cur.rowcount
                    await cur.execute("DELETE FROM applied_events WHERE applied_at < %s", (cutoff,))
                    await conn.commit()
                    logger.info(f"Purged {purged} expired dedup entries")
                    return purged
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="purge_expired_events")

    # ==========================================
    # Row mapping
    # ==========================================

    async def _load(self, cur, user_id: str) -> UserSnapshot:
        snapshot = UserSnapshot(user_id=user_id)

        await cur.execute(
            """
            SELECT achievement_id, progress, unlocked_at, updated_at
            FROM achievement_progress WHERE user_id = %s
            """,
            (user_id,)
        )
        for row in await cur.fetchall():
            snapshot.progress[row["achievement_id"]] = AchievementProgress(user_id=user_id, **row)

        await cur.execute(
            "SELECT achievement_id, value FROM achievement_distinct_values WHERE user_id = %s",
            (user_id,)
        )
        for row in await cur.fetchall():
            snapshot.distinct_values.setdefault(row["achievement_id"], set()).add(row["value"])

        await cur.execute(
            "SELECT achievement_id, unlocked_at, event_key FROM unlock_records WHERE user_id = %s",
            (user_id,)
        )
        for row in await cur.fetchall():
            snapshot.unlocks[row["achievement_id"]] = UnlockRecord(user_id=user_id, **row)

        await cur.execute(
            "SELECT idempotency_key, applied_at FROM applied_events WHERE user_id = %s",
            (user_id,)
        )
        for row in await cur.fetchall():
            snapshot.applied_events[row["idempotency_key"]] = row["applied_at"]

        await cur.execute(
            """
            SELECT current_streak, longest_streak, last_active_day, freeze_count,
                   achieved_milestones, updated_at
            FROM streak_state WHERE user_id = %s
            """,
            (user_id,)
        )
        row = await cur.fetchone()
        if row:
            snapshot.streak = StreakState(user_id=user_id, **row)

        await cur.execute("SELECT points, badges FROM reward_balances WHERE user_id = %s", (user_id,))
        row = await cur.fetchone()
        if row:
            snapshot.balance = RewardBalance(user_id=user_id, **row)

        await cur.execute(
            """
            SELECT ledger_key, source, source_id, reward_type, value, granted_at
            FROM reward_ledger WHERE user_id = %s
            """,
            (user_id,)
        )
        for row in await cur.fetchall():
            snapshot.ledger[row["ledger_key"]] = RewardLedgerEntry(user_id=user_id, **row)

        await cur.execute(
            """
            SELECT ledger_key, source, source_id, created_at, attempts, last_error
            FROM reward_outbox WHERE user_id = %s
            """,
            (user_id,)
        )
        for row in await cur.fetchall():
            snapshot.outbox[row["ledger_key"]] = PendingReward(user_id=user_id, **row)

        await cur.execute(
            "SELECT ledger_key, payload FROM pending_notifications WHERE user_id = %s",
            (user_id,)
        )
        for row in await cur.fetchall():
            snapshot.notifications[row["ledger_key"]] = UnlockNotification.model_validate(row["payload"])

        return snapshot

    async def _save(self, cur, original: UserSnapshot, working: UserSnapshot) -> None:
        user_id = working.user_id

        for achievement_id, progress in working.progress.items():
            if original.progress.get(achievement_id) == progress:
                continue
            await cur.execute(
                """
                INSERT INTO achievement_progress (user_id, achievement_id, progress, unlocked_at, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, achievement_id) DO UPDATE
                    SET progress = EXCLUDED.progress,
                        unlocked_at = COALESCE(achievement_progress.unlocked_at, EXCLUDED.unlocked_at),
                        updated_at = EXCLUDED.updated_at
                """,
                (user_id, achievement_id, progress.progress, progress.unlocked_at, progress.updated_at)
            )

        for achievement_id, values in working.distinct_values.items():
            for value in values - original.distinct_values.get(achievement_id, set()):
                await cur.execute(
                    """
                    INSERT INTO achievement_distinct_values (user_id, achievement_id, value)
                    VALUES (%s, %s, %s) ON CONFLICT DO NOTHING
                    """,
                    (user_id, achievement_id, value)
                )

        for achievement_id, record in working.unlocks.items():
            if achievement_id in original.unlocks:
                continue
            await cur.execute(
                """
                INSERT INTO unlock_records (user_id, achievement_id, unlocked_at, event_key)
                VALUES (%s, %s, %s, %s) ON CONFLICT DO NOTHING
                """,
                (user_id, achievement_id, record.unlocked_at, record.event_key)
            )

        for key, applied_at in working.applied_events.items():
            if key in original.applied_events:
                continue
            await cur.execute(
                """
                INSERT INTO applied_events (user_id, idempotency_key, applied_at)
                VALUES (%s, %s, %s) ON CONFLICT DO NOTHING
                """,
                (user_id, key, applied_at)
            )

        if working.streak is not None and working.streak != original.streak:
            streak = working.streak
            await cur.execute(
                """
                INSERT INTO streak_state (user_id, current_streak, longest_streak, last_active_day,
                                          freeze_count, achieved_milestones, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE
                    SET current_streak = EXCLUDED.current_streak,
                        longest_streak = EXCLUDED.longest_streak,
                        last_active_day = EXCLUDED.last_active_day,
                        freeze_count = EXCLUDED.freeze_count,
                        achieved_milestones = EXCLUDED.achieved_milestones,
                        updated_at = EXCLUDED.updated_at
                """,
                (
                    user_id,
                    streak.current_streak,
                    streak.longest_streak,
                    streak.last_active_day,
                    streak.freeze_count,
                    streak.achieved_milestones,
                    streak.updated_at,
                )
            )

        if working.balance is not None and working.balance != original.balance:
            await cur.execute(
                """
                INSERT INTO reward_balances (user_id, points, badges)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id) DO UPDATE
                    SET points = EXCLUDED.points, badges = EXCLUDED.badges
                """,
                (user_id, working.balance.points, working.balance.badges)
            )

        for key, entry in working.ledger.items():
            if key in original.ledger:
                continue
            await cur.execute(
                """
                INSERT INTO reward_ledger (user_id, ledger_key, source, source_id, reward_type, value, granted_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    user_id,
                    key,
                    entry.source.value,
                    entry.source_id,
                    entry.reward_type.value,
                    entry.value,
                    entry.granted_at,
                )
            )

        for key in original.outbox.keys() - working.outbox.keys():
            await cur.execute(
                "DELETE FROM reward_outbox WHERE user_id = %s AND ledger_key = %s",
                (user_id, key)
            )
        for key, pending in working.outbox.items():
            if original.outbox.get(key) == pending:
                continue
            await cur.execute(
                """
                INSERT INTO reward_outbox (user_id, ledger_key, source, source_id, created_at, attempts, last_error)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id, ledger_key) DO UPDATE
                    SET attempts = EXCLUDED.attempts, last_error = EXCLUDED.last_error
                """,
                (
                    user_id,
                    key,
                    pending.source.value,
                    pending.source_id,
                    pending.created_at,
                    pending.attempts,
                    pending.last_error,
                )
            )

        for key in original.notifications.keys() - working.notifications.keys():
            await cur.execute(
                "DELETE FROM pending_notifications WHERE user_id = %s AND ledger_key = %s",
                (user_id, key)
            )
        for key, notification in working.notifications.items():
            if key in original.notifications:
                continue
            await cur.execute(
                """
                INSERT INTO pending_notifications (user_id, ledger_key, payload, created_at)
                VALUES (%s, %s, %s, %s) ON CONFLICT DO NOTHING
                """,
                (user_id, key, Jsonb(notification.model_dump(mode="json")), notification.created_at)
            )
