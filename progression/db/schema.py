"""PostgreSQL schema for the progression store"""
import logging

from progression.db.connection import Database

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS achievement_progress (
    user_id TEXT NOT NULL,
    achievement_id TEXT NOT NULL,
    progress INTEGER NOT NULL DEFAULT 0 CHECK (progress >= 0),
    unlocked_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ,
    PRIMARY KEY (user_id, achievement_id)
);

CREATE TABLE IF NOT EXISTS achievement_distinct_values (
    user_id TEXT NOT NULL,
    achievement_id TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (user_id, achievement_id, value)
);

CREATE TABLE IF NOT EXISTS unlock_records (
    user_id TEXT NOT NULL,
    achievement_id TEXT NOT NULL,
    unlocked_at TIMESTAMPTZ NOT NULL,
    event_key TEXT,
    PRIMARY KEY (user_id, achievement_id)
);

CREATE TABLE IF NOT EXISTS applied_events (
    user_id TEXT NOT NULL,
    idempotency_key TEXT NOT NULL,
    applied_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (user_id, idempotency_key)
);

CREATE TABLE IF NOT EXISTS streak_state (
    user_id TEXT PRIMARY KEY,
    current_streak INTEGER NOT NULL DEFAULT 0 CHECK (current_streak >= 0),
    longest_streak INTEGER NOT NULL DEFAULT 0,
    last_active_day DATE,
    freeze_count INTEGER NOT NULL DEFAULT 0 CHECK (freeze_count >= 0),
    achieved_milestones INTEGER[] NOT NULL DEFAULT '{}',
    updated_at TIMESTAMPTZ,
    CHECK (current_streak <= longest_streak)
);

CREATE TABLE IF NOT EXISTS reward_balances (
    user_id TEXT PRIMARY KEY,
    points BIGINT NOT NULL DEFAULT 0,
    badges TEXT[] NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS reward_ledger (
    user_id TEXT NOT NULL,
    ledger_key TEXT NOT NULL,
    source TEXT NOT NULL,
    source_id TEXT NOT NULL,
    reward_type TEXT NOT NULL,
    value INTEGER NOT NULL,
    granted_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (user_id, ledger_key)
);

CREATE TABLE IF NOT EXISTS reward_outbox (
    user_id TEXT NOT NULL,
    ledger_key TEXT NOT NULL,
    source TEXT NOT NULL,
    source_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    PRIMARY KEY (user_id, ledger_key)
);

CREATE TABLE IF NOT EXISTS pending_notifications (
    user_id TEXT NOT NULL,
    ledger_key TEXT NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (user_id, ledger_key)
);

CREATE TABLE IF NOT EXISTS event_dedup_index (
    idempotency_key TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    claimed_at TIMESTAMPTZ NOT NULL,
    completed_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_event_dedup_claimed_at ON event_dedup_index (claimed_at);
CREATE INDEX IF NOT EXISTS idx_applied_events_applied_at ON applied_events (applied_at);
"""


async def init_schema(db: Database) -> None:
    """Create progression tables if they don't exist"""
    async with db.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(SCHEMA_SQL)
        await conn.commit()
    logger.info("Progression schema ready")
