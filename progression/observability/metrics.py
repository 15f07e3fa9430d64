"""Prometheus metrics for the progression engine

Exposes counters for event ingestion, unlocks, streak milestones, reward
dispatch, and store retries. Scraped from the /metrics endpoint.
"""

import logging
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# Submitted events
# Labels: status (accepted/duplicate/rejected/failed)
events_submitted_total = Counter(
    'progression_events_submitted_total',
    'Total number of activity events submitted',
    ['status']
)

# Event processing duration
event_processing_duration = Histogram(
    'progression_event_processing_seconds',
    'Time spent processing an accepted activity event',
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, float('inf'))
)

# Achievement unlocks
# Labels: rarity (common/uncommon/rare/epic/legendary)
achievements_unlocked_total = Counter(
    'progression_achievements_unlocked_total',
    'Total number of achievements unlocked',
    ['rarity']
)

# Streak milestones
# Labels: milestone (7/14/30/60/100/365)
streak_milestones_total = Counter(
    'progression_streak_milestones_total',
    'Total number of streak milestones reached',
    ['milestone']
)

# Reward dispatch
# Labels: source (achievement/milestone), status (applied/already_applied/failed)
reward_dispatches_total = Counter(
    'progression_reward_dispatches_total',
    'Total number of reward dispatch attempts',
    ['source', 'status']
)

# Notifications
# Labels: status (sent/failed)
notifications_total = Counter(
    'progression_notifications_total',
    'Total number of unlock notifications',
    ['status']
)

# Retry attempts
# Labels: operation (function name)
retries_total = Counter(
    'progression_retries_total',
    'Total number of retry attempts',
    ['operation']
)


def record_event_submitted(status: str) -> None:
    try:
        events_submitted_total.labels(status=status).inc()
    except Exception as e:
        logger.error(f"Failed to record event submission: {e}")


def record_unlock(rarity: str) -> None:
    try:
        achievements_unlocked_total.labels(rarity=rarity).inc()
    except Exception as e:
        logger.error(f"Failed to record unlock: {e}")


def record_milestone(milestone: int) -> None:
    try:
        streak_milestones_total.labels(milestone=str(milestone)).inc()
    except Exception as e:
        logger.error(f"Failed to record milestone: {e}")


def record_dispatch(source: str, status: str) -> None:
    """
    Record reward dispatch outcome.

    Args:
        source: achievement or milestone
        status: applied, already_applied, or failed
    """
    try:
        reward_dispatches_total.labels(source=source, status=status).inc()
    except Exception as e:
        logger.error(f"Failed to record dispatch: {e}")


def record_notification(success: bool) -> None:
    try:
        notifications_total.labels(status="sent" if success else "failed").inc()
    except Exception as e:
        logger.error(f"Failed to record notification: {e}")


def record_retry(operation: str) -> None:
    try:
        retries_total.labels(operation=operation).inc()
        logger.debug(f"[METRICS] Retry recorded for {operation}")
    except Exception as e:
        logger.error(f"Failed to record retry: {e}")
