"""Global test fixtures and utilities for progression engine tests"""
import pytest
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from progression.db.memory_store import InMemoryProgressStore
from progression.gamification.catalog import AchievementCatalog
from progression.models import ActivityEvent
from progression.services.container import ServiceContainer
from progression.services.notifications import InMemoryNotifier


# ============================================================================
# Catalog Fixtures
# ============================================================================

def definition_dict(
    id: str,
    event_type: str = "postCreated",
    target: int = 1,
    aggregation: str = "count",
    distinct_key: Optional[str] = None,
    criteria: Optional[Dict[str, str]] = None,
    reward: Optional[Dict[str, Any]] = None,
    rarity: str = "common",
    category: str = "culinary",
    is_secret: bool = False,
) -> Dict[str, Any]:
    """Raw catalog entry in the JSON catalog format"""
    return {
        "id": id,
        "title": id.replace("_", " ").title(),
        "description": f"Description of {id}",
        "iconRef": "star.fill",
        "category": category,
        "rarity": rarity,
        "requirement": {
            "eventType": event_type,
            "targetValue": target,
            "aggregation": aggregation,
            "distinctKey": distinct_key,
            "criteria": criteria or {},
        },
        "reward": reward or {"type": "points", "value": 10, "title": f"{id} reward"},
        "isSecret": is_secret,
    }


@pytest.fixture
def make_definition():
    """Factory for raw catalog entries"""
    return definition_dict


@pytest.fixture
def catalog():
    """Small catalog covering every aggregation"""
    return AchievementCatalog.from_dicts([
        definition_dict("first_italian", target=1, reward={"type": "points", "value": 25, "title": "Buongiorno"}),
        definition_dict(
            "pasta_fan", target=3, criteria={"cuisine": "Italian"},
            reward={"type": "badge", "value": 0, "title": "Pasta Badge"}, rarity="uncommon"
        ),
        definition_dict(
            "cuisine_explorer", target=3, aggregation="distinctCount", distinct_key="cuisine",
            reward={"type": "title", "value": 0, "title": "Adventurous Eater"}, rarity="rare"
        ),
        definition_dict(
            "streak_starter", target=2, aggregation="maxStreak",
            reward={"type": "streakFreeze", "value": 2, "title": "Two Freezes"}, category="creator"
        ),
        definition_dict(
            "hidden_gem", event_type="placeVisited", target=2,
            reward={"type": "cosmetic", "value": 0, "title": "Golden Frame"},
            rarity="legendary", category="special", is_secret=True
        ),
        definition_dict("first_like", event_type="likeGiven", target=1, category="social"),
    ], version="test-1")


# ============================================================================
# Store & Service Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Fresh in-memory progress store"""
    return InMemoryProgressStore(lock_timeout=1.0)


@pytest.fixture
def notifier():
    """Notifier that records what it sends"""
    return InMemoryNotifier()


@pytest.fixture
def container(store, catalog, notifier):
    """Service container wired around the in-memory store"""
    return ServiceContainer(store=store, catalog=catalog, notifier=notifier)


@pytest.fixture
def user_id():
    """Standard test user ID"""
    return "user-123"


# ============================================================================
# Event Fixtures
# ============================================================================

@pytest.fixture
def make_event(user_id):
    """Factory for activity events"""
    def _make_event(
        key: str,
        type: str = "postCreated",
        timestamp: Optional[datetime] = None,
        payload: Optional[Dict[str, Any]] = None,
        user: Optional[str] = None,
    ) -> ActivityEvent:
        return ActivityEvent(
            idempotency_key=key,
            user_id=user or user_id,
            type=type,
            timestamp=timestamp or datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc),
            payload=payload or {},
        )
    return _make_event
