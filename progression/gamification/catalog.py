"""
Achievement Catalog

Static, read-only set of achievement definitions. Loaded once at startup from
the built-in defaults or from a JSON file (ACHIEVEMENT_CATALOG_PATH):

    {
        "version": "2025.1",
        "achievements": [
            {
                "id": "first_post",
                "title": "First Bite",
                "description": "Share your first food experience",
                "category": "culinary",
                "requirement": {"eventType": "postCreated", "targetValue": 1},
                "reward": {"type": "badge", "value": 10, "title": "First Bite Badge"}
            }
        ]
    }
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from progression.config import ACHIEVEMENT_CATALOG_PATH
from progression.exceptions import CatalogError, RecordNotFoundError
from progression.models import AchievementDefinition, Aggregation

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_VERSION = "builtin-1"


def _definition(
    id: str,
    title: str,
    description: str,
    icon: str,
    category: str,
    rarity: str,
    event_type: str,
    target: int,
    reward: dict,
    aggregation: str = "count",
    distinct_key: Optional[str] = None,
    criteria: Optional[dict] = None,
    is_secret: bool = False,
) -> dict:
    return {
        "id": id,
        "title": title,
        "description": description,
        "iconRef": icon,
        "category": category,
        "rarity": rarity,
        "requirement": {
            "eventType": event_type,
            "targetValue": target,
            "aggregation": aggregation,
            "distinctKey": distinct_key,
            "criteria": criteria or {},
        },
        "reward": reward,
        "isSecret": is_secret,
    }


DEFAULT_ACHIEVEMENTS: List[dict] = [
    # Culinary
    _definition(
        "first_post", "First Bite", "Share your first food experience",
        "fork.knife", "culinary", "common", "postCreated", 1,
        {"type": "badge", "value": 10, "title": "First Bite Badge", "description": "Welcome to the community!"},
    ),
    _definition(
        "food_explorer_10", "Food Explorer", "Share 10 different food experiences",
        "map.fill", "culinary", "uncommon", "postCreated", 10,
        {"type": "badge", "value": 50, "title": "Explorer Badge", "description": "You're getting the hang of this!"},
    ),
    _definition(
        "cuisine_explorer", "Cuisine Explorer", "Try 5 different types of cuisine",
        "globe", "culinary", "rare", "postCreated", 5,
        {"type": "title", "value": 0, "title": "Adventurous Eater", "description": "Show off your diverse palate"},
        aggregation="distinctCount", distinct_key="cuisine",
    ),
    # Social
    _definition(
        "social_butterfly", "Social Butterfly", "Give 50 likes",
        "heart.fill", "social", "common", "likeGiven", 50,
        {"type": "points", "value": 25, "title": "Social Points", "description": "You love engaging with the community!"},
    ),
    _definition(
        "people_person", "People Person", "Connect with 10 friends",
        "person.2.fill", "social", "uncommon", "friendAdded", 10,
        {"type": "feature", "value": 0, "title": "Friend Finder", "description": "Enhanced friend discovery features"},
    ),
    _definition(
        "community_leader", "Community Leader", "Gain 100 followers",
        "crown.fill", "social", "epic", "followerGained", 100,
        {"type": "title", "value": 0, "title": "Community Leader", "description": "Your influence is growing!"},
    ),
    # Community
    _definition(
        "first_comment", "First Words", "Leave your first comment",
        "bubble.left.fill", "community", "common", "commentAdded", 1,
        {"type": "badge", "value": 10, "title": "First Words Badge", "description": "You've joined the conversation!"},
    ),
    _definition(
        "comment_engager", "Community Engager", "Leave 50 comments total",
        "text.bubble.fill", "community", "uncommon", "commentAdded", 50,
        {"type": "title", "value": 0, "title": "Active Commenter", "description": "You're always part of the conversation!"},
    ),
    _definition(
        "reply_master", "Reply Master", "Reply to 25 different comments",
        "arrowshape.turn.up.left.fill", "community", "uncommon", "replyAdded", 25,
        {"type": "points", "value": 40, "title": "Reply Master Points", "description": "You keep conversations going!"},
        aggregation="distinctCount", distinct_key="commentId",
    ),
    # Explorer
    _definition(
        "local_expert", "Local Expert", "Visit 20 different restaurants",
        "location.fill", "explorer", "rare", "placeVisited", 20,
        {"type": "title", "value": 0, "title": "Local Expert", "description": "You know your neighborhood!"},
        aggregation="distinctCount", distinct_key="placeId",
    ),
    # Creator
    _definition(
        "daily_foodie", "Daily Foodie", "Post for 7 consecutive days",
        "flame.fill", "creator", "epic", "postCreated", 7,
        {"type": "cosmetic", "value": 0, "title": "Streak Master", "description": "Special post animation unlocked!"},
        aggregation="maxStreak",
    ),
    # Special
    _definition(
        "legendary_critic", "Legendary Critic", "Write 100 detailed reviews with photos",
        "star.fill", "special", "legendary", "postCreated", 100,
        {"type": "title", "value": 0, "title": "Legendary Critic", "description": "Your reviews are legendary!"},
        criteria={"photos": "required", "reviews": "detailed"}, is_secret=True,
    ),
    # Referrals
    _definition(
        "first_referral", "First Invite", "Invite your first friend to join",
        "person.badge.plus", "social", "common", "referralCompleted", 1,
        {"type": "points", "value": 100, "title": "Referral Points", "description": "You're spreading the word!"},
    ),
    _definition(
        "social_butterfly_referral", "Social Connector", "Successfully refer 5 friends",
        "sparkles", "social", "uncommon", "referralCompleted", 5,
        {"type": "points", "value": 500, "title": "Connector Points", "description": "Your friends love it here thanks to you!"},
    ),
    _definition(
        "community_builder", "Community Builder", "Successfully refer 10 friends",
        "building.2.fill", "community", "rare", "referralCompleted", 10,
        {"type": "streakFreeze", "value": 3, "title": "Streak Freeze x3", "description": "Protect your posting streak!"},
    ),
    _definition(
        "ambassador", "Ambassador", "Successfully refer 25 friends",
        "crown.fill", "special", "legendary", "referralCompleted", 25,
        {"type": "title", "value": 0, "title": "Ambassador", "description": "You're a true community champion!"},
    ),
    _definition(
        "viral_inviter", "Viral Inviter", "Successfully refer 50 friends",
        "flame.fill", "special", "legendary", "referralCompleted", 50,
        {"type": "cosmetic", "value": 0, "title": "Golden Profile Frame", "description": "Stand out with a golden profile frame!"},
        is_secret=True,
    ),
]


class AchievementCatalog:
    """Immutable set of achievement definitions indexed by id and event type"""

    def __init__(self, definitions: Iterable[AchievementDefinition], version: str = DEFAULT_CATALOG_VERSION):
        self.version = version
        self._by_id: Dict[str, AchievementDefinition] = {}
        self._by_event_type: Dict[str, List[AchievementDefinition]] = {}

        for definition in definitions:
            if definition.id in self._by_id:
                raise CatalogError(
                    message=f"Duplicate achievement id '{definition.id}'",
                    achievement_id=definition.id
                )
            if definition.requirement.aggregation == Aggregation.DISTINCT_COUNT and not definition.requirement.distinct_key:
                raise CatalogError(
                    message=f"Achievement '{definition.id}' uses distinctCount without a distinctKey",
                    achievement_id=definition.id
                )
            self._by_id[definition.id] = definition
            self._by_event_type.setdefault(definition.requirement.event_type, []).append(definition)

    @classmethod
    def from_dicts(cls, raw: Iterable[dict], version: str = DEFAULT_CATALOG_VERSION) -> "AchievementCatalog":
        definitions = []
        for item in raw:
            try:
                definitions.append(AchievementDefinition.model_validate(item))
            except PydanticValidationError as e:
                raise CatalogError(
                    message=f"Invalid achievement definition: {e}",
                    achievement_id=item.get("id") if isinstance(item, dict) else None,
                    cause=e
                )
        return cls(definitions, version=version)

    @classmethod
    def from_file(cls, path: Path) -> "AchievementCatalog":
        """
        Load a catalog from a JSON file

        Raises:
            CatalogError: file unreadable, not JSON, or contains invalid entries
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(message=f"Could not read achievement catalog {path}: {e}", cause=e)

        if isinstance(data, list):
            return cls.from_dicts(data, version=Path(path).stem)
        return cls.from_dicts(data.get("achievements", []), version=str(data.get("version", Path(path).stem)))

    @classmethod
    def default(cls) -> "AchievementCatalog":
        return cls.from_dicts(DEFAULT_ACHIEVEMENTS)

    def get(self, achievement_id: str) -> AchievementDefinition:
        try:
            return self._by_id[achievement_id]
        except KeyError:
            raise RecordNotFoundError(
                message=f"Unknown achievement '{achievement_id}'",
                record_type="Achievement",
                record_id=achievement_id
            )

    def find(self, achievement_id: str) -> Optional[AchievementDefinition]:
        return self._by_id.get(achievement_id)

    def for_event_type(self, event_type: str) -> List[AchievementDefinition]:
        return list(self._by_event_type.get(event_type, []))

    def all(self) -> List[AchievementDefinition]:
        return list(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, achievement_id: str) -> bool:
        return achievement_id in self._by_id


def load_catalog(path: Optional[Path] = ACHIEVEMENT_CATALOG_PATH) -> AchievementCatalog:
    """Catalog from ACHIEVEMENT_CATALOG_PATH, or the built-in defaults"""
    if path:
        catalog = AchievementCatalog.from_file(path)
    else:
        catalog = AchievementCatalog.default()
    logger.info(f"Loaded achievement catalog version={catalog.version} ({len(catalog)} achievements)")
    return catalog
