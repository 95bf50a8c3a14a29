"""Read-only badge catalog snapshot, with a read-through cache and a default seed."""

from typing import Any, Dict, Iterable, List, Optional, Tuple
import uuid

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.core.config import settings
from starpath.models.stats import Badge, BadgeCategory, CriteriaType, BadgeRarity

logger = structlog.get_logger()

CATALOG_CACHE_KEY = "badge_catalog:active"


class BadgeDefinition(BaseModel):
    """Immutable copy of one active catalog badge."""
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    category: str
    criteria_type: str
    criteria_value: int
    criteria_metadata: Dict[str, Any] = Field(default_factory=dict)
    rarity: str = BadgeRarity.COMMON.value
    display_order: int = 0

    @classmethod
    def from_row(cls, badge: Badge) -> "BadgeDefinition":
        return cls(
            id=badge.id,
            name=badge.name,
            description=badge.description,
            category=badge.category,
            criteria_type=badge.criteria_type,
            criteria_value=badge.criteria_value or 0,
            criteria_metadata=dict(badge.criteria_metadata or {}),
            rarity=badge.rarity,
            display_order=badge.display_order or 0,
        )


class BadgeCatalog:
    """Immutable lookup over active badges, injected into the badge engine."""

    def __init__(self, badges: Iterable[BadgeDefinition]):
        self._badges: Tuple[BadgeDefinition, ...] = tuple(
            sorted(badges, key=lambda b: (b.criteria_value, b.display_order, b.name))
        )

    def __iter__(self):
        return iter(self._badges)

    def __len__(self) -> int:
        return len(self._badges)

    def select(
        self,
        categories: Optional[Iterable[str]] = None,
        criteria_types: Optional[Iterable[str]] = None
    ) -> List[BadgeDefinition]:
        """Badges matching the given categories and criteria types, ascending by threshold."""
        categories = set(categories) if categories is not None else None
        criteria_types = set(criteria_types) if criteria_types is not None else None
        return [
            badge for badge in self._badges
            if (categories is None or badge.category in categories)
            and (criteria_types is None or badge.criteria_type in criteria_types)
        ]

    def content_types(self) -> List[str]:
        """Content sub-types referenced by content-type badges."""
        seen = []
        content_criteria = [CriteriaType.CONTENT_TYPE_STARS.value, CriteriaType.CUSTOM.value]
        for badge in self.select(criteria_types=content_criteria):
            content_type = badge.criteria_metadata.get("content_type")
            if content_type and content_type not in seen:
                seen.append(content_type)
        return seen

    def to_cache(self) -> List[Dict[str, Any]]:
        return [badge.model_dump(mode="json") for badge in self._badges]

    @classmethod
    def from_cache(cls, payload: List[Dict[str, Any]]) -> "BadgeCatalog":
        return cls(BadgeDefinition.model_validate(item) for item in payload)


async def load_badge_catalog(db: AsyncSession, cache=None) -> BadgeCatalog:
    """Load the active catalog, reading through `cache` (an aiocache instance) when given."""
    if cache is not None:
        try:
            cached = await cache.get(CATALOG_CACHE_KEY)
            if cached:
                return BadgeCatalog.from_cache(cached)
        except Exception as e:
            logger.warning("Badge catalog cache read failed", error=str(e))

    result = await db.execute(select(Badge).where(Badge.is_active == True))  # noqa: E712
    catalog = BadgeCatalog(BadgeDefinition.from_row(badge) for badge in result.scalars().all())

    if cache is not None:
        try:
            await cache.set(CATALOG_CACHE_KEY, catalog.to_cache(), ttl=settings.BADGE_CATALOG_CACHE_TTL)
        except Exception as e:
            logger.warning("Badge catalog cache write failed", error=str(e))

    return catalog


async def invalidate_badge_catalog(cache) -> None:
    if cache is not None:
        await cache.delete(CATALOG_CACHE_KEY)


def _badge(name, description, category, criteria_type, value, rarity, order, **metadata) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "category": category.value,
        "criteria_type": criteria_type.value,
        "criteria_value": value,
        "criteria_metadata": metadata,
        "rarity": rarity.value,
        "display_order": order,
    }


DEFAULT_BADGES: List[Dict[str, Any]] = [
    # Level badges
    _badge("First Star", "Earned your first star!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 1, BadgeRarity.COMMON, 1),
    _badge("Getting Started", "Earned 10 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 10, BadgeRarity.COMMON, 2),
    _badge("Star Beginner", "Earned 25 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 25, BadgeRarity.COMMON, 3),
    _badge("Rising Star", "Earned 50 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 50, BadgeRarity.UNCOMMON, 4),
    _badge("Super Learner", "Earned 100 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 100, BadgeRarity.UNCOMMON, 5),
    _badge("Star Collector", "Earned 250 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 250, BadgeRarity.RARE, 6),
    _badge("Diamond Level", "Earned 500 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 500, BadgeRarity.EPIC, 7),
    _badge("Champion", "Earned 1000 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 1000, BadgeRarity.EPIC, 8),
    _badge("Mega Star", "Earned 2500 stars!", BadgeCategory.LEVEL, CriteriaType.TOTAL_STARS, 2500, BadgeRarity.LEGENDARY, 9),
    # Content-type badges
    _badge("Book Lover", "Earned 50 stars from books.", BadgeCategory.MILESTONE, CriteriaType.CONTENT_TYPE_STARS, 50, BadgeRarity.COMMON, 10, content_type="book"),
    _badge("Bookworm", "Earned 150 stars from books.", BadgeCategory.MILESTONE, CriteriaType.CONTENT_TYPE_STARS, 150, BadgeRarity.UNCOMMON, 11, content_type="book"),
    _badge("Reading Master", "Earned 300 stars from books.", BadgeCategory.MILESTONE, CriteriaType.CONTENT_TYPE_STARS, 300, BadgeRarity.RARE, 12, content_type="book"),
    _badge("Music Star", "Earned 20 stars from music videos.", BadgeCategory.MILESTONE, CriteriaType.CONTENT_TYPE_STARS, 20, BadgeRarity.COMMON, 13, content_type="music"),
    _badge("Music Maestro", "Earned 100 stars from music videos.", BadgeCategory.MILESTONE, CriteriaType.CONTENT_TYPE_STARS, 100, BadgeRarity.UNCOMMON, 14, content_type="music"),
    _badge("Rock Star", "Earned 250 stars from music videos.", BadgeCategory.MILESTONE, CriteriaType.CONTENT_TYPE_STARS, 250, BadgeRarity.RARE, 15, content_type="music"),
    # Streak badges
    _badge("Week Streak", "Learned 7 days in a row.", BadgeCategory.STREAK, CriteriaType.STREAK_DAYS, 7, BadgeRarity.UNCOMMON, 16, check_longest=False),
    _badge("Month Streak", "Learned 30 days in a row.", BadgeCategory.STREAK, CriteriaType.STREAK_DAYS, 30, BadgeRarity.RARE, 17, check_longest=False),
    _badge("Streak Master", "Reached a 100 day streak.", BadgeCategory.STREAK, CriteriaType.STREAK_DAYS, 100, BadgeRarity.LEGENDARY, 18, check_longest=True),
    # Completion badges
    _badge("First Activity", "Completed your first activity.", BadgeCategory.COMPLETION, CriteriaType.ACTIVITIES_COMPLETED, 1, BadgeRarity.COMMON, 19),
    _badge("Activity Enthusiast", "Completed 50 activities.", BadgeCategory.COMPLETION, CriteriaType.ACTIVITIES_COMPLETED, 50, BadgeRarity.RARE, 20),
    _badge("Completion Master", "Completed 25 lessons.", BadgeCategory.COMPLETION, CriteriaType.LESSONS_COMPLETED, 25, BadgeRarity.EPIC, 21),
]


async def seed_badge_catalog(db: AsyncSession, badges: Optional[List[Dict[str, Any]]] = None) -> int:
    """Insert catalog badges that are not present yet (matched by name). Returns the number added."""
    badges = DEFAULT_BADGES if badges is None else badges

    result = await db.execute(select(Badge.name))
    existing = set(result.scalars().all())

    added = 0
    for data in badges:
        if data["name"] in existing:
            continue
        db.add(Badge(**data))
        added += 1

    await db.commit()
    logger.info("Badge catalog seeded", added=added, total=len(badges))
    return added
