"""Badge awarding engine.

Badges are re-derived from current statistics every time the engine runs, so it
can be invoked after any stats mutation (or manually) without remembering what
it checked before. Each pass compares one derived quantity against the active
catalog badges of a matching criteria kind, skipping badges already held.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.gamification.badge_catalog import BadgeCatalog, BadgeDefinition, load_badge_catalog
from starpath.gamification.reward_ledger import RewardLedger
from starpath.gamification.stats_store import StatsStore
from starpath.models.stats import BadgeCategory, CriteriaType, LearnerStats

logger = structlog.get_logger()

# Stats column compared for each completion criteria type
COMPLETION_COUNTERS = {
    CriteriaType.ACTIVITIES_COMPLETED.value: "activities_completed",
    CriteriaType.LESSONS_COMPLETED.value: "lessons_completed",
    CriteriaType.JOURNEYS_COMPLETED.value: "journeys_completed",
    CriteriaType.BOOKS_READ.value: "books_read",
    CriteriaType.VIDEOS_WATCHED.value: "videos_watched",
    CriteriaType.AUDIO_ASSIGNMENTS_COMPLETED.value: "audio_assignments_completed",
}

# Content types whose stars come straight from one ledger source type.
# Anything else is an explore-video sub-type, filtered on the grant's video_type.
DIRECT_SOURCE_TYPES = {"book", "video", "activity", "audio_assignment", "chant"}
EXPLORE_SOURCE_TYPE = "explore_video"

CONTENT_TYPE_CRITERIA = (CriteriaType.CONTENT_TYPE_STARS.value, CriteriaType.CUSTOM.value)


@dataclass
class BadgeUpdateResult:
    success: bool
    new_badges: List[Dict[str, Any]] = field(default_factory=list)
    total_badges: int = 0
    error: Optional[str] = None


class BadgeEngine:
    """Engine for checking and awarding badges."""

    def __init__(self, db: AsyncSession, cache=None):
        self.db = db
        self.cache = cache
        self.stats_store = StatsStore(db)
        self.ledger = RewardLedger(db)

    async def evaluate_and_award(
        self,
        learner_id: uuid.UUID,
        catalog: Optional[BadgeCatalog] = None
    ) -> List[BadgeDefinition]:
        """Award every badge whose criteria are currently met. Returns the new ones."""
        if catalog is None:
            catalog = await load_badge_catalog(self.db, self.cache)

        stats = await self.stats_store.get_or_create(learner_id)
        held = await self.stats_store.badge_ids(learner_id)
        awarded: List[BadgeDefinition] = []

        # Level and milestone badges from lifetime stars
        star_badges = catalog.select(
            categories=[BadgeCategory.LEVEL.value, BadgeCategory.MILESTONE.value],
            criteria_types=[CriteriaType.TOTAL_STARS.value]
        )
        await self._award_reached(learner_id, star_badges, stats.total_stars, held, awarded)

        # Content-type badges from stars attributable to one content sub-type
        for content_type in catalog.content_types():
            stars_from_type = await self.stars_from_content_type(learner_id, content_type)
            badges = [
                badge for badge in catalog.select(criteria_types=CONTENT_TYPE_CRITERIA)
                if badge.criteria_metadata.get("content_type") == content_type
            ]
            await self._award_reached(learner_id, badges, stars_from_type, held, awarded)

        # Streak badges, current or longest streak per badge
        for badge in catalog.select(criteria_types=[CriteriaType.STREAK_DAYS.value]):
            streak = stats.longest_streak if badge.criteria_metadata.get("check_longest") else stats.current_streak
            await self._award_reached(learner_id, [badge], streak or 0, held, awarded)

        # Completion badges from raw counters
        for badge in catalog.select(criteria_types=list(COMPLETION_COUNTERS)):
            count = getattr(stats, COMPLETION_COUNTERS[badge.criteria_type]) or 0
            await self._award_reached(learner_id, [badge], count, held, awarded)

        return awarded

    async def stars_from_content_type(self, learner_id: uuid.UUID, content_type: str) -> int:
        if content_type in DIRECT_SOURCE_TYPES:
            return await self.ledger.stars_from_source(learner_id, content_type)
        return await self.ledger.stars_from_source(
            learner_id,
            EXPLORE_SOURCE_TYPE,
            {"video_type": content_type}
        )

    async def _award_reached(
        self,
        learner_id: uuid.UUID,
        badges: List[BadgeDefinition],
        value: int,
        held: Set[uuid.UUID],
        awarded: List[BadgeDefinition]
    ) -> None:
        for badge in badges:
            if badge.id in held or value < badge.criteria_value:
                continue

            if await self.stats_store.add_badge(learner_id, badge.id):
                awarded.append(badge)
                logger.info(
                    "Badge awarded",
                    learner_id=str(learner_id),
                    badge_name=badge.name,
                    criteria_type=badge.criteria_type,
                    value=value
                )
            held.add(badge.id)

    async def update_badges(
        self,
        learner_id: Optional[uuid.UUID],
        silent: bool = False,
        throw_on_error: bool = False
    ) -> BadgeUpdateResult:
        """Reconcile a learner's badges with current stats and commit.

        Failures are logged and reported in the result unless `throw_on_error`.
        """
        if not learner_id:
            message = "Learner ID is required to update badges"
            if throw_on_error:
                raise ValueError(message)
            logger.error(message)
            return BadgeUpdateResult(success=False, error=message)

        try:
            new_badges = await self.evaluate_and_award(learner_id)
            await self.db.commit()
            stats: LearnerStats = await self.stats_store.get(learner_id)
        except Exception as e:
            await self.db.rollback()
            message = f"Error updating badges for learner {learner_id}: {e}"
            if throw_on_error:
                raise
            logger.error("Badge update failed", learner_id=str(learner_id), error=str(e), exc_info=True)
            return BadgeUpdateResult(success=False, error=message)

        if not silent and new_badges:
            logger.info(
                "New badges awarded",
                learner_id=str(learner_id),
                badges=[f"{b.name} ({b.category}, {b.rarity})" for b in new_badges]
            )

        return BadgeUpdateResult(
            success=True,
            new_badges=[
                {"id": str(b.id), "name": b.name, "category": b.category, "rarity": b.rarity}
                for b in new_badges
            ],
            total_badges=stats.total_badges if stats else 0
        )
