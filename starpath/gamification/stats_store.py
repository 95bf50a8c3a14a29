"""Per-learner cumulative counters, mutated only through controlled increments."""

from datetime import date, datetime, timedelta
from typing import Optional, Set, Tuple
import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.core.config import settings
from starpath.core.database import insert_if_absent
from starpath.core.exceptions import ConcurrentUpdateError
from starpath.models.stats import LearnerStats, LearnerBadge

logger = structlog.get_logger()

# Counters that may be incremented through add_stars / increment_counter
COUNTER_COLUMNS = {
    "activities_completed",
    "videos_watched",
    "books_read",
    "audio_assignments_completed",
    "lessons_completed",
    "journeys_completed",
}


def advance_streak(
    current_streak: int,
    longest_streak: int,
    last_activity: Optional[date],
    today: date
) -> Tuple[int, int, date]:
    """Return (current, longest, last_activity) after activity on `today`.

    Same day leaves the streak alone, the next day extends it, anything else
    (a gap, or no previous activity) starts over at 1.
    """
    if last_activity == today:
        return current_streak, longest_streak, last_activity

    if last_activity is not None and last_activity == today - timedelta(days=1):
        current = current_streak + 1
    else:
        current = 1

    return current, max(longest_streak, current), today


class StatsStore:
    """Read and atomically update LearnerStats rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, learner_id: uuid.UUID) -> Optional[LearnerStats]:
        result = await self.db.execute(
            select(LearnerStats)
            .where(LearnerStats.learner_id == learner_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, learner_id: uuid.UUID) -> LearnerStats:
        """Get the stats row, creating it with an insert-if-absent when missing."""
        stats = await self.get(learner_id)
        if stats is not None:
            return stats

        if await insert_if_absent(self.db, LearnerStats, {"learner_id": learner_id}, ["learner_id"]):
            logger.info("Learner stats created", learner_id=str(learner_id))

        return await self.get(learner_id)

    async def add_stars(
        self,
        learner_id: uuid.UUID,
        stars: int,
        counter: Optional[str] = None
    ) -> LearnerStats:
        """Add stars (and optionally bump one category counter) in a single UPDATE."""
        if stars < 0:
            raise ValueError("stars must not be negative")
        if counter is not None and counter not in COUNTER_COLUMNS:
            raise ValueError(f"Unknown stats counter: {counter}")

        await self.get_or_create(learner_id)

        values = {
            "total_stars": LearnerStats.total_stars + stars,
            "updated_at": datetime.utcnow(),
        }
        if counter is not None:
            column = getattr(LearnerStats, counter)
            values[counter] = column + 1

        await self.db.execute(
            update(LearnerStats)
            .where(LearnerStats.learner_id == learner_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        stats = await self.get(learner_id)
        logger.info(
            "Stars added",
            learner_id=str(learner_id),
            stars=stars,
            counter=counter,
            total_stars=stats.total_stars
        )
        return stats

    async def increment_counter(self, learner_id: uuid.UUID, counter: str, amount: int = 1) -> LearnerStats:
        if counter not in COUNTER_COLUMNS:
            raise ValueError(f"Unknown stats counter: {counter}")
        if amount < 0:
            raise ValueError("Counters never decrease")

        await self.get_or_create(learner_id)
        column = getattr(LearnerStats, counter)
        await self.db.execute(
            update(LearnerStats)
            .where(LearnerStats.learner_id == learner_id)
            .values({counter: column + amount, "updated_at": datetime.utcnow()})
            .execution_options(synchronize_session=False)
        )
        return await self.get(learner_id)

    async def record_activity(self, learner_id: uuid.UUID, today: Optional[date] = None) -> LearnerStats:
        """Advance the streak for activity on `today` with optimistic compare-and-set."""
        today = today or datetime.utcnow().date()

        for attempt in range(settings.STREAK_CAS_RETRIES):
            stats = await self.get_or_create(learner_id)
            current, longest, last = advance_streak(
                stats.current_streak or 0,
                stats.longest_streak or 0,
                stats.last_activity_date,
                today
            )

            if last == stats.last_activity_date and current == stats.current_streak:
                return stats

            if stats.last_activity_date is None:
                last_matches = LearnerStats.last_activity_date.is_(None)
            else:
                last_matches = LearnerStats.last_activity_date == stats.last_activity_date

            result = await self.db.execute(
                update(LearnerStats)
                .where(
                    LearnerStats.learner_id == learner_id,
                    LearnerStats.current_streak == stats.current_streak,
                    last_matches
                )
                .values(
                    current_streak=current,
                    longest_streak=longest,
                    last_activity_date=last,
                    updated_at=datetime.utcnow()
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount:
                return await self.get(learner_id)

            logger.debug("Streak update lost a race, retrying", learner_id=str(learner_id), attempt=attempt)

        raise ConcurrentUpdateError(
            "Could not update streak after repeated conflicts",
            {"learner_id": str(learner_id)}
        )

    async def badge_ids(self, learner_id: uuid.UUID) -> Set[uuid.UUID]:
        result = await self.db.execute(
            select(LearnerBadge.badge_id).where(LearnerBadge.learner_id == learner_id)
        )
        return set(result.scalars().all())

    async def add_badge(self, learner_id: uuid.UUID, badge_id: uuid.UUID) -> bool:
        """Add a badge to the learner's set. Returns False when it was already there."""
        await self.get_or_create(learner_id)

        inserted = await insert_if_absent(
            self.db,
            LearnerBadge,
            {"learner_id": learner_id, "badge_id": badge_id, "earned_at": datetime.utcnow()},
            ["learner_id", "badge_id"]
        )
        if not inserted:
            return False

        await self.db.execute(
            update(LearnerStats)
            .where(LearnerStats.learner_id == learner_id)
            .values(total_badges=LearnerStats.total_badges + 1, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return True
