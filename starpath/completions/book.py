"""Book readings: a book pays out once it has been read the required number of times."""

from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.completions.base import (
    CompletionEvent, CompletionOutcome, CompletionResult, Eligibility, RewardFlow, RewardSource
)
from starpath.core.config import settings
from starpath.core.exceptions import BookNotFound
from starpath.models.catalog import Book, ContentType
from starpath.models.completions import CompletionRecord
from starpath.models.progress import BookCompletion

logger = structlog.get_logger()

PASSING_STATUSES = {"passed", "completed"}


def book_eligibility(
    score: Optional[float],
    max_score: Optional[float],
    status: Optional[str],
    time_spent: float,
    progress: float
) -> Eligibility:
    """Score or status, plus minimum time and progress.

    Reaching the max score exactly waives both floors when BOOK_MAX_SCORE_BYPASS is on.
    """
    score_valid = score is not None and score > 0
    status_valid = (status or "").lower() in PASSING_STATUSES
    max_score_reached = (
        settings.BOOK_MAX_SCORE_BYPASS
        and score is not None
        and max_score is not None
        and score == max_score
    )
    time_valid = (time_spent or 0) >= settings.BOOK_MIN_TIME_SECONDS or max_score_reached
    progress_valid = (progress or 0) >= settings.BOOK_MIN_PROGRESS_PERCENT or max_score_reached

    return Eligibility(
        conditions={
            "score": score_valid,
            "status": status_valid,
            "time": time_valid,
            "progress": progress_valid,
        },
        messages={
            "score": "Score must be > 0",
            "status": 'Status must be "passed" or "completed"',
            "time": f"Time must be >= {settings.BOOK_MIN_TIME_SECONDS}s (or max score reached)",
            "progress": f"Progress must be >= {settings.BOOK_MIN_PROGRESS_PERCENT}% (or max score reached)",
        },
        passed=(score_valid or status_valid) and time_valid and progress_valid
    )


class BookCompletionHandler:
    """Book completion entry points."""

    def __init__(self, db: AsyncSession, cache=None):
        self.db = db
        self.flow = RewardFlow(db, cache)

    async def get_book(self, book_id: uuid.UUID) -> Book:
        book = await self.db.get(Book, book_id)
        if book is None:
            raise BookNotFound(book_id)
        return book

    async def submit_book_completion(
        self,
        learner_id: uuid.UUID,
        course_id: uuid.UUID,
        book_id: uuid.UUID,
        score: Optional[float],
        max_score: Optional[float],
        status: Optional[str],
        time_spent: float,
        progress: float
    ) -> CompletionResult:
        access = self.flow.tracker.access
        await access.load_learner(learner_id)

        eligibility = book_eligibility(score, max_score, status, time_spent, progress)
        if not eligibility.passed:
            logger.info(
                "Book completion requirements not met",
                learner_id=str(learner_id),
                book_id=str(book_id),
                requirements=eligibility.conditions
            )
            return CompletionResult(
                outcome=CompletionOutcome.REQUIREMENTS_NOT_MET,
                requirements=eligibility.breakdown(),
                reason="Completion requirements not met. Spend more time reading and submit a valid score or status."
            )

        book = await self.get_book(book_id)
        await access.load_course(course_id)
        entry = await self.flow.tracker.resolve_manifest_item(course_id, book_id, ContentType.BOOK.value)

        step_access = await access.check_step_access(learner_id, course_id, entry.step)
        if not step_access.accessible:
            return CompletionResult(outcome=CompletionOutcome.LOCKED, reason=step_access.reason)

        required = book.required_reading_count or settings.DEFAULT_BOOK_REQUIRED_READINGS
        stars = book.total_stars_awarded if book.total_stars_awarded is not None else settings.DEFAULT_BOOK_STARS

        source = RewardSource(
            learner_id=learner_id,
            source_type=ContentType.BOOK.value,
            content_id=book.id,
            content_tag="Book",
            title=book.title,
            stars=stars,
            required_count=required,
            counter="books_read",
            course_id=course_id,
            completion=BookCompletion(),
            metadata={"book_title": book.title, "required_reading_count": required},
            description=f'Earned {stars} stars for completing "{book.title}" {required} times'
        )
        result = await self.flow.run(
            source,
            CompletionEvent(progress_percentage=progress, time_spent=time_spent, score=score)
        )

        logger.info(
            "Book completion processed",
            learner_id=str(learner_id),
            book_id=str(book_id),
            outcome=result.outcome.value,
            reading_count=result.current_count,
            required=result.required_count,
            duplicate=result.duplicate
        )
        return result

    async def get_book_reading_status(self, learner_id: uuid.UUID, book_id: uuid.UUID) -> Dict[str, Any]:
        book = await self.get_book(book_id)
        reading_count = await self.flow.count_records(learner_id, ContentType.BOOK.value, book_id)
        required = book.required_reading_count or settings.DEFAULT_BOOK_REQUIRED_READINGS
        grant = await self.flow.ledger.find_grant(learner_id, ContentType.BOOK.value, book_id)

        return {
            "book_id": str(book.id),
            "title": book.title,
            "reading_count": reading_count,
            "required_reading_count": required,
            "requirement_met": reading_count >= required,
            "stars_awarded": grant is not None,
            "stars_to_award": book.total_stars_awarded if book.total_stars_awarded is not None else settings.DEFAULT_BOOK_STARS,
        }

    async def get_child_book_readings(self, learner_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Reading tallies for every book the learner has read."""
        await self.flow.tracker.access.load_learner(learner_id)

        result = await self.db.execute(
            select(
                CompletionRecord.content_id,
                func.count(CompletionRecord.id).label("reading_count"),
                func.max(CompletionRecord.completed_at).label("last_read_at")
            )
            .where(
                CompletionRecord.learner_id == learner_id,
                CompletionRecord.content_type == ContentType.BOOK.value
            )
            .group_by(CompletionRecord.content_id)
        )
        tallies = result.all()
        if not tallies:
            return []

        books = await self.db.execute(select(Book).where(Book.id.in_([row.content_id for row in tallies])))
        books_by_id = {book.id: book for book in books.scalars().all()}

        readings = []
        for row in tallies:
            book = books_by_id.get(row.content_id)
            required = (book.required_reading_count if book else None) or settings.DEFAULT_BOOK_REQUIRED_READINGS
            readings.append({
                "book_id": str(row.content_id),
                "title": book.title if book else None,
                "reading_count": row.reading_count,
                "required_reading_count": required,
                "requirement_met": row.reading_count >= required,
                "last_read_at": row.last_read_at,
            })

        return sorted(readings, key=lambda r: r["last_read_at"], reverse=True)
