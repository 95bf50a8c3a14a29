"""Shared reward path for content completions.

Every content type runs the same sequence once its own eligibility predicate
has passed: ledger guard, time-window dedup, record the event, and on crossing
the required count grant stars exactly once. Badge evaluation and
notifications run after the commit and never fail the completion.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import uuid

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.core.config import settings
from starpath.core.locks import reward_locks
from starpath.gamification.badge_engine import BadgeEngine
from starpath.gamification.reward_ledger import RewardLedger
from starpath.gamification.stats_store import StatsStore
from starpath.models.completions import CompletionRecord
from starpath.models.progress import BookCompletion, ItemStatus, VideoCompletion
from starpath.notifications.notification_engine import NotificationEngine
from starpath.progress.tracker import ContentProgressTracker

logger = structlog.get_logger()


class CompletionOutcome(str, Enum):
    REWARDED = "rewarded"
    ALREADY_REWARDED = "already_rewarded"
    RECORDED = "recorded"
    REQUIREMENTS_NOT_MET = "requirements_not_met"
    LOCKED = "locked"


@dataclass
class Eligibility:
    """Per-condition breakdown of an eligibility predicate."""
    conditions: Dict[str, bool]
    messages: Dict[str, str] = field(default_factory=dict)
    passed: bool = False

    def breakdown(self) -> Dict[str, str]:
        return {
            name: "ok" if ok else self.messages.get(name, "not met")
            for name, ok in self.conditions.items()
        }


@dataclass
class CompletionResult:
    outcome: CompletionOutcome
    current_count: int = 0
    required_count: int = 1
    requirement_met: bool = False
    stars_awarded: bool = False
    stars_granted: int = 0
    total_stars: int = 0
    duplicate: bool = False
    course_completed: bool = False
    new_badges: List[Dict[str, Any]] = field(default_factory=list)
    requirements: Dict[str, str] = field(default_factory=dict)
    reason: Optional[str] = None
    # Zero-star content bumped its category counter
    counted: bool = False

    @property
    def success(self) -> bool:
        return self.outcome not in (CompletionOutcome.REQUIREMENTS_NOT_MET, CompletionOutcome.LOCKED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "outcome": self.outcome.value,
            "current_count": self.current_count,
            "required_count": self.required_count,
            "requirement_met": self.requirement_met,
            "stars_awarded": self.stars_awarded,
            "stars_granted": self.stars_granted,
            "total_stars": self.total_stars,
            "duplicate": self.duplicate,
            "course_completed": self.course_completed,
            "new_badges": self.new_badges,
            "requirements": self.requirements,
            "reason": self.reason,
        }


@dataclass
class RewardSource:
    """What is being completed, and what completing it is worth."""
    learner_id: uuid.UUID
    source_type: str
    content_id: uuid.UUID
    content_tag: str
    title: str
    stars: int
    required_count: int = 1
    counter: Optional[str] = None
    course_id: Optional[uuid.UUID] = None
    manifest_type: Optional[str] = None
    completion: Any = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None

    @property
    def lock_key(self) -> Tuple[uuid.UUID, uuid.UUID]:
        return (self.learner_id, self.content_id)


@dataclass
class CompletionEvent:
    """One reading, watch or attempt to record before counting."""
    progress_percentage: float = 100.0
    time_spent: float = 0.0
    score: Optional[float] = None


class RewardFlow:
    """Runs the guarded reward sequence for one completion."""

    def __init__(self, db: AsyncSession, cache=None):
        self.db = db
        self.cache = cache
        self.ledger = RewardLedger(db)
        self.stats_store = StatsStore(db)
        self.tracker = ContentProgressTracker(db, cache=cache)
        self.notifications = NotificationEngine(db)

    async def count_records(self, learner_id: uuid.UUID, content_type: str, content_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(CompletionRecord.id)).where(
                CompletionRecord.learner_id == learner_id,
                CompletionRecord.content_type == content_type,
                CompletionRecord.content_id == content_id
            )
        )
        return int(result.scalar() or 0)

    async def record_completion(
        self,
        source: RewardSource,
        event: CompletionEvent,
        dedupe: bool = True
    ) -> Tuple[Optional[CompletionRecord], bool]:
        """Record one completion event. Returns (record, duplicate).

        A record of the same content inside the dedup window is reused instead.
        """
        now = datetime.utcnow()
        if dedupe:
            window_start = now - timedelta(seconds=settings.DEDUP_WINDOW_SECONDS)
            result = await self.db.execute(
                select(CompletionRecord)
                .where(
                    CompletionRecord.learner_id == source.learner_id,
                    CompletionRecord.content_type == source.source_type,
                    CompletionRecord.content_id == source.content_id,
                    CompletionRecord.completed_at >= window_start
                )
                .order_by(CompletionRecord.completed_at.desc())
                .limit(1)
            )
            recent = result.scalar_one_or_none()
            if recent is not None:
                logger.info(
                    "Duplicate completion suppressed",
                    learner_id=str(source.learner_id),
                    source_type=source.source_type,
                    content_id=str(source.content_id),
                    window_seconds=settings.DEDUP_WINDOW_SECONDS
                )
                return recent, True

        record = CompletionRecord(
            learner_id=source.learner_id,
            content_type=source.source_type,
            content_id=source.content_id,
            course_id=source.course_id,
            progress_percentage=event.progress_percentage,
            time_spent=event.time_spent,
            score=event.score,
            completed_at=now
        )
        self.db.add(record)
        await self.db.flush()
        return record, False

    async def run(
        self,
        source: RewardSource,
        event: Optional[CompletionEvent] = None,
        dedupe: bool = True
    ) -> CompletionResult:
        """Ledger guard, record, and grant on threshold crossing. Commits.

        With no `event` the completion itself is the single qualifying action
        (e.g. an approved review) and counts as 1.
        """
        async with reward_locks.hold("reward", *source.lock_key):
            existing = await self.ledger.find_grant(source.learner_id, source.source_type, source.content_id)
            if existing is not None:
                return await self._already_rewarded(source)

            duplicate = False
            if event is not None:
                _, duplicate = await self.record_completion(source, event, dedupe and source.required_count > 1)
                count = await self.count_records(source.learner_id, source.source_type, source.content_id)
            else:
                count = 1

            if count < source.required_count:
                await self._mark_item(source, ItemStatus.IN_PROGRESS, count, awarded=False)
                stats = await self.stats_store.get_or_create(source.learner_id)
                await self.db.commit()
                return CompletionResult(
                    outcome=CompletionOutcome.RECORDED,
                    current_count=count,
                    required_count=source.required_count,
                    total_stars=stats.total_stars,
                    duplicate=duplicate
                )

            result = await self._cross_threshold(source, count)
            result.duplicate = duplicate

        await self.after_commit(source, result)
        return result

    async def _cross_threshold(self, source: RewardSource, count: int) -> CompletionResult:
        granted = 0
        counted = False
        if source.stars >= 1:
            grant = await self.ledger.grant(
                source.learner_id,
                source.stars,
                source.source_type,
                source.content_id,
                content_tag=source.content_tag,
                metadata=source.metadata,
                description=source.description
            )
            if grant is None:
                # Another request crossed the threshold first
                await self.db.rollback()
                return await self._already_rewarded(source)

            await self.stats_store.add_stars(source.learner_id, source.stars, source.counter)
            await self.stats_store.record_activity(source.learner_id)
            granted = source.stars
        elif source.counter and await self._first_item_completion(source):
            # Zero-star content still counts once, keyed on the course item
            await self.stats_store.increment_counter(source.learner_id, source.counter)
            await self.stats_store.record_activity(source.learner_id)
            counted = True

        update = await self._mark_item(source, ItemStatus.COMPLETED, count, awarded=granted > 0)
        await self.db.commit()

        stats = await self.stats_store.get(source.learner_id)
        logger.info(
            "Completion requirement met",
            learner_id=str(source.learner_id),
            source_type=source.source_type,
            content_id=str(source.content_id),
            count=count,
            required=source.required_count,
            stars_granted=granted
        )
        return CompletionResult(
            outcome=CompletionOutcome.REWARDED if granted else CompletionOutcome.RECORDED,
            current_count=count,
            required_count=source.required_count,
            requirement_met=True,
            stars_awarded=granted > 0,
            stars_granted=granted,
            total_stars=stats.total_stars if stats else 0,
            counted=counted,
            course_completed=bool(update and update.course_completed)
        )

    async def _already_rewarded(self, source: RewardSource) -> CompletionResult:
        """Ledger already holds the grant. Sync the item flag and report zero stars."""
        count = await self.count_records(source.learner_id, source.source_type, source.content_id)
        count = max(count, source.required_count)
        await self._mark_item(source, ItemStatus.COMPLETED, count, awarded=True)
        stats = await self.stats_store.get_or_create(source.learner_id)
        await self.db.commit()
        return CompletionResult(
            outcome=CompletionOutcome.ALREADY_REWARDED,
            current_count=count,
            required_count=source.required_count,
            requirement_met=True,
            stars_awarded=True,
            stars_granted=0,
            total_stars=stats.total_stars,
            reason="Stars already awarded for this content"
        )

    async def _mark_item(self, source: RewardSource, status: ItemStatus, count: int, awarded: bool):
        """Update the owning course item, if the content belongs to a course."""
        if source.course_id is None or source.completion is None:
            return None

        changes: Dict[str, Any] = {"stars_awarded": awarded}
        if awarded:
            current = await self._current_completion(source)
            stamped = current.stars_awarded_at if current is not None and current.stars_awarded else None
            changes["stars_awarded_at"] = stamped or datetime.utcnow()
        if isinstance(source.completion, BookCompletion):
            changes["reading_count"] = count
        elif isinstance(source.completion, VideoCompletion):
            changes["watch_count"] = count
        completion = source.completion.model_copy(update=changes)

        manifest_type = source.manifest_type or source.source_type
        if status == ItemStatus.COMPLETED:
            return await self.tracker.complete_item(
                source.learner_id, source.course_id, source.content_id, manifest_type, completion
            )

        course = await self.tracker.access.load_course(source.course_id)
        entry = await self.tracker.resolve_manifest_item(source.course_id, source.content_id, manifest_type)
        progress = await self.tracker.get_or_create_progress(source.learner_id, course)
        await self.tracker.set_item_state(progress, entry, status, completion)
        return None

    async def _first_item_completion(self, source: RewardSource) -> bool:
        if source.course_id is None or source.completion is None:
            return False
        entry = await self.tracker.resolve_manifest_item(
            source.course_id, source.content_id, source.manifest_type or source.source_type
        )
        item = await self.tracker.get_item(source.learner_id, source.course_id, entry.content_id, entry.step)
        return item is None or item.status != ItemStatus.COMPLETED.value

    async def _current_completion(self, source: RewardSource):
        entry = await self.tracker.resolve_manifest_item(
            source.course_id, source.content_id, source.manifest_type or source.source_type
        )
        item = await self.tracker.get_item(source.learner_id, source.course_id, entry.content_id, entry.step)
        return item.completion_meta if item is not None else None

    async def after_commit(self, source: RewardSource, result: CompletionResult) -> None:
        """Badge reconciliation and notifications. Failures are logged only.

        Runs whenever the completion changed stats, zero-star counter bumps
        and course completions included.
        """
        if not (result.stars_granted or result.counted or result.course_completed):
            return

        try:
            badge_result = await BadgeEngine(self.db, self.cache).update_badges(source.learner_id, silent=True)
            if badge_result.success:
                result.new_badges = badge_result.new_badges
            else:
                logger.warning("Badge update failed after completion", learner_id=str(source.learner_id), error=badge_result.error)

            if result.stars_granted:
                await self.notifications.notify_stars_earned(
                    source.learner_id,
                    result.stars_granted,
                    source.title,
                    source_type=source.source_type,
                    content_id=source.content_id
                )
            if result.new_badges:
                await self.notifications.notify_badges_earned(source.learner_id, result.new_badges)

            if result.course_completed and source.course_id is not None:
                course = await self.tracker.access.load_course(source.course_id)
                await self.notifications.notify_course_completed(source.learner_id, course.id, course.title)

        except Exception as e:
            logger.error(
                "Reward side effects failed",
                learner_id=str(source.learner_id),
                source_type=source.source_type,
                content_id=str(source.content_id),
                error=str(e),
                exc_info=True
            )
