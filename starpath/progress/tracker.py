"""Per learner, per course content progress."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from starpath.core.database import insert_if_absent
from starpath.core.exceptions import ContentNotFound, CourseLocked, StepLocked
from starpath.gamification.badge_engine import BadgeEngine
from starpath.gamification.stats_store import StatsStore
from starpath.models.catalog import Course, CourseContent, course_prerequisites
from starpath.models.progress import CourseProgress, ContentProgressItem, CourseStatus, ItemStatus
from starpath.progress.access import AccessResolver, course_sort_key

logger = structlog.get_logger()


@dataclass
class ItemUpdate:
    """Outcome of marking one manifest item."""
    progress: CourseProgress
    item: Optional[ContentProgressItem]
    course_completed: bool = False
    unlocked_course_ids: List[uuid.UUID] = field(default_factory=list)
    new_badges: List[Dict[str, Any]] = field(default_factory=list)


class ContentProgressTracker:
    """Tracks which manifest items a learner has completed and cascades course completion."""

    def __init__(self, db: AsyncSession, access: Optional[AccessResolver] = None, cache=None):
        self.db = db
        self.cache = cache
        self.access = access or AccessResolver(db)
        self.stats_store = StatsStore(db)

    async def get_progress(self, learner_id: uuid.UUID, course_id: uuid.UUID) -> Optional[CourseProgress]:
        result = await self.db.execute(
            select(CourseProgress)
            .where(CourseProgress.learner_id == learner_id, CourseProgress.course_id == course_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_items(self, learner_id: uuid.UUID, course_id: uuid.UUID) -> List[ContentProgressItem]:
        result = await self.db.execute(
            select(ContentProgressItem)
            .where(
                ContentProgressItem.learner_id == learner_id,
                ContentProgressItem.course_id == course_id
            )
            .order_by(ContentProgressItem.step)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_item(
        self,
        learner_id: uuid.UUID,
        course_id: uuid.UUID,
        content_id: uuid.UUID,
        step: int
    ) -> Optional[ContentProgressItem]:
        result = await self.db.execute(
            select(ContentProgressItem)
            .where(
                ContentProgressItem.learner_id == learner_id,
                ContentProgressItem.course_id == course_id,
                ContentProgressItem.content_id == content_id,
                ContentProgressItem.step == step
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_manifest(self, course_id: uuid.UUID) -> List[CourseContent]:
        result = await self.db.execute(
            select(CourseContent)
            .where(CourseContent.course_id == course_id)
            .order_by(CourseContent.step, CourseContent.order)
        )
        return list(result.scalars().all())

    async def resolve_manifest_item(
        self,
        course_id: uuid.UUID,
        content_id: uuid.UUID,
        content_type: str
    ) -> CourseContent:
        """Manifest entry for the content; raises ContentNotFound."""
        result = await self.db.execute(
            select(CourseContent).where(
                CourseContent.course_id == course_id,
                CourseContent.content_id == content_id,
                CourseContent.content_type == content_type
            )
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise ContentNotFound(content_id, course_id)
        return entry

    async def get_or_create_progress(self, learner_id: uuid.UUID, course: Course) -> CourseProgress:
        """Existing progress, re-opened if it was locked; otherwise a new in-progress record.

        Starting or re-opening a course requires course access.
        """
        progress = await self.get_progress(learner_id, course.id)
        if progress is not None and progress.status not in (CourseStatus.LOCKED.value, CourseStatus.NOT_STARTED.value):
            return progress

        access = await self.access.check_course_access(learner_id, course.id, course)
        if not access.accessible:
            raise CourseLocked([ref.to_dict() for ref in access.missing_prerequisites])

        now = datetime.utcnow()
        if progress is None:
            await insert_if_absent(
                self.db,
                CourseProgress,
                {
                    "id": uuid.uuid4(),
                    "learner_id": learner_id,
                    "course_id": course.id,
                    "status": CourseStatus.IN_PROGRESS.value,
                    "progress_percentage": 0.0,
                    "current_step": 1,
                    "started_at": now,
                    "created_at": now,
                    "updated_at": now,
                },
                ["learner_id", "course_id"]
            )
            progress = await self.get_progress(learner_id, course.id)
            logger.info("Course started", learner_id=str(learner_id), course_id=str(course.id))

        if progress.status in (CourseStatus.LOCKED.value, CourseStatus.NOT_STARTED.value):
            progress.status = CourseStatus.IN_PROGRESS.value
            progress.started_at = progress.started_at or now
            await self.db.flush()

        return progress

    async def set_item_state(
        self,
        progress: CourseProgress,
        entry: CourseContent,
        status: ItemStatus,
        completion=None
    ) -> ContentProgressItem:
        """Upsert the item for a manifest entry.

        A completed item never moves back to an earlier status; its completion
        metadata may still be replaced.
        """
        item = await self.get_item(progress.learner_id, progress.course_id, entry.content_id, entry.step)
        if item is None:
            await insert_if_absent(
                self.db,
                ContentProgressItem,
                {
                    "id": uuid.uuid4(),
                    "course_progress_id": progress.id,
                    "learner_id": progress.learner_id,
                    "course_id": progress.course_id,
                    "content_id": entry.content_id,
                    "content_type": entry.content_type,
                    "step": entry.step,
                    "status": ItemStatus.NOT_STARTED.value,
                    "updated_at": datetime.utcnow(),
                },
                ["learner_id", "course_id", "content_id", "step"]
            )
            item = await self.get_item(progress.learner_id, progress.course_id, entry.content_id, entry.step)

        status = ItemStatus(status)
        if item.status != ItemStatus.COMPLETED.value:
            item.status = status.value
            if status == ItemStatus.COMPLETED:
                item.completed_at = datetime.utcnow()

        if completion is not None:
            item.completion_meta = completion

        await self.db.flush()
        return item

    async def complete_item(
        self,
        learner_id: uuid.UUID,
        course_id: uuid.UUID,
        content_id: uuid.UUID,
        content_type: str,
        completion=None,
        course: Optional[Course] = None
    ) -> ItemUpdate:
        """Mark a manifest item completed and cascade course completion.

        Step access is the caller's concern.
        """
        if course is None:
            course = await self.access.load_course(course_id)
        entry = await self.resolve_manifest_item(course_id, content_id, content_type)

        progress = await self.get_or_create_progress(learner_id, course)
        item = await self.set_item_state(progress, entry, ItemStatus.COMPLETED, completion)

        completed_now = await self.refresh_course_status(progress)
        unlocked: List[uuid.UUID] = []
        if completed_now:
            unlocked = await self._on_course_completed(learner_id, course_id)

        return ItemUpdate(progress=progress, item=item, course_completed=completed_now, unlocked_course_ids=unlocked)

    async def refresh_course_status(self, progress: CourseProgress) -> bool:
        """Recompute percentage and current step. Returns True when the course just completed."""
        manifest = await self.get_manifest(progress.course_id)
        if not manifest:
            progress.progress_percentage = 0.0
            await self.db.flush()
            return False

        items = await self.get_items(progress.learner_id, progress.course_id)
        done = {
            (item.content_id, item.step)
            for item in items
            if item.status == ItemStatus.COMPLETED.value
        }

        completed_count = 0
        open_steps = set()
        for entry in manifest:
            if (entry.content_id, entry.step) in done:
                completed_count += 1
            else:
                open_steps.add(entry.step)

        progress.progress_percentage = float(round(completed_count / len(manifest) * 100))
        progress.current_step = min(open_steps) if open_steps else max(entry.step for entry in manifest)

        completed_now = False
        if not open_steps and progress.status != CourseStatus.COMPLETED.value:
            progress.status = CourseStatus.COMPLETED.value
            progress.completed_at = datetime.utcnow()
            completed_now = True
        elif completed_count and progress.status == CourseStatus.NOT_STARTED.value:
            progress.status = CourseStatus.IN_PROGRESS.value
            progress.started_at = progress.started_at or datetime.utcnow()

        await self.db.flush()
        return completed_now

    async def update_content_progress(
        self,
        learner_id: uuid.UUID,
        course_id: uuid.UUID,
        content_id: uuid.UUID,
        content_type: str
    ) -> ItemUpdate:
        """Mark a content item completed after checking its step is reachable, and commit."""
        course = await self.access.load_course(course_id)
        entry = await self.resolve_manifest_item(course_id, content_id, content_type)

        step_access = await self.access.check_step_access(learner_id, course_id, entry.step)
        if not step_access.accessible:
            missing = None
            if entry.step <= 1:
                # Step 1 is only ever closed by the course itself
                access = await self.access.check_course_access(learner_id, course_id, course)
                missing = [ref.to_dict() for ref in access.missing_prerequisites]
            raise StepLocked(entry.step, step_access.reason, missing_prerequisites=missing)

        update = await self.complete_item(learner_id, course_id, content_id, content_type, course=course)
        await self.db.commit()
        if update.course_completed:
            update.new_badges = await self.reconcile_badges(learner_id)

        logger.info(
            "Content progress updated",
            learner_id=str(learner_id),
            course_id=str(course_id),
            content_id=str(content_id),
            step=entry.step,
            progress=update.progress.progress_percentage,
            course_completed=update.course_completed
        )
        return update

    async def mark_course_completed(self, learner_id: uuid.UUID, course_id: uuid.UUID) -> ItemUpdate:
        """Force a course to completed regardless of item state, then unlock dependents."""
        course = await self.access.load_course(course_id)
        progress = await self.get_or_create_progress(learner_id, course)

        was_completed = progress.status == CourseStatus.COMPLETED.value
        now = datetime.utcnow()
        progress.status = CourseStatus.COMPLETED.value
        progress.progress_percentage = 100.0
        progress.completed_at = now
        progress.started_at = progress.started_at or now
        await self.db.flush()

        if was_completed:
            unlocked = await self.chain_unlock(learner_id, course_id)
        else:
            unlocked = await self._on_course_completed(learner_id, course_id)
        await self.db.commit()
        new_badges = [] if was_completed else await self.reconcile_badges(learner_id)

        logger.info("Course marked completed", learner_id=str(learner_id), course_id=str(course_id))
        return ItemUpdate(
            progress=progress,
            item=None,
            course_completed=not was_completed,
            unlocked_course_ids=unlocked,
            new_badges=new_badges
        )

    async def reconcile_badges(self, learner_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Badge pass after a committed course completion. Failures are logged, never raised."""
        result = await BadgeEngine(self.db, self.cache).update_badges(learner_id, silent=True)
        if not result.success:
            logger.warning("Badge update failed after course completion", learner_id=str(learner_id), error=result.error)
        return result.new_badges

    async def _on_course_completed(self, learner_id: uuid.UUID, course_id: uuid.UUID) -> List[uuid.UUID]:
        await self.stats_store.increment_counter(learner_id, "lessons_completed")
        logger.info("Course completed", learner_id=str(learner_id), course_id=str(course_id))
        return await self.chain_unlock(learner_id, course_id)

    async def chain_unlock(self, learner_id: uuid.UUID, completed_course_id: uuid.UUID) -> List[uuid.UUID]:
        """Open every course that lists the completed course as a prerequisite and is now reachable."""
        result = await self.db.execute(
            select(course_prerequisites.c.course_id).where(
                course_prerequisites.c.prerequisite_id == completed_course_id
            )
        )
        unlocked = []
        for dependent_id in result.scalars().all():
            dependent = await self.access.load_course(dependent_id)
            access = await self.access.check_course_access(learner_id, dependent_id, dependent)
            if not access.accessible:
                continue

            progress = await self.get_progress(learner_id, dependent_id)
            if progress is None:
                now = datetime.utcnow()
                created = await insert_if_absent(
                    self.db,
                    CourseProgress,
                    {
                        "id": uuid.uuid4(),
                        "learner_id": learner_id,
                        "course_id": dependent_id,
                        "status": CourseStatus.NOT_STARTED.value,
                        "progress_percentage": 0.0,
                        "current_step": 1,
                        "created_at": now,
                        "updated_at": now,
                    },
                    ["learner_id", "course_id"]
                )
                if created:
                    unlocked.append(dependent_id)
            elif progress.status == CourseStatus.LOCKED.value:
                progress.status = CourseStatus.NOT_STARTED.value
                unlocked.append(dependent_id)

        if unlocked:
            await self.db.flush()
            logger.info(
                "Courses unlocked",
                learner_id=str(learner_id),
                completed_course_id=str(completed_course_id),
                unlocked=[str(course_id) for course_id in unlocked]
            )
        return unlocked

    async def get_course_progress(self, learner_id: uuid.UUID, course_id: uuid.UUID) -> Dict[str, Any]:
        course = await self.access.load_course(course_id)
        progress = await self.get_progress(learner_id, course_id)
        items = await self.get_items(learner_id, course_id) if progress else []
        access = await self.access.check_course_access(learner_id, course_id, course)

        return {
            "course": course,
            "progress": progress,
            "items": items,
            "accessible": access.accessible,
            "missing_prerequisites": access.missing_prerequisites,
        }

    async def get_child_courses(
        self,
        learner_id: uuid.UUID,
        status: Optional[str] = None,
        is_default: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        """Published courses with the learner's progress and accessibility. Read-only."""
        await self.access.load_learner(learner_id)

        query = select(Course).options(selectinload(Course.prerequisites)).where(
            Course.is_published == True, Course.is_archived == False)  # noqa: E712
        if is_default:
            query = query.where(Course.is_default == True)  # noqa: E712
        result = await self.db.execute(query)
        courses = sorted(result.scalars().all(), key=course_sort_key)

        progress_result = await self.db.execute(
            select(CourseProgress).where(CourseProgress.learner_id == learner_id)
        )
        progress_by_course = {p.course_id: p for p in progress_result.scalars().all()}

        entries = []
        for course in courses:
            progress = progress_by_course.get(course.id)
            access = await self.access.check_course_access(learner_id, course.id, course)

            if progress is not None:
                current_status = progress.status
            elif not access.accessible:
                current_status = CourseStatus.LOCKED.value
            else:
                current_status = CourseStatus.NOT_STARTED.value

            if status and current_status != status:
                continue

            entries.append({
                "course": course,
                "progress": progress,
                "status": current_status,
                "accessible": access.accessible,
                "missing_prerequisites": access.missing_prerequisites,
                "progress_percentage": progress.progress_percentage if progress else 0.0,
            })

        return entries

