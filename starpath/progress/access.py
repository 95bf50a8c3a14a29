"""Course and step access rules.

A course is reachable when it is not sequential, has no prerequisites, or every
prerequisite is completed. Inside a course, step n is reachable once every
manifest item of step n-1 is completed. Unreachable results are returned as
data; only a missing course is an error.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from starpath.core.exceptions import CourseNotFound, LearnerNotFound
from starpath.models.catalog import Course, CourseContent, Learner
from starpath.models.progress import CourseProgress, ContentProgressItem, CourseStatus, ItemStatus

logger = structlog.get_logger()


@dataclass
class CourseRef:
    id: uuid.UUID
    title: str
    step_order: Optional[int] = None

    @classmethod
    def from_course(cls, course: Course) -> "CourseRef":
        return cls(id=course.id, title=course.title, step_order=course.step_order)

    def to_dict(self):
        return {"id": str(self.id), "title": self.title, "step_order": self.step_order}


@dataclass
class CourseAccess:
    accessible: bool
    reason: Optional[str] = None
    missing_prerequisites: List[CourseRef] = field(default_factory=list)


@dataclass
class StepAccess:
    accessible: bool
    reason: Optional[str] = None


class AccessResolver:
    """Decide whether a learner may enter a course or one of its steps."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_learner(self, learner_id: uuid.UUID) -> Learner:
        learner = await self.db.get(Learner, learner_id)
        if learner is None or learner.is_archived:
            raise LearnerNotFound(learner_id)
        return learner

    async def load_course(self, course_id: uuid.UUID) -> Course:
        """Course with its prerequisites loaded; raises CourseNotFound."""
        result = await self.db.execute(
            select(Course)
            .options(selectinload(Course.prerequisites))
            .where(Course.id == course_id)
        )
        course = result.scalar_one_or_none()
        if course is None:
            raise CourseNotFound(course_id)
        return course

    async def completed_course_ids(self, learner_id: uuid.UUID, course_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
        course_ids = list(course_ids)
        if not course_ids:
            return set()

        result = await self.db.execute(
            select(CourseProgress.course_id).where(
                CourseProgress.learner_id == learner_id,
                CourseProgress.course_id.in_(course_ids),
                CourseProgress.status == CourseStatus.COMPLETED.value
            )
        )
        return set(result.scalars().all())

    async def check_course_access(
        self,
        learner_id: uuid.UUID,
        course_id: uuid.UUID,
        course: Optional[Course] = None
    ) -> CourseAccess:
        if course is None:
            course = await self.load_course(course_id)

        if not course.is_sequential or not course.prerequisites:
            return CourseAccess(accessible=True)

        completed = await self.completed_course_ids(learner_id, [p.id for p in course.prerequisites])
        missing = [
            CourseRef.from_course(prerequisite)
            for prerequisite in sorted(course.prerequisites, key=course_sort_key)
            if prerequisite.id not in completed
        ]

        if missing:
            return CourseAccess(
                accessible=False,
                reason="Complete prerequisite courses first",
                missing_prerequisites=missing
            )
        return CourseAccess(accessible=True)

    async def check_step_access(self, learner_id: uuid.UUID, course_id: uuid.UUID, step: int) -> StepAccess:
        course = await self.load_course(course_id)

        if step <= 1:
            access = await self.check_course_access(learner_id, course_id, course)
            return StepAccess(accessible=access.accessible, reason=access.reason)

        result = await self.db.execute(
            select(CourseProgress.id).where(
                CourseProgress.learner_id == learner_id,
                CourseProgress.course_id == course_id
            )
        )
        if result.scalar_one_or_none() is None:
            return StepAccess(accessible=False, reason="Course not started. Complete step 1 first.")

        previous = step - 1
        if not await self.is_step_completed(learner_id, course_id, previous):
            return StepAccess(
                accessible=False,
                reason=f"Step {previous} must be completed before accessing step {step}"
            )

        return StepAccess(accessible=True)

    async def is_step_completed(self, learner_id: uuid.UUID, course_id: uuid.UUID, step: int) -> bool:
        """True when every manifest item of `step` is completed. An empty step counts as completed."""
        manifest = await self.db.execute(
            select(CourseContent.content_id).where(
                CourseContent.course_id == course_id,
                CourseContent.step == step
            )
        )
        required = set(manifest.scalars().all())
        if not required:
            return True

        done = await self.db.execute(
            select(ContentProgressItem.content_id).where(
                ContentProgressItem.learner_id == learner_id,
                ContentProgressItem.course_id == course_id,
                ContentProgressItem.step == step,
                ContentProgressItem.status == ItemStatus.COMPLETED.value
            )
        )
        return required.issubset(set(done.scalars().all()))


def course_sort_key(course: Course):
    # step_order ascending with nulls last, then oldest first
    return (
        course.step_order is None,
        course.step_order or 0,
        course.created_at.timestamp() if course.created_at else 0,
    )
