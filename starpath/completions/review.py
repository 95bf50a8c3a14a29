"""Recorded content: audio assignments (reviewed) and chants (self-completed)."""

from datetime import datetime
from typing import Any, Dict, Optional, Tuple
import math
import uuid

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.completions.base import CompletionResult, RewardFlow, RewardSource
from starpath.core.database import insert_if_absent
from starpath.core.exceptions import (
    AudioAssignmentNotFound, ChantNotFound, InvalidDecision, InvalidSubmission, StepLocked, SubmissionNotFound
)
from starpath.models.catalog import AudioAssignment, Chant, ContentType
from starpath.models.completions import ContentSubmission, SubmissionStatus
from starpath.models.progress import ItemStatus, ReviewCompletion

logger = structlog.get_logger()

REVIEW_DECISIONS = {SubmissionStatus.APPROVED.value, SubmissionStatus.REJECTED.value}


class RecordedContentHandler:
    """Submission bookkeeping shared by audio assignments and chants."""

    content_type: str
    content_tag: str
    model: Any
    not_found: Any
    counter: Optional[str] = None

    def __init__(self, db: AsyncSession, cache=None):
        self.db = db
        self.flow = RewardFlow(db, cache)

    async def get_content(self, content_id: uuid.UUID):
        content = await self.db.get(self.model, content_id)
        if content is None:
            raise self.not_found(content_id)
        return content

    async def get_submission(self, learner_id: uuid.UUID, content_id: uuid.UUID) -> Optional[ContentSubmission]:
        result = await self.db.execute(
            select(ContentSubmission)
            .where(
                ContentSubmission.learner_id == learner_id,
                ContentSubmission.content_type == self.content_type,
                ContentSubmission.content_id == content_id
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_submission(
        self,
        learner_id: uuid.UUID,
        content_id: uuid.UUID,
        course_id: Optional[uuid.UUID] = None
    ) -> ContentSubmission:
        submission = await self.get_submission(learner_id, content_id)
        if submission is None:
            now = datetime.utcnow()
            await insert_if_absent(
                self.db,
                ContentSubmission,
                {
                    "id": uuid.uuid4(),
                    "learner_id": learner_id,
                    "content_type": self.content_type,
                    "content_id": content_id,
                    "course_id": course_id,
                    "status": SubmissionStatus.NOT_STARTED.value,
                    "extra": {},
                    "created_at": now,
                    "updated_at": now,
                },
                ["learner_id", "content_type", "content_id"]
            )
            submission = await self.get_submission(learner_id, content_id)

        if course_id is not None and submission.course_id is None:
            submission.course_id = course_id
        return submission

    async def _check_step(self, learner_id: uuid.UUID, course_id: Optional[uuid.UUID], content_id: uuid.UUID):
        if course_id is None:
            return None
        entry = await self.flow.tracker.resolve_manifest_item(course_id, content_id, self.content_type)
        step_access = await self.flow.tracker.access.check_step_access(learner_id, course_id, entry.step)
        if not step_access.accessible:
            raise StepLocked(entry.step, step_access.reason)
        return entry

    async def _set_item(self, submission: ContentSubmission, status: ItemStatus, completion: ReviewCompletion):
        if submission.course_id is None:
            return
        tracker = self.flow.tracker
        course = await tracker.access.load_course(submission.course_id)
        entry = await tracker.resolve_manifest_item(submission.course_id, submission.content_id, self.content_type)
        progress = await tracker.get_or_create_progress(submission.learner_id, course)
        await tracker.set_item_state(progress, entry, status, completion)

    async def start(
        self,
        learner_id: uuid.UUID,
        content_id: uuid.UUID,
        course_id: Optional[uuid.UUID] = None
    ) -> ContentSubmission:
        await self.flow.tracker.access.load_learner(learner_id)
        await self.get_content(content_id)
        await self._check_step(learner_id, course_id, content_id)

        submission = await self.get_or_create_submission(learner_id, content_id, course_id)
        if submission.status == SubmissionStatus.NOT_STARTED.value:
            submission.status = SubmissionStatus.IN_PROGRESS.value
            await self._set_item(submission, ItemStatus.IN_PROGRESS, ReviewCompletion())

        await self.db.commit()
        logger.info("Recorded content started", learner_id=str(learner_id), content_type=self.content_type, content_id=str(content_id))
        return submission

    async def get_progress(self, learner_id: uuid.UUID, content_id: uuid.UUID) -> ContentSubmission:
        await self.flow.tracker.access.load_learner(learner_id)
        await self.get_content(content_id)
        submission = await self.get_or_create_submission(learner_id, content_id)
        await self.db.commit()
        return submission

    def _reward_source(self, submission: ContentSubmission, content, completion: ReviewCompletion) -> RewardSource:
        stars = content.stars_awarded or 0
        return RewardSource(
            learner_id=submission.learner_id,
            source_type=self.content_type,
            content_id=content.id,
            content_tag=self.content_tag,
            title=content.title,
            stars=stars,
            counter=self.counter,
            course_id=submission.course_id,
            completion=completion,
            metadata={"title": content.title},
            description=f'Earned {stars} stars for completing "{content.title}"'
        )

    async def _sync_reward_flags(self, submission: ContentSubmission, result: CompletionResult, stars: int) -> None:
        """Mirror the ledger state onto the submission row."""
        submission = await self.get_submission(submission.learner_id, submission.content_id)
        if result.stars_awarded and not submission.stars_awarded:
            submission.stars_awarded = True
            submission.stars_earned = submission.stars_earned or stars
            submission.stars_awarded_at = submission.stars_awarded_at or datetime.utcnow()
            await self.db.commit()

    async def list_submissions(
        self,
        status: Optional[str] = SubmissionStatus.SUBMITTED.value,
        content_id: Optional[uuid.UUID] = None,
        learner_id: Optional[uuid.UUID] = None,
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        """Page through submissions, newest first."""
        conditions = [ContentSubmission.content_type == self.content_type]
        if status:
            conditions.append(ContentSubmission.status == status)
        if content_id:
            conditions.append(ContentSubmission.content_id == content_id)
        if learner_id:
            conditions.append(ContentSubmission.learner_id == learner_id)

        page = max(page or 1, 1)
        limit = max(limit or 10, 1)

        result = await self.db.execute(
            select(ContentSubmission)
            .where(*conditions)
            .order_by(ContentSubmission.submitted_at.desc(), ContentSubmission.updated_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = await self.db.execute(select(func.count(ContentSubmission.id)).where(*conditions))
        total = int(total.scalar() or 0)

        return {
            "submissions": list(result.scalars().all()),
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }


class AudioAssignmentHandler(RecordedContentHandler):
    """Recording, then a reviewer approves or rejects. Only approval earns stars."""

    content_type = ContentType.AUDIO_ASSIGNMENT.value
    content_tag = "AudioAssignment"
    model = AudioAssignment
    not_found = AudioAssignmentNotFound
    counter = "audio_assignments_completed"

    async def submit_recording(
        self,
        learner_id: uuid.UUID,
        assignment_id: uuid.UUID,
        recording_url: Optional[str],
        time_spent: float = 0.0,
        extra: Optional[Dict[str, Any]] = None,
        course_id: Optional[uuid.UUID] = None
    ) -> ContentSubmission:
        """Store the recording reference and wait for review. Clears any previous review."""
        if not recording_url:
            raise InvalidSubmission("Recorded audio file is required")

        await self.get_content(assignment_id)
        await self.flow.tracker.access.load_learner(learner_id)
        await self._check_step(learner_id, course_id, assignment_id)

        submission = await self.get_or_create_submission(learner_id, assignment_id, course_id)
        submission.recording_url = recording_url
        submission.status = SubmissionStatus.SUBMITTED.value
        submission.submitted_at = datetime.utcnow()
        submission.time_spent = time_spent or 0.0
        submission.reviewer_id = None
        submission.reviewed_at = None
        submission.feedback = None
        if extra is not None:
            submission.extra = dict(extra)

        await self._set_item(submission, ItemStatus.SUBMITTED, ReviewCompletion())
        await self.db.commit()

        logger.info("Audio assignment submitted", learner_id=str(learner_id), assignment_id=str(assignment_id))
        return submission

    async def review(
        self,
        learner_id: uuid.UUID,
        assignment_id: uuid.UUID,
        decision: str,
        feedback: Optional[str] = None,
        reviewer_id: Optional[uuid.UUID] = None
    ) -> Tuple[ContentSubmission, Optional[CompletionResult]]:
        """Apply a reviewer decision. Approval runs the reward path; retries never pay twice."""
        if decision not in REVIEW_DECISIONS:
            raise InvalidDecision(decision)

        submission = await self.get_submission(learner_id, assignment_id)
        if submission is None:
            raise SubmissionNotFound(assignment_id)
        if not submission.recording_url:
            raise InvalidSubmission("Submission has no recorded audio")

        now = datetime.utcnow()
        feedback = (feedback or "").strip() or None
        submission.status = decision
        submission.reviewer_id = reviewer_id
        submission.reviewed_at = now
        submission.feedback = feedback
        completion = ReviewCompletion(decision=decision, feedback=feedback, reviewed_at=now)

        if decision == SubmissionStatus.REJECTED.value:
            await self._set_item(submission, ItemStatus.REJECTED, completion)
            await self.db.commit()
            logger.info("Audio assignment rejected", learner_id=str(learner_id), assignment_id=str(assignment_id))
            return submission, None

        assignment = await self.get_content(assignment_id)
        await self.db.commit()
        result = await self.flow.run(self._reward_source(submission, assignment, completion))
        await self._sync_reward_flags(submission, result, assignment.stars_awarded or 0)

        logger.info(
            "Audio assignment approved",
            learner_id=str(learner_id),
            assignment_id=str(assignment_id),
            outcome=result.outcome.value,
            stars_granted=result.stars_granted
        )
        return await self.get_submission(learner_id, assignment_id), result


class ChantHandler(RecordedContentHandler):
    """A chant completes on its first recording, without review."""

    content_type = ContentType.CHANT.value
    content_tag = "Chant"
    model = Chant
    not_found = ChantNotFound

    async def complete(
        self,
        learner_id: uuid.UUID,
        chant_id: uuid.UUID,
        recording_url: Optional[str],
        time_spent: float = 0.0,
        extra: Optional[Dict[str, Any]] = None,
        course_id: Optional[uuid.UUID] = None
    ) -> Tuple[ContentSubmission, CompletionResult]:
        if not recording_url:
            raise InvalidSubmission("Recorded audio file is required")

        chant = await self.get_content(chant_id)
        await self.flow.tracker.access.load_learner(learner_id)
        await self._check_step(learner_id, course_id, chant_id)

        submission = await self.get_or_create_submission(learner_id, chant_id, course_id)
        submission.recording_url = recording_url
        submission.status = SubmissionStatus.COMPLETED.value
        submission.submitted_at = datetime.utcnow()
        submission.time_spent = time_spent or 0.0
        if extra is not None:
            submission.extra = dict(extra)
        await self.db.commit()

        result = await self.flow.run(self._reward_source(submission, chant, ReviewCompletion()))
        await self._sync_reward_flags(submission, result, chant.stars_awarded or 0)

        logger.info(
            "Chant completed",
            learner_id=str(learner_id),
            chant_id=str(chant_id),
            outcome=result.outcome.value,
            stars_granted=result.stars_granted
        )
        return await self.get_submission(learner_id, chant_id), result
