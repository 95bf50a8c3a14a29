"""Activity completions inside a course."""

from typing import Optional
import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.completions.base import (
    CompletionEvent, CompletionOutcome, CompletionResult, Eligibility, RewardFlow, RewardSource
)
from starpath.completions.book import PASSING_STATUSES
from starpath.core.exceptions import ActivityNotFound
from starpath.models.catalog import Activity, ContentType
from starpath.models.progress import ActivityCompletion

logger = structlog.get_logger()


def activity_eligibility(score: Optional[float], status: Optional[str]) -> Eligibility:
    score_valid = score is not None and score > 0
    status_valid = (status or "").lower() in PASSING_STATUSES
    return Eligibility(
        conditions={"score": score_valid, "status": status_valid},
        messages={
            "score": "Score must be > 0",
            "status": 'Status must be "passed" or "completed"',
        },
        passed=score_valid or status_valid
    )


class ActivityCompletionHandler:

    def __init__(self, db: AsyncSession, cache=None):
        self.db = db
        self.flow = RewardFlow(db, cache)

    async def submit_activity_completion(
        self,
        learner_id: uuid.UUID,
        course_id: uuid.UUID,
        activity_id: uuid.UUID,
        score: Optional[float] = None,
        status: Optional[str] = None,
        time_spent: float = 0.0
    ) -> CompletionResult:
        access = self.flow.tracker.access
        await access.load_learner(learner_id)

        activity = await self.db.get(Activity, activity_id)
        if activity is None:
            raise ActivityNotFound(activity_id)

        eligibility = activity_eligibility(score, status)
        if not eligibility.passed:
            return CompletionResult(
                outcome=CompletionOutcome.REQUIREMENTS_NOT_MET,
                requirements=eligibility.breakdown(),
                reason="Activity needs a positive score or a passing status"
            )

        await access.load_course(course_id)
        entry = await self.flow.tracker.resolve_manifest_item(course_id, activity.id, ContentType.ACTIVITY.value)
        step_access = await access.check_step_access(learner_id, course_id, entry.step)
        if not step_access.accessible:
            return CompletionResult(outcome=CompletionOutcome.LOCKED, reason=step_access.reason)

        stars = activity.stars_awarded or 0
        source = RewardSource(
            learner_id=learner_id,
            source_type=ContentType.ACTIVITY.value,
            content_id=activity.id,
            content_tag="Activity",
            title=activity.title,
            stars=stars,
            counter="activities_completed",
            course_id=course_id,
            completion=ActivityCompletion(score=score),
            metadata={"activity_title": activity.title, "score": score, "max_score": activity.max_score},
            description=f'Earned {stars} stars for completing "{activity.title}"'
        )
        result = await self.flow.run(source, CompletionEvent(time_spent=time_spent, score=score), dedupe=False)

        logger.info(
            "Activity completion processed",
            learner_id=str(learner_id),
            activity_id=str(activity_id),
            outcome=result.outcome.value,
            stars_granted=result.stars_granted
        )
        return result
