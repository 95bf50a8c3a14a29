"""Course videos (repeat-to-earn) and explore videos (first watch earns)."""

from typing import Any, Dict, Optional
import uuid

import structlog
from sqlalchemy import delete, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.completions.base import (
    CompletionEvent, CompletionOutcome, CompletionResult, Eligibility, RewardFlow, RewardSource
)
from starpath.core.config import settings
from starpath.core.exceptions import ExploreVideoNotFound, VideoNotFound
from starpath.models.catalog import ContentType, ExploreVideo, ExploreVideoType, Video
from starpath.models.completions import CompletionRecord
from starpath.models.progress import VideoCompletion

logger = structlog.get_logger()

EXPLORE_REQUIRED_WATCHES = 1


def video_eligibility(completion_percentage: float) -> Eligibility:
    watched = (completion_percentage or 0) >= settings.VIDEO_MIN_COMPLETION_PERCENT
    return Eligibility(
        conditions={"completion": watched},
        messages={"completion": f"Watch at least {settings.VIDEO_MIN_COMPLETION_PERCENT}% of the video"},
        passed=watched
    )


def _clamp_percentage(value: Optional[float]) -> float:
    return max(0.0, min(100.0, float(value if value is not None else 100.0)))


class VideoWatchHandler:
    """Video and explore video watch entry points."""

    def __init__(self, db: AsyncSession, cache=None):
        self.db = db
        self.flow = RewardFlow(db, cache)

    async def get_video(self, video_id: uuid.UUID) -> Video:
        video = await self.db.get(Video, video_id)
        if video is None:
            raise VideoNotFound(video_id)
        return video

    async def get_explore_video(self, explore_video_id: uuid.UUID) -> ExploreVideo:
        explore_video = await self.db.get(ExploreVideo, explore_video_id)
        if explore_video is None:
            raise ExploreVideoNotFound(explore_video_id)
        return explore_video

    async def submit_video_watch(
        self,
        learner_id: uuid.UUID,
        video_id: uuid.UUID,
        completion_percentage: Optional[float] = 100.0,
        course_id: Optional[uuid.UUID] = None,
        time_spent: float = 0.0
    ) -> CompletionResult:
        """Record a watch; stars once the required watch count is reached."""
        access = self.flow.tracker.access
        await access.load_learner(learner_id)
        video = await self.get_video(video_id)

        percentage = _clamp_percentage(completion_percentage)
        eligibility = video_eligibility(percentage)
        if not eligibility.passed:
            return CompletionResult(
                outcome=CompletionOutcome.REQUIREMENTS_NOT_MET,
                requirements=eligibility.breakdown(),
                reason="Video was not watched far enough to count"
            )

        if course_id is not None:
            entry = await self.flow.tracker.resolve_manifest_item(course_id, video.id, ContentType.VIDEO.value)
            step_access = await access.check_step_access(learner_id, course_id, entry.step)
            if not step_access.accessible:
                return CompletionResult(outcome=CompletionOutcome.LOCKED, reason=step_access.reason)

        required = video.required_watch_count or settings.DEFAULT_VIDEO_REQUIRED_WATCHES
        stars = video.stars_awarded if video.stars_awarded is not None else settings.DEFAULT_VIDEO_STARS

        source = RewardSource(
            learner_id=learner_id,
            source_type=ContentType.VIDEO.value,
            content_id=video.id,
            content_tag="Video",
            title=video.title,
            stars=stars,
            required_count=required,
            counter="videos_watched",
            course_id=course_id,
            completion=VideoCompletion(),
            metadata={"video_title": video.title, "required_watch_count": required},
            description=f'Earned {stars} stars for watching "{video.title}" {required} times'
        )
        result = await self.flow.run(source, CompletionEvent(progress_percentage=percentage, time_spent=time_spent))

        logger.info(
            "Video watch processed",
            learner_id=str(learner_id),
            video_id=str(video_id),
            outcome=result.outcome.value,
            watch_count=result.current_count,
            required=result.required_count
        )
        return result

    async def get_video_watch_status(self, learner_id: uuid.UUID, video_id: uuid.UUID) -> Dict[str, Any]:
        video = await self.get_video(video_id)
        watch_count = await self.flow.count_records(learner_id, ContentType.VIDEO.value, video_id)
        required = video.required_watch_count or settings.DEFAULT_VIDEO_REQUIRED_WATCHES
        grant = await self.flow.ledger.find_grant(learner_id, ContentType.VIDEO.value, video_id)

        return {
            "video_id": str(video.id),
            "title": video.title,
            "watch_count": watch_count,
            "required_watch_count": required,
            "requirement_met": watch_count >= required,
            "stars_awarded": grant is not None,
            "stars_awarded_at": grant.created_at if grant else None,
            "stars_to_award": video.stars_awarded if video.stars_awarded is not None else settings.DEFAULT_VIDEO_STARS,
        }

    async def reset_video_watch(self, learner_id: uuid.UUID, video_id: uuid.UUID) -> int:
        """Delete the learner's watch records. Ledger grants stay, so a reset never pays out twice."""
        await self.get_video(video_id)
        result = await self.db.execute(
            delete(CompletionRecord).where(
                CompletionRecord.learner_id == learner_id,
                CompletionRecord.content_type == ContentType.VIDEO.value,
                CompletionRecord.content_id == video_id
            )
        )
        await self.db.commit()

        logger.info("Video watches reset", learner_id=str(learner_id), video_id=str(video_id), deleted=result.rowcount)
        return result.rowcount or 0

    async def submit_explore_video_watch(
        self,
        learner_id: uuid.UUID,
        explore_video_id: uuid.UUID,
        completion_percentage: Optional[float] = 100.0
    ) -> CompletionResult:
        """First qualifying watch earns stars. Replays are recorded and never earn."""
        await self.flow.tracker.access.load_learner(learner_id)
        explore_video = await self.get_explore_video(explore_video_id)

        percentage = _clamp_percentage(completion_percentage)
        eligibility = video_eligibility(percentage)
        if not eligibility.passed:
            return CompletionResult(
                outcome=CompletionOutcome.REQUIREMENTS_NOT_MET,
                required_count=EXPLORE_REQUIRED_WATCHES,
                requirements=eligibility.breakdown(),
                reason="Video was not watched far enough to count"
            )

        is_replay = explore_video.video_type == ExploreVideoType.REPLAY.value
        if is_replay:
            stars = 0
        elif explore_video.stars_awarded is not None:
            stars = explore_video.stars_awarded
        else:
            stars = settings.DEFAULT_EXPLORE_VIDEO_STARS

        source = RewardSource(
            learner_id=learner_id,
            source_type=ContentType.EXPLORE_VIDEO.value,
            content_id=explore_video.id,
            content_tag="ExploreVideo",
            title=explore_video.title,
            stars=stars,
            required_count=EXPLORE_REQUIRED_WATCHES,
            metadata={
                "video_type": explore_video.video_type,
                "explore_video_title": explore_video.title,
                "required_watch_count": EXPLORE_REQUIRED_WATCHES,
            },
            description=f'Earned {stars} stars for watching "{explore_video.title}"'
        )
        result = await self.flow.run(source, CompletionEvent(progress_percentage=percentage), dedupe=False)

        logger.info(
            "Explore video watch processed",
            learner_id=str(learner_id),
            explore_video_id=str(explore_video_id),
            video_type=explore_video.video_type,
            outcome=result.outcome.value
        )
        return result

    async def get_explore_video_watch_status(self, learner_id: uuid.UUID, explore_video_id: uuid.UUID) -> Dict[str, Any]:
        explore_video = await self.get_explore_video(explore_video_id)
        watch_count = await self.flow.count_records(learner_id, ContentType.EXPLORE_VIDEO.value, explore_video_id)
        grant = await self.flow.ledger.find_grant(learner_id, ContentType.EXPLORE_VIDEO.value, explore_video_id)
        is_replay = explore_video.video_type == ExploreVideoType.REPLAY.value

        return {
            "explore_video_id": str(explore_video.id),
            "title": explore_video.title,
            "video_type": explore_video.video_type,
            "is_replay": is_replay,
            "watch_count": watch_count,
            "stars_awarded": grant is not None,
            "stars_to_award": 0 if is_replay else (
                explore_video.stars_awarded if explore_video.stars_awarded is not None
                else settings.DEFAULT_EXPLORE_VIDEO_STARS
            ),
        }

    async def get_video_type_progress(self, learner_id: uuid.UUID, video_type: str) -> Dict[str, Any]:
        """How many explore videos of a type exist, how many were watched, and stars earned from them."""
        await self.flow.tracker.access.load_learner(learner_id)

        total = await self.db.execute(
            select(func.count(ExploreVideo.id)).where(ExploreVideo.video_type == video_type)
        )
        viewed = await self.db.execute(
            select(func.count(func.distinct(CompletionRecord.content_id)))
            .select_from(CompletionRecord)
            .join(ExploreVideo, ExploreVideo.id == CompletionRecord.content_id)
            .where(
                CompletionRecord.learner_id == learner_id,
                CompletionRecord.content_type == ContentType.EXPLORE_VIDEO.value,
                ExploreVideo.video_type == video_type
            )
        )

        if video_type == ExploreVideoType.REPLAY.value:
            stars = 0
        else:
            stars = await self.flow.ledger.stars_from_source(
                learner_id, ContentType.EXPLORE_VIDEO.value, {"video_type": video_type}
            )

        return {
            "video_type": video_type,
            "total_videos": int(total.scalar() or 0),
            "viewed_videos": int(viewed.scalar() or 0),
            "total_stars": stars,
        }
