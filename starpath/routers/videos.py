"""Video and explore-video watch endpoints."""

from typing import Any, Dict
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from starpath.completions.video import VideoWatchHandler
from starpath.core.database import get_db
from starpath.core.dependencies import ensure_learner_access, get_cache, get_current_user, require_admin
from starpath.routers.responses import completion_response
from starpath.schemas.completions import CompletionResponse, ExploreVideoWatchRequest, VideoWatchRequest

logger = structlog.get_logger()
router = APIRouter()

OUTCOME_RESPONSES = {400: {"model": CompletionResponse}, 403: {"model": CompletionResponse}}


@router.post("/{video_id}/watch/{learner_id}", response_model=CompletionResponse, responses=OUTCOME_RESPONSES)
async def submit_video_watch(
    video_id: uuid.UUID,
    learner_id: uuid.UUID,
    watch: VideoWatchRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Record one watch; stars once the required watch count is reached."""
    await ensure_learner_access(db, current_user, learner_id)
    result = await VideoWatchHandler(db, cache).submit_video_watch(
        learner_id,
        video_id,
        completion_percentage=watch.completion_percentage,
        course_id=watch.course_id,
        time_spent=watch.time_spent
    )
    return completion_response(result)


@router.get("/{video_id}/status/{learner_id}")
async def get_video_watch_status(
    video_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    await ensure_learner_access(db, current_user, learner_id)
    return await VideoWatchHandler(db).get_video_watch_status(learner_id, video_id)


@router.delete("/{video_id}/watch/{learner_id}")
async def reset_video_watch(
    video_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Clear a learner's watch count. Stars already granted stay granted."""
    deleted = await VideoWatchHandler(db).reset_video_watch(learner_id, video_id)
    logger.info(
        "Video watch reset by admin",
        video_id=str(video_id),
        learner_id=str(learner_id),
        user_id=current_user["user_id"]
    )
    return {"success": True, "deleted": deleted}


@router.post(
    "/explore/{explore_video_id}/watch/{learner_id}",
    response_model=CompletionResponse,
    responses=OUTCOME_RESPONSES
)
async def submit_explore_video_watch(
    explore_video_id: uuid.UUID,
    learner_id: uuid.UUID,
    watch: ExploreVideoWatchRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    await ensure_learner_access(db, current_user, learner_id)
    result = await VideoWatchHandler(db, cache).submit_explore_video_watch(
        learner_id, explore_video_id, completion_percentage=watch.completion_percentage
    )
    return completion_response(result)


@router.get("/explore/{explore_video_id}/status/{learner_id}")
async def get_explore_video_watch_status(
    explore_video_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    await ensure_learner_access(db, current_user, learner_id)
    return await VideoWatchHandler(db).get_explore_video_watch_status(learner_id, explore_video_id)


@router.get("/explore/types/{video_type}/progress/{learner_id}")
async def get_video_type_progress(
    video_type: str,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Explore videos of one type: how many exist, how many were watched, stars earned."""
    await ensure_learner_access(db, current_user, learner_id)
    return await VideoWatchHandler(db).get_video_type_progress(learner_id, video_type)
