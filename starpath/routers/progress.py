"""Course progress endpoints."""

from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from starpath.completions.activity import ActivityCompletionHandler
from starpath.completions.book import BookCompletionHandler
from starpath.core.database import get_db
from starpath.core.dependencies import ensure_learner_access, get_cache, get_current_user, require_admin_or_parent
from starpath.progress.access import AccessResolver
from starpath.progress.tracker import ContentProgressTracker, ItemUpdate
from starpath.routers.responses import completion_response
from starpath.schemas.completions import CompletionResponse
from starpath.schemas.progress import (
    ActivityCompletionRequest, BookCompletionRequest, ChildCourseResponse, ContentProgressUpdate,
    ContentProgressUpdateResponse, CourseAccessResponse, CourseProgressDetail, CourseProgressResponse,
    StepAccessResponse
)

logger = structlog.get_logger()
router = APIRouter()


def _update_response(update: ItemUpdate) -> ContentProgressUpdateResponse:
    return ContentProgressUpdateResponse(
        progress=CourseProgressResponse.model_validate(update.progress),
        course_completed=update.course_completed,
        unlocked_course_ids=update.unlocked_course_ids,
        new_badges=update.new_badges
    )


@router.get("/{course_id}/access/{learner_id}", response_model=CourseAccessResponse)
async def check_course_access(
    course_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Whether the learner may enter the course, and which prerequisites are missing."""
    await ensure_learner_access(db, current_user, learner_id)
    access = await AccessResolver(db).check_course_access(learner_id, course_id)
    return CourseAccessResponse(
        accessible=access.accessible,
        reason=access.reason,
        missing_prerequisites=[ref.to_dict() for ref in access.missing_prerequisites]
    )


@router.get("/{course_id}/steps/{step}/access/{learner_id}", response_model=StepAccessResponse)
async def check_step_access(
    course_id: uuid.UUID,
    step: int,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ensure_learner_access(db, current_user, learner_id)
    access = await AccessResolver(db).check_step_access(learner_id, course_id, step)
    return StepAccessResponse(step=step, accessible=access.accessible, reason=access.reason)


@router.get("/child/{learner_id}", response_model=List[ChildCourseResponse])
async def get_child_courses(
    learner_id: uuid.UUID,
    status: Optional[str] = Query(None),
    is_default: Optional[bool] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Published courses for a learner with progress and lock state."""
    await ensure_learner_access(db, current_user, learner_id)
    entries = await ContentProgressTracker(db).get_child_courses(learner_id, status=status, is_default=is_default)

    for entry in entries:
        entry["missing_prerequisites"] = [ref.to_dict() for ref in entry["missing_prerequisites"]]
    return entries


@router.get("/{course_id}/child/{learner_id}", response_model=CourseProgressDetail)
async def get_course_progress(
    course_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ensure_learner_access(db, current_user, learner_id)
    detail = await ContentProgressTracker(db).get_course_progress(learner_id, course_id)
    detail["missing_prerequisites"] = [ref.to_dict() for ref in detail["missing_prerequisites"]]
    return detail


@router.patch("/{course_id}/child/{learner_id}/content", response_model=ContentProgressUpdateResponse)
async def update_content_progress(
    course_id: uuid.UUID,
    learner_id: uuid.UUID,
    update: ContentProgressUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Mark one content item completed."""
    await ensure_learner_access(db, current_user, learner_id)
    result = await ContentProgressTracker(db, cache=cache).update_content_progress(
        learner_id, course_id, update.content_id, update.content_type
    )
    return _update_response(result)


@router.post("/{course_id}/child/{learner_id}/complete", response_model=ContentProgressUpdateResponse)
async def mark_course_completed(
    course_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(require_admin_or_parent),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Force a course to completed. Admins and parents only."""
    await ensure_learner_access(db, current_user, learner_id)
    result = await ContentProgressTracker(db, cache=cache).mark_course_completed(learner_id, course_id)
    logger.info(
        "Course completion override",
        learner_id=str(learner_id),
        course_id=str(course_id),
        user_id=current_user["user_id"]
    )
    return _update_response(result)


@router.post(
    "/{course_id}/child/{learner_id}/book/{book_id}/complete",
    response_model=CompletionResponse,
    responses={400: {"model": CompletionResponse}, 403: {"model": CompletionResponse}}
)
async def complete_book(
    course_id: uuid.UUID,
    learner_id: uuid.UUID,
    book_id: uuid.UUID,
    submission: BookCompletionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Record one reading of a book; stars once the required readings are reached."""
    await ensure_learner_access(db, current_user, learner_id)
    result = await BookCompletionHandler(db, cache).submit_book_completion(
        learner_id,
        course_id,
        book_id,
        score=submission.score,
        max_score=submission.max_score,
        status=submission.status,
        time_spent=submission.time_spent,
        progress=submission.progress
    )
    return completion_response(result)


@router.post(
    "/{course_id}/child/{learner_id}/activity/{activity_id}/complete",
    response_model=CompletionResponse,
    responses={400: {"model": CompletionResponse}, 403: {"model": CompletionResponse}}
)
async def complete_activity(
    course_id: uuid.UUID,
    learner_id: uuid.UUID,
    activity_id: uuid.UUID,
    submission: ActivityCompletionRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    await ensure_learner_access(db, current_user, learner_id)
    result = await ActivityCompletionHandler(db, cache).submit_activity_completion(
        learner_id,
        course_id,
        activity_id,
        score=submission.score,
        status=submission.status,
        time_spent=submission.time_spent
    )
    return completion_response(result)
