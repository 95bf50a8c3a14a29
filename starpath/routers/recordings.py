"""Audio assignment and chant endpoints."""

from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from starpath.completions.review import AudioAssignmentHandler, ChantHandler
from starpath.core.database import get_db
from starpath.core.dependencies import ensure_learner_access, get_cache, get_current_user, require_admin
from starpath.models.completions import SubmissionStatus
from starpath.routers.responses import user_uuid
from starpath.schemas.completions import (
    RecordingSubmission, ReviewRequest, StartRequest, SubmissionListResponse, SubmissionResponse, SubmissionResult
)

logger = structlog.get_logger()

audio_router = APIRouter()
chant_router = APIRouter()


def _submission_result(submission, result=None) -> SubmissionResult:
    return SubmissionResult(
        submission=SubmissionResponse.model_validate(submission),
        result=jsonable_encoder(result.to_dict()) if result is not None else None
    )


# Audio assignments

@audio_router.get("/submissions", response_model=SubmissionListResponse)
async def list_audio_submissions(
    status: Optional[str] = Query(SubmissionStatus.SUBMITTED.value),
    content_id: Optional[uuid.UUID] = Query(None),
    learner_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Review queue, newest submissions first."""
    return await AudioAssignmentHandler(db).list_submissions(
        status=status, content_id=content_id, learner_id=learner_id, page=page, limit=limit
    )


@audio_router.post("/{assignment_id}/start/{learner_id}", response_model=SubmissionResponse)
async def start_audio_assignment(
    assignment_id: uuid.UUID,
    learner_id: uuid.UUID,
    request: StartRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ensure_learner_access(db, current_user, learner_id)
    return await AudioAssignmentHandler(db).start(learner_id, assignment_id, request.course_id)


@audio_router.get("/{assignment_id}/progress/{learner_id}", response_model=SubmissionResponse)
async def get_audio_assignment_progress(
    assignment_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ensure_learner_access(db, current_user, learner_id)
    return await AudioAssignmentHandler(db).get_progress(learner_id, assignment_id)


@audio_router.post("/{assignment_id}/submit/{learner_id}", response_model=SubmissionResponse)
async def submit_audio_recording(
    assignment_id: uuid.UUID,
    learner_id: uuid.UUID,
    submission: RecordingSubmission,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Hand in a recording for review. Stars come with approval."""
    await ensure_learner_access(db, current_user, learner_id)
    return await AudioAssignmentHandler(db).submit_recording(
        learner_id,
        assignment_id,
        submission.recording_url,
        time_spent=submission.time_spent,
        extra=submission.extra,
        course_id=submission.course_id
    )


@audio_router.post("/{assignment_id}/review/{learner_id}", response_model=SubmissionResult)
async def review_audio_submission(
    assignment_id: uuid.UUID,
    learner_id: uuid.UUID,
    review: ReviewRequest,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Approve or reject a submission. Approving again never pays twice."""
    submission, result = await AudioAssignmentHandler(db, cache).review(
        learner_id,
        assignment_id,
        review.decision,
        feedback=review.feedback,
        reviewer_id=user_uuid(current_user)
    )
    return _submission_result(submission, result)


# Chants

@chant_router.post("/{chant_id}/start/{learner_id}", response_model=SubmissionResponse)
async def start_chant(
    chant_id: uuid.UUID,
    learner_id: uuid.UUID,
    request: StartRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ensure_learner_access(db, current_user, learner_id)
    return await ChantHandler(db).start(learner_id, chant_id, request.course_id)


@chant_router.get("/{chant_id}/progress/{learner_id}", response_model=SubmissionResponse)
async def get_chant_progress(
    chant_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await ensure_learner_access(db, current_user, learner_id)
    return await ChantHandler(db).get_progress(learner_id, chant_id)


@chant_router.post("/{chant_id}/complete/{learner_id}", response_model=SubmissionResult)
async def complete_chant(
    chant_id: uuid.UUID,
    learner_id: uuid.UUID,
    submission: RecordingSubmission,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Complete a chant with its recording. Stars on the first completion only."""
    await ensure_learner_access(db, current_user, learner_id)
    chant_submission, result = await ChantHandler(db, cache).complete(
        learner_id,
        chant_id,
        submission.recording_url,
        time_spent=submission.time_spent,
        extra=submission.extra,
        course_id=submission.course_id
    )
    return _submission_result(chant_submission, result)
