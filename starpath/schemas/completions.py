"""Completion, watch and submission schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class CompletionResponse(BaseModel):
    """Result of one completion submission."""
    success: bool
    outcome: str
    current_count: int = 0
    required_count: int = 1
    requirement_met: bool = False
    stars_awarded: bool = False
    stars_granted: int = 0
    total_stars: int = 0
    duplicate: bool = False
    course_completed: bool = False
    new_badges: List[Dict[str, Any]] = Field(default_factory=list)
    requirements: Dict[str, str] = Field(default_factory=dict)
    reason: Optional[str] = None


class VideoWatchRequest(BaseModel):
    completion_percentage: float = Field(default=100.0, ge=0, le=100)
    course_id: Optional[uuid.UUID] = None
    time_spent: float = Field(default=0.0, ge=0)


class ExploreVideoWatchRequest(BaseModel):
    completion_percentage: float = Field(default=100.0, ge=0, le=100)


class RecordingSubmission(BaseModel):
    recording_url: Optional[str] = None
    time_spent: float = Field(default=0.0, ge=0)
    course_id: Optional[uuid.UUID] = None
    extra: Optional[Dict[str, Any]] = None


class StartRequest(BaseModel):
    course_id: Optional[uuid.UUID] = None


class ReviewRequest(BaseModel):
    decision: str
    feedback: Optional[str] = None


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    learner_id: uuid.UUID
    content_type: str
    content_id: uuid.UUID
    course_id: Optional[uuid.UUID] = None
    status: str
    recording_url: Optional[str] = None
    time_spent: Optional[float] = None
    submitted_at: Optional[datetime] = None
    reviewer_id: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    feedback: Optional[str] = None
    stars_earned: Optional[int] = 0
    stars_awarded: Optional[bool] = False
    stars_awarded_at: Optional[datetime] = None


class SubmissionResult(BaseModel):
    submission: SubmissionResponse
    result: Optional[CompletionResponse] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class SubmissionListResponse(BaseModel):
    submissions: List[SubmissionResponse]
    pagination: Pagination
