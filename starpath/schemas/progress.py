"""Course progress request and response schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class CourseRefResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    step_order: Optional[int] = None


class CourseAccessResponse(BaseModel):
    accessible: bool
    reason: Optional[str] = None
    missing_prerequisites: List[CourseRefResponse] = Field(default_factory=list)


class StepAccessResponse(BaseModel):
    step: int
    accessible: bool
    reason: Optional[str] = None


class CourseSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    step_order: Optional[int] = None
    is_sequential: bool = False
    is_default: bool = False


class ContentProgressItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    content_id: uuid.UUID
    content_type: str
    step: int
    status: str
    completed_at: Optional[datetime] = None
    completion: Optional[Dict[str, Any]] = None


class CourseProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    learner_id: uuid.UUID
    course_id: uuid.UUID
    status: str
    progress_percentage: float
    current_step: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CourseProgressDetail(BaseModel):
    course: CourseSummary
    progress: Optional[CourseProgressResponse] = None
    items: List[ContentProgressItemResponse] = Field(default_factory=list)
    accessible: bool
    missing_prerequisites: List[CourseRefResponse] = Field(default_factory=list)


class ChildCourseResponse(BaseModel):
    course: CourseSummary
    progress: Optional[CourseProgressResponse] = None
    status: str
    accessible: bool
    missing_prerequisites: List[CourseRefResponse] = Field(default_factory=list)
    progress_percentage: float = 0.0


class ContentProgressUpdate(BaseModel):
    content_id: uuid.UUID
    content_type: str


class ContentProgressUpdateResponse(BaseModel):
    success: bool = True
    progress: CourseProgressResponse
    course_completed: bool = False
    unlocked_course_ids: List[uuid.UUID] = Field(default_factory=list)
    new_badges: List[Dict[str, Any]] = Field(default_factory=list)


class BookCompletionRequest(BaseModel):
    score: Optional[float] = None
    max_score: Optional[float] = None
    status: str
    time_spent: float = Field(ge=0)
    progress: float = Field(ge=0, le=100)


class ActivityCompletionRequest(BaseModel):
    score: Optional[float] = None
    status: Optional[str] = None
    time_spent: float = Field(default=0.0, ge=0)
