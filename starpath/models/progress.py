"""Course and content progress tracking models."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union
import uuid

from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, UniqueConstraint, Index, JSON, Uuid
from sqlalchemy.orm import relationship

from starpath.core.database import Base


class CourseStatus(str, Enum):
    """Status of a learner's progress through a course."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    LOCKED = "locked"


class ItemStatus(str, Enum):
    """Status of one content item. Superset across content types.

    An approved review stores the item as COMPLETED, so step gating only ever
    checks one status. The decision itself lives in the completion metadata.
    """
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    REJECTED = "rejected"


class _CompletionBase(BaseModel):
    stars_awarded: bool = False
    stars_awarded_at: Optional[datetime] = None


class BookCompletion(_CompletionBase):
    kind: Literal["book"] = "book"
    reading_count: int = 0


class VideoCompletion(_CompletionBase):
    kind: Literal["video"] = "video"
    watch_count: int = 0


class ActivityCompletion(_CompletionBase):
    kind: Literal["activity"] = "activity"
    score: Optional[float] = None


class ReviewCompletion(_CompletionBase):
    kind: Literal["review"] = "review"
    decision: Optional[str] = None
    feedback: Optional[str] = None
    reviewed_at: Optional[datetime] = None


CompletionMeta = Annotated[
    Union[BookCompletion, VideoCompletion, ActivityCompletion, ReviewCompletion],
    Field(discriminator="kind"),
]

completion_meta_adapter = TypeAdapter(CompletionMeta)


class CourseProgress(Base):
    """Progress of one learner through one course."""
    __tablename__ = "course_progress"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    learner_id = Column(Uuid, ForeignKey("learners.id"), nullable=False, index=True)
    course_id = Column(Uuid, ForeignKey("courses.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default=CourseStatus.NOT_STARTED.value)
    progress_percentage = Column(Float, nullable=False, default=0.0)
    current_step = Column(Integer, nullable=False, default=1)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items = relationship(
        "ContentProgressItem",
        back_populates="course_progress",
        order_by="ContentProgressItem.step",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("learner_id", "course_id", name="uq_course_progress_learner_course"),
        Index("ix_course_progress_learner_status", "learner_id", "status"),
        Index("ix_course_progress_learner_completed", "learner_id", "completed_at"),
    )


class ContentProgressItem(Base):
    """State of one content item for one learner in one course."""
    __tablename__ = "content_progress_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_progress_id = Column(Uuid, ForeignKey("course_progress.id", ondelete="CASCADE"), nullable=False)
    learner_id = Column(Uuid, nullable=False)
    course_id = Column(Uuid, nullable=False)
    content_id = Column(Uuid, nullable=False)
    content_type = Column(String, nullable=False)
    step = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=ItemStatus.NOT_STARTED.value)
    completed_at = Column(DateTime)
    completion = Column(JSON)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    course_progress = relationship("CourseProgress", back_populates="items")

    __table_args__ = (
        UniqueConstraint("learner_id", "course_id", "content_id", "step", name="uq_content_progress_item"),
        Index("ix_content_progress_learner_course", "learner_id", "course_id"),
    )

    @property
    def completion_meta(self):
        """Typed view of the completion column, or None when unset."""
        if not self.completion:
            return None
        return completion_meta_adapter.validate_python(self.completion)

    @completion_meta.setter
    def completion_meta(self, value):
        self.completion = value.model_dump(mode="json") if value is not None else None
