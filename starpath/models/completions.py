"""Completion events and human-review submissions."""

from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import Column, String, Integer, Float, DateTime, Boolean, ForeignKey, UniqueConstraint, Index, JSON, Uuid

from starpath.core.database import Base


class SubmissionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class CompletionRecord(Base):
    """One reading, watch or attempt. Counted toward a content's required repeats."""
    __tablename__ = "completion_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    learner_id = Column(Uuid, ForeignKey("learners.id"), nullable=False)
    content_type = Column(String, nullable=False)
    content_id = Column(Uuid, nullable=False)
    course_id = Column(Uuid)
    progress_percentage = Column(Float, default=100.0)
    time_spent = Column(Float, default=0.0)  # seconds
    score = Column(Float)
    completed_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_completion_learner_content", "learner_id", "content_type", "content_id"),
        Index("ix_completion_learner_content_time", "learner_id", "content_id", "completed_at"),
    )


class ContentSubmission(Base):
    """Recording and review state for audio assignments and chants."""
    __tablename__ = "content_submissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    learner_id = Column(Uuid, ForeignKey("learners.id"), nullable=False, index=True)
    content_type = Column(String, nullable=False)
    content_id = Column(Uuid, nullable=False)
    course_id = Column(Uuid)
    status = Column(String, nullable=False, default=SubmissionStatus.NOT_STARTED.value)
    recording_url = Column(String)
    time_spent = Column(Float, default=0.0)
    submitted_at = Column(DateTime)
    reviewer_id = Column(Uuid)
    reviewed_at = Column(DateTime)
    feedback = Column(String)
    stars_earned = Column(Integer, default=0)
    stars_awarded = Column(Boolean, default=False)
    stars_awarded_at = Column(DateTime)
    extra = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("learner_id", "content_type", "content_id", name="uq_content_submission"),
        Index("ix_content_submission_status", "content_type", "status", "submitted_at"),
    )
