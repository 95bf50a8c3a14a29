"""In-app notifications produced by reward events."""

from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Index, JSON, Uuid

from starpath.core.database import Base


class NotificationType(str, Enum):
    STARS_EARNED = "stars_earned"
    BADGE_EARNED = "badge_earned"
    COURSE_COMPLETED = "course_completed"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    learner_id = Column(Uuid, ForeignKey("learners.id"), nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    data = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_notification_learner_created", "learner_id", "created_at"),
    )
