"""Learner statistics and the badge catalog."""

from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import Column, String, Integer, DateTime, Date, Boolean, ForeignKey, UniqueConstraint, Index, JSON, Uuid
from sqlalchemy.orm import relationship

from starpath.core.database import Base


class BadgeCategory(str, Enum):
    """Badge categories."""
    LEVEL = "level"
    MILESTONE = "milestone"
    EXPLORE = "explore"
    STREAK = "streak"
    COMPLETION = "completion"
    SOCIAL = "social"
    SPECIAL = "special"
    OTHER = "other"


class CriteriaType(str, Enum):
    """Derived quantity a badge threshold is compared against."""
    TOTAL_STARS = "total_stars"
    CONTENT_TYPE_STARS = "content_type_stars"
    STREAK_DAYS = "streak_days"
    ACTIVITIES_COMPLETED = "activities_completed"
    LESSONS_COMPLETED = "lessons_completed"
    JOURNEYS_COMPLETED = "journeys_completed"
    BOOKS_READ = "books_read"
    VIDEOS_WATCHED = "videos_watched"
    AUDIO_ASSIGNMENTS_COMPLETED = "audio_assignments_completed"
    CUSTOM = "custom"


class BadgeRarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class LearnerStats(Base):
    """Cumulative counters for one learner."""
    __tablename__ = "learner_stats"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    learner_id = Column(Uuid, ForeignKey("learners.id"), nullable=False, unique=True, index=True)
    total_stars = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_activity_date = Column(Date)
    total_badges = Column(Integer, nullable=False, default=0)
    activities_completed = Column(Integer, nullable=False, default=0)
    videos_watched = Column(Integer, nullable=False, default=0)
    books_read = Column(Integer, nullable=False, default=0)
    audio_assignments_completed = Column(Integer, nullable=False, default=0)
    lessons_completed = Column(Integer, nullable=False, default=0)
    journeys_completed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_learner_stats_total_stars", "total_stars"),
        Index("ix_learner_stats_current_streak", "current_streak"),
    )


class Badge(Base):
    """Badge definitions."""
    __tablename__ = "badges"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, unique=True)
    description = Column(String)
    category = Column(String, nullable=False, default=BadgeCategory.OTHER.value)
    criteria_type = Column(String, nullable=False)
    criteria_value = Column(Integer, nullable=False, default=0)
    criteria_metadata = Column(JSON, default=dict)
    rarity = Column(String, nullable=False, default=BadgeRarity.COMMON.value)
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_badges_category_order", "category", "display_order"),
    )


class LearnerBadge(Base):
    """Badges earned by learners. One row per (learner, badge)."""
    __tablename__ = "learner_badges"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    learner_id = Column(Uuid, ForeignKey("learners.id"), nullable=False, index=True)
    badge_id = Column(Uuid, ForeignKey("badges.id"), nullable=False)
    earned_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    badge = relationship("Badge")

    __table_args__ = (
        UniqueConstraint("learner_id", "badge_id"),
        Index("ix_learner_badge_earned", "earned_at"),
    )
