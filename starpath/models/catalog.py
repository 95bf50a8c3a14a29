"""Reference data read by the engine: learners, courses and content."""

from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import Column, String, Integer, Float, DateTime, Boolean, ForeignKey, UniqueConstraint, Index, Table, Uuid
from sqlalchemy.orm import relationship

from starpath.core.database import Base


class ContentType(str, Enum):
    """Content types that can appear in a course manifest or be rewarded."""
    ACTIVITY = "activity"
    BOOK = "book"
    VIDEO = "video"
    EXPLORE_VIDEO = "explore_video"
    AUDIO_ASSIGNMENT = "audio_assignment"
    CHANT = "chant"


class ExploreVideoType(str, Enum):
    """Sub-tags of explore videos, used by content-type badges."""
    REPLAY = "replay"
    MUSIC = "music"
    ARTS_CRAFTS = "arts_crafts"
    COOKING = "cooking"
    MOVEMENT_FITNESS = "movement_fitness"
    STORY_TIME = "story_time"
    MANNERS_ETIQUETTE = "manners_etiquette"


course_prerequisites = Table(
    "course_prerequisites",
    Base.metadata,
    Column("course_id", Uuid, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
    Column("prerequisite_id", Uuid, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
)


class Learner(Base):
    """A child profile progressing through content."""
    __tablename__ = "learners"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name = Column(String, nullable=False)
    parent_id = Column(Uuid, index=True)
    is_archived = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Course(Base):
    """An ordered collection of content grouped into steps."""
    __tablename__ = "courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(String)
    step_order = Column(Integer)
    is_sequential = Column(Boolean, default=False)
    is_default = Column(Boolean, default=False)
    is_published = Column(Boolean, default=True)
    is_archived = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    contents = relationship(
        "CourseContent",
        back_populates="course",
        order_by="CourseContent.order",
        cascade="all, delete-orphan",
    )
    prerequisites = relationship(
        "Course",
        secondary=course_prerequisites,
        primaryjoin=id == course_prerequisites.c.course_id,
        secondaryjoin=id == course_prerequisites.c.prerequisite_id,
    )


class CourseContent(Base):
    """One entry of a course's content manifest."""
    __tablename__ = "course_contents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    content_id = Column(Uuid, nullable=False)
    content_type = Column(String, nullable=False)
    step = Column(Integer, nullable=False, default=1)
    order = Column(Integer, nullable=False, default=0)

    # Relationships
    course = relationship("Course", back_populates="contents")

    __table_args__ = (
        UniqueConstraint("course_id", "content_id", "content_type"),
        Index("ix_course_contents_course_step", "course_id", "step"),
    )


class Book(Base):
    __tablename__ = "books"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    required_reading_count = Column(Integer)
    total_stars_awarded = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)


class Video(Base):
    __tablename__ = "videos"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    required_watch_count = Column(Integer)
    stars_awarded = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)


class ExploreVideo(Base):
    """Standalone explore video, sub-typed by video_type."""
    __tablename__ = "explore_videos"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    video_type = Column(String, nullable=False, default=ExploreVideoType.MUSIC.value)
    stars_awarded = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    max_score = Column(Float)
    stars_awarded = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


class AudioAssignment(Base):
    __tablename__ = "audio_assignments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    instructions = Column(String)
    stars_awarded = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


class Chant(Base):
    __tablename__ = "chants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    instructions = Column(String)
    stars_awarded = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
