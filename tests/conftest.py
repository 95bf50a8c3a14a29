"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database through aiosqlite. The API
client talks to the app through httpx's ASGI transport with the database and
auth dependencies overridden.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ENABLE_METRICS", "false")
os.environ.setdefault("LOG_FORMAT", "plain")

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple
import uuid

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from starpath.core.config import settings
from starpath.core.database import Base, get_db
from starpath.core.dependencies import ROLE_ADMIN, ROLE_CHILD, ROLE_PARENT, create_access_token
from starpath.gamification.badge_catalog import seed_badge_catalog
import starpath.models  # noqa: F401
from starpath.models.catalog import (
    Activity, AudioAssignment, Book, Chant, ContentType, Course, CourseContent, ExploreVideo, Learner, Video
)
from starpath.models.completions import CompletionRecord


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Provide a database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def no_dedup_window(monkeypatch):
    """Let back-to-back submissions count as separate completions."""
    monkeypatch.setattr(settings, "DEDUP_WINDOW_SECONDS", 0.0)


@pytest.fixture
async def badge_catalog(db):
    """Install the standard badge catalog."""
    await seed_badge_catalog(db)


class Seeder:
    """Builds reference data: learners, courses, manifests and content."""

    def __init__(self, db):
        self.db = db

    async def learner(self, parent_id: Optional[uuid.UUID] = None, **kwargs) -> Learner:
        learner = Learner(display_name=kwargs.pop("display_name", "Ada"), parent_id=parent_id, **kwargs)
        self.db.add(learner)
        await self.db.commit()
        return learner

    async def course(
        self,
        title: str = "Course",
        contents: Iterable[Tuple[uuid.UUID, str, int]] = (),
        prerequisites: Iterable[Course] = (),
        **kwargs
    ) -> Course:
        """Create a course. `contents` holds (content_id, content_type, step) entries."""
        prerequisites = list(prerequisites)
        course = Course(title=title, is_sequential=kwargs.pop("is_sequential", bool(prerequisites)), **kwargs)
        course.prerequisites = prerequisites
        self.db.add(course)
        await self.db.flush()

        for order, (content_id, content_type, step) in enumerate(contents):
            self.db.add(CourseContent(
                course_id=course.id,
                content_id=content_id,
                content_type=content_type,
                step=step,
                order=order
            ))
        await self.db.commit()
        return course

    async def _add(self, instance):
        self.db.add(instance)
        await self.db.commit()
        return instance

    async def book(self, title="The Very Hungry Caterpillar", required_reading_count=5, total_stars_awarded=50) -> Book:
        return await self._add(Book(
            title=title, required_reading_count=required_reading_count, total_stars_awarded=total_stars_awarded
        ))

    async def video(self, title="Counting Song", required_watch_count=2, stars_awarded=10) -> Video:
        return await self._add(Video(title=title, required_watch_count=required_watch_count, stars_awarded=stars_awarded))

    async def explore_video(self, title="Drum Circle", video_type="music", stars_awarded=10) -> ExploreVideo:
        return await self._add(ExploreVideo(title=title, video_type=video_type, stars_awarded=stars_awarded))

    async def activity(self, title="Shape Sorter", stars_awarded=5, max_score=10.0) -> Activity:
        return await self._add(Activity(title=title, stars_awarded=stars_awarded, max_score=max_score))

    async def audio_assignment(self, title="Say the Alphabet", stars_awarded=15) -> AudioAssignment:
        return await self._add(AudioAssignment(title=title, stars_awarded=stars_awarded))

    async def chant(self, title="Morning Chant", stars_awarded=5) -> Chant:
        return await self._add(Chant(title=title, stars_awarded=stars_awarded))

    async def past_readings(
        self,
        learner_id: uuid.UUID,
        content_id: uuid.UUID,
        count: int,
        content_type: str = ContentType.BOOK.value,
        course_id: Optional[uuid.UUID] = None
    ) -> List[CompletionRecord]:
        """Completion records spread over earlier days, outside any dedup window."""
        records = [
            CompletionRecord(
                learner_id=learner_id,
                content_type=content_type,
                content_id=content_id,
                course_id=course_id,
                progress_percentage=100.0,
                time_spent=120.0,
                completed_at=datetime.utcnow() - timedelta(days=count - i)
            )
            for i in range(count)
        ]
        self.db.add_all(records)
        await self.db.commit()
        return records


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def parent_id():
    return uuid.uuid4()


@pytest.fixture
async def learner(seed, parent_id):
    return await seed.learner(parent_id=parent_id)


@pytest.fixture
def auth_user():
    """Identity signed into each request's bearer token. Tests mutate it."""
    return {"user_id": str(uuid.uuid4()), "role": ROLE_ADMIN}


@pytest.fixture
def as_parent(auth_user, parent_id):
    auth_user.update(user_id=str(parent_id), role=ROLE_PARENT)
    return auth_user


@pytest.fixture
def as_child(auth_user, learner):
    auth_user.update(user_id=str(learner.id), role=ROLE_CHILD)
    return auth_user


class BearerToken(httpx.Auth):
    """Signs the current `auth_user` into a JWT on every request."""

    def __init__(self, user: dict):
        self.user = user

    def auth_flow(self, request):
        token = create_access_token({"sub": self.user["user_id"], "role": self.user["role"]})
        request.headers["Authorization"] = f"Bearer {token}"
        yield request


@pytest.fixture
async def client(session_factory, auth_user):
    """Provide an API client bound to the test database, authenticated as `auth_user`."""
    from starpath.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://test", auth=BearerToken(auth_user)
    ) as api_client:
        yield api_client

    app.dependency_overrides.clear()
