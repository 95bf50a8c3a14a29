"""
Tests for course/step access and content progress tracking.
"""

import uuid

import pytest

from starpath.core.exceptions import ContentNotFound, CourseLocked, CourseNotFound, LearnerNotFound, StepLocked
from starpath.models.catalog import ContentType
from starpath.models.progress import CourseProgress, CourseStatus, ItemStatus
from starpath.models.stats import Badge, BadgeCategory, CriteriaType
from starpath.progress.access import AccessResolver
from starpath.progress.tracker import ContentProgressTracker

ACTIVITY = ContentType.ACTIVITY.value
VIDEO = ContentType.VIDEO.value


@pytest.fixture
async def two_step_course(seed):
    """Step 1 holds two activities, step 2 one video."""
    contents = [(uuid.uuid4(), ACTIVITY, 1), (uuid.uuid4(), ACTIVITY, 1), (uuid.uuid4(), VIDEO, 2)]
    course = await seed.course("Colors", contents=contents, step_order=1)
    return course, contents


class TestCourseAccess:

    async def test_non_sequential_course_is_open(self, db, seed, learner):
        prerequisite = await seed.course("Basics")
        course = await seed.course("Next", prerequisites=[prerequisite], is_sequential=False)

        access = await AccessResolver(db).check_course_access(learner.id, course.id)
        assert access.accessible is True
        assert access.missing_prerequisites == []

    async def test_missing_prerequisites_are_listed(self, db, seed, learner):
        first = await seed.course("Basics", step_order=1)
        second = await seed.course("Shapes", step_order=2)
        course = await seed.course("Patterns", prerequisites=[second, first], step_order=3)

        access = await AccessResolver(db).check_course_access(learner.id, course.id)

        assert access.accessible is False
        assert access.reason == "Complete prerequisite courses first"
        assert [ref.title for ref in access.missing_prerequisites] == ["Basics", "Shapes"]

    async def test_completed_prerequisites_unlock(self, db, seed, learner):
        prerequisite = await seed.course("Basics")
        course = await seed.course("Next", prerequisites=[prerequisite])
        db.add(CourseProgress(
            learner_id=learner.id, course_id=prerequisite.id, status=CourseStatus.COMPLETED.value
        ))
        await db.commit()

        access = await AccessResolver(db).check_course_access(learner.id, course.id)
        assert access.accessible is True

    async def test_unknown_course(self, db, learner):
        with pytest.raises(CourseNotFound):
            await AccessResolver(db).check_course_access(learner.id, uuid.uuid4())

    async def test_archived_learner_not_found(self, db, seed):
        archived = await seed.learner(is_archived=True)
        with pytest.raises(LearnerNotFound):
            await AccessResolver(db).load_learner(archived.id)


class TestStepAccess:

    async def test_step_two_needs_a_started_course(self, db, learner, two_step_course):
        course, _ = two_step_course
        access = await AccessResolver(db).check_step_access(learner.id, course.id, 2)

        assert access.accessible is False
        assert access.reason == "Course not started. Complete step 1 first."

    async def test_step_two_needs_step_one_completed(self, db, learner, two_step_course):
        course, contents = two_step_course
        tracker = ContentProgressTracker(db)
        await tracker.update_content_progress(learner.id, course.id, contents[0][0], ACTIVITY)

        access = await AccessResolver(db).check_step_access(learner.id, course.id, 2)
        assert access.accessible is False
        assert access.reason == "Step 1 must be completed before accessing step 2"

        await tracker.update_content_progress(learner.id, course.id, contents[1][0], ACTIVITY)
        access = await AccessResolver(db).check_step_access(learner.id, course.id, 2)
        assert access.accessible is True

    async def test_empty_step_counts_as_completed(self, db, seed, learner):
        contents = [(uuid.uuid4(), ACTIVITY, 1), (uuid.uuid4(), ACTIVITY, 3)]
        course = await seed.course("Gappy", contents=contents)
        await ContentProgressTracker(db).update_content_progress(learner.id, course.id, contents[0][0], ACTIVITY)

        access = await AccessResolver(db).check_step_access(learner.id, course.id, 3)
        assert access.accessible is True


class TestContentProgressTracker:

    async def test_progress_percentage_and_current_step(self, db, learner, two_step_course):
        course, contents = two_step_course
        update = await ContentProgressTracker(db).update_content_progress(
            learner.id, course.id, contents[0][0], ACTIVITY
        )

        assert update.progress.status == CourseStatus.IN_PROGRESS.value
        assert update.progress.progress_percentage == 33.0
        assert update.progress.current_step == 1
        assert update.item.status == ItemStatus.COMPLETED.value
        assert update.course_completed is False

    async def test_repeat_update_is_idempotent(self, db, learner, two_step_course):
        course, contents = two_step_course
        tracker = ContentProgressTracker(db)
        await tracker.update_content_progress(learner.id, course.id, contents[0][0], ACTIVITY)
        update = await tracker.update_content_progress(learner.id, course.id, contents[0][0], ACTIVITY)

        assert update.progress.progress_percentage == 33.0
        assert len(await tracker.get_items(learner.id, course.id)) == 1

    async def test_locked_step_raises(self, db, learner, two_step_course):
        course, contents = two_step_course
        with pytest.raises(StepLocked) as exc_info:
            await ContentProgressTracker(db).update_content_progress(learner.id, course.id, contents[2][0], VIDEO)

        assert exc_info.value.step == 2
        assert exc_info.value.status_code == 403

    async def test_content_outside_manifest(self, db, learner, two_step_course):
        course, _ = two_step_course
        with pytest.raises(ContentNotFound):
            await ContentProgressTracker(db).update_content_progress(learner.id, course.id, uuid.uuid4(), ACTIVITY)

    async def test_locked_first_step_lists_prerequisites(self, db, seed, learner):
        prerequisite = await seed.course("Basics")
        content_id = uuid.uuid4()
        course = await seed.course("Next", contents=[(content_id, ACTIVITY, 1)], prerequisites=[prerequisite])

        with pytest.raises(StepLocked) as exc_info:
            await ContentProgressTracker(db).update_content_progress(learner.id, course.id, content_id, ACTIVITY)

        assert exc_info.value.step == 1
        assert exc_info.value.message == "Complete prerequisite courses first"
        missing = exc_info.value.details["missing_prerequisites"]
        assert [ref["title"] for ref in missing] == ["Basics"]

    async def test_completion_cascades_and_unlocks_dependents(self, db, seed, learner):
        content_id = uuid.uuid4()
        basics = await seed.course("Basics", contents=[(content_id, ACTIVITY, 1)])
        dependent = await seed.course("Next", prerequisites=[basics])
        locked = await seed.course("Later", prerequisites=[basics])
        db.add(CourseProgress(learner_id=learner.id, course_id=locked.id, status=CourseStatus.LOCKED.value))
        await db.commit()

        tracker = ContentProgressTracker(db)
        update = await tracker.update_content_progress(learner.id, basics.id, content_id, ACTIVITY)

        assert update.course_completed is True
        assert update.progress.status == CourseStatus.COMPLETED.value
        assert update.progress.progress_percentage == 100.0
        assert update.progress.completed_at is not None
        assert set(update.unlocked_course_ids) == {dependent.id, locked.id}

        assert (await tracker.get_progress(learner.id, dependent.id)).status == CourseStatus.NOT_STARTED.value
        assert (await tracker.get_progress(learner.id, locked.id)).status == CourseStatus.NOT_STARTED.value
        stats = await tracker.stats_store.get(learner.id)
        assert stats.lessons_completed == 1

    async def test_dependent_with_other_missing_prerequisite_stays_locked(self, db, seed, learner):
        content_id = uuid.uuid4()
        basics = await seed.course("Basics", contents=[(content_id, ACTIVITY, 1)])
        other = await seed.course("Other")
        dependent = await seed.course("Next", prerequisites=[basics, other])

        update = await ContentProgressTracker(db).update_content_progress(learner.id, basics.id, content_id, ACTIVITY)

        assert update.unlocked_course_ids == []
        assert await ContentProgressTracker(db).get_progress(learner.id, dependent.id) is None

    async def test_completed_item_never_downgrades(self, db, learner, two_step_course):
        course, contents = two_step_course
        tracker = ContentProgressTracker(db)
        update = await tracker.update_content_progress(learner.id, course.id, contents[0][0], ACTIVITY)
        entry = await tracker.resolve_manifest_item(course.id, contents[0][0], ACTIVITY)

        item = await tracker.set_item_state(update.progress, entry, ItemStatus.IN_PROGRESS)
        assert item.status == ItemStatus.COMPLETED.value

    async def test_empty_manifest_never_completes(self, db, seed, learner):
        course = await seed.course("Empty")
        tracker = ContentProgressTracker(db)
        progress = await tracker.get_or_create_progress(learner.id, course)

        assert await tracker.refresh_course_status(progress) is False
        assert progress.status == CourseStatus.IN_PROGRESS.value

    async def test_mark_course_completed(self, db, seed, learner, two_step_course):
        course, _ = two_step_course
        dependent = await seed.course("Next", prerequisites=[course])

        update = await ContentProgressTracker(db).mark_course_completed(learner.id, course.id)

        assert update.progress.status == CourseStatus.COMPLETED.value
        assert update.progress.progress_percentage == 100.0
        assert update.course_completed is True
        assert update.unlocked_course_ids == [dependent.id]

    async def test_mark_locked_course_completed_raises(self, db, seed, learner):
        prerequisite = await seed.course("Basics")
        course = await seed.course("Next", prerequisites=[prerequisite])

        with pytest.raises(CourseLocked):
            await ContentProgressTracker(db).mark_course_completed(learner.id, course.id)


class TestCourseCompletionBadges:

    @pytest.fixture
    async def first_lesson_badge(self, db):
        badge = Badge(
            name="First Lesson",
            category=BadgeCategory.COMPLETION.value,
            criteria_type=CriteriaType.LESSONS_COMPLETED.value,
            criteria_value=1
        )
        db.add(badge)
        await db.commit()
        return badge

    async def test_finishing_last_item_awards_lesson_badge(self, db, seed, learner, first_lesson_badge):
        content_id = uuid.uuid4()
        course = await seed.course("Basics", contents=[(content_id, ACTIVITY, 1)])
        tracker = ContentProgressTracker(db)

        update = await tracker.update_content_progress(learner.id, course.id, content_id, ACTIVITY)

        assert update.course_completed is True
        assert [badge["name"] for badge in update.new_badges] == ["First Lesson"]
        stats = await tracker.stats_store.get(learner.id)
        assert stats.total_badges == 1
        assert await tracker.stats_store.badge_ids(learner.id) == {first_lesson_badge.id}

    async def test_partial_progress_awards_nothing(self, db, learner, two_step_course, first_lesson_badge):
        course, contents = two_step_course
        update = await ContentProgressTracker(db).update_content_progress(
            learner.id, course.id, contents[0][0], ACTIVITY
        )
        assert update.new_badges == []

    async def test_override_completion_awards_lesson_badge(self, db, seed, learner, first_lesson_badge):
        course = await seed.course("Basics")
        tracker = ContentProgressTracker(db)

        first = await tracker.mark_course_completed(learner.id, course.id)
        again = await tracker.mark_course_completed(learner.id, course.id)

        assert [badge["name"] for badge in first.new_badges] == ["First Lesson"]
        assert again.new_badges == []
        assert (await tracker.stats_store.get(learner.id)).lessons_completed == 1


class TestChildCourses:

    async def test_statuses_and_order(self, db, seed, learner):
        content_id = uuid.uuid4()
        unordered = await seed.course("Free Play")
        second = await seed.course("Shapes", step_order=2)
        first = await seed.course("Basics", contents=[(content_id, ACTIVITY, 1)], step_order=1)
        second.prerequisites = [first]
        second.is_sequential = True
        await seed.course("Hidden", is_published=False)
        await db.commit()

        tracker = ContentProgressTracker(db)
        courses = await tracker.get_child_courses(learner.id)

        assert [entry["course"].title for entry in courses] == ["Basics", "Shapes", "Free Play"]
        by_title = {entry["course"].title: entry for entry in courses}
        assert by_title["Basics"]["status"] == CourseStatus.NOT_STARTED.value
        assert by_title["Shapes"]["status"] == CourseStatus.LOCKED.value
        assert by_title["Shapes"]["accessible"] is False
        assert by_title["Free Play"]["progress"] is None

        await tracker.update_content_progress(learner.id, first.id, content_id, ACTIVITY)
        completed = await tracker.get_child_courses(learner.id, status=CourseStatus.COMPLETED.value)
        assert [entry["course"].title for entry in completed] == ["Basics"]
        assert completed[0]["progress_percentage"] == 100.0

    async def test_get_course_progress(self, db, learner, two_step_course):
        course, contents = two_step_course
        tracker = ContentProgressTracker(db)

        detail = await tracker.get_course_progress(learner.id, course.id)
        assert detail["progress"] is None
        assert detail["items"] == []
        assert detail["accessible"] is True

        await tracker.update_content_progress(learner.id, course.id, contents[0][0], ACTIVITY)
        detail = await tracker.get_course_progress(learner.id, course.id)
        assert detail["progress"].progress_percentage == 33.0
        assert len(detail["items"]) == 1
