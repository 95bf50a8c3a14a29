"""
API tests through the ASGI app.
"""

import uuid

import pytest

from starpath.models.catalog import ContentType


BOOK_SUBMISSION = {"score": 8, "max_score": 10, "status": "completed", "time_spent": 70, "progress": 85}


class TestServiceEndpoints:

    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"] == "healthy"

    async def test_request_id_header(self, client):
        response = await client.get("/", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"


class TestAuthentication:

    async def test_missing_token_is_rejected(self, client, learner):
        response = await client.get(f"/api/gamification/stats/{learner.id}", auth=None)
        assert response.status_code in (401, 403)

    async def test_invalid_token_is_rejected(self, client, learner):
        response = await client.get(
            f"/api/gamification/stats/{learner.id}",
            auth=None,
            headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    async def test_child_token_reads_own_stats_only(self, client, seed, learner, as_child):
        sibling = await seed.learner(display_name="Grace")

        own = await client.get(f"/api/gamification/stats/{learner.id}")
        other = await client.get(f"/api/gamification/stats/{sibling.id}")

        assert own.status_code == 200
        assert other.status_code == 403


class TestCourseProgressApi:

    async def test_course_access_lists_missing_prerequisites(self, client, seed, learner):
        basics = await seed.course("Basics", step_order=1)
        course = await seed.course("Shapes", prerequisites=[basics], step_order=2)

        response = await client.get(f"/api/course-progress/{course.id}/access/{learner.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["accessible"] is False
        assert body["missing_prerequisites"][0]["title"] == "Basics"

    async def test_child_courses(self, client, seed, learner, as_parent):
        await seed.course("Basics", step_order=1)

        response = await client.get(f"/api/course-progress/child/{learner.id}")

        assert response.status_code == 200
        body = response.json()
        assert [entry["course"]["title"] for entry in body] == ["Basics"]
        assert body[0]["status"] == "not_started"

    async def test_other_parent_is_forbidden(self, client, seed, auth_user):
        stranger = await seed.learner(parent_id=uuid.uuid4())
        auth_user.update(user_id=str(uuid.uuid4()), role="parent")

        response = await client.get(f"/api/course-progress/child/{stranger.id}")
        assert response.status_code == 403

    async def test_unknown_learner_error_body(self, client):
        response = await client.get(f"/api/course-progress/child/{uuid.uuid4()}")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "not_found"
        assert body["message"] == "Learner not found"
        assert "id" in body["details"]

    async def test_content_update_and_locked_step(self, client, seed, learner):
        first, second = uuid.uuid4(), uuid.uuid4()
        course = await seed.course(
            "Colors", contents=[(first, ContentType.ACTIVITY.value, 1), (second, ContentType.VIDEO.value, 2)]
        )
        url = f"/api/course-progress/{course.id}/child/{learner.id}/content"

        locked = await client.patch(url, json={"content_id": str(second), "content_type": "video"})
        assert locked.status_code == 403
        assert locked.json()["error"] == "step_locked"

        response = await client.patch(url, json={"content_id": str(first), "content_type": "activity"})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["progress"]["progress_percentage"] == 50.0
        assert body["course_completed"] is False

    async def test_locked_first_step_reports_prerequisites(self, client, seed, learner):
        content_id = uuid.uuid4()
        basics = await seed.course("Basics")
        course = await seed.course(
            "Shapes", contents=[(content_id, ContentType.ACTIVITY.value, 1)], prerequisites=[basics]
        )

        response = await client.patch(
            f"/api/course-progress/{course.id}/child/{learner.id}/content",
            json={"content_id": str(content_id), "content_type": "activity"}
        )

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "step_locked"
        assert body["details"]["step"] == 1
        assert [ref["title"] for ref in body["details"]["missing_prerequisites"]] == ["Basics"]

    async def test_mark_complete_requires_admin_or_parent(self, client, seed, learner, as_child):
        course = await seed.course("Basics")
        response = await client.post(f"/api/course-progress/{course.id}/child/{learner.id}/complete")
        assert response.status_code == 403


class TestBookCompletionApi:

    @pytest.fixture
    async def book_course(self, seed):
        book = await seed.book()
        course = await seed.course("Reading", contents=[(book.id, ContentType.BOOK.value, 1)])
        return book, course

    async def test_reading_is_recorded(self, client, learner, book_course):
        book, course = book_course
        response = await client.post(
            f"/api/course-progress/{course.id}/child/{learner.id}/book/{book.id}/complete", json=BOOK_SUBMISSION
        )

        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "recorded"
        assert body["current_count"] == 1
        assert body["required_count"] == 5

        status = await client.get(f"/api/books/{book.id}/status/{learner.id}")
        assert status.json()["reading_count"] == 1

    async def test_fifth_reading_rewards(self, client, seed, learner, book_course, badge_catalog):
        book, course = book_course
        await seed.past_readings(learner.id, book.id, 4, course_id=course.id)

        response = await client.post(
            f"/api/course-progress/{course.id}/child/{learner.id}/book/{book.id}/complete", json=BOOK_SUBMISSION
        )

        body = response.json()
        assert response.status_code == 200
        assert body["outcome"] == "rewarded"
        assert body["stars_granted"] == 50
        assert body["course_completed"] is True

        stats = await client.get(f"/api/gamification/stats/{learner.id}")
        assert stats.json()["total_stars"] == 50
        assert stats.json()["level"] == "Rising Star"
        assert stats.json()["next_level"] == "Super Learner"

        history = await client.get(f"/api/gamification/stars/{learner.id}/history")
        assert [grant["stars"] for grant in history.json()] == [50]

        badges = await client.get(f"/api/gamification/badges/{learner.id}")
        assert len(badges.json()) == 5

    async def test_requirements_not_met(self, client, learner, book_course):
        book, course = book_course
        response = await client.post(
            f"/api/course-progress/{course.id}/child/{learner.id}/book/{book.id}/complete",
            json={"score": 0, "status": "in_progress", "time_spent": 10, "progress": 20}
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["outcome"] == "requirements_not_met"
        assert body["requirements"]["score"] == "Score must be > 0"

    async def test_progress_out_of_range_is_rejected(self, client, learner, book_course):
        book, course = book_course
        response = await client.post(
            f"/api/course-progress/{course.id}/child/{learner.id}/book/{book.id}/complete",
            json={**BOOK_SUBMISSION, "progress": 150}
        )
        assert response.status_code == 422


class TestRecordingsApi:

    async def test_review_is_admin_only(self, client, seed, learner, as_child):
        assignment = await seed.audio_assignment()
        await client.post(
            f"/api/audio-assignments/{assignment.id}/submit/{learner.id}",
            json={"recording_url": "s3://recordings/a.m4a"}
        )

        response = await client.post(
            f"/api/audio-assignments/{assignment.id}/review/{learner.id}", json={"decision": "approved"}
        )
        assert response.status_code == 403

    async def test_submit_then_approve(self, client, seed, learner):
        assignment = await seed.audio_assignment(stars_awarded=15)
        submitted = await client.post(
            f"/api/audio-assignments/{assignment.id}/submit/{learner.id}",
            json={"recording_url": "s3://recordings/a.m4a", "time_spent": 40}
        )
        assert submitted.status_code == 200
        assert submitted.json()["status"] == "submitted"

        pending = await client.get("/api/audio-assignments/submissions")
        assert pending.json()["pagination"]["total"] == 1

        reviewed = await client.post(
            f"/api/audio-assignments/{assignment.id}/review/{learner.id}",
            json={"decision": "approved", "feedback": "Clear and loud"}
        )
        assert reviewed.status_code == 200
        body = reviewed.json()
        assert body["submission"]["status"] == "approved"
        assert body["result"]["stars_granted"] == 15

    async def test_invalid_decision(self, client, seed, learner):
        assignment = await seed.audio_assignment()
        await client.post(
            f"/api/audio-assignments/{assignment.id}/submit/{learner.id}",
            json={"recording_url": "s3://recordings/a.m4a"}
        )

        response = await client.post(
            f"/api/audio-assignments/{assignment.id}/review/{learner.id}", json={"decision": "maybe"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_decision"


class TestGamificationApi:

    async def test_new_learner_stats(self, client, learner):
        response = await client.get(f"/api/gamification/stats/{learner.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["total_stars"] == 0
        assert body["level"] == "New Learner"
        assert body["next_level"] == "First Star"
        assert body["stars_to_next_level"] == 1

    async def test_badge_catalog_listing(self, client, badge_catalog):
        response = await client.get("/api/gamification/badges", params={"category": "streak"})

        assert response.status_code == 200
        assert [badge["name"] for badge in response.json()] == ["Week Streak", "Month Streak", "Streak Master"]

    async def test_video_watch_then_notifications(self, client, seed, learner, badge_catalog, no_dedup_window):
        video = await seed.video(required_watch_count=1, stars_awarded=10)

        response = await client.post(f"/api/videos/{video.id}/watch/{learner.id}", json={"completion_percentage": 95})
        assert response.json()["outcome"] == "rewarded"

        update = await client.post(f"/api/gamification/badges/{learner.id}/update")
        assert update.json()["success"] is True
        assert update.json()["new_badges"] == []

        notifications = await client.get(f"/api/gamification/notifications/{learner.id}", params={"unread_only": True})
        types = [notification["type"] for notification in notifications.json()]
        assert "stars_earned" in types
        assert "badge_earned" in types

        marked = await client.post(f"/api/gamification/notifications/{learner.id}/read")
        assert marked.json() == {"success": True, "updated": len(types)}

        unread = await client.get(f"/api/gamification/notifications/{learner.id}", params={"unread_only": True})
        assert unread.json() == []
