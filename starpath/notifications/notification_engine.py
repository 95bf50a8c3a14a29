"""In-app notifications for reward events."""

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.models.notifications import Notification, NotificationType

logger = structlog.get_logger()

TEMPLATES = {
    NotificationType.STARS_EARNED.value: {
        "title": "Stars Earned!",
        "message": "Great job! You earned {stars} stars for {content_title}."
    },
    NotificationType.BADGE_EARNED.value: {
        "title": "New Badge Earned!",
        "message": "Congratulations! You've earned the '{badge_name}' badge!"
    },
    NotificationType.COURSE_COMPLETED.value: {
        "title": "Course Completed!",
        "message": "Amazing! You finished '{course_title}'."
    },
}


class NotificationEngine:
    """Engine for storing learner notifications.

    Sending is best-effort: failures are logged and reported as False, and
    never raised into the reward path that triggered them.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def send_progress_update(
        self,
        learner_id: uuid.UUID,
        event_type: str,
        event_data: Dict[str, Any]
    ) -> bool:
        """Store a notification generated from the event's template."""
        try:
            notification = self._generate_notification(event_type, event_data)
            self.db.add(Notification(
                learner_id=learner_id,
                type=event_type,
                title=notification["title"],
                message=notification["message"],
                data=_json_safe(event_data),
                created_at=datetime.utcnow()
            ))
            await self.db.commit()

            logger.info("Notification sent", learner_id=str(learner_id), type=event_type)
            return True

        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Failed to send notification",
                learner_id=str(learner_id),
                event_type=event_type,
                error=str(e),
                exc_info=True
            )
            return False

    async def notify_stars_earned(self, learner_id: uuid.UUID, stars: int, content_title: str, **data) -> bool:
        return await self.send_progress_update(
            learner_id,
            NotificationType.STARS_EARNED.value,
            {"stars": stars, "content_title": content_title, **data}
        )

    async def notify_badges_earned(self, learner_id: uuid.UUID, badges: List[Any]) -> int:
        """One notification per badge. Returns how many were stored."""
        sent = 0
        for badge in badges:
            name = badge["name"] if isinstance(badge, dict) else badge.name
            badge_id = badge["id"] if isinstance(badge, dict) else badge.id
            if await self.send_progress_update(
                learner_id,
                NotificationType.BADGE_EARNED.value,
                {"badge_name": name, "badge_id": badge_id}
            ):
                sent += 1
        return sent

    async def notify_course_completed(self, learner_id: uuid.UUID, course_id: uuid.UUID, course_title: str) -> bool:
        return await self.send_progress_update(
            learner_id,
            NotificationType.COURSE_COMPLETED.value,
            {"course_id": course_id, "course_title": course_title}
        )

    async def list_notifications(
        self,
        learner_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50
    ) -> List[Notification]:
        query = select(Notification).where(Notification.learner_id == learner_id)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        result = await self.db.execute(query.order_by(Notification.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    async def mark_read(self, learner_id: uuid.UUID, notification_ids: Optional[List[uuid.UUID]] = None) -> int:
        """Mark the given (or all) notifications read. Returns the number updated."""
        stmt = update(Notification).where(
            Notification.learner_id == learner_id,
            Notification.is_read == False  # noqa: E712
        )
        if notification_ids:
            stmt = stmt.where(Notification.id.in_(notification_ids))

        result = await self.db.execute(stmt.values(is_read=True).execution_options(synchronize_session=False))
        await self.db.commit()
        return result.rowcount or 0

    def _generate_notification(self, event_type: str, event_data: Dict[str, Any]) -> Dict[str, str]:
        template = TEMPLATES.get(event_type, {
            "title": "Progress Update",
            "message": "You've made progress in your learning journey!"
        })

        message = template["message"]
        for key, value in event_data.items():
            message = message.replace(f"{{{key}}}", str(value))

        return {"title": template["title"], "message": message}


def _json_safe(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: str(value) if isinstance(value, uuid.UUID) else value for key, value in data.items()}
