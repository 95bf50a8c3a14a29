"""Notification endpoints for progress updates."""

from typing import Any, Dict, List, Optional
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from starpath.core.database import get_db
from starpath.core.dependencies import ensure_learner_access, get_current_user
from starpath.notifications.notification_engine import NotificationEngine
from starpath.schemas.gamification import MarkReadRequest, NotificationResponse

logger = structlog.get_logger()
router = APIRouter()


@router.get("/{learner_id}", response_model=List[NotificationResponse])
async def get_notifications(
    learner_id: uuid.UUID,
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get notifications for a learner, newest first."""
    await ensure_learner_access(db, current_user, learner_id)
    return await NotificationEngine(db).list_notifications(learner_id, unread_only=unread_only, limit=limit)


@router.post("/{learner_id}/read")
async def mark_notifications_read(
    learner_id: uuid.UUID,
    request: Optional[MarkReadRequest] = None,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """Mark the given notifications read, or all of them when none are given."""
    await ensure_learner_access(db, current_user, learner_id)
    ids = request.notification_ids if request else None
    updated = await NotificationEngine(db).mark_read(learner_id, ids)

    logger.info("Notifications marked read", learner_id=str(learner_id), updated=updated)
    return {"success": True, "updated": updated}
