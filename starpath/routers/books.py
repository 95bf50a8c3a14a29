"""Book reading status endpoints."""

from typing import Any, Dict, List
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.completions.book import BookCompletionHandler
from starpath.core.database import get_db
from starpath.core.dependencies import ensure_learner_access, get_current_user

router = APIRouter()


@router.get("/child/{learner_id}")
async def get_child_book_readings(
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> List[Dict[str, Any]]:
    """Reading counts for every book the learner has read, most recent first."""
    await ensure_learner_access(db, current_user, learner_id)
    return await BookCompletionHandler(db).get_child_book_readings(learner_id)


@router.get("/{book_id}/status/{learner_id}")
async def get_book_reading_status(
    book_id: uuid.UUID,
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    await ensure_learner_access(db, current_user, learner_id)
    return await BookCompletionHandler(db).get_book_reading_status(learner_id, book_id)
