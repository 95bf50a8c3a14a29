"""Gamification endpoints."""

from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
import structlog

from starpath.core.database import get_db
from starpath.core.dependencies import ensure_learner_access, get_cache, get_current_user
from starpath.gamification.badge_catalog import load_badge_catalog
from starpath.gamification.badge_engine import BadgeEngine
from starpath.gamification.levels import level_summary
from starpath.gamification.reward_ledger import RewardLedger
from starpath.gamification.stats_store import StatsStore
from starpath.models.stats import LearnerBadge
from starpath.schemas.gamification import (
    BadgeResponse, BadgeUpdateResponse, LearnerBadgeResponse, LearnerStatsResponse, RewardGrantResponse
)

logger = structlog.get_logger()
router = APIRouter()


@router.get("/stats/{learner_id}", response_model=LearnerStatsResponse)
async def get_learner_stats(
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get stars, streaks, counters and level for a learner."""
    await ensure_learner_access(db, current_user, learner_id)

    stats = await StatsStore(db).get_or_create(learner_id)
    await db.commit()

    response = LearnerStatsResponse.model_validate(stats)
    return response.model_copy(update=level_summary(stats.total_stars))


@router.get("/stars/{learner_id}/history", response_model=List[RewardGrantResponse])
async def get_star_history(
    learner_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get star grants for a learner, newest first."""
    await ensure_learner_access(db, current_user, learner_id)
    return await RewardLedger(db).history(learner_id, limit=limit, offset=offset)


@router.get("/badges", response_model=List[BadgeResponse])
async def get_all_badges(
    category: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Get all active badges."""
    catalog = await load_badge_catalog(db, cache)
    badges = catalog.select(categories=[category]) if category else list(catalog)
    return sorted(badges, key=lambda badge: (badge.category, badge.display_order))


@router.get("/badges/{learner_id}", response_model=List[LearnerBadgeResponse])
async def get_learner_badges(
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get badges earned by a learner."""
    await ensure_learner_access(db, current_user, learner_id)

    result = await db.execute(
        select(LearnerBadge)
        .options(selectinload(LearnerBadge.badge))
        .where(LearnerBadge.learner_id == learner_id)
        .order_by(LearnerBadge.earned_at.desc())
    )
    return result.scalars().all()


@router.post("/badges/{learner_id}/update", response_model=BadgeUpdateResponse)
async def update_learner_badges(
    learner_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache=Depends(get_cache)
):
    """Reconcile a learner's badges with current stats."""
    await ensure_learner_access(db, current_user, learner_id)
    result = await BadgeEngine(db, cache).update_badges(learner_id)
    return BadgeUpdateResponse(
        success=result.success,
        new_badges=result.new_badges,
        total_badges=result.total_badges,
        error=result.error
    )
