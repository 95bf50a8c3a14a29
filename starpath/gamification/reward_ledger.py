"""Append-only star ledger. Also the idempotency source of truth for grants."""

from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from starpath.core.database import insert_if_absent
from starpath.models.rewards import RewardGrant

logger = structlog.get_logger()

MAX_DESCRIPTION_LENGTH = 200


class RewardLedger:
    """Look up and append star grants."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_grant(
        self,
        learner_id: uuid.UUID,
        source_type: str,
        content_id: uuid.UUID
    ) -> Optional[RewardGrant]:
        """Return the grant for this source if one exists."""
        result = await self.db.execute(
            select(RewardGrant).where(
                RewardGrant.learner_id == learner_id,
                RewardGrant.source_type == source_type,
                RewardGrant.content_id == content_id
            )
        )
        return result.scalar_one_or_none()

    async def grant(
        self,
        learner_id: uuid.UUID,
        stars: int,
        source_type: str,
        content_id: uuid.UUID,
        content_tag: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None
    ) -> Optional[RewardGrant]:
        """Append a grant. Returns None when this source was already rewarded."""
        if stars < 1:
            raise ValueError("A reward grant must carry at least one star")

        inserted = await insert_if_absent(
            self.db,
            RewardGrant,
            {
                "id": uuid.uuid4(),
                "learner_id": learner_id,
                "stars": stars,
                "source_type": source_type,
                "content_id": content_id,
                "content_tag": content_tag,
                "source_metadata": metadata or {},
                "description": (description or "")[:MAX_DESCRIPTION_LENGTH] or None,
                "created_at": datetime.utcnow(),
            },
            ["learner_id", "source_type", "content_id"]
        )

        if not inserted:
            logger.info(
                "Reward already granted",
                learner_id=str(learner_id),
                source_type=source_type,
                content_id=str(content_id)
            )
            return None

        grant = await self.find_grant(learner_id, source_type, content_id)
        logger.info(
            "Reward granted",
            learner_id=str(learner_id),
            stars=stars,
            source_type=source_type,
            content_id=str(content_id)
        )
        return grant

    async def stars_from_source(
        self,
        learner_id: uuid.UUID,
        source_type: str,
        metadata_filter: Optional[Dict[str, Any]] = None
    ) -> int:
        """Sum of stars granted from one source type, optionally filtered on metadata values."""
        if not metadata_filter:
            result = await self.db.execute(
                select(func.coalesce(func.sum(RewardGrant.stars), 0)).where(
                    RewardGrant.learner_id == learner_id,
                    RewardGrant.source_type == source_type
                )
            )
            return int(result.scalar() or 0)

        result = await self.db.execute(
            select(RewardGrant.stars, RewardGrant.source_metadata).where(
                RewardGrant.learner_id == learner_id,
                RewardGrant.source_type == source_type
            )
        )
        total = 0
        for stars, metadata in result.all():
            metadata = metadata or {}
            if all(metadata.get(key) == value for key, value in metadata_filter.items()):
                total += stars
        return total

    async def history(
        self,
        learner_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0
    ) -> List[RewardGrant]:
        result = await self.db.execute(
            select(RewardGrant)
            .where(RewardGrant.learner_id == learner_id)
            .order_by(RewardGrant.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())
