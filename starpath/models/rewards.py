"""Reward ledger entries."""

from datetime import datetime
import uuid

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint, Index, JSON, Uuid, CheckConstraint

from starpath.core.database import Base


class RewardGrant(Base):
    """One immutable star grant. At most one per (learner, source type, content)."""
    __tablename__ = "reward_grants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    learner_id = Column(Uuid, ForeignKey("learners.id"), nullable=False, index=True)
    stars = Column(Integer, nullable=False)
    source_type = Column(String, nullable=False)
    content_id = Column(Uuid, nullable=False)
    content_tag = Column(String)
    source_metadata = Column(JSON, default=dict)
    description = Column(String(200))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("learner_id", "source_type", "content_id", name="uq_reward_grant_source"),
        CheckConstraint("stars >= 1", name="ck_reward_grant_stars_positive"),
        Index("ix_reward_grant_learner_created", "learner_id", "created_at"),
        Index("ix_reward_grant_source", "source_type", "content_id"),
    )
