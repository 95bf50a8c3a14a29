"""Stats, ledger and badge schemas."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class LearnerStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    learner_id: uuid.UUID
    total_stars: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    total_badges: int = 0
    activities_completed: int = 0
    videos_watched: int = 0
    books_read: int = 0
    audio_assignments_completed: int = 0
    lessons_completed: int = 0
    journeys_completed: int = 0
    level: Optional[str] = None
    next_level: Optional[str] = None
    stars_to_next_level: int = 0


class RewardGrantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    stars: int
    source_type: str
    content_id: uuid.UUID
    content_tag: Optional[str] = None
    source_metadata: Dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None
    created_at: datetime


class BadgeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    category: str
    criteria_type: str
    criteria_value: int
    criteria_metadata: Dict[str, Any] = Field(default_factory=dict)
    rarity: str
    display_order: int = 0


class LearnerBadgeResponse(BaseModel):
    badge: BadgeResponse
    earned_at: datetime


class BadgeUpdateResponse(BaseModel):
    success: bool
    new_badges: List[Dict[str, Any]] = Field(default_factory=list)
    total_badges: int = 0
    error: Optional[str] = None


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    created_at: datetime


class MarkReadRequest(BaseModel):
    notification_ids: Optional[List[uuid.UUID]] = None
