"""Data models for Starpath Progress Service."""

from starpath.models.catalog import (
    Learner, Course, CourseContent, Book, Video, ExploreVideo, Activity,
    AudioAssignment, Chant, ContentType, ExploreVideoType, course_prerequisites
)
from starpath.models.stats import LearnerStats, Badge, LearnerBadge, BadgeCategory, CriteriaType, BadgeRarity
from starpath.models.rewards import RewardGrant
from starpath.models.progress import CourseProgress, ContentProgressItem, CourseStatus, ItemStatus
from starpath.models.completions import CompletionRecord, ContentSubmission, SubmissionStatus
from starpath.models.notifications import Notification, NotificationType

__all__ = [
    "Learner",
    "Course",
    "CourseContent",
    "Book",
    "Video",
    "ExploreVideo",
    "Activity",
    "AudioAssignment",
    "Chant",
    "ContentType",
    "ExploreVideoType",
    "course_prerequisites",
    "LearnerStats",
    "Badge",
    "LearnerBadge",
    "BadgeCategory",
    "CriteriaType",
    "BadgeRarity",
    "RewardGrant",
    "CourseProgress",
    "ContentProgressItem",
    "CourseStatus",
    "ItemStatus",
    "CompletionRecord",
    "ContentSubmission",
    "SubmissionStatus",
    "Notification",
    "NotificationType",
]
