"""Domain errors raised by the progression and reward engine."""

from typing import Any, Dict, List, Optional


class ProgressionError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "progression_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(ProgressionError):
    status_code = 404
    code = "not_found"
    resource = "Resource"

    def __init__(self, resource_id: Any = None, message: Optional[str] = None):
        super().__init__(
            message or f"{self.resource} not found",
            {"id": str(resource_id)} if resource_id is not None else None,
        )
        self.resource_id = resource_id


class LearnerNotFound(NotFoundError):
    resource = "Learner"


class CourseNotFound(NotFoundError):
    resource = "Course"


class ContentNotFound(NotFoundError):
    resource = "Content"

    def __init__(self, content_id: Any = None, course_id: Any = None):
        super().__init__(content_id, "Content not found in course")
        if course_id is not None:
            self.details["course_id"] = str(course_id)


class BookNotFound(NotFoundError):
    resource = "Book"


class VideoNotFound(NotFoundError):
    resource = "Video"


class ExploreVideoNotFound(NotFoundError):
    resource = "Explore content"


class ActivityNotFound(NotFoundError):
    resource = "Activity"


class AudioAssignmentNotFound(NotFoundError):
    resource = "Audio assignment"


class ChantNotFound(NotFoundError):
    resource = "Chant"


class SubmissionNotFound(NotFoundError):
    resource = "Submission"


class LockedError(ProgressionError):
    """Content is not reachable yet. An expected outcome, not a fault."""

    status_code = 403
    code = "locked"


class CourseLocked(LockedError):
    code = "course_locked"

    def __init__(self, missing_prerequisites: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            "Course is locked. Complete prerequisites first.",
            {"missing_prerequisites": missing_prerequisites or []},
        )
        self.missing_prerequisites = missing_prerequisites or []


class StepLocked(LockedError):
    code = "step_locked"

    def __init__(
        self,
        step: int,
        reason: Optional[str] = None,
        missing_prerequisites: Optional[List[Dict[str, Any]]] = None
    ):
        details: Dict[str, Any] = {"step": step}
        if missing_prerequisites is not None:
            details["missing_prerequisites"] = missing_prerequisites
        super().__init__(reason or "Step is locked. Complete previous steps first.", details)
        self.step = step


class InvalidSubmission(ProgressionError):
    status_code = 400
    code = "invalid_submission"


class InvalidDecision(InvalidSubmission):
    code = "invalid_decision"

    def __init__(self, decision: str):
        super().__init__(
            'Invalid decision. Must be "approved" or "rejected"',
            {"decision": decision},
        )


class ConcurrentUpdateError(ProgressionError):
    """An optimistic update kept losing to concurrent writers."""

    status_code = 409
    code = "concurrent_update"
