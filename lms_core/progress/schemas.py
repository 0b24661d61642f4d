"""Pydantic schemas for student progress tracking."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import LectureProgress, ProgressSnapshot


# ==============================================================================
# Lecture Progress Schemas
# ==============================================================================


class LectureProgressResponse(BaseModel):
    """Lecture progress entry."""

    model_config = ConfigDict(from_attributes=True)

    lecture_id: UUID
    is_completed: bool
    watch_time: datetime | None = None
    last_watched: datetime | None = None

    @classmethod
    def from_entity(cls, entity: LectureProgress) -> "LectureProgressResponse":
        """Create response from entity."""
        return cls(
            lecture_id=entity.lecture_id,
            is_completed=entity.is_completed,
            watch_time=entity.watch_time,
            last_watched=entity.last_watched,
        )


# ==============================================================================
# Course Progress Schemas
# ==============================================================================


class CourseProgressResponse(BaseModel):
    """Full course progress with the lecture map."""

    user_id: UUID
    course_id: UUID
    lecture_progress: dict[UUID, LectureProgressResponse] = Field(
        default_factory=dict, description="Entries keyed by lecture id"
    )
    total_lectures: int = 0
    completed_lectures: int = 0
    completion_percentage: int = Field(0, ge=0, le=100)
    is_completed: bool = False
    updated_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: ProgressSnapshot) -> "CourseProgressResponse":
        """Create response from a progress snapshot."""
        return cls(
            user_id=snapshot.user_id,
            course_id=snapshot.course_id,
            lecture_progress={
                lecture_id: LectureProgressResponse.from_entity(entry)
                for lecture_id, entry in snapshot.lectures.items()
            },
            total_lectures=snapshot.total_lectures,
            completed_lectures=snapshot.completed_lectures,
            completion_percentage=snapshot.completion_percentage,
            is_completed=snapshot.is_completed,
            updated_at=snapshot.updated_at,
        )


class CourseProgressSummary(BaseModel):
    """Compact progress for course listings."""

    course_id: UUID
    completion_percentage: int = 0
    completed_lectures: int = 0
    total_lectures: int = 0
    is_completed: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: ProgressSnapshot) -> "CourseProgressSummary":
        """Create summary from a progress snapshot."""
        return cls(
            course_id=snapshot.course_id,
            completion_percentage=snapshot.completion_percentage,
            completed_lectures=snapshot.completed_lectures,
            total_lectures=snapshot.total_lectures,
            is_completed=snapshot.is_completed,
        )


class ProgressListResponse(BaseModel):
    """Progress of every enrolled course."""

    items: list[CourseProgressSummary]
    total: int
