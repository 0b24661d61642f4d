"""Database models for student progress tracking.

Cassandra table definitions for:
- Lecture progress: one row per (user, course, lecture)
- Course progress: versioned summary per (user, course)

The lecture id is a clustering key, so a second entry for the same lecture
cannot exist: writing it again overwrites the row in place.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from lms_core.core.exceptions import InvariantViolationError
from lms_core.utils.dates import ensure_utc_aware, utcnow


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Partition key: (user_id, course_id) to read a whole course's progress at once
# Clustering: lecture_id makes the lecture map keyed, never appended
LECTURE_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.lecture_progress (
    user_id UUID,
    course_id UUID,
    lecture_id UUID,
    is_completed BOOLEAN,
    watch_time TIMESTAMP,
    last_watched TIMESTAMP,
    PRIMARY KEY ((user_id, course_id), lecture_id)
) WITH CLUSTERING ORDER BY (lecture_id ASC)
"""

# Derived summary, written with IF version = ? (optimistic concurrency)
COURSE_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.course_progress (
    user_id UUID,
    course_id UUID,
    completion_percentage INT,
    completed_lectures INT,
    total_lectures INT,
    is_completed BOOLEAN,
    version INT,
    updated_at TIMESTAMP,
    PRIMARY KEY ((user_id, course_id))
)
"""

# All CQL statements for table setup
PROGRESS_TABLES_CQL = [
    LECTURE_PROGRESS_TABLE_CQL,
    COURSE_PROGRESS_TABLE_CQL,
]


# ==============================================================================
# Helper Functions
# ==============================================================================


def completion_percentage(completed: int, total: int) -> int:
    """Percentage of completed lectures, rounded half up (0 for empty courses)."""
    if total <= 0:
        return 0
    ratio = Decimal(100 * completed) / Decimal(total)
    return int(ratio.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ==============================================================================
# Entity Classes
# ==============================================================================


class LectureProgress:
    """Completion record of one lecture for one user.

    Attributes:
        user_id: User UUID
        course_id: Course UUID (for partition key)
        lecture_id: Lecture UUID (clustering key)
        is_completed: Whether the lecture has been watched to completion
        watch_time: First time the lecture was recorded as watched
        last_watched: Most recent watch event
    """

    def __init__(
        self,
        user_id: UUID,
        course_id: UUID,
        lecture_id: UUID,
        is_completed: bool = False,
        watch_time: datetime | None = None,
        last_watched: datetime | None = None,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.lecture_id = lecture_id
        self.is_completed = is_completed
        self.watch_time = ensure_utc_aware(watch_time)
        self.last_watched = ensure_utc_aware(last_watched) or utcnow()

    @classmethod
    def from_row(cls, row: Any) -> "LectureProgress":
        """Create LectureProgress instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            lecture_id=row.lecture_id,
            is_completed=bool(row.is_completed),
            watch_time=row.watch_time,
            last_watched=row.last_watched,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "lecture_id": self.lecture_id,
            "is_completed": self.is_completed,
            "watch_time": self.watch_time,
            "last_watched": self.last_watched,
        }

    def __repr__(self) -> str:
        state = "completed" if self.is_completed else "open"
        return f"<LectureProgress user={self.user_id} lecture={self.lecture_id} {state}>"


@dataclass
class ProgressSnapshot:
    """Progress of one user in one course, computed against the catalog."""

    user_id: UUID
    course_id: UUID
    lectures: dict[UUID, LectureProgress] = field(default_factory=dict)
    total_lectures: int = 0
    completed_lectures: int = 0
    completion_percentage: int = 0
    is_completed: bool = False
    version: int = 0
    updated_at: datetime | None = None

    @property
    def is_started(self) -> bool:
        """Whether any lecture event has been recorded."""
        return bool(self.lectures)


def build_snapshot(
    user_id: UUID,
    course_id: UUID,
    entries: list[LectureProgress],
    lecture_ids: list[UUID],
) -> ProgressSnapshot:
    """Build a snapshot from lecture rows and the course's current lectures.

    Only completed entries for lectures still in the course are counted.

    Raises:
        InvariantViolationError: If two entries share a lecture id
    """
    lectures: dict[UUID, LectureProgress] = {}
    for entry in entries:
        if entry.lecture_id in lectures:
            raise InvariantViolationError(
                f"Duplicate progress entry for lecture {entry.lecture_id}"
            )
        lectures[entry.lecture_id] = entry

    current = set(lecture_ids)
    total = len(current)
    completed = sum(
        1
        for lecture_id, entry in lectures.items()
        if entry.is_completed and lecture_id in current
    )

    return ProgressSnapshot(
        user_id=user_id,
        course_id=course_id,
        lectures=lectures,
        total_lectures=total,
        completed_lectures=completed,
        completion_percentage=completion_percentage(completed, total),
        is_completed=total > 0 and completed == total,
    )
