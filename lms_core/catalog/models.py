"""Database models for the course catalog.

The catalog is read-mostly from this service's point of view: course
metadata is authored elsewhere. Two columns matter to the enrollment
engine:

- lecture_ids: authoritative, ordered lecture sequence (drives progress)
- enrolled_students: denormalized back-reference set (fast listings only)
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from lms_core.utils.dates import ensure_utc_aware, utcnow


class CourseStatus(str, Enum):
    """Course publication status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

COURSES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.courses (
    id UUID,
    title TEXT,
    description TEXT,
    thumbnail_url TEXT,
    status TEXT,
    creator_id UUID,
    price DECIMAL,
    currency TEXT,
    lecture_ids LIST<UUID>,
    enrolled_students SET<UUID>,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY (id)
)
"""

CATALOG_TABLES_CQL = [
    COURSES_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class Course:
    """Course entity.

    Attributes:
        id: Course UUID
        title: Course title
        description: Course description
        thumbnail_url: Cover image URL
        status: Publication status
        creator_id: Instructor who owns the course
        price: Course price (0 = free)
        currency: ISO currency code of the price
        lecture_ids: Ordered lecture sequence
        enrolled_students: Back-reference set of enrolled user IDs
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    def __init__(
        self,
        id: UUID | None = None,
        title: str = "",
        description: str | None = None,
        thumbnail_url: str | None = None,
        status: str = CourseStatus.DRAFT.value,
        creator_id: UUID | None = None,
        price: Decimal | None = None,
        currency: str | None = None,
        lecture_ids: list[UUID] | None = None,
        enrolled_students: set[UUID] | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.title = title
        self.description = description
        self.thumbnail_url = thumbnail_url
        self.status = status
        self.creator_id = creator_id
        self.price = price if price is not None else Decimal(0)
        self.currency = currency
        self.lecture_ids = list(lecture_ids or [])
        self.enrolled_students = set(enrolled_students or ())
        self.created_at = ensure_utc_aware(created_at) or utcnow()
        self.updated_at = ensure_utc_aware(updated_at)

    @property
    def is_free(self) -> bool:
        """A course with a zero price can be enrolled in without payment."""
        return self.price == 0

    @property
    def total_lectures(self) -> int:
        """Number of lectures currently in the course."""
        return len(self.lecture_ids)

    @classmethod
    def from_row(cls, row: Any) -> "Course":
        """Create Course instance from Cassandra row."""
        return cls(
            id=row.id,
            title=row.title or "",
            description=row.description,
            thumbnail_url=row.thumbnail_url,
            status=row.status or CourseStatus.DRAFT.value,
            creator_id=row.creator_id,
            price=row.price,
            currency=row.currency,
            lecture_ids=row.lecture_ids,
            enrolled_students=row.enrolled_students,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "thumbnail_url": self.thumbnail_url,
            "status": self.status,
            "creator_id": self.creator_id,
            "price": self.price,
            "currency": self.currency,
            "lecture_ids": self.lecture_ids,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Course {self.title} ({self.total_lectures} lectures)>"
