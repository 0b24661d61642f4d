"""Database models for the user directory."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from lms_core.utils.dates import ensure_utc_aware, utcnow


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

USERS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.users (
    id UUID,
    email TEXT,
    name TEXT,
    role TEXT,
    enrolled_courses SET<UUID>,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY (id)
)
"""

USERS_TABLES_CQL = [
    USERS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


class User:
    """User entity as seen by the enrollment engine.

    Identity fields are owned by the auth service; this module only
    maintains enrolled_courses.
    """

    def __init__(
        self,
        id: UUID | None = None,
        email: str = "",
        name: str = "",
        role: str = "student",
        enrolled_courses: set[UUID] | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.email = email
        self.name = name
        self.role = role
        self.enrolled_courses = set(enrolled_courses or ())
        self.created_at = ensure_utc_aware(created_at) or utcnow()
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any) -> "User":
        """Create User instance from Cassandra row."""
        return cls(
            id=row.id,
            email=row.email or "",
            name=row.name or "",
            role=row.role or "student",
            enrolled_courses=row.enrolled_courses,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def __repr__(self) -> str:
        return f"<User {self.email} ({len(self.enrolled_courses)} courses)>"
