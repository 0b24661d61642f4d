# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""User directory service: enrolled_courses back-reference maintenance."""

from typing import TYPE_CHECKING
from uuid import UUID

from lms_core.core.logging import get_logger
from lms_core.utils.dates import utcnow

from .models import User


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


class UserDirectory:
    """Reads users and maintains their enrolled_courses set."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        self._get_user_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.users WHERE id = ?"
        )
        # Set union: applying the same course twice leaves one element.
        # No IF EXISTS: accounts live in the identity service and this row is
        # the engine's projection, created by the user's first enrollment.
        self._add_enrolled_course = self.session.prepare(f"""
            UPDATE {self.keyspace}.users
            SET enrolled_courses = enrolled_courses + ?, updated_at = ?
            WHERE id = ?
        """)

    async def get_user(self, user_id: UUID) -> User | None:
        """Get user by ID."""
        result = await self.session.aexecute(self._get_user_by_id, [user_id])
        row = result.one()
        return User.from_row(row) if row else None

    async def get_enrolled_courses(self, user_id: UUID) -> set[UUID]:
        """Get the enrolled_courses back-reference set (empty if unknown)."""
        user = await self.get_user(user_id)
        return user.enrolled_courses if user else set()

    async def add_enrolled_course(self, user_id: UUID, course_id: UUID) -> None:
        """Add a course to enrolled_courses (creates the user row if absent)."""
        await self.session.aexecute(
            self._add_enrolled_course,
            [{course_id}, utcnow(), user_id],
        )
        logger.debug(
            "enrolled_course_added",
            user_id=str(user_id),
            course_id=str(course_id),
        )
