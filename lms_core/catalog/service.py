# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Course catalog service.

Read-side collaborator of the enrollment engine:
- lecture sequence and price lookups (always read fresh, never cached)
- enrolled_students back-reference maintenance
"""

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from lms_core.core.exceptions import NotFoundError
from lms_core.core.logging import get_logger
from lms_core.utils.dates import utcnow

from .models import Course


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


class CourseCatalog:
    """Lookups against the courses table."""

    def __init__(self, session: "Session", keyspace: str):
        """Initialize with Cassandra session."""
        self.session = session
        self.keyspace = keyspace
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements."""
        self._get_course_by_id = self.session.prepare(
            f"SELECT * FROM {self.keyspace}.courses WHERE id = ?"
        )
        # IF EXISTS: a late back-reference write must not resurrect a deleted course
        self._add_enrolled_student = self.session.prepare(f"""
            UPDATE {self.keyspace}.courses
            SET enrolled_students = enrolled_students + ?, updated_at = ?
            WHERE id = ?
            IF EXISTS
        """)

    async def get_course(self, course_id: UUID) -> Course | None:
        """Get course by ID, or None when it does not exist."""
        result = await self.session.aexecute(self._get_course_by_id, [course_id])
        row = result.one()
        return Course.from_row(row) if row else None

    async def require_course(self, course_id: UUID) -> Course:
        """Get course by ID.

        Raises:
            NotFoundError: If the course does not exist
        """
        course = await self.get_course(course_id)
        if course is None:
            raise NotFoundError("Course not found")
        return course

    async def course_exists(self, course_id: UUID) -> bool:
        """Check whether a course exists."""
        return await self.get_course(course_id) is not None

    async def get_lecture_ids(self, course_id: UUID) -> list[UUID]:
        """Get the ordered lecture sequence of a course.

        Raises:
            NotFoundError: If the course does not exist
        """
        course = await self.require_course(course_id)
        return course.lecture_ids

    async def get_price(self, course_id: UUID) -> Decimal:
        """Get the current price of a course.

        Raises:
            NotFoundError: If the course does not exist
        """
        course = await self.require_course(course_id)
        return course.price

    async def add_enrolled_student(self, course_id: UUID, user_id: UUID) -> bool:
        """Add a user to the course's enrolled_students set.

        Set-union semantics: adding an already present user is a no-op.

        Returns:
            False when the course no longer exists (nothing written)
        """
        result = await self.session.aexecute(
            self._add_enrolled_student,
            [{user_id}, utcnow(), course_id],
        )
        if not result.was_applied:
            logger.warning(
                "enrolled_student_course_missing",
                course_id=str(course_id),
                user_id=str(user_id),
            )
            return False
        return True
