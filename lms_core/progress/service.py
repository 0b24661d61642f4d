# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Student progress tracking service layer.

Business logic for:
- Recording watched lectures (keyed upsert, one row per lecture)
- Completion percentage against the catalog's current lecture count
- Resetting progress for re-taking a course
- Versioned course summary with bounded optimistic retries
"""

from typing import TYPE_CHECKING
from uuid import UUID

from lms_core.catalog.service import CourseCatalog
from lms_core.core.exceptions import NotFoundError, TransientWriteError
from lms_core.core.logging import get_logger
from lms_core.utils.dates import utcnow

from .models import LectureProgress, ProgressSnapshot, build_snapshot


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


# ==============================================================================
# Progress Service
# ==============================================================================


class ProgressService:
    """Service for student progress tracking."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        catalog: CourseCatalog,
        max_write_retries: int = 5,
    ):
        """Initialize with Cassandra session and the course catalog."""
        self.session = session
        self.keyspace = keyspace
        self.catalog = catalog
        self.max_write_retries = max_write_retries
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient execution."""
        # Lecture progress
        self._get_lecture_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lecture_progress
            WHERE user_id = ? AND course_id = ? AND lecture_id = ?
        """)

        self._get_course_lecture_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.lecture_progress
            WHERE user_id = ? AND course_id = ?
        """)

        self._upsert_lecture_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.lecture_progress
            (user_id, course_id, lecture_id, is_completed, watch_time, last_watched)
            VALUES (?, ?, ?, ?, ?, ?)
        """)

        self._delete_course_lecture_progress = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.lecture_progress
            WHERE user_id = ? AND course_id = ?
        """)

        # Course summary
        self._get_course_progress = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.course_progress
            WHERE user_id = ? AND course_id = ?
        """)

        self._insert_course_progress = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.course_progress
            (user_id, course_id, completion_percentage, completed_lectures,
             total_lectures, is_completed, version, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._update_course_progress = self.session.prepare(f"""
            UPDATE {self.keyspace}.course_progress
            SET completion_percentage = ?, completed_lectures = ?,
                total_lectures = ?, is_completed = ?, version = ?, updated_at = ?
            WHERE user_id = ? AND course_id = ?
            IF version = ?
        """)

    # ==========================================================================
    # Lecture Progress Operations
    # ==========================================================================

    async def record_lecture_watched(
        self,
        user_id: UUID,
        course_id: UUID,
        lecture_id: UUID,
    ) -> ProgressSnapshot:
        """Record a lecture as watched and recompute course completion.

        Calling it again for the same lecture keeps a single entry: the
        completion flag stays set, last_watched is refreshed and the first
        watch_time is preserved.

        Args:
            user_id: User UUID
            course_id: Course UUID
            lecture_id: Lecture UUID (must belong to the course)

        Returns:
            Updated progress snapshot

        Raises:
            NotFoundError: If the course or the lecture does not exist
            TransientWriteError: If the summary kept conflicting
        """
        lecture_ids = await self.catalog.get_lecture_ids(course_id)
        if lecture_id not in lecture_ids:
            raise NotFoundError("Lecture not found in this course")

        await self._write_lecture(user_id, course_id, lecture_id)

        snapshot = await self._recompute(user_id, course_id)

        logger.info(
            "lecture_progress_recorded",
            user_id=str(user_id),
            course_id=str(course_id),
            lecture_id=str(lecture_id),
            completion_percentage=snapshot.completion_percentage,
        )

        return snapshot

    async def mark_course_completed(
        self,
        user_id: UUID,
        course_id: UUID,
    ) -> ProgressSnapshot:
        """Record every lecture of the course as watched.

        Raises:
            NotFoundError: If the course does not exist
        """
        lecture_ids = await self.catalog.get_lecture_ids(course_id)

        for lecture_id in lecture_ids:
            await self._write_lecture(user_id, course_id, lecture_id)

        snapshot = await self._recompute(user_id, course_id)

        logger.info(
            "course_marked_completed",
            user_id=str(user_id),
            course_id=str(course_id),
            lectures=len(lecture_ids),
        )

        return snapshot

    async def reset_progress(
        self,
        user_id: UUID,
        course_id: UUID,
    ) -> ProgressSnapshot:
        """Clear every lecture entry and zero the course summary."""
        await self.session.aexecute(
            self._delete_course_lecture_progress,
            [user_id, course_id],
        )

        snapshot = await self._recompute(user_id, course_id)

        logger.info(
            "course_progress_reset",
            user_id=str(user_id),
            course_id=str(course_id),
        )

        return snapshot

    # ==========================================================================
    # Queries
    # ==========================================================================

    async def get_progress(self, user_id: UUID, course_id: UUID) -> ProgressSnapshot:
        """Get progress computed against the current lecture list.

        A course that was never started, or no longer exists, yields a zero
        snapshot instead of an error.
        """
        course = await self.catalog.get_course(course_id)
        lecture_ids = course.lecture_ids if course else []

        entries = await self._get_entries(user_id, course_id)
        snapshot = build_snapshot(user_id, course_id, entries, lecture_ids)

        summary = await self._get_summary_row(user_id, course_id)
        if summary:
            snapshot.version = summary.version or 0
            snapshot.updated_at = summary.updated_at

        return snapshot

    async def list_user_progress(
        self,
        user_id: UUID,
        course_ids: list[UUID],
    ) -> list[ProgressSnapshot]:
        """Get progress for several courses (e.g. the user's enrolled courses)."""
        return [await self.get_progress(user_id, course_id) for course_id in course_ids]

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    async def _write_lecture(
        self,
        user_id: UUID,
        course_id: UUID,
        lecture_id: UUID,
    ) -> None:
        """Upsert the row keyed by lecture id."""
        now = utcnow()

        result = await self.session.aexecute(
            self._get_lecture_progress,
            [user_id, course_id, lecture_id],
        )
        row = result.one()
        existing = LectureProgress.from_row(row) if row else None

        watch_time = existing.watch_time if existing and existing.watch_time else now

        await self.session.aexecute(
            self._upsert_lecture_progress,
            [user_id, course_id, lecture_id, True, watch_time, now],
        )

    async def _get_entries(
        self,
        user_id: UUID,
        course_id: UUID,
    ) -> list[LectureProgress]:
        rows = await self.session.aexecute(
            self._get_course_lecture_progress,
            [user_id, course_id],
        )
        return [LectureProgress.from_row(row) for row in rows]

    async def _get_summary_row(self, user_id: UUID, course_id: UUID):
        result = await self.session.aexecute(
            self._get_course_progress,
            [user_id, course_id],
        )
        return result.one()

    async def _recompute(self, user_id: UUID, course_id: UUID) -> ProgressSnapshot:
        """Recompute the summary and store it with a version compare-and-set.

        Rows are re-read on every attempt, so the winning write always
        reflects every lecture row written before it.

        Raises:
            TransientWriteError: If every attempt lost the race
        """
        for attempt in range(1, self.max_write_retries + 1):
            course = await self.catalog.get_course(course_id)
            lecture_ids = course.lecture_ids if course else []

            summary = await self._get_summary_row(user_id, course_id)
            entries = await self._get_entries(user_id, course_id)
            snapshot = build_snapshot(user_id, course_id, entries, lecture_ids)
            snapshot.updated_at = utcnow()

            values = [
                snapshot.completion_percentage,
                snapshot.completed_lectures,
                snapshot.total_lectures,
                snapshot.is_completed,
            ]

            if summary is None:
                snapshot.version = 1
                result = await self.session.aexecute(
                    self._insert_course_progress,
                    [user_id, course_id, *values, snapshot.version, snapshot.updated_at],
                )
            else:
                current_version = summary.version or 0
                snapshot.version = current_version + 1
                result = await self.session.aexecute(
                    self._update_course_progress,
                    [
                        *values,
                        snapshot.version,
                        snapshot.updated_at,
                        user_id,
                        course_id,
                        current_version,
                    ],
                )

            if result.was_applied:
                return snapshot

            logger.debug(
                "course_progress_write_conflict",
                user_id=str(user_id),
                course_id=str(course_id),
                attempt=attempt,
            )

        logger.warning(
            "course_progress_write_exhausted",
            user_id=str(user_id),
            course_id=str(course_id),
            attempts=self.max_write_retries,
        )
        raise TransientWriteError
