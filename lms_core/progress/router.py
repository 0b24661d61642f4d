"""Student progress tracking API endpoints.

Provides routes for:
- Recording watched lectures
- Marking a whole course as completed
- Resetting progress to re-take a course
- Progress queries
"""

from uuid import UUID

from fastapi import APIRouter

from lms_core.auth.dependencies import CurrentUser
from lms_core.core.exceptions import DomainError
from lms_core.core.http_errors import handle_domain_error
from lms_core.enrollments.dependencies import PurchaseLedgerDep

from .dependencies import EnrolledOnly, ProgressServiceDep
from .schemas import (
    CourseProgressResponse,
    CourseProgressSummary,
    ProgressListResponse,
)


router = APIRouter(prefix="/v1/progress", tags=["progress"])


# ==============================================================================
# Progress Updates
# ==============================================================================


@router.patch(
    "/{course_id}/lectures/{lecture_id}",
    response_model=CourseProgressResponse,
    dependencies=[EnrolledOnly],
    summary="Record a watched lecture",
)
async def record_lecture_watched(
    course_id: UUID,
    lecture_id: UUID,
    service: ProgressServiceDep,
    current_user: CurrentUser,
) -> CourseProgressResponse:
    """Mark a lecture as watched. Repeating the call changes nothing."""
    try:
        snapshot = await service.record_lecture_watched(
            current_user.id, course_id, lecture_id
        )
    except DomainError as e:
        raise handle_domain_error(e) from e

    return CourseProgressResponse.from_snapshot(snapshot)


@router.patch(
    "/{course_id}/complete",
    response_model=CourseProgressResponse,
    dependencies=[EnrolledOnly],
    summary="Mark every lecture as watched",
)
async def mark_course_completed(
    course_id: UUID,
    service: ProgressServiceDep,
    current_user: CurrentUser,
) -> CourseProgressResponse:
    """Record every lecture of the course as watched."""
    try:
        snapshot = await service.mark_course_completed(current_user.id, course_id)
    except DomainError as e:
        raise handle_domain_error(e) from e

    return CourseProgressResponse.from_snapshot(snapshot)


@router.patch(
    "/{course_id}/reset",
    response_model=CourseProgressResponse,
    dependencies=[EnrolledOnly],
    summary="Reset course progress",
)
async def reset_progress(
    course_id: UUID,
    service: ProgressServiceDep,
    current_user: CurrentUser,
) -> CourseProgressResponse:
    """Clear every lecture entry to re-take the course."""
    try:
        snapshot = await service.reset_progress(current_user.id, course_id)
    except DomainError as e:
        raise handle_domain_error(e) from e

    return CourseProgressResponse.from_snapshot(snapshot)


# ==============================================================================
# Progress Queries
# ==============================================================================


@router.get(
    "",
    response_model=ProgressListResponse,
    summary="Progress of my purchased courses",
)
async def list_my_progress(
    service: ProgressServiceDep,
    ledger: PurchaseLedgerDep,
    current_user: CurrentUser,
) -> ProgressListResponse:
    """Progress summary for each purchased course."""
    purchased = await ledger.get_completed_purchases(current_user.id)
    snapshots = await service.list_user_progress(
        current_user.id, [item.course.id for item in purchased]
    )
    return ProgressListResponse(
        items=[CourseProgressSummary.from_snapshot(s) for s in snapshots],
        total=len(snapshots),
    )


@router.get(
    "/{course_id}",
    response_model=CourseProgressResponse,
    dependencies=[EnrolledOnly],
    summary="Get course progress",
)
async def get_course_progress(
    course_id: UUID,
    service: ProgressServiceDep,
    current_user: CurrentUser,
) -> CourseProgressResponse:
    """Get progress for a course (zero when not started)."""
    try:
        snapshot = await service.get_progress(current_user.id, course_id)
    except DomainError as e:
        raise handle_domain_error(e) from e

    return CourseProgressResponse.from_snapshot(snapshot)
