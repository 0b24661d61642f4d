"""FastAPI dependencies for progress tracking.

Provides dependency injection for:
- Progress service
- Enrollment gate for per-course progress routes
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status

from lms_core.auth.dependencies import CurrentUser
from lms_core.enrollments.dependencies import PurchaseLedgerDep

from .service import ProgressService


async def get_progress_service(request: Request) -> ProgressService:
    """Get progress service from app state."""
    app_state = request.app.state
    if not getattr(app_state, "progress_service", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress service not available",
        )
    return app_state.progress_service


# Type alias for dependency injection
ProgressServiceDep = Annotated[ProgressService, Depends(get_progress_service)]


async def require_enrollment(
    course_id: UUID,
    user: CurrentUser,
    ledger: PurchaseLedgerDep,
) -> None:
    """Allow per-course progress routes only to enrolled users.

    Raises:
        HTTPException 403: If the user is not enrolled in the course
    """
    if not await ledger.has_completed_purchase(user.id, course_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not enrolled in this course",
        )


EnrolledOnly = Depends(require_enrollment)
