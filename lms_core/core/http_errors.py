"""Conversion of domain errors to HTTP responses."""

from fastapi import HTTPException, status

from lms_core.core.exceptions import DomainError


DOMAIN_ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "already_enrolled": status.HTTP_409_CONFLICT,
    "not_free": status.HTTP_400_BAD_REQUEST,
    "invariant_violation": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "transient_write_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def handle_domain_error(error: DomainError) -> HTTPException:
    """Convert domain errors to HTTP exceptions.

    Args:
        error: Domain error

    Returns:
        HTTPException with appropriate status code
    """
    status_code = DOMAIN_ERROR_STATUS.get(
        error.code, status.HTTP_500_INTERNAL_SERVER_ERROR
    )

    headers = None
    if status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        headers = {"Retry-After": "1"}

    return HTTPException(
        status_code=status_code,
        detail=error.message,
        headers=headers,
    )
