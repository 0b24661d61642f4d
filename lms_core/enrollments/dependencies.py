"""FastAPI dependencies for the enrollment ledger.

Provides dependency injection for:
- Purchase ledger and enrollment coordinator (from app state)
- Payment webhook authentication
"""

import hmac
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from lms_core.config.settings import Settings, get_settings

from .coordinator import EnrollmentCoordinator
from .ledger import PurchaseLedger


async def get_purchase_ledger(request: Request) -> PurchaseLedger:
    """Get purchase ledger from app state."""
    app_state = request.app.state
    if not getattr(app_state, "purchase_ledger", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Purchase service not available",
        )
    return app_state.purchase_ledger


async def get_enrollment_coordinator(request: Request) -> EnrollmentCoordinator:
    """Get enrollment coordinator from app state."""
    app_state = request.app.state
    if not getattr(app_state, "enrollment_coordinator", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Enrollment service not available",
        )
    return app_state.enrollment_coordinator


# Type aliases for dependency injection
PurchaseLedgerDep = Annotated[PurchaseLedger, Depends(get_purchase_ledger)]
EnrollmentCoordinatorDep = Annotated[
    EnrollmentCoordinator, Depends(get_enrollment_coordinator)
]


def verify_webhook_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_webhook_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Authenticate a payment webhook by its shared secret header.

    Raises:
        HTTPException(401): If the header is missing or does not match
    """
    if not x_webhook_secret or not hmac.compare_digest(
        x_webhook_secret.encode(), settings.payment_webhook_secret.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )


WebhookAuth = Depends(verify_webhook_secret)
