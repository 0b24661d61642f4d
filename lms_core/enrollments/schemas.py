"""Pydantic schemas for purchases and enrollment.

Request/Response models for:
- Recording a pending purchase before the gateway redirect
- Free enrollment and admin grants
- Payment webhooks (completed / failed)
- Listing purchased courses
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lms_core.catalog.models import Course

from .models import (
    EnrollmentResult,
    FinalizeResult,
    FinalizeStatus,
    PaymentMethod,
    Purchase,
    PurchasedCourse,
    PurchaseStatus,
    ReconcileReport,
)


# ==============================================================================
# Request Schemas
# ==============================================================================


class CreatePendingPurchaseRequest(BaseModel):
    """Payment attempt created when the checkout session is opened."""

    course_id: UUID
    amount: Decimal = Field(..., ge=0, description="Amount quoted to the user")
    payment_method: PaymentMethod = Field(
        ..., description="Gateway used for this attempt"
    )
    payment_id: str = Field(
        ..., min_length=1, max_length=255, description="Gateway payment/session id"
    )
    currency: str | None = Field(None, min_length=3, max_length=3)


class EnrollFreeRequest(BaseModel):
    """Request to enroll in a free course."""

    course_id: UUID


class PaymentCompletedWebhook(BaseModel):
    """Payment confirmation delivered by the gateway adapter."""

    payment_id: str = Field(..., min_length=1, max_length=255)
    amount: Decimal | None = Field(
        None, ge=0, description="Confirmed amount (keeps the quoted one if omitted)"
    )


class PaymentFailedWebhook(BaseModel):
    """Payment failure or checkout expiry delivered by the gateway adapter."""

    payment_id: str = Field(..., min_length=1, max_length=255)
    reason: str | None = Field(None, max_length=500)


class GrantEnrollmentRequest(BaseModel):
    """Admin request to enroll a user without payment."""

    user_id: UUID
    course_id: UUID
    amount: Decimal | None = Field(None, ge=0, description="Amount paid offline")


# ==============================================================================
# Response Schemas
# ==============================================================================


class PurchaseResponse(BaseModel):
    """Response schema for a single purchase."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Purchase ID")
    user_id: UUID
    course_id: UUID
    payment_id: str
    payment_method: PaymentMethod
    amount: Decimal
    currency: str
    status: PurchaseStatus
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_purchase(cls, purchase: Purchase) -> "PurchaseResponse":
        """Create response from Purchase entity."""
        return cls(
            id=purchase.purchase_id,
            user_id=purchase.user_id,
            course_id=purchase.course_id,
            payment_id=purchase.payment_id,
            payment_method=purchase.payment_method,
            amount=purchase.amount,
            currency=purchase.currency,
            status=purchase.status,
            created_at=purchase.created_at,
            updated_at=purchase.updated_at,
        )


class EnrollmentResponse(BaseModel):
    """Result of a free enrollment or admin grant."""

    purchase: PurchaseResponse
    already_enrolled: bool = False
    backrefs_synced: bool = True

    @classmethod
    def from_result(cls, result: EnrollmentResult) -> "EnrollmentResponse":
        """Create response from an enrollment result."""
        return cls(
            purchase=PurchaseResponse.from_purchase(result.purchase),
            already_enrolled=result.already_enrolled,
            backrefs_synced=result.backrefs_synced,
        )


class FinalizeResponse(BaseModel):
    """Webhook acknowledgement."""

    status: FinalizeStatus
    purchase: PurchaseResponse | None = None
    backrefs_synced: bool = True

    @classmethod
    def from_result(cls, result: FinalizeResult) -> "FinalizeResponse":
        """Create response from a finalize result."""
        return cls(
            status=result.status,
            purchase=(
                PurchaseResponse.from_purchase(result.purchase)
                if result.purchase
                else None
            ),
            backrefs_synced=result.backrefs_synced,
        )


class PurchasedCourseResponse(BaseModel):
    """A purchased course for the "my courses" page."""

    course_id: UUID
    title: str
    thumbnail_url: str | None = None
    total_lectures: int
    purchase: PurchaseResponse

    @classmethod
    def from_purchased(cls, item: PurchasedCourse) -> "PurchasedCourseResponse":
        """Create response from a resolved purchase."""
        return cls(
            course_id=item.course.id,
            title=item.course.title,
            thumbnail_url=item.course.thumbnail_url,
            total_lectures=item.course.total_lectures,
            purchase=PurchaseResponse.from_purchase(item.purchase),
        )


class PurchasedCourseListResponse(BaseModel):
    """Response schema for listing purchased courses."""

    items: list[PurchasedCourseResponse]
    total: int


class CoursePurchaseStatusResponse(BaseModel):
    """Course summary plus whether the user bought it."""

    course_id: UUID
    title: str
    price: Decimal
    is_free: bool
    total_lectures: int
    is_purchased: bool
    purchase: PurchaseResponse | None = None

    @classmethod
    def build(
        cls,
        course: Course,
        purchase: Purchase | None,
    ) -> "CoursePurchaseStatusResponse":
        """Create response from a course and the user's completed purchase."""
        return cls(
            course_id=course.id,
            title=course.title,
            price=course.price,
            is_free=course.is_free,
            total_lectures=course.total_lectures,
            is_purchased=purchase is not None,
            purchase=PurchaseResponse.from_purchase(purchase) if purchase else None,
        )


class ReconcileResponse(BaseModel):
    """Counters of a reconciliation run."""

    processed: int
    repaired: int
    skipped: int
    failed: int

    @classmethod
    def from_report(cls, report: ReconcileReport) -> "ReconcileResponse":
        """Create response from a reconcile report."""
        return cls(
            processed=report.processed,
            repaired=report.repaired,
            skipped=report.skipped,
            failed=report.failed,
        )
