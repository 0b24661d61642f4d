"""HTTP endpoints for purchases and enrollment.

Provides:
- POST /v1/purchases/pending - Record a payment attempt
- POST /v1/purchases/enroll-free - Enroll in a free course
- GET  /v1/purchases - List purchased courses
- GET  /v1/purchases/course/{course_id}/status - Purchase status of a course
- POST /v1/purchases/webhook/payment-completed - Gateway confirmation
- POST /v1/purchases/webhook/payment-failed - Gateway failure/expiry
- Admin endpoints for manual grants and reconciliation
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from lms_core.auth.dependencies import AdminUser, CurrentUser
from lms_core.core.exceptions import DomainError
from lms_core.core.http_errors import handle_domain_error

from .dependencies import EnrollmentCoordinatorDep, PurchaseLedgerDep, WebhookAuth
from .models import FinalizeStatus
from .schemas import (
    CoursePurchaseStatusResponse,
    CreatePendingPurchaseRequest,
    EnrollFreeRequest,
    EnrollmentResponse,
    FinalizeResponse,
    GrantEnrollmentRequest,
    PaymentCompletedWebhook,
    PaymentFailedWebhook,
    PurchasedCourseListResponse,
    PurchasedCourseResponse,
    PurchaseResponse,
    ReconcileResponse,
)


router = APIRouter(prefix="/v1/purchases", tags=["purchases"])
admin_router = APIRouter(prefix="/v1/admin/enrollments", tags=["admin-enrollments"])


# ==============================================================================
# Student Endpoints
# ==============================================================================


@router.post(
    "/pending",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a payment attempt",
)
async def create_pending_purchase(
    data: CreatePendingPurchaseRequest,
    ledger: PurchaseLedgerDep,
    current_user: CurrentUser,
) -> PurchaseResponse:
    """Record a pending purchase before redirecting to the payment gateway."""
    try:
        purchase = await ledger.create_pending_purchase(
            user_id=current_user.id,
            course_id=data.course_id,
            amount=data.amount,
            method=data.payment_method,
            payment_id=data.payment_id,
            currency=data.currency,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e

    return PurchaseResponse.from_purchase(purchase)


@router.post(
    "/enroll-free",
    response_model=EnrollmentResponse,
    summary="Enroll in a free course",
)
async def enroll_free(
    data: EnrollFreeRequest,
    coordinator: EnrollmentCoordinatorDep,
    current_user: CurrentUser,
) -> EnrollmentResponse:
    """Enroll the current user in a free course.

    Enrolling twice succeeds with already_enrolled=true.
    """
    try:
        result = await coordinator.enroll_free(current_user.id, data.course_id)
    except DomainError as e:
        raise handle_domain_error(e) from e

    return EnrollmentResponse.from_result(result)


@router.get(
    "",
    response_model=PurchasedCourseListResponse,
    summary="List my purchased courses",
)
async def list_purchased_courses(
    ledger: PurchaseLedgerDep,
    current_user: CurrentUser,
) -> PurchasedCourseListResponse:
    """List completed purchases of the current user (deleted courses hidden)."""
    items = await ledger.get_completed_purchases(current_user.id)
    return PurchasedCourseListResponse(
        items=[PurchasedCourseResponse.from_purchased(item) for item in items],
        total=len(items),
    )


@router.get(
    "/course/{course_id}/status",
    response_model=CoursePurchaseStatusResponse,
    summary="Purchase status of a course",
)
async def get_course_purchase_status(
    course_id: UUID,
    ledger: PurchaseLedgerDep,
    current_user: CurrentUser,
) -> CoursePurchaseStatusResponse:
    """Course summary with whether the current user purchased it."""
    try:
        course, purchase = await ledger.get_purchase_status(current_user.id, course_id)
    except DomainError as e:
        raise handle_domain_error(e) from e

    return CoursePurchaseStatusResponse.build(course, purchase)


# ==============================================================================
# Payment Webhooks
# ==============================================================================


@router.post(
    "/webhook/payment-completed",
    response_model=FinalizeResponse,
    dependencies=[WebhookAuth],
    summary="Payment confirmed by the gateway",
)
async def payment_completed(
    data: PaymentCompletedWebhook,
    coordinator: EnrollmentCoordinatorDep,
) -> FinalizeResponse:
    """Finalize the purchase. Redelivered webhooks are acknowledged with 200."""
    try:
        result = await coordinator.finalize_purchase(data.payment_id, data.amount)
    except DomainError as e:
        raise handle_domain_error(e) from e

    if result.status == FinalizeStatus.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Purchase not found",
        )

    return FinalizeResponse.from_result(result)


@router.post(
    "/webhook/payment-failed",
    response_model=PurchaseResponse,
    dependencies=[WebhookAuth],
    summary="Payment failed or expired",
)
async def payment_failed(
    data: PaymentFailedWebhook,
    ledger: PurchaseLedgerDep,
) -> PurchaseResponse:
    """Mark a pending purchase as failed. Completed purchases are left as is."""
    try:
        purchase = await ledger.mark_purchase_failed(data.payment_id)
    except DomainError as e:
        raise handle_domain_error(e) from e

    return PurchaseResponse.from_purchase(purchase)


# ==============================================================================
# Admin Endpoints
# ==============================================================================


@admin_router.post(
    "/grant",
    response_model=EnrollmentResponse,
    summary="Enroll a user without payment",
)
async def grant_enrollment(
    data: GrantEnrollmentRequest,
    coordinator: EnrollmentCoordinatorDep,
    admin: AdminUser,
) -> EnrollmentResponse:
    """Grant a user access to a course (admin only). Idempotent."""
    try:
        result = await coordinator.enroll_manual(
            user_id=data.user_id,
            course_id=data.course_id,
            granted_by=admin.id,
            amount=data.amount,
        )
    except DomainError as e:
        raise handle_domain_error(e) from e

    return EnrollmentResponse.from_result(result)


@admin_router.post(
    "/reconcile/{user_id}",
    response_model=ReconcileResponse,
    summary="Re-apply enrollment back-references for a user",
)
async def reconcile_user(
    user_id: UUID,
    coordinator: EnrollmentCoordinatorDep,
    _: AdminUser,
) -> ReconcileResponse:
    """Replay back-reference writes for every completed purchase of a user."""
    report = await coordinator.reconcile_user(user_id)
    return ReconcileResponse.from_report(report)
