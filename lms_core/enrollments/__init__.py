"""Enrollment module.

Handles purchases and enrollment consistency:
- PurchaseStatus: PENDING, COMPLETED, FAILED
- PaymentMethod: STRIPE, RAZORPAY, FREE, MANUAL
- PurchaseLedger: payment attempts and the one-completed-purchase claim
- EnrollmentCoordinator: finalization and back-reference reconciliation
"""

from .coordinator import EnrollmentCoordinator
from .ledger import PurchaseLedger
from .models import (
    ENROLLMENTS_TABLES_CQL,
    EnrollmentResult,
    FinalizeResult,
    FinalizeStatus,
    PaymentMethod,
    Purchase,
    PurchasedCourse,
    PurchaseStatus,
)
from .router import admin_router, router


__all__ = [
    "ENROLLMENTS_TABLES_CQL",
    "EnrollmentCoordinator",
    "EnrollmentResult",
    "FinalizeResult",
    "FinalizeStatus",
    "PaymentMethod",
    "Purchase",
    "PurchaseLedger",
    "PurchaseStatus",
    "PurchasedCourse",
    "admin_router",
    "router",
]
