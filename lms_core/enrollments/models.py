"""Enrollment ledger domain models.

Tables:
- purchases: one row per payment attempt, keyed by payment_id
- enrollment_claims: the single payment that enrolled a (user, course) pair
- enrollment_repairs: back-reference writes that still need to be applied,
  including the intent row written before a purchase completes

A completed purchase is the authoritative enrollment record. The claim row
is taken with a lightweight transaction before a purchase may complete, so
a second completed purchase for the same pair cannot be written.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from lms_core.utils.dates import ensure_utc_aware, utcnow


if TYPE_CHECKING:
    from cassandra.cluster import Row

    from lms_core.catalog.models import Course


class PurchaseStatus(str, Enum):
    """Status of a payment attempt."""

    PENDING = "pending"  # Awaiting gateway confirmation
    COMPLETED = "completed"  # Paid; terminal
    FAILED = "failed"  # Gateway reported failure or expiry


class PaymentMethod(str, Enum):
    """How the purchase is paid."""

    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    FREE = "free"  # Zero-price course
    MANUAL = "manual"  # Admin grant


class FinalizeStatus(str, Enum):
    """Outcome of finalizing a purchase."""

    COMPLETED = "completed"  # This call completed the purchase
    ALREADY_COMPLETED = "already_completed"  # Earlier delivery completed it
    ALREADY_ENROLLED = "already_enrolled"  # Pair enrolled through another payment
    NOT_FOUND = "not_found"  # No purchase with that payment id


# Reason of the repair row written before the completing compare-and-set;
# cleared once both back-references are in place
FINALIZE_IN_PROGRESS = "finalize_in_progress"


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

PURCHASES_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.purchases (
    payment_id TEXT,
    purchase_id UUID,
    user_id UUID,
    course_id UUID,
    amount DECIMAL,
    currency TEXT,
    status TEXT,
    payment_method TEXT,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    PRIMARY KEY (payment_id)
)
"""

# One row per (user, course): the payment that enrolled the user
ENROLLMENT_CLAIMS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollment_claims (
    user_id UUID,
    course_id UUID,
    payment_id TEXT,
    claimed_at TIMESTAMP,
    PRIMARY KEY ((user_id), course_id)
) WITH CLUSTERING ORDER BY (course_id ASC)
"""

ENROLLMENT_REPAIRS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.enrollment_repairs (
    user_id UUID,
    course_id UUID,
    payment_id TEXT,
    reason TEXT,
    failed_at TIMESTAMP,
    PRIMARY KEY ((user_id), course_id)
) WITH CLUSTERING ORDER BY (course_id ASC)
"""

ENROLLMENTS_TABLES_CQL = [
    PURCHASES_TABLE_CQL,
    ENROLLMENT_CLAIMS_TABLE_CQL,
    ENROLLMENT_REPAIRS_TABLE_CQL,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class Purchase:
    """Enrollment ledger entry (one payment attempt)."""

    user_id: UUID
    course_id: UUID
    payment_id: str
    payment_method: PaymentMethod
    amount: Decimal = Decimal(0)
    currency: str = "INR"
    status: PurchaseStatus = PurchaseStatus.PENDING
    purchase_id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: "Row") -> "Purchase":
        """Create instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            payment_id=row.payment_id,
            payment_method=PaymentMethod(row.payment_method),
            amount=row.amount if row.amount is not None else Decimal(0),
            currency=row.currency or "INR",
            status=PurchaseStatus(row.status),
            purchase_id=row.purchase_id,
            created_at=ensure_utc_aware(row.created_at) or utcnow(),
            updated_at=ensure_utc_aware(row.updated_at) or utcnow(),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "purchase_id": str(self.purchase_id),
            "user_id": str(self.user_id),
            "course_id": str(self.course_id),
            "payment_id": self.payment_id,
            "payment_method": self.payment_method.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @property
    def is_completed(self) -> bool:
        """Check if the purchase grants enrollment."""
        return self.status == PurchaseStatus.COMPLETED

    def belongs_to(self, user_id: UUID, course_id: UUID) -> bool:
        """Check if the purchase is for the given (user, course) pair."""
        return self.user_id == user_id and self.course_id == course_id


@dataclass
class EnrollmentClaim:
    """The payment that enrolled a user in a course."""

    user_id: UUID
    course_id: UUID
    payment_id: str
    claimed_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: "Row") -> "EnrollmentClaim":
        """Create instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            payment_id=row.payment_id,
            claimed_at=ensure_utc_aware(row.claimed_at) or utcnow(),
        )


@dataclass
class EnrollmentRepair:
    """Back-reference writes pending for a (user, course) pair."""

    user_id: UUID
    course_id: UUID
    payment_id: str
    reason: str
    failed_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_row(cls, row: "Row") -> "EnrollmentRepair":
        """Create instance from Cassandra row."""
        return cls(
            user_id=row.user_id,
            course_id=row.course_id,
            payment_id=row.payment_id,
            reason=row.reason or "",
            failed_at=ensure_utc_aware(row.failed_at) or utcnow(),
        )


# ==============================================================================
# Result Types
# ==============================================================================


@dataclass
class FinalizeResult:
    """Outcome of finalizing a purchase or an enrollment."""

    status: FinalizeStatus
    purchase: Purchase | None = None
    backrefs_synced: bool = True

    @property
    def is_enrolled(self) -> bool:
        """Whether the user ends up enrolled (by this or an earlier payment)."""
        return self.status != FinalizeStatus.NOT_FOUND


@dataclass
class EnrollmentResult:
    """Outcome of a free or manual enrollment."""

    purchase: Purchase
    already_enrolled: bool = False
    backrefs_synced: bool = True


@dataclass
class PurchasedCourse:
    """A completed purchase resolved against the catalog."""

    purchase: Purchase
    course: "Course"


@dataclass
class ReconcileReport:
    """Counters of a reconciliation run."""

    processed: int = 0
    repaired: int = 0
    skipped: int = 0
    failed: int = 0


# ==============================================================================
# Factory Functions
# ==============================================================================


def free_payment_id(user_id: UUID, course_id: UUID) -> str:
    """Deterministic payment id of a free enrollment.

    Concurrent free enrollments for the same pair collide on this id.
    """
    return f"free_{user_id}_{course_id}"


def manual_payment_id(user_id: UUID, course_id: UUID) -> str:
    """Deterministic payment id of an admin grant."""
    return f"manual_{user_id}_{course_id}"


def create_free_purchase(
    user_id: UUID,
    course_id: UUID,
    currency: str = "INR",
) -> Purchase:
    """Create the ledger entry for a free course enrollment."""
    return Purchase(
        user_id=user_id,
        course_id=course_id,
        payment_id=free_payment_id(user_id, course_id),
        payment_method=PaymentMethod.FREE,
        amount=Decimal(0),
        currency=currency,
    )


def create_manual_purchase(
    user_id: UUID,
    course_id: UUID,
    amount: Decimal | None = None,
    currency: str = "INR",
) -> Purchase:
    """Create the ledger entry for an admin grant."""
    return Purchase(
        user_id=user_id,
        course_id=course_id,
        payment_id=manual_payment_id(user_id, course_id),
        payment_method=PaymentMethod.MANUAL,
        amount=amount if amount is not None else Decimal(0),
        currency=currency,
    )
