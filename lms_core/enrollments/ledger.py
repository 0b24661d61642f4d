# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Enrollment ledger service layer.

Business logic for:
- Recording payment attempts (pending purchases)
- Status transitions guarded by compare-and-set
- The enrollment claim that allows one completed purchase per (user, course)
- Authoritative enrollment checks (Redis-cached)
- Listing completed purchases resolved against the catalog
"""

from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from lms_core.catalog.models import Course
from lms_core.catalog.service import CourseCatalog
from lms_core.core.exceptions import (
    AlreadyEnrolledError,
    InvariantViolationError,
    NotFoundError,
    TransientWriteError,
)
from lms_core.core.logging import get_logger
from lms_core.utils.dates import utcnow

from .models import (
    EnrollmentClaim,
    EnrollmentRepair,
    PaymentMethod,
    Purchase,
    PurchasedCourse,
    PurchaseStatus,
)


if TYPE_CHECKING:
    from cassandra.cluster import Session
    from redis.asyncio import Redis


logger = get_logger(__name__)


class PurchaseLedger:
    """Service for purchase records and enrollment claims."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        catalog: CourseCatalog,
        redis: "Redis | None" = None,
        cache_ttl: int = 300,
        max_write_retries: int = 3,
        default_currency: str = "INR",
    ):
        """Initialize with Cassandra session, catalog and optional Redis."""
        self.session = session
        self.keyspace = keyspace
        self.catalog = catalog
        self.redis = redis
        self.cache_ttl = cache_ttl
        self.max_write_retries = max_write_retries
        self.default_currency = default_currency
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        # Purchases
        self._insert_purchase = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.purchases
            (payment_id, purchase_id, user_id, course_id, amount, currency,
             status, payment_method, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._get_purchase = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.purchases
            WHERE payment_id = ?
        """)

        self._transition_status = self.session.prepare(f"""
            UPDATE {self.keyspace}.purchases
            SET status = ?, amount = ?, updated_at = ?
            WHERE payment_id = ?
            IF status = ?
        """)

        # Enrollment claims
        self._insert_claim = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollment_claims
            (user_id, course_id, payment_id, claimed_at)
            VALUES (?, ?, ?, ?)
            IF NOT EXISTS
        """)

        self._get_claim = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollment_claims
            WHERE user_id = ? AND course_id = ?
        """)

        self._get_user_claims = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollment_claims
            WHERE user_id = ?
        """)

        self._release_claim = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.enrollment_claims
            WHERE user_id = ? AND course_id = ?
            IF payment_id = ?
        """)

        # Repairs
        self._upsert_repair = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.enrollment_repairs
            (user_id, course_id, payment_id, reason, failed_at)
            VALUES (?, ?, ?, ?, ?)
        """)

        self._get_user_repairs = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollment_repairs
            WHERE user_id = ?
        """)

        self._get_all_repairs = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.enrollment_repairs
        """)

        self._delete_repair = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.enrollment_repairs
            WHERE user_id = ? AND course_id = ?
        """)

    # ==========================================================================
    # Purchase Records
    # ==========================================================================

    async def insert_purchase(self, purchase: Purchase) -> tuple[Purchase, bool]:
        """Insert a purchase unless its payment id is already recorded.

        Returns:
            Tuple of (stored purchase, created). When the payment id exists
            the stored row is returned unchanged.
        """
        result = await self.session.aexecute(
            self._insert_purchase,
            [
                purchase.payment_id,
                purchase.purchase_id,
                purchase.user_id,
                purchase.course_id,
                purchase.amount,
                purchase.currency,
                purchase.status.value,
                purchase.payment_method.value,
                purchase.created_at,
                purchase.updated_at,
            ],
        )
        if result.was_applied:
            return purchase, True

        existing = await self.get_purchase(purchase.payment_id)
        if existing is None:
            # Row vanished between the insert and the read
            raise TransientWriteError
        return existing, False

    async def get_purchase(self, payment_id: str) -> Purchase | None:
        """Get a purchase by payment id."""
        result = await self.session.aexecute(self._get_purchase, [payment_id])
        row = result.one()
        return Purchase.from_row(row) if row else None

    async def transition_status(
        self,
        purchase: Purchase,
        new_status: PurchaseStatus,
        amount: Decimal | None = None,
    ) -> Purchase | None:
        """Move a purchase to a new status if it still has the observed one.

        Returns:
            The updated purchase, or None when another writer changed the
            status first
        """
        now = utcnow()
        new_amount = amount if amount is not None else purchase.amount

        result = await self.session.aexecute(
            self._transition_status,
            [
                new_status.value,
                new_amount,
                now,
                purchase.payment_id,
                purchase.status.value,
            ],
        )
        if not result.was_applied:
            return None

        await self._invalidate_cache(purchase.user_id, purchase.course_id)

        logger.info(
            "purchase_status_changed",
            payment_id=purchase.payment_id,
            from_status=purchase.status.value,
            to_status=new_status.value,
            amount=str(new_amount),
        )

        return replace(purchase, status=new_status, amount=new_amount, updated_at=now)

    # ==========================================================================
    # Enrollment Claims
    # ==========================================================================

    async def claim_enrollment(
        self,
        user_id: UUID,
        course_id: UUID,
        payment_id: str,
    ) -> str:
        """Claim the (user, course) enrollment slot for a payment.

        Returns:
            Payment id holding the claim. Equal to payment_id when this
            payment owns it (newly or from an earlier attempt).

        Raises:
            TransientWriteError: If the claim kept disappearing under us
        """
        for _ in range(self.max_write_retries):
            result = await self.session.aexecute(
                self._insert_claim,
                [user_id, course_id, payment_id, utcnow()],
            )
            if result.was_applied:
                return payment_id

            claim = await self.get_claim(user_id, course_id)
            if claim is not None:
                return claim.payment_id

        raise TransientWriteError

    async def get_claim(self, user_id: UUID, course_id: UUID) -> EnrollmentClaim | None:
        """Get the enrollment claim of a (user, course) pair."""
        result = await self.session.aexecute(self._get_claim, [user_id, course_id])
        row = result.one()
        return EnrollmentClaim.from_row(row) if row else None

    async def release_claim(
        self,
        user_id: UUID,
        course_id: UUID,
        payment_id: str,
    ) -> bool:
        """Release a claim held by a payment that will not complete."""
        result = await self.session.aexecute(
            self._release_claim,
            [user_id, course_id, payment_id],
        )
        if result.was_applied:
            await self._invalidate_cache(user_id, course_id)
            logger.info(
                "enrollment_claim_released",
                user_id=str(user_id),
                course_id=str(course_id),
                payment_id=payment_id,
            )
        return bool(result.was_applied)

    # ==========================================================================
    # Enrollment Queries
    # ==========================================================================

    async def get_completed_purchase(
        self,
        user_id: UUID,
        course_id: UUID,
    ) -> Purchase | None:
        """Get the completed purchase of a (user, course) pair, if any."""
        claim = await self.get_claim(user_id, course_id)
        if claim is None:
            return None

        purchase = await self.get_purchase(claim.payment_id)
        if purchase is None or not purchase.is_completed:
            return None
        return purchase

    async def has_completed_purchase(self, user_id: UUID, course_id: UUID) -> bool:
        """Authoritative enrollment check used for access gating."""
        cache_key = self._cache_key(user_id, course_id)
        if self.redis:
            cached = await self.redis.get(cache_key)
            if cached == "1":
                return True

        enrolled = await self.get_completed_purchase(user_id, course_id) is not None

        # Completed is terminal: only positive answers are cached
        if enrolled and self.redis:
            await self.redis.setex(cache_key, self.cache_ttl, "1")

        return enrolled

    async def list_completed_purchases(self, user_id: UUID) -> list[Purchase]:
        """List completed purchases of a user, without catalog resolution."""
        rows = await self.session.aexecute(self._get_user_claims, [user_id])
        claims = [EnrollmentClaim.from_row(row) for row in rows]

        purchases = []
        for claim in claims:
            purchase = await self.get_purchase(claim.payment_id)
            if purchase is not None and purchase.is_completed:
                purchases.append(purchase)
        return purchases

    async def get_completed_purchases(self, user_id: UUID) -> list[PurchasedCourse]:
        """List completed purchases resolved against the catalog.

        Purchases whose course was deleted are left out. The user's
        enrolled_courses set may still reference them.
        """
        resolved = []
        for purchase in await self.list_completed_purchases(user_id):
            course = await self.catalog.get_course(purchase.course_id)
            if course is None:
                logger.warning(
                    "purchase_course_missing",
                    user_id=str(user_id),
                    course_id=str(purchase.course_id),
                    payment_id=purchase.payment_id,
                )
                continue
            resolved.append(PurchasedCourse(purchase=purchase, course=course))
        return resolved

    async def get_purchase_status(
        self,
        user_id: UUID,
        course_id: UUID,
    ) -> tuple[Course, Purchase | None]:
        """Get a course together with the user's completed purchase of it.

        Raises:
            NotFoundError: If the course does not exist
        """
        course = await self.catalog.require_course(course_id)
        purchase = await self.get_completed_purchase(user_id, course_id)
        return course, purchase

    # ==========================================================================
    # Payment Attempts
    # ==========================================================================

    async def create_pending_purchase(
        self,
        user_id: UUID,
        course_id: UUID,
        amount: Decimal,
        method: PaymentMethod,
        payment_id: str,
        currency: str | None = None,
    ) -> Purchase:
        """Record a payment attempt before redirecting to the gateway.

        Retrying with the same payment id for the same pair returns the
        recorded purchase.

        Raises:
            NotFoundError: If the course does not exist
            AlreadyEnrolledError: If the pair already has a completed purchase
            InvariantViolationError: If the payment id belongs to another pair
        """
        if not await self.catalog.course_exists(course_id):
            raise NotFoundError("Course not found")

        if await self.get_completed_purchase(user_id, course_id) is not None:
            raise AlreadyEnrolledError

        purchase = Purchase(
            user_id=user_id,
            course_id=course_id,
            payment_id=payment_id,
            payment_method=method,
            amount=amount,
            currency=currency or self.default_currency,
            status=PurchaseStatus.PENDING,
        )
        stored, created = await self.insert_purchase(purchase)

        if not stored.belongs_to(user_id, course_id):
            logger.error(
                "payment_id_reused",
                payment_id=payment_id,
                user_id=str(user_id),
                course_id=str(course_id),
            )
            raise InvariantViolationError("Payment id already used for another purchase")

        if created:
            logger.info(
                "purchase_created",
                payment_id=payment_id,
                user_id=str(user_id),
                course_id=str(course_id),
                amount=str(amount),
                method=method.value,
            )

        return stored

    async def mark_purchase_failed(self, payment_id: str) -> Purchase:
        """Mark a pending purchase as failed (gateway failure or expiry).

        Completed purchases are never changed.

        Raises:
            NotFoundError: If the purchase does not exist
            TransientWriteError: If the status kept changing under us
        """
        for _ in range(self.max_write_retries):
            purchase = await self.get_purchase(payment_id)
            if purchase is None:
                raise NotFoundError("Purchase not found")

            if purchase.status == PurchaseStatus.COMPLETED:
                logger.warning("purchase_failure_ignored", payment_id=payment_id)
                return purchase
            if purchase.status == PurchaseStatus.FAILED:
                return purchase

            failed = await self.transition_status(purchase, PurchaseStatus.FAILED)
            if failed is not None:
                await self.release_claim(
                    purchase.user_id, purchase.course_id, purchase.payment_id
                )
                return failed

        raise TransientWriteError

    # ==========================================================================
    # Repairs
    # ==========================================================================

    async def record_repair(self, purchase: Purchase, reason: str) -> None:
        """Record back-reference writes to retry for a completed purchase."""
        await self.session.aexecute(
            self._upsert_repair,
            [purchase.user_id, purchase.course_id, purchase.payment_id, reason, utcnow()],
        )

    async def get_user_repairs(self, user_id: UUID) -> list[EnrollmentRepair]:
        """List pending repairs of a user."""
        rows = await self.session.aexecute(self._get_user_repairs, [user_id])
        return [EnrollmentRepair.from_row(row) for row in rows]

    async def get_all_repairs(self) -> list[EnrollmentRepair]:
        """List every pending repair (operator use)."""
        rows = await self.session.aexecute(self._get_all_repairs)
        return [EnrollmentRepair.from_row(row) for row in rows]

    async def clear_repair(self, user_id: UUID, course_id: UUID) -> None:
        """Remove a repair once its back-references are in place."""
        await self.session.aexecute(self._delete_repair, [user_id, course_id])

    # ==========================================================================
    # Cache
    # ==========================================================================

    @staticmethod
    def _cache_key(user_id: UUID, course_id: UUID) -> str:
        return f"access:{user_id}:{course_id}"

    async def _invalidate_cache(self, user_id: UUID, course_id: UUID) -> None:
        """Invalidate the enrollment check cache for a user/course pair."""
        if self.redis:
            await self.redis.delete(self._cache_key(user_id, course_id))
