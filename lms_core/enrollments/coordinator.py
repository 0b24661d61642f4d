"""Enrollment consistency coordinator.

Applies every enrollment state change across the three records involved:

1. the purchase (authoritative, completed through the ledger)
2. users.enrolled_courses (back-reference)
3. courses.enrolled_students (back-reference)

A payment is never rolled back. An enrollment_repairs row is written before
the purchase completes and cleared once both back-references are in place,
so a failed write or an interrupted finalize leaves a row behind;
reconcile_user / reconcile_pending replay it.
"""

from decimal import Decimal
from uuid import UUID

from lms_core.catalog.service import CourseCatalog
from lms_core.core.exceptions import NotFreeError, TransientWriteError
from lms_core.core.logging import get_logger
from lms_core.users.service import UserDirectory

from .ledger import PurchaseLedger
from .models import (
    FINALIZE_IN_PROGRESS,
    EnrollmentResult,
    FinalizeResult,
    FinalizeStatus,
    Purchase,
    PurchaseStatus,
    ReconcileReport,
    create_free_purchase,
    create_manual_purchase,
)


logger = get_logger(__name__)


class EnrollmentCoordinator:
    """Keeps purchases and enrollment back-references consistent."""

    def __init__(
        self,
        ledger: PurchaseLedger,
        catalog: CourseCatalog,
        users: UserDirectory,
        max_write_retries: int = 3,
        default_currency: str = "INR",
    ):
        self.ledger = ledger
        self.catalog = catalog
        self.users = users
        self.max_write_retries = max_write_retries
        self.default_currency = default_currency

    # ==========================================================================
    # Finalization
    # ==========================================================================

    async def finalize_purchase(
        self,
        payment_id: str,
        confirmed_amount: Decimal | None = None,
    ) -> FinalizeResult:
        """Complete a purchase after the gateway confirmed the payment.

        Safe under at-least-once webhook delivery: a purchase that is
        already completed is returned as ALREADY_COMPLETED without writes.
        """
        purchase = await self.ledger.get_purchase(payment_id)
        if purchase is None:
            logger.warning("purchase_not_found", payment_id=payment_id)
            return FinalizeResult(status=FinalizeStatus.NOT_FOUND)

        if purchase.is_completed:
            logger.info("purchase_already_completed", payment_id=payment_id)
            return FinalizeResult(
                status=FinalizeStatus.ALREADY_COMPLETED, purchase=purchase
            )

        return await self.finalize_enrollment(purchase, confirmed_amount)

    async def finalize_enrollment(
        self,
        purchase: Purchase,
        confirmed_amount: Decimal | None = None,
    ) -> FinalizeResult:
        """Complete a purchase and add both enrollment back-references.

        The claim is taken again before every status compare-and-set: a
        concurrent payment failure releases it while the purchase may still
        complete through a late confirmation.

        Raises:
            TransientWriteError: If the status compare-and-set kept conflicting
        """
        if purchase.is_completed:
            return FinalizeResult(
                status=FinalizeStatus.ALREADY_COMPLETED, purchase=purchase
            )

        current = purchase
        intent_recorded = False
        for attempt in range(1, self.max_write_retries + 1):
            holder = await self.ledger.claim_enrollment(
                current.user_id, current.course_id, current.payment_id
            )
            if holder != current.payment_id:
                return await self._duplicate_payment(current, holder)

            if not intent_recorded:
                # Replayed by reconcile_pending if we stop before the sync
                await self.ledger.record_repair(current, reason=FINALIZE_IN_PROGRESS)
                intent_recorded = True

            completed = await self.ledger.transition_status(
                current, PurchaseStatus.COMPLETED, confirmed_amount
            )
            if completed is not None:
                return await self._complete(completed)

            reloaded = await self.ledger.get_purchase(current.payment_id)
            if reloaded is None:
                return FinalizeResult(status=FinalizeStatus.NOT_FOUND)
            if reloaded.is_completed:
                # A concurrent delivery won; it syncs the back-references
                return FinalizeResult(
                    status=FinalizeStatus.ALREADY_COMPLETED, purchase=reloaded
                )

            logger.debug(
                "purchase_status_conflict",
                payment_id=current.payment_id,
                status=reloaded.status.value,
                attempt=attempt,
            )
            current = reloaded

        raise TransientWriteError

    async def _duplicate_payment(self, purchase: Purchase, holder: str) -> FinalizeResult:
        # Money moved twice for one enrollment: left un-completed for refund review
        logger.warning(
            "duplicate_payment_for_enrollment",
            payment_id=purchase.payment_id,
            enrolled_payment_id=holder,
            user_id=str(purchase.user_id),
            course_id=str(purchase.course_id),
        )
        enrolled_with = await self.ledger.get_purchase(holder)
        return FinalizeResult(
            status=FinalizeStatus.ALREADY_ENROLLED,
            purchase=enrolled_with or purchase,
        )

    async def _complete(self, completed: Purchase) -> FinalizeResult:
        # The claim may have been released between our claim and the status write
        holder = await self.ledger.claim_enrollment(
            completed.user_id, completed.course_id, completed.payment_id
        )
        if holder != completed.payment_id:
            logger.error(
                "enrollment_claim_lost",
                payment_id=completed.payment_id,
                enrolled_payment_id=holder,
                user_id=str(completed.user_id),
                course_id=str(completed.course_id),
            )

        synced = await self._sync_backrefs(completed)
        if synced:
            await self._clear_intent(completed)

        logger.info(
            "purchase_finalized",
            payment_id=completed.payment_id,
            user_id=str(completed.user_id),
            course_id=str(completed.course_id),
            amount=str(completed.amount),
            backrefs_synced=synced,
        )
        return FinalizeResult(
            status=FinalizeStatus.COMPLETED,
            purchase=completed,
            backrefs_synced=synced,
        )

    async def _clear_intent(self, purchase: Purchase) -> None:
        try:
            await self.ledger.clear_repair(purchase.user_id, purchase.course_id)
        except Exception:
            # Left for reconcile_pending, which replays it harmlessly
            logger.exception(
                "enrollment_intent_clear_failed",
                payment_id=purchase.payment_id,
            )

    # ==========================================================================
    # Free and Manual Enrollment
    # ==========================================================================

    async def enroll_free(self, user_id: UUID, course_id: UUID) -> EnrollmentResult:
        """Enroll a user in a free course.

        Enrolling again is a success flagged already_enrolled.

        Raises:
            NotFoundError: If the course does not exist
            NotFreeError: If the course has a price
        """
        price = await self.catalog.get_price(course_id)
        if price != 0:
            raise NotFreeError

        existing = await self.ledger.get_completed_purchase(user_id, course_id)
        if existing is not None:
            logger.info(
                "free_enrollment_already_enrolled",
                user_id=str(user_id),
                course_id=str(course_id),
            )
            return EnrollmentResult(purchase=existing, already_enrolled=True)

        purchase, _ = await self.ledger.insert_purchase(
            create_free_purchase(user_id, course_id, currency=self.default_currency)
        )
        result = await self.finalize_enrollment(purchase)
        return await self._enrollment_result(purchase, result)

    async def enroll_manual(
        self,
        user_id: UUID,
        course_id: UUID,
        granted_by: UUID,
        amount: Decimal | None = None,
    ) -> EnrollmentResult:
        """Grant a user access to a course without payment (admin).

        Raises:
            NotFoundError: If the course does not exist
        """
        await self.catalog.require_course(course_id)

        existing = await self.ledger.get_completed_purchase(user_id, course_id)
        if existing is not None:
            return EnrollmentResult(purchase=existing, already_enrolled=True)

        purchase, _ = await self.ledger.insert_purchase(
            create_manual_purchase(
                user_id, course_id, amount=amount, currency=self.default_currency
            )
        )
        result = await self.finalize_enrollment(purchase)

        logger.info(
            "manual_enrollment_granted",
            user_id=str(user_id),
            course_id=str(course_id),
            granted_by=str(granted_by),
            status=result.status.value,
        )

        return await self._enrollment_result(purchase, result)

    async def _enrollment_result(
        self,
        attempted: Purchase,
        result: FinalizeResult,
    ) -> EnrollmentResult:
        if result.status == FinalizeStatus.COMPLETED and result.purchase:
            return EnrollmentResult(
                purchase=result.purchase, backrefs_synced=result.backrefs_synced
            )

        if result.status == FinalizeStatus.ALREADY_ENROLLED:
            # Another payment enrolled the user meanwhile; retire this attempt
            await self.ledger.mark_purchase_failed(attempted.payment_id)

        return EnrollmentResult(
            purchase=result.purchase or attempted, already_enrolled=True
        )

    # ==========================================================================
    # Back-references and Reconciliation
    # ==========================================================================

    async def _sync_backrefs(self, purchase: Purchase) -> bool:
        """Add the enrollment to both back-reference sets.

        Returns:
            False when a write failed and a repair was recorded
        """
        try:
            await self.users.add_enrolled_course(purchase.user_id, purchase.course_id)
            await self.catalog.add_enrolled_student(purchase.course_id, purchase.user_id)
        except Exception as e:
            logger.exception(
                "enrollment_backref_failed",
                payment_id=purchase.payment_id,
                user_id=str(purchase.user_id),
                course_id=str(purchase.course_id),
                error_type=type(e).__name__,
            )
            try:
                await self.ledger.record_repair(purchase, reason=type(e).__name__)
            except Exception:
                logger.exception(
                    "enrollment_repair_record_failed",
                    payment_id=purchase.payment_id,
                )
            return False
        return True

    async def reconcile_user(self, user_id: UUID) -> ReconcileReport:
        """Re-apply back-references for every completed purchase of a user."""
        report = ReconcileReport()

        for purchase in await self.ledger.list_completed_purchases(user_id):
            report.processed += 1
            if not await self.catalog.course_exists(purchase.course_id):
                report.skipped += 1
                await self.ledger.clear_repair(user_id, purchase.course_id)
                continue

            if await self._sync_backrefs(purchase):
                report.repaired += 1
                await self.ledger.clear_repair(user_id, purchase.course_id)
            else:
                report.failed += 1

        logger.info(
            "user_enrollments_reconciled",
            user_id=str(user_id),
            processed=report.processed,
            repaired=report.repaired,
            failed=report.failed,
        )

        return report

    async def reconcile_pending(self) -> ReconcileReport:
        """Replay every recorded back-reference failure."""
        report = ReconcileReport()

        for repair in await self.ledger.get_all_repairs():
            report.processed += 1
            purchase = await self.ledger.get_purchase(repair.payment_id)

            if (
                purchase is None
                or not purchase.is_completed
                or not await self.catalog.course_exists(repair.course_id)
            ):
                logger.warning(
                    "enrollment_repair_skipped",
                    user_id=str(repair.user_id),
                    course_id=str(repair.course_id),
                    payment_id=repair.payment_id,
                )
                report.skipped += 1
                await self.ledger.clear_repair(repair.user_id, repair.course_id)
                continue

            if await self._sync_backrefs(purchase):
                report.repaired += 1
                await self.ledger.clear_repair(repair.user_id, repair.course_id)
            else:
                report.failed += 1

        logger.info(
            "pending_enrollments_reconciled",
            processed=report.processed,
            repaired=report.repaired,
            skipped=report.skipped,
            failed=report.failed,
        )

        return report
