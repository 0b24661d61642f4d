"""Tests for PurchaseLedger.

Covers:
- create_pending_purchase (idempotent retry, payment id reuse)
- has_completed_purchase with the Redis access cache
- mark_purchase_failed
- completed purchase listings resolved against the catalog
"""

from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest

from lms_core.core.exceptions import (
    AlreadyEnrolledError,
    InvariantViolationError,
    NotFoundError,
)
from lms_core.enrollments.coordinator import EnrollmentCoordinator
from lms_core.enrollments.ledger import PurchaseLedger
from lms_core.enrollments.models import PaymentMethod, PurchaseStatus


@pytest.fixture
def mock_redis():
    """Mock Redis client (decode_responses=True)."""
    redis_mock = AsyncMock()
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.setex = AsyncMock(return_value=True)
    redis_mock.delete = AsyncMock(return_value=1)
    return redis_mock


@pytest.fixture
def cached_ledger(cassandra_session, catalog, mock_redis) -> PurchaseLedger:
    return PurchaseLedger(
        session=cassandra_session,
        keyspace="lms_test",
        catalog=catalog,
        redis=mock_redis,
        cache_ttl=120,
    )


async def _pending(ledger: PurchaseLedger, user_id: UUID, course_id: UUID, payment_id: str):
    return await ledger.create_pending_purchase(
        user_id=user_id,
        course_id=course_id,
        amount=Decimal("499.00"),
        method=PaymentMethod.RAZORPAY,
        payment_id=payment_id,
    )


class TestCreatePendingPurchase:
    """Tests for create_pending_purchase."""

    @pytest.mark.asyncio
    async def test_creates_pending_purchase(
        self, ledger: PurchaseLedger, cassandra_session, make_course, user_id: UUID
    ):
        course = make_course(price=499)

        purchase = await _pending(ledger, user_id, course.id, "pay_001")

        assert purchase.status == PurchaseStatus.PENDING
        assert purchase.amount == Decimal("499.00")
        assert purchase.currency == "INR"
        stored = cassandra_session.rows("purchases", payment_id="pay_001")
        assert len(stored) == 1
        assert stored[0]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_retry_with_same_payment_id_returns_existing(
        self, ledger: PurchaseLedger, cassandra_session, make_course, user_id: UUID
    ):
        course = make_course(price=499)

        first = await _pending(ledger, user_id, course.id, "pay_001")
        second = await _pending(ledger, user_id, course.id, "pay_001")

        assert second.purchase_id == first.purchase_id
        assert len(cassandra_session.rows("purchases")) == 1

    @pytest.mark.asyncio
    async def test_payment_id_reused_for_other_pair(
        self, ledger: PurchaseLedger, make_course, user_id: UUID
    ):
        course = make_course(price=499)
        other_course = make_course(price=299)
        await _pending(ledger, user_id, course.id, "pay_001")

        with pytest.raises(InvariantViolationError):
            await _pending(ledger, user_id, other_course.id, "pay_001")

    @pytest.mark.asyncio
    async def test_unknown_course(self, ledger: PurchaseLedger, user_id: UUID):
        with pytest.raises(NotFoundError):
            await _pending(ledger, user_id, uuid4(), "pay_001")

    @pytest.mark.asyncio
    async def test_already_enrolled(
        self,
        ledger: PurchaseLedger,
        coordinator: EnrollmentCoordinator,
        make_course,
        user_id: UUID,
    ):
        course = make_course(price=499)
        await _pending(ledger, user_id, course.id, "pay_001")
        await coordinator.finalize_purchase("pay_001")

        with pytest.raises(AlreadyEnrolledError):
            await _pending(ledger, user_id, course.id, "pay_002")

    @pytest.mark.asyncio
    async def test_several_pending_attempts_allowed(
        self, ledger: PurchaseLedger, cassandra_session, make_course, user_id: UUID
    ):
        """Pending and failed attempts may accumulate for one pair."""
        course = make_course(price=499)

        await _pending(ledger, user_id, course.id, "pay_001")
        await _pending(ledger, user_id, course.id, "pay_002")

        assert len(cassandra_session.rows("purchases", user_id=user_id)) == 2
        assert await ledger.has_completed_purchase(user_id, course.id) is False


class TestHasCompletedPurchase:
    """Tests for the authoritative enrollment check and its cache."""

    @pytest.mark.asyncio
    async def test_pending_purchase_is_not_enrolled(
        self, cached_ledger: PurchaseLedger, mock_redis, make_course, user_id: UUID
    ):
        course = make_course(price=499)
        await _pending(cached_ledger, user_id, course.id, "pay_001")

        assert await cached_ledger.has_completed_purchase(user_id, course.id) is False
        mock_redis.setex.assert_not_called()

    @pytest.mark.asyncio
    async def test_completed_purchase_is_cached(
        self,
        cassandra_session,
        catalog,
        users,
        cached_ledger: PurchaseLedger,
        mock_redis,
        make_course,
        user_id: UUID,
    ):
        course = make_course(price=499)
        coordinator = EnrollmentCoordinator(
            ledger=cached_ledger, catalog=catalog, users=users
        )
        await _pending(cached_ledger, user_id, course.id, "pay_001")
        await coordinator.finalize_purchase("pay_001")

        assert await cached_ledger.has_completed_purchase(user_id, course.id) is True
        mock_redis.setex.assert_awaited_once_with(
            f"access:{user_id}:{course.id}", 120, "1"
        )

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(
        self,
        cached_ledger: PurchaseLedger,
        cassandra_session,
        mock_redis,
        user_id: UUID,
    ):
        mock_redis.get.return_value = "1"
        executed_before = len(cassandra_session.executed)

        assert await cached_ledger.has_completed_purchase(user_id, uuid4()) is True
        assert len(cassandra_session.executed) == executed_before

    @pytest.mark.asyncio
    async def test_status_change_invalidates_cache(
        self, cached_ledger: PurchaseLedger, mock_redis, make_course, user_id: UUID
    ):
        course = make_course(price=499)
        await _pending(cached_ledger, user_id, course.id, "pay_001")

        await cached_ledger.mark_purchase_failed("pay_001")

        mock_redis.delete.assert_any_await(f"access:{user_id}:{course.id}")

    @pytest.mark.asyncio
    async def test_works_without_redis(
        self, ledger: PurchaseLedger, make_course, user_id: UUID
    ):
        course = make_course()

        assert await ledger.has_completed_purchase(user_id, course.id) is False


class TestMarkPurchaseFailed:
    """Tests for mark_purchase_failed."""

    @pytest.mark.asyncio
    async def test_pending_becomes_failed(
        self, ledger: PurchaseLedger, cassandra_session, make_course, user_id: UUID
    ):
        course = make_course(price=499)
        await _pending(ledger, user_id, course.id, "pay_001")

        purchase = await ledger.mark_purchase_failed("pay_001")

        assert purchase.status == PurchaseStatus.FAILED
        assert cassandra_session.rows("purchases")[0]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_completed_purchase_unchanged(
        self,
        ledger: PurchaseLedger,
        coordinator: EnrollmentCoordinator,
        make_course,
        user_id: UUID,
    ):
        course = make_course(price=499)
        await _pending(ledger, user_id, course.id, "pay_001")
        await coordinator.finalize_purchase("pay_001")

        purchase = await ledger.mark_purchase_failed("pay_001")

        assert purchase.status == PurchaseStatus.COMPLETED
        assert await ledger.has_completed_purchase(user_id, course.id) is True

    @pytest.mark.asyncio
    async def test_already_failed_is_noop(
        self, ledger: PurchaseLedger, cassandra_session, make_course, user_id: UUID
    ):
        course = make_course(price=499)
        await _pending(ledger, user_id, course.id, "pay_001")
        await ledger.mark_purchase_failed("pay_001")
        writes_before = len(cassandra_session.writes("purchases"))

        purchase = await ledger.mark_purchase_failed("pay_001")

        assert purchase.status == PurchaseStatus.FAILED
        assert len(cassandra_session.writes("purchases")) == writes_before

    @pytest.mark.asyncio
    async def test_unknown_payment(self, ledger: PurchaseLedger):
        with pytest.raises(NotFoundError):
            await ledger.mark_purchase_failed("pay_missing")

    @pytest.mark.asyncio
    async def test_releases_claim_held_by_failed_payment(
        self, ledger: PurchaseLedger, cassandra_session, make_course, user_id: UUID
    ):
        course = make_course(price=499)
        await _pending(ledger, user_id, course.id, "pay_001")
        await ledger.claim_enrollment(user_id, course.id, "pay_001")

        await ledger.mark_purchase_failed("pay_001")

        assert cassandra_session.rows("enrollment_claims") == []
        holder = await ledger.claim_enrollment(user_id, course.id, "pay_002")
        assert holder == "pay_002"


class TestEnrollmentClaims:
    """Tests for the one-completed-purchase claim."""

    @pytest.mark.asyncio
    async def test_first_claim_wins(self, ledger: PurchaseLedger, user_id: UUID):
        course_id = uuid4()

        assert await ledger.claim_enrollment(user_id, course_id, "pay_001") == "pay_001"
        assert await ledger.claim_enrollment(user_id, course_id, "pay_002") == "pay_001"
        assert await ledger.claim_enrollment(user_id, course_id, "pay_001") == "pay_001"

    @pytest.mark.asyncio
    async def test_release_requires_holder(self, ledger: PurchaseLedger, user_id: UUID):
        course_id = uuid4()
        await ledger.claim_enrollment(user_id, course_id, "pay_001")

        assert await ledger.release_claim(user_id, course_id, "pay_002") is False
        assert await ledger.release_claim(user_id, course_id, "pay_001") is True
        assert await ledger.get_claim(user_id, course_id) is None


class TestCompletedPurchaseListing:
    """Tests for get_completed_purchases and get_purchase_status."""

    @pytest.mark.asyncio
    async def test_lists_only_completed(
        self,
        ledger: PurchaseLedger,
        coordinator: EnrollmentCoordinator,
        make_course,
        user_id: UUID,
    ):
        bought = make_course(price=499, title="Bought")
        pending = make_course(price=299, title="Pending")
        await _pending(ledger, user_id, bought.id, "pay_001")
        await _pending(ledger, user_id, pending.id, "pay_002")
        await coordinator.finalize_purchase("pay_001")

        items = await ledger.get_completed_purchases(user_id)

        assert [item.course.title for item in items] == ["Bought"]
        assert items[0].purchase.payment_id == "pay_001"

    @pytest.mark.asyncio
    async def test_deleted_course_is_left_out(
        self,
        ledger: PurchaseLedger,
        coordinator: EnrollmentCoordinator,
        cassandra_session,
        make_course,
        user_id: UUID,
    ):
        kept = make_course(title="Kept")
        deleted = make_course(title="Deleted")
        await coordinator.enroll_free(user_id, kept.id)
        await coordinator.enroll_free(user_id, deleted.id)

        del cassandra_session.tables["courses"].rows[(deleted.id,)]

        items = await ledger.get_completed_purchases(user_id)

        assert [item.course.id for item in items] == [kept.id]
        # The purchase itself stays in the ledger
        assert len(await ledger.list_completed_purchases(user_id)) == 2

    @pytest.mark.asyncio
    async def test_purchase_status(
        self,
        ledger: PurchaseLedger,
        coordinator: EnrollmentCoordinator,
        make_course,
        user_id: UUID,
    ):
        course = make_course()

        _, before = await ledger.get_purchase_status(user_id, course.id)
        await coordinator.enroll_free(user_id, course.id)
        found, after = await ledger.get_purchase_status(user_id, course.id)

        assert before is None
        assert found.id == course.id
        assert after is not None
        assert after.is_completed

    @pytest.mark.asyncio
    async def test_purchase_status_unknown_course(
        self, ledger: PurchaseLedger, user_id: UUID
    ):
        with pytest.raises(NotFoundError):
            await ledger.get_purchase_status(user_id, uuid4())
