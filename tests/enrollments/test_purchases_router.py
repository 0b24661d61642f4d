"""HTTP tests for purchase, webhook, progress and admin endpoints."""

from decimal import Decimal
from uuid import UUID, uuid4

from fastapi.testclient import TestClient


def _create_pending(client: TestClient, headers: dict, course_id: UUID, payment_id: str):
    return client.post(
        "/v1/purchases/pending",
        json={
            "course_id": str(course_id),
            "amount": "499.00",
            "payment_method": "razorpay",
            "payment_id": payment_id,
        },
        headers=headers,
    )


class TestPaymentWebhooks:
    """Tests for the gateway webhooks."""

    def test_requires_secret(self, client: TestClient):
        response = client.post(
            "/v1/purchases/webhook/payment-completed",
            json={"payment_id": "pay_001"},
        )
        assert response.status_code == 401

    def test_rejects_wrong_secret(self, client: TestClient):
        response = client.post(
            "/v1/purchases/webhook/payment-completed",
            json={"payment_id": "pay_001"},
            headers={"X-Webhook-Secret": "not-the-secret"},
        )
        assert response.status_code == 401

    def test_redelivered_confirmation(
        self,
        client: TestClient,
        make_course,
        student_headers: dict,
        webhook_headers: dict,
    ):
        course = make_course(price=499)
        assert _create_pending(client, student_headers, course.id, "pay_001").status_code == 201

        first = client.post(
            "/v1/purchases/webhook/payment-completed",
            json={"payment_id": "pay_001", "amount": "499.00"},
            headers=webhook_headers,
        )
        second = client.post(
            "/v1/purchases/webhook/payment-completed",
            json={"payment_id": "pay_001", "amount": "499.00"},
            headers=webhook_headers,
        )

        assert first.status_code == 200
        assert first.json()["status"] == "completed"
        assert second.status_code == 200
        assert second.json()["status"] == "already_completed"

        listing = client.get("/v1/purchases", headers=student_headers).json()
        assert listing["total"] == 1

    def test_unknown_payment(self, client: TestClient, webhook_headers: dict):
        response = client.post(
            "/v1/purchases/webhook/payment-completed",
            json={"payment_id": "pay_missing"},
            headers=webhook_headers,
        )
        assert response.status_code == 404

    def test_payment_failed(
        self,
        client: TestClient,
        make_course,
        student_headers: dict,
        webhook_headers: dict,
    ):
        course = make_course(price=499)
        _create_pending(client, student_headers, course.id, "pay_001")

        response = client.post(
            "/v1/purchases/webhook/payment-failed",
            json={"payment_id": "pay_001", "reason": "card_declined"},
            headers=webhook_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "failed"


class TestPurchaseEndpoints:
    """Tests for student purchase endpoints."""

    def test_requires_authentication(self, client: TestClient):
        response = client.get("/v1/purchases")
        assert response.status_code == 401

    def test_enroll_free(self, client: TestClient, make_course, student_headers: dict):
        course = make_course(price=0)

        first = client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )
        second = client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )

        assert first.status_code == 200
        assert first.json()["already_enrolled"] is False
        assert first.json()["purchase"]["status"] == "completed"
        assert Decimal(first.json()["purchase"]["amount"]) == 0
        assert second.status_code == 200
        assert second.json()["already_enrolled"] is True

    def test_enroll_free_priced_course(
        self, client: TestClient, make_course, student_headers: dict
    ):
        course = make_course(price=499)

        response = client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )

        assert response.status_code == 400

    def test_enroll_free_unknown_course(self, client: TestClient, student_headers: dict):
        response = client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(uuid4())},
            headers=student_headers,
        )
        assert response.status_code == 404

    def test_pending_after_enrollment_conflicts(
        self, client: TestClient, make_course, student_headers: dict
    ):
        course = make_course(price=0)
        client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )

        response = _create_pending(client, student_headers, course.id, "pay_001")

        assert response.status_code == 409

    def test_purchase_status(self, client: TestClient, make_course, student_headers: dict):
        course = make_course(price=0, lectures=3)

        before = client.get(
            f"/v1/purchases/course/{course.id}/status", headers=student_headers
        )
        client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )
        after = client.get(
            f"/v1/purchases/course/{course.id}/status", headers=student_headers
        )

        assert before.json()["is_purchased"] is False
        assert after.json()["is_purchased"] is True
        assert after.json()["is_free"] is True
        assert after.json()["total_lectures"] == 3


class TestProgressEndpoints:
    """Per-course progress routes are gated on a completed purchase."""

    def test_not_enrolled_is_forbidden(
        self, client: TestClient, make_course, student_headers: dict
    ):
        course = make_course(lectures=2)

        response = client.patch(
            f"/v1/progress/{course.id}/lectures/{course.lecture_ids[0]}",
            headers=student_headers,
        )

        assert response.status_code == 403

    def test_enrolled_student_records_progress(
        self, client: TestClient, make_course, student_headers: dict
    ):
        course = make_course(lectures=2)
        client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )
        url = f"/v1/progress/{course.id}/lectures/{course.lecture_ids[0]}"

        first = client.patch(url, headers=student_headers)
        again = client.patch(url, headers=student_headers)

        assert first.status_code == 200
        assert again.json()["completion_percentage"] == 50
        assert list(again.json()["lecture_progress"]) == [str(course.lecture_ids[0])]

        listing = client.get("/v1/progress", headers=student_headers).json()
        assert listing["total"] == 1
        assert listing["items"][0]["completion_percentage"] == 50

    def test_unknown_lecture(self, client: TestClient, make_course, student_headers: dict):
        course = make_course(lectures=1)
        client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )

        response = client.patch(
            f"/v1/progress/{course.id}/lectures/{uuid4()}", headers=student_headers
        )

        assert response.status_code == 404

    def test_get_progress_not_started(
        self, client: TestClient, make_course, student_headers: dict
    ):
        course = make_course(lectures=2)
        client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )

        response = client.get(f"/v1/progress/{course.id}", headers=student_headers)

        assert response.status_code == 200
        assert response.json()["completion_percentage"] == 0
        assert response.json()["lecture_progress"] == {}

    def test_get_progress_not_enrolled(
        self, client: TestClient, make_course, student_headers: dict
    ):
        course = make_course(lectures=2)

        response = client.get(f"/v1/progress/{course.id}", headers=student_headers)

        assert response.status_code == 403

    def test_invalid_token(self, client: TestClient, make_course):
        course = make_course()

        response = client.get(
            f"/v1/progress/{course.id}",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401


class TestAdminEndpoints:
    """Tests for admin enrollment endpoints."""

    def test_student_cannot_grant(
        self, client: TestClient, make_course, student_headers: dict, user_id: UUID
    ):
        course = make_course(price=499)

        response = client.post(
            "/v1/admin/enrollments/grant",
            json={"user_id": str(user_id), "course_id": str(course.id)},
            headers=student_headers,
        )

        assert response.status_code == 403

    def test_admin_grant_enables_progress(
        self,
        client: TestClient,
        make_course,
        admin_headers: dict,
        student_headers: dict,
        user_id: UUID,
    ):
        course = make_course(price=499)

        grant = client.post(
            "/v1/admin/enrollments/grant",
            json={"user_id": str(user_id), "course_id": str(course.id)},
            headers=admin_headers,
        )
        progress = client.patch(
            f"/v1/progress/{course.id}/complete", headers=student_headers
        )

        assert grant.status_code == 200
        assert grant.json()["purchase"]["payment_method"] == "manual"
        assert progress.status_code == 200
        assert progress.json()["is_completed"] is True

    def test_reconcile_user(
        self,
        client: TestClient,
        make_course,
        admin_headers: dict,
        student_headers: dict,
        user_id: UUID,
    ):
        course = make_course(price=0)
        client.post(
            "/v1/purchases/enroll-free",
            json={"course_id": str(course.id)},
            headers=student_headers,
        )

        response = client.post(
            f"/v1/admin/enrollments/reconcile/{user_id}", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        assert response.json()["repaired"] == 1

    def test_instructor_cannot_reconcile(
        self, client: TestClient, instructor_headers: dict, user_id: UUID
    ):
        response = client.post(
            f"/v1/admin/enrollments/reconcile/{user_id}",
            headers=instructor_headers,
        )

        assert response.status_code == 403
