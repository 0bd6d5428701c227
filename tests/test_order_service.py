"""Order aggregate: creation, status machine, deletion, coupons and completion."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    DomainValidationError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from app.models.candidate_models import Candidate
from app.models.coupon_models import Coupon
from app.models.order_models import Order, OrderStatus
from app.models.payment_models import PaymentMethod
from app.schemas.payment_schemas import PaymentCreate
from app.schemas.review_schemas import ReviewCreate
from app.services import candidate_service, coupon_service, order_service, payment_service, review_service
from tests.factories import make_coupon, make_upload, order_payload, passed


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar()


async def _reload_coupon(db, coupon_id):
    result = await db.execute(
        select(Coupon).where(Coupon.id == coupon_id).execution_options(populate_existing=True)
    )
    return result.scalars().one()


class TestCreateOrder:
    async def test_coupon_claimed_by_user_is_applied(self, db, users, services):
        template = await make_coupon(db, code="ABC123", discount_percent=10)
        claim = await coupon_service.claim_coupon(db, template.id, users.alice.id)

        order = await order_service.create_order(
            db, order_payload([services.criminal.id], coupon_code="ABC123"), users.alice
        )

        assert order.sub_total_price == Decimal("1000.00")
        assert order.promotion_discount == Decimal("100.00")
        assert order.coupon_discount == Decimal("90.00")
        # the client's total is persisted as sent
        assert order.total_price == Decimal("900.00")
        assert order.coupon_id == claim.id
        assert order.order_status == OrderStatus.AWAITING_PAYMENT
        assert order.payment is None

        used = await _reload_coupon(db, claim.id)
        assert used.is_used is True
        assert used.used_in_order_id == order.id

    async def test_invalid_coupon_creates_nothing(self, db, users, services):
        await make_coupon(db, code="ABC123")

        with pytest.raises(InvalidStateError):
            await order_service.create_order(
                db, order_payload([services.criminal.id], candidate_count=2, coupon_code="ABC123"), users.alice
            )

        assert await _count(db, Order) == 0
        assert await _count(db, Candidate) == 0

    async def test_unknown_service_rolls_back_everything(self, db, users, services):
        with pytest.raises(NotFoundError):
            await order_service.create_order(db, order_payload([999], candidate_count=2), users.alice)

        assert await _count(db, Order) == 0
        assert await _count(db, Candidate) == 0

    async def test_candidates_and_snapshot(self, db, users, services):
        order = await order_service.create_order(
            db, order_payload([services.criminal.id, services.education.id], candidate_count=2), users.alice
        )

        assert len(order.candidates) == 2
        assert {s.id for s in order.candidates[0].services} == {services.criminal.id, services.education.id}
        assert [line["service_id"] for line in order.services] == [services.criminal.id, services.education.id]
        assert order.user_id == users.alice.id

    async def test_mark_used_failure_keeps_order(self, db, users, services, monkeypatch):
        await make_coupon(db, code="SAVE10", is_public=False, claimed_by=users.alice.id)

        async def broken(*args, **kwargs):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(order_service, "mark_as_used", broken)

        order = await order_service.create_order(
            db, order_payload([services.criminal.id], coupon_code="SAVE10"), users.alice
        )

        assert order.id is not None
        assert order.coupon_discount == Decimal("90.00")


def test_tracking_number_format():
    number = order_service.generate_tracking_number()

    assert number.startswith("SCT")
    assert number[3:].isdigit()
    assert len(number) >= 14


class TestStatus:
    async def test_rejects_unknown_status(self, db, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        with pytest.raises(DomainValidationError):
            await order_service.update_order_status(db, order.id, "shipped")

    @pytest.mark.parametrize("status", [s.value for s in OrderStatus])
    async def test_admin_may_set_any_status(self, db, users, services, status):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        updated = await order_service.update_order_status(db, order.id, status, users.admin)

        assert updated.order_status == OrderStatus(status)

    async def test_start_processing_requires_verified_payment(self, db, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        with pytest.raises(InvalidStateError):
            await order_service.start_processing(db, order.id)

        await order_service.update_order_status(db, order.id, "payment_verified")
        order = await order_service.start_processing(db, order.id)
        assert order.order_status == OrderStatus.PROCESSING


class TestDeleteOrder:
    @pytest.mark.parametrize("status", [s for s in OrderStatus if s != OrderStatus.AWAITING_PAYMENT])
    async def test_rejected_outside_awaiting_payment(self, db, users, services, status):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        order = await order_service.update_order_status(db, order.id, status.value)

        with pytest.raises(InvalidStateError):
            order_service.ensure_order_deletable(order, users.alice)

    async def test_only_owner_or_admin(self, db, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        with pytest.raises(ForbiddenError):
            order_service.ensure_order_deletable(order, users.bob)
        order_service.ensure_order_deletable(order, users.alice)
        order_service.ensure_order_deletable(order, users.admin)

    async def test_delete_releases_coupon_and_candidates(self, db, storage, users, services):
        coupon = await make_coupon(db, code="SAVE10", is_public=False, claimed_by=users.alice.id)
        order = await order_service.create_order(
            db, order_payload([services.criminal.id], candidate_count=2, coupon_code="SAVE10"), users.alice
        )
        await candidate_service.upload_summary_result(
            db, storage, order.candidates[0].id, make_upload(), passed(), users.admin
        )

        result = await order_service.delete_order(db, storage, order.id)

        assert result["success"] is True
        assert result["coupon_released"] is True
        assert len(result["cleanup"]["succeeded"]) == 2
        assert result["cleanup"]["failed"] == []
        assert await _count(db, Order) == 0
        assert await _count(db, Candidate) == 0
        assert storage.files == {}
        released = await _reload_coupon(db, coupon.id)
        assert released.is_used is False
        assert released.used_at is None
        assert released.used_in_order_id is None

    async def test_candidate_failure_does_not_stop_deletion(self, db, storage, users, services, monkeypatch):
        order = await order_service.create_order(
            db, order_payload([services.criminal.id], candidate_count=2), users.alice
        )
        failing_id = order.candidates[0].id
        real_delete = order_service.delete_candidate

        async def flaky_delete(db_, storage_, candidate_id):
            if candidate_id == failing_id:
                raise RuntimeError("cannot delete")
            return await real_delete(db_, storage_, candidate_id)

        monkeypatch.setattr(order_service, "delete_candidate", flaky_delete)

        result = await order_service.delete_order(db, storage, order.id)

        assert result["success"] is True
        assert result["coupon_released"] is False
        assert result["cleanup"]["failed"][0]["task"] == f"delete_candidate:{failing_id}"
        assert len(result["cleanup"]["succeeded"]) == 1
        assert await _count(db, Order) == 0

    async def test_missing_order(self, db, storage):
        with pytest.raises(NotFoundError):
            await order_service.delete_order(db, storage, 999)

    async def test_delete_removes_payment_receipt(self, db, storage, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        payment = await payment_service.create_payment(
            db,
            storage,
            PaymentCreate(order_id=order.id, payment_method=PaymentMethod.BANK_TRANSFER),
            users.alice,
            receipt=make_upload(filename="slip.png", content_type="image/png"),
        )
        receipt_path = payment.transfer_info["receipt_path"]

        result = await order_service.delete_order(db, storage, order.id)

        assert receipt_path in storage.deleted
        assert receipt_path not in storage.files
        assert f"delete_receipt:{receipt_path}" in result["cleanup"]["succeeded"]
        assert await _count(db, Order) == 0


class TestOrderCoupon:
    async def test_apply_then_remove_restores_total(self, db, users, services):
        coupon = await make_coupon(db, code="SAVE10", is_public=False, claimed_by=users.alice.id)
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        before = order.total_price

        applied = await order_service.apply_coupon(db, order.id, "SAVE10", users.alice)

        assert applied.coupon_discount == Decimal("90.00")
        assert applied.total_price == before - Decimal("90")
        assert applied.coupon_id == coupon.id
        used = await _reload_coupon(db, coupon.id)
        assert used.is_used is True
        assert used.used_in_order_id == order.id

        removed = await order_service.remove_coupon(db, order.id, users.alice)

        assert removed.total_price == before
        assert removed.coupon_discount == Decimal("0.00")
        assert removed.coupon_id is None
        released = await _reload_coupon(db, coupon.id)
        assert released.is_used is False

    async def test_apply_requires_awaiting_payment(self, db, users, services):
        await make_coupon(db, code="SAVE10", is_public=False, claimed_by=users.alice.id)
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        await order_service.update_order_status(db, order.id, "pending_verification")

        with pytest.raises(InvalidStateError):
            await order_service.apply_coupon(db, order.id, "SAVE10", users.alice)

    async def test_second_coupon_rejected(self, db, users, services):
        await make_coupon(db, code="SAVE10", is_public=False, claimed_by=users.alice.id)
        await make_coupon(db, code="SAVE20", is_public=False, claimed_by=users.alice.id, discount_percent=20)
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        await order_service.apply_coupon(db, order.id, "SAVE10", users.alice)

        with pytest.raises(InvalidStateError):
            await order_service.apply_coupon(db, order.id, "SAVE20", users.alice)

    async def test_remove_without_coupon(self, db, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        with pytest.raises(InvalidStateError):
            await order_service.remove_coupon(db, order.id, users.alice)

    async def test_other_user_cannot_apply(self, db, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        with pytest.raises(ForbiddenError):
            await order_service.apply_coupon(db, order.id, "SAVE10", users.bob)


class TestCompletionReconciliation:
    async def _complete(self, db, storage, users, services, candidate_id):
        await candidate_service.upload_service_result(
            db, storage, candidate_id, services.criminal.id, make_upload(), passed(), users.admin
        )
        await candidate_service.upload_summary_result(db, storage, candidate_id, make_upload(), passed(), users.admin)

    async def test_order_completes_when_all_candidates_complete(self, db, storage, users, services):
        order = await order_service.create_order(
            db, order_payload([services.criminal.id], candidate_count=2), users.alice
        )
        await order_service.update_order_status(db, order.id, "processing")
        first, second = (c.id for c in order.candidates)

        await self._complete(db, storage, users, services, first)
        assert (await order_service.get_order(db, order.id)).order_status == OrderStatus.PROCESSING

        await self._complete(db, storage, users, services, second)
        assert (await order_service.get_order(db, order.id)).order_status == OrderStatus.COMPLETED

        await candidate_service.delete_summary_result(db, storage, second)
        assert (await order_service.get_order(db, order.id)).order_status == OrderStatus.PROCESSING

    async def test_cancelled_order_is_left_alone(self, db, storage, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        await order_service.update_order_status(db, order.id, "cancelled")

        await self._complete(db, storage, users, services, order.candidates[0].id)

        assert (await order_service.get_order(db, order.id)).order_status == OrderStatus.CANCELLED

    async def test_reconcile_is_idempotent(self, db, storage, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        await order_service.update_order_status(db, order.id, "processing")
        await self._complete(db, storage, users, services, order.candidates[0].id)

        assert await order_service.reconcile_order_completion(db, order.id) == OrderStatus.COMPLETED
        assert await order_service.reconcile_order_completion(db, order.id) == OrderStatus.COMPLETED

    async def test_unpaid_order_is_not_completed(self, db, storage, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        await self._complete(db, storage, users, services, order.candidates[0].id)

        assert (await order_service.get_order(db, order.id)).order_status == OrderStatus.AWAITING_PAYMENT
        with pytest.raises(InvalidStateError):
            await review_service.create_review(db, ReviewCreate(order_id=order.id, rating=5), users.alice)

    async def test_verified_payment_completes_finished_order(self, db, storage, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        await self._complete(db, storage, users, services, order.candidates[0].id)
        payment = await payment_service.create_payment(
            db, storage, PaymentCreate(order_id=order.id, payment_method=PaymentMethod.BANK_TRANSFER), users.alice
        )
        assert (await order_service.get_order(db, order.id)).order_status == OrderStatus.PENDING_VERIFICATION

        await payment_service.update_payment_status(db, payment.id, "completed", users.admin)

        assert (await order_service.get_order(db, order.id)).order_status == OrderStatus.COMPLETED

    async def test_handler_failure_does_not_break_upload(self, db, storage, users, services, monkeypatch):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        async def broken(db_, order_id):
            raise RuntimeError("reconcile failed")

        monkeypatch.setattr(order_service, "reconcile_order_completion", broken)

        candidate = await candidate_service.upload_summary_result(
            db, storage, order.candidates[0].id, make_upload(), passed(), users.admin
        )

        assert candidate.summary_result is not None


class TestReviewableOrders:
    async def test_completed_unreviewed_orders_only(self, db, users, services):
        done = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        reviewed = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)
        for order in (done, reviewed):
            await order_service.update_order_status(db, order.id, "completed")
        await order_service.mark_order_as_reviewed(db, reviewed.id, review_id=1)

        orders = await order_service.find_reviewable_orders_by_user(db, users.alice.id)

        assert [o.id for o in orders] == [done.id]

    async def test_mark_as_reviewed(self, db, users, services):
        order = await order_service.create_order(db, order_payload([services.criminal.id]), users.alice)

        order = await order_service.mark_order_as_reviewed(db, order.id, review_id=7)

        assert order.is_reviewed is True
        assert order.reviewed_at is not None
        assert order.review_id == 7
