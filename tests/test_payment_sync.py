"""Tests for gateway reconciliation of pending orders."""

from datetime import timedelta

import httpx
import pytest

from cardshop.core.errors_core import ConcurrencyConflictError
from cardshop.core.utils_core import utcnow
from cardshop.services import payment_sync_service
from cardshop.services.expiry_service import release_expired_orders
from cardshop.services.payment_sync_service import (
    SyncOutcome,
    sync_pending_payment,
    sync_stale_pending_orders,
)
from cardshop.services.reservation_service import reserve
from cardshop.services.settlement_service import settle


@pytest.fixture
def old_order(db, make_product, gateway, notifier, buyer):
    """pending-заказ, созданный минуту назад (за пределами grace-периода)."""

    async def _create(*, price="4.00", quantity=1, age=timedelta(minutes=1)):
        product_id = await make_product(price=price, cards=3)
        result = await reserve(
            db,
            product_id=product_id,
            quantity=quantity,
            buyer=buyer,
            gateway=gateway,
            notifier=notifier,
            now=utcnow() - age,
        )
        return product_id, result.order

    return _create


class TestSyncPendingPayment:
    async def test_paid_in_gateway_settles(self, db, old_order, gateway, fake_ldc, notifier, fetch):
        product_id, order = await old_order(price="4.00")
        fake_ldc.mark_paid(order.order_no, "4.00", trade_no="T-42")

        result = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier)

        assert result.outcome is SyncOutcome.SETTLED
        stored = await fetch.order(order.order_no)
        assert stored.status == "completed"
        assert stored.trade_no == "T-42"
        assert (await fetch.card_statuses(product_id)).count("sold") == 1

    async def test_unpaid_in_gateway(self, db, old_order, gateway, fake_ldc, notifier, fetch):
        _, order = await old_order()
        fake_ldc.mark_paid(order.order_no, "4.00", status=0)

        result = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier)

        assert result.outcome is SyncOutcome.UNPAID
        assert (await fetch.order(order.order_no)).status == "pending"

    async def test_unknown_to_gateway(self, db, old_order, gateway, notifier, fetch):
        _, order = await old_order()

        result = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier)

        assert result.outcome is SyncOutcome.INCONCLUSIVE
        assert result.detail == "unknown_to_gateway"
        assert (await fetch.order(order.order_no)).status == "pending"

    async def test_gateway_failure_is_swallowed(self, db, old_order, gateway, fake_ldc, notifier, fetch):
        _, order = await old_order()
        fake_ldc.query_error = httpx.ReadTimeout("timed out")

        result = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier)

        assert result.outcome is SyncOutcome.INCONCLUSIVE
        assert (await fetch.order(order.order_no)).status == "pending"

    async def test_paid_with_different_amount_is_not_settled(
        self, db, old_order, gateway, fake_ldc, notifier, fetch
    ):
        _, order = await old_order(price="4.00")
        fake_ldc.mark_paid(order.order_no, "0.40")

        result = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier)

        assert result.outcome is SyncOutcome.INCONCLUSIVE
        assert result.detail == "amount_mismatch"
        assert (await fetch.order(order.order_no)).status == "pending"

    async def test_fresh_order_is_not_queried(self, db, old_order, gateway, fake_ldc, notifier):
        _, order = await old_order(age=timedelta(seconds=0))

        result = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier, grace_seconds=60)

        assert result.outcome is SyncOutcome.SKIPPED
        assert fake_ldc.query_calls == 0


class TestSyncStalePendingOrders:
    async def test_batch_settles_only_paid(self, db, old_order, gateway, fake_ldc, notifier, fetch):
        _, paid = await old_order(price="1.00")
        _, unpaid = await old_order(price="2.00")
        fake_ldc.mark_paid(paid.order_no, "1.00")

        results = await sync_stale_pending_orders(db, gateway=gateway, notifier=notifier)

        by_order = {r.order_no: r.outcome for r in results}
        assert by_order == {paid.order_no: SyncOutcome.SETTLED, unpaid.order_no: SyncOutcome.INCONCLUSIVE}
        assert (await fetch.order(paid.order_no)).status == "completed"
        assert (await fetch.order(unpaid.order_no)).status == "pending"


class TestSyncAfterFailedSettlement:
    async def test_order_expired_meanwhile_is_inconclusive(
        self, db, session_factory, old_order, gateway, fake_ldc, notifier, fetch
    ):
        product_id, order = await old_order(age=timedelta(minutes=10))
        order_no = order.order_no
        fake_ldc.mark_paid(order_no, "4.00")
        async with session_factory() as other:
            await release_expired_orders(other, notifier=notifier)

        result = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier)

        assert result.order_no == order_no
        assert result.outcome is SyncOutcome.INCONCLUSIVE
        assert result.detail == "StaleConfirmationError"
        assert (await fetch.order(order_no)).status == "expired"
        assert await fetch.card_statuses(product_id) == ["available"] * 3

    async def test_batch_continues_after_rolled_back_settlement(
        self, db, old_order, gateway, fake_ldc, notifier, fetch, monkeypatch
    ):
        _, first = await old_order(age=timedelta(minutes=3))
        _, second = await old_order(age=timedelta(minutes=2))
        first_no, second_no = first.order_no, second.order_no
        fake_ldc.mark_paid(first_no, "4.00")
        fake_ldc.mark_paid(second_no, "4.00")
        calls = []

        async def fail_first(session, **kwargs):
            calls.append(kwargs["order_no"])
            if len(calls) == 1:
                async with session.begin():
                    raise ConcurrencyConflictError()
            return await settle(session, **kwargs)

        monkeypatch.setattr(payment_sync_service, "settle", fail_first)

        results = await sync_stale_pending_orders(db, gateway=gateway, notifier=notifier)

        assert [(r.order_no, r.outcome) for r in results] == [
            (first_no, SyncOutcome.INCONCLUSIVE),
            (second_no, SyncOutcome.SETTLED),
        ]
        assert (await fetch.order(first_no)).status == "pending"
        assert (await fetch.order(second_no)).status == "completed"
