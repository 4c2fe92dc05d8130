"""Tests for the expired reservation reaper."""

from datetime import timedelta

import pytest

from cardshop.core.security_core import Buyer
from cardshop.core.system_locks import IntervalThrottle
from cardshop.core.utils_core import utcnow
from cardshop.services.expiry_service import maybe_release_expired, release_expired_orders
from cardshop.services.reservation_service import reserve
from cardshop.services.settlement_service import settle


class TestReleaseExpiredOrders:
    async def test_overdue_reservation_returns_cards(self, db, make_product, gateway, notifier, sink, buyer, fetch):
        product_id = await make_product(cards=3)
        t0 = utcnow() - timedelta(minutes=1)
        result = await reserve(db, product_id=product_id, quantity=2, buyer=buyer, gateway=gateway, notifier=notifier, now=t0)

        report = await release_expired_orders(db, now=t0 + timedelta(minutes=6), notifier=notifier)

        assert report.expired_orders == [result.order.order_no]
        assert report.released_cards == 2
        assert (await fetch.order(result.order.order_no)).status == "expired"
        cards = await fetch.cards(product_id)
        assert [c.status for c in cards] == ["available"] * 3
        assert all(c.order_id is None and c.locked_at is None for c in cards)

        await notifier.drain()
        assert sink.names() == ["order_created", "order_expired"]

    async def test_reservation_within_ttl_is_kept(self, db, make_product, gateway, notifier, buyer, fetch):
        product_id = await make_product(cards=3)
        t0 = utcnow()
        result = await reserve(db, product_id=product_id, quantity=1, buyer=buyer, gateway=gateway, notifier=notifier, now=t0)

        report = await release_expired_orders(db, now=t0 + timedelta(minutes=4), notifier=notifier)

        assert report.expired_orders == []
        assert (await fetch.order(result.order.order_no)).status == "pending"

    async def test_paid_orders_are_untouched(self, db, make_product, gateway, notifier, buyer, fetch):
        product_id = await make_product(price="3.00", cards=1)
        t0 = utcnow() - timedelta(minutes=30)
        result = await reserve(db, product_id=product_id, quantity=1, buyer=buyer, gateway=gateway, notifier=notifier, now=t0)
        await settle(db, order_no=result.order.order_no, trade_no="T1", paid_amount="3.00", notifier=notifier)

        report = await release_expired_orders(db, notifier=notifier)

        assert report.expired_orders == []
        assert (await fetch.order(result.order.order_no)).status == "completed"
        assert await fetch.card_statuses(product_id) == ["sold"]

    async def test_released_cards_can_be_reserved_again(self, db, make_product, gateway, notifier, fetch):
        product_id = await make_product(cards=2)
        t0 = utcnow() - timedelta(minutes=10)
        first = await reserve(
            db, product_id=product_id, quantity=2, buyer=Buyer(user_id="1"), gateway=gateway, notifier=notifier, now=t0
        )
        await release_expired_orders(db, notifier=notifier)

        second = await reserve(
            db, product_id=product_id, quantity=2, buyer=Buyer(user_id="2"), gateway=gateway, notifier=notifier
        )

        assert sorted(second.card_ids) == sorted(first.card_ids)
        assert (await fetch.order(first.order.order_no)).status == "expired"

    async def test_second_sweep_finds_nothing(self, db, make_product, gateway, notifier, buyer):
        product_id = await make_product(cards=1)
        t0 = utcnow() - timedelta(minutes=10)
        await reserve(db, product_id=product_id, quantity=1, buyer=buyer, gateway=gateway, notifier=notifier, now=t0)

        first = await release_expired_orders(db, notifier=notifier)
        second = await release_expired_orders(db, notifier=notifier)

        assert len(first.expired_orders) == 1
        assert second.expired_orders == []
        assert second.released_cards == 0


class TestMaybeReleaseExpired:
    async def test_throttled_between_runs(self, db, notifier):
        ticks = iter([0.0, 10.0, 61.0])
        throttle = IntervalThrottle(60, clock=lambda: next(ticks))

        assert await maybe_release_expired(db, throttle=throttle, notifier=notifier) is not None
        assert await maybe_release_expired(db, throttle=throttle, notifier=notifier) is None
        assert await maybe_release_expired(db, throttle=throttle, notifier=notifier) is not None

    async def test_failure_is_swallowed(self, db, notifier, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("db down")

        monkeypatch.setattr("cardshop.services.expiry_service.release_expired_orders", boom)

        assert await maybe_release_expired(db, throttle=IntervalThrottle(0), notifier=notifier) is None


class TestIntervalThrottle:
    def test_first_call_passes(self):
        assert IntervalThrottle(60, clock=lambda: 5.0).try_acquire()

    def test_passes_again_after_interval(self):
        ticks = iter([5.0, 30.0, 65.0])
        throttle = IntervalThrottle(60, clock=lambda: next(ticks))

        assert [throttle.try_acquire() for _ in range(3)] == [True, False, True]

    @pytest.mark.parametrize("interval", [0, 0.0])
    def test_zero_interval_never_blocks(self, interval):
        throttle = IntervalThrottle(interval, clock=lambda: 1.0)

        assert all(throttle.try_acquire() for _ in range(3))
