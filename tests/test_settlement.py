"""Tests for idempotent order settlement."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from cardshop.core.errors_core import (
    AmountMismatchError,
    InventoryIntegrityError,
    OrderNotFoundError,
    StaleConfirmationError,
)
from cardshop.core.utils_core import utcnow
from cardshop.models import Card
from cardshop.services.expiry_service import release_expired_orders
from cardshop.services.reservation_service import reserve
from cardshop.services.settlement_service import amounts_match, settle


@pytest.fixture
def reserve_order(db, make_product, gateway, notifier, buyer):
    async def _reserve(*, quantity=2, price="5.00", cards=5, manual_fulfillment=False, now=None):
        product_id = await make_product(price=price, cards=cards, manual_fulfillment=manual_fulfillment)
        result = await reserve(
            db,
            product_id=product_id,
            quantity=quantity,
            buyer=buyer,
            gateway=gateway,
            notifier=notifier,
            now=now,
        )
        return product_id, result.order

    return _reserve


class TestAmountsMatch:
    @pytest.mark.parametrize("paid", ["10", "10.0", "10.00", Decimal("10.000")])
    def test_equal_amounts(self, paid):
        assert amounts_match(paid, Decimal("10.00"))

    @pytest.mark.parametrize("paid", ["10.001", "9.99", "abc", "", None, "-10", "NaN", "inf"])
    def test_different_or_garbage(self, paid):
        assert not amounts_match(paid, Decimal("10.00"))


class TestSettle:
    async def test_completes_order_and_sells_cards(self, db, reserve_order, notifier, sink, fetch):
        product_id, order = await reserve_order(quantity=2, price="5.00")

        result = await settle(db, order_no=order.order_no, trade_no="T-1", paid_amount="10.00", notifier=notifier)

        assert result.already_settled is False
        assert len(result.cards) == 2
        stored = await fetch.order(order.order_no)
        assert stored.status == "completed"
        assert stored.trade_no == "T-1"
        assert stored.paid_at is not None
        assert (await fetch.card_statuses(product_id)).count("sold") == 2
        assert (await fetch.product(product_id)).sales_count == 2

        await notifier.drain()
        assert sink.names() == ["order_created", "payment_succeeded"]

    async def test_manual_fulfillment_stops_at_paid(self, db, reserve_order, notifier, fetch):
        _, order = await reserve_order(quantity=1, manual_fulfillment=True)

        await settle(db, order_no=order.order_no, trade_no="T-1", paid_amount="5.00", notifier=notifier)

        assert (await fetch.order(order.order_no)).status == "paid"

    async def test_repeated_settlement_is_noop(self, db, reserve_order, notifier, sink, fetch):
        product_id, order = await reserve_order(quantity=2)
        await settle(db, order_no=order.order_no, trade_no="T-1", paid_amount="10.00", notifier=notifier)
        first = await fetch.order(order.order_no)

        again = await settle(db, order_no=order.order_no, trade_no="T-2", paid_amount="10.00", notifier=notifier)

        assert again.already_settled is True
        assert len(again.cards) == 2
        stored = await fetch.order(order.order_no)
        assert stored.trade_no == "T-1"
        assert stored.paid_at == first.paid_at
        assert (await fetch.product(product_id)).sales_count == 2

        await notifier.drain()
        assert sink.names().count("payment_succeeded") == 1

    async def test_amount_mismatch_changes_nothing(self, db, reserve_order, notifier, fetch):
        product_id, order = await reserve_order(quantity=2, price="5.00")
        order_no = order.order_no

        with pytest.raises(AmountMismatchError):
            await settle(db, order_no=order_no, trade_no="T-1", paid_amount="9.99", notifier=notifier)

        stored = await fetch.order(order_no)
        assert stored.status == "pending"
        assert stored.paid_at is None
        assert (await fetch.card_statuses(product_id)).count("locked") == 2
        assert (await fetch.product(product_id)).sales_count == 0

    async def test_unknown_order(self, db, notifier):
        with pytest.raises(OrderNotFoundError):
            await settle(db, order_no="LD-missing", trade_no="T-1", paid_amount="1.00", notifier=notifier)

    async def test_overdue_but_not_swept_order_can_still_be_paid(self, db, reserve_order, notifier, fetch):
        created = utcnow() - timedelta(minutes=10)
        _, order = await reserve_order(quantity=1, now=created)

        await settle(db, order_no=order.order_no, trade_no="T-1", paid_amount="5.00", notifier=notifier)

        assert (await fetch.order(order.order_no)).status == "completed"

    async def test_expired_order_is_stale(self, db, reserve_order, notifier, fetch):
        created = utcnow() - timedelta(minutes=10)
        product_id, order = await reserve_order(quantity=1, now=created)
        order_no = order.order_no
        await release_expired_orders(db, notifier=notifier)

        with pytest.raises(StaleConfirmationError):
            await settle(db, order_no=order_no, trade_no="T-1", paid_amount="5.00", notifier=notifier)

        assert (await fetch.order(order_no)).status == "expired"
        assert await fetch.card_statuses(product_id) == ["available"] * 5
        assert (await fetch.product(product_id)).sales_count == 0

    async def test_missing_locked_card_aborts_settlement(self, db, session_factory, reserve_order, notifier, fetch):
        product_id, order = await reserve_order(quantity=2)
        order_no = order.order_no
        first_card = (await fetch.cards(product_id))[0]
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Card)
                    .where(Card.id == first_card.id)
                    .values(status="available", order_id=None, locked_at=None)
                )

        with pytest.raises(InventoryIntegrityError):
            await settle(db, order_no=order_no, trade_no="T-1", paid_amount="10.00", notifier=notifier)

        stored = await fetch.order(order_no)
        assert stored.status == "pending"
        assert stored.paid_at is None
        statuses = await fetch.card_statuses(product_id)
        assert "sold" not in statuses
        assert statuses.count("locked") == 1
        assert (await fetch.product(product_id)).sales_count == 0
