"""Tests for order/card status transitions."""

import pytest

from cardshop.core.errors_core import InvalidTransitionError
from cardshop.core.utils_core import utcnow
from cardshop.crud.card_crud import CardCRUD
from cardshop.models.statuses import (
    CARDS_VISIBLE_STATES,
    ORDER_TRANSITIONS,
    PAID_STATES,
    SETTLED_STATES,
    STALE_STATES,
    OrderStatus,
    assert_order_transition,
)
from cardshop.services.reservation_service import reserve


class TestOrderTransitions:
    @pytest.mark.parametrize(
        "src,dst",
        [
            ("pending", "completed"),
            ("pending", "paid"),
            ("pending", "expired"),
            ("paid", "completed"),
            ("paid", "refund_pending"),
            ("completed", "refund_pending"),
            ("refund_pending", "refunded"),
            ("refund_pending", "refund_rejected"),
        ],
    )
    def test_allowed(self, src, dst):
        assert assert_order_transition(src, dst) is OrderStatus(dst)

    @pytest.mark.parametrize(
        "src,dst",
        [
            ("expired", "completed"),
            ("expired", "pending"),
            ("completed", "pending"),
            ("completed", "expired"),
            ("refunded", "refund_pending"),
            ("refund_rejected", "refund_pending"),
            ("pending", "refund_pending"),
        ],
    )
    def test_rejected(self, src, dst):
        with pytest.raises(InvalidTransitionError) as info:
            assert_order_transition(src, dst)
        assert info.value.code == "already_processed"
        assert info.value.details == {"from": src, "to": dst}

    def test_terminal_states_have_no_exit(self):
        for terminal in (OrderStatus.EXPIRED, OrderStatus.REFUNDED, OrderStatus.REFUND_REJECTED):
            assert ORDER_TRANSITIONS[terminal] == frozenset()

    def test_unknown_status_is_value_error(self):
        with pytest.raises(ValueError):
            assert_order_transition("shipped", "completed")


class TestStateSets:
    def test_settled_and_stale_are_disjoint(self):
        assert not SETTLED_STATES & STALE_STATES

    def test_pending_is_neither_settled_nor_stale(self):
        assert OrderStatus.PENDING not in SETTLED_STATES | STALE_STATES

    def test_paid_states_cover_settled(self):
        assert SETTLED_STATES <= PAID_STATES

    def test_cards_hidden_after_refund(self):
        assert OrderStatus.REFUNDED not in CARDS_VISIBLE_STATES
        assert OrderStatus.PENDING not in CARDS_VISIBLE_STATES
        assert OrderStatus.REFUND_REJECTED in CARDS_VISIBLE_STATES


class TestCardTransitions:
    async def test_guarded_updates_only_move_cards_from_expected_status(
        self, db, session_factory, make_product, gateway, notifier, buyer, fetch
    ):
        product_id = await make_product(cards=2)
        result = await reserve(db, product_id=product_id, quantity=2, buyer=buyer, gateway=gateway, notifier=notifier)
        order_id = result.order.id
        now = utcnow()

        async with session_factory() as session:
            async with session.begin():
                cards = CardCRUD(session)
                assert await cards.lock_for_order(result.card_ids, order_id=order_id, now=now) == 0
                assert await cards.restock_sold_of_order(order_id, now=now) == 0
                assert await cards.sell_locked_of_order(order_id, now=now) == 2
                assert await cards.sell_locked_of_order(order_id, now=now) == 0
                assert await cards.release_locked_of_orders([order_id], now=now) == 0

        assert await fetch.card_statuses(product_id) == ["sold", "sold"]
