# -*- coding: utf-8 -*-
# cardshop/services/settlement_service.py
# =============================================================================
# Назначение кода:
#   Идемпотентный расчёт оплаченного заказа: pending → completed (или paid
#   для товаров с ручной выдачей), карты locked → sold, sales_count += quantity.
#   Единая точка для вебхука шлюза, компенсационного запроса и ручных
#   сверок.
#
# Канон / инварианты:
#   • Блокирующее чтение заказа (FOR UPDATE): два конкурентных расчёта
#     одного заказа сериализуются, второй видит уже не pending.
#   • Сумма сравнивается точно (Decimal == Decimal), без округления.
#   • Число проданных карт обязано совпасть с quantity, иначе откат и
#     InventoryIntegrityError: заказ не может стать оплаченным с неполным
#     набором карт.
#   • paid/completed/refund_pending: повтор, ничего не меняем, успех.
#   • expired/refunded/refund_rejected: StaleConfirmation.
#   • pending с истёкшим expired_at, но ещё не собранный сборщиком, всё ещё
#     можно оплатить: его карты всё ещё locked за ним.
#
# Запреты:
#   • Никаких сетевых вызовов внутри транзакции.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.errors_core import (
    AmountMismatchError,
    InventoryIntegrityError,
    OrderNotFoundError,
    StaleConfirmationError,
)
from cardshop.core.logging_core import get_logger
from cardshop.core.utils_core import format_money, parse_money, utcnow
from cardshop.crud.card_crud import CardCRUD
from cardshop.crud.order_crud import OrderCRUD
from cardshop.crud.product_crud import ProductCRUD
from cardshop.models.order_models import Order
from cardshop.models.statuses import (
    SETTLED_STATES,
    STALE_STATES,
    OrderStatus,
)
from cardshop.services.notifications_service import (
    NotificationDispatcher,
    NotificationEvent,
    get_dispatcher,
)

logger = get_logger(__name__)


@dataclass(slots=True)
class SettlementResult:
    order: Order
    already_settled: bool
    cards: List[str] = field(default_factory=list)


def amounts_match(paid_amount: Any, total_amount: Decimal) -> bool:
    """Точное сравнение суммы из шлюза с суммой заказа."""

    paid = paid_amount if isinstance(paid_amount, Decimal) else parse_money(paid_amount)
    if paid is None or not paid.is_finite():
        return False
    return paid == Decimal(total_amount)


async def settle(
    db: AsyncSession,
    *,
    order_no: str,
    trade_no: Optional[str],
    paid_amount: Any,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> SettlementResult:
    """
    Провести оплату заказа.

    Выход: SettlementResult(order, already_settled, cards).
    Исключения: OrderNotFoundError, AmountMismatchError,
    StaleConfirmationError, InventoryIntegrityError.
    """

    now = now or utcnow()
    already_settled = False

    async with db.begin():
        order = await OrderCRUD(db).get_by_order_no(order_no, for_update=True)
        if order is None:
            raise OrderNotFoundError(details={"order_no": order_no})

        status = order.status_enum
        if status in SETTLED_STATES:
            already_settled = True
        elif status in STALE_STATES:
            raise StaleConfirmationError(details={"order_no": order_no, "status": status.value})
        else:
            if not amounts_match(paid_amount, order.total_amount):
                raise AmountMismatchError(
                    details={
                        "order_no": order_no,
                        "expected": format_money(order.total_amount),
                        "received": str(paid_amount),
                    }
                )

            product = await ProductCRUD(db).get_by_id(order.product_id)
            target = (
                OrderStatus.PAID
                if product is not None and product.manual_fulfillment
                else OrderStatus.COMPLETED
            )

            sold = await CardCRUD(db).sell_locked_of_order(order.id, now=now)
            if sold != order.quantity:
                logger.error(
                    "Locked card count does not match order quantity",
                    extra={"order_no": order_no, "expected": order.quantity, "sold": sold},
                )
                raise InventoryIntegrityError(
                    details={"order_no": order_no, "expected": order.quantity, "found": sold}
                )

            order.transition_to(target)
            order.paid_at = now
            if trade_no:
                order.trade_no = trade_no
            order.updated_at = now
            await ProductCRUD(db).increment_sales(order.product_id, order.quantity, now=now)
            await db.flush()

        cards = await CardCRUD(db).contents_of_order(order.id)

    if already_settled:
        logger.info(
            "Payment confirmation repeated for settled order",
            extra={"order_no": order_no, "status": order.status},
        )
    else:
        logger.info(
            "Order settled",
            extra={"order_no": order_no, "status": order.status, "trade_no": trade_no},
        )
        (notifier or get_dispatcher()).emit(
            NotificationEvent.PAYMENT_SUCCEEDED,
            order.order_no,
            product=order.product_name,
            quantity=order.quantity,
            amount=format_money(order.total_amount),
            trade_no=trade_no,
        )

    return SettlementResult(order=order, already_settled=already_settled, cards=cards)


__all__ = ["SettlementResult", "amounts_match", "settle"]
