# -*- coding: utf-8 -*-
# cardshop/models/statuses.py
# =============================================================================
# Назначение кода:
#   Закрытые наборы статусов заказа и карты + таблица переходов заказа.
#   Переходы заказа в сервисах идут через Order.transition_to()
#   (assert_order_transition), просрочка: guarded UPDATE pending → expired.
#   Карты меняют статус только guarded UPDATE в CardCRUD: исходный статус
#   стоит в WHERE, поэтому дважды продать карту нельзя.
#
# Канон / инварианты:
#   • Заказ: pending → paid | completed | expired;
#            paid → completed | refund_pending;
#            completed → refund_pending;
#            refund_pending → refunded | refund_rejected;
#            expired, refunded, refund_rejected: терминальные.
#   • Карта: available → locked; locked → sold | available;
#            sold → available (только возврат).
#   • paid_at задан тогда и только тогда, когда статус в PAID_STATES.
# =============================================================================

from __future__ import annotations

import enum
from typing import Dict, FrozenSet, Union

from cardshop.core.errors_core import InvalidTransitionError


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    EXPIRED = "expired"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"
    REFUND_REJECTED = "refund_rejected"

    def __str__(self) -> str:
        return self.value


class CardStatus(str, enum.Enum):
    AVAILABLE = "available"
    LOCKED = "locked"
    SOLD = "sold"

    def __str__(self) -> str:
        return self.value


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PAID, OrderStatus.COMPLETED, OrderStatus.EXPIRED}
    ),
    OrderStatus.PAID: frozenset({OrderStatus.COMPLETED, OrderStatus.REFUND_PENDING}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUND_PENDING}),
    OrderStatus.REFUND_PENDING: frozenset(
        {OrderStatus.REFUNDED, OrderStatus.REFUND_REJECTED}
    ),
    OrderStatus.EXPIRED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.REFUND_REJECTED: frozenset(),
}

# Оплата состоялась (paid_at обязан быть задан и уже не сбрасывается).
PAID_STATES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.COMPLETED,
        OrderStatus.REFUND_PENDING,
        OrderStatus.REFUNDED,
        OrderStatus.REFUND_REJECTED,
    }
)

# Повторное подтверждение оплаты на этих статусах: no-op, успех.
SETTLED_STATES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PAID, OrderStatus.COMPLETED, OrderStatus.REFUND_PENDING}
)

# Поздняя оплата на этих статусах: StaleConfirmation.
STALE_STATES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.EXPIRED, OrderStatus.REFUNDED, OrderStatus.REFUND_REJECTED}
)

# Покупатель держит карты и видит их содержимое.
CARDS_VISIBLE_STATES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.COMPLETED,
        OrderStatus.REFUND_PENDING,
        OrderStatus.REFUND_REJECTED,
    }
)

REFUNDABLE_STATES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PAID, OrderStatus.COMPLETED}
)


def order_status_of(value: Union[str, OrderStatus]) -> OrderStatus:
    """Строка из БД → OrderStatus (ValueError для неизвестного значения)."""
    return value if isinstance(value, OrderStatus) else OrderStatus(value)


def assert_order_transition(
    current: Union[str, OrderStatus], target: Union[str, OrderStatus]
) -> OrderStatus:
    """
    Проверяет переход заказа и возвращает целевой статус.

    Исключения: InvalidTransitionError (code=already_processed) с деталями
    from/to: покупатель видит «заказ уже обработан».
    """
    src = order_status_of(current)
    dst = order_status_of(target)
    if dst not in ORDER_TRANSITIONS[src]:
        raise InvalidTransitionError(details={"from": src.value, "to": dst.value})
    return dst


__all__ = [
    "OrderStatus",
    "CardStatus",
    "ORDER_TRANSITIONS",
    "PAID_STATES",
    "SETTLED_STATES",
    "STALE_STATES",
    "CARDS_VISIBLE_STATES",
    "REFUNDABLE_STATES",
    "order_status_of",
    "assert_order_transition",
]
