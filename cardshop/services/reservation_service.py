# -*- coding: utf-8 -*-
# cardshop/services/reservation_service.py
# =============================================================================
# Назначение кода:
#   Резерв карт при создании заказа: заказ pending + ровно quantity карт
#   товара в статусе locked, привязанных к нему, и подписанная форма оплаты.
#
# Канон / инварианты:
#   • Количество проверяется ДО обращения к складу (ValidationError).
#   • Одна транзакция: SELECT свободных карт FOR UPDATE SKIP LOCKED (по id),
#     INSERT заказа, guarded UPDATE карт available → locked.
#   • Если guarded UPDATE задел меньше строк, чем выбрано, конкурент успел
#     раньше: транзакция откатывается и повторяется (RESERVATION_RETRY_BUDGET).
#     Повтор, нашедший меньше карт, чем нужно, - OutOfStock; исчерпанный
#     бюджет - ConcurrencyConflict.
#   • Никогда не бывает «частичного» резерва: либо все quantity карт, либо
#     ничего.
#   • Уведомление order_created - только после commit.
#
# Самовосстановление:
#   • Коллизия order_no (UNIQUE) обрабатывается тем же повтором.
#
# Запреты:
#   • Не трогаем sales_count и paid_at: это делает расчёт оплаты.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config_core import get_settings
from cardshop.core.errors_core import (
    ConcurrencyConflictError,
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from cardshop.core.logging_core import get_logger
from cardshop.core.security_core import Buyer, hash_password
from cardshop.core.utils_core import format_money, gen_order_no, money, utcnow
from cardshop.crud.card_crud import CardCRUD
from cardshop.crud.order_crud import OrderCRUD
from cardshop.crud.product_crud import ProductCRUD
from cardshop.integrations.ldc_api import LdcClient, PaymentForm
from cardshop.models.order_models import Order, new_order_id
from cardshop.models.product_models import Product
from cardshop.models.statuses import OrderStatus
from cardshop.services.notifications_service import (
    NotificationDispatcher,
    NotificationEvent,
    get_dispatcher,
)

logger = get_logger(__name__)
settings = get_settings()


@dataclass(slots=True)
class ReservationResult:
    order: Order
    card_ids: List[int]
    payment_form: PaymentForm


class _ReservationRaceLost(Exception):
    """Guarded UPDATE задел меньше карт, чем было выбрано."""


@dataclass(frozen=True, slots=True)
class _ProductSnapshot:
    """
    Поля товара, нужные резерву.

    Откат неудачной попытки протухает ORM-объекты сессии; снимок остаётся
    читаемым без обращения к БД.
    """

    id: int
    name: str
    price: Decimal


def validate_quantity(product: Product, quantity: int) -> None:
    """min_quantity <= quantity <= max_quantity и quantity >= 1."""

    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer.", details={"quantity": quantity})
    if quantity < product.min_quantity or quantity > product.max_quantity:
        raise ValidationError(
            "Quantity is out of allowed range.",
            details={
                "quantity": quantity,
                "min": product.min_quantity,
                "max": product.max_quantity,
            },
        )


async def _reserve_once(
    db: AsyncSession,
    *,
    product: _ProductSnapshot,
    quantity: int,
    buyer: Buyer,
    email: Optional[str],
    password_hash: Optional[str],
    now: datetime,
) -> Tuple[Order, List[int]]:
    async with db.begin():
        cards = CardCRUD(db)
        card_ids = await cards.pick_available_for_update(product.id, quantity)
        if len(card_ids) < quantity:
            raise OutOfStockError(
                details={"product_id": product.id, "requested": quantity, "available": len(card_ids)}
            )

        order = Order(
            id=new_order_id(),
            order_no=gen_order_no(settings.ORDER_NO_PREFIX, now),
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            total_amount=money(product.price * quantity),
            status=OrderStatus.PENDING.value,
            payment_method=settings.PAYMENT_METHOD_TAG,
            user_id=buyer.user_id,
            username=buyer.username,
            email=email,
            query_password_hash=password_hash,
            created_at=now,
            expired_at=now + timedelta(minutes=settings.ORDER_TTL_MINUTES),
            updated_at=now,
        )
        await OrderCRUD(db).create(order)

        locked = await cards.lock_for_order(card_ids, order_id=order.id, now=now)
        if locked != quantity:
            raise _ReservationRaceLost(f"locked {locked} of {quantity}")

    return order, card_ids


async def reserve(
    db: AsyncSession,
    *,
    product_id: int,
    quantity: int,
    buyer: Buyer,
    email: Optional[str] = None,
    query_password: Optional[str] = None,
    gateway: Optional[LdcClient] = None,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> ReservationResult:
    """
    Создать заказ с резервом карт.

    Вход: товар, количество, покупатель; у гостя обязательны email и пароль
    для поиска заказа.
    Выход: ReservationResult (заказ, id карт, форма оплаты).
    Исключения: NotFoundError, ValidationError, OutOfStockError,
    ConcurrencyConflictError.
    """

    async with db.begin():
        product = await ProductCRUD(db).get_by_id(product_id)
    if product is None or not product.is_active:
        raise NotFoundError("Product not found.", details={"product_id": product_id})

    validate_quantity(product, quantity)

    email = (email or "").strip() or None
    if buyer.user_id is None and (not email or not query_password):
        raise ValidationError("Guest orders require an email and a query password.")
    password_hash = hash_password(query_password) if query_password else None
    snapshot = _ProductSnapshot(id=product.id, name=product.name, price=product.price)

    budget = max(1, settings.RESERVATION_RETRY_BUDGET)
    for attempt in range(1, budget + 1):
        try:
            order, card_ids = await _reserve_once(
                db,
                product=snapshot,
                quantity=quantity,
                buyer=buyer,
                email=email,
                password_hash=password_hash,
                now=now or utcnow(),
            )
            break
        except (_ReservationRaceLost, IntegrityError) as exc:
            logger.warning(
                "Reservation attempt lost a race, retrying",
                extra={"product_id": snapshot.id, "attempt": attempt, "error": str(exc)},
            )
    else:
        raise ConcurrencyConflictError(details={"product_id": snapshot.id, "attempts": budget})

    logger.info(
        "Order reserved",
        extra={"order_no": order.order_no, "product_id": snapshot.id, "quantity": quantity},
    )

    gateway = gateway or LdcClient()
    form = gateway.build_payment_form(
        order_no=order.order_no, name=order.product_name, amount=order.total_amount
    )

    (notifier or get_dispatcher()).emit(
        NotificationEvent.ORDER_CREATED,
        order.order_no,
        product=order.product_name,
        quantity=order.quantity,
        amount=format_money(order.total_amount),
        buyer=order.username or order.email or "guest",
    )
    return ReservationResult(order=order, card_ids=card_ids, payment_form=form)


__all__ = ["ReservationResult", "reserve", "validate_quantity"]
