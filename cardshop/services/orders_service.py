# -*- coding: utf-8 -*-
# cardshop/services/orders_service.py
# =============================================================================
# Назначение кода:
#   Чтение заказов покупателем и администратором:
#     • get_order: один заказ (с компенсационным запросом для pending),
#     • list_orders_for_user: заказы вошедшего пользователя,
#     • lookup_guest_orders: гостевые заказы по e-mail + паролю поиска.
#
# Канон / инварианты:
#   • Чужой заказ неотличим от несуществующего (NotFoundError).
#   • Содержимое карт отдаётся только пока покупатель ими владеет:
#     paid, completed, refund_pending, refund_rejected.
#   • pending-заказ перед ответом сверяется со шлюзом (best effort) и
#     перечитывается: потерянное уведомление не оставляет покупателя
#     без карт.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.errors_core import NotFoundError, ValidationError
from cardshop.core.logging_core import get_logger, set_request_context
from cardshop.core.security_core import Buyer, verify_password
from cardshop.crud.card_crud import CardCRUD
from cardshop.crud.order_crud import OrderCRUD
from cardshop.integrations.ldc_api import LdcClient
from cardshop.models.order_models import Order
from cardshop.models.statuses import CARDS_VISIBLE_STATES, OrderStatus
from cardshop.services.notifications_service import NotificationDispatcher
from cardshop.services.payment_sync_service import SyncResult, sync_pending_payment
from cardshop.services.refund_service import can_access

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50
GUEST_LOOKUP_LIMIT = 50


@dataclass(slots=True)
class OrderView:
    order: Order
    cards: List[str] = field(default_factory=list)
    sync: Optional[SyncResult] = None


async def _cards_if_visible(db: AsyncSession, order: Order) -> List[str]:
    if order.status_enum not in CARDS_VISIBLE_STATES:
        return []
    async with db.begin():
        return await CardCRUD(db).contents_of_order(order.id)


async def get_order(
    db: AsyncSession,
    *,
    order_no: str,
    buyer: Buyer,
    query_password: Optional[str] = None,
    gateway: Optional[LdcClient] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> OrderView:
    """
    Заказ для владельца, гостя с паролем или админа.

    Исключения: NotFoundError (нет заказа или нет доступа).
    """

    set_request_context(order_no=order_no)
    async with db.begin():
        order = await OrderCRUD(db).get_by_order_no(order_no)
    if order is None or not can_access(order, buyer, query_password):
        raise NotFoundError("Order not found.")

    sync: Optional[SyncResult] = None
    if order.status == OrderStatus.PENDING.value:
        sync = await sync_pending_payment(db, order, gateway=gateway, notifier=notifier)
        async with db.begin():
            refreshed = await OrderCRUD(db).get_by_order_no(order_no)
        if refreshed is not None:
            order = refreshed

    return OrderView(order=order, cards=await _cards_if_visible(db, order), sync=sync)


async def list_orders_for_user(
    db: AsyncSession,
    *,
    buyer: Buyer,
    limit: int = DEFAULT_PAGE_SIZE,
) -> List[OrderView]:
    """Заказы вошедшего пользователя, новые сверху."""

    if buyer.user_id is None:
        raise ValidationError("Sign-in is required to list orders.")
    async with db.begin():
        orders = await OrderCRUD(db).list_by_user(buyer.user_id, limit=limit)
    return [OrderView(order=o, cards=await _cards_if_visible(db, o)) for o in orders]


async def lookup_guest_orders(
    db: AsyncSession,
    *,
    email: str,
    password: str,
) -> List[OrderView]:
    """
    Гостевые заказы по e-mail, у которых совпал пароль поиска.

    Неверный пароль выглядит как «заказов нет».
    """

    email = (email or "").strip()
    if not email or not password:
        raise ValidationError("Email and query password are required.")
    async with db.begin():
        candidates = await OrderCRUD(db).list_guest_by_email(email, limit=GUEST_LOOKUP_LIMIT)

    views: List[OrderView] = []
    for order in candidates:
        if verify_password(password, order.query_password_hash):
            views.append(OrderView(order=order, cards=await _cards_if_visible(db, order)))
    logger.info("Guest order lookup", extra={"candidates": len(candidates), "matched": len(views)})
    return views


__all__ = ["OrderView", "get_order", "list_orders_for_user", "lookup_guest_orders"]
