# -*- coding: utf-8 -*-
# cardshop/routes/orders_routes.py
# =============================================================================
# Назначение кода:
# Заказы покупателя: создание (резерв карт + форма оплаты), карточка заказа,
# «Мои заказы», гостевой поиск и запрос возврата.
#
# Канон / инварианты:
# • Покупатель определяется заголовками X-User-Id/X-User-Name (deps.get_buyer);
#   гость подтверждает доступ паролем поиска (X-Order-Password).
# • Чужой заказ отвечает 404, как и несуществующий.
# • Вся логика в сервисах; роут только переводит DTO.
# =============================================================================

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.logging_core import get_logger
from cardshop.core.security_core import Buyer
from cardshop.deps import get_buyer, get_db, get_gateway, get_notifier
from cardshop.integrations.ldc_api import LdcClient
from cardshop.schemas.orders_schemas import (
    GuestLookupIn,
    OrderCreatedOut,
    OrderCreateIn,
    OrderListOut,
    OrderOut,
    RefundRequestIn,
)
from cardshop.services.notifications_service import NotificationDispatcher
from cardshop.services.orders_service import (
    OrderView,
    get_order,
    list_orders_for_user,
    lookup_guest_orders,
)
from cardshop.services.refund_service import request_refund
from cardshop.services.reservation_service import reserve

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreateIn,
    db: AsyncSession = Depends(get_db),
    buyer: Buyer = Depends(get_buyer),
    gateway: LdcClient = Depends(get_gateway),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OrderCreatedOut:
    result = await reserve(
        db,
        product_id=payload.product_id,
        quantity=payload.quantity,
        buyer=buyer,
        email=payload.email,
        query_password=payload.query_password,
        gateway=gateway,
        notifier=notifier,
    )
    return OrderCreatedOut.from_result(result)


@router.get("", response_model=OrderListOut)
async def my_orders(
    db: AsyncSession = Depends(get_db),
    buyer: Buyer = Depends(get_buyer),
) -> OrderListOut:
    views = await list_orders_for_user(db, buyer=buyer)
    return OrderListOut(items=[OrderOut.from_view(v) for v in views])


@router.post("/lookup", response_model=OrderListOut)
async def guest_lookup(
    payload: GuestLookupIn,
    db: AsyncSession = Depends(get_db),
) -> OrderListOut:
    views = await lookup_guest_orders(db, email=payload.email, password=payload.password)
    return OrderListOut(items=[OrderOut.from_view(v) for v in views])


@router.get("/{order_no}", response_model=OrderOut)
async def order_detail(
    order_no: str,
    db: AsyncSession = Depends(get_db),
    buyer: Buyer = Depends(get_buyer),
    gateway: LdcClient = Depends(get_gateway),
    notifier: NotificationDispatcher = Depends(get_notifier),
    x_order_password: Optional[str] = Header(default=None, alias="X-Order-Password"),
) -> OrderOut:
    view = await get_order(
        db,
        order_no=order_no,
        buyer=buyer,
        query_password=x_order_password,
        gateway=gateway,
        notifier=notifier,
    )
    return OrderOut.from_view(view)


@router.post("/{order_no}/refund", response_model=OrderOut)
async def order_refund_request(
    order_no: str,
    payload: RefundRequestIn,
    db: AsyncSession = Depends(get_db),
    buyer: Buyer = Depends(get_buyer),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OrderOut:
    order = await request_refund(
        db,
        order_no=order_no,
        reason=payload.reason,
        buyer=buyer,
        query_password=payload.query_password,
        notifier=notifier,
    )
    return OrderOut.from_view(OrderView(order=order))


__all__ = ["router"]
