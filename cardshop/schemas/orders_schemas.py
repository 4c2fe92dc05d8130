# -*- coding: utf-8 -*-
# cardshop/schemas/orders_schemas.py
# =============================================================================
# Назначение кода:
#   Pydantic-схемы модуля «Заказы» Card Shop:
#     • создание заказа (резерв) и форма оплаты шлюза,
#     • карточка заказа и списки,
#     • гостевой поиск по e-mail + паролю,
#     • запрос возврата и админские решения по возврату.
#
# Канон / инварианты:
#   • Деньги наружу строкой с 2 знаками.
#   • cards заполняется только пока покупатель владеет картами
#     (решает сервис, схема лишь переносит список).
#   • query_password_hash наружу не отдаётся никогда.
#
# Запреты:
#   • В схемах НЕТ бизнес-логики: границы количества проверяет сервис
#     резерва по товару.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from cardshop.schemas.common_schemas import ApiModel, money_str
from cardshop.services.orders_service import OrderView
from cardshop.services.reservation_service import ReservationResult


# =============================================================================
# Вход
# -----------------------------------------------------------------------------
class OrderCreateIn(ApiModel):
    product_id: int
    quantity: int = Field(..., description="Количество карт; границы задаёт товар.")
    email: Optional[str] = Field(None, max_length=255)
    query_password: Optional[str] = Field(None, min_length=4, max_length=128)


class GuestLookupIn(ApiModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class RefundRequestIn(ApiModel):
    reason: str = Field(..., min_length=1, max_length=500)
    query_password: Optional[str] = Field(None, max_length=128)


class RefundApproveIn(ApiModel):
    confirmed: Optional[bool] = Field(
        None,
        description=(
            "Результат возврата денег в шлюзе (client-режим). "
            "Не задан в proxy-режиме: сервер вызовет возврат сам."
        ),
    )
    remark: Optional[str] = Field(None, max_length=500)


class RefundRejectIn(ApiModel):
    remark: Optional[str] = Field(None, max_length=500)


# =============================================================================
# Выход
# -----------------------------------------------------------------------------
class PaymentFormOut(ApiModel):
    action: str
    fields: Dict[str, str]


class OrderOut(ApiModel):
    order_no: str
    product_id: int
    product_name: str
    quantity: int
    total_amount: str
    status: str
    payment_method: str
    trade_no: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime
    expired_at: datetime
    paid_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    refund_requested_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    admin_remark: Optional[str] = None
    cards: List[str] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: OrderView) -> "OrderOut":
        o = view.order
        return cls(
            order_no=o.order_no,
            product_id=o.product_id,
            product_name=o.product_name,
            quantity=o.quantity,
            total_amount=money_str(o.total_amount),
            status=o.status,
            payment_method=o.payment_method,
            trade_no=o.trade_no,
            email=o.email,
            created_at=o.created_at,
            expired_at=o.expired_at,
            paid_at=o.paid_at,
            refund_reason=o.refund_reason,
            refund_requested_at=o.refund_requested_at,
            refunded_at=o.refunded_at,
            admin_remark=o.admin_remark,
            cards=list(view.cards),
        )


class OrderCreatedOut(ApiModel):
    order: OrderOut
    payment: PaymentFormOut

    @classmethod
    def from_result(cls, result: ReservationResult) -> "OrderCreatedOut":
        return cls(
            order=OrderOut.from_view(OrderView(order=result.order)),
            payment=PaymentFormOut(action=result.payment_form.action, fields=result.payment_form.fields),
        )


class OrderListOut(ApiModel):
    items: List[OrderOut]


class RefundApprovalOut(ApiModel):
    order: OrderOut
    restocked_cards: int


class ClientRefundParamsOut(ApiModel):
    apiUrl: str
    pid: str
    key: str
    trade_no: str
    money: str


__all__ = [
    "OrderCreateIn",
    "GuestLookupIn",
    "RefundRequestIn",
    "RefundApproveIn",
    "RefundRejectIn",
    "PaymentFormOut",
    "OrderOut",
    "OrderCreatedOut",
    "OrderListOut",
    "RefundApprovalOut",
    "ClientRefundParamsOut",
]
