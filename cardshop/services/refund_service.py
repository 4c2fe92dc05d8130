# -*- coding: utf-8 -*-
# cardshop/services/refund_service.py
# =============================================================================
# Назначение кода:
#   Возвраты: запрос покупателя, одобрение/отклонение администратором,
#   возврат карт заказа на склад после подтверждённого возврата денег.
#
# Канон / инварианты:
#   • request: paid | completed → refund_pending (склад не трогаем).
#   • approve: только при подтверждённом возврате денег (refund_succeeded),
#     refund_pending → refunded, все карты заказа sold → available без
#     владельца; paid_at сохраняется; sales_count НЕ уменьшается.
#   • reject: refund_pending → refund_rejected, карты остаются у покупателя.
#   • Режим LDC_REFUND_MODE=disabled закрывает запросы возврата.
#   • Каждый переход идёт под FOR UPDATE и через таблицу переходов.
#
# Запреты:
#   • Сетевой вызов возврата в шлюз (proxy-режим) выполняется ДО
#     транзакции одобрения, а не внутри неё.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config_core import get_settings
from cardshop.core.errors_core import (
    InvalidTransitionError,
    NotFoundError,
    OrderNotFoundError,
    RefundDisabledError,
    RefundNotConfirmedError,
    ValidationError,
)
from cardshop.core.logging_core import get_logger
from cardshop.core.security_core import Buyer, verify_password
from cardshop.core.utils_core import format_money, utcnow
from cardshop.crud.card_crud import CardCRUD
from cardshop.crud.order_crud import OrderCRUD
from cardshop.integrations.ldc_api import ClientRefundParams, LdcClient
from cardshop.models.order_models import Order
from cardshop.models.statuses import OrderStatus
from cardshop.services.notifications_service import (
    NotificationDispatcher,
    NotificationEvent,
    get_dispatcher,
)

logger = get_logger(__name__)
settings = get_settings()

MAX_REASON_LENGTH = 500


@dataclass(slots=True)
class RefundApproval:
    order: Order
    restocked_cards: int


def can_access(order: Order, buyer: Buyer, query_password: Optional[str] = None) -> bool:
    """Владелец, админ или гость с верным паролем поиска."""

    if buyer.is_admin or buyer.owns(order.user_id):
        return True
    if order.user_id is None and query_password:
        return verify_password(query_password, order.query_password_hash)
    return False


async def request_refund(
    db: AsyncSession,
    *,
    order_no: str,
    reason: str,
    buyer: Buyer,
    query_password: Optional[str] = None,
    refund_mode: Optional[str] = None,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Покупатель просит возврат.

    Исключения: RefundDisabledError, ValidationError, NotFoundError
    (нет заказа или он чужой), InvalidTransitionError.
    """

    if (refund_mode or settings.refund_mode) == "disabled":
        raise RefundDisabledError()

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Refund reason is required.")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError("Refund reason is too long.", details={"max": MAX_REASON_LENGTH})

    now = now or utcnow()
    async with db.begin():
        order = await OrderCRUD(db).get_by_order_no(order_no, for_update=True)
        if order is None or not can_access(order, buyer, query_password):
            raise NotFoundError("Order not found.")
        order.transition_to(OrderStatus.REFUND_PENDING)
        order.refund_reason = reason
        order.refund_requested_at = now
        order.updated_at = now

    logger.info("Refund requested", extra={"order_no": order_no})
    (notifier or get_dispatcher()).emit(
        NotificationEvent.REFUND_REQUESTED,
        order.order_no,
        amount=format_money(order.total_amount),
        reason=reason,
    )
    return order


async def approve_refund(
    db: AsyncSession,
    *,
    order_no: str,
    refund_succeeded: bool,
    remark: Optional[str] = None,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> RefundApproval:
    """
    Администратор подтверждает возврат денег; карты возвращаются на склад.

    Исключения: RefundNotConfirmedError (деньги не вернулись: ничего не
    меняем), OrderNotFoundError, InvalidTransitionError.
    """

    if not refund_succeeded:
        raise RefundNotConfirmedError(details={"order_no": order_no})

    now = now or utcnow()
    async with db.begin():
        order = await OrderCRUD(db).get_by_order_no(order_no, for_update=True)
        if order is None:
            raise OrderNotFoundError(details={"order_no": order_no})
        order.transition_to(OrderStatus.REFUNDED)
        order.refunded_at = now
        order.updated_at = now
        if remark:
            order.admin_remark = remark
        restocked = await CardCRUD(db).restock_sold_of_order(order.id, now=now)

    if restocked != order.quantity:
        logger.warning(
            "Refund restocked a different number of cards than ordered",
            extra={"order_no": order_no, "expected": order.quantity, "restocked": restocked},
        )
    logger.info("Refund approved", extra={"order_no": order_no, "restocked": restocked})
    (notifier or get_dispatcher()).emit(
        NotificationEvent.REFUND_APPROVED,
        order.order_no,
        amount=format_money(order.total_amount),
        restocked=restocked,
    )
    return RefundApproval(order=order, restocked_cards=restocked)


async def reject_refund(
    db: AsyncSession,
    *,
    order_no: str,
    remark: Optional[str] = None,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> Order:
    """refund_pending → refund_rejected; карты остаются проданными."""

    now = now or utcnow()
    async with db.begin():
        order = await OrderCRUD(db).get_by_order_no(order_no, for_update=True)
        if order is None:
            raise OrderNotFoundError(details={"order_no": order_no})
        order.transition_to(OrderStatus.REFUND_REJECTED)
        order.updated_at = now
        if remark:
            order.admin_remark = remark

    logger.info("Refund rejected", extra={"order_no": order_no})
    (notifier or get_dispatcher()).emit(
        NotificationEvent.REFUND_REJECTED,
        order.order_no,
        remark=remark,
    )
    return order


async def _load_refund_pending(db: AsyncSession, order_no: str) -> Order:
    async with db.begin():
        order = await OrderCRUD(db).get_by_order_no(order_no)
    if order is None:
        raise OrderNotFoundError(details={"order_no": order_no})
    if order.status != OrderStatus.REFUND_PENDING.value:
        raise InvalidTransitionError(details={"from": order.status, "to": OrderStatus.REFUNDED.value})
    if not order.trade_no:
        raise ValidationError("Order has no gateway trade number.", details={"order_no": order_no})
    return order


async def refund_via_gateway(
    db: AsyncSession,
    *,
    order_no: str,
    gateway: Optional[LdcClient] = None,
    remark: Optional[str] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> RefundApproval:
    """
    Серверный возврат (proxy-режим): шлюз → затем approve_refund().

    Исключения: RefundNotConfirmedError, если шлюз ответил code != 1;
    TransientGatewayError при сетевом сбое (заказ остаётся refund_pending).
    """

    order = await _load_refund_pending(db, order_no)
    gateway = gateway or LdcClient()
    result = await gateway.refund(order.trade_no or "", order.total_amount)
    if not result.ok:
        logger.warning(
            "Gateway refused refund",
            extra={"order_no": order_no, "code": result.code, "gateway_msg": result.msg},
        )
        raise RefundNotConfirmedError(
            "Gateway did not confirm the refund.",
            details={"order_no": order_no, "gateway_code": result.code, "gateway_msg": result.msg},
        )
    return await approve_refund(
        db, order_no=order_no, refund_succeeded=True, remark=remark, notifier=notifier
    )


async def client_refund_params(
    db: AsyncSession,
    *,
    order_no: str,
    gateway: Optional[LdcClient] = None,
) -> ClientRefundParams:
    """Параметры для возврата «с клиента» (админка вызывает шлюз сама)."""

    order = await _load_refund_pending(db, order_no)
    return (gateway or LdcClient()).client_refund_params(order.trade_no or "", order.total_amount)


__all__ = [
    "RefundApproval",
    "can_access",
    "request_refund",
    "approve_refund",
    "reject_refund",
    "refund_via_gateway",
    "client_refund_params",
]
