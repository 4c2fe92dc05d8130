# -*- coding: utf-8 -*-
# cardshop/routes/admin_routes.py
# =============================================================================
# Назначение кода:
# Админские решения по возвратам: одобрить (с возвратом карт на склад),
# отклонить, получить параметры для возврата «с клиента».
#
# Канон / инварианты:
# • Все ручки закрыты X-Admin-Key (require_admin_key).
# • approve:
#     - confirmed задан явно (client-режим: админка сама вызвала шлюз) →
#       approve_refund(refund_succeeded=confirmed);
#     - confirmed не задан и режим proxy → сервер вызывает возврат в шлюзе;
#     - иначе 422: без подтверждения возврата денег карты не трогаем.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config_core import get_settings
from cardshop.core.errors_core import RefundDisabledError, ValidationError
from cardshop.core.logging_core import get_logger
from cardshop.core.security_core import require_admin_key
from cardshop.deps import get_db, get_gateway, get_notifier
from cardshop.integrations.ldc_api import LdcClient
from cardshop.schemas.orders_schemas import (
    ClientRefundParamsOut,
    OrderOut,
    RefundApprovalOut,
    RefundApproveIn,
    RefundRejectIn,
)
from cardshop.services.notifications_service import NotificationDispatcher
from cardshop.services.orders_service import OrderView
from cardshop.services.refund_service import (
    approve_refund,
    client_refund_params,
    refund_via_gateway,
    reject_refund,
)

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(
    prefix="/admin/orders",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
)


@router.post("/{order_no}/refund/approve", response_model=RefundApprovalOut)
async def admin_refund_approve(
    order_no: str,
    payload: RefundApproveIn,
    db: AsyncSession = Depends(get_db),
    gateway: LdcClient = Depends(get_gateway),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> RefundApprovalOut:
    if payload.confirmed is not None:
        approval = await approve_refund(
            db,
            order_no=order_no,
            refund_succeeded=payload.confirmed,
            remark=payload.remark,
            notifier=notifier,
        )
    elif settings.refund_mode == "proxy":
        approval = await refund_via_gateway(
            db, order_no=order_no, gateway=gateway, remark=payload.remark, notifier=notifier
        )
    else:
        raise ValidationError("Refund result must be confirmed explicitly in client mode.")

    return RefundApprovalOut(
        order=OrderOut.from_view(OrderView(order=approval.order)),
        restocked_cards=approval.restocked_cards,
    )


@router.post("/{order_no}/refund/reject", response_model=OrderOut)
async def admin_refund_reject(
    order_no: str,
    payload: RefundRejectIn,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> OrderOut:
    order = await reject_refund(db, order_no=order_no, remark=payload.remark, notifier=notifier)
    return OrderOut.from_view(OrderView(order=order))


@router.get("/{order_no}/refund/params", response_model=ClientRefundParamsOut)
async def admin_refund_params(
    order_no: str,
    db: AsyncSession = Depends(get_db),
    gateway: LdcClient = Depends(get_gateway),
) -> ClientRefundParamsOut:
    if settings.refund_mode == "disabled":
        raise RefundDisabledError()
    params = await client_refund_params(db, order_no=order_no, gateway=gateway)
    return ClientRefundParamsOut(**params.as_payload())


__all__ = ["router"]
