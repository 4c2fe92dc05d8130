# -*- coding: utf-8 -*-
# cardshop/routes/payment_routes.py
# =============================================================================
# Назначение кода:
# Вебхук шлюза LDC (notify_url). Шлюз ждёт текстовый ответ:
#   • "success" (200) - уведомление принято, повторять не нужно;
#   • "fail" (400)    - уведомление отклонено (подпись, pid, сумма, заказ);
#   • "fail" (500)    - временный конфликт или сбой, шлюз должен повторить.
#
# Канон / инварианты:
# • Поздняя оплата закрытого заказа (expired/refunded) - "success": заказ
#   не трогаем, но шлюз больше не повторяет.
# • Никакого JSON в ответе вебхука.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.errors_core import (
    CardShopError,
    ConcurrencyConflictError,
    InventoryIntegrityError,
    is_lock_conflict,
)
from cardshop.core.logging_core import get_logger
from cardshop.deps import get_db, get_gateway, get_notifier
from cardshop.integrations.ldc_api import LdcClient
from cardshop.services.notifications_service import NotificationDispatcher
from cardshop.services.payment_notify_service import confirm_payment

logger = get_logger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])

_RETRYABLE = (ConcurrencyConflictError, InventoryIntegrityError)


@router.get("/notify", response_class=PlainTextResponse)
async def payment_notify(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: LdcClient = Depends(get_gateway),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> PlainTextResponse:
    params = dict(request.query_params)
    try:
        outcome = await confirm_payment(db, params, gateway=gateway, notifier=notifier)
    except _RETRYABLE as exc:
        logger.error(
            "Payment notification could not be settled, gateway will retry",
            extra={"order_no": params.get("out_trade_no"), "error": exc.code},
        )
        return PlainTextResponse("fail", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    except CardShopError as exc:
        logger.warning(
            "Payment notification rejected",
            extra={"order_no": params.get("out_trade_no"), "error": exc.code},
        )
        return PlainTextResponse("fail", status_code=status.HTTP_400_BAD_REQUEST)
    except Exception as exc:  # noqa: BLE001
        if is_lock_conflict(exc):
            logger.warning(
                "Payment notification hit a DB lock conflict, gateway will retry",
                extra={"order_no": params.get("out_trade_no")},
            )
        else:
            logger.exception(
                "Payment notification failed unexpectedly",
                extra={"order_no": params.get("out_trade_no"), "error_type": type(exc).__name__},
            )
        return PlainTextResponse("fail", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(
        "Payment notification accepted",
        extra={"order_no": outcome.order_no, "settled": outcome.settled, "reason": outcome.reason},
    )
    return PlainTextResponse("success", status_code=status.HTTP_200_OK)


__all__ = ["router"]
