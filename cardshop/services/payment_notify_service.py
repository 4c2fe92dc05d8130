# -*- coding: utf-8 -*-
# cardshop/services/payment_notify_service.py
# =============================================================================
# Назначение кода:
#   Проверка асинхронного уведомления шлюза об оплате (вебхук notify_url)
#   и передача подтверждённой оплаты в сервис расчёта.
#
# Канон / инварианты (порядок проверок фиксирован):
#   1) обязательные поля: pid, trade_no, out_trade_no, money, sign;
#   2) pid совпадает с нашим мерчантом        → IdentityMismatchError;
#   3) MD5-подпись                             → BadSignatureError;
#   4) заказ по out_trade_no                   → OrderNotFoundError;
#   5) сумма точно равна сумме заказа          → AmountMismatchError;
#   6) уже оплачен → принято без расчёта; терминальный (expired/refunded/
#      refund_rejected) → принято и проигнорировано;
#   7) trade_status == TRADE_SUCCESS → расчёт; иначе принято без расчёта.
#   • Шаги 1-5 не открывают пишущую транзакцию.
#
# Запреты:
#   • Секрет и подпись в логи не пишем.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.errors_core import (
    AmountMismatchError,
    BadSignatureError,
    IdentityMismatchError,
    OrderNotFoundError,
    StaleConfirmationError,
    ValidationError,
)
from cardshop.core.logging_core import get_logger, set_request_context
from cardshop.core.utils_core import format_money
from cardshop.crud.order_crud import OrderCRUD
from cardshop.integrations.ldc_api import TRADE_SUCCESS, LdcClient
from cardshop.models.statuses import SETTLED_STATES, STALE_STATES
from cardshop.services.notifications_service import NotificationDispatcher
from cardshop.services.settlement_service import amounts_match, settle

logger = get_logger(__name__)

REQUIRED_NOTIFY_FIELDS = ("pid", "trade_no", "out_trade_no", "money", "sign")


@dataclass(slots=True)
class NotifyOutcome:
    """Итог обработки уведомления. accepted=True → шлюзу отвечаем success."""

    order_no: str
    accepted: bool
    settled: bool
    reason: str


async def confirm_payment(
    db: AsyncSession,
    params: Mapping[str, str],
    *,
    gateway: Optional[LdcClient] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> NotifyOutcome:
    """
    Проверить уведомление шлюза и, если это успешная оплата, провести заказ.

    Исключения (→ "fail" для шлюза): ValidationError, IdentityMismatchError,
    BadSignatureError, OrderNotFoundError, AmountMismatchError,
    а также ConcurrencyConflict/InventoryIntegrity из расчёта.
    """

    missing = [name for name in REQUIRED_NOTIFY_FIELDS if not params.get(name)]
    if missing:
        raise ValidationError("Missing required notification fields.", details={"missing": missing})

    gateway = gateway or LdcClient()
    order_no = str(params["out_trade_no"])
    set_request_context(order_no=order_no)

    if str(params["pid"]) != gateway.pid:
        logger.warning("Payment notification for another merchant", extra={"order_no": order_no})
        raise IdentityMismatchError(details={"order_no": order_no})

    if not gateway.verify_notification(params):
        logger.warning("Payment notification with bad signature", extra={"order_no": order_no})
        raise BadSignatureError(details={"order_no": order_no})

    async with db.begin():
        order = await OrderCRUD(db).get_by_order_no(order_no)
    if order is None:
        raise OrderNotFoundError(details={"order_no": order_no})

    if not amounts_match(params["money"], order.total_amount):
        logger.warning(
            "Payment notification amount mismatch",
            extra={"order_no": order_no, "expected": format_money(order.total_amount), "received": params["money"]},
        )
        raise AmountMismatchError(
            details={"order_no": order_no, "expected": format_money(order.total_amount), "received": params["money"]}
        )

    status = order.status_enum
    if status in SETTLED_STATES:
        return NotifyOutcome(order_no=order_no, accepted=True, settled=False, reason="already_settled")
    if status in STALE_STATES:
        logger.warning(
            "Late payment notification for closed order",
            extra={"order_no": order_no, "status": status.value, "trade_no": params["trade_no"]},
        )
        return NotifyOutcome(order_no=order_no, accepted=True, settled=False, reason="stale")

    trade_status = params.get("trade_status") or ""
    if trade_status != TRADE_SUCCESS:
        logger.info(
            "Non-success payment notification acknowledged",
            extra={"order_no": order_no, "trade_status": trade_status},
        )
        return NotifyOutcome(order_no=order_no, accepted=True, settled=False, reason="not_success")

    try:
        result = await settle(
            db,
            order_no=order_no,
            trade_no=str(params["trade_no"]),
            paid_amount=params["money"],
            notifier=notifier,
        )
    except StaleConfirmationError:
        # Сборщик успел закрыть заказ между чтением и расчётом.
        logger.warning("Order closed before settlement", extra={"order_no": order_no})
        return NotifyOutcome(order_no=order_no, accepted=True, settled=False, reason="stale")

    return NotifyOutcome(
        order_no=order_no,
        accepted=True,
        settled=not result.already_settled,
        reason="already_settled" if result.already_settled else "settled",
    )


__all__ = ["NotifyOutcome", "REQUIRED_NOTIFY_FIELDS", "confirm_payment"]
