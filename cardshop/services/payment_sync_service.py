# -*- coding: utf-8 -*-
# cardshop/services/payment_sync_service.py
# =============================================================================
# Назначение кода:
#   Компенсационный запрос: если уведомление шлюза потерялось, спрашиваем
#   шлюз о статусе pending-заказа и, при подтверждённой оплате, проводим его
#   тем же сервисом расчёта.
#
# Канон / инварианты:
#   • Только pending-заказы старше PAYMENT_SYNC_GRACE_SEC: свежему заказу
#     даём время получить обычное уведомление.
#   • Расчёт только при status == 1 и ТОЧНОМ совпадении суммы.
#   • Любая ошибка (сеть, формат, челлендж, БД) - результат inconclusive,
#     логируется и не пробрасывается.
#   • Этот модуль никогда не переводит заказ в expired и не «проваливает» его.
#
# Самовосстановление:
#   • sync_stale_pending_orders() - пакетный проход для планировщика:
#     самые старые pending первыми, ограниченный размер пачки.
# =============================================================================

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config_core import get_settings
from cardshop.core.logging_core import get_logger
from cardshop.core.utils_core import ensure_utc, utcnow
from cardshop.crud.order_crud import OrderCRUD
from cardshop.integrations.ldc_api import LdcClient, TransientGatewayError
from cardshop.models.order_models import Order
from cardshop.models.statuses import OrderStatus
from cardshop.services.notifications_service import NotificationDispatcher
from cardshop.services.settlement_service import amounts_match, settle

logger = get_logger(__name__)
settings = get_settings()


class SyncOutcome(str, enum.Enum):
    SETTLED = "settled"
    UNPAID = "unpaid"
    INCONCLUSIVE = "inconclusive"
    SKIPPED = "skipped"


@dataclass(slots=True)
class SyncResult:
    order_no: str
    outcome: SyncOutcome
    detail: str = ""


async def sync_pending_payment(
    db: AsyncSession,
    order: Order,
    *,
    gateway: Optional[LdcClient] = None,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
    grace_seconds: Optional[int] = None,
) -> SyncResult:
    """
    Сверить один pending-заказ со шлюзом.

    Выход: SyncResult; исключений наружу не бросает.
    Поля заказа читаются один раз на входе: откат неудачного расчёта
    протухает ORM-объект.
    """

    order_no = order.order_no
    status = order.status
    total_amount = order.total_amount
    created_at = ensure_utc(order.created_at)
    now = now or utcnow()
    grace = settings.PAYMENT_SYNC_GRACE_SEC if grace_seconds is None else grace_seconds

    if status != OrderStatus.PENDING.value:
        return SyncResult(order_no, SyncOutcome.SKIPPED, "not_pending")
    if created_at is not None and now - created_at < timedelta(seconds=grace):
        return SyncResult(order_no, SyncOutcome.SKIPPED, "within_grace")

    gateway = gateway or LdcClient()
    try:
        remote = await gateway.query_order(out_trade_no=order_no)
    except TransientGatewayError as exc:
        logger.warning(
            "Gateway query inconclusive",
            extra={"order_no": order_no, "error_type": type(exc).__name__, "error": str(exc)},
        )
        return SyncResult(order_no, SyncOutcome.INCONCLUSIVE, type(exc).__name__)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Gateway query failed unexpectedly", extra={"order_no": order_no})
        return SyncResult(order_no, SyncOutcome.INCONCLUSIVE, type(exc).__name__)

    if remote is None:
        return SyncResult(order_no, SyncOutcome.INCONCLUSIVE, "unknown_to_gateway")
    if not remote.is_paid:
        return SyncResult(order_no, SyncOutcome.UNPAID, f"status={remote.status}")
    if not amounts_match(remote.money, total_amount):
        logger.warning(
            "Gateway reports paid order with different amount",
            extra={"order_no": order_no, "received": remote.money},
        )
        return SyncResult(order_no, SyncOutcome.INCONCLUSIVE, "amount_mismatch")

    try:
        result = await settle(
            db,
            order_no=order_no,
            trade_no=remote.trade_no or None,
            paid_amount=remote.money,
            notifier=notifier,
            now=now,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Settlement from gateway query did not complete",
            extra={"order_no": order_no, "error_type": type(exc).__name__, "error": str(exc)},
        )
        return SyncResult(order_no, SyncOutcome.INCONCLUSIVE, type(exc).__name__)

    if result.already_settled:
        return SyncResult(order_no, SyncOutcome.SKIPPED, "already_settled")
    logger.info("Order settled by gateway query", extra={"order_no": order_no})
    return SyncResult(order_no, SyncOutcome.SETTLED, remote.trade_no)


async def sync_stale_pending_orders(
    db: AsyncSession,
    *,
    gateway: Optional[LdcClient] = None,
    notifier: Optional[NotificationDispatcher] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[SyncResult]:
    """Пакетная сверка pending-заказов, переживших grace-период."""

    now = now or utcnow()
    cutoff = now - timedelta(seconds=settings.PAYMENT_SYNC_GRACE_SEC)
    async with db.begin():
        orders = await OrderCRUD(db).list_stale_pending(
            created_before=cutoff, limit=limit or settings.RECONCILE_BATCH_SIZE
        )
    # Отсоединяем пачку: откат расчёта одного заказа не должен протухать остальные.
    for order in orders:
        db.expunge(order)

    gateway = gateway or LdcClient()
    results: List[SyncResult] = []
    for order in orders:
        results.append(
            await sync_pending_payment(db, order, gateway=gateway, notifier=notifier, now=now)
        )
    return results


__all__ = ["SyncOutcome", "SyncResult", "sync_pending_payment", "sync_stale_pending_orders"]
