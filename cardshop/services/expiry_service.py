# -*- coding: utf-8 -*-
# cardshop/services/expiry_service.py
# =============================================================================
# Назначение кода:
#   Сборщик просроченных резервов: pending-заказы с expired_at < now
#   переводятся в expired, их locked-карты возвращаются на склад.
#
# Канон / инварианты:
#   • Одна транзакция: UPDATE orders … RETURNING id, затем UPDATE cards
#     locked → available для этих id (order_id и locked_at очищаются).
#   • Условие status='pending' в WHERE: заказ, который конкурентно успели
#     оплатить, не будет просрочен.
#   • Карта после возврата неотличима от карты до резерва и сразу доступна.
#   • Запуск «попутно» с чтением каталога, не чаще EXPIRY_SWEEP_INTERVAL_SEC
#     на процесс (IntervalThrottle); планировщик сверки вызывает проход
#     принудительно.
#
# Самовосстановление:
#   • maybe_release_expired() никогда не роняет запрос каталога: ошибка
#     логируется и проглатывается, следующий проход повторит работу.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.config_core import get_settings
from cardshop.core.logging_core import get_logger
from cardshop.core.system_locks import IntervalThrottle
from cardshop.core.utils_core import utcnow
from cardshop.crud.card_crud import CardCRUD
from cardshop.crud.order_crud import OrderCRUD
from cardshop.services.notifications_service import (
    NotificationDispatcher,
    NotificationEvent,
    get_dispatcher,
)

logger = get_logger(__name__)
settings = get_settings()

sweep_throttle = IntervalThrottle(settings.EXPIRY_SWEEP_INTERVAL_SEC)


@dataclass(slots=True)
class ReleaseReport:
    expired_orders: List[str] = field(default_factory=list)
    released_cards: int = 0


async def release_expired_orders(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> ReleaseReport:
    """Просрочить все pending с истёкшим сроком и вернуть их карты на склад."""

    now = now or utcnow()
    async with db.begin():
        expired = await OrderCRUD(db).expire_overdue(now)
        released = await CardCRUD(db).release_locked_of_orders(
            [order_id for order_id, _ in expired], now=now
        )

    report = ReleaseReport(expired_orders=[order_no for _, order_no in expired], released_cards=released)
    if report.expired_orders:
        logger.info(
            "Expired reservations released",
            extra={"orders": len(report.expired_orders), "cards": released},
        )
        dispatcher = notifier or get_dispatcher()
        for order_no in report.expired_orders:
            dispatcher.emit(NotificationEvent.ORDER_EXPIRED, order_no)
    return report


async def maybe_release_expired(
    db: AsyncSession,
    *,
    throttle: Optional[IntervalThrottle] = None,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None,
) -> Optional[ReleaseReport]:
    """
    Проход сборщика, если с прошлого прошло не меньше интервала.

    Выход: ReleaseReport или None (троттлинг/ошибка). Никогда не бросает.
    """

    if not (throttle or sweep_throttle).try_acquire():
        return None
    try:
        return await release_expired_orders(db, now=now, notifier=notifier)
    except Exception:  # noqa: BLE001
        logger.exception("Expiry sweep failed")
        return None


__all__ = ["ReleaseReport", "release_expired_orders", "maybe_release_expired", "sweep_throttle"]
