# ============================================================================
# Card Shop - scheduler.reconcile_orders
# -----------------------------------------------------------------------------
# Назначение: вечный воркер сверки заказов. На каждом тике:
#   1) опрашивает шлюз по pending-заказам старше grace-периода (потерянные
#      вебхуки) и досчитывает оплаченные;
#   2) принудительно (без троттлинга) просрочивает истёкшие резервы и
#      возвращает их карты на склад.
#
# Канон/инварианты:
#   • Бизнес-логика только в сервисах (payment_sync_service, expiry_service);
#     воркер лишь вызывает их по таймеру.
#   • Сверка идёт раньше сборщика: заказ, оплаченный в последнюю секунду,
#     сначала досчитывается, а не просрочивается.
#
# Самовосстановление:
#   • _run_once_guarded ловит любые исключения, не валя цикл.
#   • _run_forever добавляет джиттер ко сну между тиками.
#   • На PostgreSQL advisory-лок исключает параллельный дубль в кластере;
#     лок живёт на выделенном соединении на весь тик;
#     на прочих СУБД (SQLite в разработке) лок не берётся.
#
# Запреты:
#   • Не меняет статусы/карты напрямую.
# ============================================================================
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from random import randint
from typing import AsyncIterator, Awaitable, Callable, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from ..core.config_core import get_settings
from ..core.database_core import get_engine, lifespan_session
from ..core.logging_core import get_logger
from ..core.utils_core import utcnow
from ..integrations.ldc_api import LdcClient
from ..services.expiry_service import release_expired_orders
from ..services.notifications_service import NotificationDispatcher, get_dispatcher
from ..services.payment_sync_service import SyncOutcome, sync_stale_pending_orders

logger = get_logger(__name__)
settings = get_settings()

_LOCK_KEY = 73_100


@asynccontextmanager
async def _tick_lock(engine: AsyncEngine) -> AsyncIterator[bool]:
    """
    Advisory-лок на тик: единственный воркер в кластере.

    Лок сессионный, поэтому держим его на отдельном соединении от взятия
    до снятия; сервисы работают через свои сессии из пула. На прочих СУБД
    (SQLite в разработке) лок не берётся.
    """

    if engine.dialect.name != "postgresql":
        yield True
        return
    async with engine.connect() as conn:
        conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        result = await conn.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": _LOCK_KEY})
        locked = bool(result.scalar_one())
        try:
            yield locked
        finally:
            if locked:
                await conn.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": _LOCK_KEY})


async def run_once(
    db: AsyncSession,
    *,
    gateway: Optional[LdcClient] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> None:
    """Один проход сверки и сборщика на готовой сессии."""

    results = await sync_stale_pending_orders(db, gateway=gateway, notifier=notifier)
    settled = sum(1 for r in results if r.outcome is SyncOutcome.SETTLED)
    report = await release_expired_orders(db, notifier=notifier)
    logger.info(
        "reconcile tick done",
        extra={
            "checked": len(results),
            "settled": settled,
            "expired": len(report.expired_orders),
            "released_cards": report.released_cards,
        },
    )


async def _run_once_guarded(*, gateway: Optional[LdcClient] = None) -> None:
    """Один тик: сверяем и чистим, не падая при ошибках."""

    try:
        async with _tick_lock(get_engine()) as locked:
            if not locked:
                logger.info("reconcile tick skipped: lock held")
                return
            async with lifespan_session() as session:
                await run_once(session, gateway=gateway, notifier=get_dispatcher())
    except Exception as exc:  # noqa: BLE001 - фиксируем, но не падаем
        logger.exception(
            "reconcile tick failed", extra={"error": str(exc), "ts": utcnow().isoformat()}
        )


async def _run_forever(sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    """Бесконечный цикл с мягкими ретраями и контролем тика."""

    base_sleep = settings.RECONCILE_INTERVAL_SEC
    while True:
        await _run_once_guarded()
        await get_dispatcher().drain()
        jitter = randint(-5, 5)
        await sleeper(max(1, base_sleep + jitter))


def run_forever() -> None:
    """Точка входа: вечный цикл, который не падает и сам себя лечит."""

    asyncio.run(_run_forever())


if __name__ == "__main__":
    run_forever()

# ============================================================================
# Пояснения «для чайника»:
#   • Вебхук шлюза может потеряться: воркер раз в RECONCILE_INTERVAL_SEC
#     сам спрашивает шлюз о «зависших» pending-заказах.
#   • Если шлюз говорит «оплачено», заказ досчитывается так же, как вебхуком
#     (тот же settle, та же идемпотентность).
#   • Просроченные резервы освобождаются и без воркера (при чтении каталога),
#     воркер лишь гарантирует это даже без трафика.
# ============================================================================
