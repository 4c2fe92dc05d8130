"""CRUD layer for orders: lookups, locking reads and the overdue sweep update."""

from __future__ import annotations

# ============================================================================
# Card Shop - crud/order_crud.py
# ---------------------------------------------------------------------------
# Назначение:
#   • Атомарные операции с таблицей orders без бизнес-решений.
#   • Блокирующее чтение заказа (FOR UPDATE) для расчёта и возвратов.
#   • Массовый перевод просроченных pending → expired одним UPDATE … RETURNING.
#
# Канон/инварианты:
#   • Модуль не трогает карты и sales_count: это делают сервисы в той же
#     транзакции.
#   • Списки по курсору (created_at DESC, id DESC), без OFFSET.
#   • commit/rollback выполняет вызывающий код.
#
# Запреты:
#   • Никаких проверок сумм, подписей и переходов статусов здесь.
# ============================================================================

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.logging_core import get_logger
from cardshop.models.order_models import Order
from cardshop.models.statuses import OrderStatus

logger = get_logger(__name__)


class OrderCRUD:
    """CRUD-обёртка для orders."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, order: Order) -> Order:
        """
        Добавить заказ и сделать flush.

        flush нужен, чтобы строка существовала до того, как карты сошлются
        на неё внешним ключом в той же транзакции.
        """

        self.session.add(order)
        await self.session.flush()
        return order

    async def get_by_order_no(
        self, order_no: str, *, for_update: bool = False
    ) -> Order | None:
        """
        Найти заказ по публичному номеру.

        for_update=True: блокирующее чтение строки до конца транзакции
        (расчёт, возвраты). На SQLite блокировка игнорируется: там
        запись сериализуется блокировкой файла.

        populate_existing: сессии живут с expire_on_commit=False, поэтому
        объект из прошлой транзакции всегда перечитывается из БД.
        """

        stmt: Select[Tuple[Order]] = (
            select(Order)
            .where(Order.order_no == order_no)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt)

    async def list_by_user(
        self,
        user_id: str,
        *,
        limit: int,
        cursor: tuple[datetime, str] | None = None,
    ) -> list[Order]:
        """
        Заказы пользователя, новые сверху.

        Курсор: (created_at, id) - строго меньше предыдущего.
        """

        stmt: Select[Tuple[Order]] = (
            select(Order)
            .where(Order.user_id == str(user_id))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        if cursor:
            ts, oid = cursor
            stmt = stmt.where(
                (Order.created_at < ts)
                | ((Order.created_at == ts) & (Order.id < oid))
            )

        result: Iterable[Order] = await self.session.scalars(stmt)
        return list(result)

    async def list_guest_by_email(self, email: str, *, limit: int) -> list[Order]:
        """Гостевые заказы (user_id IS NULL) по e-mail, новые сверху."""

        stmt: Select[Tuple[Order]] = (
            select(Order)
            .where(Order.email == email, Order.user_id.is_(None))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        result: Iterable[Order] = await self.session.scalars(stmt)
        return list(result)

    async def list_stale_pending(
        self, *, created_before: datetime, limit: int
    ) -> list[Order]:
        """
        pending-заказы старше created_before, самые старые первыми.

        Используется сверкой со шлюзом (компенсационные запросы).
        """

        stmt: Select[Tuple[Order]] = (
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.created_at < created_before,
            )
            .order_by(Order.created_at.asc(), Order.id.asc())
            .limit(limit)
        )
        result: Iterable[Order] = await self.session.scalars(stmt)
        return list(result)

    async def expire_overdue(self, now: datetime) -> List[Tuple[str, str]]:
        """
        pending с expired_at < now → expired одним UPDATE.

        Возвращает [(id, order_no), ...] переведённых заказов. Условие по
        статусу стоит в WHERE, поэтому заказ, оплаченный конкурентно, не
        будет затронут.
        """

        stmt = (
            update(Order)
            .where(
                Order.status == OrderStatus.PENDING.value,
                Order.expired_at < now,
            )
            .values(status=OrderStatus.EXPIRED.value, updated_at=now)
            .returning(Order.id, Order.order_no)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        rows: Sequence = result.all()
        return [(row[0], row[1]) for row in rows]


__all__ = ["OrderCRUD"]
