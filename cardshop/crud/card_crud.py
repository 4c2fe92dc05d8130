"""CRUD layer for cards: stock selection and guarded status flips."""

from __future__ import annotations

# ============================================================================
# Card Shop - crud/card_crud.py
# ---------------------------------------------------------------------------
# Назначение:
#   • Выборка свободных карт товара под блокировку (FOR UPDATE SKIP LOCKED).
#   • Guarded UPDATE всех переходов карт: текущий статус всегда в WHERE,
#     вызывающий сервис сверяет rowcount с ожидаемым количеством.
#   • Чтение содержимого карт заказа.
#
# Канон/инварианты:
#   • available: order_id IS NULL и locked_at IS NULL; locked/sold: order_id
#     задан. Каждый UPDATE выставляет/очищает обе колонки вместе со статусом.
#   • Порядок выдачи: по возрастанию id.
#   • commit/rollback выполняет вызывающий код.
#
# Запреты:
#   • content карт не логируется.
# ============================================================================

from datetime import datetime
from typing import Iterable, List, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.logging_core import get_logger
from cardshop.models.card_models import Card
from cardshop.models.statuses import CardStatus

logger = get_logger(__name__)


class CardCRUD:
    """CRUD-обёртка для cards."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_many(self, product_id: int, contents: Iterable[str]) -> int:
        """Загрузить новые карты товара (status=available). Возвращает количество."""

        rows = [{"product_id": int(product_id), "content": c} for c in contents]
        if not rows:
            return 0
        await self.session.execute(insert(Card), rows)
        return len(rows)

    async def count_available(self, product_id: int) -> int:
        stmt = select(func.count(Card.id)).where(
            Card.product_id == int(product_id),
            Card.status == CardStatus.AVAILABLE.value,
        )
        return int(await self.session.scalar(stmt) or 0)

    async def count_available_by_product(self, product_ids: Sequence[int]) -> dict[int, int]:
        """{product_id: свободно} для витрины; отсутствующие товары = 0."""

        if not product_ids:
            return {}
        stmt = (
            select(Card.product_id, func.count(Card.id))
            .where(
                Card.product_id.in_(list(product_ids)),
                Card.status == CardStatus.AVAILABLE.value,
            )
            .group_by(Card.product_id)
        )
        counts = {int(pid): 0 for pid in product_ids}
        for pid, cnt in (await self.session.execute(stmt)).all():
            counts[int(pid)] = int(cnt)
        return counts

    async def pick_available_for_update(self, product_id: int, limit: int) -> List[int]:
        """
        id первых `limit` свободных карт товара, заблокированных до конца
        транзакции. Строки, уже заблокированные чужой транзакцией,
        пропускаются (SKIP LOCKED), поэтому конкурентные резервы не ждут
        друг друга, а берут разные карты.
        """

        stmt = (
            select(Card.id)
            .where(
                Card.product_id == int(product_id),
                Card.status == CardStatus.AVAILABLE.value,
            )
            .order_by(Card.id.asc())
            .limit(int(limit))
            .with_for_update(skip_locked=True)
        )
        result: Iterable[int] = await self.session.scalars(stmt)
        return list(result)

    async def lock_for_order(
        self, card_ids: Sequence[int], *, order_id: str, now: datetime
    ) -> int:
        """available → locked для указанных карт. Возвращает rowcount."""

        stmt = (
            update(Card)
            .where(Card.id.in_(list(card_ids)), Card.status == CardStatus.AVAILABLE.value)
            .values(
                status=CardStatus.LOCKED.value,
                order_id=order_id,
                locked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def sell_locked_of_order(self, order_id: str, *, now: datetime) -> int:
        """locked → sold для всех карт заказа. Возвращает rowcount."""

        stmt = (
            update(Card)
            .where(Card.order_id == order_id, Card.status == CardStatus.LOCKED.value)
            .values(status=CardStatus.SOLD.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def release_locked_of_orders(self, order_ids: Sequence[str], *, now: datetime) -> int:
        """locked → available для карт перечисленных заказов (просрочка)."""

        if not order_ids:
            return 0
        stmt = (
            update(Card)
            .where(Card.order_id.in_(list(order_ids)), Card.status == CardStatus.LOCKED.value)
            .values(
                status=CardStatus.AVAILABLE.value,
                order_id=None,
                locked_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def restock_sold_of_order(self, order_id: str, *, now: datetime) -> int:
        """sold → available для карт заказа (одобренный возврат)."""

        stmt = (
            update(Card)
            .where(Card.order_id == order_id, Card.status == CardStatus.SOLD.value)
            .values(
                status=CardStatus.AVAILABLE.value,
                order_id=None,
                locked_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def contents_of_order(self, order_id: str) -> List[str]:
        """Содержимое карт заказа в порядке id."""

        stmt = select(Card.content).where(Card.order_id == order_id).order_by(Card.id.asc())
        result: Iterable[str] = await self.session.scalars(stmt)
        return list(result)


__all__ = ["CardCRUD"]
