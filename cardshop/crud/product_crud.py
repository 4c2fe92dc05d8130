"""CRUD layer for products (read side plus the sales counter)."""

from __future__ import annotations

# ============================================================================
# Card Shop - crud/product_crud.py
# ---------------------------------------------------------------------------
# Назначение:
#   • Чтение товаров для витрины и резерва.
#   • Атомарный инкремент sales_count при первом расчёте заказа.
#
# Запреты:
#   • Создание/редактирование товаров живёт во внешнем каталоге; здесь
#     только то, что нужно движку заказов.
# ============================================================================

from datetime import datetime
from typing import Iterable, Tuple

from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.models.product_models import Product


class ProductCRUD:
    """CRUD-обёртка для products."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, product_id: int) -> Product | None:
        return await self.session.get(Product, int(product_id), populate_existing=True)

    async def list_active(self, *, limit: int = 200) -> list[Product]:
        stmt: Select[Tuple[Product]] = (
            select(Product)
            .where(Product.is_active.is_(True))
            .order_by(Product.id.asc())
            .limit(limit)
        )
        result: Iterable[Product] = await self.session.scalars(stmt)
        return list(result)

    async def increment_sales(self, product_id: int, by: int, *, now: datetime) -> None:
        """sales_count += by одним UPDATE (без read-modify-write)."""

        stmt = (
            update(Product)
            .where(Product.id == int(product_id))
            .values(sales_count=Product.sales_count + int(by), updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)


__all__ = ["ProductCRUD"]
