# -*- coding: utf-8 -*-
# cardshop/models/product_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Товар» Card Shop в минимальном объёме, нужном движку заказов:
#   цена, границы количества, активность, счётчик продаж и режим выдачи.
#   Полноценный каталог (категории, описания, картинки) живёт снаружи.
#
# Канон / инварианты:
#   • Остаток НЕ хранится: это count(cards WHERE status='available').
#   • sales_count растёт только в сервисе расчёта (settlement), на quantity
#     заказа, ровно один раз за заказ.
#   • manual_fulfillment=True: оплаченный заказ останавливается в 'paid'
#     (нужен ручной шаг), иначе сразу 'completed'.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, false, func, true
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base


class Product(Base):
    """
    Товар: карточки (коды) которого продаются поштучно.

    Поля:
      • price              - цена за единицу, Numeric(12,2).
      • min_quantity/max_quantity - границы количества в одном заказе.
      • sales_count        - сколько единиц продано (для витрины).
      • manual_fulfillment - выдача требует ручного шага после оплаты.
    """

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_nonneg"),
        CheckConstraint("min_quantity >= 1", name="ck_products_min_qty_pos"),
        CheckConstraint("max_quantity >= min_quantity", name="ck_products_qty_bounds"),
        CheckConstraint("sales_count >= 0", name="ck_products_sales_nonneg"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    min_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    max_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default="10")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    sales_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    manual_fulfillment: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} price={self.price} active={self.is_active}>"


__all__ = ["Product"]
