# -*- coding: utf-8 -*-
# cardshop/services/catalog_service.py
# =============================================================================
# Назначение кода:
#   Витрина товаров: активные товары с вычисляемым остатком. Каждое чтение
#   витрины попутно запускает (с троттлингом) сборщик просроченных резервов,
#   чтобы брошенные заказы возвращали карты на склад без отдельного процесса.
#
# Канон / инварианты:
#   • Остаток = count(cards WHERE status='available'), нигде не кэшируется.
#   • Сборщик отрабатывает ДО подсчёта остатков: покупатель видит уже
#     освобождённые карты.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.errors_core import NotFoundError
from cardshop.core.system_locks import IntervalThrottle
from cardshop.crud.card_crud import CardCRUD
from cardshop.crud.product_crud import ProductCRUD
from cardshop.models.product_models import Product
from cardshop.services.expiry_service import maybe_release_expired
from cardshop.services.notifications_service import NotificationDispatcher


@dataclass(slots=True)
class ProductView:
    product: Product
    available: int


async def list_products(
    db: AsyncSession,
    *,
    throttle: Optional[IntervalThrottle] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> List[ProductView]:
    await maybe_release_expired(db, throttle=throttle, notifier=notifier)
    async with db.begin():
        products = await ProductCRUD(db).list_active()
        counts = await CardCRUD(db).count_available_by_product([p.id for p in products])
    return [ProductView(product=p, available=counts.get(p.id, 0)) for p in products]


async def get_product(
    db: AsyncSession,
    product_id: int,
    *,
    throttle: Optional[IntervalThrottle] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> ProductView:
    """Исключения: NotFoundError для несуществующего или выключенного товара."""

    await maybe_release_expired(db, throttle=throttle, notifier=notifier)
    async with db.begin():
        product = await ProductCRUD(db).get_by_id(product_id)
        if product is None or not product.is_active:
            raise NotFoundError("Product not found.", details={"product_id": product_id})
        available = await CardCRUD(db).count_available(product.id)
    return ProductView(product=product, available=available)


__all__ = ["ProductView", "list_products", "get_product"]
