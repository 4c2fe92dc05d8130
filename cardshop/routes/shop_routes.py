# -*- coding: utf-8 -*-
# cardshop/routes/shop_routes.py
# =============================================================================
# Назначение кода:
# Витрина магазина: список активных товаров и карточка товара с остатком.
#
# Канон / инварианты:
# • Каждое чтение витрины попутно запускает сборщик просроченных резервов
#   (с троттлингом на процесс); сбой сборщика не ломает ответ.
# • Остаток считается по картам в статусе available на момент запроса.
# =============================================================================

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.deps import get_db, get_notifier
from cardshop.schemas.shop_schemas import ProductListOut, ProductOut
from cardshop.services.catalog_service import get_product, list_products
from cardshop.services.notifications_service import NotificationDispatcher

router = APIRouter(prefix="/products", tags=["shop"])


@router.get("", response_model=ProductListOut)
async def products_list(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ProductListOut:
    views = await list_products(db, notifier=notifier)
    return ProductListOut(items=[ProductOut.from_view(v) for v in views])


@router.get("/{product_id}", response_model=ProductOut)
async def product_detail(
    product_id: int,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> ProductOut:
    return ProductOut.from_view(await get_product(db, product_id, notifier=notifier))


__all__ = ["router"]
