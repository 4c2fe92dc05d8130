# -*- coding: utf-8 -*-
# cardshop/schemas/shop_schemas.py
# =============================================================================
# Pydantic-схемы витрины: товар с вычисляемым остатком.
# =============================================================================

from __future__ import annotations

from typing import List

from cardshop.schemas.common_schemas import ApiModel, money_str
from cardshop.services.catalog_service import ProductView


class ProductOut(ApiModel):
    id: int
    name: str
    price: str
    min_quantity: int
    max_quantity: int
    available: int
    sales_count: int
    manual_fulfillment: bool

    @classmethod
    def from_view(cls, view: ProductView) -> "ProductOut":
        p = view.product
        return cls(
            id=p.id,
            name=p.name,
            price=money_str(p.price),
            min_quantity=p.min_quantity,
            max_quantity=p.max_quantity,
            available=view.available,
            sales_count=p.sales_count,
            manual_fulfillment=p.manual_fulfillment,
        )


class ProductListOut(ApiModel):
    items: List[ProductOut]


__all__ = ["ProductOut", "ProductListOut"]
