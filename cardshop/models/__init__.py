# -*- coding: utf-8 -*-
# cardshop/models/__init__.py
# =============================================================================
# Назначение кода:
#   Единая точка входа слоя моделей Card Shop:
#    • импорт всех ORM-моделей (нужно Alembic и create_all в тестах),
#    • реестр MODEL_REGISTRY,
#    • models_health(): все ли ключевые таблицы зарегистрированы в Base.
#
# Запреты:
#   • Никакой бизнес-логики, DDL/DML и create_all() здесь.
# =============================================================================

from __future__ import annotations

from typing import Dict, List, Type

from ..core.database_core import Base
from ..core.logging_core import get_logger
from .card_models import Card
from .order_models import Order, new_order_id
from .product_models import Product
from .statuses import CardStatus, OrderStatus

logger = get_logger(__name__)

MODEL_REGISTRY: Dict[str, Type[Base]] = {
    "Product": Product,
    "Order": Order,
    "Card": Card,
}

_REQUIRED_TABLES = ("products", "orders", "cards")


def models_health() -> Dict[str, object]:
    """Отчёт о наличии ключевых таблиц в Base.metadata."""
    known = set(Base.metadata.tables)
    missing: List[str] = [t for t in _REQUIRED_TABLES if t not in known]
    if missing:
        logger.warning("models: missing tables %s", missing)
    return {"ok": not missing, "tables": sorted(known), "missing": missing}


__all__ = [
    "Base",
    "MODEL_REGISTRY",
    "models_health",
    "Product",
    "Order",
    "Card",
    "OrderStatus",
    "CardStatus",
    "new_order_id",
]
