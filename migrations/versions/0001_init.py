# -*- coding: utf-8 -*-
"""Initial migration for Card Shop.

Назначение:
    • Создать таблицы products, orders, cards по текущим моделям.
    • Задать ограничения и индексы из ORM-моделей: уникальный order_no,
      CHECK на статусы и на связку card.status ↔ card.order_id, составной
      индекс (product_id, status, id) для выбора свободных карт.

Канон/инварианты:
    • Таблицы создаются через Declarative Base, что исключает расхождение
      между миграцией и моделями.
    • checkfirst=True: повторный запуск не ломает БД.
"""

from __future__ import annotations

from alembic import op

from cardshop.core.database_core import Base
from cardshop.core.logging_core import get_logger
from cardshop.models import MODEL_REGISTRY

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels = None
depends_on = None

logger = get_logger(__name__)


def upgrade() -> None:
    """Создать все таблицы/индексы из моделей."""

    bind = op.get_bind()
    logger.info("Creating Card Shop tables", extra={"models": sorted(MODEL_REGISTRY)})
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Удалить таблицы Card Shop (для чистого отката)."""

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
