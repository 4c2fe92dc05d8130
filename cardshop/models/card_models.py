# -*- coding: utf-8 -*-
# cardshop/models/card_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Карта» (секретный код) Card Shop: единица складского учёта.
#
# Канон / инварианты:
#   • status: available → locked (резерв), locked → sold (оплата),
#     locked → available (просрочка), sold → available (возврат).
#   • order_id задан ⇔ status ∈ {locked, sold}.
#   • Карта принадлежит не более чем одному заказу; переходы делаются
#     guarded UPDATE с проверкой текущего статуса в WHERE.
#   • content - непрозрачный текст; в логи не попадает никогда.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database_core import Base
from .statuses import CardStatus

_CARD_STATUS_SQL = ",".join(f"'{s.value}'" for s in CardStatus)


class Card(Base):
    """Код товара на складе."""

    __tablename__ = "cards"
    __table_args__ = (
        CheckConstraint(f"status IN ({_CARD_STATUS_SQL})", name="ck_cards_status_enum"),
        CheckConstraint(
            "(status = 'available' AND order_id IS NULL) OR "
            "(status IN ('locked','sold') AND order_id IS NOT NULL)",
            name="ck_cards_owner_matches_status",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=CardStatus.AVAILABLE.value,
        server_default=CardStatus.AVAILABLE.value,
    )
    order_id: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        # content намеренно не выводим
        return f"<Card id={self.id} product={self.product_id} status={self.status} order={self.order_id}>"


# Выборка свободных карт товара в порядке id.
Index("ix_cards_product_status_id", Card.product_id, Card.status, Card.id)


__all__ = ["Card"]
