# -*- coding: utf-8 -*-
# cardshop/models/order_models.py
# =============================================================================
# Назначение кода:
#   ORM-модель «Заказ» Card Shop. Заказ проходит путь:
#   pending → (paid | completed) → refund_pending → (refunded | refund_rejected),
#   либо pending → expired, если оплата не пришла до expired_at.
#
# Канон / инварианты:
#   • order_no UNIQUE: его видит покупатель и он же уходит в шлюз как
#     out_trade_no.
#   • id - uuid hex, генерируется в Python: ссылки карт на заказ можно
#     выставить в той же транзакции без flush.
#   • expired_at задаётся при создании и больше не меняется.
#   • paid_at задан ⇔ статус из PAID_STATES; возврат его не сбрасывает.
#   • Статус меняется только через transition_to() или сервисные guarded
#     UPDATE с тем же набором переходов.
#   • Денежные поля: Numeric(12,2), сравнение только Decimal.
#
# Запреты:
#   • Модель НЕ трогает карты и счётчики продаж: это делают сервисы в одной
#     транзакции с переходом статуса.
# =============================================================================

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Numeric

from ..core.database_core import Base
from .statuses import OrderStatus, assert_order_transition, order_status_of

_ORDER_STATUS_SQL = ",".join(f"'{s.value}'" for s in OrderStatus)


def new_order_id() -> str:
    return uuid.uuid4().hex


class Order(Base):
    """
    Заказ на N карт одного товара.

    Поля:
      • order_no            - публичный номер (LD + время + 6 цифр).
      • product_name        - снимок названия товара на момент заказа.
      • total_amount        - price × quantity, зафиксировано при создании.
      • payment_method      - тег способа оплаты (по умолчанию 'ldc').
      • trade_no            - номер транзакции шлюза (после оплаты).
      • user_id/username    - покупатель (None у гостя).
      • email/query_password_hash - реквизиты гостевого поиска заказа.
      • refund_*/admin_remark - жизненный цикл возврата.
    """

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(f"status IN ({_ORDER_STATUS_SQL})", name="ck_orders_status_enum"),
        CheckConstraint("quantity >= 1", name="ck_orders_quantity_pos"),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_nonneg"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_order_id)
    order_no: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        index=True,
        default=OrderStatus.PENDING.value,
        server_default=OrderStatus.PENDING.value,
    )
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="ldc", server_default="ldc")
    trade_no: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    # Покупатель
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    username: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    query_password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Жизненный цикл
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Возврат
    refund_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refund_requested_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_remark: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def status_enum(self) -> OrderStatus:
        return order_status_of(self.status)

    def transition_to(self, target: Union[str, OrderStatus]) -> OrderStatus:
        """
        Переводит заказ в target, если переход разрешён.

        Исключения: InvalidTransitionError (объект не меняется).
        """
        dst = assert_order_transition(self.status, target)
        self.status = dst.value
        return dst

    def __repr__(self) -> str:
        return f"<Order no={self.order_no} product={self.product_id} qty={self.quantity} status={self.status}>"


# Выборки сборщика просрочек и сверки: pending по сроку/возрасту.
Index("ix_orders_status_expired", Order.status, Order.expired_at)
Index("ix_orders_status_created", Order.status, Order.created_at)


__all__ = ["Order", "new_order_id"]
# =============================================================================
# Пояснения «для чайника»:
#   • Почему paid и completed - разные статусы?
#     Часть товаров выдаётся мгновенно (сразу completed), часть требует
#     ручного шага (paid, затем completed). Выбор делается флагом товара
#     manual_fulfillment.
#
#   • Что будет, если оплата придёт после expired?
#     Ничего: заказ терминален, карты уже вернулись на склад. Сервис ответит
#     StaleConfirmation, шлюзу уйдёт «success», чтобы он перестал повторять.
# =============================================================================
