# -*- coding: utf-8 -*-
# cardshop/services/__init__.py
# =============================================================================
# Card Shop - сервисный слой (единая точка входа)
# -----------------------------------------------------------------------------
# Назначение файла:
#   • Единый вход для сервисов жизненного цикла заказа: резерв, расчёт
#     оплаты, вебхук, сверка со шлюзом, сборщик просрочек, возвраты, чтение.
#
# Важные принципы:
#   • Никакой бизнес-логики здесь нет - только импорты.
#   • Каждый сервис сам открывает транзакцию (async with db.begin()):
#     вызывающий код передаёт сессию без открытой транзакции.
# =============================================================================

from __future__ import annotations

from .catalog_service import ProductView, get_product, list_products  # noqa: F401
from .expiry_service import maybe_release_expired, release_expired_orders  # noqa: F401
from .notifications_service import NotificationDispatcher, get_dispatcher  # noqa: F401
from .orders_service import (  # noqa: F401
    OrderView,
    get_order,
    list_orders_for_user,
    lookup_guest_orders,
)
from .payment_notify_service import NotifyOutcome, confirm_payment  # noqa: F401
from .payment_sync_service import (  # noqa: F401
    SyncOutcome,
    sync_pending_payment,
    sync_stale_pending_orders,
)
from .refund_service import (  # noqa: F401
    approve_refund,
    client_refund_params,
    refund_via_gateway,
    reject_refund,
    request_refund,
)
from .reservation_service import ReservationResult, reserve  # noqa: F401
from .settlement_service import SettlementResult, settle  # noqa: F401

__all__ = [
    "ProductView",
    "get_product",
    "list_products",
    "maybe_release_expired",
    "release_expired_orders",
    "NotificationDispatcher",
    "get_dispatcher",
    "OrderView",
    "get_order",
    "list_orders_for_user",
    "lookup_guest_orders",
    "NotifyOutcome",
    "confirm_payment",
    "SyncOutcome",
    "sync_pending_payment",
    "sync_stale_pending_orders",
    "approve_refund",
    "client_refund_params",
    "refund_via_gateway",
    "reject_refund",
    "request_refund",
    "ReservationResult",
    "reserve",
    "SettlementResult",
    "settle",
]
