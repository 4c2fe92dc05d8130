# -*- coding: utf-8 -*-
# cardshop/routes/__init__.py
# =============================================================================
# HTTP-роутеры Card Shop. Подключаются в create_app() под API_PREFIX.
# =============================================================================

from . import admin_routes, orders_routes, payment_routes, shop_routes

__all__ = ["admin_routes", "orders_routes", "payment_routes", "shop_routes"]
