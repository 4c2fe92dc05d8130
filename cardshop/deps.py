# -*- coding: utf-8 -*-
# cardshop/deps.py
# =============================================================================
# Card Shop - Общие зависимости FastAPI: БД-сессия, покупатель из заголовков,
#             клиент шлюза и диспетчер уведомлений.
# -----------------------------------------------------------------------------
# Канон/требования:
#   • Аутентификация внешняя: доверенный фронт передаёт X-User-Id/X-User-Name.
#     Без X-User-Id покупатель - гость.
#   • Админ определяется только по X-Admin-Key == ADMIN_API_KEY.
#   • Транзакциями управляют сервисы; сессия отдаётся без открытой транзакции.
#
# Этот модуль НЕ делает бизнес-логику, только инфраструктуру.
# =============================================================================
from __future__ import annotations

from typing import AsyncGenerator, Optional

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from cardshop.core.database_core import lifespan_session
from cardshop.core.logging_core import get_logger, set_request_context
from cardshop.core.security_core import Buyer, is_admin_key
from cardshop.integrations.ldc_api import LdcClient
from cardshop.services.notifications_service import NotificationDispatcher, get_dispatcher

logger = get_logger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Выдаёт AsyncSession для роутов.
    • Сервис сам открывает и фиксирует транзакцию.
    • При выходе сессия закрывается, незавершённая транзакция откатывается.
    """
    async with lifespan_session() as session:
        yield session


async def get_buyer(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_name: Optional[str] = Header(default=None, alias="X-User-Name"),
    x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key"),
) -> Buyer:
    user_id = (x_user_id or "").strip() or None
    if user_id:
        set_request_context(user_id=user_id)
    return Buyer(
        user_id=user_id,
        username=(x_user_name or "").strip() or None,
        is_admin=is_admin_key(x_admin_key),
    )


def get_gateway() -> LdcClient:
    """Клиент шлюза на запрос (переопределяется в тестах)."""
    return LdcClient()


def get_notifier() -> NotificationDispatcher:
    return get_dispatcher()


__all__ = ["get_db", "get_buyer", "get_gateway", "get_notifier"]
