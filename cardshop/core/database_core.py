# -*- coding: utf-8 -*-
# cardshop/core/database_core.py
# =============================================================================
# Назначение кода:
#   • Единая точка работы с БД Card Shop (PostgreSQL + asyncpg + SQLAlchemy 2.0).
#   • Декларативный Base для всех моделей.
#   • Создание и конфигурация AsyncEngine и async_sessionmaker.
#   • Выдача сессий (lifespan_session) для зависимостей FastAPI и планировщика.
#   • Health-утилита db_ping().
#
# Канон / инварианты:
#   • Только async-движок (create_async_engine).
#   • DSN берём из Settings.database_url_async(): единый источник истины.
#   • Сессии expire_on_commit=False: заказ/карты остаются читаемыми после
#     commit (сервисы отдают их наружу уже после фиксации транзакции).
#   • Транзакциями управляют сервисы (async with session.begin()), не этот модуль.
#
# Самовосстановление:
#   • db_ping() для /health и самопроверки перед стартом планировщика.
#
# Запреты:
#   • Никакой бизнес-логики (резерв, оплата, возвраты) в этом модуле.
#   • Никаких DDL здесь: схема создаётся миграциями Alembic.
# =============================================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from cardshop.core.config_core import get_settings
from cardshop.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    """Единый declarative Base проекта (products, orders, cards)."""


# -----------------------------------------------------------------------------
# Глобальные объекты: движок и фабрика сессий
# -----------------------------------------------------------------------------
_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker[AsyncSession]] = None


def _create_engine() -> AsyncEngine:
    """
    Создаёт новый AsyncEngine на базе актуальных настроек.

    • DSN приводится к asyncpg-формату через Settings.database_url_async().
    • pool_pre_ping для раннего обнаружения "умерших" соединений.
    • echo только в DEBUG-режиме.
    """
    dsn = settings.database_url_async()
    logger.info("Creating async DB engine", extra={"dsn_set": bool(dsn)})
    kwargs = {"pool_pre_ping": True, "echo": settings.DEBUG}
    if dsn.startswith("postgresql"):
        kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)
    return create_async_engine(dsn, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Строит async_sessionmaker поверх переданного движка.

    • expire_on_commit=False: объекты остаются валидными после commit().
    • autoflush=False: явный контроль flush.
    """
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )


def get_engine() -> AsyncEngine:
    """Возвращает текущий AsyncEngine, лениво создавая его при первом вызове."""
    global _engine, _SessionFactory

    if _engine is None:
        engine = _create_engine()
        _engine = engine
        _SessionFactory = create_session_factory(engine)
        logger.info("DB engine lazily initialized")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Возвращает фабрику сессий (гарантирует, что движок создан)."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = create_session_factory(get_engine())
        logger.info("Session factory initialized")
    return _SessionFactory


# -----------------------------------------------------------------------------
# Выдача сессий
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan_session() -> AsyncIterator[AsyncSession]:
    """
    Сессия на время одной единицы работы вне HTTP (планировщик, сборщик
    просрочек). Commit/rollback делает вызывающий код; при выходе сессия
    закрывается, незавершённая транзакция откатывается.
    """
    session = get_session_factory()()
    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception:  # noqa: BLE001
            logger.warning("Failed to close DB session", exc_info=True)


# -----------------------------------------------------------------------------
# Health-check / ping
# -----------------------------------------------------------------------------
async def db_ping() -> bool:
    """
    Простейший health-check БД: True, если SELECT 1 прошёл.
    """
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except (OperationalError, DBAPIError) as exc:
        logger.error("DB ping failed: DB is not reachable", extra={"error": str(exc)})
        return False
    except Exception as exc:  # noqa: BLE001
        logger.exception("DB ping failed with unexpected error", extra={"error": str(exc)})
        return False


# ВАЖНО:
# • Движок не создаётся при импорте, чтобы не ломать миграции и тесты;
#   get_engine()/get_session_factory() создают его лениво.
# =============================================================================

__all__ = [
    "AsyncSession",
    "AsyncEngine",
    "Base",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "lifespan_session",
    "db_ping",
]
