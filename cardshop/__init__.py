# ==============================================================================
# Card Shop - FastAPI application factory
# ------------------------------------------------------------------------------
# Назначение: создаёт и конфигурирует FastAPI-приложение магазина кодов карт,
# подключает middleware корреляции, CORS, обработчики ошибок и роутеры.
#
# Канон/инварианты:
#   • Все API-роутеры живут под API_PREFIX (по умолчанию /api); /health - в корне.
#   • Ошибки домена (CardShopError) превращаются в стабильный JSON
#     {error, message, details}; вебхук оплаты отвечает текстом сам.
#   • Склад и статусы заказов меняют только сервисы; фабрика их не трогает.
#
# Самовосстановление:
#   • create_app() повторяем: каждое обращение собирает новое приложение.
#   • При остановке дожидаемся уже запланированных уведомлений, чтобы не
#     терять сообщения о платежах.
#
# Запреты:
#   • Не запускает планировщик сверки: он работает отдельным процессом
#     (python -m cardshop.scheduler.reconcile_orders).
# ==============================================================================
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config_core import get_settings
from .core.database_core import db_ping
from .core.errors_core import setup_exception_handlers
from .core.logging_core import CorrelationIdMiddleware, get_logger
from .routes import admin_routes, orders_routes, payment_routes, shop_routes
from .schemas.common_schemas import HealthOut
from .services.notifications_service import get_dispatcher

logger = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Card Shop API starting")
    yield
    dispatcher = get_dispatcher()
    if dispatcher.pending:
        logger.info("Draining notifications", extra={"pending": dispatcher.pending})
    await dispatcher.drain()
    logger.info("Card Shop API stopped")


def create_app() -> FastAPI:
    """Создать FastAPI-приложение с middleware, обработчиками ошибок и роутерами."""

    settings = get_settings()
    app = FastAPI(title=settings.PROJECT_NAME, version=settings.APP_VERSION, lifespan=_lifespan)
    app.add_middleware(CorrelationIdMiddleware)

    origins = settings.effective_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    setup_exception_handlers(app)

    prefix = settings.API_PREFIX.rstrip("/")
    app.include_router(shop_routes.router, prefix=prefix)
    app.include_router(orders_routes.router, prefix=prefix)
    app.include_router(payment_routes.router, prefix=prefix)
    app.include_router(admin_routes.router, prefix=prefix)

    @app.get("/health", tags=["health"], response_model=HealthOut)
    async def health() -> HealthOut:
        """Живость сервиса и доступность БД без побочных эффектов."""

        db_ok = await db_ping()
        return HealthOut(
            status="ok" if db_ok else "degraded",
            db=db_ok,
            config=settings.debug_dump(),
        )

    logger.info("FastAPI app initialised", extra={"api_prefix": prefix})
    return app


# ==============================================================================
# Пояснения «для чайника»:
#   • Этот модуль ничего не пишет в БД: только собирает API.
#   • Просроченные резервы освобождаются при чтении каталога (лениво) и
#     отдельным процессом сверки; фабрика об этом не заботится.
#   • Вебхук шлюза: GET {API_PREFIX}/payment/notify, ответ "success"/"fail".
# ==============================================================================
