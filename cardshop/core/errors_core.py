# -*- coding: utf-8 -*-
# cardshop/core/errors_core.py
# =============================================================================
# Назначение кода:
#   • Единый слой ошибок/исключений Card Shop.
#   • Канонические коды ошибок для фронтенда/логов.
#   • Унифицированные JSON-ответы для FastAPI.
#
# Канон / инварианты:
#   • Сервисы заказов/карт бросают ТОЛЬКО доменные исключения из этого
#     модуля (ошибки шлюза живут в integrations.ldc_api и до покупателя
#     не доходят: сверка со шлюзом их глотает).
#   • Покупатель видит маленький стабильный набор причин (out_of_stock,
#     already_processed, not_found, ...), без технических деталей.
#   • Для всех известных исключений есть стабильные code и http_status.
#
# Самовосстановление:
#   • Любая неизвестная ошибка логируется как INTERNAL, но наружу выдаётся
#     безопасное сообщение "internal_error" без деталей.
#   • HTTPException пропускается, но дополняется стандартным JSON-форматом.
#   • Дедлок / таймаут блокировки БД отдаётся как concurrency_conflict (409):
#     клиент может безопасно повторить запрос.
#
# Запреты:
#   • Не включать сюда бизнес-логику.
#   • Не логировать здесь секреты и содержимое карт.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError

from cardshop.core.logging_core import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Базовая доменная ошибка
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class CardShopError(Exception):
    """
    Базовое доменное исключение.

    Поля:
      • code: стабильный машинный код ошибки (snake_case).
      • message: короткое безопасное сообщение для клиента.
      • http_status: HTTP код по умолчанию (можно переопределить).
      • details: безопасные детали (без секретов), опционально.
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Готовит JSON-ответ для клиента."""
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# -----------------------------------------------------------------------------
# Общие ошибки
# -----------------------------------------------------------------------------
class NotFoundError(CardShopError):
    """Ресурс не найден (товар, чужой заказ и т.п.)."""

    def __init__(
        self,
        message: str = "Resource not found.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


class ValidationError(CardShopError):
    """Некорректные входные данные (количество вне min/max, нет email и т.п.)."""

    def __init__(
        self,
        message: str = "Invalid data.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="validation_error",
            message=message,
            http_status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details or {},
        )


class PermissionDeniedError(CardShopError):
    """Нет прав на операцию (админские ручки без ключа)."""

    def __init__(
        self,
        message: str = "Permission denied.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="permission_denied",
            message=message,
            http_status=status.HTTP_403_FORBIDDEN,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Резерв / склад карт
# -----------------------------------------------------------------------------
class OutOfStockError(CardShopError):
    """Свободных карт меньше, чем запрошено. Лечится повтором или пополнением."""

    def __init__(
        self,
        message: str = "Out of stock.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="out_of_stock",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class ConcurrencyConflictError(CardShopError):
    """Гонка за строки не разрешилась за бюджет ретраев; клиенту стоит повторить."""

    def __init__(
        self,
        message: str = "Concurrent update, please retry.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="concurrency_conflict",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


class InventoryIntegrityError(CardShopError):
    """Набор карт заказа не совпал с ожидаемым; транзакция откатывается целиком."""

    def __init__(
        self,
        message: str = "Inventory state is inconsistent.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="inventory_mismatch",
            message=message,
            http_status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details or {},
        )


class InvalidTransitionError(CardShopError):
    """Недопустимый переход статуса заказа или карты."""

    def __init__(
        self,
        message: str = "Order is already processed.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="already_processed",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Вебхук / подтверждение оплаты
# -----------------------------------------------------------------------------
class IdentityMismatchError(CardShopError):
    """pid уведомления не совпадает с нашим мерчантом."""

    def __init__(
        self,
        message: str = "Merchant id mismatch.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="identity_mismatch",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class BadSignatureError(CardShopError):
    """Подпись уведомления не сошлась."""

    def __init__(
        self,
        message: str = "Bad signature.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="bad_signature",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class AmountMismatchError(CardShopError):
    """Оплаченная сумма не равна сумме заказа (точное Decimal-сравнение)."""

    def __init__(
        self,
        message: str = "Amount mismatch.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="amount_mismatch",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class OrderNotFoundError(CardShopError):
    """Заказ по номеру не найден (вебхук, сверка, чтение)."""

    def __init__(
        self,
        message: str = "Order not found.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


class StaleConfirmationError(CardShopError):
    """Оплата пришла на заказ, уже ушедший в expired/refunded/refund_rejected."""

    def __init__(
        self,
        message: str = "Order can no longer be settled.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="stale_confirmation",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Возвраты
# -----------------------------------------------------------------------------
class RefundDisabledError(CardShopError):
    """Возвраты выключены (LDC_REFUND_MODE=disabled)."""

    def __init__(
        self,
        message: str = "Refunds are disabled.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="refund_disabled",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class RefundNotConfirmedError(CardShopError):
    """Внешний возврат не подтверждён: статус заказа не меняем."""

    def __init__(
        self,
        message: str = "External refund was not confirmed.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="refund_not_confirmed",
            message=message,
            http_status=status.HTTP_409_CONFLICT,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Конфликты блокировок БД
# -----------------------------------------------------------------------------
# serialization_failure, deadlock_detected, lock_not_available
_LOCK_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_lock_conflict(exc: BaseException) -> bool:
    """
    True, если ошибка драйвера означает проигранную гонку за строки:
    дедлок, сбой сериализации, таймаут блокировки (PostgreSQL) или
    «database is locked» (SQLite). Такой запрос безопасно повторить.
    """
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    for source in (orig, getattr(orig, "__cause__", None)):
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if code in _LOCK_SQLSTATES:
            return True
    return "database is locked" in str(orig).lower()


# -----------------------------------------------------------------------------
# Нормализация исключений → (status_code, payload)
# -----------------------------------------------------------------------------
def normalize_exception(exc: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Приводит произвольное исключение к каноническому HTTP-ответу.

    Правила:
      • CardShopError  → свой http_status + to_payload().
      • Конфликт блокировок БД → как ConcurrencyConflictError (409).
      • HTTPException  → status_code + {"error": "http_error", "message", ...}.
      • Любая другая   → 500 + {"error": "internal_error"} (без деталей).
    """
    if isinstance(exc, CardShopError):
        return exc.http_status, exc.to_payload()

    if is_lock_conflict(exc):
        logger.warning("DB lock conflict", extra={"error_type": type(exc).__name__})
        conflict = ConcurrencyConflictError()
        return conflict.http_status, conflict.to_payload()

    if isinstance(exc, HTTPException):
        details: Dict[str, Any] = {}
        if isinstance(exc.detail, str):
            msg = exc.detail
        elif isinstance(exc.detail, dict):
            details = cast(Dict[str, Any], exc.detail)
            msg = details.get("message") or details.get("detail") or "HTTP error."
        else:
            msg = "HTTP error."

        payload: Dict[str, Any] = {"error": "http_error", "message": msg}
        if details:
            payload["details"] = details
        return exc.status_code, payload

    # Неизвестная внутренняя ошибка: логируем подробно, наружу только код.
    logger.exception("Unhandled exception", extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "internal_error", "message": "Internal server error."},
    )


# -----------------------------------------------------------------------------
# FastAPI-хендлеры исключений
# -----------------------------------------------------------------------------
async def cardshop_error_handler(request: Request, exc: CardShopError) -> JSONResponse:
    """Обработчик CardShopError: структурированный JSON с кодом ошибки."""
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "CardShopError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Обработчик "на всё остальное".

    Логируем stack trace и тип исключения; клиенту отдаём только internal_error.
    """
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={"path": request.url.path, "status": status_code, "exc_type": type(exc).__name__},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def db_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    """Ошибки драйвера БД: конфликт блокировок → 409, прочее → internal_error."""
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "DB error handled",
        extra={"path": request.url.path, "error": payload["error"], "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Подключает обработчики исключений. Вызывать один раз при создании приложения:
        app = FastAPI(...)
        setup_exception_handlers(app)
    """
    app.add_exception_handler(CardShopError, cardshop_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DBAPIError, db_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers registered for CardShopError/DBAPIError/Exception")


# =============================================================================
# Пояснения «для чайника»:
#   • В сервисе бросайте CardShopError (или наследника), а не HTTPException:
#     фронт увидит стабильный error и message.
#   • OrderNotFoundError наружу выглядит как обычный not_found: покупатель
#     не должен отличать «нет заказа» от «заказ чужой».
#   • Ошибки вебхука (identity/signature/amount) роут оплаты превращает в
#     текст "fail": шлюзу нужен именно он, а не JSON.
#   • StaleConfirmation для шлюза не ошибка: уведомление подтверждается
#     ("success"), но заказ не трогается.
# =============================================================================

__all__ = [
    "CardShopError",
    "NotFoundError",
    "ValidationError",
    "PermissionDeniedError",
    "OutOfStockError",
    "ConcurrencyConflictError",
    "InventoryIntegrityError",
    "InvalidTransitionError",
    "IdentityMismatchError",
    "BadSignatureError",
    "AmountMismatchError",
    "OrderNotFoundError",
    "StaleConfirmationError",
    "RefundDisabledError",
    "RefundNotConfirmedError",
    "is_lock_conflict",
    "normalize_exception",
    "setup_exception_handlers",
]
