# -*- coding: utf-8 -*-
# cardshop/core/logging_core.py
# =============================================================================
# Назначение кода:
#   Централизованная настройка логирования Card Shop:
#   • формат и хэндлеры;
#   • контекст корреляции (request_id, order_no, user_id);
#   • защита от утечек секретов (ключ мерчанта, DSN, токен бота).
#
# Канон / инварианты:
#   • Единый стиль логов во всём приложении:
#       - prod: JSON (структурированные логи для агрегаторов),
#       - dev/local: человекочитаемый формат.
#   • Логи не имеют права «ронять» приложение: ошибки фильтра → мягкая
#     деградация.
#   • Значимые операции сопровождаем полями env, svc, rid, ono, uid.
#
# Самовосстановление:
#   • Фильтр редактирует чувствительные значения (ключи/токены) в логах.
#   • Корреляция контекста через contextvars: запросы не смешиваются,
#     фоновые задачи уведомлений наследуют контекст породившего запроса.
#
# Запреты:
#   • Никакого логирования содержимого карт и паролей гостевого поиска.
#   • Никаких сетевых/блокирующих операций в форматерах/фильтрах.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, MutableMapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from cardshop.core.config_core import get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Контекст корреляции (contextvars)
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "rid",
    default=None,
)  # request_id
_ono_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "ono",
    default=None,
)  # order_no
_uid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "uid",
    default=None,
)  # user_id (строкой, чтобы не типизировать в логах)


def set_request_context(
    *,
    request_id: Optional[str] = None,
    order_no: Optional[str] = None,
    user_id: Optional[int | str] = None,
) -> None:
    """
    Присвоить контекст корреляции текущему асинхронному потоку.

    Сервисы заказов вызывают set_request_context(order_no=...), как только
    становится известен номер заказа, и все последующие логи запроса
    автоматически несут поле ono.
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if order_no is not None:
        _ono_var.set(str(order_no))
    if user_id is not None:
        _uid_var.set(str(user_id))


def clear_request_context() -> None:
    """Очистить контекст корреляции (после завершения запроса/таски)."""
    _rid_var.set(None)
    _ono_var.set(None)
    _uid_var.set(None)


# -----------------------------------------------------------------------------
# Фильтры логирования
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """
    Впрыскивает в запись логера структурированные поля из contextvars и настроек.

    Поля:
      • env: нормализованная среда (local/dev/prod);
      • svc: имя сервиса (PROJECT_NAME);
      • rid: request_id;
      • ono: номер заказа;
      • uid: user_id покупателя (если известен).
    """

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "ono"):
            record.ono = _ono_var.get() or "-"
        if not hasattr(record, "uid"):
            record.uid = _uid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Редактирует чувствительные значения в сообщении/параметрах.

    Маскирует конкретные значения секретов, извлечённых из настроек,
    не полагаясь только на имена ключей.
    """

    MASK = "****"
    SECRET_KEYS: Tuple[str, ...] = (
        "LDC_CLIENT_SECRET",
        "DATABASE_URL",
        "ADMIN_API_KEY",
        "TELEGRAM_BOT_TOKEN",
    )

    def __init__(self, settings_obj: object) -> None:
        super().__init__()
        self._secrets: list[str] = []
        for key in self.SECRET_KEYS:
            val = getattr(settings_obj, key, None)
            if val and isinstance(val, str):
                self._secrets.append(val)

    def _redact_text(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self._secrets:
            if secret and secret in redacted:
                redacted = redacted.replace(secret, self.MASK)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            if isinstance(record.msg, str):
                record.msg = self._redact_text(record.msg)
            if isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_text(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        except Exception:  # noqa: BLE001
            # Фильтр не должен ломать логирование ни при каких данных.
            pass
        return True


# -----------------------------------------------------------------------------
# Форматеры
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Человекочитаемый формат для local/dev-окружений.

    2025-11-22 12:00:00 | INFO     | Card Shop | cardshop.services... | rid=... ono=... uid=... | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s ono=%(ono)s uid=%(uid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class _ShopJsonFormatter(JsonFormatter):
    """JSON-строка с каноническими ключами time/level/service/logger/..."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["time"] = log_record.pop("asctime", None)
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["service"] = log_record.pop("svc", None)
        log_record["logger"] = log_record.pop("name", record.name)
        log_record["msg"] = log_record.pop("message", record.getMessage())


def _make_json_formatter() -> logging.Formatter:
    """
    JSON-форматер для продакшна.

        {"time": "...", "level": "INFO", "service": "Card Shop",
         "logger": "cardshop.services.settlement_service", "env": "prod",
         "rid": "...", "ono": "LD...", "uid": "...", "msg": "...", ...extra}
    """
    fmt = "%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s %(rid)s %(ono)s %(uid)s %(message)s"
    return _ShopJsonFormatter(fmt=fmt)


# -----------------------------------------------------------------------------
# Инициализация логирования
# -----------------------------------------------------------------------------
def setup_logging() -> None:
    """
    Полностью настраивает логирование:

      • root-логгер, формат, уровни;
      • консоль (stdout) и файл (в local);
      • фильтры контекста и редактирования;
      • uvicorn/fastapi-логгеры → в root (единый формат);
      • SQLAlchemy-логгер в режиме DEBUG.
    """
    settings = get_settings()
    env = settings.env_normalized
    debug = bool(settings.DEBUG)
    service = settings.PROJECT_NAME

    root = logging.getLogger()
    root.handlers.clear()
    level = logging.DEBUG if debug else logging.INFO
    root.setLevel(level)

    ctx_filter = ContextFilter(env=env, service=service)
    redact_filter = RedactingFilter(settings_obj=settings)

    # --- Консольный хэндлер ---
    console_handler = logging.StreamHandler(sys.stdout)
    if env in ("local", "dev"):
        formatter: logging.Formatter = DevFormatter()
    else:
        formatter = _make_json_formatter()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ctx_filter)
    console_handler.addFilter(redact_filter)
    root.addHandler(console_handler)

    # --- Локальный файл логов (только local) ---
    if env == "local":
        logs_dir = Path(".local_artifacts") / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(logs_dir / "app.log", encoding="utf-8")
        file_handler.setFormatter(DevFormatter())
        file_handler.addFilter(ctx_filter)
        file_handler.addFilter(redact_filter)
        root.addHandler(file_handler)

    # --- Перехват uvicorn/fastapi ---
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.setLevel(level)
        lg.propagate = True

    if debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
    # httpx пишет каждую строку запроса на INFO: шумно для вотчера/уведомлений
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"details": {"env": env, "debug": debug, "level": logging.getLevelName(level)}},
    )


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Получить логгер по имени и (опционально) привязать дополнительные поля
    через LoggerAdapter.

        log = get_logger(__name__, component="reaper")
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI-middleware для корреляции
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Впрыскивает X-Request-ID и X-User-Id из HTTP-заголовков в contextvars
    и возвращает X-Request-ID в ответе.

    Если X-Request-ID отсутствует, генерируется UUID4 (hex).
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        raw_headers: MutableMapping[bytes, bytes] = dict(scope.get("headers") or [])
        headers: Dict[str, str] = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in raw_headers.items()
        }

        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid, user_id=headers.get("x-user-id"))

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list: list[Tuple[bytes, bytes]] = list(message.get("headers") or [])
                headers_list.append((b"x-request-id", rid.encode("latin-1")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


# -----------------------------------------------------------------------------
# Автоконфигурация при импорте
# -----------------------------------------------------------------------------
setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "set_request_context",
    "clear_request_context",
    "CorrelationIdMiddleware",
]
# =============================================================================
# Пояснения «для чайника»:
#   • В dev/local вы увидите читаемые строки; в prod: JSON с ключами
#     env/rid/ono/uid, удобный для поиска «всё по заказу LD...».
#   • CorrelationIdMiddleware подключается в create_app(); каждая HTTP-ручка
#     получает и возвращает X-Request-ID.
#   • Ключ мерчанта, DSN, ключ админки и токен бота маскируются как "****".
# =============================================================================
