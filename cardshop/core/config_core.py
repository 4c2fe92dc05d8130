# -*- coding: utf-8 -*-
# cardshop/core/config_core.py
# =============================================================================
# Назначение:
#   • Единый конфигурационный модуль Card Shop (FastAPI + SQLAlchemy async).
#   • Канонический источник всех настроек: БД, жизненный цикл заказов,
#     платёжный шлюз LDC (EPay-совместимый), уведомления, админ-доступ.
#
# Канон / инварианты:
#   1) Деньги только Decimal с 2 знаками (ROUND_HALF_UP при вводе цен),
#      сравнение сумм шлюза и заказа строго точное (Decimal == Decimal).
#   2) Срок резерва карт задаётся ORDER_TTL_MINUTES и фиксируется в заказе
#      в момент создания (expired_at больше не меняется).
#   3) Режим возвратов: client | proxy | disabled. Если режим не задан явно,
#      наличие LDC_PROXY_URL включает proxy, иначе client.
#   4) Адрес шлюза всегда оканчивается на /epay (дописываем при отсутствии).
#
# Самодиагностика:
#   • configure_decimal_context() настраивает Decimal (precision + HALF_UP).
#   • initialize_runtime() проверяет DSN и печатает предупреждения по
#     секретам шлюза/админки. Логирование здесь недоступно (logging_core
#     само зависит от настроек), поэтому используем print с префиксом [WARN].
#
# Запреты:
#   • Никаких секретов в коде: только ENV/.env.
#   • Никаких сетевых вызовов при загрузке настроек.
# =============================================================================

from __future__ import annotations

from decimal import ROUND_HALF_UP, getcontext
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REFUND_MODES = ("client", "proxy", "disabled")


# =============================================================================
# Вспомогательные утилиты (локальные, без сетевых вызовов)
# =============================================================================


def _parse_csv(value: object) -> List[str]:
    """Преобразует CSV-строку 'a,b,c' в ['a', 'b', 'c'] (пробелы обрезаются)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if not s:
        return []
    return [item.strip() for item in s.split(",") if item.strip()]


def normalize_gateway_url(url: str) -> str:
    """'https://pay.example.com' → 'https://pay.example.com/epay' (без хвостового /)."""
    base = (url or "").strip().rstrip("/")
    if not base.endswith("/epay"):
        base = f"{base}/epay"
    return base


# =============================================================================
# Док-описания полей (используются в Swagger и как подсказки «для чайника»)
# =============================================================================


class _Doc:
    # Приложение
    PROJECT_NAME = "Имя проекта (отображается в Swagger/health)."
    ENV = "Окружение: production/dev/local (нормализуется в prod/dev/local)."
    DEBUG = "Расширенные логи и echo SQL (только для dev/local)."
    APP_VERSION = "Версия приложения (попадает в /health)."
    APP_HOST = "Адрес для uvicorn (обычно 0.0.0.0)."
    APP_PORT = "Порт для uvicorn (например, 8000)."
    API_PREFIX = "Префикс REST API, например /api."
    CORS_ORIGINS = "Разрешённые Origin через запятую (пусто = CORS выключен)."

    # БД
    DATABASE_URL = (
        "DSN PostgreSQL. postgres:// и postgresql:// автоматически приводятся "
        "к postgresql+asyncpg://."
    )
    DB_POOL_SIZE = "Размер пула соединений SQLAlchemy."
    DB_MAX_OVERFLOW = "Дополнительные соединения в пике."

    # Заказы / резерв
    ORDER_NO_PREFIX = "Префикс публичного номера заказа (LD20250101120000123456)."
    ORDER_TTL_MINUTES = "Сколько минут карты держатся под заказом без оплаты."
    RESERVATION_RETRY_BUDGET = "Сколько раз повторять резерв при гонке за карты."
    EXPIRY_SWEEP_INTERVAL_SEC = "Не чаще одного прохода сборщика просрочек за N сек."
    PAYMENT_SYNC_GRACE_SEC = "Через сколько секунд после создания можно опрашивать шлюз."
    RECONCILE_INTERVAL_SEC = "Период фонового цикла сверки заказов (scheduler)."
    RECONCILE_BATCH_SIZE = "Сколько pending-заказов сверять со шлюзом за один тик."

    # Платёжный шлюз LDC
    LDC_GATEWAY = "Базовый URL шлюза (суффикс /epay дописывается автоматически)."
    LDC_CLIENT_ID = "Merchant ID (pid) в шлюзе."
    LDC_CLIENT_SECRET = "Секрет мерчанта: ключ подписи MD5 и key для api.php."
    LDC_PAYMENT_TYPE = "Тип оплаты в форме submit.php."
    LDC_NOTIFY_URL = "Публичный URL вебхука /api/payment/notify."
    LDC_RETURN_URL = "Куда шлюз возвращает покупателя после оплаты."
    LDC_PROXY_URL = "Полный URL прокси для серверных возвратов (включает proxy)."
    LDC_REFUND_MODE = "client | proxy | disabled (пусто = автоопределение)."
    GATEWAY_TIMEOUT_SEC = "Жёсткий таймаут HTTP-запросов к шлюзу, сек."
    PAYMENT_METHOD_TAG = "Метка способа оплаты, сохраняется в заказе."

    # Админка / уведомления
    ADMIN_API_KEY = "Ключ заголовка X-Admin-Key для админских ручек."
    TELEGRAM_BOT_TOKEN = "Токен Telegram-бота для уведомлений (опционально)."
    TELEGRAM_CHAT_ID = "Чат, куда отправляются уведомления о заказах."
    NOTIFY_TIMEOUT_SEC = "Таймаут доставки одного уведомления, сек."


class Settings(BaseSettings):
    """
    Контейнер переменных окружения Card Shop.

    Важное:
      • Секреты берём только из ENV - в код не шьём.
      • Просрочка резервов «ленивая»: сборщик запускается чтением каталога
        (с троттлингом), отдельный scheduler опционален.
      • Decimal настроен на HALF_UP и достаточный precision.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --------------------------- БАЗОВЫЕ НАСТРОЙКИ ---------------------------
    PROJECT_NAME: str = Field("Card Shop", description=_Doc.PROJECT_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)

    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)
    API_PREFIX: str = Field("/api", description=_Doc.API_PREFIX)
    CORS_ORIGINS: str = Field("", description=_Doc.CORS_ORIGINS)

    # --------------------------------- БАЗА ----------------------------------
    DATABASE_URL: Optional[str] = Field(None, description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, description=_Doc.DB_MAX_OVERFLOW)

    # ---------------------------- ЗАКАЗЫ / РЕЗЕРВ ----------------------------
    ORDER_NO_PREFIX: str = Field("LD", description=_Doc.ORDER_NO_PREFIX)
    ORDER_TTL_MINUTES: int = Field(5, description=_Doc.ORDER_TTL_MINUTES)
    RESERVATION_RETRY_BUDGET: int = Field(
        3,
        description=_Doc.RESERVATION_RETRY_BUDGET,
    )
    EXPIRY_SWEEP_INTERVAL_SEC: int = Field(
        60,
        description=_Doc.EXPIRY_SWEEP_INTERVAL_SEC,
    )
    PAYMENT_SYNC_GRACE_SEC: int = Field(5, description=_Doc.PAYMENT_SYNC_GRACE_SEC)
    RECONCILE_INTERVAL_SEC: int = Field(120, description=_Doc.RECONCILE_INTERVAL_SEC)
    RECONCILE_BATCH_SIZE: int = Field(50, description=_Doc.RECONCILE_BATCH_SIZE)

    # ------------------------------- ШЛЮЗ LDC --------------------------------
    LDC_GATEWAY: str = Field(
        "https://credit.linux.do/epay",
        description=_Doc.LDC_GATEWAY,
    )
    LDC_CLIENT_ID: Optional[str] = Field(None, description=_Doc.LDC_CLIENT_ID)
    LDC_CLIENT_SECRET: Optional[str] = Field(
        None,
        description=_Doc.LDC_CLIENT_SECRET,
    )
    LDC_PAYMENT_TYPE: str = Field("epay", description=_Doc.LDC_PAYMENT_TYPE)
    LDC_NOTIFY_URL: Optional[str] = Field(None, description=_Doc.LDC_NOTIFY_URL)
    LDC_RETURN_URL: Optional[str] = Field(None, description=_Doc.LDC_RETURN_URL)
    LDC_PROXY_URL: Optional[str] = Field(None, description=_Doc.LDC_PROXY_URL)
    LDC_REFUND_MODE: Optional[str] = Field(None, description=_Doc.LDC_REFUND_MODE)
    GATEWAY_TIMEOUT_SEC: float = Field(10.0, description=_Doc.GATEWAY_TIMEOUT_SEC)
    PAYMENT_METHOD_TAG: str = Field("ldc", description=_Doc.PAYMENT_METHOD_TAG)

    # ------------------------- АДМИНКА / УВЕДОМЛЕНИЯ -------------------------
    ADMIN_API_KEY: Optional[str] = Field(None, description=_Doc.ADMIN_API_KEY)
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(
        None,
        description=_Doc.TELEGRAM_BOT_TOKEN,
    )
    TELEGRAM_CHAT_ID: Optional[str] = Field(None, description=_Doc.TELEGRAM_CHAT_ID)
    NOTIFY_TIMEOUT_SEC: float = Field(10.0, description=_Doc.NOTIFY_TIMEOUT_SEC)

    # =========================== ВАЛИДАТОРЫ ==================================

    @field_validator(
        "ORDER_TTL_MINUTES",
        "RESERVATION_RETRY_BUDGET",
        "RECONCILE_BATCH_SIZE",
    )
    @classmethod
    def _v_positive_int(cls, value: int) -> int:
        """TTL, бюджет ретраев и размер пачки обязаны быть > 0."""
        if int(value) <= 0:
            raise ValueError("значение должно быть > 0")
        return int(value)

    @field_validator("EXPIRY_SWEEP_INTERVAL_SEC", "PAYMENT_SYNC_GRACE_SEC")
    @classmethod
    def _v_non_negative_int(cls, value: int) -> int:
        if int(value) < 0:
            raise ValueError("значение не может быть отрицательным")
        return int(value)

    @field_validator("GATEWAY_TIMEOUT_SEC", "NOTIFY_TIMEOUT_SEC")
    @classmethod
    def _v_timeout(cls, value: float) -> float:
        """Таймаут обязателен: бесконечное ожидание шлюза запрещено."""
        if float(value) <= 0:
            raise ValueError("таймаут должен быть > 0")
        return float(value)

    @field_validator("LDC_REFUND_MODE", mode="before")
    @classmethod
    def _v_refund_mode(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        text_value = str(value).strip().lower()
        if not text_value:
            return None
        if text_value not in REFUND_MODES:
            print(
                f"[WARN] LDC_REFUND_MODE={text_value!r} не распознан, "
                "используем автоопределение режима.",
            )
            return None
        return text_value

    # =========================== Удобные свойства/методы =====================

    # ---- ENV флаги ----
    @property
    def env_normalized(self) -> str:
        """Нормализует ENV к одному из: prod/dev/local."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod") or value == "production":
            return "prod"
        if value.startswith("dev") or value.startswith("test"):
            return "dev"
        if value.startswith("loc") or value == "local":
            return "local"
        return "prod"

    # ---- База данных / DSN ----
    def database_url_async(self) -> str:
        """
        Возвращает DSN для SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// при отсутствии драйвера.
        Прочие схемы (например, sqlite+aiosqlite://) отдаются как есть.
        """
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL не задан (нужен DSN PostgreSQL).")
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url

    # ---- Шлюз ----
    @property
    def gateway_base_url(self) -> str:
        return normalize_gateway_url(self.LDC_GATEWAY)

    @property
    def proxy_url(self) -> Optional[str]:
        if not self.LDC_PROXY_URL or not self.LDC_PROXY_URL.strip():
            return None
        return self.LDC_PROXY_URL.strip().rstrip("/")

    @property
    def refund_mode(self) -> str:
        """
        Итоговый режим возвратов:
          • явный LDC_REFUND_MODE (client/proxy/disabled) побеждает;
          • иначе proxy, если задан LDC_PROXY_URL;
          • иначе client.
        """
        if self.LDC_REFUND_MODE:
            return self.LDC_REFUND_MODE
        if self.proxy_url:
            return "proxy"
        return "client"

    # ---- CORS ----
    def effective_cors_origins(self) -> List[str]:
        return _parse_csv(self.CORS_ORIGINS)

    # ---- Decimal ----
    def configure_decimal_context(self) -> None:
        """Глобальный Decimal: precision 28, округление HALF_UP (цены в центах)."""
        ctx = getcontext()
        ctx.prec = 28
        ctx.rounding = ROUND_HALF_UP

    # ---- Health/диагностика ----
    def assert_required_secrets(self) -> None:
        """
        Мягкая самодиагностика критичных секретов.
        Печатает WARN, но не падает.
        """
        if not self.DATABASE_URL:
            print("[WARN] DATABASE_URL не задан - БД будет недоступна.")
        if not self.LDC_CLIENT_ID or not self.LDC_CLIENT_SECRET:
            print(
                "[WARN] LDC_CLIENT_ID/LDC_CLIENT_SECRET не заданы - "
                "вебхук оплаты будет отклонять все уведомления.",
            )
        if not self.ADMIN_API_KEY:
            print("[WARN] ADMIN_API_KEY не задан - админские ручки закрыты.")
        if self.refund_mode == "proxy" and not self.proxy_url:
            print(
                "[WARN] LDC_REFUND_MODE=proxy, но LDC_PROXY_URL пуст - "
                "серверные возвраты пойдут напрямую в шлюз.",
            )

    def debug_dump(self) -> Dict[str, str]:
        """Безопасный дамп ключевых настроек (без секретов) для /health и логов."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "dbUrlSet": "yes" if bool(self.DATABASE_URL) else "no",
            "gateway": self.gateway_base_url,
            "merchantSet": "yes" if bool(self.LDC_CLIENT_ID) else "no",
            "refundMode": self.refund_mode,
            "orderTtlMinutes": str(self.ORDER_TTL_MINUTES),
            "sweepIntervalSec": str(self.EXPIRY_SWEEP_INTERVAL_SEC),
            "telegramEnabled": str(
                bool(self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID)
            ),
        }

    # ---- Инициализация рантайма ----
    def initialize_runtime(self) -> None:
        """
        Единая точка инициализации конфигурации при старте приложения:
          • Приведение DSN БД к async-формату (ранняя проверка).
          • Настройка Decimal контекста.
          • Мягкая самодиагностика секретов.
        """
        if self.DATABASE_URL:
            _ = self.database_url_async()

        self.configure_decimal_context()
        self.assert_required_secrets()


# =============================================================================
# Синглтон настроек для всего приложения
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Создаёт и кэширует объект Settings, выполняя initialize_runtime()."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


# Удобный глобальный экспорт:
# from cardshop.core.config_core import settings
settings: Settings = get_settings()

__all__ = [
    "REFUND_MODES",
    "Settings",
    "get_settings",
    "normalize_gateway_url",
    "settings",
]
