# -*- coding: utf-8 -*-
# cardshop/core/utils_core.py
# =============================================================================
# Назначение:
#   • Базовые утилиты уровня "core" без зависимостей от FastAPI/SQLAlchemy.
#   • Деньги: Decimal с 2 знаками, строгий парсинг сумм из шлюза.
#   • Время (UTC, tz-aware), хэши (MD5 подписи шлюза), номера заказов.
#
# Канон:
#   • Суммы наружу и в подписях шлюза: строка с 2 знаками ("10.00").
#   • Сравнение сумм только Decimal == Decimal, никакого float.
#   • Все функции чистые: без сетевых вызовов и без побочных эффектов.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

NumberLike = Union[str, int, float, Decimal]

MONEY_PLACES = 2
_Q2 = Decimal(1).scaleb(-MONEY_PLACES)


# -----------------------------------------------------------------------------
# Decimal / деньги
# -----------------------------------------------------------------------------
def decimal_from(value: NumberLike) -> Decimal:
    """
    Приводит значение к Decimal.

    float приводим через str(), чтобы не тащить бинарные артефакты.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def money(value: NumberLike) -> Decimal:
    """Decimal с 2 знаками (HALF_UP): цены и суммы заказов."""
    return decimal_from(value).quantize(_Q2, rounding=ROUND_HALF_UP)


def parse_money(raw: object) -> Optional[Decimal]:
    """
    Строгий парсинг суммы из внешнего источника (вебхук/ответ шлюза).

    Возвращает None для мусора, NaN/inf и отрицательных значений: такая
    сумма не может совпасть ни с одним заказом.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value < 0:
        return None
    return value


def format_money(value: NumberLike) -> str:
    """Decimal → "10.00" (формат подписи/форм шлюза)."""
    return f"{money(value):.{MONEY_PLACES}f}"


# -----------------------------------------------------------------------------
# Время
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    """Текущее время в UTC с tzinfo=UTC."""
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Приводит datetime к tz-aware UTC.

    Драйверы без поддержки часовых поясов возвращают naive-значения; мы
    всегда пишем UTC, поэтому naive трактуется как UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# -----------------------------------------------------------------------------
# Хэши / идентификаторы
# -----------------------------------------------------------------------------
def md5_hex(data: Union[str, bytes]) -> str:
    """MD5 в hex (нижний регистр). Строки кодируются как UTF-8."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.md5(data).hexdigest()  # noqa: S324 (формат подписи шлюза)


def gen_order_no(prefix: str = "LD", now: Optional[datetime] = None) -> str:
    """
    Публичный номер заказа: <prefix><YYYYmmddHHMMSS><6 случайных цифр>.

    Пример: LD20250101120000483920. Уникальность гарантирует UNIQUE в БД,
    случайный хвост делает коллизию практически невозможной.
    """
    ts = (now or utcnow()).strftime("%Y%m%d%H%M%S")
    tail = "".join(secrets.choice("0123456789") for _ in range(6))
    return f"{prefix}{ts}{tail}"


def mask_secret(value: Optional[str], keep: int = 4) -> str:
    """'123456:ABCDEF' → '1234****CDEF' (для логов)."""
    if not value:
        return ""
    if len(value) <= keep * 2:
        return "****"
    return f"{value[:keep]}****{value[-keep:]}"


__all__ = [
    "MONEY_PLACES",
    "decimal_from",
    "money",
    "parse_money",
    "format_money",
    "utcnow",
    "ensure_utc",
    "md5_hex",
    "gen_order_no",
    "mask_secret",
]
