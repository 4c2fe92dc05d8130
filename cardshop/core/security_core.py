# -*- coding: utf-8 -*-
# cardshop/core/security_core.py
# =============================================================================
# Назначение кода:
#   Слой безопасности Card Shop:
#   • хэширование «пароля для поиска заказа» гостя (passlib);
#   • серверный X-Admin-Key для ручек возвратов;
#   • сравнение подписей/ключей за постоянное время.
#
# Канон / инварианты:
#   • Здесь НЕТ операций с заказами и картами: только «кто ты» и
#     «можно/нельзя».
#   • Пароль гостя хранится только в виде хэша; исходная строка нигде
#     не логируется.
#   • Аутентификация покупателей внешняя: сюда приходит уже готовый
#     user_id из заголовков доверенного фронта.
#
# Запреты:
#   • Никаких изменений статусов заказов в этом модуле.
# =============================================================================

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Header
from passlib.context import CryptContext

from cardshop.core.config_core import get_settings
from cardshop.core.errors_core import PermissionDeniedError
from cardshop.core.logging_core import get_logger

logger = get_logger(__name__)
settings = get_settings()

# pbkdf2_sha256 - чистый Python, без нативных зависимостей bcrypt.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


# -----------------------------------------------------------------------------
# Покупатель
# -----------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Buyer:
    """
    Кто обращается к заказу.

    user_id=None: гость (доступ к заказу только по e-mail + паролю поиска).
    is_admin=True: валидный X-Admin-Key, видит любой заказ.
    """

    user_id: Optional[str] = None
    username: Optional[str] = None
    is_admin: bool = False

    def owns(self, order_user_id: Optional[str]) -> bool:
        return self.user_id is not None and order_user_id is not None and str(order_user_id) == str(self.user_id)


# -----------------------------------------------------------------------------
# Пароль для поиска гостевых заказов
# -----------------------------------------------------------------------------
def hash_password(password: str) -> str:
    """Хешируем пароль гостя."""
    return pwd_context.hash(password)


def verify_password(password: Optional[str], hashed: Optional[str]) -> bool:
    """Проверяем пароль гостя; пустые значения никогда не совпадают."""
    if not password or not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # Битый/чужой формат хэша в БД: считаем несовпадением.
        logger.warning("Unrecognized query password hash format")
        return False


def constant_time_equals(left: Optional[str], right: Optional[str]) -> bool:
    """Сравнение строк за постоянное время (подписи, ключи)."""
    if left is None or right is None:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


# -----------------------------------------------------------------------------
# Админ-гейт
# -----------------------------------------------------------------------------
def is_admin_key(candidate: Optional[str]) -> bool:
    """True, если ADMIN_API_KEY задан и совпадает с переданным ключом."""
    return bool(settings.ADMIN_API_KEY) and constant_time_equals(
        settings.ADMIN_API_KEY, candidate
    )


async def require_admin_key(
    x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key"),
) -> str:
    """
    Depend для админских ручек: валидный X-Admin-Key.

    Если ADMIN_API_KEY не задан, админские ручки закрыты полностью.
    """
    if not is_admin_key(x_admin_key):
        raise PermissionDeniedError("Admin key required.")
    return x_admin_key or ""


__all__ = [
    "Buyer",
    "pwd_context",
    "hash_password",
    "verify_password",
    "constant_time_equals",
    "is_admin_key",
    "require_admin_key",
]
