# -*- coding: utf-8 -*-
# cardshop/integrations/__init__.py
# =============================================================================
# Внешние интеграции Card Shop: платёжный шлюз LDC и Telegram Bot API.
# Модули не трогают БД; только сеть и DTO.
# =============================================================================

from .ldc_api import LdcClient, TransientGatewayError
from .telegram_api import TelegramClient

__all__ = ["LdcClient", "TelegramClient", "TransientGatewayError"]
