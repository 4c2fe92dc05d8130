# -*- coding: utf-8 -*-
# cardshop/integrations/telegram_api.py
# =============================================================================
# Card Shop - Отправка сообщений в Telegram (Bot API, sendMessage)
# -----------------------------------------------------------------------------
# Назначение:
#   • Минимальный клиент Bot API для служебных уведомлений магазина
#     (новый заказ, оплата, просрочка, возвраты).
#
# Канон/инварианты:
#   • Только HTML parse_mode; любые пользовательские строки экранируются
#     через escape_html() до подстановки в шаблон.
#   • Ошибки сети и Bot API не бросаются наружу: возвращается
#     TelegramSendResult(success=False, ...), вызывающий код только логирует.
#   • Токен бота в логах только в маскированном виде.
# =============================================================================
from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any

import httpx

from cardshop.core.logging_core import get_logger
from cardshop.core.utils_core import mask_secret

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


@dataclass(slots=True)
class TelegramSendResult:
    success: bool
    message: str


def escape_html(text: Any) -> str:
    """Экранирует &, <, > и кавычки для parse_mode=HTML."""

    return html.escape(str(text), quote=True)


class TelegramClient:
    """Клиент sendMessage с таймаутом. transport - подмена сети в тестах."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        base_url: str = TELEGRAM_API_BASE,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def send_message(self, text: str) -> TelegramSendResult:
        """Отправить HTML-сообщение в настроенный чат; никогда не бросает."""

        url = f"{self.base_url}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(url, json=payload)
            data = response.json()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[Telegram] request failed",
                extra={"error": type(exc).__name__, "token": mask_secret(self.bot_token)},
            )
            return TelegramSendResult(success=False, message=str(exc) or type(exc).__name__)

        if response.is_error or not isinstance(data, dict) or not data.get("ok"):
            description = (data.get("description") if isinstance(data, dict) else None) or f"HTTP {response.status_code}"
            logger.warning(
                "[Telegram] send rejected",
                extra={"description": description, "token": mask_secret(self.bot_token)},
            )
            return TelegramSendResult(success=False, message=str(description))

        return TelegramSendResult(success=True, message="sent")


__all__ = ["TELEGRAM_API_BASE", "TelegramClient", "TelegramSendResult", "escape_html"]
