# -*- coding: utf-8 -*-
# cardshop/services/notifications_service.py
# =============================================================================
# Назначение кода:
#   Fire-and-forget уведомления о жизненном цикле заказа:
#   order_created, payment_succeeded, order_expired, refund_requested,
#   refund_approved, refund_rejected.
#
# Канон / инварианты:
#   • emit() вызывается ТОЛЬКО после commit и никогда не блокирует и не
#     роняет вызывающий код: доставка идёт отдельной asyncio-задачей.
#   • Ошибка одного приёмника (sink) не мешает остальным; всё логируется.
#   • Содержимое карт в уведомления не попадает.
#
# Самовосстановление:
#   • Задачи держатся в множестве до завершения (иначе их может собрать GC);
#     drain() дожидается всех при остановке приложения и в тестах.
#
# Запреты:
#   • Никаких обращений к БД отсюда.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from cardshop.core.config_core import get_settings
from cardshop.core.logging_core import get_logger
from cardshop.core.utils_core import utcnow
from cardshop.integrations.telegram_api import TelegramClient, escape_html

logger = get_logger(__name__)
settings = get_settings()


class NotificationEvent(str, enum.Enum):
    ORDER_CREATED = "order_created"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    ORDER_EXPIRED = "order_expired"
    REFUND_REQUESTED = "refund_requested"
    REFUND_APPROVED = "refund_approved"
    REFUND_REJECTED = "refund_rejected"


@dataclass(slots=True)
class Notification:
    event: NotificationEvent
    order_no: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


class NotificationSink(Protocol):
    async def deliver(self, notification: Notification) -> None: ...


# -----------------------------------------------------------------------------
# Приёмники
# -----------------------------------------------------------------------------
class LoggingSink:
    """Пишет каждое событие в лог (включён всегда)."""

    async def deliver(self, notification: Notification) -> None:
        logger.info(
            "Order event",
            extra={
                "event": notification.event.value,
                "order_no": notification.order_no,
                **{f"n_{k}": v for k, v in notification.payload.items()},
            },
        )


_TITLES: Dict[NotificationEvent, str] = {
    NotificationEvent.ORDER_CREATED: "🧾 <b>Новый заказ</b>",
    NotificationEvent.PAYMENT_SUCCEEDED: "✅ <b>Заказ оплачен</b>",
    NotificationEvent.ORDER_EXPIRED: "⌛ <b>Заказ просрочен</b>",
    NotificationEvent.REFUND_REQUESTED: "↩️ <b>Запрос на возврат</b>",
    NotificationEvent.REFUND_APPROVED: "💸 <b>Возврат одобрен</b>",
    NotificationEvent.REFUND_REJECTED: "🚫 <b>Возврат отклонён</b>",
}


def build_telegram_message(notification: Notification) -> str:
    """HTML-текст для Telegram; все значения экранированы."""

    lines = [
        _TITLES[notification.event],
        "",
        f"<b>Заказ:</b> <code>{escape_html(notification.order_no)}</code>",
    ]
    for key, value in notification.payload.items():
        if value is None or value == "":
            continue
        lines.append(f"<b>{escape_html(key)}:</b> {escape_html(value)}")
    lines.append(f"<b>Время:</b> {notification.created_at:%Y-%m-%d %H:%M:%S} UTC")
    return "\n".join(lines)


class TelegramSink:
    """Отправляет события в служебный чат Telegram."""

    def __init__(self, client: TelegramClient) -> None:
        self.client = client

    async def deliver(self, notification: Notification) -> None:
        result = await self.client.send_message(build_telegram_message(notification))
        if not result.success:
            logger.warning(
                "Telegram notification not delivered",
                extra={"event": notification.event.value, "order_no": notification.order_no, "reason": result.message},
            )


# -----------------------------------------------------------------------------
# Диспетчер
# -----------------------------------------------------------------------------
class NotificationDispatcher:
    """Раздаёт события по приёмникам в фоновых задачах."""

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self.sinks: List[NotificationSink] = list(sinks)
        self._tasks: Set[asyncio.Task[None]] = set()

    def emit(
        self, event: NotificationEvent | str, order_no: str, **payload: Any
    ) -> Optional[asyncio.Task[None]]:
        """Запланировать доставку. Никогда не бросает."""

        try:
            notification = Notification(event=NotificationEvent(event), order_no=order_no, payload=payload)
            task = asyncio.get_running_loop().create_task(self._deliver(notification))
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Notification not scheduled",
                extra={"event": str(event), "order_no": order_no, "error": str(exc)},
            )
            return None
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, notification: Notification) -> None:
        for sink in self.sinks:
            try:
                await sink.deliver(notification)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Notification sink failed",
                    extra={
                        "sink": type(sink).__name__,
                        "event": notification.event.value,
                        "order_no": notification.order_no,
                        "error": str(exc),
                    },
                )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Дождаться всех запланированных доставок."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def build_default_dispatcher() -> NotificationDispatcher:
    sinks: List[NotificationSink] = [LoggingSink()]
    if settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_CHAT_ID:
        sinks.append(
            TelegramSink(
                TelegramClient(
                    settings.TELEGRAM_BOT_TOKEN,
                    settings.TELEGRAM_CHAT_ID,
                    timeout_seconds=settings.NOTIFY_TIMEOUT_SEC,
                )
            )
        )
    return NotificationDispatcher(sinks)


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Процессный диспетчер (создаётся лениво)."""

    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_default_dispatcher()
    return _dispatcher


__all__ = [
    "NotificationEvent",
    "Notification",
    "NotificationSink",
    "LoggingSink",
    "TelegramSink",
    "NotificationDispatcher",
    "build_telegram_message",
    "build_default_dispatcher",
    "get_dispatcher",
]
