"""Tests for order event notifications."""

import json

import httpx

from cardshop.integrations.telegram_api import TelegramClient, escape_html
from cardshop.services.notifications_service import (
    Notification,
    NotificationDispatcher,
    NotificationEvent,
    TelegramSink,
    build_telegram_message,
)


class ExplodingSink:
    async def deliver(self, notification):
        raise RuntimeError("sink down")


class TestDispatcher:
    async def test_delivers_to_every_sink(self, sink):
        other = type(sink)()
        dispatcher = NotificationDispatcher([sink, other])

        dispatcher.emit(NotificationEvent.ORDER_CREATED, "LD1", amount="1.00")
        await dispatcher.drain()

        assert sink.names() == ["order_created"]
        assert other.events[0].payload == {"amount": "1.00"}
        assert dispatcher.pending == 0

    async def test_failing_sink_does_not_block_others(self, sink):
        dispatcher = NotificationDispatcher([ExplodingSink(), sink])

        dispatcher.emit("payment_succeeded", "LD2")
        await dispatcher.drain()

        assert sink.names() == ["payment_succeeded"]

    async def test_unknown_event_is_not_scheduled(self, sink):
        dispatcher = NotificationDispatcher([sink])

        assert dispatcher.emit("order_shipped", "LD3") is None
        await dispatcher.drain()
        assert sink.events == []

    def test_emit_without_running_loop_never_raises(self, sink):
        dispatcher = NotificationDispatcher([sink])

        assert dispatcher.emit(NotificationEvent.ORDER_EXPIRED, "LD4") is None


class TestTelegram:
    def test_message_is_escaped(self):
        text = build_telegram_message(
            Notification(NotificationEvent.REFUND_REQUESTED, "LD<1>", {"reason": "a & b", "empty": ""})
        )

        assert "LD&lt;1&gt;" in text
        assert "a &amp; b" in text
        assert "empty" not in text
        assert escape_html('"x"') == "&quot;x&quot;"

    async def test_sink_posts_to_bot_api(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        client = TelegramClient("123:ABC", "-100", transport=httpx.MockTransport(handler))

        await TelegramSink(client).deliver(Notification(NotificationEvent.ORDER_CREATED, "LD5"))

        assert seen["url"] == "https://api.telegram.org/bot123:ABC/sendMessage"
        assert seen["body"]["chat_id"] == "-100"
        assert seen["body"]["parse_mode"] == "HTML"

    async def test_rejected_send_is_reported_not_raised(self):
        client = TelegramClient(
            "123:ABC",
            "-100",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(400, json={"ok": False, "description": "chat not found"})
            ),
        )

        result = await client.send_message("hi")

        assert not result.success
        assert result.message == "chat not found"

    async def test_network_error_is_reported_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        result = await TelegramClient("t", "c", transport=httpx.MockTransport(handler)).send_message("hi")

        assert not result.success
