# -*- coding: utf-8 -*-
# cardshop/integrations/ldc_api.py
# =============================================================================
# Card Shop - Интеграция с платёжным шлюзом LDC (EPay-совместимый протокол)
# -----------------------------------------------------------------------------
# Назначение:
#   • MD5-подпись параметров и её проверка (вебхук оплаты).
#   • Сборка формы перенаправления на оплату ({gateway}/submit.php).
#   • Компенсационный запрос статуса заказа (GET {gateway}/api.php?act=order).
#   • Серверный возврат (POST {gateway}/api.php или через прокси) и параметры
#     для возврата «с клиента».
#
# Канон/инварианты:
#   • Подпись: непустые поля кроме sign/sign_type, сортировка по ключу,
#     "k=v&k=v" + секрет, MD5 в нижнем регистре. Сравнение за постоянное время.
#   • Суммы уходят в шлюз строкой с 2 знаками ("10.00").
#   • Базовый URL шлюза всегда оканчивается на /epay.
#   • Любая сетевая/форматная ошибка шлюза - TransientGatewayError: вызывающий
#     код трактует её как «неизвестно», а не как «не оплачено».
#
# Самовосстановление:
#   • Жёсткий таймаут httpx на каждый запрос.
#   • Страница проверки Cloudflare распознаётся отдельно, чтобы в логах было
#     видно, что шлюз закрыт челленджем, а не сломан.
#
# Запреты:
#   • Модуль не трогает БД и не меняет статусы заказов.
#   • Секрет мерчанта в логи не пишется.
# =============================================================================
from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from cardshop.core.config_core import get_settings, normalize_gateway_url
from cardshop.core.logging_core import get_logger
from cardshop.core.utils_core import format_money, md5_hex

logger = get_logger(__name__)
settings = get_settings()

SIGN_EXCLUDED_KEYS = frozenset({"sign", "sign_type"})
TRADE_SUCCESS = "TRADE_SUCCESS"
GATEWAY_PAID_STATUS = 1

_CHALLENGE_MARKERS = ("just a moment", "cloudflare")


# -----------------------------------------------------------------------------
# Исключения шлюза
# -----------------------------------------------------------------------------
class TransientGatewayError(RuntimeError):
    """Шлюз не дал определённого ответа (сеть, формат, отказ). Можно повторить."""


class GatewayError(TransientGatewayError):
    """Шлюз ответил code != 1; msg шлюза в тексте исключения."""


class GatewayFormatError(TransientGatewayError):
    """Ответ шлюза не JSON или не та структура."""


class GatewayChallengeError(TransientGatewayError):
    """Вместо ответа пришла страница проверки Cloudflare."""


class GatewayTransportError(TransientGatewayError):
    """Таймаут / обрыв соединения / DNS."""


# -----------------------------------------------------------------------------
# DTO
# -----------------------------------------------------------------------------
@dataclass(slots=True)
class PaymentForm:
    """Форма перенаправления на оплату: action + поля."""

    action: str
    fields: Dict[str, str]


@dataclass(slots=True)
class GatewayOrder:
    """Ответ act=order. status == 1 - оплачен."""

    trade_no: str
    out_trade_no: str
    type: str
    pid: str
    addtime: str
    endtime: str
    name: str
    money: str
    status: int

    @property
    def is_paid(self) -> bool:
        return self.status == GATEWAY_PAID_STATUS


@dataclass(slots=True)
class RefundResult:
    code: int
    msg: str

    @property
    def ok(self) -> bool:
        return self.code == 1


@dataclass(slots=True)
class ClientRefundParams:
    """Всё, что нужно админке, чтобы вызвать возврат шлюза напрямую."""

    api_url: str
    pid: str
    key: str
    trade_no: str
    money: str

    def as_payload(self) -> Dict[str, str]:
        return {
            "apiUrl": self.api_url,
            "pid": self.pid,
            "key": self.key,
            "trade_no": self.trade_no,
            "money": self.money,
        }


# -----------------------------------------------------------------------------
# Подпись
# -----------------------------------------------------------------------------
def _sign_payload(params: Mapping[str, Any]) -> str:
    items = [
        (str(k), str(v))
        for k, v in params.items()
        if k not in SIGN_EXCLUDED_KEYS and v is not None and str(v) != ""
    ]
    items.sort(key=lambda kv: kv[0])
    return "&".join(f"{k}={v}" for k, v in items)


def sign_params(params: Mapping[str, Any], secret: str) -> str:
    """MD5-подпись параметров по правилам EPay (нижний регистр)."""

    return md5_hex(_sign_payload(params) + (secret or ""))


def verify_sign(params: Mapping[str, Any], secret: str) -> bool:
    """Проверка поля sign за постоянное время. Пустой секрет не проходит никогда."""

    provided = params.get("sign")
    if not provided or not secret:
        return False
    expected = sign_params(params, secret)
    return hmac.compare_digest(expected.encode("utf-8"), str(provided).encode("utf-8"))


def _looks_like_challenge(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _CHALLENGE_MARKERS)


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# -----------------------------------------------------------------------------
# Клиент
# -----------------------------------------------------------------------------
class LdcClient:
    """Клиент шлюза LDC с таймаутами.

    Модуль не меняет заказы: только подписывает, спрашивает и возвращает DTO.
    transport позволяет подменить сеть в тестах (httpx.MockTransport).
    """

    def __init__(
        self,
        *,
        gateway: str | None = None,
        pid: str | None = None,
        secret: str | None = None,
        payment_type: str | None = None,
        notify_url: str | None = None,
        return_url: str | None = None,
        proxy_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = normalize_gateway_url(gateway or settings.LDC_GATEWAY)
        self.pid = str(pid if pid is not None else (settings.LDC_CLIENT_ID or ""))
        self.secret = secret if secret is not None else (settings.LDC_CLIENT_SECRET or "")
        self.payment_type = payment_type or settings.LDC_PAYMENT_TYPE
        self.notify_url = notify_url if notify_url is not None else settings.LDC_NOTIFY_URL
        self.return_url = return_url if return_url is not None else settings.LDC_RETURN_URL
        raw_proxy = proxy_url if proxy_url is not None else settings.proxy_url
        self.proxy_url = raw_proxy.strip().rstrip("/") if raw_proxy else None
        self.timeout_seconds = float(timeout_seconds or settings.GATEWAY_TIMEOUT_SEC)
        self._transport = transport

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api.php"

    @property
    def submit_url(self) -> str:
        return f"{self.base_url}/submit.php"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    # ---- Оплата ----
    def build_payment_form(self, *, order_no: str, name: str, amount: Any) -> PaymentForm:
        """Подписанная форма для перенаправления покупателя на оплату."""

        fields: Dict[str, str] = {
            "pid": self.pid,
            "type": self.payment_type,
            "out_trade_no": order_no,
            "notify_url": self.notify_url or "",
            "return_url": self.return_url or "",
            "name": name,
            "money": format_money(amount),
        }
        fields = {k: v for k, v in fields.items() if v != ""}
        fields["sign"] = sign_params(fields, self.secret)
        fields["sign_type"] = "MD5"
        return PaymentForm(action=self.submit_url, fields=fields)

    def verify_notification(self, params: Mapping[str, Any]) -> bool:
        return verify_sign(params, self.secret)

    # ---- Компенсационный запрос ----
    async def query_order(
        self, *, out_trade_no: str | None = None, trade_no: str | None = None
    ) -> Optional[GatewayOrder]:
        """Статус заказа в шлюзе.

        Выход: GatewayOrder или None (шлюз не знает заказ: HTTP 404 / code -1).
        Исключения: ValueError без идентификаторов; TransientGatewayError
        для сети, не-JSON ответа, челленджа и code != 1.
        """

        if not out_trade_no and not trade_no:
            raise ValueError("out_trade_no or trade_no is required")

        params: Dict[str, str] = {"act": "order", "pid": self.pid, "key": self.secret}
        if out_trade_no:
            params["out_trade_no"] = out_trade_no
        else:
            params["trade_no"] = str(trade_no)

        try:
            async with self._client() as client:
                response = await client.get(
                    self.api_url, params=params, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as exc:
            raise GatewayTransportError(f"Gateway query failed: {type(exc).__name__}") from exc

        if response.status_code == 404:
            return None

        payload = self._parse_json(response)
        code = _to_int(payload.get("code"), default=0)
        if code == -1:
            return None
        if code != 1 or response.is_error:
            raise GatewayError(str(payload.get("msg") or f"Gateway returned code {code}"))

        return GatewayOrder(
            trade_no=str(payload.get("trade_no") or ""),
            out_trade_no=str(payload.get("out_trade_no") or ""),
            type=str(payload.get("type") or ""),
            pid=str(payload.get("pid") or ""),
            addtime=str(payload.get("addtime") or ""),
            endtime=str(payload.get("endtime") or ""),
            name=str(payload.get("name") or ""),
            money=str(payload.get("money") or ""),
            status=_to_int(payload.get("status"), default=0),
        )

    # ---- Возвраты ----
    def refund_endpoint(self) -> str:
        return self.proxy_url or self.api_url

    async def refund(self, trade_no: str, money: Any) -> RefundResult:
        """Серверный возврат: POST form (pid, key, trade_no, money). code == 1 - успех."""

        body = {
            "pid": self.pid,
            "key": self.secret,
            "trade_no": trade_no,
            "money": format_money(money),
        }
        url = self.refund_endpoint()
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    data=body,
                    headers={
                        "Content-Type": "application/x-www-form-urlencoded",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as exc:
            raise GatewayTransportError(f"Gateway refund failed: {type(exc).__name__}") from exc

        payload = self._parse_json(response)
        result = RefundResult(code=_to_int(payload.get("code"), default=0), msg=str(payload.get("msg") or ""))
        logger.info(
            "[LDC] refund response",
            extra={"trade_no": trade_no, "code": result.code, "via_proxy": bool(self.proxy_url)},
        )
        return result

    def client_refund_params(self, trade_no: str, money: Any) -> ClientRefundParams:
        return ClientRefundParams(
            api_url=self.api_url,
            pid=self.pid,
            key=self.secret,
            trade_no=trade_no,
            money=format_money(money),
        )

    # ---- Внутреннее ----
    @staticmethod
    def _parse_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            text = response.text[:2048]
            if _looks_like_challenge(text):
                logger.warning("[LDC] Cloudflare challenge page instead of JSON")
                raise GatewayChallengeError(
                    "Gateway is behind a Cloudflare challenge; retry later"
                ) from exc
            raise GatewayFormatError(
                f"Unexpected gateway response format (HTTP {response.status_code})"
            ) from exc
        if not isinstance(payload, dict):
            raise GatewayFormatError("Unexpected gateway response format (not an object)")
        return payload


__all__ = [
    "TRADE_SUCCESS",
    "TransientGatewayError",
    "GatewayError",
    "GatewayFormatError",
    "GatewayChallengeError",
    "GatewayTransportError",
    "PaymentForm",
    "GatewayOrder",
    "RefundResult",
    "ClientRefundParams",
    "sign_params",
    "verify_sign",
    "LdcClient",
]


# =============================================================================
# Пояснения «для чайника»:
#   • None из query_order() значит «шлюз такого заказа не знает», а не
#     «не оплачено». Сервис сверки в обоих случаях ничего не меняет.
#   • Режим возврата выбирается в настройках: client - админка зовёт шлюз сама
#     (мы отдаём client_refund_params), proxy - сервер шлёт форму на прокси,
#     disabled - возвраты выключены.
# =============================================================================
