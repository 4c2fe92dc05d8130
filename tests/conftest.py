"""Pytest fixtures for cardshop tests."""

import os
import urllib.parse
from decimal import Decimal

# Настройки читаются при первом импорте cardshop: окружение задаём до него.
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LDC_CLIENT_ID", "1001")
os.environ.setdefault("LDC_CLIENT_SECRET", "test-secret")
os.environ.setdefault("ADMIN_API_KEY", "admin-key")
os.environ.setdefault("EXPIRY_SWEEP_INTERVAL_SEC", "0")
os.environ.setdefault("ORDER_TTL_MINUTES", "5")

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from cardshop.core.database_core import Base, create_session_factory  # noqa: E402
from cardshop.core.security_core import Buyer  # noqa: E402
from cardshop.core.utils_core import utcnow  # noqa: E402
from cardshop.crud.card_crud import CardCRUD  # noqa: E402
from cardshop.integrations.ldc_api import LdcClient, sign_params  # noqa: E402
from cardshop.models import Card, Order, Product  # noqa: E402
from cardshop.services.notifications_service import NotificationDispatcher  # noqa: E402

MERCHANT_ID = "1001"
MERCHANT_SECRET = "test-secret"
ADMIN_KEY = "admin-key"


class RecordingSink:
    """Собирает уведомления вместо отправки."""

    def __init__(self):
        self.events = []

    async def deliver(self, notification):
        self.events.append(notification)

    def names(self):
        return [n.event.value for n in self.events]


class FakeLdcGateway:
    """Шлюз LDC в памяти поверх httpx.MockTransport."""

    def __init__(self):
        self.orders = {}
        self.refund_code = 1
        self.refund_calls = []
        self.query_calls = 0
        self.query_error = None

    def mark_paid(self, order_no, money, trade_no="T-0001", status=1):
        self.orders[order_no] = {
            "trade_no": trade_no,
            "out_trade_no": order_no,
            "type": "epay",
            "pid": MERCHANT_ID,
            "addtime": "2024-01-01 00:00:00",
            "endtime": "2024-01-01 00:01:00",
            "name": "card",
            "money": str(money),
            "status": status,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            self.query_calls += 1
            if self.query_error is not None:
                raise self.query_error
            data = self.orders.get(request.url.params.get("out_trade_no"))
            if data is None:
                return httpx.Response(200, json={"code": -1, "msg": "order not found"})
            return httpx.Response(200, json={"code": 1, "msg": "succ", **data})

        form = dict(urllib.parse.parse_qsl(request.content.decode()))
        self.refund_calls.append(form)
        msg = "succ" if self.refund_code == 1 else "refund failed"
        return httpx.Response(200, json={"code": self.refund_code, "msg": msg})


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
async def notifier(sink):
    dispatcher = NotificationDispatcher([sink])
    yield dispatcher
    await dispatcher.drain()


@pytest.fixture
def fake_ldc():
    return FakeLdcGateway()


@pytest.fixture
def gateway(fake_ldc):
    return LdcClient(
        gateway="https://pay.test",
        pid=MERCHANT_ID,
        secret=MERCHANT_SECRET,
        notify_url="https://shop.test/api/payment/notify",
        return_url="https://shop.test/orders",
        proxy_url="",
        transport=httpx.MockTransport(fake_ldc.handler),
    )


@pytest.fixture
def buyer():
    return Buyer(user_id="42", username="alice")


@pytest.fixture
def make_product(session_factory):
    """Создать товар и загрузить на склад `cards` кодов."""

    async def _make(
        *,
        name="Steam 10$",
        price="10.00",
        cards=5,
        min_quantity=1,
        max_quantity=10,
        manual_fulfillment=False,
        is_active=True,
    ):
        now = utcnow()
        async with session_factory() as session:
            async with session.begin():
                product = Product(
                    name=name,
                    price=Decimal(price),
                    min_quantity=min_quantity,
                    max_quantity=max_quantity,
                    manual_fulfillment=manual_fulfillment,
                    is_active=is_active,
                    sales_count=0,
                    created_at=now,
                    updated_at=now,
                )
                session.add(product)
                await session.flush()
                await CardCRUD(session).add_many(
                    product.id, [f"{name}-CODE-{i}" for i in range(1, cards + 1)]
                )
            return product.id

    return _make


@pytest.fixture
def fetch(session_factory):
    """Свежее чтение состояния БД в отдельной сессии."""

    class _Fetch:
        async def order(self, order_no):
            async with session_factory() as session:
                return await session.scalar(select(Order).where(Order.order_no == order_no))

        async def product(self, product_id):
            async with session_factory() as session:
                return await session.get(Product, product_id)

        async def cards(self, product_id):
            async with session_factory() as session:
                rows = await session.scalars(
                    select(Card).where(Card.product_id == product_id).order_by(Card.id)
                )
                return list(rows)

        async def card_statuses(self, product_id):
            return [c.status for c in await self.cards(product_id)]

    return _Fetch()


def signed_notify(order_no, money, *, trade_no="T-0001", trade_status="TRADE_SUCCESS", **extra):
    """Подписанные параметры вебхука, как их шлёт шлюз."""

    params = {
        "pid": MERCHANT_ID,
        "trade_no": trade_no,
        "out_trade_no": order_no,
        "type": "epay",
        "name": "card",
        "money": str(money),
        "trade_status": trade_status,
        **extra,
    }
    params["sign"] = sign_params(params, MERCHANT_SECRET)
    params["sign_type"] = "MD5"
    return params


@pytest.fixture
def notify_params():
    return signed_notify


@pytest.fixture
async def api(session_factory, gateway, notifier):
    """HTTP-клиент поверх приложения с тестовой БД, шлюзом и уведомлениями."""

    from cardshop import create_app
    from cardshop.deps import get_db, get_gateway, get_notifier

    app = create_app()

    async def _db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://shop.test") as client:
        yield client
