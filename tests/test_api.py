"""Tests for the HTTP API."""

import pytest
from sqlalchemy.exc import OperationalError

from cardshop.core.config_core import get_settings

USER = {"X-User-Id": "42", "X-User-Name": "alice"}
ADMIN = {"X-Admin-Key": "admin-key"}


async def create_order(api, product_id, quantity=1, headers=USER, **body):
    return await api.post(
        "/api/orders", json={"product_id": product_id, "quantity": quantity, **body}, headers=headers
    )


async def pay(api, notify_params, order):
    params = notify_params(order["order_no"], order["total_amount"], trade_no="T-API")
    return await api.get("/api/payment/notify", params=params)


class TestHealth:
    async def test_health(self, api):
        response = await api.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] in ("ok", "degraded")
        assert data["config"]["refundMode"] == "client"
        assert "x-request-id" in response.headers


class TestCatalog:
    async def test_lists_active_products_with_stock(self, api, make_product):
        visible = await make_product(name="Visible", price="3.00", cards=4)
        await make_product(name="Hidden", cards=2, is_active=False)

        response = await api.get("/api/products")

        assert response.status_code == 200
        items = response.json()["items"]
        assert [i["id"] for i in items] == [visible]
        assert items[0]["price"] == "3.00"
        assert items[0]["available"] == 4

    async def test_product_detail_and_missing(self, api, make_product):
        product_id = await make_product(cards=2)

        assert (await api.get(f"/api/products/{product_id}")).json()["available"] == 2
        missing = await api.get("/api/products/999")
        assert missing.status_code == 404
        assert missing.json()["error"] == "not_found"

    async def test_catalog_read_releases_expired_reservations(self, api, db, make_product, gateway, notifier):
        from datetime import timedelta

        from cardshop.core.security_core import Buyer
        from cardshop.core.utils_core import utcnow
        from cardshop.services.reservation_service import reserve

        product_id = await make_product(cards=2)
        await reserve(
            db,
            product_id=product_id,
            quantity=2,
            buyer=Buyer(user_id="1"),
            gateway=gateway,
            notifier=notifier,
            now=utcnow() - timedelta(minutes=10),
        )

        response = await api.get(f"/api/products/{product_id}")

        assert response.json()["available"] == 2


class TestOrders:
    async def test_create_returns_payment_form(self, api, make_product):
        product_id = await make_product(price="4.00", cards=3)

        response = await create_order(api, product_id, quantity=2)

        assert response.status_code == 201
        data = response.json()
        assert data["order"]["status"] == "pending"
        assert data["order"]["total_amount"] == "8.00"
        assert data["order"]["cards"] == []
        assert data["payment"]["action"].endswith("/submit.php")
        assert data["payment"]["fields"]["out_trade_no"] == data["order"]["order_no"]

    async def test_out_of_stock(self, api, make_product):
        product_id = await make_product(cards=1)

        response = await create_order(api, product_id, quantity=2)

        assert response.status_code == 409
        assert response.json()["error"] == "out_of_stock"

    async def test_quantity_out_of_range(self, api, make_product):
        product_id = await make_product(cards=5, max_quantity=3)

        response = await create_order(api, product_id, quantity=4)

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_paid_order_shows_cards_to_owner_only(self, api, make_product, notify_params):
        product_id = await make_product(price="1.50", cards=2)
        order = (await create_order(api, product_id, quantity=2)).json()["order"]
        assert (await pay(api, notify_params, order)).text == "success"

        mine = await api.get(f"/api/orders/{order['order_no']}", headers=USER)
        foreign = await api.get(f"/api/orders/{order['order_no']}", headers={"X-User-Id": "43"})

        assert mine.status_code == 200
        assert mine.json()["status"] == "completed"
        assert len(mine.json()["cards"]) == 2
        assert foreign.status_code == 404

    async def test_my_orders(self, api, make_product):
        product_id = await make_product(cards=3)
        await create_order(api, product_id)
        await create_order(api, product_id)
        await create_order(api, product_id, headers={"X-User-Id": "other"})

        response = await api.get("/api/orders", headers=USER)

        assert response.status_code == 200
        assert len(response.json()["items"]) == 2

    async def test_my_orders_requires_user(self, api):
        assert (await api.get("/api/orders")).status_code == 422

    async def test_guest_lookup_and_detail(self, api, make_product):
        product_id = await make_product(cards=2)
        created = await create_order(
            api, product_id, headers={}, email="guest@example.com", query_password="pw-1234"
        )
        order_no = created.json()["order"]["order_no"]

        found = await api.post("/api/orders/lookup", json={"email": "guest@example.com", "password": "pw-1234"})
        wrong = await api.post("/api/orders/lookup", json={"email": "guest@example.com", "password": "nope"})
        detail = await api.get(f"/api/orders/{order_no}", headers={"X-Order-Password": "pw-1234"})
        denied = await api.get(f"/api/orders/{order_no}")

        assert [o["order_no"] for o in found.json()["items"]] == [order_no]
        assert wrong.json()["items"] == []
        assert detail.status_code == 200
        assert denied.status_code == 404

    async def test_guest_order_without_email(self, api, make_product):
        product_id = await make_product(cards=2)

        response = await create_order(api, product_id, headers={})

        assert response.status_code == 422


class TestPaymentNotify:
    async def test_success_then_duplicate(self, api, make_product, notify_params, fetch):
        product_id = await make_product(price="2.00", cards=1)
        order = (await create_order(api, product_id)).json()["order"]

        first = await pay(api, notify_params, order)
        second = await pay(api, notify_params, order)

        assert (first.status_code, first.text) == (200, "success")
        assert (second.status_code, second.text) == (200, "success")
        assert (await fetch.product(product_id)).sales_count == 1

    async def test_bad_signature_is_fail(self, api, make_product, notify_params, fetch):
        product_id = await make_product(price="2.00", cards=1)
        order = (await create_order(api, product_id)).json()["order"]
        params = notify_params(order["order_no"], "2.00")
        params["sign"] = "0" * 32

        response = await api.get("/api/payment/notify", params=params)

        assert (response.status_code, response.text) == (400, "fail")
        assert (await fetch.order(order["order_no"])).status == "pending"

    async def test_amount_mismatch_is_fail(self, api, make_product, notify_params):
        product_id = await make_product(price="2.00", cards=1)
        order = (await create_order(api, product_id)).json()["order"]

        response = await api.get("/api/payment/notify", params=notify_params(order["order_no"], "1.99"))

        assert (response.status_code, response.text) == (400, "fail")

    @pytest.mark.parametrize(
        "error",
        [
            OperationalError("UPDATE orders", {}, Exception("database is locked")),
            RuntimeError("unexpected"),
        ],
    )
    async def test_unexpected_failure_is_retryable_fail(self, api, notify_params, monkeypatch, error):
        async def explode(*args, **kwargs):
            raise error

        monkeypatch.setattr("cardshop.routes.payment_routes.confirm_payment", explode)

        response = await api.get("/api/payment/notify", params=notify_params("LD1", "1.00"))

        assert (response.status_code, response.text) == (500, "fail")


class TestDbLockConflicts:
    async def test_order_creation_lock_conflict_is_409(self, api, make_product, monkeypatch):
        product_id = await make_product(cards=1)

        async def locked(*args, **kwargs):
            raise OperationalError("UPDATE cards", {}, Exception("database is locked"))

        monkeypatch.setattr("cardshop.routes.orders_routes.reserve", locked)

        response = await create_order(api, product_id)

        assert response.status_code == 409
        assert response.json()["error"] == "concurrency_conflict"


class TestRefundFlow:
    async def test_request_and_admin_approve(self, api, make_product, notify_params, fetch):
        product_id = await make_product(price="3.00", cards=2)
        order = (await create_order(api, product_id, quantity=2)).json()["order"]
        await pay(api, notify_params, order)
        order_no = order["order_no"]

        requested = await api.post(f"/api/orders/{order_no}/refund", json={"reason": "broken"}, headers=USER)
        approved = await api.post(
            f"/api/admin/orders/{order_no}/refund/approve", json={"confirmed": True}, headers=ADMIN
        )

        assert requested.json()["status"] == "refund_pending"
        assert approved.status_code == 200
        assert approved.json()["order"]["status"] == "refunded"
        assert approved.json()["restocked_cards"] == 2
        assert approved.json()["order"]["cards"] == []
        assert await fetch.card_statuses(product_id) == ["available", "available"]

    async def test_admin_reject(self, api, make_product, notify_params):
        product_id = await make_product(cards=1)
        order = (await create_order(api, product_id)).json()["order"]
        await pay(api, notify_params, order)
        await api.post(f"/api/orders/{order['order_no']}/refund", json={"reason": "r"}, headers=USER)

        response = await api.post(
            f"/api/admin/orders/{order['order_no']}/refund/reject", json={"remark": "no"}, headers=ADMIN
        )

        assert response.json()["status"] == "refund_rejected"
        assert response.json()["admin_remark"] == "no"

    async def test_admin_key_required(self, api):
        response = await api.post("/api/admin/orders/LD1/refund/reject", json={}, headers={"X-Admin-Key": "bad"})

        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"

    async def test_approve_without_confirmation_in_client_mode(self, api, make_product, notify_params):
        product_id = await make_product(cards=1)
        order = (await create_order(api, product_id)).json()["order"]
        await pay(api, notify_params, order)
        await api.post(f"/api/orders/{order['order_no']}/refund", json={"reason": "r"}, headers=USER)

        response = await api.post(f"/api/admin/orders/{order['order_no']}/refund/approve", json={}, headers=ADMIN)

        assert response.status_code == 422

    async def test_proxy_mode_calls_gateway(self, api, make_product, notify_params, fake_ldc, monkeypatch):
        monkeypatch.setattr(get_settings(), "LDC_REFUND_MODE", "proxy")
        product_id = await make_product(price="2.00", cards=1)
        order = (await create_order(api, product_id)).json()["order"]
        await pay(api, notify_params, order)
        await api.post(f"/api/orders/{order['order_no']}/refund", json={"reason": "r"}, headers=USER)

        response = await api.post(f"/api/admin/orders/{order['order_no']}/refund/approve", json={}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["order"]["status"] == "refunded"
        assert fake_ldc.refund_calls[0]["trade_no"] == "T-API"

    async def test_client_refund_params(self, api, make_product, notify_params):
        product_id = await make_product(price="2.00", cards=1)
        order = (await create_order(api, product_id)).json()["order"]
        await pay(api, notify_params, order)
        await api.post(f"/api/orders/{order['order_no']}/refund", json={"reason": "r"}, headers=USER)

        response = await api.get(f"/api/admin/orders/{order['order_no']}/refund/params", headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == {
            "apiUrl": "https://pay.test/epay/api.php",
            "pid": "1001",
            "key": "test-secret",
            "trade_no": "T-API",
            "money": "2.00",
        }

    @pytest.mark.parametrize("reason", [""])
    async def test_empty_reason_rejected(self, api, reason):
        response = await api.post("/api/orders/LD1/refund", json={"reason": reason}, headers=USER)

        assert response.status_code == 422
