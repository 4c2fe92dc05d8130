"""Tests for settings and request-scoped helpers."""

import pytest
from sqlalchemy.exc import OperationalError

from cardshop.core.config_core import Settings
from cardshop.core.errors_core import OutOfStockError, is_lock_conflict, normalize_exception
from cardshop.core.security_core import Buyer, hash_password, is_admin_key, verify_password
from cardshop.core.utils_core import format_money, gen_order_no, money, parse_money
from cardshop.deps import get_buyer


def make_settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestRefundMode:
    def test_client_by_default(self):
        assert make_settings(LDC_REFUND_MODE=None, LDC_PROXY_URL=None).refund_mode == "client"

    def test_proxy_url_switches_to_proxy(self):
        settings = make_settings(LDC_REFUND_MODE=None, LDC_PROXY_URL="https://proxy.test/")

        assert settings.refund_mode == "proxy"
        assert settings.proxy_url == "https://proxy.test"

    def test_explicit_mode_wins(self):
        settings = make_settings(LDC_REFUND_MODE="Disabled", LDC_PROXY_URL="https://proxy.test")

        assert settings.refund_mode == "disabled"

    def test_unknown_mode_falls_back(self):
        assert make_settings(LDC_REFUND_MODE="sometimes", LDC_PROXY_URL=None).refund_mode == "client"

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            make_settings(ORDER_TTL_MINUTES=0)


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("sqlite+aiosqlite:///shop.db", "sqlite+aiosqlite:///shop.db"),
        ],
    )
    def test_async_driver(self, raw, expected):
        assert make_settings(DATABASE_URL=raw).database_url_async() == expected


class TestMoney:
    def test_rounding_and_format(self):
        assert str(money("2.345")) == "2.35"
        assert format_money(3) == "3.00"

    @pytest.mark.parametrize("raw", [None, True, "x", "-1", "NaN"])
    def test_parse_rejects_garbage(self, raw):
        assert parse_money(raw) is None

    def test_order_no_format(self):
        order_no = gen_order_no("LD")

        assert order_no.startswith("LD")
        assert len(order_no) == 2 + 14 + 6
        assert order_no[2:].isdigit()


class TestSecurity:
    def test_password_hash(self):
        hashed = hash_password("pw-1234")

        assert verify_password("pw-1234", hashed)
        assert not verify_password("pw-12345", hashed)
        assert not verify_password("", hashed)
        assert not verify_password("pw-1234", "not-a-hash")

    def test_admin_key(self):
        assert is_admin_key("admin-key")
        assert not is_admin_key("admin-key ")
        assert not is_admin_key(None)

    async def test_buyer_from_headers(self):
        buyer = await get_buyer(x_user_id=" 42 ", x_user_name="alice", x_admin_key=None)

        assert buyer == Buyer(user_id="42", username="alice", is_admin=False)
        assert buyer.owns("42")
        assert not buyer.owns(None)

    async def test_blank_user_id_is_anonymous(self):
        buyer = await get_buyer(x_user_id="", x_user_name=None, x_admin_key="admin-key")

        assert buyer.user_id is None
        assert buyer.is_admin


class TestErrorPayload:
    def test_domain_error(self):
        status, payload = normalize_exception(OutOfStockError(details={"product_id": 1}))

        assert status == 409
        assert payload["error"] == "out_of_stock"
        assert payload["details"] == {"product_id": 1}

    def test_unknown_error_hides_details(self):
        status, payload = normalize_exception(KeyError("secret"))

        assert status == 500
        assert payload == {"error": "internal_error", "message": "Internal server error."}


class _DeadlockDetected(Exception):
    sqlstate = "40P01"


class TestLockConflicts:
    @pytest.mark.parametrize(
        "orig",
        [_DeadlockDetected("deadlock detected"), Exception("database is locked")],
    )
    def test_lock_conflict_is_retryable_conflict(self, orig):
        exc = OperationalError("UPDATE cards SET status=?", {}, orig)

        status, payload = normalize_exception(exc)

        assert is_lock_conflict(exc)
        assert status == 409
        assert payload["error"] == "concurrency_conflict"

    def test_other_db_errors_stay_internal(self):
        exc = OperationalError("SELECT 1", {}, Exception("connection refused"))

        status, payload = normalize_exception(exc)

        assert not is_lock_conflict(exc)
        assert status == 500
        assert payload["error"] == "internal_error"
