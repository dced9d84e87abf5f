"""Unit tests for the Shopify action executor (HTTP mocked)"""

from __future__ import annotations

import json

import httpx
import pytest

from supportq.infrastructure.http import IDEMPOTENCY_HEADER
from supportq.shopify.executor import ShopifyAuth, run_shopify_action

AUTH = ShopifyAuth(shop="r901.myshopify.com", access_token="shpat_test")
BASE = "/admin/api/2024-10"


class FakeShop:
    """Minimal Admin API: one order (#1001, id 555) and draft creation."""

    def __init__(self, cancel_status: int = 200, update_status: int = 200, draft_status: int = 201):
        self.cancel_status = cancel_status
        self.update_status = update_status
        self.draft_status = draft_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path == f"{BASE}/orders.json":
            name = request.url.params.get("name")
            orders = [{"id": 555, "name": "#1001"}] if name == "#1001" else []
            return httpx.Response(200, json={"orders": orders})
        if request.method == "POST" and path == f"{BASE}/orders/555/cancel.json":
            if self.cancel_status != 200:
                return httpx.Response(self.cancel_status, json={"error": "already fulfilled"})
            return httpx.Response(200, json={"order": {"id": 555, "cancelled_at": "2024-10-14"}})
        if request.method == "PUT" and path == f"{BASE}/orders/555.json":
            if self.update_status != 200:
                return httpx.Response(self.update_status, json={"errors": {"zip": ["invalid"]}})
            return httpx.Response(200, json=json.loads(request.content))
        if request.method == "GET" and path == f"{BASE}/orders/555.json":
            return httpx.Response(
                200,
                json={
                    "order": {
                        "id": 555,
                        "line_items": [{"variant_id": 42, "quantity": 1, "title": "Mug"}],
                        "shipping_address": {"city": "Austin"},
                        "customer": {"id": 7},
                    }
                },
            )
        if request.method == "POST" and path == f"{BASE}/draft_orders.json":
            if self.draft_status >= 400:
                return httpx.Response(self.draft_status, json={"errors": "bad line items"})
            return httpx.Response(self.draft_status, json={"draft_order": {"id": 9001}})
        if request.method == "POST" and path == f"{BASE}/draft_orders/9001/send_invoice.json":
            return httpx.Response(202, json={"draft_order_invoice": {}})
        return httpx.Response(404, json={"errors": "Not Found"})

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]


@pytest.fixture(autouse=True)
def no_api_version_override(monkeypatch):
    monkeypatch.delenv("SHOPIFY_API_VERSION", raising=False)


class TestCancelOrder:
    def test_cancel_by_order_id(self, mock_http):
        shop = FakeShop()

        result = run_shopify_action(
            "cancel_order", {"order_id": 555}, AUTH, correlation_id="prop-1", client=mock_http(shop)
        )

        assert result.ok
        assert result.message == "Order cancelled"
        assert result.data["order"]["id"] == 555
        request = shop.requests[0]
        assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
        assert request.headers[IDEMPOTENCY_HEADER] == "prop-1"

    def test_cancel_by_order_name(self, mock_http):
        shop = FakeShop()

        result = run_shopify_action("cancel_order", {"order_name": "#1001"}, AUTH, client=mock_http(shop))

        assert result.ok
        assert shop.paths() == [f"GET {BASE}/orders.json", f"POST {BASE}/orders/555/cancel.json"]
        assert IDEMPOTENCY_HEADER not in shop.requests[0].headers

    def test_order_name_without_hash(self, mock_http):
        result = run_shopify_action(
            "cancel_order", {"order_name": "1001"}, AUTH, client=mock_http(FakeShop())
        )

        assert result.ok

    def test_numeric_string_order_id(self, mock_http):
        result = run_shopify_action(
            "cancel_order", {"order_id": " 555 "}, AUTH, client=mock_http(FakeShop())
        )

        assert result.ok

    def test_unknown_order_name(self, mock_http):
        result = run_shopify_action(
            "cancel_order", {"order_name": "#9999"}, AUTH, client=mock_http(FakeShop())
        )

        assert not result.ok
        assert result.code == "InvalidInput"

    @pytest.mark.parametrize("payload", [{}, {"order_id": "abc"}, {"order_id": -3}, {"order_id": True}])
    def test_invalid_order_id_makes_no_calls(self, mock_http, payload):
        shop = FakeShop()

        result = run_shopify_action("cancel_order", payload, AUTH, client=mock_http(shop))

        assert result.code == "InvalidInput"
        assert result.message == "Invalid order_id"
        assert shop.requests == []

    def test_shopify_rejects_cancel(self, mock_http):
        result = run_shopify_action(
            "cancel_order", {"order_id": 555}, AUTH, client=mock_http(FakeShop(cancel_status=422))
        )

        assert not result.ok
        assert result.code == "ShopifyCancelFailed"
        assert result.data == {"error": "already fulfilled"}


class TestUpdateAddress:
    ADDRESS = {"address1": "1 Main St", "city": "Austin", "zip": "78701", "country": "US"}

    def test_update(self, mock_http):
        shop = FakeShop()

        result = run_shopify_action(
            "update_address",
            {"order_id": 555, "shipping_address": self.ADDRESS},
            AUTH,
            client=mock_http(shop),
        )

        assert result.ok
        assert result.message == "Shipping address updated"
        body = json.loads(shop.requests[0].content)
        assert body == {"order": {"id": 555, "shipping_address": self.ADDRESS}}

    def test_missing_address(self, mock_http):
        shop = FakeShop()

        result = run_shopify_action("update_address", {"order_id": 555}, AUTH, client=mock_http(shop))

        assert result.code == "InvalidInput"
        assert result.message == "Missing order_id or shipping_address"
        assert shop.requests == []

    def test_shopify_rejects_update(self, mock_http):
        result = run_shopify_action(
            "update_address",
            {"order_id": 555, "shipping_address": self.ADDRESS},
            AUTH,
            client=mock_http(FakeShop(update_status=422)),
        )

        assert result.code == "ShopifyAddressUpdateFailed"
        assert result.data == {"errors": {"zip": ["invalid"]}}


class TestResendOrder:
    def test_creates_free_draft(self, mock_http):
        shop = FakeShop()

        result = run_shopify_action(
            "resend_order", {"order_id": 555, "note": "Lost parcel"}, AUTH, client=mock_http(shop)
        )

        assert result.ok
        assert result.data == {"draft_order_id": 9001}
        draft = json.loads(shop.requests[1].content)["draft_order"]
        assert draft["note"] == "Lost parcel"
        assert draft["customer"] == {"id": 7}
        assert draft["line_items"][0]["applied_discount"]["value"] == "100.0"

    def test_default_note(self, mock_http):
        shop = FakeShop()

        run_shopify_action("resend_order", {"order_id": 555}, AUTH, client=mock_http(shop))

        draft = json.loads(shop.requests[1].content)["draft_order"]
        assert draft["note"] == "Replacement order at no charge"

    def test_send_invoice(self, mock_http):
        shop = FakeShop()

        result = run_shopify_action(
            "resend_order",
            {"order_id": 555, "send_invoice": True, "invoice_to": "jane@example.com"},
            AUTH,
            client=mock_http(shop),
        )

        assert result.ok
        assert shop.paths()[-1] == f"POST {BASE}/draft_orders/9001/send_invoice.json"
        assert json.loads(shop.requests[-1].content) == {
            "draft_order_invoice": {"to": "jane@example.com"}
        }

    def test_order_not_found(self, mock_http):
        result = run_shopify_action(
            "resend_order", {"order_id": 777}, AUTH, client=mock_http(FakeShop())
        )

        assert result.code == "NotFound"

    def test_draft_creation_fails(self, mock_http):
        result = run_shopify_action(
            "resend_order", {"order_id": 555}, AUTH, client=mock_http(FakeShop(draft_status=422))
        )

        assert result.code == "DraftCreationFailed"


def test_unsupported_action(mock_http):
    result = run_shopify_action("refund_order", {"order_id": 555}, AUTH, client=mock_http(FakeShop()))

    assert result.code == "UnsupportedAction"
    assert result.message == "Unsupported actionType"


def test_invalid_shop_domain(mock_http):
    shop = FakeShop()
    auth = ShopifyAuth(shop="evil.example.com", access_token="shpat_test")

    result = run_shopify_action("cancel_order", {"order_id": 555}, auth, client=mock_http(shop))

    assert result.code == "InvalidShopDomain"
    assert shop.requests == []


def test_transport_failure_becomes_exception_result(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    result = run_shopify_action("cancel_order", {"order_id": 555}, AUTH, client=mock_http(handler))

    assert not result.ok
    assert result.code == "Exception"
    assert result.data["error"].startswith("ConnectError")


def test_retries_server_errors_with_same_idempotency_key(mock_http):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if len(seen) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"order": {"id": 555}})

    result = run_shopify_action(
        "cancel_order", {"order_id": 555}, AUTH, correlation_id="prop-7", client=mock_http(handler)
    )

    assert result.ok
    keys = [r.headers[IDEMPOTENCY_HEADER] for r in seen]
    assert len(keys) == 3
    assert len(set(keys)) == 1
    assert keys[0] != "prop-7"


def test_each_mutation_gets_its_own_idempotency_key(mock_http):
    shop = FakeShop()

    result = run_shopify_action(
        "resend_order",
        {"order_id": 555, "send_invoice": True},
        AUTH,
        correlation_id="prop-1",
        client=mock_http(shop),
    )

    assert result.ok
    posts = [r for r in shop.requests if r.method == "POST"]
    assert [r.url.path for r in posts] == [
        f"{BASE}/draft_orders.json",
        f"{BASE}/draft_orders/9001/send_invoice.json",
    ]
    keys = [r.headers[IDEMPOTENCY_HEADER] for r in posts]
    assert keys[0] != keys[1]
    assert "prop-1" not in keys
