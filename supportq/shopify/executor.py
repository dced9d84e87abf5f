"""
Shopify action executor.

Runs one approved action against the Admin REST API and reports the
outcome as a Result. Nothing here raises: validation problems, API
failures and unexpected errors all map to a failure code.

Codes:
    InvalidShopDomain, InvalidInput, NotFound, ShopifyCancelFailed,
    ShopifyAddressUpdateFailed, DraftCreationFailed, UnsupportedAction,
    Exception
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from supportq.contracts.envelope import Result
from supportq.infrastructure.http import fetch_with_retry, safe_json, to_obj
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter, log_event
from supportq.shopify.helpers import (
    build_replacement_draft_body,
    is_valid_shop_domain,
    shopify_api_base,
)

logger = get_logger(__name__)

DEFAULT_RESEND_NOTE = "Replacement order at no charge"


@dataclass(frozen=True)
class ShopifyAuth:
    shop: str
    access_token: str


def _order_id(value: Any) -> int | None:
    """Positive integer order id, else None."""
    if isinstance(value, bool):
        return None
    try:
        order_id = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return order_id if order_id > 0 else None


class ShopifyExecutor:
    """Executes actions for one shop."""

    def __init__(
        self,
        auth: ShopifyAuth,
        correlation_id: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.auth = auth
        self.correlation_id = correlation_id
        self._client = client
        self.base_url = shopify_api_base(auth.shop)

    def _call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return fetch_with_retry(
            f"{self.base_url}/{path}",
            method,
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Access-Token": self.auth.access_token,
            },
            correlation_id=self.correlation_id,
            client=self._client,
            **kwargs,
        )

    def resolve_order_id(self, payload: dict[str, Any]) -> int | None:
        """
        order_id from the payload, or looked up by order_name ("#1001").
        """
        order_id = _order_id(payload.get("order_id"))
        if order_id is not None:
            return order_id

        order_name = payload.get("order_name")
        if not order_name or not isinstance(order_name, str):
            return None
        name = order_name if order_name.startswith("#") else f"#{order_name}"
        response = self._call(
            "GET", "orders.json", params={"name": name, "status": "any", "fields": "id,name"}
        )
        if not response.is_success:
            return None
        data = safe_json(response)
        orders = data.get("orders") if isinstance(data, dict) else None
        if not orders:
            return None
        return _order_id(orders[0].get("id"))

    def cancel_order(self, payload: dict[str, Any]) -> Result:
        order_id = self.resolve_order_id(payload)
        if order_id is None:
            return Result.failure("InvalidInput", "Invalid order_id")
        response = self._call("POST", f"orders/{order_id}/cancel.json")
        data = to_obj(safe_json(response))
        if not response.is_success:
            return Result.failure("ShopifyCancelFailed", "Shopify cancel failed", data)
        return Result.success("Order cancelled", data)

    def update_address(self, payload: dict[str, Any]) -> Result:
        address = payload.get("shipping_address")
        order_id = self.resolve_order_id(payload) if isinstance(address, dict) and address else None
        if order_id is None:
            return Result.failure("InvalidInput", "Missing order_id or shipping_address")
        response = self._call(
            "PUT",
            f"orders/{order_id}.json",
            json={"order": {"id": order_id, "shipping_address": address}},
        )
        data = to_obj(safe_json(response))
        if not response.is_success:
            return Result.failure(
                "ShopifyAddressUpdateFailed", "Shopify address update failed", data
            )
        return Result.success("Shipping address updated", data)

    def resend_order(self, payload: dict[str, Any]) -> Result:
        order_id = self.resolve_order_id(payload)
        if order_id is None:
            return Result.failure("InvalidInput", "Invalid order_id")
        note = payload.get("note") or DEFAULT_RESEND_NOTE
        send_invoice = bool(payload.get("send_invoice"))
        invoice_to = payload.get("invoice_to")

        order_response = self._call("GET", f"orders/{order_id}.json")
        order_data = safe_json(order_response)
        if not order_response.is_success:
            return Result.failure("NotFound", "Order not found", to_obj(order_data))
        order = order_data.get("order") if isinstance(order_data, dict) else None
        if not order:
            return Result.failure("NotFound", "Order not found")

        draft_response = self._call(
            "POST", "draft_orders.json", json=build_replacement_draft_body(order, note)
        )
        draft_data = safe_json(draft_response)
        if not draft_response.is_success:
            return Result.failure(
                "DraftCreationFailed", "Draft order creation failed", to_obj(draft_data)
            )
        draft_order_id = (
            (draft_data.get("draft_order") or {}).get("id") if isinstance(draft_data, dict) else None
        )

        if send_invoice and draft_order_id:
            invoice = {"to": invoice_to} if invoice_to else {}
            invoice_response = self._call(
                "POST",
                f"draft_orders/{draft_order_id}/send_invoice.json",
                json={"draft_order_invoice": invoice},
            )
            if not invoice_response.is_success:
                counter("shopify.invoice.failed")
                return Result.success(
                    "Replacement draft created; invoice failed to send",
                    {"draft_order_id": draft_order_id},
                )

        return Result.success("Replacement draft created", {"draft_order_id": draft_order_id})


_HANDLERS = {
    "cancel_order": ShopifyExecutor.cancel_order,
    "update_address": ShopifyExecutor.update_address,
    "resend_order": ShopifyExecutor.resend_order,
}


def run_shopify_action(
    action_type: str,
    payload: dict[str, Any],
    auth: ShopifyAuth,
    correlation_id: str | None = None,
    client: httpx.Client | None = None,
) -> Result:
    """
    Execute one action against the shop.

    Args:
        correlation_id: Logged with every retry. Each mutating call gets
            its own idempotency key, reused only across retries of that call

    Side Effects:
        - HTTP calls to the Shopify Admin API
        - Increments shopify.action.* counters
    """
    if not is_valid_shop_domain(auth.shop):
        return Result.failure("InvalidShopDomain", "Invalid Shopify shop domain")

    handler = _HANDLERS.get(action_type)
    if handler is None:
        return Result.failure("UnsupportedAction", "Unsupported actionType")

    executor = ShopifyExecutor(auth, correlation_id=correlation_id, client=client)
    try:
        result = handler(executor, payload or {})
    except Exception as e:
        # Transport failures after retries and malformed responses end up here
        logger.exception("Shopify %s failed", action_type)
        counter("shopify.action.exception")
        return Result.failure(
            "Exception", "Exception during Shopify call", {"error": f"{type(e).__name__}: {e}"}
        )

    counter(f"shopify.action.{'ok' if result.ok else 'failed'}")
    log_event(
        "shopify.action",
        action_type=action_type,
        ok=result.ok,
        code=result.code,
        correlation_id=correlation_id,
    )
    return result
