"""
Python client for the storefront API.

`GuestCart` keeps an anonymous visitor's cart in a JSON file so it survives
restarts. When the visitor signs in, `sign_in` merges that cart into the
account exactly once: a successful import clears the local file. A failed import
(network error or error status) leaves it for the next sign-in and is only logged.

`wait_for_payment_outcome` polls the payment lookup after a card payment
until the order exists or the payment has definitely failed.
"""
import json
import logging
import math
import os
import time
from typing import Callable, List, Optional

import requests

from payment_errors import describe_payment_error

log = logging.getLogger("boutique.client")

TERMINAL_FAILURE_STATUSES = ("failed", "canceled")


class StorefrontError(Exception):
    def __init__(self, status_code: int, detail):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class StorefrontClient:
    """Thin wrapper over the HTTP API. Pass `session` to reuse a pool or inject a test client."""

    def __init__(self, base_url: str = "http://localhost:8000", token: Optional[str] = None, session=None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _request(self, method: str, path: str, **kwargs):
        response = self.session.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail")
            except ValueError:
                detail = response.text
            raise StorefrontError(response.status_code, detail)
        return response.json()

    # Auth
    def login(self, email: str, password: str) -> dict:
        data = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.token = data["token"]
        return data["user"]

    def me(self) -> Optional[dict]:
        return self._request("GET", "/api/auth/me")

    # Catalog
    def list_products(self, **params) -> dict:
        return self._request("GET", "/api/products", params=params)

    def get_product(self, product_id: str) -> dict:
        return self._request("GET", f"/api/products/{product_id}")

    # Cart
    def cart(self) -> List[dict]:
        return self._request("GET", "/api/cart")

    def cart_total(self) -> dict:
        return self._request("GET", "/api/cart/total")

    def add_to_cart(self, product_id: str, quantity: int = 1, personalization: Optional[dict] = None) -> dict:
        return self._request("POST", "/api/cart", json={
            "product_id": product_id,
            "quantity": quantity,
            "personalization": personalization,
        })

    def import_cart(self, items: List[dict]) -> dict:
        return self._request("POST", "/api/cart/import", json={"items": items})

    # Payments
    def lookup_payment(self, payment_intent_id: str) -> Optional[dict]:
        return self._request("GET", f"/api/payments/lookup/{payment_intent_id}")


# Guest cart
def _valid_entry(item) -> bool:
    if not isinstance(item, dict):
        return False
    product = item.get("product")
    return (
        isinstance(item.get("product_id"), str)
        and isinstance(item.get("quantity"), (int, float))
        and not isinstance(item.get("quantity"), bool)
        and isinstance(product, dict)
        and isinstance(product.get("name"), str)
        and isinstance(product.get("price"), (int, float))
    )


PERSONALIZATION_FIELDS = ("text", "color", "number")


def same_personalization(a: Optional[dict], b: Optional[dict]) -> bool:
    if not a and not b:
        return True
    if not a or not b:
        return False
    return all(a.get(field) == b.get(field) for field in PERSONALIZATION_FIELDS)


def snapshot_from_product(product: dict) -> dict:
    return {
        "product_id": product["_id"],
        "name": product["name"],
        "price": product["price"],
        "primary_image_url": product.get("primary_image_url"),
        "in_stock": product.get("in_stock", True),
    }


class GuestCart:
    """Anonymous cart persisted as a JSON list in `path`."""

    def __init__(self, path: str):
        self.path = path

    def items(self) -> List[dict]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                parsed = json.load(f)
        except (OSError, ValueError):
            return []
        if not isinstance(parsed, list):
            return []
        return [item for item in parsed if _valid_entry(item)]

    def _write(self, items: List[dict]):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(items, f, ensure_ascii=False)

    def add(self, snapshot: dict, quantity, personalization: Optional[dict] = None):
        if not isinstance(quantity, (int, float)) or not math.isfinite(quantity) or quantity <= 0:
            return
        items = self.items()
        for item in items:
            if item["product_id"] == snapshot["product_id"] and \
                    same_personalization(item.get("personalization"), personalization):
                item["quantity"] = max(1, math.floor(item["quantity"] + quantity))
                item["product"] = snapshot
                break
        else:
            items.append({
                "product_id": snapshot["product_id"],
                "quantity": max(1, math.floor(quantity)),
                "personalization": personalization,
                "product": snapshot,
            })
        self._write(items)

    def set_quantity(self, index: int, quantity):
        items = self.items()
        if index < 0 or index >= len(items):
            return
        if not isinstance(quantity, (int, float)) or not math.isfinite(quantity) or quantity <= 0:
            del items[index]
        else:
            items[index]["quantity"] = max(1, math.floor(quantity))
        self._write(items)

    def remove(self, index: int):
        items = self.items()
        if 0 <= index < len(items):
            del items[index]
            self._write(items)

    def clear(self):
        self._write([])

    def total_count(self) -> int:
        return sum(item["quantity"] for item in self.items())

    def total_price(self) -> float:
        return round(sum(item["quantity"] * item["product"]["price"] for item in self.items()), 2)

    def import_payload(self) -> List[dict]:
        return [
            {"product_id": item["product_id"], "quantity": item["quantity"],
             "personalization": item.get("personalization")}
            for item in self.items()
        ]


def merge_guest_cart(client: StorefrontClient, cart: GuestCart) -> bool:
    """Import the guest cart once. Returns True when the server accepted it."""
    items = cart.import_payload()
    if not items:
        return False
    try:
        result = client.import_cart(items)
    except (requests.RequestException, StorefrontError) as e:
        log.warning("guest cart merge failed, keeping local cart: %s", e)
        return False
    cart.clear()
    log.info("guest cart merged: %s", result)
    return True


def sign_in(client: StorefrontClient, cart: GuestCart, email: str, password: str) -> dict:
    user = client.login(email, password)
    merge_guest_cart(client, cart)
    return user


# Payment polling
def wait_for_payment_outcome(client: StorefrontClient, payment_intent_id: str, interval: float = 1.0,
                             timeout: Optional[float] = None, locale: Optional[str] = None,
                             sleep: Callable[[float], None] = time.sleep) -> dict:
    """Poll until an order exists or the payment failed; waits forever unless `timeout` is given."""
    started = time.monotonic()
    while True:
        lookup = client.lookup_payment(payment_intent_id)
        if lookup:
            if lookup.get("order_id"):
                return {"status": "succeeded", "order_id": lookup["order_id"], "message": None}
            if lookup.get("status") in TERMINAL_FAILURE_STATUSES and lookup.get("last_error"):
                return {
                    "status": lookup["status"],
                    "order_id": None,
                    "message": describe_payment_error(lookup["last_error"], locale),
                }
        if timeout is not None and time.monotonic() - started >= timeout:
            return {"status": "pending", "order_id": None, "message": None}
        sleep(interval)
