"""
Card payments through Stripe PaymentIntents.

The amount is always recomputed from stored product prices; the client only
sends product ids and quantities. A payment record is stored next to every
intent, and `finalize_payment` turns a succeeded intent into an order
exactly once, whether the success arrives through the webhook, a sync call
or the confirmation response itself.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import List, Optional

import stripe
from fastapi import HTTPException

import config
from checkout import build_order_items, release_stock, reserve_stock, resolve_fulfilment
from database import create_document, db, to_object_id
from payment_errors import describe_payment_error
from schemas import DisplayAmount, Order, OrderItem, Payment

log = logging.getLogger("boutique.payments")

KNOWN_STATUSES = (
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "processing",
    "requires_capture",
    "succeeded",
    "canceled",
)
RISK_LEVELS = ("normal", "elevated", "highest", "not_assessed", "unknown")
STATUS_EVENTS = (
    "payment_intent.payment_failed",
    "payment_intent.canceled",
    "payment_intent.processing",
    "payment_intent.requires_action",
)

METADATA_VALUE_LIMIT = 480
SUMMARY_ITEM_LIMIT = 15


def _get(obj, key, default=None):
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def configure_stripe():
    if not config.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=500, detail="Stripe is not configured")
    stripe.api_key = config.STRIPE_SECRET_KEY


# Helpers
def fingerprint(value: str) -> str:
    return "sha256:" + hashlib.sha256(value.encode("utf-8")).hexdigest()


def sanitize_metadata_value(value: str) -> str:
    # Stripe caps metadata values at 500 characters
    if len(value) <= METADATA_VALUE_LIMIT:
        return value
    return fingerprint(value)


def summarize_items(items: List[OrderItem]) -> str:
    return ", ".join(f"{it.quantity}x {it.product_name}" for it in items[:SUMMARY_ITEM_LIMIT])


def derive_status(stripe_status: Optional[str], last_error: Optional[str] = None) -> str:
    if stripe_status == "requires_payment_method" and last_error:
        return "failed"
    if stripe_status in KNOWN_STATUSES:
        return stripe_status
    return "requires_payment_method"


def latest_charge_id(intent) -> Optional[str]:
    charge = _get(intent, "latest_charge")
    if not charge:
        return None
    if isinstance(charge, str):
        return charge
    return _get(charge, "id")


def summarize_intent(intent, expect_client_secret: bool = True) -> dict:
    last_error = _get(_get(intent, "last_payment_error"), "message")
    client_secret = _get(intent, "client_secret")
    if expect_client_secret and not client_secret:
        raise HTTPException(status_code=502, detail="Stripe did not return a client secret")
    return {
        "payment_intent_id": _get(intent, "id"),
        "client_secret": client_secret,
        "status": derive_status(_get(intent, "status"), last_error),
        "latest_charge_id": latest_charge_id(intent),
        "last_error": last_error,
    }


def build_metadata(customer: dict, delivery_type: str, items: List[OrderItem], amount_minor: int,
                   cart_signature: Optional[str] = None, extra: Optional[dict] = None) -> dict:
    metadata = {
        "customer_email": customer["email"],
        "delivery_type": delivery_type,
        "items": sanitize_metadata_value(summarize_items(items)),
        "amount_minor": str(amount_minor),
    }
    if cart_signature:
        metadata["cart_signature_hash"] = fingerprint(cart_signature)
    for key, value in (extra or {}).items():
        metadata[key] = sanitize_metadata_value(str(value))
    return metadata


# Submit
def submit_payment(payload: dict, user_id: Optional[str] = None) -> dict:
    customer = payload["customer"]
    shipping = payload["shipping"]
    locale = payload.get("locale")

    items, subtotal = build_order_items(payload.get("items") or [])
    shipping_address, delivery_fee, scheduled = resolve_fulfilment(shipping)
    amount = round(subtotal + delivery_fee, 2)
    amount_minor = int(round(amount * 100))
    currency = config.PAYMENT_CURRENCY.lower()
    delivery_type = shipping.get("delivery_type") or "pickup"

    metadata = build_metadata(customer, delivery_type, items, amount_minor,
                              payload.get("cart_signature"), payload.get("metadata"))

    configure_stripe()
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_minor,
            currency=currency,
            payment_method_types=["card"],
            payment_method=payload["payment_method_id"],
            confirm=True,
            receipt_email=customer["email"],
            description=f"{customer['name']} order",
            shipping={
                "name": customer["name"],
                "phone": customer.get("phone"),
                "address": {"line1": shipping_address},
            },
            metadata=metadata,
        )
    except stripe.APIConnectionError as e:
        log.error("stripe unreachable: %s", e)
        raise HTTPException(status_code=502, detail=describe_payment_error(e, locale))
    except stripe.StripeError as e:
        log.warning("payment intent failed for %s: %s", customer["email"], e)
        raise HTTPException(status_code=402, detail=describe_payment_error(e, locale))

    summary = summarize_intent(intent)
    display = payload.get("display_amount") or {"value": amount, "currency": currency.upper()}
    record = Payment(
        payment_intent_id=summary["payment_intent_id"],
        user_id=user_id,
        status=summary["status"],
        amount_base=amount,
        amount_minor=amount_minor,
        currency=currency,
        display_amount=DisplayAmount(**display),
        customer=customer,
        shipping={
            "address": shipping_address,
            "delivery_type": delivery_type,
            "scheduled_date_time": scheduled,
            "delivery_fee": delivery_fee or None,
        },
        items=items,
        cart_signature=payload.get("cart_signature"),
        payment_source=payload.get("payment_source") or "card",
        client_secret=summary["client_secret"],
        last_error=summary["last_error"],
        metadata=metadata,
    )
    record_data = record.model_dump(exclude={"created_at"})
    create_document("payment", record_data)
    log.info("payment intent %s created: %s, %s %s", record.payment_intent_id, record.status,
             amount, currency)

    if summary["status"] == "succeeded":
        finalize_payment(summary["payment_intent_id"], summary["latest_charge_id"])

    return {
        "payment_intent_id": summary["payment_intent_id"],
        "status": summary["status"],
        "client_secret": summary["client_secret"],
        "last_error": summary["last_error"],
    }


# Status updates
def update_payment_status(payment_intent_id: str, status: Optional[str], last_error: Optional[str] = None) -> bool:
    res = db["payment"].update_one(
        {"payment_intent_id": payment_intent_id},
        {"$set": {"status": derive_status(status, last_error), "last_error": last_error},
         "$currentDate": {"updated_at": True}},
    )
    if res.matched_count == 0:
        log.warning("status update for unknown payment intent %s", payment_intent_id)
        return False
    return True


def _create_paid_order(payment: dict) -> str:
    payment_intent_id = payment["payment_intent_id"]
    items = [OrderItem(**it) for it in payment.get("items", [])]
    reserved = []
    try:
        reserved = reserve_stock(items)
    except HTTPException as e:
        # the customer has paid; the order goes through and the shop resolves stock by hand
        log.error("stock short while finalizing %s: %s", payment_intent_id, e.detail)

    shipping = payment.get("shipping") or {}
    customer = payment.get("customer") or {}
    order = Order(
        user_id=payment.get("user_id"),
        items=items,
        total_amount=payment.get("amount_base", 0),
        delivery_fee=shipping.get("delivery_fee") or 0,
        status="confirmed",
        customer_name=customer.get("name", ""),
        customer_email=customer.get("email"),
        customer_phone=customer.get("phone"),
        shipping_address=shipping.get("address", ""),
        delivery_type=shipping.get("delivery_type") or "pickup",
        payment_method="full_online",
        payment_intent_id=payment_intent_id,
        pickup_date_time=shipping.get("scheduled_date_time"),
    )
    try:
        return create_document("order", order)
    except Exception:
        release_stock(reserved)
        raise


def finalize_payment(payment_intent_id: str, stripe_charge_id: Optional[str] = None) -> Optional[str]:
    """Create the order for a succeeded intent. Safe to call any number of times."""
    payment = db["payment"].find_one({"payment_intent_id": payment_intent_id})
    if not payment:
        log.warning("succeeded intent %s has no payment record", payment_intent_id)
        return None
    if payment.get("order_id"):
        return payment["order_id"]

    # claim the record so concurrent deliveries don't create a second order
    claimed = db["payment"].update_one(
        {"_id": payment["_id"], "order_id": None, "finalizing": {"$ne": True}},
        {"$set": {"finalizing": True}},
    )
    if claimed.modified_count == 0:
        return db["payment"].find_one({"_id": payment["_id"]}).get("order_id")

    try:
        order_id = _create_paid_order(payment)
    except Exception:
        # let the next webhook delivery or sync call try again
        db["payment"].update_one({"_id": payment["_id"]}, {"$unset": {"finalizing": ""}})
        log.error("could not create order for payment intent %s", payment_intent_id)
        raise

    if payment.get("user_id"):
        db["cartitem"].delete_many({"user_id": payment["user_id"]})

    db["payment"].update_one(
        {"_id": payment["_id"]},
        {"$set": {"status": "succeeded", "last_error": None, "order_id": order_id,
                  "stripe_charge_id": stripe_charge_id or payment.get("stripe_charge_id")},
         "$unset": {"finalizing": ""},
         "$currentDate": {"updated_at": True}},
    )
    log.info("order %s created from payment intent %s", order_id, payment_intent_id)
    return order_id


def sync_payment(payment_intent_id: str) -> Optional[dict]:
    payment = db["payment"].find_one({"payment_intent_id": payment_intent_id})
    if not payment:
        return None

    configure_stripe()
    try:
        intent = stripe.PaymentIntent.retrieve(payment_intent_id, expand=["latest_charge"])
    except stripe.StripeError as e:
        log.error("could not retrieve payment intent %s: %s", payment_intent_id, e)
        raise HTTPException(status_code=502, detail="Payment provider unavailable")

    summary = summarize_intent(intent, expect_client_secret=False)
    update_payment_status(payment_intent_id, _get(intent, "status"), summary["last_error"])
    order_id = payment.get("order_id")
    if summary["status"] == "succeeded":
        order_id = finalize_payment(payment_intent_id, summary["latest_charge_id"])

    return {
        "payment_intent_id": payment_intent_id,
        "payment_id": str(payment["_id"]),
        "status": summary["status"],
        "order_id": order_id,
        "client_secret": summary["client_secret"],
        "last_error": summary["last_error"],
    }


def lookup_payment(payment_intent_id: str) -> Optional[dict]:
    payment = db["payment"].find_one({"payment_intent_id": payment_intent_id})
    if not payment:
        return None
    return {
        "payment_id": str(payment["_id"]),
        "payment_intent_id": payment.get("payment_intent_id") or payment_intent_id,
        "order_id": payment.get("order_id"),
        "status": payment.get("status"),
        "last_error": payment.get("last_error"),
    }


# Webhook
def handle_webhook_event(payload: bytes, signature: Optional[str]):
    """Verify and dispatch a webhook. Returns (http_status, body)."""
    if not config.STRIPE_WEBHOOK_SECRET:
        log.error("STRIPE_WEBHOOK_SECRET is not configured")
        return 500, {"error": "Webhook secret missing"}

    try:
        event = stripe.Webhook.construct_event(payload, signature or "", config.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        log.warning("stripe webhook signature verification failed: %s", e)
        return 400, {"error": f"Invalid signature: {e}"}

    event_type = _get(event, "type")
    intent = _get(_get(event, "data"), "object")
    try:
        if event_type == "payment_intent.succeeded":
            finalize_payment(_get(intent, "id"), latest_charge_id(intent))
        elif event_type in STATUS_EVENTS:
            last_error = _get(_get(intent, "last_payment_error"), "message")
            update_payment_status(_get(intent, "id"), _get(intent, "status"), last_error)
        else:
            log.info("unhandled stripe webhook event: %s", event_type)
    except Exception as e:
        log.exception("error while handling stripe webhook %s: %s", event_type, e)
        return 500, {"error": "Handler error"}
    return 200, {"received": True}


# Admin
def _format_payment(payment: dict) -> dict:
    display = payment.get("display_amount") or {}
    customer = payment.get("customer") or {}
    shipping = payment.get("shipping") or {}
    amount_minor = payment.get("amount_minor")
    if not isinstance(amount_minor, int):
        amount_minor = int(round(payment.get("amount_base", 0) * 100))
    return {
        "_id": str(payment["_id"]),
        "created_at": payment.get("created_at"),
        "order_id": payment.get("order_id"),
        "payment_intent_id": payment.get("payment_intent_id"),
        "status": payment.get("status"),
        "amount_base": payment.get("amount_base"),
        "amount_minor": amount_minor,
        "currency": payment.get("currency"),
        "display_amount": {
            "value": display.get("value", payment.get("amount_base")),
            "currency": display.get("currency", payment.get("currency")),
            "conversion_rate": display.get("conversion_rate"),
            "conversion_fee_pct": display.get("conversion_fee_pct"),
        },
        "customer": {
            "name": customer.get("name") or "Unknown",
            "email": customer.get("email") or "unknown@example.com",
            "phone": customer.get("phone"),
        },
        "shipping": {
            "address": shipping.get("address") or "Pickup",
            "delivery_type": shipping.get("delivery_type") or "pickup",
            "scheduled_date_time": shipping.get("scheduled_date_time"),
            "delivery_fee": shipping.get("delivery_fee"),
        },
        "last_error": payment.get("last_error"),
    }


def list_admin_payments(limit: int = 40) -> List[dict]:
    limit = min(max(limit, 1), 200)
    rows = []
    for payment in db["payment"].find({}).sort([("created_at", -1)]).limit(limit):
        order = None
        if payment.get("order_id"):
            order = db["order"].find_one({"_id": to_object_id(payment["order_id"])})
        rows.append({
            "payment": _format_payment(payment),
            "order": {
                "_id": str(order["_id"]),
                "status": order.get("status"),
                "payment_method": order.get("payment_method"),
            } if order else None,
        })
    return rows


def normalize_risk_level(risk_level: Optional[str]) -> str:
    return risk_level if risk_level in RISK_LEVELS else "unknown"


def device_label(charge) -> Optional[str]:
    details = _get(charge, "payment_method_details")
    if not details:
        return None
    method_type = _get(details, "type")
    if method_type == "card":
        card = _get(details, "card")
        brand = (_get(card, "brand") or "").upper()
        wallet = _get(_get(card, "wallet"), "type")
        if brand and wallet:
            return f"{brand} • {wallet}"
        if brand:
            return brand
    return method_type


def map_stripe_intent(intent) -> dict:
    charge = _get(intent, "latest_charge")
    if isinstance(charge, str):
        charge = None
    details = _get(charge, "payment_method_details")
    wallet = _get(_get(details, "card"), "wallet")
    created = _get(intent, "created")
    return {
        "id": _get(intent, "id"),
        "created": datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        "amount_minor": _get(intent, "amount"),
        "currency": _get(intent, "currency"),
        "status": derive_status(_get(intent, "status")),
        "customer": {
            "name": _get(_get(intent, "shipping"), "name"),
            "email": _get(intent, "receipt_email"),
        },
        "risk_level": normalize_risk_level(_get(_get(charge, "outcome"), "risk_level")),
        "source_type": _get(details, "type"),
        "device": device_label(charge),
        "wallet_last4": _get(wallet, "dynamic_last4"),
    }


def list_stripe_payments(limit: int = 20) -> List[dict]:
    limit = min(max(limit, 1), 100)
    configure_stripe()
    try:
        response = stripe.PaymentIntent.list(limit=limit, expand=["data.latest_charge"])
    except stripe.StripeError as e:
        log.error("could not list payment intents: %s", e)
        raise HTTPException(status_code=502, detail="Payment provider unavailable")
    return [map_stripe_intent(intent) for intent in _get(response, "data") or []]
