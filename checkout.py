"""
Checkout rules shared by cash orders and card payments.

`resolve_fulfilment` validates how the order reaches the customer (pickup
date, courier city, delivery address) and `build_order_items` snapshots the
products at their current price. `reserve_stock` decrements stock with a
conditional update per product so two checkouts can't both take the last
unit.
"""
import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from urllib.parse import quote

from bson import ObjectId
from fastapi import HTTPException

from catalog import find_product, is_out_of_stock
from config import COURIER_DELIVERY_CITIES, PAYMENT_CONFIG, STORE_INFO, WHATSAPP_NUMBER
from database import create_document, db
from schemas import Order, OrderItem

log = logging.getLogger("boutique.checkout")

POSTAL_CODE_RE = re.compile(r"^\d{3,10}$")
URI_COMPONENT_SAFE = "-_.!~*'()"


# Address
def validate_address(fields: Optional[dict]) -> List[str]:
    fields = fields or {}
    street = (fields.get("street_address") or "").strip()
    city = (fields.get("city") or "").strip()
    postal_code = (fields.get("postal_code") or "").strip()
    notes = (fields.get("delivery_notes") or "").strip()

    errors = []
    if not street:
        errors.append("Street and house number is required.")
    elif len(street) < 3:
        errors.append("Street and house number must be at least 3 characters.")
    elif len(street) > 200:
        errors.append("Street and house number must be under 200 characters.")
    if not city:
        errors.append("City is required.")
    elif len(city) < 2:
        errors.append("City must be at least 2 characters.")
    elif len(city) > 100:
        errors.append("City must be under 100 characters.")
    if not postal_code:
        errors.append("Postal code is required.")
    elif not POSTAL_CODE_RE.match(postal_code):
        errors.append("Postal code must be 3-10 digits.")
    if len(notes) > 500:
        errors.append("Delivery notes must be under 500 characters.")
    return errors


def compose_address(fields: dict) -> str:
    street = (fields.get("street_address") or "").strip()
    postal_code = (fields.get("postal_code") or "").strip()
    city = (fields.get("city") or "").strip()
    notes = (fields.get("delivery_notes") or "").strip()

    city_line = " ".join(p for p in (postal_code, city) if p)
    return "\n".join(line for line in (street, city_line, notes) if line)


def store_address() -> str:
    addr = STORE_INFO["address"]
    return f"{addr['street']}, {addr['postal_code']} {addr['city']}, {addr['country']}"


# Pickup & delivery
def min_pickup_date(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now()
    day = now + timedelta(days=STORE_INFO["order_policy"]["min_pickup_days"])
    return day.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_pickup_date_time(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid pickup date and time")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def get_courier_city(city_id: Optional[str]) -> Optional[dict]:
    for city in COURIER_DELIVERY_CITIES:
        if city["id"] == city_id:
            return city
    return None


def resolve_fulfilment(details: dict, now: Optional[datetime] = None) -> Tuple[str, float, Optional[str]]:
    """Validate pickup/delivery details and return (shipping_address, delivery_fee, pickup_date_time)."""
    delivery_type = details.get("delivery_type") or "pickup"

    if delivery_type == "pickup":
        pickup = (details.get("pickup_date_time") or "").strip()
        if not pickup:
            raise HTTPException(status_code=400, detail="Pickup date and time is required")
        if parse_pickup_date_time(pickup) < min_pickup_date(now):
            days = STORE_INFO["order_policy"]["min_pickup_days"]
            raise HTTPException(status_code=400, detail=f"Pickup must be at least {days} days in advance")
        return store_address(), 0.0, pickup

    city = get_courier_city(details.get("courier_city_id"))
    if not city:
        raise HTTPException(status_code=400, detail="Please choose a delivery city")
    errors = validate_address(details.get("address"))
    if errors:
        raise HTTPException(status_code=400, detail=errors[0])
    return compose_address(details["address"]), float(city["price"]), details.get("pickup_date_time")


def checkout_options(now: Optional[datetime] = None) -> dict:
    return {
        "payment_methods": PAYMENT_CONFIG,
        "courier_cities": COURIER_DELIVERY_CITIES,
        "min_pickup_date_time": min_pickup_date(now).strftime("%Y-%m-%dT%H:%M"),
        "order_policy": STORE_INFO["order_policy"],
        "pickup_address": store_address(),
    }


# Items & stock
def build_order_items(lines: List[dict]) -> Tuple[List[OrderItem], float]:
    if not lines:
        raise HTTPException(status_code=400, detail="Cart is empty")
    items: List[OrderItem] = []
    subtotal = 0.0
    for line in lines:
        product = find_product(line.get("product_id"))
        if not product:
            raise HTTPException(status_code=400, detail="Product not available")
        quantity = int(line["quantity"])
        stock = product.get("stock")
        if is_out_of_stock(product) or (stock is not None and quantity > stock):
            raise HTTPException(status_code=400, detail=f"Not enough {product['name']} in stock")
        price = float(product.get("price", 0))
        items.append(OrderItem(
            product_id=str(product["_id"]),
            product_name=product["name"],
            quantity=quantity,
            price=price,
            personalization=line.get("personalization"),
        ))
        subtotal += price * quantity
    return items, round(subtotal, 2)


def release_stock(reserved: List[Tuple[ObjectId, int, bool]]):
    for oid, quantity, tracked in reserved:
        if tracked:
            db["product"].update_one(
                {"_id": oid}, {"$inc": {"stock": quantity, "sold_count": -quantity}, "$set": {"in_stock": True}}
            )
        else:
            db["product"].update_one({"_id": oid}, {"$inc": {"sold_count": -quantity}})


def reserve_stock(items: List[OrderItem]) -> List[Tuple[ObjectId, int, bool]]:
    """Decrement stock and bump sold_count; undo everything if any product runs short."""
    reserved: List[Tuple[ObjectId, int, bool]] = []
    for item in items:
        oid = ObjectId(item.product_id)
        product = db["product"].find_one({"_id": oid})
        tracked = product is not None and product.get("stock") is not None
        if tracked:
            res = db["product"].update_one(
                {"_id": oid, "stock": {"$gte": item.quantity}},
                {"$inc": {"stock": -item.quantity, "sold_count": item.quantity}},
            )
        else:
            res = db["product"].update_one({"_id": oid}, {"$inc": {"sold_count": item.quantity}})
        if res.matched_count == 0:
            release_stock(reserved)
            raise HTTPException(status_code=400, detail=f"Not enough {item.product_name} in stock")
        reserved.append((oid, item.quantity, tracked))
        if tracked:
            db["product"].update_one({"_id": oid, "stock": 0}, {"$set": {"in_stock": False}})
    return reserved


# Orders
def place_cash_order(details: dict, lines: List[dict], user_id: Optional[str] = None,
                     now: Optional[datetime] = None) -> dict:
    if not lines:
        raise HTTPException(status_code=400, detail="Cart is empty")
    if details.get("payment_method") != "cash":
        raise HTTPException(status_code=400, detail="Card orders are created by the payment flow")
    if not details.get("whatsapp_confirmed"):
        raise HTTPException(status_code=400, detail="WhatsApp confirmation is required for cash payment")
    if PAYMENT_CONFIG["cash"]["only_for_pickup"] and details.get("delivery_type") != "pickup":
        raise HTTPException(status_code=400, detail="Cash payment is only available for pickup")

    shipping_address, delivery_fee, pickup_date_time = resolve_fulfilment(details, now)
    items, subtotal = build_order_items(lines)
    reserved = reserve_stock(items)

    order = Order(
        user_id=user_id,
        items=items,
        total_amount=round(subtotal + delivery_fee, 2),
        delivery_fee=delivery_fee,
        status="confirmed",
        customer_name=details["customer_name"],
        customer_email=details["customer_email"],
        customer_phone=details.get("customer_phone"),
        shipping_address=shipping_address,
        delivery_type=details.get("delivery_type") or "pickup",
        payment_method="cash",
        whatsapp_confirmed=True,
        pickup_date_time=pickup_date_time,
    )
    try:
        order_id = create_document("order", order)
    except Exception:
        release_stock(reserved)
        raise
    if user_id:
        db["cartitem"].delete_many({"user_id": user_id})
    log.info("cash order %s created (%s items, %.2f EUR)", order_id, len(items), order.total_amount)
    return {"_id": order_id, "status": order.status, "total_amount": order.total_amount}


# WhatsApp
WHATSAPP_TEMPLATES = {
    "de": {
        "greeting": "Guten Tag! Ich möchte meine Bestellung bestätigen.",
        "name": "Name", "email": "Email", "address": "Adresse",
        "delivery": "Lieferart", "date": "Datum und Uhrzeit",
        "pickup_label": "Abholung", "delivery_label": "Lieferung",
        "unset": "nicht angegeben", "items": "Produkte", "total": "Gesamt",
        "color": "Farbe", "text": "Text", "number": "Nummer",
    },
    "ru": {
        "greeting": "Добрый день! Я хочу подтвердить заказ.",
        "name": "Имя", "email": "Email", "address": "Адрес",
        "delivery": "Способ доставки", "date": "Дата и время",
        "pickup_label": "Самовывоз", "delivery_label": "Доставка",
        "unset": "не указано", "items": "Товары", "total": "Итого",
        "color": "цвет", "text": "текст", "number": "номер",
    },
}


def _amount(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def build_whatsapp_message(locale: str, customer_name: str, customer_email: str, shipping_address: str,
                           delivery_type: str, pickup_date_time: Optional[str] = None,
                           items: Optional[List[dict]] = None, total: Optional[float] = None) -> str:
    t = WHATSAPP_TEMPLATES["ru" if locale in ("ru", "uk") else "de"]
    delivery_text = t["pickup_label"] if delivery_type == "pickup" else t["delivery_label"]

    message = (
        f"{t['greeting']}\n\n"
        f"{t['name']}: {customer_name}\n"
        f"{t['email']}: {customer_email}\n"
        f"{t['address']}: {shipping_address}\n"
        f"{t['delivery']}: {delivery_text}\n"
        f"{t['date']}: {pickup_date_time or t['unset']}"
    )
    if items:
        lines = []
        for it in items:
            parts = [f"- {it['name']} x{it['quantity']}"]
            p = it.get("personalization") or {}
            if p.get("color"):
                parts.append(f"{t['color']}: {p['color']}")
            if p.get("text"):
                parts.append(f"{t['text']}: \"{p['text']}\"")
            if p.get("number"):
                parts.append(f"{t['number']}: {p['number']}")
            lines.append(", ".join(parts))
        message += f"\n\n{t['items']}:\n" + "\n".join(lines)
    if total is not None:
        message += f"\n\n{t['total']}: {_amount(total)} EUR"
    return message


def whatsapp_link(message: str) -> str:
    return f"https://wa.me/{WHATSAPP_NUMBER}?text={quote(message, safe=URI_COMPONENT_SAFE)}"
