"""
Cart storage for signed-in customers.

A cart line is unique per (user, product, personalization). The
personalization signature is the compact JSON of the trimmed text, color and
number fields, or "__none__" when nothing was personalized.
"""
import json
import logging
from typing import Iterable, List, Optional

from fastapi import HTTPException

from catalog import clamp_to_stock, find_product, is_out_of_stock, public_product
from database import create_document, db, to_object_id

log = logging.getLogger("boutique.cart")

PERSONALIZATION_NONE = "__none__"
PERSONALIZATION_FIELDS = ("text", "color", "number")


def normalize_personalization(personalization: Optional[dict]) -> Optional[dict]:
    if not personalization:
        return None
    normalized = {}
    for field in PERSONALIZATION_FIELDS:
        value = personalization.get(field)
        value = value.strip() if isinstance(value, str) else None
        normalized[field] = value or None
    if not any(normalized.values()):
        return None
    return normalized


def personalization_signature(personalization: Optional[dict]) -> str:
    if not personalization:
        return PERSONALIZATION_NONE
    return json.dumps(
        {field: personalization.get(field) for field in PERSONALIZATION_FIELDS},
        separators=(",", ":"),
        ensure_ascii=False,
    )


def ensure_positive_integer(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise HTTPException(status_code=400, detail="Quantity must be a positive integer")
    if quantity != int(quantity) or quantity <= 0:
        raise HTTPException(status_code=400, detail="Quantity must be a positive integer")
    return int(quantity)


def find_cart_item(user_id: str, product_id: str, signature: str) -> Optional[dict]:
    """Return the line for this product and signature, merging duplicates into the oldest."""
    matches = list(
        db["cartitem"]
        .find({"user_id": user_id, "product_id": product_id, "personalization_signature": signature})
        .sort([("created_at", 1)])
    )
    if not matches:
        return None
    primary, rest = matches[0], matches[1:]
    if rest:
        merged = primary["quantity"] + sum(d["quantity"] for d in rest)
        db["cartitem"].delete_many({"_id": {"$in": [d["_id"] for d in rest]}})
        db["cartitem"].update_one({"_id": primary["_id"]}, {"$set": {"quantity": merged}})
        primary["quantity"] = merged
        log.info("merged %d duplicate cart lines for user %s", len(rest), user_id)
    return primary


def increment_cart_item(user_id: str, product: dict, delta: int, personalization: Optional[dict] = None) -> int:
    if is_out_of_stock(product):
        raise HTTPException(status_code=400, detail="Product is out of stock")

    normalized = normalize_personalization(personalization)
    signature = personalization_signature(normalized)
    product_id = str(product["_id"])
    existing = find_cart_item(user_id, product_id, signature)

    quantity = clamp_to_stock(product, (existing["quantity"] if existing else 0) + delta)
    if existing:
        db["cartitem"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"quantity": quantity, "personalization": normalized, "personalization_signature": signature},
             "$currentDate": {"updated_at": True}},
        )
    else:
        create_document("cartitem", {
            "user_id": user_id,
            "product_id": product_id,
            "quantity": quantity,
            "personalization": normalized,
            "personalization_signature": signature,
        })
    return quantity


def add_to_cart(user_id: str, product_id: str, quantity, personalization: Optional[dict] = None) -> dict:
    delta = ensure_positive_integer(quantity)
    product = find_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    new_quantity = increment_cart_item(user_id, product, delta, personalization)
    return {"product_id": product_id, "quantity": new_quantity}


def list_cart(user_id: str) -> List[dict]:
    items = []
    for doc in db["cartitem"].find({"user_id": user_id}).sort([("created_at", -1)]):
        product = find_product(doc["product_id"])
        if not product:
            continue
        personalization = normalize_personalization(doc.get("personalization"))
        items.append({
            "_id": str(doc["_id"]),
            "product_id": doc["product_id"],
            "quantity": doc["quantity"],
            "personalization": personalization,
            "personalization_signature": doc.get("personalization_signature")
            or personalization_signature(personalization),
            "product": public_product(product),
        })
    return items


def cart_total(user_id: Optional[str]) -> dict:
    if not user_id:
        return {"total": 0, "item_count": 0}
    total = 0.0
    item_count = 0
    for doc in db["cartitem"].find({"user_id": user_id}):
        product = find_product(doc["product_id"])
        if not product:
            continue
        total += float(product.get("price", 0)) * doc["quantity"]
        item_count += doc["quantity"]
    return {"total": round(total, 2), "item_count": item_count}


def _load_own_item(user_id: str, item_id: str) -> dict:
    item = db["cartitem"].find_one({"_id": to_object_id(item_id), "user_id": user_id})
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return item


def update_quantity(user_id: str, item_id: str, quantity: int) -> dict:
    item = _load_own_item(user_id, item_id)
    if quantity <= 0:
        db["cartitem"].delete_one({"_id": item["_id"]})
        return {"_id": item_id, "quantity": 0, "removed": True}

    product = find_product(item["product_id"])
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    if is_out_of_stock(product):
        raise HTTPException(status_code=400, detail="Product is out of stock")

    quantity = clamp_to_stock(product, quantity)
    db["cartitem"].update_one(
        {"_id": item["_id"]},
        {"$set": {"quantity": quantity}, "$currentDate": {"updated_at": True}},
    )
    return {"_id": item_id, "quantity": quantity, "removed": False}


def remove_item(user_id: str, item_id: str) -> dict:
    item = _load_own_item(user_id, item_id)
    db["cartitem"].delete_one({"_id": item["_id"]})
    return {"deleted": True}


def clear_cart(user_id: str) -> int:
    return db["cartitem"].delete_many({"user_id": user_id}).deleted_count


def import_guest_items(user_id: str, items: Iterable[dict]) -> dict:
    """Merge a guest cart into the user's cart. Quantities add up, so importing twice doubles them."""
    imported = 0
    skipped = 0
    for entry in items:
        quantity = entry.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, (int, float)) \
                or quantity != int(quantity) or quantity <= 0:
            skipped += 1
            continue
        product = find_product(entry.get("product_id"))
        if not product or is_out_of_stock(product):
            skipped += 1
            continue
        increment_cart_item(user_id, product, int(quantity), entry.get("personalization"))
        imported += 1
    return {"imported": imported, "skipped": skipped}


def cart_lines_for_checkout(user_id: str) -> List[dict]:
    """Raw cart lines as {product_id, quantity, personalization}."""
    return [
        {
            "product_id": doc["product_id"],
            "quantity": doc["quantity"],
            "personalization": normalize_personalization(doc.get("personalization")),
        }
        for doc in db["cartitem"].find({"user_id": user_id}).sort([("created_at", -1)])
    ]
