"""
Catalog helpers: category groups, product slugs and the product list query.
"""
import re
from typing import List, Optional, Tuple
from urllib.parse import unquote

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException

from config import CATEGORY_GROUPS
from database import db, to_object_id
from images import DEFAULT_PRODUCT_IMAGE, PRODUCT_DETAIL_IMAGE, build_image_url, build_placeholder_url

SORT_OPTIONS = {
    "default": [("sold_count", -1), ("created_at", -1)],
    "price-low": [("price", 1), ("created_at", -1)],
    "price-high": [("price", -1), ("created_at", -1)],
    "name-asc": [("name", 1)],
    "name-desc": [("name", -1)],
}

MIN_SEARCH_LENGTH = 2
DEFAULT_PAGE_SIZE = 24
MAX_PAGE_SIZE = 100


def _dasherize(value: str) -> str:
    return re.sub(r"[_\s]+", "-", value.strip().lower())


def normalize_group(value: Optional[str]) -> Optional[str]:
    """Resolve a category group from its value, its label or a loose spelling."""
    if not value:
        return None
    normalized = _dasherize(unquote(value))

    for group in CATEGORY_GROUPS:
        if group["value"] == normalized:
            return group["value"]
    for group in CATEGORY_GROUPS:
        if _dasherize(group["label"]) == normalized:
            return group["value"]
    for group in CATEGORY_GROUPS:
        if group["value"] in normalized:
            return group["value"]
    return None


def get_category_group(value: str) -> Optional[dict]:
    group_value = normalize_group(value)
    for group in CATEGORY_GROUPS:
        if group["value"] == group_value:
            return group
    return None


def generate_product_slug(name: str, product_id: str) -> str:
    normalized = name.lower().strip()
    normalized = re.sub(r"\s+", "-", normalized)
    normalized = re.sub(r"[^\w\-]", "", normalized)
    normalized = re.sub(r"_+", "-", normalized)
    normalized = re.sub(r"-+", "-", normalized).strip("-")
    return f"{normalized}-{product_id}" if normalized else product_id


def extract_product_id_from_slug(slug: str) -> Optional[str]:
    if not slug:
        return None
    candidate = slug.split("-")[-1]
    if re.fullmatch(r"[0-9a-f]{24}", candidate):
        return candidate
    return None


def normalize_personalizable(value) -> dict:
    """Legacy products store a single boolean; newer ones store per-field flags."""
    if isinstance(value, bool):
        return {"name": value, "number": value}
    if isinstance(value, dict):
        return {"name": bool(value.get("name")), "number": bool(value.get("number"))}
    return {"name": False, "number": False}


def public_product(doc: dict) -> dict:
    product = dict(doc)
    product["_id"] = str(product["_id"])
    product["is_personalizable"] = normalize_personalizable(product.get("is_personalizable"))
    product.setdefault("sold_count", 0)
    image_urls = product.get("image_urls") or []
    product["primary_image_url"] = image_urls[0] if image_urls else None
    product["thumbnail_url"] = build_image_url(product["primary_image_url"], **DEFAULT_PRODUCT_IMAGE)
    product["detail_image_url"] = build_image_url(product["primary_image_url"], **PRODUCT_DETAIL_IMAGE)
    product["placeholder_url"] = build_placeholder_url(product["primary_image_url"])
    product["slug"] = generate_product_slug(product.get("name", ""), product["_id"])
    return product


def load_product(product_id: str) -> dict:
    doc = db["product"].find_one({"_id": to_object_id(product_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


def find_product(product_id: str) -> Optional[dict]:
    """Like load_product, but a malformed or unknown id yields None."""
    try:
        oid = ObjectId(product_id)
    except (InvalidId, TypeError):
        return None
    return db["product"].find_one({"_id": oid})


def is_out_of_stock(product: dict) -> bool:
    if not product.get("in_stock", False):
        return True
    stock = product.get("stock")
    return stock is not None and stock <= 0


def clamp_to_stock(product: dict, quantity: int) -> int:
    stock = product.get("stock")
    if stock is None:
        return quantity
    return min(quantity, stock)


def build_product_filter(
    search: Optional[str] = None,
    category_group: Optional[str] = None,
    category: Optional[str] = None,
    color: Optional[str] = None,
    available: Optional[bool] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> dict:
    filter_q = {}
    normalized_search = (search or "").strip()
    if len(normalized_search) >= MIN_SEARCH_LENGTH:
        filter_q["name"] = {"$regex": re.escape(normalized_search), "$options": "i"}
    if category_group:
        group = normalize_group(category_group)
        # unknown groups match nothing rather than everything
        filter_q["category_group"] = group or category_group
    if category:
        filter_q["categories"] = category
    if color:
        filter_q["available_colors"] = color
    if available is not None:
        filter_q["in_stock"] = available
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = float(min_price)
        if max_price is not None:
            price_filter["$lte"] = float(max_price)
        filter_q["price"] = price_filter
    return filter_q


def parse_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        offset = int(cursor)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid cursor")
    if offset < 0:
        raise HTTPException(status_code=400, detail="Invalid cursor")
    return offset


def list_products(filter_q: dict, sort: str = "default", cursor: Optional[str] = None,
                  limit: int = DEFAULT_PAGE_SIZE) -> dict:
    if sort not in SORT_OPTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown sort option: {sort}")
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    offset = parse_cursor(cursor)

    total = db["product"].count_documents(filter_q)
    docs = db["product"].find(filter_q).sort(SORT_OPTIONS[sort]).skip(offset).limit(limit)
    page = [public_product(d) for d in docs]

    next_offset = offset + len(page)
    is_done = next_offset >= total
    return {
        "page": page,
        "is_done": is_done,
        "continue_cursor": None if is_done else str(next_offset),
    }


def iter_all_products(filter_q: Optional[dict] = None) -> List[dict]:
    return [public_product(d) for d in db["product"].find(filter_q or {}).sort([("created_at", -1)])]


def price_range() -> Tuple[float, float]:
    low = db["product"].find_one({}, sort=[("price", 1)])
    high = db["product"].find_one({}, sort=[("price", -1)])
    if not low or not high:
        return 0.0, 0.0
    return float(low.get("price", 0)), float(high.get("price", 0))


DEMO_PRODUCTS = [
    {
        "name": "Classic Red Balloon",
        "description": "Beautiful classic red balloon perfect for any celebration",
        "price": 3,
        "category_group": "for-any-event",
        "categories": ["Birthday"],
        "available_colors": ["red"],
        "stock": 50,
    },
    {
        "name": "Blue Heart Balloon",
        "description": "Romantic blue heart-shaped balloon for special occasions",
        "price": 5,
        "category_group": "love",
        "categories": ["Hearts"],
        "available_colors": ["blue"],
        "stock": 30,
    },
    {
        "name": "Golden Star Balloon",
        "description": "Shiny golden star balloon that sparkles in the light",
        "price": 5,
        "category_group": "for-kids",
        "categories": ["Stars"],
        "available_colors": ["gold"],
        "stock": 25,
    },
    {
        "name": "Pink Mini Balloons",
        "description": "Set of small pink balloons perfect for decorations",
        "price": 6,
        "category_group": "for-her",
        "categories": ["Sets"],
        "available_colors": ["pink"],
        "stock": 100,
    },
    {
        "name": "Green Animal Balloon",
        "description": "Fun green animal-shaped balloon kids will love",
        "price": 6,
        "category_group": "for-kids",
        "categories": ["Animals"],
        "available_colors": ["green"],
        "stock": 20,
    },
    {
        "name": "Purple Heart Balloon",
        "description": "Elegant purple heart balloon for romantic moments",
        "price": 4,
        "category_group": "love",
        "categories": ["Hearts"],
        "available_colors": ["purple"],
        "stock": 35,
    },
    {
        "name": "Silver Number Balloon",
        "description": "Metallic silver number balloon for birthdays and anniversaries",
        "price": 9,
        "category_group": "anniversary",
        "categories": ["Numbers"],
        "available_colors": ["silver", "gold", "rose"],
        "is_personalizable": {"name": False, "number": True},
        "stock": 40,
    },
    {
        "name": "Surprise Bubble Balloon",
        "description": "Giant transparent balloon with confetti and your own text",
        "price": 39,
        "category_group": "surprise-in-a-balloon",
        "categories": ["Bubbles"],
        "available_colors": ["clear"],
        "is_personalizable": {"name": True, "number": False},
        "stock": None,
    },
]
