import os
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, EmailStr, Field

import cart
import catalog
import checkout
import images
import payments
import seo
from auth import (
    check_rate_limit,
    create_access_token,
    get_current_user,
    get_optional_user,
    hash_password,
    public_user,
    require_admin,
    verify_password,
)
from config import CATEGORY_GROUPS, log
from database import db, create_document, get_documents, serialize_doc, to_object_id
from schemas import (
    DeliveryType,
    OrderStatus,
    PaymentSource,
    Personalization,
    PersonalizationOptions,
    Product,
    User,
)

app = FastAPI(title="Ballon Boutique API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health checks
@app.get("/")
def root():
    return {"message": "Ballon Boutique API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:100]}"
    return response


# Auth models
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class ProfilePayload(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class AvatarPayload(BaseModel):
    image_file_id: Optional[str] = None


@app.post("/api/auth/register")
def register(payload: RegisterPayload):
    # check existing
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
    )
    user_id = create_document("user", user)
    token = create_access_token({"sub": user_id})
    return {"token": token, "user": public_user({"_id": user_id, **user.model_dump()})}


@app.post("/api/auth/login")
def login(payload: LoginPayload, request: Request):
    # Rate limit per IP
    ip = request.client.host if request.client else "unknown"
    check_rate_limit(ip)

    doc = db["user"].find_one({"email": payload.email})
    if not doc or not verify_password(payload.password, doc.get("password_hash", "")):
        log.warning("failed login for %s from %s", payload.email, ip)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token({"sub": str(doc["_id"])})
    return {"token": token, "user": public_user(doc)}


@app.get("/api/auth/me")
def me(user: Optional[dict] = Depends(get_optional_user)):
    return public_user(user) if user else None


@app.patch("/api/users/me")
def update_profile(payload: ProfilePayload, user: dict = Depends(get_current_user)):
    update_doc = payload.model_dump(exclude_unset=True)
    if update_doc.get("email") and update_doc["email"] != user.get("email"):
        if db["user"].find_one({"email": update_doc["email"]}):
            raise HTTPException(status_code=400, detail="Email already registered")
    if update_doc:
        db["user"].update_one(
            {"_id": to_object_id(user["_id"])},
            {"$set": update_doc, "$currentDate": {"updated_at": True}},
        )
    return public_user({**user, **update_doc})


@app.put("/api/users/me/avatar")
def update_avatar(payload: AvatarPayload, user: dict = Depends(get_current_user)):
    db["user"].update_one(
        {"_id": to_object_id(user["_id"])},
        {"$set": {"image_file_id": payload.image_file_id}, "$currentDate": {"updated_at": True}},
    )
    return public_user({**user, "image_file_id": payload.image_file_id})


# Users (admin)
@app.get("/api/admin/users", dependencies=[Depends(require_admin)])
def list_users():
    return [public_user(u) for u in get_documents("user")]


# Catalog
class ProductPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0)
    category_group: str
    categories: List[str] = []
    image_urls: List[str] = []
    in_stock: bool = True
    stock: Optional[int] = Field(None, ge=0)
    is_personalizable: Union[bool, PersonalizationOptions] = False
    available_colors: List[str] = []


class ProductUpdatePayload(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category_group: Optional[str] = None
    categories: Optional[List[str]] = None
    image_urls: Optional[List[str]] = None
    in_stock: Optional[bool] = None
    stock: Optional[int] = Field(None, ge=0)
    is_personalizable: Optional[Union[bool, PersonalizationOptions]] = None
    available_colors: Optional[List[str]] = None


def _product_fields(data: dict) -> dict:
    if "category_group" in data:
        group = catalog.normalize_group(data["category_group"])
        if not group:
            raise HTTPException(status_code=400, detail="Unknown category group")
        data["category_group"] = group
    if "is_personalizable" in data:
        data["is_personalizable"] = catalog.normalize_personalizable(data["is_personalizable"])
    return data


@app.get("/api/categories")
def list_categories():
    return CATEGORY_GROUPS


@app.get("/api/products")
def list_products(
    search: Optional[str] = None,
    category_group: Optional[str] = None,
    category: Optional[str] = None,
    color: Optional[str] = None,
    available: Optional[bool] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "default",
    cursor: Optional[str] = None,
    limit: int = 24,
):
    if limit < 1 or limit > catalog.MAX_PAGE_SIZE:
        raise HTTPException(status_code=400, detail=f"limit must be between 1 and {catalog.MAX_PAGE_SIZE}")
    filter_q = catalog.build_product_filter(
        search=search,
        category_group=category_group,
        category=category,
        color=color,
        available=available,
        min_price=min_price,
        max_price=max_price,
    )
    return catalog.list_products(filter_q, sort=sort, cursor=cursor, limit=limit)


@app.get("/api/products/price-range")
def get_price_range():
    low, high = catalog.price_range()
    return {"min": low, "max": high}


@app.get("/api/products/slug/{slug}")
def get_product_by_slug(slug: str):
    product_id = catalog.extract_product_id_from_slug(slug)
    if not product_id:
        raise HTTPException(status_code=404, detail="Product not found")
    return catalog.public_product(catalog.load_product(product_id))


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return catalog.public_product(catalog.load_product(product_id))


@app.post("/api/products", dependencies=[Depends(require_admin)])
def create_product(payload: ProductPayload):
    prod = Product(**_product_fields(payload.model_dump()))
    prod_id = create_document("product", prod)
    return {"_id": prod_id}


@app.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdatePayload):
    oid = to_object_id(product_id)
    update_doc = _product_fields(payload.model_dump(exclude_unset=True))
    if not update_doc:
        raise HTTPException(status_code=400, detail="Nothing to update")
    res = db["product"].update_one({"_id": oid}, {"$set": update_doc, "$currentDate": {"updated_at": True}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"updated": True}


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str):
    oid = to_object_id(product_id)
    res = db["product"].delete_one({"_id": oid})
    db["cartitem"].delete_many({"product_id": product_id})
    return {"deleted": res.deleted_count == 1}


# Cart
class AddToCartPayload(BaseModel):
    product_id: str
    quantity: float = 1
    personalization: Optional[Personalization] = None


class CartQuantityPayload(BaseModel):
    quantity: int


class GuestCartItemPayload(BaseModel):
    product_id: str
    quantity: float
    personalization: Optional[Personalization] = None


class ImportCartPayload(BaseModel):
    items: List[GuestCartItemPayload]


@app.get("/api/cart")
def get_cart(user: Optional[dict] = Depends(get_optional_user)):
    if not user:
        return []
    return cart.list_cart(user["_id"])


@app.get("/api/cart/total")
def get_cart_total(user: Optional[dict] = Depends(get_optional_user)):
    return cart.cart_total(user["_id"] if user else None)


@app.post("/api/cart")
def add_to_cart(payload: AddToCartPayload, user: dict = Depends(get_current_user)):
    personalization = payload.personalization.model_dump() if payload.personalization else None
    return cart.add_to_cart(user["_id"], payload.product_id, payload.quantity, personalization)


@app.post("/api/cart/import")
def import_cart(payload: ImportCartPayload, user: dict = Depends(get_current_user)):
    return cart.import_guest_items(user["_id"], [item.model_dump() for item in payload.items])


@app.patch("/api/cart/{item_id}")
def update_cart_item(item_id: str, payload: CartQuantityPayload, user: dict = Depends(get_current_user)):
    return cart.update_quantity(user["_id"], item_id, payload.quantity)


@app.delete("/api/cart/{item_id}")
def remove_cart_item(item_id: str, user: dict = Depends(get_current_user)):
    return cart.remove_item(user["_id"], item_id)


@app.delete("/api/cart")
def clear_cart(user: dict = Depends(get_current_user)):
    return {"deleted": cart.clear_cart(user["_id"])}


# Checkout
class AddressPayload(BaseModel):
    street_address: str = ""
    city: str = ""
    postal_code: str = ""
    delivery_notes: str = ""


class CheckoutPayload(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    delivery_type: DeliveryType = "pickup"
    payment_method: str = "cash"
    whatsapp_confirmed: bool = False
    pickup_date_time: Optional[str] = None
    courier_city_id: Optional[str] = None
    address: Optional[AddressPayload] = None


class GuestOrderPayload(CheckoutPayload):
    items: List[GuestCartItemPayload]


class WhatsAppItem(BaseModel):
    name: str
    quantity: int
    personalization: Optional[Personalization] = None


class WhatsAppPayload(BaseModel):
    locale: str = "de"
    customer_name: str
    customer_email: EmailStr
    shipping_address: str = ""
    delivery_type: DeliveryType = "pickup"
    pickup_date_time: Optional[str] = None
    items: List[WhatsAppItem] = []
    total: Optional[float] = None


@app.get("/api/checkout/options")
def get_checkout_options():
    return checkout.checkout_options()


@app.post("/api/checkout/whatsapp-link")
def whatsapp_link(payload: WhatsAppPayload):
    message = checkout.build_whatsapp_message(
        payload.locale,
        payload.customer_name,
        payload.customer_email,
        payload.shipping_address or checkout.store_address(),
        payload.delivery_type,
        payload.pickup_date_time,
        [item.model_dump() for item in payload.items],
        payload.total,
    )
    return {"message": message, "url": checkout.whatsapp_link(message)}


# Orders
@app.post("/api/orders")
def create_order(payload: CheckoutPayload, user: dict = Depends(get_current_user)):
    lines = cart.cart_lines_for_checkout(user["_id"])
    return checkout.place_cash_order(payload.model_dump(), lines, user_id=user["_id"])


@app.post("/api/orders/guest")
def create_guest_order(payload: GuestOrderPayload):
    lines = []
    for item in payload.items:
        if item.quantity != int(item.quantity) or item.quantity <= 0:
            raise HTTPException(status_code=400, detail="Quantity must be a positive integer")
        lines.append({
            "product_id": item.product_id,
            "quantity": int(item.quantity),
            "personalization": cart.normalize_personalization(
                item.personalization.model_dump() if item.personalization else None
            ),
        })
    details = payload.model_dump(exclude={"items"})
    return checkout.place_cash_order(details, lines)


@app.get("/api/orders")
def list_my_orders(user: Optional[dict] = Depends(get_optional_user)):
    if not user:
        return []
    orders = db["order"].find({"user_id": user["_id"]}).sort([("created_at", -1)])
    return [serialize_doc(o) for o in orders]


@app.get("/api/orders/{order_id}")
def get_my_order(order_id: str, user: Optional[dict] = Depends(get_optional_user)):
    if not user:
        return None
    doc = db["order"].find_one({"_id": to_object_id(order_id), "user_id": user["_id"]})
    return serialize_doc(doc) if doc else None


# Orders (admin)
class OrderStatusPayload(BaseModel):
    status: OrderStatus


@app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
def list_orders(status: Optional[OrderStatus] = None):
    filter_q = {"status": status} if status else {}
    return [serialize_doc(o) for o in db["order"].find(filter_q).sort([("created_at", -1)])]


@app.patch("/api/admin/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, payload: OrderStatusPayload):
    res = db["order"].update_one(
        {"_id": to_object_id(order_id)},
        {"$set": {"status": payload.status}, "$currentDate": {"updated_at": True}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"updated": True, "status": payload.status}


@app.get("/api/admin/metrics", dependencies=[Depends(require_admin)])
def admin_metrics():
    pipeline_products = [
        {"$group": {
            "_id": None,
            "total": {"$sum": 1},
            "sold": {"$sum": "$sold_count"},
        }},
    ]
    products = next(iter(db["product"].aggregate(pipeline_products)), None) or {"total": 0, "sold": 0}
    in_stock = db["product"].count_documents({"in_stock": True})

    pipeline_by_status = [
        {"$group": {"_id": "$status", "orders": {"$sum": 1}, "revenue": {"$sum": "$total_amount"}}},
        {"$sort": {"_id": 1}},
    ]
    by_status = {
        s["_id"]: {"orders": int(s["orders"]), "revenue": round(float(s["revenue"]), 2)}
        for s in db["order"].aggregate(pipeline_by_status)
    }

    pipeline_top_products = [
        {"$unwind": "$items"},
        {"$group": {
            "_id": {"product_id": "$items.product_id", "name": "$items.product_name"},
            "quantity": {"$sum": "$items.quantity"},
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
        }},
        {"$sort": {"revenue": -1}},
        {"$limit": 5},
    ]
    top_products = [
        {
            "product_id": p["_id"]["product_id"],
            "name": p["_id"]["name"],
            "quantity": int(p["quantity"]),
            "revenue": round(float(p["revenue"]), 2),
        }
        for p in db["order"].aggregate(pipeline_top_products)
    ]

    return {
        "products": {
            "total": int(products["total"]),
            "in_stock": in_stock,
            "out_of_stock": int(products["total"]) - in_stock,
            "sold": int(products["sold"]),
        },
        "orders": {
            "total": sum(s["orders"] for s in by_status.values()),
            "revenue": round(sum(s["revenue"] for s in by_status.values()), 2),
            "by_status": by_status,
        },
        "top_products": top_products,
    }


# Payments
class PaymentCustomerPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = None


class PaymentShippingPayload(BaseModel):
    delivery_type: DeliveryType = "pickup"
    pickup_date_time: Optional[str] = None
    courier_city_id: Optional[str] = None
    address: Optional[AddressPayload] = None


class DisplayAmountPayload(BaseModel):
    value: float
    currency: str
    conversion_rate: Optional[float] = None
    conversion_fee_pct: Optional[float] = None


class PaymentItemPayload(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    personalization: Optional[Personalization] = None


class SubmitPaymentPayload(BaseModel):
    items: List[PaymentItemPayload]
    customer: PaymentCustomerPayload
    shipping: PaymentShippingPayload
    payment_method_id: str
    display_amount: Optional[DisplayAmountPayload] = None
    cart_signature: Optional[str] = None
    payment_source: PaymentSource = "card"
    metadata: Optional[dict] = None
    locale: Optional[str] = None


@app.post("/api/payments/submit")
def submit_payment(payload: SubmitPaymentPayload, user: Optional[dict] = Depends(get_optional_user)):
    data = payload.model_dump()
    for item in data["items"]:
        item["personalization"] = cart.normalize_personalization(item["personalization"])
    return payments.submit_payment(data, user_id=user["_id"] if user else None)


@app.post("/api/payments/{payment_intent_id}/sync")
def sync_payment(payment_intent_id: str):
    return payments.sync_payment(payment_intent_id)


@app.get("/api/payments/lookup/{payment_intent_id}")
def lookup_payment(payment_intent_id: str):
    return payments.lookup_payment(payment_intent_id)


@app.post("/api/stripe/webhook")
async def stripe_webhook(request: Request):
    body = await request.body()
    status_code, content = payments.handle_webhook_event(body, request.headers.get("stripe-signature"))
    return JSONResponse(status_code=status_code, content=content)


# Payments (admin)
@app.get("/api/admin/payments", dependencies=[Depends(require_admin)])
def list_admin_payments(limit: int = 40):
    return payments.list_admin_payments(limit)


@app.get("/api/admin/payments/stripe", dependencies=[Depends(require_admin)])
def list_stripe_payments(limit: int = 20):
    return payments.list_stripe_payments(limit)


# Images
@app.get("/api/images/auth", dependencies=[Depends(require_admin)])
def image_upload_auth():
    return images.upload_auth_parameters()


# SEO
def _seo_category(group: str) -> dict:
    category_group = catalog.get_category_group(group)
    if not category_group:
        raise HTTPException(status_code=404, detail="Category not found")
    return category_group


@app.get("/api/seo/{locale}/home")
def seo_home(locale: str):
    return {
        "metadata": seo.home_metadata(locale),
        "json_ld": [seo.organization_jsonld(seo.resolve_locale(locale))],
    }


@app.get("/api/seo/{locale}/catalog")
def seo_catalog(locale: str, category_group: Optional[str] = None, category: Optional[str] = None):
    group = _seo_category(category_group) if category_group else None
    return {"metadata": seo.catalog_metadata(locale, group, category)}


@app.get("/api/seo/{locale}/category/{group}")
def seo_category(locale: str, group: str):
    category_group = _seo_category(group)
    locale = seo.resolve_locale(locale)
    breadcrumb = seo.breadcrumb_jsonld([
        {"name": seo.site_name(), "url": "/"},
        {"name": category_group["label"], "url": f"/{category_group['value']}"},
    ], locale)
    return {"metadata": seo.category_metadata(locale, category_group), "json_ld": [breadcrumb]}


@app.get("/api/seo/{locale}/product/{product_ref}")
def seo_product(locale: str, product_ref: str):
    product_id = catalog.extract_product_id_from_slug(product_ref) or product_ref
    product = catalog.public_product(catalog.load_product(product_id))
    locale = seo.resolve_locale(locale)
    breadcrumb = seo.breadcrumb_jsonld([
        {"name": seo.site_name(), "url": "/"},
        {"name": seo.CATALOG_TITLES[locale], "url": "/catalog"},
        {"name": product["name"], "url": f"/catalog/{product['slug']}"},
    ], locale)
    return {
        "metadata": seo.product_metadata(locale, product),
        "json_ld": [seo.product_jsonld(product, locale), breadcrumb],
    }


@app.get("/api/seo/{locale}/legal/{page}")
def seo_legal(locale: str, page: str):
    if page not in seo.LEGAL_PAGES:
        raise HTTPException(status_code=404, detail="Page not found")
    return {"metadata": seo.legal_metadata(locale, page)}


@app.get("/robots.txt", response_class=PlainTextResponse)
def robots():
    return seo.robots_txt()


@app.get("/sitemap.xml")
def sitemap():
    products = catalog.iter_all_products({"in_stock": True})
    xml = seo.sitemap_xml(seo.sitemap_entries(products, CATEGORY_GROUPS))
    return Response(content=xml, media_type="application/xml")


# Seed demo data
@app.post("/api/seed")
def seed():
    from faker import Faker
    fake = Faker()
    created = {"products": 0, "users": 0}
    # Ensure one admin
    if not db["user"].find_one({"is_admin": True}):
        admin = User(name="Admin", email="admin@ballon-boutique.at", password_hash=hash_password("Admin@123"),
                     is_admin=True)
        create_document("user", admin)
        created["users"] += 1
    # Balloon catalog, once
    if db["product"].count_documents({}) == 0:
        for data in catalog.DEMO_PRODUCTS:
            prod = Product(**_product_fields(dict(data)))
            create_document("product", prod)
            created["products"] += 1
    # Demo customers if not present
    existing_count = db["user"].count_documents({"is_admin": False})
    to_create = max(0, 20 - existing_count)
    for _ in range(to_create):
        user = User(
            name=fake.name(),
            email=fake.unique.email(),
            password_hash=hash_password("Password@123"),
            phone=fake.phone_number(),
            address=fake.address(),
        )
        create_document("user", user)
        created["users"] += 1
    return {"created": created}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
