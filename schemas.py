"""
Database Schemas for Ballon Boutique

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase of the class name.
"""
from typing import Optional, List, Literal, Dict
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

OrderStatus = Literal["pending", "confirmed", "shipped", "delivered"]
DeliveryType = Literal["pickup", "delivery"]
PaymentMethod = Literal["full_online", "partial_online", "cash"]
PaymentStatus = Literal[
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "processing",
    "requires_capture",
    "succeeded",
    "canceled",
    "failed",
]
PaymentSource = Literal["card", "payment_request"]


# Users collection
class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., min_length=10)
    phone: Optional[str] = None
    address: Optional[str] = None
    image_file_id: Optional[str] = Field(None, description="Avatar file reference in the image store")
    is_admin: bool = False


class Personalization(BaseModel):
    text: Optional[str] = None
    color: Optional[str] = None
    number: Optional[str] = None


class PersonalizationOptions(BaseModel):
    name: bool = False
    number: bool = False


# Products collection
class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    price: float = Field(..., ge=0, description="Price in EUR")
    category_group: str
    categories: List[str] = []
    image_urls: List[str] = []
    in_stock: bool = True
    stock: Optional[int] = Field(None, ge=0, description="Units available, None when not tracked")
    sold_count: int = Field(0, ge=0)
    is_personalizable: PersonalizationOptions = PersonalizationOptions()
    available_colors: List[str] = []


# Cart items collection
class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    personalization: Optional[Personalization] = None
    personalization_signature: str


# Orders collection
class OrderItem(BaseModel):
    product_id: str
    product_name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    personalization: Optional[Personalization] = None


class Order(BaseModel):
    user_id: Optional[str] = None
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    delivery_fee: float = Field(0, ge=0)
    status: OrderStatus = "pending"
    customer_name: str
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    shipping_address: str
    delivery_type: DeliveryType = "pickup"
    payment_method: PaymentMethod = "cash"
    payment_intent_id: Optional[str] = None
    whatsapp_confirmed: Optional[bool] = None
    pickup_date_time: Optional[str] = None


# Payments collection
class PaymentCustomer(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None


class PaymentShipping(BaseModel):
    address: str
    delivery_type: DeliveryType
    scheduled_date_time: Optional[str] = None
    delivery_fee: Optional[float] = None


class DisplayAmount(BaseModel):
    value: float
    currency: str
    conversion_rate: Optional[float] = None
    conversion_fee_pct: Optional[float] = None


class Payment(BaseModel):
    payment_intent_id: str
    user_id: Optional[str] = None
    status: PaymentStatus
    amount_base: float = Field(..., ge=0)
    amount_minor: int = Field(..., ge=0)
    currency: str
    display_amount: DisplayAmount
    customer: PaymentCustomer
    shipping: PaymentShipping
    items: List[OrderItem]
    cart_signature: Optional[str] = None
    payment_source: PaymentSource = "card"
    client_secret: Optional[str] = None
    last_error: Optional[str] = None
    order_id: Optional[str] = None
    stripe_charge_id: Optional[str] = None
    metadata: Dict[str, str] = {}
    created_at: Optional[datetime] = None
