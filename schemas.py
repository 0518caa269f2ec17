"""
Database Schemas for the AG-Gems jewelry store

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase of the class name.
Embedded value objects (addresses, cart lines, order items) are plain models stored inside their owner.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


PaymentMethod = Literal["card", "upi", "netbanking", "cod", "wallet"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
Material = Literal["gold", "silver", "platinum", "diamond", "gemstone", "other"]


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)


# Shared value objects
class Address(BaseModel):
    full_name: str
    phone: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    zip_code: str
    country: str = "India"


class SavedAddress(Address):
    is_default: bool = False


# Users collection
class User(Document):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., min_length=10)
    phone: Optional[str] = None
    role: Role = Role.USER.value
    is_active: bool = True
    wallet_address: Optional[str] = None
    addresses: List[dict] = []
    wishlist: List[ObjectId] = []
    reset_password_token: Optional[str] = None
    reset_password_expire: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None


# Categories collection
class Category(Document):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    parent: Optional[ObjectId] = None
    is_active: bool = True
    order: int = 0


# Products collection
class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class Metal(BaseModel):
    type: Literal["gold", "silver", "platinum", "none"] = "none"
    purity: Optional[str] = None  # 14K, 18K, 925
    weight: Optional[float] = Field(None, ge=0)  # grams


class Product(Document):
    name: str = Field(..., min_length=1)
    description: str
    short_description: Optional[str] = None
    price: float = Field(..., ge=0)
    compare_at_price: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    category: ObjectId
    images: List[ProductImage] = []
    material: Optional[Material] = None
    metal: Optional[Metal] = None
    tags: List[str] = []
    stock: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    is_featured: bool = False
    is_active: bool = True
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    sold_count: int = Field(0, ge=0)


# Carts collection
class CartLine(Document):
    product: ObjectId
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    added_at: datetime


class Cart(Document):
    user: ObjectId
    items: List[CartLine] = []


# Orders collection
class OrderItem(Document):
    product: ObjectId
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class StatusEntry(BaseModel):
    status: OrderStatus
    note: Optional[str] = None
    timestamp: datetime

    model_config = ConfigDict(use_enum_values=True)


class Order(Document):
    order_number: str
    user: ObjectId
    items: List[OrderItem]
    shipping_address: Address
    billing_address: Address
    subtotal: float = Field(..., ge=0)
    tax: float = Field(0, ge=0)
    shipping_cost: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    payment_details: dict = {}
    order_status: OrderStatus = OrderStatus.PENDING.value
    status_history: List[StatusEntry] = []
    tracking_number: Optional[str] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


# Reviews collection
class Review(Document):
    user: ObjectId
    product: ObjectId
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: str = Field(..., min_length=1)
    images: List[str] = []
    is_approved: bool = False
