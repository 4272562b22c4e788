"""
Database Schemas

MongoDB collection schemas as Pydantic models.
Each Pydantic model represents a collection in your database.
Model name lowercased is the collection name.
References to other documents are stored as string ids.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["cod", "online"]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    phone: str
    address: str
    role: Literal["user", "admin"] = Field("user", description="Role: user | admin")
    wishlist: List[str] = Field(default_factory=list, description="Product ids, in insertion order")


class Category(BaseModel):
    name: str
    description: Optional[str] = None


class Review(BaseModel):
    user_id: str
    user_name: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str
    date: datetime


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    category: str = Field(..., description="Category id")
    stock_quantity: int = Field(..., ge=0)
    featured: bool = False
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    reviews: List[Review] = Field(default_factory=list)
    average_rating: float = Field(default=0, ge=0, le=5)
    sales_count: int = Field(default=0, ge=0)


class CartItem(BaseModel):
    item_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    version: int = Field(0, description="Bumped on every write; used for compare-and-swap")


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    total: float


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    shipping: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    total_items: int
    shipping_address: str
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    status: OrderStatus = "pending"


class LoginEvent(BaseModel):
    user_id: str
    timestamp: datetime
    ip: Optional[str] = None


class RequestModel(BaseModel):
    """Base for request bodies: accepts camelCase wire names and snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
