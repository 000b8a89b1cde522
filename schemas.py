"""
Database Schemas

Each Pydantic model represents a collection in MongoDB.
Model name lowercased is the collection name:
- User -> "user" collection
- Product -> "product" collection
- Order -> "order" collection
"""

from enum import Enum
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

# Largest integer BSON can store
MAX_INT64 = 2 ** 63 - 1


class Role(str, Enum):
    admin = "admin"
    customer = "customer"


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, unique")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field(Role.customer.value, description="Role: customer | admin")


class Product(BaseModel):
    name: str
    category: str
    description: Optional[str] = None
    price: float = Field(..., ge=0, allow_inf_nan=False)
    quantity: int = Field(..., ge=0, le=MAX_INT64, description="Units in stock")


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)

    customer: ObjectId = Field(..., description="Reference to user._id")
    product: ObjectId = Field(..., description="Reference to product._id")
    quantity: int = Field(..., ge=1, le=MAX_INT64)
    total_price: float = Field(..., ge=0, allow_inf_nan=False)
    status: OrderStatus = Field(OrderStatus.pending.value, description="Order status")
