"""
Database Schemas for the Marketplace API

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (Product -> "product").

We will use these collections:
- user: registered users
- product: product listings, owned by the user who created them
- review: product reviews, written by a user or (in guest mode) a guest

References between documents (owner, author, product) are stored as the
string form of the referenced _id.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]{2,}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def strip_text(v):
    return v.strip() if isinstance(v, str) else v


class User(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    created_at: datetime = Field(default_factory=utcnow)

    normalize_name = field_validator("name", mode="before")(strip_text)


class Dimensions(BaseModel):
    width: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    height: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    depth: Optional[float] = Field(None, ge=0, allow_inf_nan=False)


class Product(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0, allow_inf_nan=False)
    category: str = Field(..., min_length=1)
    owner: Optional[str] = Field(None, description="Reference to user _id")
    discount_percentage: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    rating: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    stock: Optional[int] = Field(None, ge=0)
    tags: List[str] = Field(default_factory=list)
    brand: Optional[str] = None
    sku: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    dimensions: Optional[Dimensions] = None
    warranty_information: Optional[str] = None
    shipping_information: Optional[str] = None
    availability_status: Optional[str] = None
    return_policy: Optional[str] = None
    minimum_order_quantity: Optional[int] = Field(None, ge=0)
    images: List[str] = Field(default_factory=list)
    thumbnail: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    normalize_required = field_validator("title", "category", mode="before")(strip_text)


class Guest(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    email: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if not v:
                return None
            if not EMAIL_RE.match(v):
                raise ValueError("guest email must be a valid email address")
        return v

    def is_empty(self) -> bool:
        return not (self.name or self.email)


class Review(BaseModel):
    product: str = Field(..., description="Reference to product _id")
    author: Optional[str] = Field(None, description="Reference to user _id")
    guest: Optional[Guest] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)
    image_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
