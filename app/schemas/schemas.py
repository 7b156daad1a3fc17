from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime

from app.utils.phone import validate_phone_number


class ProductCreate(BaseModel):
    product_name: str = Field(..., min_length=1)
    product_description: str = ""
    product_price: float = Field(..., ge=0)
    product_stock: int = Field(0, ge=0)
    product_image: Optional[str] = None

    @field_validator("product_name", "product_description")
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()


class ProductUpdate(BaseModel):
    """Partial update; only product_image may be cleared with null."""

    product_name: Optional[str] = None
    product_description: Optional[str] = None
    product_price: Optional[float] = Field(None, ge=0)
    product_stock: Optional[int] = Field(None, ge=0)
    product_image: Optional[str] = None


class StockUpdate(BaseModel):
    product_stock: int = Field(..., ge=0)


class ProductOut(BaseModel):
    product_id: int
    product_name: str
    product_description: str
    product_price: float
    product_stock: int
    product_image: Optional[str] = None

    class Config:
        from_attributes = True


class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = 1


class CartItemUpdate(BaseModel):
    quantity: Optional[int] = None
    delta: Optional[int] = None


class OrderCreate(BaseModel):
    shipping_address: str = Field(..., min_length=1)


class GuestCheckout(BaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    shipping_address: str = Field(..., min_length=1)

    @field_validator("phone")
    @classmethod
    def check_phone(cls, value):
        validate_phone_number(value)
        return value


class PaymentOrderCreate(BaseModel):
    order_id: int
    shipping_address: Optional[str] = None


class PaymentVerify(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    order_id: int


class CodOrder(BaseModel):
    order_id: int


class AdminLogin(BaseModel):
    admin_id: str = Field(..., min_length=1)
    admin_password: str = Field(..., min_length=1)


def _review_text(value: str) -> str:
    value = value.strip()
    if len(value) < 5:
        raise ValueError("Review must be at least 5 characters long")
    return value


class ReviewCreate(BaseModel):
    product_id: int
    review: str

    @field_validator("review")
    @classmethod
    def check_length(cls, value: str) -> str:
        return _review_text(value)


class ReviewUpdate(BaseModel):
    review: str

    @field_validator("review")
    @classmethod
    def check_length(cls, value: str) -> str:
        return _review_text(value)


class ProfileUpdate(BaseModel):
    user_name: Optional[str] = None
    user_phone: Optional[str] = None
    user_address: Optional[str] = None

    @field_validator("user_phone")
    @classmethod
    def check_phone(cls, value):
        validate_phone_number(value)
        return value


class UserOut(BaseModel):
    user_id: int
    user_name: str
    user_email: EmailStr
    user_phone: Optional[int] = None
    user_address: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class ReviewOut(BaseModel):
    review_id: int
    product_id: int
    review: str
    product: Optional[dict] = None


class ReviewList(BaseModel):
    reviews: List[ReviewOut]
    pagination: Pagination
