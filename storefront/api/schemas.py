from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from storefront.db.models import OrderStatus, PaymentStatus

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class Page(BaseModel, Generic[T]):
    success: bool = True
    data: List[T] = []
    meta: PageMeta


def ok(data=None, message: Optional[str] = None) -> dict:
    return {"success": True, "message": message, "data": data}


# --- auth ---

class RegisterPayload(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = ""

class LoginPayload(BaseModel):
    email: EmailStr
    password: str

class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    role: str
    model_config = ConfigDict(from_attributes=True)

class TokenRead(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserRead


# --- catalogue ---

class VariantCreate(BaseModel):
    name: str
    sku: str
    price_cents: Optional[int] = Field(default=None, ge=0)
    active: bool = True

class VariantUpdate(BaseModel):
    name: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None

    @field_validator("name", "active")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

class VariantRead(VariantCreate):
    id: int
    product_id: int
    model_config = ConfigDict(from_attributes=True)

class ProductBase(BaseModel):
    title: str
    description: str = ""
    price_cents: int = Field(ge=0)
    currency: str = "USD"
    sku: str
    active: bool = True

class ProductCreate(ProductBase):
    variants: List[VariantCreate] = []

class ProductUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = None
    active: Optional[bool] = None

    # omitted fields are left alone; explicit nulls would violate NOT NULL columns
    @field_validator("title", "description", "price_cents", "currency", "active")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

class ProductRead(ProductBase):
    id: int
    variants: List[VariantRead] = []
    model_config = ConfigDict(from_attributes=True)


# --- cart ---

class CartItemAdd(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    product_id: int = Field(alias="productId")
    variant_id: Optional[int] = Field(default=None, alias="variantId")
    quantity: int = Field(default=1, ge=1)

class CartItemUpdate(BaseModel):
    quantity: int

class CartLineRead(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int
    title: Optional[str] = None
    unit_price_cents: Optional[int] = None
    line_total_cents: Optional[int] = None
    available: bool = True

class CartSummary(BaseModel):
    item_count: int
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    currency: str

class CartRead(BaseModel):
    items: List[CartLineRead] = []
    summary: CartSummary


# --- orders ---

class ShippingAddress(BaseModel):
    address_line1: str
    address_line2: Optional[str] = ""
    city: str
    country: str = Field(min_length=2, max_length=2)  # "IE", "US", etc
    postcode: str

class CheckoutPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    payment_method: str = Field(min_length=1, alias="paymentMethod")
    shipping_address: Optional[ShippingAddress] = Field(default=None, alias="shippingAddress")
    notes: str = ""
    customer_email: Optional[EmailStr] = Field(default=None, alias="customerEmail")
    customer_name: Optional[str] = Field(default=None, alias="customerName")

class OrderItemRead(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    qty: int
    unit_price_cents: int
    title_snapshot: str
    model_config = ConfigDict(from_attributes=True)

class PaymentRead(BaseModel):
    id: int
    method: str
    provider: str
    provider_ref: Optional[str] = None
    amount_cents: int
    currency: str
    status: PaymentStatus
    failure_reason: str = ""
    processed_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)

class OrderRead(BaseModel):
    id: int
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    customer_name: str
    customer_email: str
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    currency: str
    payment_method: str
    shipping_address: Optional[dict] = None
    notes: str = ""
    tracking_number: str = ""
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemRead] = []
    payments: List[PaymentRead] = []
    model_config = ConfigDict(from_attributes=True)

class AdminOrderRead(OrderRead):
    user_id: Optional[int] = None
    identity_key: str
    admin_notes: str = ""

class AdminOrderUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = Field(default=None, alias="paymentStatus")
    tracking_number: Optional[str] = Field(default=None, alias="trackingNumber")
    admin_notes: Optional[str] = Field(default=None, alias="adminNotes")


# --- payments ---

class PaymentEvent(BaseModel):
    model_config = ConfigDict(extra="allow")
    type: str
    provider_ref: Optional[str] = None
    payment_id: Optional[str] = None
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    reason: Optional[str] = None
