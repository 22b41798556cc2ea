from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.enums.orders import OrderStatus, PaymentMethod
from app.enums.pricing import RuleType


# ---------- Cart / quote ----------

class CartLineSchema(BaseModel):
    product_id: str
    category_slug: str
    quantity: int = Field(gt=0)
    specification_values: Dict[str, str] = {}
    variant_id: Optional[str] = None
    rule_type_hint: Optional[RuleType] = None


class CheckoutQuoteRequest(BaseModel):
    items: List[CartLineSchema] = Field(min_length=1)
    coupon_code: Optional[str] = None
    shipping_charges: Optional[Decimal] = Field(default=None, ge=0)


class BreakdownEntrySchema(BaseModel):
    label: str
    amount: Decimal
    kind: str
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = None
    rule_id: Optional[Any] = None


class PriceBreakdownSchema(BaseModel):
    entries: List[BreakdownEntrySchema]
    subtotal: Decimal
    discount_amount: Decimal
    shipping_charge: Decimal
    tax: Decimal
    tax_rate: Decimal
    total: Decimal
    coupon_code: Optional[str] = None


class CouponOutcomeSchema(BaseModel):
    code: str
    applied: bool
    discount_amount: Decimal
    reason: Optional[str] = None
    message: str


class CheckoutQuoteResponse(BaseModel):
    currency: str
    breakdown: PriceBreakdownSchema
    coupon: Optional[CouponOutcomeSchema] = None
    calculated_in_ms: float


# ---------- Orders ----------

class OrderCreate(CheckoutQuoteRequest):
    payment_method: PaymentMethod
    shipping_address: Optional[str] = None


class OrderItemResponse(BaseModel):
    id: int
    product_id: str
    variant_id: Optional[str] = None
    category_id: int
    quantity: int
    specification_values: Dict[str, str] = {}
    unit_price: Decimal
    line_total: Decimal
    applied_rule_id: Optional[int] = None

    class Config:
        from_attributes = True


class OrderStatusEntry(BaseModel):
    status: str
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    status: str
    payment_method: str
    shipping_address: Optional[str] = None
    subtotal: Decimal
    discount_amount: Optional[Decimal] = None
    shipping_charges: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    total: Decimal
    currency: str
    coupon_id: Optional[int] = None
    price_breakdown: Dict[str, Any]
    created_at: datetime
    items: List[OrderItemResponse] = []
    status_history: List[OrderStatusEntry] = []

    class Config:
        from_attributes = True


class OrderPageMeta(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class OrderPageResponse(BaseModel):
    items: List[OrderResponse]
    meta: OrderPageMeta


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    comment: Optional[str] = None
