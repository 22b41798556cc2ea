from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.enums.pricing import DiscountType


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class CouponBase(BaseModel):
    code: str = Field(min_length=1)
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    min_purchase_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, ge=0)
    usage_limit_per_user: int = Field(default=1, ge=0)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def check_terms(self):
        # stored in naive UTC columns and compared with utcnow()
        self.valid_from = _naive_utc(self.valid_from)
        self.valid_until = _naive_utc(self.valid_until)
        if self.valid_until < self.valid_from:
            raise ValueError("valid_until must not be before valid_from")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return self


class CouponCreate(CouponBase):
    pass


class CouponUpdate(CouponBase):
    pass


class CouponResponse(CouponBase):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


# ---------- Validation ----------

class CouponValidateRequest(BaseModel):
    code: str
    subtotal: Decimal = Field(ge=0)


class CouponValidateResponse(BaseModel):
    code: str
    valid: bool
    discount_amount: Decimal = Decimal("0")
    reason: Optional[str] = None
    message: str
    coupon: Optional[CouponResponse] = None


class CouponUsageResponse(BaseModel):
    id: int
    coupon_id: int
    order_id: int
    used_at: datetime
    code: Optional[str] = None

    class Config:
        from_attributes = True
