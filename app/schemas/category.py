from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from app.enums.pricing import RuleType, SpecificationType


# ---------- Specifications ----------

class SpecificationOptionBase(BaseModel):
    value: str = Field(min_length=1)
    label: str
    display_order: int = 0
    is_active: bool = True


class SpecificationOptionCreate(SpecificationOptionBase):
    pass


class SpecificationOptionResponse(SpecificationOptionBase):
    id: int

    class Config:
        from_attributes = True


class SpecificationBase(BaseModel):
    slug: str = Field(min_length=1)
    name: str
    type: SpecificationType = SpecificationType.SELECT
    is_required: bool = False
    display_order: int = 0


class SpecificationCreate(SpecificationBase):
    options: List[SpecificationOptionCreate] = []


class SpecificationResponse(SpecificationBase):
    id: int
    category_id: int
    options: List[SpecificationOptionResponse] = []

    class Config:
        from_attributes = True


# ---------- Pricing rules ----------

class PricingRuleBase(BaseModel):
    rule_type: RuleType
    specification_values: Dict[str, str] = {}
    base_price: Optional[Decimal] = Field(default=None, ge=0)
    price_modifier: Optional[Decimal] = None
    quantity_multiplier: bool = True
    min_quantity: Optional[int] = Field(default=None, ge=0)
    max_quantity: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True
    priority: int = 0

    @model_validator(mode="after")
    def check_fields_for_rule_type(self):
        if self.rule_type in (RuleType.BASE_PRICE, RuleType.SPECIFICATION_COMBINATION):
            if self.base_price is None:
                raise ValueError(f"{self.rule_type.value} rule requires base_price")
            # only ADDON / QUANTITY_TIER use these
            self.price_modifier = None
            self.min_quantity = None
            self.max_quantity = None
        elif self.rule_type == RuleType.ADDON:
            if self.price_modifier is None:
                raise ValueError("ADDON rule requires price_modifier")
            self.base_price = None
        elif self.base_price is None and self.price_modifier is None:
            raise ValueError("QUANTITY_TIER rule requires base_price or price_modifier")

        if (
            self.min_quantity is not None
            and self.max_quantity is not None
            and self.min_quantity > self.max_quantity
        ):
            raise ValueError("min_quantity cannot be greater than max_quantity")
        return self


class PricingRuleCreate(PricingRuleBase):
    pass


class PricingRuleUpdate(PricingRuleBase):
    pass


class PricingRuleResponse(PricingRuleBase):
    id: int
    category_id: int
    created_at: datetime

    class Config:
        from_attributes = True


# ---------- Categories ----------

class CategoryBase(BaseModel):
    name: str
    slug: str = Field(min_length=1)
    description: Optional[str] = None
    is_active: bool = True


class CategoryCreate(CategoryBase):
    specifications: List[SpecificationCreate] = []


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryResponse(CategoryBase):
    id: int
    created_at: datetime
    specifications: List[SpecificationResponse] = []
    pricing_rules: List[PricingRuleResponse] = []

    class Config:
        from_attributes = True


# ---------- Category price preview ----------

class CategoryPriceRequest(BaseModel):
    specifications: Dict[str, str] = {}
    quantity: int = Field(default=1, gt=0)


class PriceLineItem(BaseModel):
    label: str
    value: Decimal


class CategoryPriceResponse(BaseModel):
    category: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    applied_rule_id: Optional[int] = None
    breakdown: List[PriceLineItem]
