import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from app.enums.pricing import DiscountType
from app.services.pricing_engine.types import ZERO, CouponTerms, CouponUsageCounts

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class CouponRejection(str, Enum):
    NOT_FOUND = "NotFound"
    INACTIVE = "Inactive"
    NOT_YET_VALID = "NotYetValid"
    EXPIRED = "Expired"
    BELOW_MINIMUM_PURCHASE = "BelowMinimumPurchase"
    GLOBAL_LIMIT_REACHED = "GlobalLimitReached"
    PER_USER_LIMIT_REACHED = "PerUserLimitReached"

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_MESSAGES = {
    CouponRejection.NOT_FOUND: "Coupon not found",
    CouponRejection.INACTIVE: "Coupon is not active",
    CouponRejection.NOT_YET_VALID: "Coupon is not valid yet",
    CouponRejection.EXPIRED: "Coupon expired",
    CouponRejection.BELOW_MINIMUM_PURCHASE: "Order total is below the coupon's minimum purchase amount",
    CouponRejection.GLOBAL_LIMIT_REACHED: "Coupon usage limit reached",
    CouponRejection.PER_USER_LIMIT_REACHED: "You have already used this coupon the maximum number of times",
}


@dataclass(frozen=True)
class CouponEvaluation:
    valid: bool
    discount_amount: Decimal = ZERO
    reason: Optional[CouponRejection] = None

    @classmethod
    def rejected(cls, reason: CouponRejection) -> "CouponEvaluation":
        return cls(valid=False, reason=reason)


def _rejection(coupon: CouponTerms, subtotal: Decimal, usage: CouponUsageCounts, now: datetime):
    if not coupon.is_active:
        return CouponRejection.INACTIVE

    if now < coupon.valid_from:
        return CouponRejection.NOT_YET_VALID
    if now > coupon.valid_until:
        return CouponRejection.EXPIRED

    if coupon.min_purchase_amount is not None and subtotal < coupon.min_purchase_amount:
        return CouponRejection.BELOW_MINIMUM_PURCHASE

    if coupon.usage_limit is not None and usage.global_count >= coupon.usage_limit:
        return CouponRejection.GLOBAL_LIMIT_REACHED

    if usage.per_user_count >= coupon.usage_limit_per_user:
        return CouponRejection.PER_USER_LIMIT_REACHED

    return None


def compute_discount(coupon: CouponTerms, subtotal: Decimal) -> Decimal:
    """Raw discount capped by max_discount_amount; never more than the subtotal."""
    if DiscountType(coupon.discount_type) == DiscountType.PERCENTAGE:
        discount = subtotal * coupon.discount_value / HUNDRED
    else:
        discount = min(coupon.discount_value, subtotal)

    if coupon.max_discount_amount is not None:
        discount = min(discount, coupon.max_discount_amount)

    return max(min(discount, subtotal), ZERO)


def evaluate(
    coupon: CouponTerms,
    subtotal: Decimal,
    usage_counts: CouponUsageCounts,
    now: datetime,
) -> CouponEvaluation:
    """
    Decide whether `coupon` applies to an order of `subtotal` and how much it
    takes off.

    Checks run in a fixed order and the first failing one is reported.
    Usage is never recorded here; the caller appends to the usage ledger once
    the order exists.
    """
    reason = _rejection(coupon, subtotal, usage_counts, now)
    if reason is not None:
        logger.info("Coupon %s rejected: %s", coupon.code, reason.value)
        return CouponEvaluation.rejected(reason)

    return CouponEvaluation(valid=True, discount_amount=compute_discount(coupon, subtotal))
