import logging
from datetime import datetime
from time import perf_counter
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.database.connection import get_db
from app.dependencies.auth import get_optional_user
from app.middleware.metrics import record_price_calculation
from app.models.user import User
from app.schemas.category import CategoryPriceRequest, CategoryPriceResponse
from app.schemas.checkout import (
    CheckoutQuoteRequest,
    CheckoutQuoteResponse,
    CouponOutcomeSchema,
    PriceBreakdownSchema,
)
from app.services.catalog_service import calculate_category_price
from app.services.order_service import quote_order, raise_for_failure

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Pricing & Calculation"])


def _warn_if_slow(what: str, duration_ms: float) -> None:
    if duration_ms > settings.SLOW_CALCULATION_MS:
        logger.warning("Price calculation for %s took %.2f ms", what, duration_ms)


@router.post("/categories/{slug}/calculate-price", response_model=CategoryPriceResponse)
def calculate_price(slug: str, body: CategoryPriceRequest, request: Request, db: Session = Depends(get_db)):
    """
    Price one configuration of a category at the given quantity.

    No coupon, shipping or tax is applied; the result is what a single cart
    line with these specifications would cost.
    """
    start = perf_counter()
    ok = False
    try:
        result = calculate_category_price(db, slug, body.specifications, body.quantity)
        ok = True
    finally:
        duration_ms = (perf_counter() - start) * 1000.0
        record_price_calculation(request, ok, duration_ms)
        _warn_if_slow(f"category {slug}", duration_ms)
    return result


@router.post("/checkout/quote", response_model=CheckoutQuoteResponse)
def checkout_quote(
    body: CheckoutQuoteRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    """
    Full cart quote: every line priced, coupon applied, then shipping and tax.

    Anonymous callers get a quote too; per-user coupon limits are only
    checked when a user is logged in. A refused coupon does not fail the
    quote, the reason is returned alongside the breakdown.
    """
    start = perf_counter()
    result, _ = quote_order(
        db,
        body.items,
        coupon_code=body.coupon_code,
        user_id=user.id if user else None,
        shipping_charges=body.shipping_charges,
        now=datetime.utcnow(),
    )
    duration_ms = (perf_counter() - start) * 1000.0

    record_price_calculation(request, result.ok, duration_ms)
    _warn_if_slow(f"cart of {len(body.items)} lines", duration_ms)
    raise_for_failure(result)

    coupon = None
    if result.coupon is not None:
        coupon = CouponOutcomeSchema(
            code=result.coupon.code,
            applied=result.coupon.applied,
            discount_amount=result.coupon.discount_amount,
            reason=result.coupon.reason.value if result.coupon.reason else None,
            message=result.coupon.message,
        )

    return CheckoutQuoteResponse(
        currency=settings.CURRENCY,
        breakdown=PriceBreakdownSchema(**result.breakdown.to_dict()),
        coupon=coupon,
        calculated_in_ms=duration_ms,
    )
