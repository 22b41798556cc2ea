import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from fastapi import BackgroundTasks, HTTPException
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.enums.orders import OrderStatus
from app.models.category import Category
from app.models.order import Order, OrderItem, OrderStatusHistory
from app.models.user import User
from app.schemas.checkout import CartLineSchema, OrderCreate
from app.services.catalog_service import get_category_by_slug, to_engine_rules, to_specification_defs
from app.services.coupon_service import (
    get_coupon,
    get_coupon_by_code,
    get_usage_counts,
    record_coupon_usage,
    to_coupon_terms,
)
from app.services.pricing_engine.errors import NoMatchingRuleError, PricingError
from app.services.pricing_engine.order_calculator import PriceCalculation, calculate
from app.services.pricing_engine.types import CartLine, CouponTerms, CouponUsageCounts, quantize_money

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _generate_order_number() -> str:
    return f"ORD_{uuid.uuid4().hex[:10].upper()}"


def _bg_log_order(order_number: str, total: str):
    logger.info("Order %s created, total %s", order_number, total)


def _bg_notify_user(order_number: str, user_id: int):
    logger.info("Notify user %s about order %s", user_id, order_number)


# ---------- QUOTE ----------

def _load_categories(db: Session, items: Sequence[CartLineSchema]) -> List[Category]:
    by_slug: Dict[str, Category] = {}
    categories = []
    for item in items:
        category = by_slug.get(item.category_slug)
        if category is None:
            category = get_category_by_slug(db, item.category_slug)
            if not category or not category.is_active:
                raise HTTPException(status_code=404, detail=f"Category {item.category_slug} not found")
            by_slug[item.category_slug] = category
        categories.append(category)
    return categories


def quote_order(
    db: Session,
    items: Sequence[CartLineSchema],
    coupon_code: Optional[str] = None,
    user_id: Optional[int] = None,
    shipping_charges: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> Tuple[PriceCalculation, List[Category]]:
    """
    Load everything the pricing engine needs for a cart and run it.

    The engine sees a snapshot: rules, coupon and usage counts are read once
    here and never re-read during the calculation.
    """
    now = now or datetime.utcnow()
    categories = _load_categories(db, items)

    try:
        rules_by_category = {c.id: to_engine_rules(c.pricing_rules) for c in categories}
    except PricingError as e:
        logger.error("Invalid pricing rule: %s", e.message)
        raise HTTPException(status_code=422, detail=e.to_dict()) from e

    def coupon_lookup(code: str) -> Optional[CouponTerms]:
        coupon = get_coupon_by_code(db, code)
        return to_coupon_terms(coupon) if coupon else None

    def usage_lookup(terms: CouponTerms) -> CouponUsageCounts:
        return get_usage_counts(db, terms.coupon_id, user_id)

    lines = [
        CartLine(
            product_id=item.product_id,
            quantity=item.quantity,
            specification_values=item.specification_values,
            variant_id=item.variant_id,
            rule_type_hint=item.rule_type_hint,
        )
        for item in items
    ]

    result = calculate(
        lines=lines,
        category_rules_by_line=[rules_by_category[c.id] for c in categories],
        coupon_code=coupon_code,
        coupon_lookup=coupon_lookup,
        usage_lookup=usage_lookup,
        shipping_charge=shipping_charges if shipping_charges is not None else settings.DEFAULT_SHIPPING_CHARGE,
        tax_rate=settings.DEFAULT_TAX_RATE,
        now=now,
        specifications_by_line=[to_specification_defs(c.specifications) for c in categories],
        category_ids_by_line=[c.id for c in categories],
    )
    return result, categories


def raise_for_failure(result: PriceCalculation) -> None:
    """Translate a refused calculation into the HTTP error the client sees."""
    if result.ok:
        return
    detail = result.error.to_dict()
    if isinstance(result.error, NoMatchingRuleError):
        logger.warning("Checkout blocked, category misconfigured: %s", result.error.message)
        detail["message"] = "This configuration cannot be priced right now; the category is misconfigured."
    raise HTTPException(status_code=422, detail=detail)


# ---------- CREATE ORDER ----------

def create_order(
    db: Session,
    user: User,
    data: OrderCreate,
    background_tasks: Optional[BackgroundTasks] = None,
    now: Optional[datetime] = None,
) -> Order:
    result, categories = quote_order(
        db,
        data.items,
        coupon_code=data.coupon_code,
        user_id=user.id,
        shipping_charges=data.shipping_charges,
        now=now,
    )
    raise_for_failure(result)

    breakdown = result.breakdown
    coupon_id = result.coupon.coupon_id if result.coupon is not None and result.coupon.applied else None

    order = Order(
        order_number=_generate_order_number(),
        user_id=user.id,
        status=OrderStatus.PENDING_REVIEW.value,
        payment_method=data.payment_method.value,
        shipping_address=data.shipping_address,
        subtotal=breakdown.subtotal,
        discount_amount=breakdown.discount_amount if breakdown.discount_amount > 0 else None,
        shipping_charges=breakdown.shipping_charge if breakdown.shipping_charge > 0 else None,
        tax_amount=breakdown.tax if breakdown.tax > 0 else None,
        total=breakdown.total,
        currency=settings.CURRENCY,
        coupon_id=coupon_id,
        price_breakdown=breakdown.to_dict(),
    )

    for item, category, resolved in zip(data.items, categories, result.lines):
        order.items.append(
            OrderItem(
                product_id=item.product_id,
                variant_id=item.variant_id,
                category_id=category.id,
                quantity=item.quantity,
                specification_values=dict(item.specification_values),
                unit_price=quantize_money(resolved.unit_price),
                line_total=quantize_money(resolved.line_total),
                applied_rule_id=resolved.applied_rule_id,
            )
        )
    order.status_history.append(
        OrderStatusHistory(status=OrderStatus.PENDING_REVIEW.value, comment="Order created")
    )

    try:
        db.add(order)
        db.flush()
        # usage is recorded only once the order row exists
        if coupon_id is not None:
            record_coupon_usage(db, get_coupon(db, coupon_id), user.id, order.id)
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to create order; please try again") from e

    db.refresh(order)

    if background_tasks:
        background_tasks.add_task(_bg_log_order, order.order_number, str(breakdown.total))
        background_tasks.add_task(_bg_notify_user, order.order_number, user.id)

    return order


# ---------- READ ----------

def get_order(db: Session, order_id: int, user_id: Optional[int] = None) -> Optional[Order]:
    query = db.query(Order).filter(Order.id == order_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    return query.first()


def _paginate(query, page: int, page_size: int) -> Tuple[List[Order], int]:
    if page < 1:
        page = 1
    if page_size < 1:
        page_size = 1
    if page_size > MAX_PAGE_SIZE:
        page_size = MAX_PAGE_SIZE

    total = query.with_entities(func.count(Order.id)).scalar() or 0
    items = (
        query
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def list_user_orders(db: Session, user_id: int, page: int = 1, page_size: int = 20) -> Tuple[List[Order], int]:
    """Returns (items, total_count); page is 1-based."""
    return _paginate(db.query(Order).filter(Order.user_id == user_id), page, page_size)


def list_orders(
    db: Session,
    status: Optional[OrderStatus] = None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[Order], int]:
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == status.value)
    return _paginate(query, page, page_size)


# ---------- STATUS ----------

def update_order_status(
    db: Session,
    order_id: int,
    status: OrderStatus,
    comment: Optional[str] = None,
) -> Optional[Order]:
    order = get_order(db, order_id)
    if not order:
        return None

    # pricing fields and the frozen breakdown are never touched here
    order.status = status.value
    order.status_history.append(
        OrderStatusHistory(status=status.value, comment=comment or f"Status updated to {status.value}")
    )
    db.commit()
    db.refresh(order)
    return order
