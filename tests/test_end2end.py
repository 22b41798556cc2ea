from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

import pytest
from fastapi import HTTPException

from app.enums.orders import OrderStatus, PaymentMethod
from app.enums.pricing import DiscountType, RuleType
from app.models.coupon import CouponUsage
from app.models.order import Order
from app.routes.categories import create as create_category_route
from app.routes.coupons import validate as validate_coupon_route
from app.routes.pricing.calculate_price import checkout_quote
from app.schemas.category import (
    CategoryCreate,
    PricingRuleCreate,
    SpecificationCreate,
    SpecificationOptionCreate,
)
from app.schemas.checkout import CartLineSchema, CheckoutQuoteRequest, OrderCreate
from app.schemas.coupon import CouponCreate, CouponValidateRequest
from app.services.catalog_service import (
    calculate_category_price,
    create_pricing_rule,
    delete_specification,
)
from app.services.coupon_service import (
    create_coupon,
    get_coupon,
    get_usage_counts,
    get_user_coupon_usages,
    record_coupon_usage,
    validate_coupon,
)
from app.services import order_service
from app.services.pricing_engine.types import CouponUsageCounts
from app.services.order_service import (
    create_order,
    list_orders,
    list_user_orders,
    update_order_status,
)


def _create_tshirt_category(db, slug=None, with_base_rule=True):
    payload = CategoryCreate(
        name="T-Shirts",
        slug=slug or f"tshirts-{uuid.uuid4().hex[:6]}",
        specifications=[
            SpecificationCreate(
                slug="size",
                name="Size",
                is_required=True,
                options=[
                    SpecificationOptionCreate(value="S", label="Small"),
                    SpecificationOptionCreate(value="XL", label="Extra large"),
                ],
            ),
            SpecificationCreate(
                slug="print",
                name="Print",
                options=[SpecificationOptionCreate(value="front", label="Front print")],
            ),
        ],
    )
    category = create_category_route(payload, db=db)

    if with_base_rule:
        create_pricing_rule(db, category.id, PricingRuleCreate(rule_type=RuleType.BASE_PRICE, base_price=Decimal("500")))
    create_pricing_rule(
        db,
        category.id,
        PricingRuleCreate(
            rule_type=RuleType.SPECIFICATION_COMBINATION,
            specification_values={"size": "XL"},
            base_price=Decimal("650"),
            priority=10,
        ),
    )
    create_pricing_rule(
        db,
        category.id,
        PricingRuleCreate(
            rule_type=RuleType.ADDON,
            specification_values={"print": "front"},
            price_modifier=Decimal("100"),
            quantity_multiplier=False,
        ),
    )
    return category


def _create_save20(db, code="SAVE20", usage_limit_per_user=1):
    now = datetime.utcnow()
    return create_coupon(
        db,
        CouponCreate(
            code=code,
            name="20% off",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("20"),
            min_purchase_amount=Decimal("1000"),
            max_discount_amount=Decimal("500"),
            usage_limit_per_user=usage_limit_per_user,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=1),
        ),
    )


def _cart(slug, size="XL", quantity=2, **extra):
    return [CartLineSchema(product_id="tee-classic", category_slug=slug, quantity=quantity,
                           specification_values={"size": size, **extra})]


@pytest.mark.order(1)
def test_category_price_preview(db):
    category = _create_tshirt_category(db)

    result = calculate_category_price(db, category.slug, {"size": "XL"}, 2)
    assert result["unit_price"] == Decimal("650.00")
    assert result["total_price"] == Decimal("1300.00")

    with_print = calculate_category_price(db, category.slug, {"size": "S", "print": "front"}, 3)
    # 500 x 3 plus a one-off 100 print setup
    assert with_print["total_price"] == Decimal("1600.00")


@pytest.mark.order(2)
def test_preview_rejects_unknown_option(db):
    category = _create_tshirt_category(db)

    with pytest.raises(HTTPException) as exc:
        calculate_category_price(db, category.slug, {"size": "M"}, 1)
    assert exc.value.status_code == 422
    assert exc.value.detail["kind"] == "invalid_input"


@pytest.mark.order(3)
def test_checkout_quote_route_with_coupon(db, fake_request):
    category = _create_tshirt_category(db)
    _create_save20(db)

    body = CheckoutQuoteRequest(
        items=_cart(category.slug, quantity=2) + _cart(category.slug, size="S", quantity=4),
        coupon_code="save20",
    )
    response = checkout_quote(body, fake_request, db=db, user=None)

    # 1300 + 2000 = 3300, 20% = 660 capped at 500
    assert response.breakdown.subtotal == Decimal("3300.00")
    assert response.breakdown.discount_amount == Decimal("500.00")
    assert response.breakdown.total == Decimal("2800.00")
    assert response.coupon.applied
    assert response.currency == "INR"
    assert fake_request.app.state.metrics["price_calculations"] == 1


@pytest.mark.order(4)
def test_quote_refused_when_no_rule_matches(db, fake_request):
    category = _create_tshirt_category(db, with_base_rule=False)

    body = CheckoutQuoteRequest(items=_cart(category.slug, size="S", quantity=1))
    with pytest.raises(HTTPException) as exc:
        checkout_quote(body, fake_request, db=db, user=None)

    assert exc.value.status_code == 422
    assert exc.value.detail["kind"] == "no_matching_rule"
    assert exc.value.detail["line_index"] == 0
    assert fake_request.app.state.metrics["pricing_failures"] == 1


@pytest.mark.order(5)
def test_create_order_freezes_breakdown_and_records_usage(db, buyer):
    category = _create_tshirt_category(db)
    coupon = _create_save20(db)

    order = create_order(
        db,
        buyer,
        OrderCreate(
            items=_cart(category.slug, quantity=4),
            coupon_code="SAVE20",
            payment_method=PaymentMethod.ONLINE,
            shipping_address="12 MG Road, Bengaluru",
        ),
    )

    assert order.status == OrderStatus.PENDING_REVIEW.value
    assert order.subtotal == Decimal("2600")
    assert order.discount_amount == Decimal("500")
    assert order.total == Decimal("2100")
    assert order.coupon_id == coupon.id
    assert order.price_breakdown["total"] == "2100.00"
    assert order.items[0].applied_rule_id is not None
    assert len(order.status_history) == 1

    counts = get_usage_counts(db, coupon.id, buyer.id)
    assert counts.global_count == 1
    assert counts.per_user_count == 1
    assert get_user_coupon_usages(db, buyer.id)[0]["code"] == "SAVE20"


@pytest.mark.order(6)
def test_per_user_limit_blocks_second_use(db, buyer):
    category = _create_tshirt_category(db)
    _create_save20(db)

    data = OrderCreate(items=_cart(category.slug, quantity=4), coupon_code="SAVE20", payment_method=PaymentMethod.OFFLINE)
    create_order(db, buyer, data)
    second = create_order(db, buyer, data)

    # the order still goes through, just without the coupon
    assert second.coupon_id is None
    assert second.total == Decimal("2600")
    assert second.price_breakdown["coupon_code"] is None

    with pytest.raises(HTTPException) as exc:
        validate_coupon_route(CouponValidateRequest(code="SAVE20", subtotal=Decimal("2600")), db=db, user=buyer)
    assert exc.value.status_code == 400
    assert exc.value.detail["reason"] == "PerUserLimitReached"


@pytest.mark.order(7)
def test_usage_ledger_rechecks_limits(db, buyer):
    category = _create_tshirt_category(db)
    coupon = _create_save20(db)

    data = OrderCreate(items=_cart(category.slug, quantity=4), coupon_code="SAVE20", payment_method=PaymentMethod.ONLINE)
    create_order(db, buyer, data)
    # a racing checkout that evaluated the coupon before the first usage landed
    other = create_order(db, buyer, OrderCreate(items=_cart(category.slug), payment_method=PaymentMethod.ONLINE))

    with pytest.raises(HTTPException) as exc:
        record_coupon_usage(db, get_coupon(db, coupon.id), buyer.id, other.id)
    assert exc.value.status_code == 409


@pytest.mark.order(8)
def test_status_update_keeps_pricing(db, buyer):
    category = _create_tshirt_category(db)
    order = create_order(db, buyer, OrderCreate(items=_cart(category.slug), payment_method=PaymentMethod.ONLINE))
    frozen = dict(order.price_breakdown)

    updated = update_order_status(db, order.id, OrderStatus.ACCEPTED, "Checked by ops")
    assert updated.status == "ACCEPTED"
    assert updated.price_breakdown == frozen
    assert [h.status for h in updated.status_history] == ["PENDING_REVIEW", "ACCEPTED"]

    mine, total = list_user_orders(db, buyer.id)
    assert total == 1 and mine[0].id == order.id
    accepted, _ = list_orders(db, status=OrderStatus.ACCEPTED)
    assert order.id in [o.id for o in accepted]


@pytest.mark.order(9)
def test_referenced_specification_cannot_be_deleted(db):
    category = _create_tshirt_category(db)
    size = next(s for s in category.specifications if s.slug == "size")

    with pytest.raises(HTTPException) as exc:
        delete_specification(db, category.id, size.id)
    assert exc.value.status_code == 409


@pytest.mark.order(10)
def test_coupon_window_with_utc_offset(db):
    ist = timezone(timedelta(hours=5, minutes=30))
    created = create_coupon(
        db,
        CouponCreate(
            code="MORNING",
            name="Morning hour",
            discount_type=DiscountType.FIXED,
            discount_value=Decimal("100"),
            valid_from=datetime(2026, 3, 1, 10, 0, tzinfo=ist),
            valid_until=datetime(2026, 3, 1, 11, 0, tzinfo=ist),
        ),
    )
    assert created.valid_from == datetime(2026, 3, 1, 4, 30)
    assert created.valid_until == datetime(2026, 3, 1, 5, 30)

    inside = validate_coupon(db, "MORNING", Decimal("500"), None, now=datetime(2026, 3, 1, 5, 0))
    assert inside["valid"]
    assert inside["discount_amount"] == Decimal("100.00")

    before = validate_coupon(db, "MORNING", Decimal("500"), None, now=datetime(2026, 3, 1, 4, 0))
    assert before["reason"] == "NotYetValid"


@pytest.mark.order(11)
def test_racing_checkout_rolls_back_the_order(db, buyer, monkeypatch):
    category = _create_tshirt_category(db)
    _create_save20(db)
    data = OrderCreate(items=_cart(category.slug, quantity=4), coupon_code="SAVE20", payment_method=PaymentMethod.ONLINE)
    create_order(db, buyer, data)
    assert db.query(Order).count() == 1

    # the quote reads counts taken before the first usage was written
    monkeypatch.setattr(order_service, "get_usage_counts", lambda *args: CouponUsageCounts())

    with pytest.raises(HTTPException) as exc:
        create_order(db, buyer, data)

    assert exc.value.status_code == 409
    # the losing order and its usage row are gone; no order is left without its usage
    assert db.query(Order).count() <= 1
    assert db.query(CouponUsage).count() == db.query(Order).count()
