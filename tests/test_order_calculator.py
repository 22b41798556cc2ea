from datetime import datetime, timedelta
from decimal import Decimal

from app.enums.pricing import DiscountType, RuleType
from app.services.pricing_engine.coupon_evaluator import CouponRejection
from app.services.pricing_engine.order_calculator import calculate
from app.services.pricing_engine.specification_matcher import SpecificationDef, SpecificationOptionDef
from app.services.pricing_engine.types import CartLine, CouponTerms, CouponUsageCounts, rule_from_fields

NOW = datetime(2026, 3, 1, 12, 0, 0)


def tshirt_rules():
    return [
        rule_from_fields(RuleType.BASE_PRICE, rule_id=1, sequence=1, base_price="500"),
        rule_from_fields(
            RuleType.SPECIFICATION_COMBINATION,
            rule_id=2,
            sequence=2,
            priority=10,
            base_price="650",
            specification_values={"size": "XL"},
        ),
    ]


SAVE20 = CouponTerms(
    coupon_id=9,
    code="SAVE20",
    discount_type=DiscountType.PERCENTAGE,
    discount_value=Decimal("20"),
    min_purchase_amount=Decimal("1000"),
    max_discount_amount=Decimal("500"),
    valid_from=NOW - timedelta(days=1),
    valid_until=NOW + timedelta(days=1),
)


def lookup(code):
    return SAVE20 if code == "SAVE20" else None


def test_single_line_breakdown():
    result = calculate(
        [CartLine(product_id="tee", quantity=2, specification_values={"size": "XL"})],
        [tshirt_rules()],
    )
    assert result.ok
    breakdown = result.unwrap()
    assert breakdown.subtotal == Decimal("1300.00")
    assert breakdown.total == Decimal("1300.00")
    assert [e.kind for e in breakdown.entries] == ["line", "shipping", "tax", "total"]
    assert breakdown.entries[0].label == "tee (SPECIFICATION_COMBINATION x2)"
    assert breakdown.entries[0].unit_price == Decimal("650.00")
    assert result.lines[0].applied_rule_id == 2


def test_coupon_discount_shipping_and_tax():
    lines = [
        CartLine(product_id="tee", quantity=2, specification_values={"size": "XL"}),
        CartLine(product_id="tee", quantity=1, specification_values={"size": "S"}, variant_id="blue"),
        CartLine(product_id="tee", quantity=2, specification_values={"size": "S"}),
    ]
    result = calculate(
        lines,
        [tshirt_rules()] * 3,
        coupon_code=" save20 ",
        coupon_lookup=lookup,
        usage_lookup=lambda terms: CouponUsageCounts(),
        shipping_charge=Decimal("49"),
        tax_rate=Decimal("0.18"),
        now=NOW,
    )
    breakdown = result.unwrap()
    # 1300 + 500 + 1000
    assert breakdown.subtotal == Decimal("2800.00")
    assert breakdown.discount_amount == Decimal("500.00")
    assert breakdown.tax == Decimal("414.00")
    assert breakdown.total == Decimal("2763.00")
    assert breakdown.coupon_code == "SAVE20"
    assert result.coupon.applied

    kinds = [e.kind for e in breakdown.entries]
    assert kinds == ["line", "line", "line", "discount", "shipping", "tax", "total"]
    discount = breakdown.entries[3]
    assert discount.amount == Decimal("-500.00")
    assert breakdown.entries[1].label == "tee / blue (BASE_PRICE x1)"


def test_rejected_coupon_does_not_fail_the_quote():
    result = calculate(
        [CartLine(product_id="tee", quantity=1, specification_values={"size": "S"})],
        [tshirt_rules()],
        coupon_code="SAVE20",
        coupon_lookup=lookup,
        now=NOW,
    )
    assert result.ok
    assert not result.coupon.applied
    assert result.coupon.reason == CouponRejection.BELOW_MINIMUM_PURCHASE
    assert result.breakdown.discount_amount == Decimal("0.00")
    assert result.breakdown.coupon_code is None
    assert "discount" not in [e.kind for e in result.breakdown.entries]


def test_unknown_coupon_is_not_found():
    result = calculate(
        [CartLine(product_id="tee", quantity=3, specification_values={"size": "S"})],
        [tshirt_rules()],
        coupon_code="NOPE",
        coupon_lookup=lookup,
        now=NOW,
    )
    assert result.coupon.reason == CouponRejection.NOT_FOUND


def test_no_matching_rule_fails_closed():
    rules = [tshirt_rules()[1]]
    result = calculate(
        [
            CartLine(product_id="tee", quantity=1, specification_values={"size": "XL"}),
            CartLine(product_id="tee", quantity=1, specification_values={"size": "S"}),
        ],
        [rules, rules],
        category_ids_by_line=[4, 4],
    )
    assert not result.ok
    assert result.kind == "no_matching_rule"
    assert result.breakdown is None
    assert result.lines == ()
    assert result.error.line_index == 1
    assert result.error.category_id == 4


def test_invalid_quantity_is_reported_with_its_path():
    result = calculate(
        [
            CartLine(product_id="tee", quantity=1),
            CartLine(product_id="tee", quantity=0),
        ],
        [tshirt_rules(), tshirt_rules()],
    )
    assert result.kind == "invalid_input"
    assert result.error.field == "lines[1].quantity"


def test_empty_cart_is_invalid():
    assert calculate([], []).kind == "invalid_input"


def test_addon_hint_is_invalid():
    result = calculate(
        [CartLine(product_id="tee", quantity=1, rule_type_hint="ADDON")],
        [tshirt_rules()],
    )
    assert result.kind == "invalid_input"


def test_coupon_requires_explicit_now():
    result = calculate(
        [CartLine(product_id="tee", quantity=1)],
        [tshirt_rules()],
        coupon_code="SAVE20",
        coupon_lookup=lookup,
    )
    assert result.kind == "invalid_input"
    assert result.error.field == "now"


def test_selection_is_checked_against_category_specifications():
    specs = [
        SpecificationDef(
            slug="size",
            is_required=True,
            options=(SpecificationOptionDef("S"), SpecificationOptionDef("XL")),
        )
    ]
    result = calculate(
        [CartLine(product_id="tee", quantity=1, specification_values={"size": "M"})],
        [tshirt_rules()],
        specifications_by_line=[specs],
    )
    assert result.kind == "invalid_input"
    assert result.error.field == "lines[0].specification_values.size"


def test_money_is_rounded_half_up_once():
    rules = [rule_from_fields(RuleType.BASE_PRICE, rule_id=1, sequence=1, base_price="0.125")]
    result = calculate([CartLine(product_id="x", quantity=1)], [rules], tax_rate="0.5")
    breakdown = result.unwrap()
    assert breakdown.subtotal == Decimal("0.13")
    # 0.125 * 1.5 = 0.1875, not 0.13 * 1.5
    assert breakdown.total == Decimal("0.19")


def test_identical_inputs_give_identical_breakdowns():
    def run():
        return calculate(
            [CartLine(product_id="tee", quantity=2, specification_values={"size": "XL"})],
            [tshirt_rules()],
            coupon_code="SAVE20",
            coupon_lookup=lookup,
            shipping_charge="40",
            tax_rate="0.05",
            now=NOW,
        ).breakdown.to_dict()

    assert run() == run()
