import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from app.enums.pricing import RuleType
from app.services.pricing_engine.coupon_evaluator import CouponRejection, evaluate
from app.services.pricing_engine.errors import InvalidCartLineError, NoMatchingRuleError, PricingError
from app.services.pricing_engine.rule_resolver import PricedLine, ResolvedLine, resolve
from app.services.pricing_engine.specification_matcher import SpecificationDef, validate_selection
from app.services.pricing_engine.types import (
    ZERO,
    CartLine,
    CouponTerms,
    CouponUsageCounts,
    PricingRule,
    SpecificationValues,
    quantize_money,
    to_money,
)

logger = logging.getLogger(__name__)

CouponLookup = Callable[[str], Optional[CouponTerms]]
UsageLookup = Callable[[CouponTerms], CouponUsageCounts]

ENTRY_LINE = "line"
ENTRY_DISCOUNT = "discount"
ENTRY_SHIPPING = "shipping"
ENTRY_TAX = "tax"
ENTRY_TOTAL = "total"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


# ===================== RESULT TYPES =====================


@dataclass(frozen=True)
class BreakdownEntry:
    label: str
    amount: Decimal
    kind: str
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = None
    rule_id: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"label": self.label, "amount": str(self.amount), "kind": self.kind}
        if self.kind == ENTRY_LINE:
            data["quantity"] = self.quantity
            data["unit_price"] = str(self.unit_price)
            data["rule_id"] = self.rule_id
        return data


@dataclass(frozen=True)
class PriceBreakdown:
    entries: Tuple[BreakdownEntry, ...]
    subtotal: Decimal
    discount_amount: Decimal
    shipping_charge: Decimal
    tax: Decimal
    tax_rate: Decimal
    total: Decimal
    coupon_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe snapshot; amounts are strings so nothing is re-rounded on storage."""
        return {
            "entries": [e.to_dict() for e in self.entries],
            "subtotal": str(self.subtotal),
            "discount_amount": str(self.discount_amount),
            "shipping_charge": str(self.shipping_charge),
            "tax": str(self.tax),
            "tax_rate": str(self.tax_rate),
            "total": str(self.total),
            "coupon_code": self.coupon_code,
        }


@dataclass(frozen=True)
class CouponOutcome:
    code: str
    applied: bool
    discount_amount: Decimal = ZERO
    reason: Optional[CouponRejection] = None
    coupon_id: Optional[Any] = None

    @property
    def message(self) -> str:
        if self.applied:
            return "Coupon applied"
        return self.reason.message if self.reason else ""


@dataclass(frozen=True)
class PriceCalculation:
    """Tagged outcome: either a breakdown or the error that stopped pricing."""

    breakdown: Optional[PriceBreakdown] = None
    lines: Tuple[ResolvedLine, ...] = ()
    coupon: Optional[CouponOutcome] = None
    error: Optional[PricingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> str:
        return "ok" if self.error is None else self.error.kind

    def unwrap(self) -> PriceBreakdown:
        if self.error is not None:
            raise self.error
        return self.breakdown


# ===================== INPUT VALIDATION =====================


def _validate_quantity(value: Any, field_name: str) -> int:
    if value is None:
        raise InvalidCartLineError(field_name, "is required")
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCartLineError(field_name, "must be an integer")
    if value < 1:
        raise InvalidCartLineError(field_name, "must be at least 1")
    return value


def _validate_hint(value: Any, field_name: str) -> Optional[RuleType]:
    if value is None:
        return None
    try:
        hint = RuleType(value)
    except ValueError:
        raise InvalidCartLineError(field_name, f"unknown rule type {value!r}") from None
    if hint == RuleType.ADDON:
        raise InvalidCartLineError(field_name, "ADDON rules cannot price a line on their own")
    return hint


def _for_line(by_line: Any, index: int) -> Any:
    if by_line is None:
        return None
    if isinstance(by_line, Mapping):
        return by_line.get(index)
    return by_line[index] if index < len(by_line) else None


def _validate_lines(
    lines: Sequence[CartLine],
    specifications_by_line: Any,
) -> List[PricedLine]:
    if not lines:
        raise InvalidCartLineError("lines", "at least one line is required")

    priced = []
    for index, line in enumerate(lines):
        prefix = f"lines[{index}]"
        if line.product_id is None or line.product_id == "":
            raise InvalidCartLineError(f"{prefix}.product_id", "is required")
        quantity = _validate_quantity(line.quantity, f"{prefix}.quantity")
        values = SpecificationValues.from_line(line.specification_values, f"{prefix}.specification_values")
        hint = _validate_hint(line.rule_type_hint, f"{prefix}.rule_type_hint")

        specifications: Optional[Sequence[SpecificationDef]] = _for_line(specifications_by_line, index)
        if specifications is not None:
            validate_selection(specifications, values, f"{prefix}.specification_values")

        priced.append(PricedLine(specification_values=values, quantity=quantity, rule_type_hint=hint))
    return priced


def _validate_charges(shipping_charge: Any, tax_rate: Any) -> Tuple[Decimal, Decimal]:
    shipping = to_money(shipping_charge, "shipping_charge")
    if shipping < ZERO:
        raise InvalidCartLineError("shipping_charge", "cannot be negative")
    rate = to_money(tax_rate, "tax_rate")
    if rate < ZERO or rate > 1:
        raise InvalidCartLineError("tax_rate", "must be between 0 and 1")
    return shipping, rate


# ===================== CALCULATION =====================


def _line_label(line: CartLine, resolved: ResolvedLine) -> str:
    product = str(line.product_id)
    if line.variant_id is not None:
        product = f"{product} / {line.variant_id}"
    return f"{product} ({resolved.rule_type.value} x{resolved.quantity})"


def _apply_coupon(
    coupon_code: Optional[str],
    subtotal: Decimal,
    coupon_lookup: Optional[CouponLookup],
    usage_lookup: Optional[UsageLookup],
    now: datetime,
) -> Optional[CouponOutcome]:
    code = normalize_code(coupon_code)
    if not code:
        return None

    terms = coupon_lookup(code) if coupon_lookup is not None else None
    if terms is None:
        logger.info("Coupon %s not found", code)
        return CouponOutcome(code=code, applied=False, reason=CouponRejection.NOT_FOUND)

    usage = usage_lookup(terms) if usage_lookup is not None else CouponUsageCounts()
    evaluation = evaluate(terms, subtotal, usage, now)
    if not evaluation.valid:
        return CouponOutcome(code=code, applied=False, reason=evaluation.reason, coupon_id=terms.coupon_id)

    return CouponOutcome(
        code=code,
        applied=evaluation.discount_amount > ZERO,
        discount_amount=evaluation.discount_amount,
        coupon_id=terms.coupon_id,
    )


def calculate(
    lines: Sequence[CartLine],
    category_rules_by_line: Any,
    coupon_code: Optional[str] = None,
    coupon_lookup: Optional[CouponLookup] = None,
    usage_lookup: Optional[UsageLookup] = None,
    shipping_charge: Any = ZERO,
    tax_rate: Any = ZERO,
    now: Optional[datetime] = None,
    specifications_by_line: Any = None,
    category_ids_by_line: Any = None,
) -> PriceCalculation:
    """
    Price a whole cart.

    `category_rules_by_line` (and the optional `specifications_by_line` /
    `category_ids_by_line`) are indexed by line position. Lookups are plain
    callables so the caller decides where coupons and usage counts come from.

    A line no rule can price fails the whole calculation; a bad coupon only
    means no discount. Amounts are rounded half-up to cents once, when the
    breakdown is emitted.
    """
    try:
        priced_lines = _validate_lines(lines, specifications_by_line)
        shipping, rate = _validate_charges(shipping_charge, tax_rate)
        if normalize_code(coupon_code) and now is None:
            raise InvalidCartLineError("now", "is required to evaluate a coupon")

        resolved: List[ResolvedLine] = []
        for index, line in enumerate(priced_lines):
            rules: Sequence[PricingRule] = _for_line(category_rules_by_line, index) or ()
            category_id = _for_line(category_ids_by_line, index)
            try:
                resolved.append(resolve(rules, line, category_id=category_id))
            except NoMatchingRuleError as exc:
                exc.line_index = index
                raise
    except PricingError as exc:
        logger.warning("Price calculation refused (%s): %s", exc.kind, exc.message)
        return PriceCalculation(error=exc)

    subtotal = sum((r.line_total for r in resolved), ZERO)

    coupon = _apply_coupon(coupon_code, subtotal, coupon_lookup, usage_lookup, now)
    discount = coupon.discount_amount if coupon is not None and coupon.applied else ZERO

    taxable = subtotal - discount
    tax = taxable * rate
    total = taxable + tax + shipping

    entries = [
        BreakdownEntry(
            label=_line_label(line, r),
            amount=quantize_money(r.line_total),
            kind=ENTRY_LINE,
            quantity=r.quantity,
            unit_price=quantize_money(r.unit_price),
            rule_id=r.applied_rule_id,
        )
        for line, r in zip(lines, resolved)
    ]
    if discount > ZERO:
        entries.append(BreakdownEntry(f"Discount ({coupon.code})", -quantize_money(discount), ENTRY_DISCOUNT))
    entries.append(BreakdownEntry("Shipping", quantize_money(shipping), ENTRY_SHIPPING))
    entries.append(BreakdownEntry("Tax", quantize_money(tax), ENTRY_TAX))
    entries.append(BreakdownEntry("Total", quantize_money(total), ENTRY_TOTAL))

    breakdown = PriceBreakdown(
        entries=tuple(entries),
        subtotal=quantize_money(subtotal),
        discount_amount=quantize_money(discount),
        shipping_charge=quantize_money(shipping),
        tax=quantize_money(tax),
        tax_rate=rate,
        total=quantize_money(total),
        coupon_code=coupon.code if coupon is not None and coupon.applied else None,
    )
    return PriceCalculation(breakdown=breakdown, lines=tuple(resolved), coupon=coupon)
