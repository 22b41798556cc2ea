from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, ClassVar, Iterator, Optional, Tuple, Union

from app.enums.pricing import DiscountType, RuleType
from app.services.pricing_engine.errors import InvalidCartLineError, RuleConfigurationError

ZERO = Decimal("0")
CENT = Decimal("0.01")


# ===================== MONEY =====================


def to_money(value: Any, field_name: str = "amount") -> Decimal:
    """Convert an input amount to Decimal without passing through binary float math."""
    if isinstance(value, bool) or value is None:
        raise InvalidCartLineError(field_name, "must be a decimal amount")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidCartLineError(field_name, f"{value!r} is not a decimal amount") from None
    else:
        raise InvalidCartLineError(field_name, "must be a decimal amount")
    if not result.is_finite():
        raise InvalidCartLineError(field_name, "must be a finite amount")
    return result


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ===================== SPECIFICATION VALUES =====================


def _canonical_rule_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SpecificationValues(Mapping):
    """Immutable slug -> option value map, ordered by slug.

    A key present on a rule constrains that specification to an exact value;
    an absent key accepts any value.
    """

    __slots__ = ("_items", "_lookup")

    def __init__(self, items: Tuple[Tuple[str, str], ...] = ()):
        self._items = tuple(sorted(items))
        self._lookup = dict(self._items)

    @classmethod
    def from_line(cls, values: Any, field_name: str = "specification_values") -> "SpecificationValues":
        """Strict constructor for customer selections: str -> non-empty str only."""
        if values is None:
            return cls()
        if isinstance(values, SpecificationValues):
            return values
        if not isinstance(values, Mapping):
            raise InvalidCartLineError(field_name, "must be a mapping of specification slug to value")
        items = {}
        for slug, value in values.items():
            if not isinstance(slug, str) or not slug.strip():
                raise InvalidCartLineError(field_name, f"invalid specification slug {slug!r}")
            if not isinstance(value, str) or not value.strip():
                raise InvalidCartLineError(f"{field_name}.{slug}", "must be a non-empty string")
            key = slug.strip()
            if key in items:
                raise InvalidCartLineError(f"{field_name}.{key}", "is given more than once")
            items[key] = value.strip()
        return cls(tuple(items.items()))

    @classmethod
    def from_rule(cls, values: Any, rule_id: Any = None) -> "SpecificationValues":
        """Lenient constructor for stored rule conditions; scalars are stringified."""
        if not values:
            return cls()
        if not isinstance(values, Mapping):
            raise RuleConfigurationError(rule_id, "specification_values must be an object")
        items = []
        for slug, value in values.items():
            if value is None or value == "":
                # unset filter in the admin form: no constraint on that slug
                continue
            if isinstance(value, (list, dict)):
                raise RuleConfigurationError(rule_id, f"specification {slug!r} must map to a single value")
            items.append((str(slug), _canonical_rule_value(value)))
        return cls(tuple(items))

    def __getitem__(self, key: str) -> str:
        return self._lookup[key]

    def __iter__(self) -> Iterator[str]:
        return (k for k, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __hash__(self) -> int:
        return hash(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SpecificationValues):
            return self._items == other._items
        if isinstance(other, Mapping):
            return dict(self._items) == dict(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"SpecificationValues({dict(self._items)!r})"


# ===================== PRICING RULES =====================


@dataclass(frozen=True, kw_only=True)
class _Rule:
    rule_id: Any
    # creation order; lower wins a tie left after priority and specificity
    sequence: int
    priority: int = 0
    is_active: bool = True
    specification_values: SpecificationValues = field(default_factory=SpecificationValues)
    quantity_multiplier: bool = True

    rule_type: ClassVar[RuleType]
    # the category-wide fallback loses a priority tie to any other base rule
    generic_base: ClassVar[bool] = False

    def covers_quantity(self, quantity: int) -> bool:
        return True

    @property
    def sort_key(self) -> Tuple[int, bool, int, int]:
        return (-self.priority, self.generic_base, -len(self.specification_values), self.sequence)


@dataclass(frozen=True, kw_only=True)
class _BoundedRule(_Rule):
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None

    def covers_quantity(self, quantity: int) -> bool:
        if self.min_quantity is not None and quantity < self.min_quantity:
            return False
        if self.max_quantity is not None and quantity > self.max_quantity:
            return False
        return True


@dataclass(frozen=True, kw_only=True)
class BasePriceRule(_Rule):
    rule_type: ClassVar[RuleType] = RuleType.BASE_PRICE
    generic_base: ClassVar[bool] = True
    base_price: Decimal


@dataclass(frozen=True, kw_only=True)
class SpecificationCombinationRule(_Rule):
    rule_type: ClassVar[RuleType] = RuleType.SPECIFICATION_COMBINATION
    base_price: Decimal


@dataclass(frozen=True, kw_only=True)
class QuantityTierRule(_BoundedRule):
    """Tier price: `base_price` replaces the base, `price_modifier` adjusts it per unit.

    A modifier-only tier is charged as its own component next to the base
    rule it adjusts; each follows its own `quantity_multiplier`.
    """

    rule_type: ClassVar[RuleType] = RuleType.QUANTITY_TIER
    base_price: Optional[Decimal] = None
    price_modifier: Optional[Decimal] = None

    @property
    def overrides_base(self) -> bool:
        return self.base_price is not None


@dataclass(frozen=True, kw_only=True)
class AddonRule(_BoundedRule):
    rule_type: ClassVar[RuleType] = RuleType.ADDON
    price_modifier: Decimal


PricingRule = Union[BasePriceRule, SpecificationCombinationRule, QuantityTierRule, AddonRule]


def _optional_money(value: Any, rule_id: Any, name: str) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return to_money(value, name)
    except InvalidCartLineError:
        raise RuleConfigurationError(rule_id, f"{name} is not a decimal amount") from None


def _optional_bound(value: Any, rule_id: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise RuleConfigurationError(rule_id, f"{name} must be an integer")
    try:
        bound = int(value)
    except (TypeError, ValueError):
        raise RuleConfigurationError(rule_id, f"{name} must be an integer") from None
    if bound < 0:
        raise RuleConfigurationError(rule_id, f"{name} cannot be negative")
    return bound


def rule_from_fields(
    rule_type: Union[RuleType, str],
    *,
    rule_id: Any,
    sequence: int,
    priority: Optional[int] = 0,
    is_active: bool = True,
    specification_values: Any = None,
    base_price: Any = None,
    price_modifier: Any = None,
    quantity_multiplier: Optional[bool] = True,
    min_quantity: Any = None,
    max_quantity: Any = None,
) -> PricingRule:
    """Build the rule variant for `rule_type` from a flat stored record.

    Fields the rule type does not use are dropped here, so a BASE_PRICE row
    with a stale `price_modifier` prices exactly like one without it.
    """
    try:
        rule_type = RuleType(rule_type)
    except ValueError:
        raise RuleConfigurationError(rule_id, f"unknown rule type {rule_type!r}") from None

    common = dict(
        rule_id=rule_id,
        sequence=int(sequence),
        priority=int(priority or 0),
        is_active=bool(is_active),
        specification_values=SpecificationValues.from_rule(specification_values, rule_id),
        quantity_multiplier=True if quantity_multiplier is None else bool(quantity_multiplier),
    )

    if rule_type in (RuleType.BASE_PRICE, RuleType.SPECIFICATION_COMBINATION):
        price = _optional_money(base_price, rule_id, "base_price")
        if price is None:
            raise RuleConfigurationError(rule_id, f"{rule_type.value} rule requires base_price")
        cls = BasePriceRule if rule_type == RuleType.BASE_PRICE else SpecificationCombinationRule
        return cls(base_price=price, **common)

    low = _optional_bound(min_quantity, rule_id, "min_quantity")
    high = _optional_bound(max_quantity, rule_id, "max_quantity")
    if low is not None and high is not None and low > high:
        raise RuleConfigurationError(rule_id, "min_quantity is greater than max_quantity")

    if rule_type == RuleType.ADDON:
        modifier = _optional_money(price_modifier, rule_id, "price_modifier")
        if modifier is None:
            raise RuleConfigurationError(rule_id, "ADDON rule requires price_modifier")
        return AddonRule(price_modifier=modifier, min_quantity=low, max_quantity=high, **common)

    price = _optional_money(base_price, rule_id, "base_price")
    modifier = _optional_money(price_modifier, rule_id, "price_modifier")
    if price is None and modifier is None:
        raise RuleConfigurationError(rule_id, "QUANTITY_TIER rule requires base_price or price_modifier")
    return QuantityTierRule(
        base_price=price,
        price_modifier=None if price is not None else modifier,
        min_quantity=low,
        max_quantity=high,
        **common,
    )


# ===================== CART / COUPON INPUTS =====================


@dataclass(frozen=True)
class CartLine:
    product_id: Any
    quantity: Any
    specification_values: Any = None
    variant_id: Optional[Any] = None
    rule_type_hint: Optional[Union[RuleType, str]] = None


@dataclass(frozen=True)
class CouponTerms:
    coupon_id: Any
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_until: datetime
    usage_limit_per_user: int = 1
    min_purchase_amount: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    # None = unlimited
    usage_limit: Optional[int] = None
    is_active: bool = True


@dataclass(frozen=True)
class CouponUsageCounts:
    global_count: int = 0
    per_user_count: int = 0
