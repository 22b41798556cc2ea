import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Sequence, Tuple

from app.enums.pricing import BASE_PRICE_RULE_TYPES, RuleType
from app.services.pricing_engine.errors import InvalidCartLineError, NoMatchingRuleError
from app.services.pricing_engine.specification_matcher import matches
from app.services.pricing_engine.types import (
    ZERO,
    AddonRule,
    PricingRule,
    QuantityTierRule,
    SpecificationValues,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricedLine:
    """Already-validated input of `resolve`."""

    specification_values: SpecificationValues
    quantity: int
    rule_type_hint: Optional[RuleType] = None


@dataclass(frozen=True)
class ResolvedLine:
    unit_price: Decimal
    line_total: Decimal
    applied_rule_id: Any
    rule_type: RuleType
    quantity: int
    addon_rule_ids: Tuple[Any, ...] = ()
    # set when a modifier-only tier adjusted another rule's price
    base_rule_id: Optional[Any] = None


def _component_total(amount: Decimal, quantity: int, quantity_multiplier: bool) -> Decimal:
    return amount * quantity if quantity_multiplier else amount


def _matching_rules(rules: Sequence[PricingRule], line: PricedLine) -> List[PricingRule]:
    return [
        rule
        for rule in rules
        if rule.is_active
        and matches(rule.specification_values, line.specification_values)
        and rule.covers_quantity(line.quantity)
    ]


def _pick(candidates: Sequence[PricingRule]) -> Optional[PricingRule]:
    # highest priority first, then the more specific rule, then earliest created
    if not candidates:
        return None
    return min(candidates, key=lambda r: r.sort_key)


def resolve(
    category_rules: Sequence[PricingRule],
    line: PricedLine,
    category_id: Optional[Any] = None,
) -> ResolvedLine:
    """
    Price one cart line against its category's rules.

    - The base price comes from the single best BASE_PRICE /
      SPECIFICATION_COMBINATION / QUANTITY_TIER rule that matches.
    - Every matching ADDON adds its modifier on top.
    - Each component is multiplied by the quantity only when its own rule has
      quantity_multiplier set; otherwise it is charged once per line.
    """
    if line.rule_type_hint is not None and line.rule_type_hint not in BASE_PRICE_RULE_TYPES:
        raise InvalidCartLineError("rule_type_hint", f"{line.rule_type_hint.value} cannot price a line")

    matching = _matching_rules(category_rules, line)

    all_base = [r for r in matching if r.rule_type in BASE_PRICE_RULE_TYPES]
    base_candidates = all_base
    if line.rule_type_hint is not None:
        base_candidates = [r for r in all_base if r.rule_type == line.rule_type_hint]
    addons = sorted((r for r in matching if isinstance(r, AddonRule)), key=lambda r: r.sequence)

    winner = _pick(base_candidates)
    if winner is None:
        raise NoMatchingRuleError(line.specification_values, line.quantity, category_id=category_id)

    base_rule_id = None
    if isinstance(winner, QuantityTierRule) and not winner.overrides_base:
        fallback = _pick([r for r in all_base if not isinstance(r, QuantityTierRule)])
        if fallback is None:
            raise NoMatchingRuleError(line.specification_values, line.quantity, category_id=category_id)
        base_price = fallback.base_price + winner.price_modifier
        base_rule_id = fallback.rule_id
        # base and tier adjustment are separate components, each with its own flag
        line_total = _component_total(fallback.base_price, line.quantity, fallback.quantity_multiplier)
        line_total += _component_total(winner.price_modifier, line.quantity, winner.quantity_multiplier)
    else:
        base_price = winner.base_price
        line_total = _component_total(base_price, line.quantity, winner.quantity_multiplier)

    unit_price = base_price + sum((a.price_modifier for a in addons), ZERO)
    for addon in addons:
        line_total += _component_total(addon.price_modifier, line.quantity, addon.quantity_multiplier)

    logger.debug(
        "Resolved line %s x%s -> rule %s (%s), addons=%s, unit=%s, total=%s",
        dict(line.specification_values),
        line.quantity,
        winner.rule_id,
        winner.rule_type.value,
        [a.rule_id for a in addons],
        unit_price,
        line_total,
    )

    return ResolvedLine(
        unit_price=unit_price,
        line_total=line_total,
        applied_rule_id=winner.rule_id,
        rule_type=winner.rule_type,
        quantity=line.quantity,
        addon_rule_ids=tuple(a.rule_id for a in addons),
        base_rule_id=base_rule_id,
    )
