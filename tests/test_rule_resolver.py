from decimal import Decimal

import pytest

from app.enums.pricing import RuleType
from app.services.pricing_engine.errors import NoMatchingRuleError, RuleConfigurationError
from app.services.pricing_engine.rule_resolver import PricedLine, resolve
from app.services.pricing_engine.types import SpecificationValues, rule_from_fields


def rule(rule_type, rule_id, sequence=None, **fields):
    return rule_from_fields(rule_type, rule_id=rule_id, sequence=sequence or rule_id, **fields)


def line(quantity=1, hint=None, **values):
    return PricedLine(
        specification_values=SpecificationValues.from_line(values),
        quantity=quantity,
        rule_type_hint=hint,
    )


def test_wildcard_base_rule_matches_any_line():
    rules = [rule(RuleType.BASE_PRICE, 1, base_price="500")]
    for values in ({}, {"size": "S"}, {"size": "XL", "color": "red"}):
        resolved = resolve(rules, line(**values))
        assert resolved.applied_rule_id == 1
        assert resolved.unit_price == Decimal("500")


def test_higher_priority_wins_regardless_of_order():
    low = rule(RuleType.BASE_PRICE, 1, base_price="100", priority=5)
    high = rule(RuleType.BASE_PRICE, 2, base_price="200", priority=10)
    assert resolve([low, high], line()).applied_rule_id == 2
    assert resolve([high, low], line()).applied_rule_id == 2


def test_equal_priority_resolves_to_earliest_created():
    first = rule(RuleType.BASE_PRICE, "a", sequence=1, base_price="100")
    second = rule(RuleType.BASE_PRICE, "b", sequence=2, base_price="90")
    for _ in range(3):
        assert resolve([second, first], line()).applied_rule_id == "a"


def test_inactive_rules_are_ignored():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="100"),
        rule(RuleType.BASE_PRICE, 2, base_price="50", priority=10, is_active=False),
    ]
    assert resolve(rules, line()).applied_rule_id == 1


def test_tshirt_xl_combination():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="500", priority=0),
        rule(RuleType.SPECIFICATION_COMBINATION, 2, base_price="650", priority=10,
             specification_values={"size": "XL"}),
    ]
    resolved = resolve(rules, line(quantity=2, size="XL"))
    assert resolved.applied_rule_id == 2
    assert resolved.unit_price == Decimal("650")
    assert resolved.line_total == Decimal("1300")


def test_addons_are_additive():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="500"),
        rule(RuleType.ADDON, 2, price_modifier="50", specification_values={"print": "front"}),
        rule(RuleType.ADDON, 3, price_modifier="30"),
    ]
    resolved = resolve(rules, line(quantity=2, print="front"))
    assert resolved.unit_price == Decimal("580")
    assert resolved.line_total == Decimal("1160")
    assert resolved.addon_rule_ids == (2, 3)


def test_addon_never_prices_a_line_alone():
    rules = [rule(RuleType.ADDON, 1, price_modifier="50")]
    with pytest.raises(NoMatchingRuleError):
        resolve(rules, line())


@pytest.mark.parametrize("quantity", [1, 50])
def test_flat_component_is_charged_once(quantity):
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="10"),
        rule(RuleType.ADDON, 2, price_modifier="100", quantity_multiplier=False),
    ]
    resolved = resolve(rules, line(quantity=quantity))
    assert resolved.line_total == Decimal("10") * quantity + Decimal("100")


@pytest.mark.parametrize("quantity", [1, 50])
def test_multiplied_component_scales_linearly(quantity):
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="10"),
        rule(RuleType.ADDON, 2, price_modifier="100", quantity_multiplier=True),
    ]
    resolved = resolve(rules, line(quantity=quantity))
    assert resolved.line_total == Decimal("110") * quantity


def test_quantity_tier_applies_inside_its_bounds():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="100"),
        rule(RuleType.QUANTITY_TIER, 2, base_price="80", min_quantity=10, max_quantity=49, priority=5),
        rule(RuleType.QUANTITY_TIER, 3, base_price="60", min_quantity=50, priority=5),
    ]
    assert resolve(rules, line(quantity=9)).applied_rule_id == 1
    assert resolve(rules, line(quantity=10)).applied_rule_id == 2
    assert resolve(rules, line(quantity=49)).unit_price == Decimal("80")
    assert resolve(rules, line(quantity=50)).line_total == Decimal("3000")


def test_modifier_only_tier_adjusts_best_base():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="100"),
        rule(RuleType.QUANTITY_TIER, 2, price_modifier="-15", min_quantity=10, priority=5),
    ]
    resolved = resolve(rules, line(quantity=10))
    assert resolved.applied_rule_id == 2
    assert resolved.base_rule_id == 1
    assert resolved.unit_price == Decimal("85")
    assert resolved.line_total == Decimal("850")


def test_modifier_only_tier_without_base_fails():
    rules = [rule(RuleType.QUANTITY_TIER, 1, price_modifier="-15")]
    with pytest.raises(NoMatchingRuleError):
        resolve(rules, line(quantity=3))


def test_hint_restricts_candidates():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="100", priority=10),
        rule(RuleType.SPECIFICATION_COMBINATION, 2, base_price="120", specification_values={"size": "XL"}),
    ]
    assert resolve(rules, line(size="XL")).applied_rule_id == 1
    hinted = resolve(rules, line(size="XL", hint=RuleType.SPECIFICATION_COMBINATION))
    assert hinted.applied_rule_id == 2
    with pytest.raises(NoMatchingRuleError):
        resolve(rules, line(hint=RuleType.QUANTITY_TIER))


def test_no_matching_rule_carries_the_selection():
    rules = [rule(RuleType.SPECIFICATION_COMBINATION, 1, base_price="650", specification_values={"size": "XL"})]
    with pytest.raises(NoMatchingRuleError) as exc:
        resolve(rules, line(quantity=3, size="S"), category_id=7)
    assert exc.value.specification_values == {"size": "S"}
    assert exc.value.quantity == 3
    assert exc.value.category_id == 7


def test_meaningless_fields_are_dropped():
    base = rule(RuleType.BASE_PRICE, 1, base_price="100", price_modifier="999", min_quantity=5)
    resolved = resolve([base], line(quantity=1))
    assert resolved.unit_price == Decimal("100")


def test_misconfigured_rules_are_refused():
    with pytest.raises(RuleConfigurationError):
        rule(RuleType.BASE_PRICE, 1)
    with pytest.raises(RuleConfigurationError):
        rule(RuleType.ADDON, 2, base_price="10")
    with pytest.raises(RuleConfigurationError):
        rule("DISCOUNT", 3, base_price="10")
    with pytest.raises(RuleConfigurationError):
        rule(RuleType.QUANTITY_TIER, 4, base_price="10", min_quantity=10, max_quantity=5)


def test_combination_beats_generic_base_at_equal_priority():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="500"),
        rule(RuleType.SPECIFICATION_COMBINATION, 2, base_price="650", specification_values={"size": "XL"}),
    ]
    resolved = resolve(rules, line(size="XL"))
    assert resolved.applied_rule_id == 2
    assert resolved.unit_price == Decimal("650")
    # a lower-priority combination still loses
    lower = [rules[0], rule(RuleType.SPECIFICATION_COMBINATION, 3, base_price="650", priority=-1,
                            specification_values={"size": "XL"})]
    assert resolve(lower, line(size="XL")).applied_rule_id == 1


def test_more_specific_combination_wins_a_priority_tie():
    rules = [
        rule(RuleType.SPECIFICATION_COMBINATION, 1, base_price="650", specification_values={"size": "XL"}),
        rule(RuleType.SPECIFICATION_COMBINATION, 2, base_price="700",
             specification_values={"size": "XL", "color": "red"}),
    ]
    assert resolve(rules, line(size="XL", color="red")).applied_rule_id == 2
    assert resolve(rules, line(size="XL", color="blue")).applied_rule_id == 1


def test_modifier_tier_and_base_keep_their_own_multiplier():
    rules = [
        rule(RuleType.BASE_PRICE, 1, base_price="1000", quantity_multiplier=False),
        rule(RuleType.QUANTITY_TIER, 2, price_modifier="5", min_quantity=10, priority=5),
    ]
    resolved = resolve(rules, line(quantity=10))
    assert resolved.unit_price == Decimal("1005")
    # flat 1000 once, plus 5 for each of the 10 units
    assert resolved.line_total == Decimal("1050")
