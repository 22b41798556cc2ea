import pytest

from app.enums.pricing import SpecificationType
from app.services.pricing_engine.errors import InvalidCartLineError
from app.services.pricing_engine.specification_matcher import (
    SpecificationDef,
    SpecificationOptionDef,
    matches,
    validate_selection,
)
from app.services.pricing_engine.types import SpecificationValues


def _size_spec(required=True):
    return SpecificationDef(
        slug="size",
        type=SpecificationType.SELECT,
        is_required=required,
        options=(
            SpecificationOptionDef("S", "Small"),
            SpecificationOptionDef("XL", "Extra large"),
            SpecificationOptionDef("XXL", "2XL", is_active=False),
        ),
    )


def test_empty_rule_matches_every_line():
    assert matches({}, {})
    assert matches({}, {"size": "XL", "color": "red"})


def test_all_constrained_slugs_must_be_equal():
    assert matches({"size": "XL"}, {"size": "XL", "color": "red"})
    assert not matches({"size": "XL"}, {"size": "S"})
    assert not matches({"size": "XL", "color": "red"}, {"size": "XL", "color": "blue"})


def test_missing_line_value_does_not_match():
    assert not matches({"size": "XL"}, {"color": "red"})


def test_values_are_compared_exactly():
    assert not matches({"size": "XL"}, {"size": "xl"})
    assert not matches({"size": "XL"}, {"size": "Extra large"})


def test_rule_values_are_canonicalised_from_storage():
    rule = SpecificationValues.from_rule({"gift_wrap": True, "pages": 100, "color": None})
    assert dict(rule) == {"gift_wrap": "true", "pages": "100"}
    assert matches(rule, {"gift_wrap": "true", "pages": "100"})


def test_line_values_reject_non_string_values():
    with pytest.raises(InvalidCartLineError) as exc:
        SpecificationValues.from_line({"size": 42})
    assert exc.value.field == "specification_values.size"


def test_validate_selection_accepts_active_option():
    validate_selection([_size_spec()], {"size": "XL"})


def test_validate_selection_rejects_inactive_option():
    with pytest.raises(InvalidCartLineError) as exc:
        validate_selection([_size_spec()], {"size": "XXL"})
    assert exc.value.field == "specification_values.size"


def test_validate_selection_rejects_unknown_slug():
    with pytest.raises(InvalidCartLineError) as exc:
        validate_selection([_size_spec()], {"size": "S", "sleeve": "long"})
    assert exc.value.field == "specification_values.sleeve"


def test_validate_selection_requires_required_specs():
    with pytest.raises(InvalidCartLineError):
        validate_selection([_size_spec(required=True)], {})
    validate_selection([_size_spec(required=False)], {})


@pytest.mark.parametrize(
    "spec_type, value, ok",
    [
        (SpecificationType.NUMBER, "12.5", True),
        (SpecificationType.NUMBER, "twelve", False),
        (SpecificationType.BOOLEAN, "true", True),
        (SpecificationType.BOOLEAN, "yes", False),
        (SpecificationType.TEXT, "anything at all", True),
    ],
)
def test_validate_selection_checks_value_shape(spec_type, value, ok):
    spec = SpecificationDef(slug="x", type=spec_type)
    if ok:
        validate_selection([spec], {"x": value})
    else:
        with pytest.raises(InvalidCartLineError):
            validate_selection([spec], {"x": value})


def test_multi_select_checks_every_chosen_value():
    spec = SpecificationDef(
        slug="toppings",
        type=SpecificationType.MULTI_SELECT,
        options=(SpecificationOptionDef("cheese"), SpecificationOptionDef("olives")),
    )
    validate_selection([spec], {"toppings": "cheese, olives"})
    with pytest.raises(InvalidCartLineError):
        validate_selection([spec], {"toppings": "cheese,anchovies"})


def test_line_values_reject_slugs_that_collide_after_trimming():
    with pytest.raises(InvalidCartLineError) as exc:
        SpecificationValues.from_line({"size": "S", " size": "XL"})
    assert exc.value.field == "specification_values.size"


def test_line_values_are_trimmed():
    values = SpecificationValues.from_line({" size ": " XL "})
    assert dict(values) == {"size": "XL"}
    assert len(values) == 1
