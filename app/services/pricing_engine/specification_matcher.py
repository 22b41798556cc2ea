from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable, Mapping, Optional, Tuple, Union

from app.enums.pricing import SpecificationType
from app.services.pricing_engine.errors import InvalidCartLineError

BOOLEAN_VALUES = ("true", "false")


@dataclass(frozen=True)
class SpecificationOptionDef:
    value: str
    label: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class SpecificationDef:
    """What a category lets a customer choose; the vocabulary rules can condition on."""

    slug: str
    type: Union[SpecificationType, str] = SpecificationType.SELECT
    is_required: bool = False
    options: Tuple[SpecificationOptionDef, ...] = ()

    @property
    def active_values(self) -> Tuple[str, ...]:
        return tuple(o.value for o in self.options if o.is_active)


def matches(rule_values: Mapping[str, str], line_values: Mapping[str, str]) -> bool:
    """
    True when every specification the rule constrains is selected on the line
    with exactly the same stored option value.

    Slugs the rule does not mention are never looked at, so an empty rule map
    matches every line.
    """
    for slug, required in rule_values.items():
        if slug not in line_values:
            return False
        if line_values[slug] != required:
            return False
    return True


def _check_value(spec: SpecificationDef, value: str, field_name: str) -> None:
    spec_type = SpecificationType(spec.type)

    if spec_type == SpecificationType.SELECT:
        if value not in spec.active_values:
            raise InvalidCartLineError(field_name, f"{value!r} is not an available option")

    elif spec_type == SpecificationType.MULTI_SELECT:
        chosen = [v.strip() for v in value.split(",")]
        allowed = spec.active_values
        unknown = [v for v in chosen if v not in allowed]
        if unknown:
            raise InvalidCartLineError(field_name, f"{', '.join(map(repr, unknown))} not available")

    elif spec_type == SpecificationType.NUMBER:
        try:
            number = Decimal(value)
        except InvalidOperation:
            raise InvalidCartLineError(field_name, f"{value!r} is not a number") from None
        if not number.is_finite():
            raise InvalidCartLineError(field_name, f"{value!r} is not a number")

    elif spec_type == SpecificationType.BOOLEAN:
        if value not in BOOLEAN_VALUES:
            raise InvalidCartLineError(field_name, "must be 'true' or 'false'")

    # TEXT: free form


def validate_selection(
    specifications: Iterable[SpecificationDef],
    line_values: Mapping[str, str],
    field_prefix: str = "specification_values",
) -> None:
    """
    Reject a line whose selections do not fit the category's declared
    specifications: unknown slugs, missing required ones and values outside
    the active options (or the wrong shape for NUMBER / BOOLEAN).
    """
    declared = {spec.slug: spec for spec in specifications}

    for slug in line_values:
        if slug not in declared:
            raise InvalidCartLineError(f"{field_prefix}.{slug}", "unknown specification")

    for slug, spec in declared.items():
        value: Optional[str] = line_values.get(slug)
        if value is None:
            if spec.is_required:
                raise InvalidCartLineError(f"{field_prefix}.{slug}", "is required")
            continue
        _check_value(spec, value, f"{field_prefix}.{slug}")
