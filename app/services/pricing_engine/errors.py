from typing import Any, Dict, Mapping, Optional


class PricingError(Exception):
    """Base class for failures raised inside the pricing engine."""

    kind = "pricing_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidCartLineError(PricingError):
    """A cart line (or calculation input) is malformed.

    `field` is the path of the offending input, e.g. ``lines[1].quantity``.
    """

    kind = "invalid_input"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class RuleConfigurationError(PricingError):
    """A stored pricing rule is missing the field its rule type needs."""

    kind = "rule_misconfigured"

    def __init__(self, rule_id: Any, message: str):
        super().__init__(f"Pricing rule {rule_id}: {message}")
        self.rule_id = rule_id


class NoMatchingRuleError(PricingError):
    """No base-price rule of the category covers a line.

    The category is misconfigured for this specification combination and the
    checkout has to be refused; the line is never priced as zero.
    """

    kind = "no_matching_rule"

    def __init__(
        self,
        specification_values: Mapping[str, str],
        quantity: int,
        category_id: Optional[Any] = None,
        line_index: Optional[int] = None,
    ):
        selection = ", ".join(f"{k}={v}" for k, v in specification_values.items()) or "no specifications"
        where = f"category {category_id}" if category_id is not None else "category"
        super().__init__(
            f"No active pricing rule in {where} matches ({selection}) at quantity {quantity}"
        )
        self.specification_values = dict(specification_values)
        self.quantity = quantity
        self.category_id = category_id
        self.line_index = line_index

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "category_id": self.category_id,
                "line_index": self.line_index,
                "specification_values": self.specification_values,
                "quantity": self.quantity,
            }
        )
        return data
