from enum import Enum


class RuleType(str, Enum):
    BASE_PRICE = "BASE_PRICE"
    SPECIFICATION_COMBINATION = "SPECIFICATION_COMBINATION"
    QUANTITY_TIER = "QUANTITY_TIER"
    ADDON = "ADDON"


# rule types that can supply "the" base price of a line
BASE_PRICE_RULE_TYPES = (
    RuleType.BASE_PRICE,
    RuleType.SPECIFICATION_COMBINATION,
    RuleType.QUANTITY_TIER,
)


class SpecificationType(str, Enum):
    SELECT = "SELECT"
    MULTI_SELECT = "MULTI_SELECT"
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
