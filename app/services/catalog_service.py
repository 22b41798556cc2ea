import logging
from typing import List, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy.orm import Session, selectinload

from app.models.category import (
    Category,
    CategoryPricingRule,
    CategorySpecification,
    SpecificationOption,
)
from app.schemas.category import (
    CategoryCreate,
    CategoryUpdate,
    PricingRuleCreate,
    PricingRuleUpdate,
    SpecificationCreate,
)
from app.services.pricing_engine.errors import PricingError
from app.services.pricing_engine.order_calculator import calculate
from app.services.pricing_engine.specification_matcher import (
    SpecificationDef,
    SpecificationOptionDef,
)
from app.services.pricing_engine.types import CartLine, PricingRule, rule_from_fields

logger = logging.getLogger(__name__)


# --------------------------
# ENGINE CONVERSION
# --------------------------
def to_engine_rule(row: CategoryPricingRule) -> PricingRule:
    return rule_from_fields(
        row.rule_type,
        rule_id=row.id,
        sequence=row.id,
        priority=row.priority,
        is_active=row.is_active,
        specification_values=row.specification_values,
        base_price=row.base_price,
        price_modifier=row.price_modifier,
        quantity_multiplier=row.quantity_multiplier,
        min_quantity=row.min_quantity,
        max_quantity=row.max_quantity,
    )


def to_engine_rules(rows: Sequence[CategoryPricingRule]) -> List[PricingRule]:
    return [to_engine_rule(row) for row in rows]


def to_specification_defs(specs: Sequence[CategorySpecification]) -> List[SpecificationDef]:
    return [
        SpecificationDef(
            slug=spec.slug,
            type=spec.type,
            is_required=bool(spec.is_required),
            options=tuple(
                SpecificationOptionDef(value=o.value, label=o.label, is_active=bool(o.is_active))
                for o in spec.options
            ),
        )
        for spec in specs
    ]


# --------------------------
# CATEGORIES
# --------------------------
def _add_specification(category: Category, data: SpecificationCreate) -> CategorySpecification:
    spec = CategorySpecification(
        slug=data.slug,
        name=data.name,
        type=data.type.value,
        is_required=data.is_required,
        display_order=data.display_order,
    )
    for option in data.options:
        spec.options.append(SpecificationOption(**option.model_dump()))
    category.specifications.append(spec)
    return spec


def create_category(db: Session, data: CategoryCreate) -> Category:
    if get_category_by_slug(db, data.slug):
        raise HTTPException(status_code=400, detail=f"Category slug '{data.slug}' already exists")

    slugs = [s.slug for s in data.specifications]
    if len(slugs) != len(set(slugs)):
        raise HTTPException(status_code=400, detail="Specification slugs must be unique per category")

    category = Category(
        name=data.name,
        slug=data.slug,
        description=data.description,
        is_active=data.is_active,
    )
    for spec in data.specifications:
        _add_specification(category, spec)

    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def get_category(db: Session, category_id: int) -> Optional[Category]:
    return db.query(Category).filter(Category.id == category_id).first()


def get_category_by_slug(db: Session, slug: str) -> Optional[Category]:
    return (
        db.query(Category)
        .options(
            selectinload(Category.specifications).selectinload(CategorySpecification.options),
            selectinload(Category.pricing_rules),
        )
        .filter(Category.slug == slug)
        .first()
    )


def list_categories(db: Session, include_inactive: bool = False) -> List[Category]:
    query = db.query(Category)
    if not include_inactive:
        query = query.filter(Category.is_active.is_(True))
    return query.order_by(Category.name).all()


def update_category(db: Session, category_id: int, data: CategoryUpdate) -> Optional[Category]:
    category = get_category(db, category_id)
    if not category:
        return None

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(category, key, value)

    db.commit()
    db.refresh(category)
    return category


# --------------------------
# SPECIFICATIONS
# --------------------------
def add_specification(db: Session, category_id: int, data: SpecificationCreate) -> CategorySpecification:
    category = get_category(db, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    if any(s.slug == data.slug for s in category.specifications):
        raise HTTPException(status_code=400, detail=f"Specification '{data.slug}' already exists")

    spec = _add_specification(category, data)
    db.commit()
    db.refresh(spec)
    return spec


def delete_specification(db: Session, category_id: int, specification_id: int) -> bool:
    spec = (
        db.query(CategorySpecification)
        .filter(
            CategorySpecification.id == specification_id,
            CategorySpecification.category_id == category_id,
        )
        .first()
    )
    if not spec:
        return False

    referenced = [
        rule.id
        for rule in spec.category.pricing_rules
        if spec.slug in (rule.specification_values or {})
    ]
    if referenced:
        # slug identity is frozen once a rule conditions on it
        raise HTTPException(
            status_code=409,
            detail=f"Specification '{spec.slug}' is used by pricing rules {referenced}",
        )

    db.delete(spec)
    db.commit()
    return True


# --------------------------
# PRICING RULES
# --------------------------
def _check_rule_specifications(category: Category, specification_values: dict) -> None:
    declared = {s.slug: s for s in category.specifications}
    for slug, value in specification_values.items():
        spec = declared.get(slug)
        if spec is None:
            raise HTTPException(status_code=400, detail=f"Unknown specification '{slug}'")
        if spec.type in ("SELECT", "MULTI_SELECT") and value not in {o.value for o in spec.options}:
            raise HTTPException(
                status_code=400,
                detail=f"'{value}' is not an option of specification '{slug}'",
            )


def create_pricing_rule(db: Session, category_id: int, rule: PricingRuleCreate) -> CategoryPricingRule:
    category = get_category(db, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    _check_rule_specifications(category, rule.specification_values)

    db_rule = CategoryPricingRule(category_id=category_id, **rule.model_dump())
    db_rule.rule_type = rule.rule_type.value
    db.add(db_rule)
    db.commit()
    db.refresh(db_rule)
    return db_rule


def get_pricing_rules(db: Session, category_id: int, active_only: bool = False) -> List[CategoryPricingRule]:
    query = db.query(CategoryPricingRule).filter(CategoryPricingRule.category_id == category_id)
    if active_only:
        query = query.filter(CategoryPricingRule.is_active.is_(True))
    return query.order_by(CategoryPricingRule.id).all()


def get_pricing_rule(db: Session, category_id: int, rule_id: int) -> Optional[CategoryPricingRule]:
    return (
        db.query(CategoryPricingRule)
        .filter(
            CategoryPricingRule.id == rule_id,
            CategoryPricingRule.category_id == category_id,
        )
        .first()
    )


def update_pricing_rule(
    db: Session, category_id: int, rule_id: int, rule_update: PricingRuleUpdate
) -> Optional[CategoryPricingRule]:
    db_rule = get_pricing_rule(db, category_id, rule_id)
    if not db_rule:
        return None
    _check_rule_specifications(db_rule.category, rule_update.specification_values)

    for key, value in rule_update.model_dump().items():
        setattr(db_rule, key, value)
    db_rule.rule_type = rule_update.rule_type.value

    db.commit()
    db.refresh(db_rule)
    return db_rule


def set_pricing_rule_active(
    db: Session, category_id: int, rule_id: int, is_active: bool
) -> Optional[CategoryPricingRule]:
    db_rule = get_pricing_rule(db, category_id, rule_id)
    if not db_rule:
        return None
    db_rule.is_active = is_active
    db.commit()
    db.refresh(db_rule)
    return db_rule


def delete_pricing_rule(db: Session, category_id: int, rule_id: int) -> bool:
    db_rule = get_pricing_rule(db, category_id, rule_id)
    if not db_rule:
        return False
    db.delete(db_rule)
    db.commit()
    return True


# --------------------------
# PRICE PREVIEW
# --------------------------
def calculate_category_price(db: Session, slug: str, specification_values: dict, quantity: int) -> dict:
    """
    Price a single configuration of a category, without coupon, shipping or
    tax; used by the storefront product configurator.
    """
    category = get_category_by_slug(db, slug)
    if not category or not category.is_active:
        raise HTTPException(status_code=404, detail="Category not found")

    try:
        rules = to_engine_rules(category.pricing_rules)
    except PricingError as e:
        logger.error("Category %s has an invalid pricing rule: %s", slug, e.message)
        raise HTTPException(status_code=422, detail=e.to_dict()) from e

    result = calculate(
        lines=[CartLine(product_id=category.slug, quantity=quantity, specification_values=specification_values)],
        category_rules_by_line=[rules],
        specifications_by_line=[to_specification_defs(category.specifications)],
        category_ids_by_line=[category.id],
    )
    if not result.ok:
        raise HTTPException(status_code=422, detail=result.error.to_dict())

    line = result.lines[0]
    entry = result.breakdown.entries[0]
    return {
        "category": category.slug,
        "quantity": quantity,
        "unit_price": entry.unit_price,
        "total_price": entry.amount,
        "applied_rule_id": line.applied_rule_id,
        "breakdown": [
            {"label": e.label, "value": e.amount}
            for e in result.breakdown.entries
            if e.kind in ("line", "total")
        ],
    }
