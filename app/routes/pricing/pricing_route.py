from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin
from app.schemas.category import PricingRuleCreate, PricingRuleResponse, PricingRuleUpdate
from app.services.catalog_service import (
    create_pricing_rule,
    delete_pricing_rule,
    get_category,
    get_pricing_rules,
    set_pricing_rule_active,
    update_pricing_rule,
)

router = APIRouter(
    prefix="/categories/{category_id}/pricing-rules",
    tags=["Pricing Rules"],
    dependencies=[Depends(require_admin)],
)


@router.post("/", response_model=PricingRuleResponse)
def create_rule(category_id: int, rule: PricingRuleCreate, db: Session = Depends(get_db)):
    return create_pricing_rule(db, category_id, rule)


@router.get("/", response_model=list[PricingRuleResponse])
def list_rules(category_id: int, active_only: bool = False, db: Session = Depends(get_db)):
    if not get_category(db, category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return get_pricing_rules(db, category_id, active_only=active_only)


@router.put("/{rule_id}", response_model=PricingRuleResponse)
def update_rule(category_id: int, rule_id: int, rule: PricingRuleUpdate, db: Session = Depends(get_db)):
    updated = update_pricing_rule(db, category_id, rule_id, rule)
    if not updated:
        raise HTTPException(status_code=404, detail="Rule not found")
    return updated


@router.post("/{rule_id}/deactivate", response_model=PricingRuleResponse)
def deactivate_rule(category_id: int, rule_id: int, db: Session = Depends(get_db)):
    rule = set_pricing_rule_active(db, category_id, rule_id, False)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.post("/{rule_id}/activate", response_model=PricingRuleResponse)
def activate_rule(category_id: int, rule_id: int, db: Session = Depends(get_db)):
    rule = set_pricing_rule_active(db, category_id, rule_id, True)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    return rule


@router.delete("/{rule_id}")
def delete_rule(category_id: int, rule_id: int, db: Session = Depends(get_db)):
    if not delete_pricing_rule(db, category_id, rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return {"message": "Rule deleted"}
