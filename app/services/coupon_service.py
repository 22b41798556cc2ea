import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.coupon import Coupon, CouponUsage
from app.schemas.coupon import CouponCreate, CouponUpdate
from app.services.pricing_engine.coupon_evaluator import CouponRejection, evaluate
from app.services.pricing_engine.order_calculator import normalize_code
from app.services.pricing_engine.types import CouponTerms, CouponUsageCounts, quantize_money

logger = logging.getLogger(__name__)


def to_coupon_terms(coupon: Coupon) -> CouponTerms:
    return CouponTerms(
        coupon_id=coupon.id,
        code=coupon.code,
        discount_type=coupon.discount_type,
        discount_value=Decimal(coupon.discount_value),
        min_purchase_amount=(
            Decimal(coupon.min_purchase_amount) if coupon.min_purchase_amount is not None else None
        ),
        max_discount_amount=(
            Decimal(coupon.max_discount_amount) if coupon.max_discount_amount is not None else None
        ),
        usage_limit=coupon.usage_limit,
        usage_limit_per_user=coupon.usage_limit_per_user,
        valid_from=coupon.valid_from,
        valid_until=coupon.valid_until,
        is_active=bool(coupon.is_active),
    )


# ---------- CRUD ----------

def create_coupon(db: Session, data: CouponCreate) -> Coupon:
    code = normalize_code(data.code)
    if get_coupon_by_code(db, code):
        raise HTTPException(status_code=400, detail=f"Coupon {code} already exists")

    payload = data.model_dump()
    payload["code"] = code
    payload["discount_type"] = data.discount_type.value
    coupon = Coupon(**payload)
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


def get_coupon(db: Session, coupon_id: int) -> Optional[Coupon]:
    return db.query(Coupon).filter(Coupon.id == coupon_id).first()


def get_coupon_by_code(db: Session, code: str) -> Optional[Coupon]:
    code = normalize_code(code)
    if not code:
        return None
    return db.query(Coupon).filter(func.upper(Coupon.code) == code).first()


def list_coupons(db: Session, skip: int = 0, limit: int = 100) -> List[Coupon]:
    return db.query(Coupon).order_by(Coupon.id).offset(skip).limit(limit).all()


def list_available_coupons(db: Session, now: Optional[datetime] = None) -> List[Coupon]:
    now = now or datetime.utcnow()
    return (
        db.query(Coupon)
        .filter(
            Coupon.is_active.is_(True),
            Coupon.valid_from <= now,
            Coupon.valid_until >= now,
        )
        .order_by(Coupon.valid_until.asc())
        .all()
    )


def update_coupon(db: Session, coupon_id: int, data: CouponUpdate) -> Optional[Coupon]:
    coupon = get_coupon(db, coupon_id)
    if not coupon:
        return None

    code = normalize_code(data.code)
    other = get_coupon_by_code(db, code)
    if other and other.id != coupon.id:
        raise HTTPException(status_code=400, detail=f"Coupon {code} already exists")

    for key, value in data.model_dump().items():
        setattr(coupon, key, value)
    coupon.code = code
    coupon.discount_type = data.discount_type.value

    db.commit()
    db.refresh(coupon)
    return coupon


def deactivate_coupon(db: Session, coupon_id: int) -> Optional[Coupon]:
    coupon = get_coupon(db, coupon_id)
    if not coupon:
        return None
    coupon.is_active = False
    db.commit()
    db.refresh(coupon)
    return coupon


# ---------- USAGE LEDGER ----------

def get_usage_counts(db: Session, coupon_id: int, user_id: Optional[int]) -> CouponUsageCounts:
    global_count = (
        db.query(func.count(CouponUsage.id))
        .filter(CouponUsage.coupon_id == coupon_id)
        .scalar()
    ) or 0

    per_user_count = 0
    if user_id is not None:
        per_user_count = (
            db.query(func.count(CouponUsage.id))
            .filter(
                CouponUsage.coupon_id == coupon_id,
                CouponUsage.user_id == user_id,
            )
            .scalar()
        ) or 0

    return CouponUsageCounts(global_count=int(global_count), per_user_count=int(per_user_count))


def get_user_coupon_usages(db: Session, user_id: int) -> List[dict]:
    rows = (
        db.query(CouponUsage, Coupon.code)
        .join(Coupon, CouponUsage.coupon_id == Coupon.id)
        .filter(CouponUsage.user_id == user_id)
        .order_by(CouponUsage.used_at.desc())
        .all()
    )
    return [
        {
            "id": usage.id,
            "coupon_id": usage.coupon_id,
            "order_id": usage.order_id,
            "used_at": usage.used_at,
            "code": code,
        }
        for usage, code in rows
    ]


def record_coupon_usage(db: Session, coupon: Coupon, user_id: int, order_id: int) -> CouponUsage:
    """
    Append a usage row inside the caller's transaction, then re-count.

    The counts the evaluator saw may be stale when two checkouts race on the
    same coupon; if the ledger now exceeds a limit the caller must roll back.
    Does not commit.
    """
    usage = CouponUsage(
        coupon_id=coupon.id,
        user_id=user_id,
        order_id=order_id,
        used_at=datetime.utcnow(),
    )
    db.add(usage)
    db.flush()

    counts = get_usage_counts(db, coupon.id, user_id)
    if coupon.usage_limit is not None and counts.global_count > coupon.usage_limit:
        raise HTTPException(status_code=409, detail=CouponRejection.GLOBAL_LIMIT_REACHED.message)
    if counts.per_user_count > coupon.usage_limit_per_user:
        raise HTTPException(status_code=409, detail=CouponRejection.PER_USER_LIMIT_REACHED.message)

    return usage


# ---------- VALIDATION ----------

def validate_coupon(
    db: Session,
    code: str,
    subtotal: Decimal,
    user_id: Optional[int],
    now: Optional[datetime] = None,
) -> dict:
    """Check a code against a cart subtotal without touching the ledger."""
    now = now or datetime.utcnow()
    normalized = normalize_code(code)
    coupon = get_coupon_by_code(db, normalized)
    if not coupon:
        reason = CouponRejection.NOT_FOUND
        return {"code": normalized, "valid": False, "reason": reason.value, "message": reason.message}

    evaluation = evaluate(
        to_coupon_terms(coupon),
        Decimal(subtotal),
        get_usage_counts(db, coupon.id, user_id),
        now,
    )
    if not evaluation.valid:
        return {
            "code": normalized,
            "valid": False,
            "reason": evaluation.reason.value,
            "message": evaluation.reason.message,
            "coupon": coupon,
        }

    return {
        "code": normalized,
        "valid": True,
        "discount_amount": quantize_money(evaluation.discount_amount),
        "message": "Coupon applied",
        "coupon": coupon,
    }
