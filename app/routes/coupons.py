from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin, require_auth
from app.models.user import User
from app.schemas.coupon import (
    CouponCreate,
    CouponResponse,
    CouponUpdate,
    CouponUsageResponse,
    CouponValidateRequest,
    CouponValidateResponse,
)
from app.services.coupon_service import (
    create_coupon,
    deactivate_coupon,
    get_coupon,
    get_user_coupon_usages,
    list_available_coupons,
    list_coupons,
    update_coupon,
    validate_coupon,
)

router = APIRouter(prefix="/coupons", tags=["Coupons"])


# PUBLIC / CUSTOMER
@router.get("/available", response_model=list[CouponResponse])
def available(db: Session = Depends(get_db)):
    return list_available_coupons(db)


@router.post("/validate", response_model=CouponValidateResponse)
def validate(body: CouponValidateRequest, db: Session = Depends(get_db), user: User = Depends(require_auth)):
    result = validate_coupon(db, body.code, body.subtotal, user.id)
    if not result["valid"]:
        raise HTTPException(
            status_code=400,
            detail={"code": result["code"], "reason": result["reason"], "message": result["message"]},
        )
    return result


@router.get("/my-coupons", response_model=list[CouponUsageResponse])
def my_coupons(db: Session = Depends(get_db), user: User = Depends(require_auth)):
    return get_user_coupon_usages(db, user.id)


# ADMIN
@router.post("/", response_model=CouponResponse, dependencies=[Depends(require_admin)])
def create(data: CouponCreate, db: Session = Depends(get_db)):
    return create_coupon(db, data)


@router.get("/", response_model=list[CouponResponse], dependencies=[Depends(require_admin)])
def list_all(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    return list_coupons(db, skip=skip, limit=limit)


@router.get("/{coupon_id}", response_model=CouponResponse, dependencies=[Depends(require_admin)])
def get(coupon_id: int, db: Session = Depends(get_db)):
    coupon = get_coupon(db, coupon_id)
    if not coupon:
        raise HTTPException(404, "Coupon not found")
    return coupon


@router.put("/{coupon_id}", response_model=CouponResponse, dependencies=[Depends(require_admin)])
def update(coupon_id: int, data: CouponUpdate, db: Session = Depends(get_db)):
    coupon = update_coupon(db, coupon_id, data)
    if not coupon:
        raise HTTPException(404, "Coupon not found")
    return coupon


@router.delete("/{coupon_id}", response_model=CouponResponse, dependencies=[Depends(require_admin)])
def deactivate(coupon_id: int, db: Session = Depends(get_db)):
    coupon = deactivate_coupon(db, coupon_id)
    if not coupon:
        raise HTTPException(404, "Coupon not found")
    return coupon
