import math
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin, require_auth
from app.enums.orders import OrderStatus
from app.models.user import User
from app.schemas.checkout import (
    OrderCreate,
    OrderPageMeta,
    OrderPageResponse,
    OrderResponse,
    OrderStatusUpdate,
)
from app.services.order_service import (
    MAX_PAGE_SIZE,
    create_order,
    get_order,
    list_orders,
    list_user_orders,
    update_order_status,
)

router = APIRouter(prefix="/orders", tags=["Orders"])
admin_router = APIRouter(prefix="/admin/orders", tags=["Admin Orders"], dependencies=[Depends(require_admin)])


def _page(items, total: int, page: int, page_size: int) -> OrderPageResponse:
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))
    return OrderPageResponse(
        items=items,
        meta=OrderPageMeta(
            total=total,
            page=max(page, 1),
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        ),
    )


# CUSTOMER
@router.post("/", response_model=OrderResponse, status_code=201)
def place_order(
    data: OrderCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(require_auth),
):
    """Re-prices the cart server side; client totals are never trusted."""
    return create_order(db, user, data, background_tasks=background_tasks)


@router.get("/", response_model=OrderPageResponse)
def my_orders(
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    user: User = Depends(require_auth),
):
    items, total = list_user_orders(db, user.id, page=page, page_size=page_size)
    return _page(items, total, page, page_size)


@router.get("/{order_id}", response_model=OrderResponse)
def get_my_order(order_id: int, db: Session = Depends(get_db), user: User = Depends(require_auth)):
    order = get_order(db, order_id, user_id=user.id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


# ADMIN
@admin_router.get("/", response_model=OrderPageResponse)
def all_orders(
    status: Optional[OrderStatus] = None,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
):
    items, total = list_orders(db, status=status, page=page, page_size=page_size)
    return _page(items, total, page, page_size)


@admin_router.get("/{order_id}", response_model=OrderResponse)
def get_any_order(order_id: int, db: Session = Depends(get_db)):
    order = get_order(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@admin_router.patch("/{order_id}/status", response_model=OrderResponse)
def change_status(order_id: int, body: OrderStatusUpdate, db: Session = Depends(get_db)):
    order = update_order_status(db, order_id, body.status, body.comment)
    if not order:
        raise HTTPException(404, "Order not found")
    return order
