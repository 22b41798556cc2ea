import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database.connection import get_db
from app.dependencies.auth import require_admin
from app.enums.orders import OrderStatus
from app.models.category import Category
from app.models.coupon import Coupon
from app.models.order import Order
from app.schemas.system import HealthCheckResponse, SystemMetricsResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


def _uptime(request: Request, now: datetime) -> float:
    start_time = getattr(request.app.state, "start_time", now)
    return (now - start_time).total_seconds()


@router.get("/health", response_model=HealthCheckResponse)
def health_check(request: Request, db: Session = Depends(get_db)):
    """
    Lightweight public health check.
    Returns ok + DB connectivity check (SELECT 1).
    """
    now = datetime.utcnow()

    db_ok = True
    extra = {}
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check DB query failed: %s", e)
        db_ok = False
        extra["db_error"] = str(e)

    return HealthCheckResponse(
        status="ok" if db_ok else "degraded",
        now=now,
        uptime_seconds=_uptime(request, now),
        db_ok=db_ok,
        extra=extra or None,
    )


@router.get("/metrics", response_model=SystemMetricsResponse, dependencies=[Depends(require_admin)])
def system_metrics(request: Request, db: Session = Depends(get_db)):
    """
    Admin-only system metrics in JSON form.
    Uses in-process counters stored on app.state.metrics and DB-derived metrics.
    """
    now = datetime.utcnow()

    metrics = getattr(request.app.state, "metrics", None) or {}
    requests_count = int(metrics.get("requests", 0))
    total_response_ms = float(metrics.get("total_response_ms", 0.0))
    calculations = int(metrics.get("price_calculations", 0))
    total_calculation_ms = float(metrics.get("total_calculation_ms", 0.0))

    start_today = datetime.combine(now.date(), datetime.min.time())

    active_categories = db.query(func.count(Category.id)).filter(Category.is_active.is_(True)).scalar() or 0
    active_coupons = (
        db.query(func.count(Coupon.id))
        .filter(
            Coupon.is_active.is_(True),
            Coupon.valid_from <= now,
            Coupon.valid_until >= now,
        )
        .scalar()
    ) or 0
    total_orders = db.query(func.count(Order.id)).scalar() or 0
    total_orders_today = db.query(func.count(Order.id)).filter(Order.created_at >= start_today).scalar() or 0
    pending = (
        db.query(func.count(Order.id))
        .filter(Order.status == OrderStatus.PENDING_REVIEW.value)
        .scalar()
    ) or 0
    average_order_value = db.query(func.avg(Order.total)).scalar()

    return SystemMetricsResponse(
        uptime_seconds=_uptime(request, now),
        now=now,
        requests_count=requests_count,
        avg_response_ms=(total_response_ms / requests_count) if requests_count else None,
        price_calculations=calculations,
        pricing_failures=int(metrics.get("pricing_failures", 0)),
        avg_calculation_ms=(total_calculation_ms / calculations) if calculations else None,
        active_categories=int(active_categories),
        active_coupons=int(active_coupons),
        total_orders_today=int(total_orders_today),
        total_orders=int(total_orders),
        orders_pending_review=int(pending),
        average_order_value=float(average_order_value) if average_order_value is not None else None,
    )
