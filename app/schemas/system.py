from pydantic import BaseModel
from typing import Optional, Dict, Any
from datetime import datetime


class HealthCheckResponse(BaseModel):
    status: str
    now: datetime
    uptime_seconds: float
    db_ok: bool
    extra: Optional[Dict[str, Any]] = None


class SystemMetricsResponse(BaseModel):
    uptime_seconds: float
    now: datetime

    # middleware counters
    requests_count: int
    avg_response_ms: Optional[float] = None

    # pricing engine counters
    price_calculations: int
    pricing_failures: int
    avg_calculation_ms: Optional[float] = None

    # DB metrics
    active_categories: int
    active_coupons: int
    total_orders_today: int
    total_orders: int
    orders_pending_review: int
    average_order_value: Optional[float] = None
