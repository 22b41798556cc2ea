# app/middleware/metrics.py
import time
from typing import Callable, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


def new_metrics() -> Dict[str, float]:
    return {
        "requests": 0,
        "total_response_ms": 0.0,
        "price_calculations": 0,
        "pricing_failures": 0,
        "total_calculation_ms": 0.0,
    }


def _metrics(app) -> Dict[str, float]:
    metrics = getattr(app.state, "metrics", None)
    if metrics is None:
        metrics = new_metrics()
        app.state.metrics = metrics
    return metrics


def record_price_calculation(request: Request, ok: bool, duration_ms: float) -> None:
    """Called by checkout routes after every engine run."""
    metrics = _metrics(request.app)
    metrics["price_calculations"] = metrics.get("price_calculations", 0) + 1
    metrics["total_calculation_ms"] = metrics.get("total_calculation_ms", 0.0) + duration_ms
    if not ok:
        metrics["pricing_failures"] = metrics.get("pricing_failures", 0) + 1


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Collects in-process metrics:
      - total requests and response time (ms)
      - price calculations / refused calculations (updated by the checkout routes)
    app.state is read lazily on each request; it may not exist while the
    middleware stack is being built.
    """

    def __init__(self, app, dispatch: Callable = None):
        super().__init__(app, dispatch=dispatch)

    async def dispatch(self, request: Request, call_next):
        metrics = _metrics(request.app)

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        # single-process counters
        metrics["requests"] = metrics.get("requests", 0) + 1
        metrics["total_response_ms"] = metrics.get("total_response_ms", 0.0) + elapsed_ms

        return response
