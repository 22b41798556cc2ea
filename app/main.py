import logging
from datetime import datetime

from fastapi import FastAPI

from app.core.config import settings
from app.database.connection import Base, engine
from app.middleware.metrics import MetricsMiddleware, new_metrics
from app.routes import system
from app.routes.auth import router as auth_router
from app.routes.categories import router as category_router
from app.routes.coupons import router as coupon_router
from app.routes.orders import admin_router as admin_order_router
from app.routes.orders import router as order_router
from app.routes.pricing.calculate_price import router as calculate_price_router
from app.routes.pricing.pricing_route import router as pricing_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Category Pricing & Checkout Service")

app.add_middleware(MetricsMiddleware)


app.include_router(auth_router)
app.include_router(category_router)
app.include_router(pricing_router)
app.include_router(calculate_price_router)
app.include_router(coupon_router)
app.include_router(order_router)
app.include_router(admin_order_router)
app.include_router(system.router)


@app.on_event("startup")
async def startup_event():
    app.state.start_time = datetime.utcnow()
    app.state.metrics = new_metrics()
