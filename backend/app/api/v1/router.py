from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.cron import router as cron_router
from backend.app.api.v1.endpoints.generated_orders import router as generated_orders_router
from backend.app.api.v1.endpoints.stock_movements import router as stock_movements_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(cron_router, tags=["cron"])
router.include_router(generated_orders_router, tags=["generated_orders"])
router.include_router(stock_movements_router, tags=["stock_movements"])
