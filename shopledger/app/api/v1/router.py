from fastapi import APIRouter

from shopledger.app.api.v1.endpoints.health import router as health_router
from shopledger.app.api.v1.endpoints.suppliers import router as suppliers_router
from shopledger.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from shopledger.app.api.v1.endpoints.purchase_returns import router as purchase_returns_router
from shopledger.app.api.v1.endpoints.stock import router as stock_router
from shopledger.app.api.v1.endpoints.stock_movements import router as stock_movements_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(purchase_returns_router, tags=["purchase_returns"])
router.include_router(stock_router, tags=["stock"])
router.include_router(stock_movements_router, tags=["stock_movements"])
