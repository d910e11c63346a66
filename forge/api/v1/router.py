"""FORGE - API v1 router aggregation."""
from fastapi import APIRouter

from forge.api.v1.endpoints import assembly_orders, boms, goods_receipts, purchase_orders, stock

api_router = APIRouter()

api_router.include_router(boms.router, prefix="/boms", tags=["boms"])
api_router.include_router(assembly_orders.router, prefix="/assembly-orders", tags=["assembly-orders"])
api_router.include_router(purchase_orders.router, prefix="/purchase-orders", tags=["purchase-orders"])
api_router.include_router(goods_receipts.router, prefix="/goods-receipts", tags=["goods-receipts"])
api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
