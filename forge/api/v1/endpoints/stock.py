"""FORGE - Stock balance and ledger history endpoints."""
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Query

from forge.api.deps import Context, DbSession
from forge.models.stock import StockEventType
from forge.schemas.common import ApiResponse, Meta
from forge.schemas.stock import StockAdjustRequest, StockBalanceResponse, StockLedgerResponse
from forge.services.catalog_service import CatalogService
from forge.services.ledger_service import LedgerService

router = APIRouter()


def _balance_response(product_id: UUID, location_id: UUID, balance) -> StockBalanceResponse:
    if balance is None:
        zero = Decimal("0")
        return StockBalanceResponse(
            product_id=product_id, location_id=location_id, on_hand=zero, reserved=zero, available=zero
        )
    return StockBalanceResponse(
        product_id=balance.product_id,
        location_id=balance.location_id,
        on_hand=balance.on_hand,
        reserved=balance.reserved,
        available=balance.available,
    )


@router.get("/balance", response_model=ApiResponse[StockBalanceResponse])
async def get_stock_balance(
    ctx: Context,
    db: DbSession,
    product_id: UUID = Query(...),
    location_id: UUID = Query(...),
):
    """Live on-hand, reserved and available quantity for one product at one location."""
    await CatalogService.require_product(db, ctx, product_id)
    await CatalogService.require_location(db, ctx, location_id)
    balance = await LedgerService.get_balance(db, ctx, product_id, location_id)
    return ApiResponse(data=_balance_response(product_id, location_id, balance))


@router.post("/adjust", response_model=ApiResponse[StockBalanceResponse])
async def adjust_stock(body: StockAdjustRequest, ctx: Context, db: DbSession):
    await CatalogService.require_product(db, ctx, body.product_id)
    await CatalogService.require_location(db, ctx, body.location_id)
    balance = await LedgerService.adjust(
        db, ctx, body.product_id, body.location_id, body.delta, notes=body.notes
    )
    return ApiResponse(data=_balance_response(body.product_id, body.location_id, balance))


@router.get("/history", response_model=ApiResponse[list[StockLedgerResponse]])
async def get_stock_history(
    ctx: Context,
    db: DbSession,
    product_id: UUID | None = Query(None),
    location_id: UUID | None = Query(None),
    event_type: StockEventType | None = Query(None),
    reference_id: UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    """Paginated ledger events, newest first."""
    events, total = await LedgerService.get_transaction_history(
        db,
        ctx,
        product_id=product_id,
        location_id=location_id,
        event_type=event_type,
        reference_id=reference_id,
        page=page,
        page_size=page_size,
    )
    return ApiResponse(
        data=[StockLedgerResponse.model_validate(e) for e in events],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )
