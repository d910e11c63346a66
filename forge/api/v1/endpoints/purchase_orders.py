"""FORGE - Purchase Order endpoints."""
from uuid import UUID

from fastapi import APIRouter, Query, status

from forge.api.deps import Context, DbSession
from forge.models.purchase_order import POStatus
from forge.schemas.common import ApiResponse, Meta
from forge.schemas.purchase_order import POCreate, POResponse
from forge.services.purchase_order_service import PurchaseOrderService

router = APIRouter()


def _po_to_response(po) -> POResponse:
    return POResponse.model_validate(po)


@router.get("", response_model=ApiResponse[list[POResponse]])
async def list_purchase_orders(
    ctx: Context,
    db: DbSession,
    status_filter: POStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
):
    """List Purchase Orders for the current tenant."""
    pos, total = await PurchaseOrderService.list_pos(db, ctx, status=status_filter, page=page, page_size=page_size)
    return ApiResponse(
        data=[_po_to_response(po) for po in pos],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.get("/receivable", response_model=ApiResponse[list[POResponse]])
async def list_receivable_purchase_orders(ctx: Context, db: DbSession):
    """Purchase Orders with lines still awaiting goods."""
    pos = await PurchaseOrderService.list_receivable_pos(db, ctx)
    return ApiResponse(data=[_po_to_response(po) for po in pos])


@router.post("", response_model=ApiResponse[POResponse], status_code=status.HTTP_201_CREATED)
async def create_purchase_order(body: POCreate, ctx: Context, db: DbSession):
    """Create a new Purchase Order in DRAFT status."""
    po = await PurchaseOrderService.create_po(
        db,
        ctx,
        supplier_name=body.supplier_name,
        location_id=body.location_id,
        lines=[line.model_dump() for line in body.lines],
        notes=body.notes,
    )
    return ApiResponse(data=_po_to_response(po))


@router.get("/{po_id}", response_model=ApiResponse[POResponse])
async def get_purchase_order(po_id: UUID, ctx: Context, db: DbSession):
    """Get a single Purchase Order with all lines."""
    po = await PurchaseOrderService.require_po(db, ctx, po_id)
    return ApiResponse(data=_po_to_response(po))


@router.post("/{po_id}/place", response_model=ApiResponse[POResponse])
async def place_purchase_order(po_id: UUID, ctx: Context, db: DbSession):
    po = await PurchaseOrderService.place_po(db, ctx, po_id)
    return ApiResponse(data=_po_to_response(po))


@router.post("/{po_id}/cancel", response_model=ApiResponse[POResponse])
async def cancel_purchase_order(po_id: UUID, ctx: Context, db: DbSession):
    """Cancel a Purchase Order (only DRAFT or ORDERED)."""
    po = await PurchaseOrderService.cancel_po(db, ctx, po_id)
    return ApiResponse(data=_po_to_response(po))
