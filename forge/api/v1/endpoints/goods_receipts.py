"""FORGE - Goods receipt endpoints."""
from uuid import UUID

from fastapi import APIRouter, Query, status

from forge.api.deps import Context, DbSession
from forge.models.goods_receipt import ReceiptSourceType, ReceiptStatus
from forge.schemas.common import ApiResponse, Meta
from forge.schemas.goods_receipt import (
    FromAssemblyOrderRequest,
    FromPurchaseOrderRequest,
    ManualReceiptCreate,
    ReceiptResponse,
    ReceiptUpdate,
)
from forge.services.goods_receipt_service import GoodsReceiptService

router = APIRouter()


def _receipt_to_response(receipt) -> ReceiptResponse:
    return ReceiptResponse.model_validate(receipt)


@router.get("", response_model=ApiResponse[list[ReceiptResponse]])
async def list_goods_receipts(
    ctx: Context,
    db: DbSession,
    status_filter: ReceiptStatus | None = Query(None, alias="status"),
    source_type: ReceiptSourceType | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    receipts, total = await GoodsReceiptService.list_receipts(
        db, ctx, status=status_filter, source_type=source_type, page=page, page_size=page_size
    )
    return ApiResponse(
        data=[_receipt_to_response(r) for r in receipts],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.post("/from-purchase-order", response_model=ApiResponse[ReceiptResponse], status_code=status.HTTP_201_CREATED)
async def create_receipt_from_purchase_order(body: FromPurchaseOrderRequest, ctx: Context, db: DbSession):
    """Seed a DRAFT receipt with the remaining quantity of every open PO line."""
    receipt = await GoodsReceiptService.create_from_purchase_order(
        db,
        ctx,
        body.purchase_order_id,
        location_id=body.location_id,
        receipt_date=body.receipt_date,
        notes=body.notes,
    )
    return ApiResponse(data=_receipt_to_response(receipt))


@router.post("/from-assembly-order", response_model=ApiResponse[ReceiptResponse], status_code=status.HTTP_201_CREATED)
async def create_receipt_from_assembly_order(body: FromAssemblyOrderRequest, ctx: Context, db: DbSession):
    receipt = await GoodsReceiptService.create_from_assembly_order(
        db,
        ctx,
        body.assembly_order_id,
        location_id=body.location_id,
        receipt_date=body.receipt_date,
        notes=body.notes,
    )
    return ApiResponse(data=_receipt_to_response(receipt))


@router.post("/manual", response_model=ApiResponse[ReceiptResponse], status_code=status.HTTP_201_CREATED)
async def create_manual_receipt(body: ManualReceiptCreate, ctx: Context, db: DbSession):
    receipt = await GoodsReceiptService.create_manual(
        db,
        ctx,
        [item.model_dump() for item in body.items],
        location_id=body.location_id,
        supplier_name=body.supplier_name,
        receipt_date=body.receipt_date,
        notes=body.notes,
    )
    return ApiResponse(data=_receipt_to_response(receipt))


@router.get("/{receipt_id}", response_model=ApiResponse[ReceiptResponse])
async def get_goods_receipt(receipt_id: UUID, ctx: Context, db: DbSession):
    receipt = await GoodsReceiptService.require_receipt(db, ctx, receipt_id)
    return ApiResponse(data=_receipt_to_response(receipt))


@router.put("/{receipt_id}", response_model=ApiResponse[ReceiptResponse])
async def update_goods_receipt(receipt_id: UUID, body: ReceiptUpdate, ctx: Context, db: DbSession):
    receipt = await GoodsReceiptService.update_receipt(
        db,
        ctx,
        receipt_id,
        location_id=body.location_id,
        supplier_name=body.supplier_name,
        receipt_date=body.receipt_date,
        notes=body.notes,
        allow_over_receipt=body.allow_over_receipt,
        items=[item.model_dump() for item in body.items] if body.items else None,
    )
    return ApiResponse(data=_receipt_to_response(receipt))


@router.post("/{receipt_id}/confirm", response_model=ApiResponse[ReceiptResponse])
async def confirm_goods_receipt(receipt_id: UUID, ctx: Context, db: DbSession):
    """
    Apply the receipt to stock and to its source document.
    A second confirm answers 409 already_confirmed and credits nothing.
    """
    receipt = await GoodsReceiptService.confirm(db, ctx, receipt_id)
    return ApiResponse(data=_receipt_to_response(receipt))


@router.post("/{receipt_id}/cancel", response_model=ApiResponse[ReceiptResponse])
async def cancel_goods_receipt(receipt_id: UUID, ctx: Context, db: DbSession):
    receipt = await GoodsReceiptService.cancel(db, ctx, receipt_id)
    return ApiResponse(data=_receipt_to_response(receipt))
