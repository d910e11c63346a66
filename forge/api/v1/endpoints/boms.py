"""FORGE - BOM endpoints."""
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Query, status

from forge.api.deps import Context, DbSession
from forge.models.bom import BOMStatus
from forge.schemas.bom import (
    AvailabilityResponse,
    BOMCreate,
    BOMResponse,
    BOMUpdate,
    ComponentAvailabilityResponse,
)
from forge.schemas.common import ApiResponse, Meta
from forge.services.bom_service import BOMService
from forge.services.materials import AvailabilityReport

router = APIRouter()


def _report_to_response(report: AvailabilityReport) -> AvailabilityResponse:
    return AvailabilityResponse(
        order_number=report.order_number,
        is_fully_available=report.is_fully_available,
        lines=[
            ComponentAvailabilityResponse(
                component_id=line.component_id,
                required=line.required,
                available=line.available,
                shortage=line.shortage,
                status=line.status.value,
            )
            for line in report.lines
        ],
    )


@router.get("", response_model=ApiResponse[list[BOMResponse]])
async def list_boms(
    ctx: Context,
    db: DbSession,
    product_id: UUID | None = Query(None),
    status_filter: BOMStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    """List BOMs, or every non-archived version of one product."""
    if product_id:
        boms = await BOMService.list_for_product(db, ctx, product_id)
        return ApiResponse(
            data=[BOMResponse.model_validate(b) for b in boms],
            meta=Meta(page=1, page_size=len(boms), total_count=len(boms)),
        )
    boms, total = await BOMService.list_boms(db, ctx, status=status_filter, page=page, page_size=page_size)
    return ApiResponse(
        data=[BOMResponse.model_validate(b) for b in boms],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.post("", response_model=ApiResponse[BOMResponse], status_code=status.HTTP_201_CREATED)
async def create_bom(body: BOMCreate, ctx: Context, db: DbSession):
    bom = await BOMService.create_bom(
        db,
        ctx,
        body.product_id,
        [item.model_dump() for item in body.items],
        version=body.version,
        is_default=body.is_default,
        bom_type=body.bom_type,
        status=body.status,
        output_quantity=body.output_quantity,
        description=body.description,
        notes=body.notes,
    )
    return ApiResponse(data=BOMResponse.model_validate(bom))


@router.get("/{bom_id}", response_model=ApiResponse[BOMResponse])
async def get_bom(bom_id: UUID, ctx: Context, db: DbSession):
    bom = await BOMService.require_bom(db, ctx, bom_id)
    return ApiResponse(data=BOMResponse.model_validate(bom))


@router.put("/{bom_id}", response_model=ApiResponse[BOMResponse])
async def update_bom(bom_id: UUID, body: BOMUpdate, ctx: Context, db: DbSession):
    """Update a BOM. Changing the version creates a new BOM and returns it."""
    fields = body.model_dump(exclude_unset=True, exclude={"version", "items", "is_default"})
    bom = await BOMService.update_bom(
        db,
        ctx,
        bom_id,
        version=body.version,
        items=[item.model_dump() for item in body.items] if body.items is not None else None,
        is_default=body.is_default,
        **fields,
    )
    return ApiResponse(data=BOMResponse.model_validate(bom))


@router.post("/{bom_id}/set-default", response_model=ApiResponse[BOMResponse])
async def set_default_bom(bom_id: UUID, ctx: Context, db: DbSession):
    bom = await BOMService.set_default(db, ctx, bom_id)
    return ApiResponse(data=BOMResponse.model_validate(bom))


@router.post("/{bom_id}/archive", response_model=ApiResponse[BOMResponse])
async def archive_bom(bom_id: UUID, ctx: Context, db: DbSession):
    bom = await BOMService.archive_bom(db, ctx, bom_id)
    return ApiResponse(data=BOMResponse.model_validate(bom))


@router.get("/{bom_id}/availability", response_model=ApiResponse[AvailabilityResponse])
async def bom_availability(
    bom_id: UUID,
    ctx: Context,
    db: DbSession,
    quantity: Decimal = Query(..., gt=0),
    location_id: UUID = Query(...),
):
    """Advisory component availability for producing ``quantity`` units at a location."""
    report = await BOMService.check_availability(db, ctx, bom_id, quantity, location_id)
    return ApiResponse(data=_report_to_response(report))
