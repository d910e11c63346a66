"""FORGE - Assembly order endpoints."""
from uuid import UUID

from fastapi import APIRouter, Query, status

from forge.api.deps import Context, DbSession
from forge.api.v1.endpoints.boms import _report_to_response
from forge.models.assembly import AssemblyOrderStatus
from forge.schemas.assembly_order import (
    AssemblyOrderCreate,
    AssemblyOrderResponse,
    AssemblyOrderUpdate,
    ProductionReport,
    ReleaseRequest,
)
from forge.schemas.bom import AvailabilityResponse
from forge.schemas.common import ApiResponse, Meta
from forge.services.assembly_service import AssemblyService

router = APIRouter()


def _order_to_response(order) -> AssemblyOrderResponse:
    return AssemblyOrderResponse.model_validate(order)


@router.get("", response_model=ApiResponse[list[AssemblyOrderResponse]])
async def list_assembly_orders(
    ctx: Context,
    db: DbSession,
    status_filter: AssemblyOrderStatus | None = Query(None, alias="status"),
    product_id: UUID | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    orders, total = await AssemblyService.list_orders(
        db, ctx, status=status_filter, product_id=product_id, page=page, page_size=page_size
    )
    return ApiResponse(
        data=[_order_to_response(o) for o in orders],
        meta=Meta(page=page, page_size=page_size, total_count=total),
    )


@router.get("/receivable", response_model=ApiResponse[list[AssemblyOrderResponse]])
async def list_receivable_assembly_orders(ctx: Context, db: DbSession):
    """Orders whose output can still be received through a goods receipt."""
    orders = await AssemblyService.list_receivable_orders(db, ctx)
    return ApiResponse(data=[_order_to_response(o) for o in orders])


@router.post("", response_model=ApiResponse[AssemblyOrderResponse], status_code=status.HTTP_201_CREATED)
async def create_assembly_order(body: AssemblyOrderCreate, ctx: Context, db: DbSession):
    order = await AssemblyService.create(
        db,
        ctx,
        body.product_id,
        body.quantity_planned,
        body.production_location_id,
        bom_id=body.bom_id,
        output_location_id=body.output_location_id,
        priority=body.priority,
        planned_start_date=body.planned_start_date,
        planned_completion_date=body.planned_completion_date,
        description=body.description,
        notes=body.notes,
        special_instructions=body.special_instructions,
    )
    return ApiResponse(data=_order_to_response(order))


@router.get("/{order_id}", response_model=ApiResponse[AssemblyOrderResponse])
async def get_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    order = await AssemblyService.require_order(db, ctx, order_id)
    return ApiResponse(data=_order_to_response(order))


@router.put("/{order_id}", response_model=ApiResponse[AssemblyOrderResponse])
async def update_assembly_order(order_id: UUID, body: AssemblyOrderUpdate, ctx: Context, db: DbSession):
    order = await AssemblyService.update(db, ctx, order_id, **body.model_dump(exclude_unset=True))
    return ApiResponse(data=_order_to_response(order))


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    await AssemblyService.delete(db, ctx, order_id)


@router.post("/{order_id}/plan", response_model=ApiResponse[AssemblyOrderResponse])
async def plan_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    order = await AssemblyService.plan(db, ctx, order_id)
    return ApiResponse(data=_order_to_response(order))


@router.get("/{order_id}/availability", response_model=ApiResponse[AvailabilityResponse])
async def check_assembly_order_availability(order_id: UUID, ctx: Context, db: DbSession):
    """Advisory shortage report. Reserves nothing."""
    report = await AssemblyService.check_availability(db, ctx, order_id)
    return ApiResponse(data=_report_to_response(report))


@router.post("/{order_id}/release", response_model=ApiResponse[AssemblyOrderResponse])
async def release_assembly_order(order_id: UUID, body: ReleaseRequest, ctx: Context, db: DbSession):
    """
    Reserve components and release the order.
    A shortage is rejected with 409 and the shortage list unless allow_shortage is set.
    """
    order = await AssemblyService.release(db, ctx, order_id, allow_shortage=body.allow_shortage)
    return ApiResponse(data=_order_to_response(order))


@router.post("/{order_id}/start", response_model=ApiResponse[AssemblyOrderResponse])
async def start_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    order = await AssemblyService.start_production(db, ctx, order_id)
    return ApiResponse(data=_order_to_response(order))


@router.post("/{order_id}/report-production", response_model=ApiResponse[AssemblyOrderResponse])
async def report_production(order_id: UUID, body: ProductionReport, ctx: Context, db: DbSession):
    order = await AssemblyService.report_production(db, ctx, order_id, body.quantity)
    return ApiResponse(data=_order_to_response(order))


@router.post("/{order_id}/complete", response_model=ApiResponse[AssemblyOrderResponse])
async def complete_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    order = await AssemblyService.complete(db, ctx, order_id)
    return ApiResponse(data=_order_to_response(order))


@router.post("/{order_id}/cancel", response_model=ApiResponse[AssemblyOrderResponse])
async def cancel_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    order = await AssemblyService.cancel(db, ctx, order_id)
    return ApiResponse(data=_order_to_response(order))


@router.post("/{order_id}/hold", response_model=ApiResponse[AssemblyOrderResponse])
async def hold_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    order = await AssemblyService.hold(db, ctx, order_id)
    return ApiResponse(data=_order_to_response(order))


@router.post("/{order_id}/resume", response_model=ApiResponse[AssemblyOrderResponse])
async def resume_assembly_order(order_id: UUID, ctx: Context, db: DbSession):
    order = await AssemblyService.resume(db, ctx, order_id)
    return ApiResponse(data=_order_to_response(order))
