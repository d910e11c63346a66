"""FORGE - PurchaseOrderService: purchase orders as goods receipt sources."""
import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from forge.config import get_settings
from forge.core.context import CommandContext
from forge.db.session import transaction
from forge.exceptions import NotFoundError, StateConflictError, ValidationError
from forge.models.purchase_order import POStatus, PurchaseOrder, PurchaseOrderLine
from forge.services.catalog_service import CatalogService
from forge.services.sequence_service import next_number, sequence_key
from forge.services.state_machine import PURCHASE_ORDER_FLOW

logger = logging.getLogger(__name__)

RECEIVABLE_STATUSES = (POStatus.ORDERED, POStatus.PARTIAL)


def purchase_order_key(po_id: UUID) -> tuple:
    return ("purchase_order", str(po_id))


class PurchaseOrderService:
    """CRUD + receipt bookkeeping for Purchase Orders."""

    @staticmethod
    async def create_po(
        db: AsyncSession,
        ctx: CommandContext,
        supplier_name: str,
        location_id: UUID,
        lines: list[dict],
        notes: str | None = None,
    ) -> PurchaseOrder:
        """Create a new PO with lines in DRAFT status."""
        if not lines:
            raise ValidationError("A purchase order needs at least one line")
        location = await CatalogService.require_location(db, ctx, location_id)
        if not location.is_purchasable_location:
            raise ValidationError(
                f"Location {location.code} does not accept purchased goods",
                field_errors=[{"field": "location_id", "message": "not a purchasable location"}],
            )
        po_lines = []
        for idx, line_data in enumerate(lines):
            product = await CatalogService.require_product(db, ctx, line_data["product_id"])
            if not product.is_purchasable:
                raise ValidationError(
                    f"Product {product.sku} is not purchasable",
                    field_errors=[{"field": f"lines[{idx}].product_id", "message": "not purchasable"}],
                )
            quantity = Decimal(str(line_data["quantity_ordered"]))
            unit_price = Decimal(str(line_data.get("unit_price", 0)))
            if quantity <= 0:
                raise ValidationError(
                    "Ordered quantity must be greater than zero",
                    field_errors=[{"field": f"lines[{idx}].quantity_ordered", "message": "must be > 0"}],
                )
            if unit_price < 0:
                raise ValidationError(
                    "Unit price cannot be negative",
                    field_errors=[{"field": f"lines[{idx}].unit_price", "message": "must be >= 0"}],
                )
            po_lines.append(
                PurchaseOrderLine(
                    product_id=product.id,
                    quantity_ordered=quantity,
                    quantity_received=Decimal("0"),
                    unit_price=unit_price,
                )
            )

        async with transaction(db, [sequence_key(ctx.tenant_id, "purchase_order")]):
            number = await next_number(db, ctx, "purchase_order", get_settings().PURCHASE_ORDER_NUMBER_PREFIX)
            po = PurchaseOrder(
                tenant_id=ctx.tenant_id,
                order_number=number,
                supplier_name=supplier_name,
                location_id=location_id,
                status=POStatus.DRAFT,
                notes=notes,
                created_by=ctx.actor_id,
                lines=po_lines,
            )
            db.add(po)
            await db.flush()
        logger.info("Purchase order %s created for %s", number, supplier_name)
        return await PurchaseOrderService.require_po(db, ctx, po.id)

    @staticmethod
    async def list_pos(
        db: AsyncSession,
        ctx: CommandContext,
        status: POStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[PurchaseOrder], int]:
        """Paginated list of POs for tenant."""
        q = select(PurchaseOrder).where(PurchaseOrder.tenant_id == ctx.tenant_id)
        count_q = select(func.count(PurchaseOrder.id)).where(PurchaseOrder.tenant_id == ctx.tenant_id)
        if status:
            q = q.where(PurchaseOrder.status == status)
            count_q = count_q.where(PurchaseOrder.status == status)
        total = (await db.execute(count_q)).scalar_one()
        q = q.order_by(PurchaseOrder.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await db.execute(q)
        return list(result.scalars().all()), total

    @staticmethod
    async def list_receivable_pos(db: AsyncSession, ctx: CommandContext) -> list[PurchaseOrder]:
        """POs with at least one line still expecting goods."""
        result = await db.execute(
            select(PurchaseOrder)
            .where(
                PurchaseOrder.tenant_id == ctx.tenant_id,
                PurchaseOrder.status.in_(RECEIVABLE_STATUSES),
                PurchaseOrder.lines.any(PurchaseOrderLine.quantity_received < PurchaseOrderLine.quantity_ordered),
            )
            .order_by(PurchaseOrder.order_number)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_po(db: AsyncSession, ctx: CommandContext, po_id: UUID) -> PurchaseOrder | None:
        """Get single PO with lines (selectin loaded)."""
        result = await db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id, PurchaseOrder.tenant_id == ctx.tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_po(db: AsyncSession, ctx: CommandContext, po_id: UUID) -> PurchaseOrder:
        po = await PurchaseOrderService.get_po(db, ctx, po_id)
        if po is None:
            raise NotFoundError("Purchase order", po_id)
        return po

    @staticmethod
    def remaining_to_receive(line: PurchaseOrderLine) -> Decimal:
        return line.remaining_to_receive

    @staticmethod
    async def place_po(db: AsyncSession, ctx: CommandContext, po_id: UUID) -> PurchaseOrder:
        """Send a DRAFT PO to the supplier (DRAFT -> ORDERED)."""
        async with transaction(db, [purchase_order_key(po_id)]):
            po = await PurchaseOrderService.require_po(db, ctx, po_id)
            PURCHASE_ORDER_FLOW.check(po.status, POStatus.ORDERED, po.order_number)
            po.status = POStatus.ORDERED
        logger.info("Purchase order %s: DRAFT -> ORDERED", po.order_number)
        return po

    @staticmethod
    async def cancel_po(db: AsyncSession, ctx: CommandContext, po_id: UUID) -> PurchaseOrder:
        """Cancel a PO. Only allowed in DRAFT or ORDERED status."""
        async with transaction(db, [purchase_order_key(po_id)]):
            po = await PurchaseOrderService.require_po(db, ctx, po_id)
            previous = po.status
            PURCHASE_ORDER_FLOW.check(previous, POStatus.CANCELLED, po.order_number)
            po.status = POStatus.CANCELLED
        logger.info("Purchase order %s: %s -> CANCELLED", po.order_number, previous.value)
        return po

    @staticmethod
    async def apply_receipt(
        db: AsyncSession,
        ctx: CommandContext,
        po_id: UUID,
        line_id: UUID,
        quantity: Decimal,
        *,
        allow_over_receipt: bool = False,
    ) -> PurchaseOrderLine:
        """
        Record goods received against a PO line and recalculate the PO status.

        Only the goods receipt confirm step calls this, inside its transaction
        and holding ``purchase_order_key(po_id)``. Stock is credited by the
        caller.
        """
        po = await PurchaseOrderService.require_po(db, ctx, po_id)
        if po.status not in RECEIVABLE_STATUSES:
            raise StateConflictError(
                f"Cannot receive against purchase order {po.order_number} in status {po.status.value}",
                current_status=po.status.value,
            )
        line = next((ln for ln in po.lines if ln.id == line_id), None)
        if line is None:
            raise NotFoundError("Purchase order line", line_id)
        remaining = line.remaining_to_receive
        if quantity > remaining and not allow_over_receipt:
            raise ValidationError(
                f"Cannot receive {quantity} on {po.order_number}: only {remaining} remaining",
                field_errors=[{"field": "quantity_received", "message": f"exceeds remaining {remaining}"}],
            )
        line.quantity_received = line.quantity_received + quantity

        # Recalculate PO status
        all_received = all(ln.quantity_received >= ln.quantity_ordered for ln in po.lines)
        target = POStatus.RECEIVED if all_received else POStatus.PARTIAL
        if target != po.status:
            PURCHASE_ORDER_FLOW.check(po.status, target, po.order_number)
            logger.info("Purchase order %s: %s -> %s", po.order_number, po.status.value, target.value)
            po.status = target
        await db.flush()
        return line
