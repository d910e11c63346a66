"""FORGE - AssemblyService: assembly order lifecycle, reservation and proportional consumption."""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from forge.config import get_settings
from forge.core.context import CommandContext
from forge.db.session import transaction
from forge.exceptions import (
    InsufficientStockError,
    InvariantViolationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from forge.models.assembly import AssemblyOrder, AssemblyOrderMaterial, AssemblyOrderStatus, Priority
from forge.models.bom import BOMStatus
from forge.models.stock import StockEventType
from forge.services.audit_service import (
    ACTION_ORDER_CANCELLED,
    ACTION_ORDER_COMPLETED,
    ACTION_ORDER_PRODUCTION_REPORTED,
    ACTION_ORDER_RELEASED,
    log_audit,
)
from forge.services.bom_service import BOMService, bom_key
from forge.services.catalog_service import CatalogService
from forge.services.ledger_service import LedgerService, stock_key
from forge.services.materials import (
    AvailabilityReport,
    ComponentRequirement,
    build_availability_report,
    consumption_for_report,
    fits_precision,
    output_credit,
    shortage_detail,
)
from forge.services.sequence_service import next_number, sequence_key
from forge.services.state_machine import ASSEMBLY_ORDER_FLOW

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
QPU_STEP = Decimal("0.00000001")

# Fields editable while an order is still DRAFT
_EDITABLE_FIELDS = {
    "bom_id",
    "quantity_planned",
    "production_location_id",
    "output_location_id",
    "priority",
    "planned_start_date",
    "planned_completion_date",
    "description",
    "notes",
    "special_instructions",
}


def order_key(order_id: UUID) -> tuple:
    return ("assembly_order", str(order_id))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AssemblyService:
    """Owns the assembly order aggregate. Every command is one transactional unit."""

    # ── Queries ───────────────────────────────────────────────────────────────

    @staticmethod
    async def get_order(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder | None:
        """Get single order with its material snapshot (selectin loaded)."""
        result = await db.execute(
            select(AssemblyOrder)
            .where(AssemblyOrder.id == order_id, AssemblyOrder.tenant_id == ctx.tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_order(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder:
        order = await AssemblyService.get_order(db, ctx, order_id)
        if order is None:
            raise NotFoundError("Assembly order", order_id)
        return order

    @staticmethod
    async def list_orders(
        db: AsyncSession,
        ctx: CommandContext,
        *,
        status: AssemblyOrderStatus | None = None,
        product_id: UUID | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[AssemblyOrder], int]:
        """Paginated list of orders for tenant."""
        q = select(AssemblyOrder).where(AssemblyOrder.tenant_id == ctx.tenant_id)
        count_q = select(func.count(AssemblyOrder.id)).where(AssemblyOrder.tenant_id == ctx.tenant_id)
        if status:
            q = q.where(AssemblyOrder.status == status)
            count_q = count_q.where(AssemblyOrder.status == status)
        if product_id:
            q = q.where(AssemblyOrder.product_id == product_id)
            count_q = count_q.where(AssemblyOrder.product_id == product_id)
        total = (await db.execute(count_q)).scalar_one()
        q = q.order_by(AssemblyOrder.created_at.desc(), AssemblyOrder.order_number.desc())
        q = q.offset((page - 1) * page_size).limit(page_size)
        result = await db.execute(q)
        return list(result.scalars().all()), total

    @staticmethod
    async def list_receivable_orders(db: AsyncSession, ctx: CommandContext) -> list[AssemblyOrder]:
        """Orders a goods receipt can be created from."""
        result = await db.execute(
            select(AssemblyOrder)
            .where(
                AssemblyOrder.tenant_id == ctx.tenant_id,
                AssemblyOrder.status.in_([AssemblyOrderStatus.RELEASED, AssemblyOrderStatus.IN_PROGRESS]),
                AssemblyOrder.quantity_produced < AssemblyOrder.quantity_planned,
            )
            .order_by(AssemblyOrder.order_number)
        )
        return list(result.scalars().all())

    @staticmethod
    def remaining_to_receive(order: AssemblyOrder) -> Decimal:
        return max(ZERO, order.quantity_remaining)

    # ── Lock scope ────────────────────────────────────────────────────────────

    @staticmethod
    def snapshot_requirements(order: AssemblyOrder) -> list[ComponentRequirement]:
        """Requirements as frozen at release. Production consumes these, never the live BOM."""
        return [
            ComponentRequirement(
                component_id=m.component_id,
                quantity=m.bom_quantity,
                per=m.bom_output_quantity,
                uom_decimals=m.uom_decimals,
            )
            for m in order.materials
        ]

    @staticmethod
    def lock_keys(
        ctx: CommandContext,
        order: AssemblyOrder,
        requirements: list[ComponentRequirement],
        output_location_id: UUID | None = None,
    ) -> list[tuple]:
        """Order key plus every stock key a command on this order may touch."""
        keys = [order_key(order.id)]
        keys.extend(
            stock_key(ctx.tenant_id, req.component_id, order.production_location_id) for req in requirements
        )
        target = output_location_id or order.effective_output_location_id
        keys.append(stock_key(ctx.tenant_id, order.product_id, target))
        return keys

    @staticmethod
    async def _reload_locked(
        db: AsyncSession,
        ctx: CommandContext,
        seen: AssemblyOrder,
        bom_id: UUID,
        production_location_id: UUID,
    ) -> AssemblyOrder:
        """Re-read the order under its lock; the lock scope was computed from the earlier read."""
        order = await AssemblyService.require_order(db, ctx, seen.id)
        if order.bom_id != bom_id or order.production_location_id != production_location_id:
            raise StateConflictError(
                f"Assembly order {order.order_number} was modified concurrently; reload and retry",
                current_status=order.status.value,
            )
        return order

    @staticmethod
    def _transition(order: AssemblyOrder, target: AssemblyOrderStatus) -> None:
        previous = order.status
        ASSEMBLY_ORDER_FLOW.check(previous, target, order.order_number)
        order.status = target
        logger.info("Assembly order %s: %s -> %s", order.order_number, previous.value, target.value)

    # ── Commands ──────────────────────────────────────────────────────────────

    @staticmethod
    async def _validate_definition(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        bom_id: UUID | None,
        quantity_planned: Decimal,
        production_location_id: UUID,
        output_location_id: UUID | None,
    ) -> UUID:
        product = await CatalogService.require_product(db, ctx, product_id)
        if bom_id is None:
            bom = await BOMService.default_for(db, ctx, product_id)
            if bom is None:
                raise ValidationError(
                    f"Product {product.sku} has no default BOM; specify one",
                    field_errors=[{"field": "bom_id", "message": "required"}],
                )
        else:
            bom = await BOMService.require_bom(db, ctx, bom_id)
        if bom.product_id != product_id:
            raise ValidationError(
                "BOM does not belong to the product",
                field_errors=[{"field": "bom_id", "message": "belongs to another product"}],
            )
        if bom.status in (BOMStatus.INACTIVE, BOMStatus.ARCHIVED):
            raise ValidationError(
                f"BOM version {bom.version} is {bom.status.value}",
                field_errors=[{"field": "bom_id", "message": "not usable"}],
            )
        if quantity_planned <= 0:
            raise ValidationError(
                "Planned quantity must be greater than zero",
                field_errors=[{"field": "quantity_planned", "message": "must be > 0"}],
            )
        if not fits_precision(quantity_planned, product.uom_decimals):
            raise ValidationError(
                f"Planned quantity exceeds the {product.uom_decimals}-decimal precision of {product.uom}",
                field_errors=[{"field": "quantity_planned", "message": "too many decimals"}],
            )
        location = await CatalogService.require_location(db, ctx, production_location_id)
        if not location.is_manufacturing_location:
            raise ValidationError(
                f"Location {location.code} is not a manufacturing location",
                field_errors=[{"field": "production_location_id", "message": "not a manufacturing location"}],
            )
        if output_location_id is not None:
            await CatalogService.require_location(db, ctx, output_location_id)
        return bom.id

    @staticmethod
    async def create(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        quantity_planned: Decimal,
        production_location_id: UUID,
        *,
        bom_id: UUID | None = None,
        output_location_id: UUID | None = None,
        priority: Priority = Priority.NORMAL,
        planned_start_date: date | None = None,
        planned_completion_date: date | None = None,
        description: str | None = None,
        notes: str | None = None,
        special_instructions: str | None = None,
    ) -> AssemblyOrder:
        """Create a DRAFT order against a specific BOM version (the default BOM if none given)."""
        quantity_planned = Decimal(str(quantity_planned))
        bom_id = await AssemblyService._validate_definition(
            db, ctx, product_id, bom_id, quantity_planned, production_location_id, output_location_id
        )
        if planned_start_date and planned_completion_date and planned_completion_date < planned_start_date:
            raise ValidationError("Planned completion date is before the planned start date")

        async with transaction(db, [sequence_key(ctx.tenant_id, "assembly_order")]):
            number = await next_number(db, ctx, "assembly_order", get_settings().ORDER_NUMBER_PREFIX)
            order = AssemblyOrder(
                tenant_id=ctx.tenant_id,
                order_number=number,
                product_id=product_id,
                bom_id=bom_id,
                quantity_planned=quantity_planned,
                quantity_produced=ZERO,
                production_location_id=production_location_id,
                output_location_id=output_location_id,
                status=AssemblyOrderStatus.DRAFT,
                priority=priority,
                planned_start_date=planned_start_date,
                planned_completion_date=planned_completion_date,
                description=description,
                notes=notes,
                special_instructions=special_instructions,
                created_by=ctx.actor_id,
            )
            db.add(order)
            await db.flush()
        logger.info("Assembly order %s created: %s x product %s", number, quantity_planned, product_id)
        return await AssemblyService.require_order(db, ctx, order.id)

    @staticmethod
    async def update(db: AsyncSession, ctx: CommandContext, order_id: UUID, **fields) -> AssemblyOrder:
        """Edit a DRAFT order."""
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown assembly order fields: {', '.join(sorted(unknown))}")
        async with transaction(db, [order_key(order_id)]):
            order = await AssemblyService.require_order(db, ctx, order_id)
            if order.status != AssemblyOrderStatus.DRAFT:
                raise StateConflictError(
                    f"Only DRAFT orders can be edited ({order.order_number} is {order.status.value})",
                    current_status=order.status.value,
                )
            merged = {
                "bom_id": order.bom_id,
                "quantity_planned": order.quantity_planned,
                "production_location_id": order.production_location_id,
                "output_location_id": order.output_location_id,
            }
            merged.update({k: v for k, v in fields.items() if k in merged})
            merged["quantity_planned"] = Decimal(str(merged["quantity_planned"]))
            merged["bom_id"] = await AssemblyService._validate_definition(
                db,
                ctx,
                order.product_id,
                merged["bom_id"],
                merged["quantity_planned"],
                merged["production_location_id"],
                merged["output_location_id"],
            )
            fields.update(merged)
            for name, value in fields.items():
                setattr(order, name, value)
            await db.flush()
        return await AssemblyService.require_order(db, ctx, order_id)

    @staticmethod
    async def delete(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> None:
        """Delete a DRAFT order. Anything past DRAFT is cancelled instead."""
        async with transaction(db, [order_key(order_id)]):
            order = await AssemblyService.require_order(db, ctx, order_id)
            if order.status != AssemblyOrderStatus.DRAFT:
                raise StateConflictError(
                    f"Only DRAFT orders can be deleted ({order.order_number} is {order.status.value})",
                    current_status=order.status.value,
                )
            await db.delete(order)
        logger.info("Assembly order %s deleted", order.order_number)

    @staticmethod
    async def plan(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder:
        async with transaction(db, [order_key(order_id)]):
            order = await AssemblyService.require_order(db, ctx, order_id)
            AssemblyService._transition(order, AssemblyOrderStatus.PLANNED)
        return order

    @staticmethod
    async def check_availability(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AvailabilityReport:
        """
        Advisory material check. Reserves nothing and may read cached figures,
        so the result can be stale by the time the order is released.
        """
        order = await AssemblyService.require_order(db, ctx, order_id)
        if order.status not in (AssemblyOrderStatus.DRAFT, AssemblyOrderStatus.PLANNED):
            raise StateConflictError(
                f"Availability is checked before release ({order.order_number} is {order.status.value})",
                current_status=order.status.value,
            )
        requirements = await BOMService.resolve(db, ctx, order.bom_id)
        available = {
            req.component_id: await LedgerService.available(
                db, ctx, req.component_id, order.production_location_id, use_cache=True
            )
            for req in requirements
        }
        return build_availability_report(requirements, order.quantity_planned, available, order.order_number)

    @staticmethod
    async def release(
        db: AsyncSession,
        ctx: CommandContext,
        order_id: UUID,
        *,
        allow_shortage: bool = False,
    ) -> AssemblyOrder:
        """
        DRAFT/PLANNED -> RELEASED, reserving every component requirement.

        Availability is re-checked against the locked ledger rows. A shortage
        is rejected with the shortage detail unless ``allow_shortage`` is set,
        in which case the full requirement is reserved anyway and the accepted
        shortage is stored on the material snapshot.
        """
        seen = await AssemblyService.require_order(db, ctx, order_id)
        ASSEMBLY_ORDER_FLOW.check(seen.status, AssemblyOrderStatus.RELEASED, seen.order_number)
        requirements = await BOMService.resolve(db, ctx, seen.bom_id)
        keys = AssemblyService.lock_keys(ctx, seen, requirements) + [bom_key(ctx.tenant_id, seen.product_id)]
        expected_components = {req.component_id for req in requirements}

        async with transaction(db, keys):
            order = await AssemblyService._reload_locked(db, ctx, seen, seen.bom_id, seen.production_location_id)
            ASSEMBLY_ORDER_FLOW.check(order.status, AssemblyOrderStatus.RELEASED, order.order_number)
            # The BOM key blocks edits from here on; re-read what may have changed before it was taken
            requirements = await BOMService.resolve(db, ctx, order.bom_id)
            if {req.component_id for req in requirements} != expected_components:
                raise StateConflictError(
                    f"BOM of {order.order_number} changed during release; reload and retry",
                    current_status=order.status.value,
                )
            location_id = order.production_location_id
            balances = await LedgerService.lock_balances(
                db, ctx, [(req.component_id, location_id) for req in requirements]
            )
            report = build_availability_report(
                requirements,
                order.quantity_planned,
                {req.component_id: balances[(req.component_id, location_id)].available for req in requirements},
                order.order_number,
            )
            if not report.is_fully_available and not allow_shortage:
                logger.warning("Release of %s rejected: %d component(s) short", order.order_number, len(report.shortages))
                raise InsufficientStockError(
                    f"Insufficient component stock to release {order.order_number}",
                    shortages=shortage_detail(report),
                )

            for req, line in zip(requirements, report.lines):
                if line.required > 0:
                    await LedgerService.reserve(
                        db,
                        ctx,
                        req.component_id,
                        location_id,
                        line.required,
                        allow_shortage=allow_shortage,
                        reference_id=order.id,
                    )
                order.materials.append(
                    AssemblyOrderMaterial(
                        component_id=req.component_id,
                        quantity_per_unit=req.quantity_per_unit.quantize(QPU_STEP),
                        bom_quantity=req.quantity,
                        bom_output_quantity=req.per,
                        quantity_required=line.required,
                        quantity_reserved=line.required,
                        quantity_reservation_used=ZERO,
                        quantity_consumed=ZERO,
                        quantity_released=ZERO,
                        shortage_at_release=line.shortage,
                        uom_decimals=req.uom_decimals,
                    )
                )
            AssemblyService._transition(order, AssemblyOrderStatus.RELEASED)
            order.released_at = _now()
            log_audit(
                db,
                ctx,
                ACTION_ORDER_RELEASED,
                "assembly_order",
                order.id,
                {
                    "order_number": order.order_number,
                    "allow_shortage": allow_shortage,
                    "shortages": [
                        {k: str(v) for k, v in s.items()} for s in shortage_detail(report)
                    ],
                },
            )
            await db.flush()
        if not report.is_fully_available:
            logger.warning("Assembly order %s released with accepted shortage", order.order_number)
        return await AssemblyService.require_order(db, ctx, order_id)

    @staticmethod
    async def start_production(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder:
        async with transaction(db, [order_key(order_id)]):
            order = await AssemblyService.require_order(db, ctx, order_id)
            AssemblyService._transition(order, AssemblyOrderStatus.IN_PROGRESS)
            order.started_at = order.started_at or _now()
        return order

    @staticmethod
    async def _apply_output(
        db: AsyncSession,
        ctx: CommandContext,
        order: AssemblyOrder,
        requirements: list[ComponentRequirement],
        quantity: Decimal,
        output_location_id: UUID,
    ) -> None:
        """Debit components proportionally and credit the finished good. Caller holds every key."""
        if quantity <= 0:
            raise ValidationError(
                "Produced quantity must be greater than zero",
                field_errors=[{"field": "quantity", "message": "must be > 0"}],
            )
        remaining = order.quantity_remaining
        if quantity > remaining:
            raise ValidationError(
                f"Cannot produce {quantity} on {order.order_number}: only {remaining} remaining",
                field_errors=[{"field": "quantity", "message": f"exceeds remaining {remaining}"}],
            )
        product = await CatalogService.require_product(db, ctx, order.product_id)
        if not fits_precision(quantity, product.uom_decimals):
            raise ValidationError(
                f"Quantity {quantity} exceeds the {product.uom_decimals}-decimal precision of {product.uom}",
                field_errors=[{"field": "quantity", "message": "too many decimals"}],
            )

        before = order.quantity_produced
        materials = {m.component_id: m for m in order.materials}
        for req in requirements:
            used = consumption_for_report(req, before, quantity)
            if used <= 0:
                continue
            material = materials.get(req.component_id)
            from_reserved = min(used, material.reservation_outstanding) if material else ZERO
            await LedgerService.debit(
                db,
                ctx,
                req.component_id,
                order.production_location_id,
                used,
                from_reserved=max(from_reserved, ZERO),
                event_type=StockEventType.ASSEMBLE_OUT,
                reference_id=order.id,
                notes=f"Consumed by {order.order_number}",
            )
            if material is not None:
                material.quantity_consumed = material.quantity_consumed + used
                material.quantity_reservation_used = material.quantity_reservation_used + max(from_reserved, ZERO)

        credit = output_credit(before, quantity, product.uom_decimals)
        await LedgerService.credit(
            db,
            ctx,
            order.product_id,
            output_location_id,
            credit,
            event_type=StockEventType.ASSEMBLE_IN,
            reference_id=order.id,
            notes=f"Produced by {order.order_number}",
        )
        produced = before + quantity
        if produced > order.quantity_planned:
            raise InvariantViolationError(
                f"{order.order_number}: produced {produced} would exceed planned {order.quantity_planned}"
            )
        order.quantity_produced = produced

    @staticmethod
    async def _release_outstanding(db: AsyncSession, ctx: CommandContext, order: AssemblyOrder) -> Decimal:
        """Return every unused reservation of the order to availability."""
        total = ZERO
        for material in order.materials:
            outstanding = material.reservation_outstanding
            if outstanding > 0:
                await LedgerService.release(
                    db, ctx, material.component_id, order.production_location_id, outstanding, reference_id=order.id
                )
                material.quantity_released = material.quantity_released + outstanding
                total += outstanding
        return total

    @staticmethod
    async def _finish(db: AsyncSession, ctx: CommandContext, order: AssemblyOrder) -> None:
        AssemblyService._transition(order, AssemblyOrderStatus.COMPLETED)
        order.completed_at = _now()
        released = await AssemblyService._release_outstanding(db, ctx, order)
        log_audit(
            db,
            ctx,
            ACTION_ORDER_COMPLETED,
            "assembly_order",
            order.id,
            {
                "order_number": order.order_number,
                "quantity_produced": str(order.quantity_produced),
                "reservation_released": str(released),
            },
        )

    @staticmethod
    async def report_production(
        db: AsyncSession,
        ctx: CommandContext,
        order_id: UUID,
        quantity: Decimal,
    ) -> AssemblyOrder:
        """
        Record finished output on an IN_PROGRESS order.

        Component debits, the finished-good credit and the status change
        commit together or not at all. Reaching the planned quantity completes
        the order and releases whatever reservation is left.
        """
        quantity = Decimal(str(quantity))
        if quantity <= 0:
            raise ValidationError(
                "Produced quantity must be greater than zero",
                field_errors=[{"field": "quantity", "message": "must be > 0"}],
            )
        seen = await AssemblyService.require_order(db, ctx, order_id)
        if seen.status != AssemblyOrderStatus.IN_PROGRESS:
            raise StateConflictError(
                f"Production can only be reported on IN_PROGRESS orders ({seen.order_number} is {seen.status.value})",
                current_status=seen.status.value,
            )
        keys = AssemblyService.lock_keys(ctx, seen, AssemblyService.snapshot_requirements(seen))
        expected_output = seen.output_location_id

        async with transaction(db, keys):
            order = await AssemblyService._reload_locked(db, ctx, seen, seen.bom_id, seen.production_location_id)
            if order.output_location_id != expected_output:
                raise StateConflictError(f"Assembly order {order.order_number} was modified concurrently")
            if order.status != AssemblyOrderStatus.IN_PROGRESS:
                raise StateConflictError(
                    f"Assembly order {order.order_number} is {order.status.value}",
                    current_status=order.status.value,
                )
            await AssemblyService._apply_output(
                db,
                ctx,
                order,
                AssemblyService.snapshot_requirements(order),
                quantity,
                order.effective_output_location_id,
            )
            log_audit(
                db,
                ctx,
                ACTION_ORDER_PRODUCTION_REPORTED,
                "assembly_order",
                order.id,
                {"order_number": order.order_number, "quantity": str(quantity)},
            )
            logger.info(
                "Assembly order %s: reported %s (%s/%s)",
                order.order_number, quantity, order.quantity_produced, order.quantity_planned,
            )
            if order.quantity_produced == order.quantity_planned:
                await AssemblyService._finish(db, ctx, order)
            await db.flush()
        return await AssemblyService.require_order(db, ctx, order_id)

    @staticmethod
    async def apply_receipt(
        db: AsyncSession,
        ctx: CommandContext,
        order_id: UUID,
        quantity: Decimal,
        location_id: UUID,
    ) -> AssemblyOrder:
        """
        Finished output received through a goods receipt.

        Only the goods receipt confirm step calls this, inside its own
        transaction and holding ``lock_keys(ctx, order, requirements, location_id)``.
        """
        order = await AssemblyService.require_order(db, ctx, order_id)
        if order.status == AssemblyOrderStatus.RELEASED:
            AssemblyService._transition(order, AssemblyOrderStatus.IN_PROGRESS)
            order.started_at = order.started_at or _now()
        elif order.status != AssemblyOrderStatus.IN_PROGRESS:
            raise StateConflictError(
                f"Assembly order {order.order_number} cannot receive output while {order.status.value}",
                current_status=order.status.value,
            )
        requirements = AssemblyService.snapshot_requirements(order)
        await AssemblyService._apply_output(db, ctx, order, requirements, quantity, location_id)
        if order.quantity_produced == order.quantity_planned:
            await AssemblyService._finish(db, ctx, order)
        await db.flush()
        return order

    @staticmethod
    async def _close(
        db: AsyncSession,
        ctx: CommandContext,
        order_id: UUID,
        target: AssemblyOrderStatus,
    ) -> AssemblyOrder:
        seen = await AssemblyService.require_order(db, ctx, order_id)
        ASSEMBLY_ORDER_FLOW.check(seen.status, target, seen.order_number)
        keys = [order_key(seen.id)] + [
            stock_key(ctx.tenant_id, m.component_id, seen.production_location_id) for m in seen.materials
        ]
        expected_components = {m.component_id for m in seen.materials}
        async with transaction(db, keys):
            order = await AssemblyService._reload_locked(db, ctx, seen, seen.bom_id, seen.production_location_id)
            if {m.component_id for m in order.materials} != expected_components:
                raise StateConflictError(f"Assembly order {order.order_number} was modified concurrently")
            if target == AssemblyOrderStatus.COMPLETED:
                await AssemblyService._finish(db, ctx, order)
            else:
                AssemblyService._transition(order, target)
                order.cancelled_at = _now()
                order.held_from_status = None
                released = await AssemblyService._release_outstanding(db, ctx, order)
                log_audit(
                    db,
                    ctx,
                    ACTION_ORDER_CANCELLED,
                    "assembly_order",
                    order.id,
                    {
                        "order_number": order.order_number,
                        "quantity_produced": str(order.quantity_produced),
                        "reservation_released": str(released),
                    },
                )
            await db.flush()
        return await AssemblyService.require_order(db, ctx, order_id)

    @staticmethod
    async def complete(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder:
        """Accept the quantity produced so far as final and release the leftover reservation."""
        return await AssemblyService._close(db, ctx, order_id, AssemblyOrderStatus.COMPLETED)

    @staticmethod
    async def cancel(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder:
        """Cancel from any non-terminal state. Production already applied stays applied."""
        return await AssemblyService._close(db, ctx, order_id, AssemblyOrderStatus.CANCELLED)

    @staticmethod
    async def hold(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder:
        async with transaction(db, [order_key(order_id)]):
            order = await AssemblyService.require_order(db, ctx, order_id)
            previous = order.status
            AssemblyService._transition(order, AssemblyOrderStatus.ON_HOLD)
            order.held_from_status = previous
        return order

    @staticmethod
    async def resume(db: AsyncSession, ctx: CommandContext, order_id: UUID) -> AssemblyOrder:
        async with transaction(db, [order_key(order_id)]):
            order = await AssemblyService.require_order(db, ctx, order_id)
            if order.status != AssemblyOrderStatus.ON_HOLD or order.held_from_status is None:
                raise StateConflictError(
                    f"Assembly order {order.order_number} is not on hold",
                    current_status=order.status.value,
                )
            AssemblyService._transition(order, order.held_from_status)
            order.held_from_status = None
        return order
