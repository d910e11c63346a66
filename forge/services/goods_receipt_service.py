"""FORGE - GoodsReceiptService: receipts from purchase orders, assembly orders or manual entry.

Stock effects happen exactly once, when a DRAFT receipt is confirmed. The
confirmation credits the ledger, closes out the source document's remaining
quantity and flips the status inside one transaction.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import assert_never
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from forge.config import get_settings
from forge.core.context import CommandContext
from forge.db.session import transaction
from forge.exceptions import (
    AlreadyConfirmedError,
    InvariantViolationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from forge.models.assembly import AssemblyOrderStatus
from forge.models.catalog import Location, Product
from forge.models.goods_receipt import GoodsReceipt, ReceiptItem, ReceiptSourceType, ReceiptStatus
from forge.models.purchase_order import POStatus
from forge.models.stock import StockEventType
from forge.services.assembly_service import AssemblyService
from forge.services.audit_service import ACTION_RECEIPT_CANCELLED, ACTION_RECEIPT_CONFIRMED, log_audit
from forge.services.catalog_service import CatalogService
from forge.services.ledger_service import LedgerService, stock_key
from forge.services.materials import fits_precision
from forge.services.purchase_order_service import PurchaseOrderService, purchase_order_key
from forge.services.sequence_service import next_number, sequence_key
from forge.services.state_machine import GOODS_RECEIPT_FLOW

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class FromPurchaseOrder:
    purchase_order_id: UUID


@dataclass(frozen=True)
class FromAssemblyOrder:
    assembly_order_id: UUID


@dataclass(frozen=True)
class Manual:
    pass


ReceiptSource = FromPurchaseOrder | FromAssemblyOrder | Manual


def source_of(receipt: GoodsReceipt) -> ReceiptSource:
    """Rebuild the tagged source from the persisted columns."""
    match receipt.source_type:
        case ReceiptSourceType.PURCHASE_ORDER:
            return FromPurchaseOrder(receipt.purchase_order_id)
        case ReceiptSourceType.ASSEMBLY_ORDER:
            return FromAssemblyOrder(receipt.assembly_order_id)
        case ReceiptSourceType.MANUAL:
            return Manual()
        case _:
            assert_never(receipt.source_type)


def receipt_key(receipt_id: UUID) -> tuple:
    return ("goods_receipt", str(receipt_id))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class GoodsReceiptService:
    """Owns the goods receipt aggregate."""

    # ── Queries ───────────────────────────────────────────────────────────────

    @staticmethod
    async def get_receipt(db: AsyncSession, ctx: CommandContext, receipt_id: UUID) -> GoodsReceipt | None:
        result = await db.execute(
            select(GoodsReceipt)
            .where(GoodsReceipt.id == receipt_id, GoodsReceipt.tenant_id == ctx.tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_receipt(db: AsyncSession, ctx: CommandContext, receipt_id: UUID) -> GoodsReceipt:
        receipt = await GoodsReceiptService.get_receipt(db, ctx, receipt_id)
        if receipt is None:
            raise NotFoundError("Goods receipt", receipt_id)
        return receipt

    @staticmethod
    async def list_receipts(
        db: AsyncSession,
        ctx: CommandContext,
        *,
        status: ReceiptStatus | None = None,
        source_type: ReceiptSourceType | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[GoodsReceipt], int]:
        q = select(GoodsReceipt).where(GoodsReceipt.tenant_id == ctx.tenant_id)
        count_q = select(func.count(GoodsReceipt.id)).where(GoodsReceipt.tenant_id == ctx.tenant_id)
        if status:
            q = q.where(GoodsReceipt.status == status)
            count_q = count_q.where(GoodsReceipt.status == status)
        if source_type:
            q = q.where(GoodsReceipt.source_type == source_type)
            count_q = count_q.where(GoodsReceipt.source_type == source_type)
        total = (await db.execute(count_q)).scalar_one()
        q = q.order_by(GoodsReceipt.created_at.desc(), GoodsReceipt.receipt_number.desc())
        q = q.offset((page - 1) * page_size).limit(page_size)
        result = await db.execute(q)
        return list(result.scalars().all()), total

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    def _check_location(source: ReceiptSource, location: Location) -> None:
        match source:
            case FromPurchaseOrder():
                if not location.is_purchasable_location:
                    raise ValidationError(
                        f"Location {location.code} does not accept purchased goods",
                        field_errors=[{"field": "location_id", "message": "not a purchasable location"}],
                    )
            case FromAssemblyOrder() | Manual():
                pass
            case _:
                assert_never(source)

    @staticmethod
    async def _remaining_by_item(
        db: AsyncSession,
        ctx: CommandContext,
        receipt: GoodsReceipt,
    ) -> dict[UUID, Decimal | None]:
        """Live source remaining per receipt item. None means there is no expectation to honour."""
        source = source_of(receipt)
        match source:
            case FromPurchaseOrder(purchase_order_id=po_id):
                po = await PurchaseOrderService.require_po(db, ctx, po_id)
                lines = {line.id: line for line in po.lines}
                return {
                    item.id: lines[item.purchase_order_line_id].remaining_to_receive
                    for item in receipt.items
                }
            case FromAssemblyOrder(assembly_order_id=ao_id):
                order = await AssemblyService.require_order(db, ctx, ao_id)
                remaining = AssemblyService.remaining_to_receive(order)
                return {item.id: remaining for item in receipt.items}
            case Manual():
                return {item.id: None for item in receipt.items}
            case _:
                assert_never(source)

    @staticmethod
    def _validate_quantity(
        receipt: GoodsReceipt,
        item: ReceiptItem,
        quantity: Decimal,
        remaining: Decimal | None,
    ) -> None:
        if quantity < 0:
            raise ValidationError(
                "Received quantity cannot be negative",
                field_errors=[{"field": f"items.{item.id}.quantity_received", "message": "must be >= 0"}],
            )
        if remaining is None or quantity <= remaining:
            return
        # Over-receipt against a production order cannot be overridden: it would exceed the plan
        if receipt.allow_over_receipt and receipt.source_type == ReceiptSourceType.PURCHASE_ORDER:
            return
        raise ValidationError(
            f"Received quantity {quantity} exceeds remaining {remaining}",
            field_errors=[{"field": f"items.{item.id}.quantity_received", "message": f"exceeds remaining {remaining}"}],
        )

    @staticmethod
    def _check_precision(product: Product, quantity: Decimal, field: str) -> None:
        if not fits_precision(quantity, product.uom_decimals):
            raise ValidationError(
                f"Quantity {quantity} exceeds the {product.uom_decimals}-decimal precision of {product.uom}",
                field_errors=[{"field": field, "message": "too many decimals"}],
            )

    @staticmethod
    async def _insert(db: AsyncSession, ctx: CommandContext, receipt: GoodsReceipt) -> GoodsReceipt:
        async with transaction(db, [sequence_key(ctx.tenant_id, "goods_receipt")]):
            receipt.receipt_number = await next_number(
                db, ctx, "goods_receipt", get_settings().RECEIPT_NUMBER_PREFIX
            )
            db.add(receipt)
            await db.flush()
        logger.info("Goods receipt %s created (%s)", receipt.receipt_number, receipt.source_type.value)
        return await GoodsReceiptService.require_receipt(db, ctx, receipt.id)

    # ── Creation ──────────────────────────────────────────────────────────────

    @staticmethod
    async def create_from_purchase_order(
        db: AsyncSession,
        ctx: CommandContext,
        purchase_order_id: UUID,
        *,
        location_id: UUID | None = None,
        receipt_date: date | None = None,
        notes: str | None = None,
    ) -> GoodsReceipt:
        """One item per PO line that still expects goods, defaulting to the remaining quantity."""
        po = await PurchaseOrderService.require_po(db, ctx, purchase_order_id)
        if po.status not in (POStatus.ORDERED, POStatus.PARTIAL):
            raise StateConflictError(
                f"Purchase order {po.order_number} is {po.status.value}; nothing can be received",
                current_status=po.status.value,
            )
        location = await CatalogService.require_location(db, ctx, location_id or po.location_id)
        GoodsReceiptService._check_location(FromPurchaseOrder(po.id), location)
        items = [
            ReceiptItem(
                product_id=line.product_id,
                quantity_ordered=line.remaining_to_receive,
                quantity_received=ZERO,
                unit_price=line.unit_price,
                purchase_order_line_id=line.id,
            )
            for line in po.lines
            if line.remaining_to_receive > 0
        ]
        if not items:
            raise ValidationError(f"Purchase order {po.order_number} has nothing left to receive")
        receipt = GoodsReceipt(
            tenant_id=ctx.tenant_id,
            source_type=ReceiptSourceType.PURCHASE_ORDER,
            purchase_order_id=po.id,
            supplier_name=po.supplier_name,
            location_id=location.id,
            status=ReceiptStatus.DRAFT,
            receipt_date=receipt_date,
            notes=notes,
            created_by=ctx.actor_id,
            items=items,
        )
        return await GoodsReceiptService._insert(db, ctx, receipt)

    @staticmethod
    async def create_from_assembly_order(
        db: AsyncSession,
        ctx: CommandContext,
        assembly_order_id: UUID,
        *,
        location_id: UUID | None = None,
        receipt_date: date | None = None,
        notes: str | None = None,
    ) -> GoodsReceipt:
        """A single item for the order's finished product. Internal production has no supplier."""
        order = await AssemblyService.require_order(db, ctx, assembly_order_id)
        if order.status not in (AssemblyOrderStatus.RELEASED, AssemblyOrderStatus.IN_PROGRESS):
            raise StateConflictError(
                f"Assembly order {order.order_number} is {order.status.value}; output cannot be received",
                current_status=order.status.value,
            )
        remaining = AssemblyService.remaining_to_receive(order)
        if remaining <= 0:
            raise ValidationError(f"Assembly order {order.order_number} has nothing left to receive")
        product = await CatalogService.require_product(db, ctx, order.product_id)
        location = await CatalogService.require_location(db, ctx, location_id or order.effective_output_location_id)
        receipt = GoodsReceipt(
            tenant_id=ctx.tenant_id,
            source_type=ReceiptSourceType.ASSEMBLY_ORDER,
            assembly_order_id=order.id,
            supplier_name=None,
            location_id=location.id,
            status=ReceiptStatus.DRAFT,
            receipt_date=receipt_date,
            notes=notes,
            created_by=ctx.actor_id,
            items=[
                ReceiptItem(
                    product_id=product.id,
                    quantity_ordered=remaining,
                    quantity_received=ZERO,
                    unit_price=product.cost_price,
                )
            ],
        )
        return await GoodsReceiptService._insert(db, ctx, receipt)

    @staticmethod
    async def create_manual(
        db: AsyncSession,
        ctx: CommandContext,
        items: list[dict],
        *,
        location_id: UUID | None = None,
        supplier_name: str | None = None,
        receipt_date: date | None = None,
        notes: str | None = None,
    ) -> GoodsReceipt:
        """Arbitrary product list. Ordered mirrors received since nothing was expected."""
        if not items:
            raise ValidationError("A manual receipt needs at least one item")
        if location_id is not None:
            await CatalogService.require_location(db, ctx, location_id)
        receipt_items = []
        for idx, data in enumerate(items):
            product = await CatalogService.require_product(db, ctx, data["product_id"])
            quantity = Decimal(str(data.get("quantity_received", 0)))
            if quantity < 0:
                raise ValidationError(
                    "Received quantity cannot be negative",
                    field_errors=[{"field": f"items[{idx}].quantity_received", "message": "must be >= 0"}],
                )
            GoodsReceiptService._check_precision(product, quantity, f"items[{idx}].quantity_received")
            unit_price = data.get("unit_price")
            receipt_items.append(
                ReceiptItem(
                    product_id=product.id,
                    quantity_ordered=quantity,
                    quantity_received=quantity,
                    unit_price=Decimal(str(unit_price)) if unit_price is not None else product.cost_price,
                )
            )
        receipt = GoodsReceipt(
            tenant_id=ctx.tenant_id,
            source_type=ReceiptSourceType.MANUAL,
            supplier_name=supplier_name,
            location_id=location_id,
            status=ReceiptStatus.DRAFT,
            receipt_date=receipt_date,
            notes=notes,
            created_by=ctx.actor_id,
            items=receipt_items,
        )
        return await GoodsReceiptService._insert(db, ctx, receipt)

    # ── Commands ──────────────────────────────────────────────────────────────

    @staticmethod
    def _ensure_draft(receipt: GoodsReceipt) -> None:
        if receipt.status != ReceiptStatus.DRAFT:
            logger.warning("Goods receipt %s is %s, not DRAFT", receipt.receipt_number, receipt.status.value)
            raise AlreadyConfirmedError(receipt.receipt_number, receipt.status.value)

    @staticmethod
    async def update_receipt(
        db: AsyncSession,
        ctx: CommandContext,
        receipt_id: UUID,
        *,
        location_id: UUID | None = None,
        supplier_name: str | None = None,
        receipt_date: date | None = None,
        notes: str | None = None,
        allow_over_receipt: bool | None = None,
        items: list[dict] | None = None,
    ) -> GoodsReceipt:
        """
        Edit a DRAFT receipt. ``items`` entries carry ``id`` plus
        ``quantity_received`` and/or ``unit_price``.
        """
        async with transaction(db, [receipt_key(receipt_id)]):
            receipt = await GoodsReceiptService.require_receipt(db, ctx, receipt_id)
            GoodsReceiptService._ensure_draft(receipt)
            source = source_of(receipt)
            if location_id is not None:
                location = await CatalogService.require_location(db, ctx, location_id)
                GoodsReceiptService._check_location(source, location)
                receipt.location_id = location.id
            if supplier_name is not None:
                receipt.supplier_name = supplier_name
            if receipt_date is not None:
                receipt.receipt_date = receipt_date
            if notes is not None:
                receipt.notes = notes
            if allow_over_receipt is not None:
                receipt.allow_over_receipt = allow_over_receipt

            if items:
                by_id = {item.id: item for item in receipt.items}
                remaining = await GoodsReceiptService._remaining_by_item(db, ctx, receipt)
                for data in items:
                    item = by_id.get(data["id"])
                    if item is None:
                        raise NotFoundError("Receipt item", data["id"])
                    if data.get("quantity_received") is not None:
                        quantity = Decimal(str(data["quantity_received"]))
                        GoodsReceiptService._validate_quantity(receipt, item, quantity, remaining[item.id])
                        product = await CatalogService.require_product(db, ctx, item.product_id)
                        GoodsReceiptService._check_precision(
                            product, quantity, f"items.{item.id}.quantity_received"
                        )
                        item.quantity_received = quantity
                        if isinstance(source, Manual):
                            item.quantity_ordered = quantity
                    if data.get("unit_price") is not None:
                        unit_price = Decimal(str(data["unit_price"]))
                        if unit_price < 0:
                            raise ValidationError("Unit price cannot be negative")
                        item.unit_price = unit_price
            await db.flush()
        return await GoodsReceiptService.require_receipt(db, ctx, receipt_id)

    @staticmethod
    async def _lock_keys(db: AsyncSession, ctx: CommandContext, receipt: GoodsReceipt) -> list[tuple]:
        keys = [receipt_key(receipt.id)]
        source = source_of(receipt)
        match source:
            case FromPurchaseOrder(purchase_order_id=po_id):
                keys.append(purchase_order_key(po_id))
                keys.extend(stock_key(ctx.tenant_id, item.product_id, receipt.location_id) for item in receipt.items)
            case FromAssemblyOrder(assembly_order_id=ao_id):
                order = await AssemblyService.require_order(db, ctx, ao_id)
                keys.extend(
                    AssemblyService.lock_keys(
                        ctx, order, AssemblyService.snapshot_requirements(order), receipt.location_id
                    )
                )
            case Manual():
                keys.extend(stock_key(ctx.tenant_id, item.product_id, receipt.location_id) for item in receipt.items)
            case _:
                assert_never(source)
        return keys

    @staticmethod
    async def confirm(db: AsyncSession, ctx: CommandContext, receipt_id: UUID) -> GoodsReceipt:
        """
        DRAFT -> CONFIRMED, applying every line to stock and to its source.

        Zero-quantity lines are dropped. Quantities are re-validated against
        the live source remaining under lock. Any failure leaves stock, the
        source document and the receipt exactly as they were.
        """
        seen = await GoodsReceiptService.require_receipt(db, ctx, receipt_id)
        GoodsReceiptService._ensure_draft(seen)
        if seen.location_id is None:
            raise ValidationError(
                "A receiving location is required to confirm",
                field_errors=[{"field": "location_id", "message": "required"}],
            )
        expected_location = seen.location_id
        keys = await GoodsReceiptService._lock_keys(db, ctx, seen)

        async with transaction(db, keys):
            receipt = await GoodsReceiptService.require_receipt(db, ctx, receipt_id)
            GoodsReceiptService._ensure_draft(receipt)
            if receipt.location_id != expected_location:
                raise StateConflictError(
                    f"Goods receipt {receipt.receipt_number} was modified concurrently; reload and retry"
                )
            source = source_of(receipt)
            location = await CatalogService.require_location(db, ctx, receipt.location_id)
            GoodsReceiptService._check_location(source, location)

            lines = [item for item in receipt.items if item.quantity_received > 0]
            if not lines:
                raise ValidationError(
                    "At least one line must have a received quantity greater than zero",
                    field_errors=[{"field": "items", "message": "nothing received"}],
                )
            remaining = await GoodsReceiptService._remaining_by_item(db, ctx, receipt)
            for item in lines:
                GoodsReceiptService._validate_quantity(receipt, item, item.quantity_received, remaining[item.id])
            for item in [i for i in receipt.items if i.quantity_received <= 0]:
                receipt.items.remove(item)
            await db.flush()

            match source:
                case FromPurchaseOrder(purchase_order_id=po_id):
                    for item in lines:
                        await PurchaseOrderService.apply_receipt(
                            db,
                            ctx,
                            po_id,
                            item.purchase_order_line_id,
                            item.quantity_received,
                            allow_over_receipt=receipt.allow_over_receipt,
                        )
                        await LedgerService.credit(
                            db,
                            ctx,
                            item.product_id,
                            location.id,
                            item.quantity_received,
                            event_type=StockEventType.RECEIVE,
                            reference_id=receipt.id,
                            notes=f"Receipt {receipt.receipt_number}",
                        )
                case FromAssemblyOrder(assembly_order_id=ao_id):
                    for item in lines:
                        order = await AssemblyService.apply_receipt(db, ctx, ao_id, item.quantity_received, location.id)
                        if item.product_id != order.product_id:
                            raise InvariantViolationError(
                                f"Receipt item product {item.product_id} does not match order {order.order_number}"
                            )
                case Manual():
                    for item in lines:
                        await LedgerService.credit(
                            db,
                            ctx,
                            item.product_id,
                            location.id,
                            item.quantity_received,
                            event_type=StockEventType.RECEIVE,
                            reference_id=receipt.id,
                            notes=f"Receipt {receipt.receipt_number}",
                        )
                case _:
                    assert_never(source)

            GOODS_RECEIPT_FLOW.check(receipt.status, ReceiptStatus.CONFIRMED, receipt.receipt_number)
            receipt.status = ReceiptStatus.CONFIRMED
            receipt.confirmed_at = _now()
            log_audit(
                db,
                ctx,
                ACTION_RECEIPT_CONFIRMED,
                "goods_receipt",
                receipt.id,
                {
                    "receipt_number": receipt.receipt_number,
                    "source_type": receipt.source_type.value,
                    "lines": [
                        {"product_id": str(item.product_id), "quantity_received": str(item.quantity_received)}
                        for item in lines
                    ],
                },
            )
            await db.flush()
        logger.info("Goods receipt %s: DRAFT -> CONFIRMED (%d line(s))", receipt.receipt_number, len(lines))
        return await GoodsReceiptService.require_receipt(db, ctx, receipt_id)

    @staticmethod
    async def cancel(db: AsyncSession, ctx: CommandContext, receipt_id: UUID) -> GoodsReceipt:
        """DRAFT -> CANCELLED. Nothing was applied, so there is nothing to undo."""
        async with transaction(db, [receipt_key(receipt_id)]):
            receipt = await GoodsReceiptService.require_receipt(db, ctx, receipt_id)
            GOODS_RECEIPT_FLOW.check(receipt.status, ReceiptStatus.CANCELLED, receipt.receipt_number)
            receipt.status = ReceiptStatus.CANCELLED
            receipt.cancelled_at = _now()
            log_audit(
                db, ctx, ACTION_RECEIPT_CANCELLED, "goods_receipt", receipt.id,
                {"receipt_number": receipt.receipt_number},
            )
        logger.info("Goods receipt %s: DRAFT -> CANCELLED", receipt.receipt_number)
        return receipt
