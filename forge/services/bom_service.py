"""FORGE - BOMService: versioned, append-only Bills of Materials."""
import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from forge.core.context import CommandContext
from forge.db.session import transaction
from forge.exceptions import NotFoundError, StateConflictError, ValidationError
from forge.models.assembly import AssemblyOrder, AssemblyOrderStatus
from forge.models.bom import BOM, BOMItem, BOMStatus, BOMType
from forge.models.catalog import Product
from forge.services.audit_service import (
    ACTION_BOM_ARCHIVED,
    ACTION_BOM_CREATED,
    ACTION_BOM_VERSIONED,
    log_audit,
)
from forge.services.catalog_service import CatalogService
from forge.services.ledger_service import LedgerService
from forge.services.materials import (
    AvailabilityReport,
    ComponentRequirement,
    build_availability_report,
    required_quantity,
)

logger = logging.getLogger(__name__)

# Fields that may be edited on a BOM besides version and items
_EDITABLE_FIELDS = {"bom_type", "status", "output_quantity", "description", "notes"}


def bom_key(tenant_id: UUID, product_id: UUID) -> tuple:
    """Serializes default-flag and version changes for one product."""
    return ("bom", str(tenant_id), str(product_id))


class BOMService:
    """Create, version, archive and resolve Bills of Materials."""

    @staticmethod
    async def _validate_items(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        items: list[dict],
    ) -> list[BOMItem]:
        if not items:
            raise ValidationError("A BOM needs at least one component")
        seen: set[UUID] = set()
        built: list[BOMItem] = []
        for idx, data in enumerate(items):
            component_id = data["component_id"]
            quantity = Decimal(str(data["quantity"]))
            if component_id == product_id:
                raise ValidationError(
                    "Circular reference: a product cannot be a component of itself",
                    field_errors=[{"field": f"items[{idx}].component_id", "message": "circular reference"}],
                )
            if component_id in seen:
                raise ValidationError(
                    f"Component {component_id} is listed more than once",
                    field_errors=[{"field": f"items[{idx}].component_id", "message": "duplicate component"}],
                )
            if quantity <= 0:
                raise ValidationError(
                    "Component quantity must be greater than zero",
                    field_errors=[{"field": f"items[{idx}].quantity", "message": "must be > 0"}],
                )
            component = await CatalogService.require_product(db, ctx, component_id)
            seen.add(component_id)
            built.append(
                BOMItem(
                    component_id=component_id,
                    quantity=quantity,
                    unit_of_measure=data.get("unit_of_measure") or component.uom,
                    waste_percentage=Decimal(str(data.get("waste_percentage") or 0)),
                    sequence_number=data.get("sequence_number") or (idx + 1) * 10,
                    is_critical=bool(data.get("is_critical", False)),
                    is_optional=bool(data.get("is_optional", False)),
                    notes=data.get("notes"),
                )
            )
        return built

    @staticmethod
    async def _clear_default(db: AsyncSession, ctx: CommandContext, product_id: UUID, keep_id: UUID | None) -> None:
        stmt = update(BOM).where(
            BOM.tenant_id == ctx.tenant_id,
            BOM.product_id == product_id,
            BOM.is_default.is_(True),
        )
        if keep_id is not None:
            stmt = stmt.where(BOM.id != keep_id)
        await db.execute(stmt.values(is_default=False).execution_options(synchronize_session="fetch"))

    @staticmethod
    async def _version_exists(db: AsyncSession, ctx: CommandContext, product_id: UUID, version: str) -> bool:
        result = await db.execute(
            select(BOM.id).where(
                BOM.tenant_id == ctx.tenant_id,
                BOM.product_id == product_id,
                BOM.version == version,
            )
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def create_bom(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        items: list[dict],
        *,
        version: str = "1.0",
        is_default: bool = False,
        bom_type: BOMType = BOMType.MANUFACTURING,
        status: BOMStatus = BOMStatus.ACTIVE,
        output_quantity: Decimal = Decimal("1"),
        description: str | None = None,
        notes: str | None = None,
    ) -> BOM:
        """Create a BOM version with its items atomically."""
        product = await CatalogService.require_product(db, ctx, product_id)
        async with transaction(db, [bom_key(ctx.tenant_id, product_id)]):
            bom = await BOMService._insert_bom(
                db,
                ctx,
                product,
                items,
                version=version,
                is_default=is_default,
                bom_type=bom_type,
                status=status,
                output_quantity=output_quantity,
                description=description,
                notes=notes,
            )
            log_audit(db, ctx, ACTION_BOM_CREATED, "bom", bom.id, {"product_id": str(product_id), "version": version})
        logger.info("BOM created: product=%s version=%s", product.sku, version)
        return await BOMService.require_bom(db, ctx, bom.id)

    @staticmethod
    async def _insert_bom(
        db: AsyncSession,
        ctx: CommandContext,
        product: Product,
        items: list[dict],
        *,
        version: str,
        is_default: bool,
        bom_type: BOMType,
        status: BOMStatus,
        output_quantity: Decimal,
        description: str | None,
        notes: str | None,
    ) -> BOM:
        if not product.is_manufactured:
            raise ValidationError(f"Product {product.sku} is not a manufactured product")
        output_quantity = Decimal(str(output_quantity))
        if output_quantity <= 0:
            raise ValidationError("output_quantity must be greater than zero")
        bom_items = await BOMService._validate_items(db, ctx, product.id, items)
        if await BOMService._version_exists(db, ctx, product.id, version):
            raise ValidationError(
                f"Version {version} already exists for product {product.sku}",
                field_errors=[{"field": "version", "message": "duplicate version"}],
            )
        if is_default:
            await BOMService._clear_default(db, ctx, product.id, keep_id=None)
        bom = BOM(
            tenant_id=ctx.tenant_id,
            product_id=product.id,
            version=version,
            bom_type=bom_type,
            status=status,
            is_default=is_default,
            output_quantity=output_quantity,
            description=description,
            notes=notes,
            created_by=ctx.actor_id,
            items=bom_items,
        )
        db.add(bom)
        await db.flush()
        return bom

    @staticmethod
    async def get_bom(db: AsyncSession, ctx: CommandContext, bom_id: UUID) -> BOM | None:
        """Get single BOM with items (selectin loaded)."""
        result = await db.execute(
            select(BOM)
            .where(BOM.id == bom_id, BOM.tenant_id == ctx.tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def require_bom(db: AsyncSession, ctx: CommandContext, bom_id: UUID) -> BOM:
        bom = await BOMService.get_bom(db, ctx, bom_id)
        if bom is None:
            raise NotFoundError("BOM", bom_id)
        return bom

    @staticmethod
    async def list_for_product(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        include_archived: bool = False,
    ) -> list[BOM]:
        q = select(BOM).where(BOM.tenant_id == ctx.tenant_id, BOM.product_id == product_id)
        if not include_archived:
            q = q.where(BOM.status != BOMStatus.ARCHIVED)
        q = q.order_by(BOM.created_at.desc(), BOM.version.desc())
        result = await db.execute(q)
        return list(result.scalars().all())

    @staticmethod
    async def list_boms(
        db: AsyncSession,
        ctx: CommandContext,
        *,
        status: BOMStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[BOM], int]:
        q = select(BOM).where(BOM.tenant_id == ctx.tenant_id)
        count_q = select(func.count(BOM.id)).where(BOM.tenant_id == ctx.tenant_id)
        if status:
            q = q.where(BOM.status == status)
            count_q = count_q.where(BOM.status == status)
        total = (await db.execute(count_q)).scalar_one()
        q = q.order_by(BOM.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await db.execute(q)
        return list(result.scalars().all()), total

    @staticmethod
    async def default_for(db: AsyncSession, ctx: CommandContext, product_id: UUID) -> BOM | None:
        result = await db.execute(
            select(BOM).where(
                BOM.tenant_id == ctx.tenant_id,
                BOM.product_id == product_id,
                BOM.is_default.is_(True),
                BOM.status == BOMStatus.ACTIVE,
            )
        )
        return result.scalars().first()

    @staticmethod
    async def is_referenced(db: AsyncSession, ctx: CommandContext, bom_id: UUID) -> bool:
        """True when any order past DRAFT uses this BOM."""
        result = await db.execute(
            select(func.count(AssemblyOrder.id)).where(
                AssemblyOrder.tenant_id == ctx.tenant_id,
                AssemblyOrder.bom_id == bom_id,
                AssemblyOrder.status != AssemblyOrderStatus.DRAFT,
            )
        )
        return result.scalar_one() > 0

    @staticmethod
    async def update_bom(
        db: AsyncSession,
        ctx: CommandContext,
        bom_id: UUID,
        *,
        version: str | None = None,
        items: list[dict] | None = None,
        is_default: bool | None = None,
        **fields,
    ) -> BOM:
        """
        Edit a BOM.

        A changed ``version`` creates a new BOM record and leaves this one as it
        is. Without a version change the BOM is edited in place, which is only
        allowed while no order past DRAFT references it.
        """
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown BOM fields: {', '.join(sorted(unknown))}")
        bom = await BOMService.require_bom(db, ctx, bom_id)

        if version is not None and version != bom.version:
            if items is None:
                items = [
                    {
                        "component_id": item.component_id,
                        "quantity": item.quantity,
                        "unit_of_measure": item.unit_of_measure,
                        "waste_percentage": item.waste_percentage,
                        "sequence_number": item.sequence_number,
                        "is_critical": item.is_critical,
                        "is_optional": item.is_optional,
                        "notes": item.notes,
                    }
                    for item in bom.items
                ]
            product = await CatalogService.require_product(db, ctx, bom.product_id)
            async with transaction(db, [bom_key(ctx.tenant_id, bom.product_id)]):
                new_bom = await BOMService._insert_bom(
                    db,
                    ctx,
                    product,
                    items,
                    version=version,
                    is_default=bool(is_default),
                    bom_type=fields.get("bom_type", bom.bom_type),
                    status=fields.get("status", BOMStatus.ACTIVE),
                    output_quantity=fields.get("output_quantity", bom.output_quantity),
                    description=fields.get("description", bom.description),
                    notes=fields.get("notes", bom.notes),
                )
                log_audit(
                    db, ctx, ACTION_BOM_VERSIONED, "bom", new_bom.id,
                    {"previous_bom_id": str(bom.id), "previous_version": bom.version, "version": version},
                )
            logger.info("BOM %s versioned %s -> %s", bom.id, bom.version, version)
            return await BOMService.require_bom(db, ctx, new_bom.id)

        async with transaction(db, [bom_key(ctx.tenant_id, bom.product_id)]):
            bom = await BOMService.require_bom(db, ctx, bom_id)
            if await BOMService.is_referenced(db, ctx, bom.id):
                logger.warning("In-place edit rejected for referenced BOM %s", bom.id)
                raise StateConflictError(
                    f"BOM version {bom.version} is used by released orders; change the version to edit it"
                )
            if items is not None:
                new_items = await BOMService._validate_items(db, ctx, bom.product_id, items)
                bom.items.clear()
                await db.flush()
                bom.items.extend(new_items)
            if "output_quantity" in fields and Decimal(str(fields["output_quantity"])) <= 0:
                raise ValidationError("output_quantity must be greater than zero")
            for name, value in fields.items():
                setattr(bom, name, value)
            if is_default is not None:
                if is_default:
                    await BOMService._clear_default(db, ctx, bom.product_id, keep_id=bom.id)
                bom.is_default = is_default
            await db.flush()
        return await BOMService.require_bom(db, ctx, bom.id)

    @staticmethod
    async def set_default(db: AsyncSession, ctx: CommandContext, bom_id: UUID) -> BOM:
        bom = await BOMService.require_bom(db, ctx, bom_id)
        if bom.status != BOMStatus.ACTIVE:
            raise ValidationError(f"Only an ACTIVE BOM can be the default (status {bom.status.value})")
        async with transaction(db, [bom_key(ctx.tenant_id, bom.product_id)]):
            await BOMService._clear_default(db, ctx, bom.product_id, keep_id=bom.id)
            bom.is_default = True
        return await BOMService.require_bom(db, ctx, bom.id)

    @staticmethod
    async def archive_bom(db: AsyncSession, ctx: CommandContext, bom_id: UUID) -> BOM:
        """Soft-delete a BOM. Orders already using it keep working."""
        bom = await BOMService.require_bom(db, ctx, bom_id)
        async with transaction(db, [bom_key(ctx.tenant_id, bom.product_id)]):
            bom.status = BOMStatus.ARCHIVED
            bom.is_default = False
            log_audit(db, ctx, ACTION_BOM_ARCHIVED, "bom", bom.id, {"version": bom.version})
        return bom

    @staticmethod
    async def resolve(db: AsyncSession, ctx: CommandContext, bom_id: UUID) -> list[ComponentRequirement]:
        """Component list normalised per finished unit, with each component's precision."""
        bom = await BOMService.require_bom(db, ctx, bom_id)
        component_ids = [item.component_id for item in bom.items]
        result = await db.execute(
            select(Product.id, Product.uom_decimals).where(Product.id.in_(component_ids))
        )
        decimals = dict(result.all())
        return [
            ComponentRequirement(
                component_id=item.component_id,
                quantity=item.quantity,
                per=bom.output_quantity,
                uom_decimals=decimals.get(item.component_id, 0),
            )
            for item in bom.items
        ]

    @staticmethod
    async def explode(
        db: AsyncSession,
        ctx: CommandContext,
        bom_id: UUID,
        quantity: Decimal,
    ) -> dict[UUID, Decimal]:
        """
        Expand BOM for a given production quantity.
        Returns {component_id: total_required_quantity}.
        """
        requirements = await BOMService.resolve(db, ctx, bom_id)
        return {req.component_id: required_quantity(req, Decimal(quantity)) for req in requirements}

    @staticmethod
    async def check_availability(
        db: AsyncSession,
        ctx: CommandContext,
        bom_id: UUID,
        quantity: Decimal,
        location_id: UUID,
    ) -> AvailabilityReport:
        """
        Check whether component stock at ``location_id`` covers ``quantity`` finished units.
        Advisory only: nothing is reserved.
        """
        quantity = Decimal(quantity)
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")
        await CatalogService.require_location(db, ctx, location_id)
        requirements = await BOMService.resolve(db, ctx, bom_id)
        available = {
            req.component_id: await LedgerService.available(db, ctx, req.component_id, location_id, use_cache=True)
            for req in requirements
        }
        return build_availability_report(requirements, quantity, available)
