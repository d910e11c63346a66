"""FORGE - LedgerService: per-(product, location) balances with an append-only event log.

Every mutation runs inside ``transaction(db, keys)`` with the matching
``stock_key`` held, and reads its balance row with ``SELECT ... FOR UPDATE``.
Nothing here clamps: each failure is reported with a distinct error.
"""
import logging
from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from forge.config import get_settings
from forge.core.context import CommandContext
from forge.core.redis import get_redis, stock_cache_key
from forge.db.session import transaction
from forge.exceptions import InsufficientStockError, InvariantViolationError, ValidationError
from forge.models.stock import StockBalance, StockEventType, StockLedger

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def stock_key(tenant_id: UUID, product_id: UUID, location_id: UUID) -> tuple:
    """Lock key for one unit of stock contention."""
    return ("stock", str(tenant_id), str(product_id), str(location_id))


def _require_positive(qty: Decimal, what: str = "quantity") -> Decimal:
    qty = Decimal(qty)
    if qty <= 0:
        raise ValidationError(f"{what} must be greater than zero", field_errors=[{"field": what, "message": "must be > 0"}])
    return qty


def _insert_for(db: AsyncSession):
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


class LedgerService:
    """Stock ledger with row locks and Redis cache-aside for advisory reads."""

    @staticmethod
    async def lock_balances(
        db: AsyncSession,
        ctx: CommandContext,
        keys: Iterable[tuple[UUID, UUID]],
    ) -> dict[tuple[UUID, UUID], StockBalance]:
        """Lock (creating if missing) the balance rows for (product_id, location_id) pairs."""
        ordered = sorted(set(keys), key=lambda k: (str(k[0]), str(k[1])))
        if not ordered:
            return {}
        insert = _insert_for(db)
        stmt = insert(StockBalance).values(
            [
                {"tenant_id": ctx.tenant_id, "product_id": p, "location_id": l}
                for p, l in ordered
            ]
        ).on_conflict_do_nothing(index_elements=["tenant_id", "product_id", "location_id"])
        await db.execute(stmt)

        locked: dict[tuple[UUID, UUID], StockBalance] = {}
        for product_id, location_id in ordered:
            result = await db.execute(
                select(StockBalance)
                .where(
                    StockBalance.tenant_id == ctx.tenant_id,
                    StockBalance.product_id == product_id,
                    StockBalance.location_id == location_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            locked[(product_id, location_id)] = result.scalar_one()
        return locked

    @staticmethod
    async def _locked(db: AsyncSession, ctx: CommandContext, product_id: UUID, location_id: UUID) -> StockBalance:
        rows = await LedgerService.lock_balances(db, ctx, [(product_id, location_id)])
        return rows[(product_id, location_id)]

    @staticmethod
    async def _record(
        db: AsyncSession,
        ctx: CommandContext,
        balance: StockBalance,
        event_type: StockEventType,
        *,
        quantity_delta: Decimal = ZERO,
        reserved_delta: Decimal = ZERO,
        reference_id: UUID | None = None,
        notes: str | None = None,
    ) -> StockLedger:
        ev = StockLedger(
            tenant_id=ctx.tenant_id,
            product_id=balance.product_id,
            location_id=balance.location_id,
            event_type=event_type,
            quantity_delta=quantity_delta,
            reserved_delta=reserved_delta,
            reference_id=reference_id,
            actor_id=ctx.actor_id,
            notes=notes,
        )
        db.add(ev)
        await db.flush()

        if get_settings().STOCK_CACHE_ENABLED:
            r = await get_redis()
            await r.delete(stock_cache_key(ctx.tenant_id, balance.product_id, balance.location_id))
        return ev

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        location_id: UUID,
    ) -> StockBalance | None:
        result = await db.execute(
            select(StockBalance)
            .where(
                StockBalance.tenant_id == ctx.tenant_id,
                StockBalance.product_id == product_id,
                StockBalance.location_id == location_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def available(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        location_id: UUID,
        *,
        use_cache: bool = False,
    ) -> Decimal:
        """Available = on hand - reserved. Cached reads are advisory only."""
        settings = get_settings()
        cache = use_cache and settings.STOCK_CACHE_ENABLED
        key = stock_cache_key(ctx.tenant_id, product_id, location_id)
        if cache:
            r = await get_redis()
            cached = await r.get(key)
            if cached is not None:
                return Decimal(cached)

        balance = await LedgerService.get_balance(db, ctx, product_id, location_id)
        level = balance.available if balance is not None else ZERO
        if cache:
            await r.setex(key, settings.STOCK_CACHE_TTL, str(level))
        return level

    @staticmethod
    async def reserve(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        location_id: UUID,
        qty: Decimal,
        *,
        allow_shortage: bool = False,
        reference_id: UUID | None = None,
    ) -> StockBalance:
        """Soft-allocate stock. With allow_shortage the reservation may exceed on hand."""
        qty = _require_positive(qty)
        balance = await LedgerService._locked(db, ctx, product_id, location_id)
        available = balance.available
        if available < qty and not allow_shortage:
            logger.warning("Reservation rejected for %s at %s: need %s, available %s", product_id, location_id, qty, available)
            raise InsufficientStockError(
                "Not enough available stock to reserve",
                shortages=[{
                    "component_id": product_id,
                    "location_id": location_id,
                    "required": qty,
                    "available": available,
                    "shortage": qty - available,
                }],
            )
        balance.reserved = balance.reserved + qty
        await LedgerService._record(
            db, ctx, balance, StockEventType.RESERVE, reserved_delta=qty, reference_id=reference_id
        )
        return balance

    @staticmethod
    async def release(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        location_id: UUID,
        qty: Decimal,
        *,
        reference_id: UUID | None = None,
    ) -> StockBalance:
        qty = _require_positive(qty)
        balance = await LedgerService._locked(db, ctx, product_id, location_id)
        if balance.reserved < qty:
            raise InvariantViolationError(
                f"Cannot release {qty}: only {balance.reserved} reserved for product {product_id} at {location_id}"
            )
        balance.reserved = balance.reserved - qty
        await LedgerService._record(
            db, ctx, balance, StockEventType.RELEASE, reserved_delta=-qty, reference_id=reference_id
        )
        return balance

    @staticmethod
    async def debit(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        location_id: UUID,
        qty: Decimal,
        *,
        from_reserved: Decimal = ZERO,
        event_type: StockEventType = StockEventType.ASSEMBLE_OUT,
        reference_id: UUID | None = None,
        notes: str | None = None,
    ) -> StockBalance:
        """Remove stock. ``from_reserved`` of it is taken out of the reservation as well."""
        qty = _require_positive(qty)
        from_reserved = Decimal(from_reserved)
        if from_reserved < 0 or from_reserved > qty:
            raise InvariantViolationError(f"from_reserved {from_reserved} outside 0..{qty}")
        balance = await LedgerService._locked(db, ctx, product_id, location_id)
        if from_reserved > balance.reserved:
            raise InvariantViolationError(
                f"Cannot consume {from_reserved} from reservation: only {balance.reserved} reserved"
            )
        if balance.on_hand < qty:
            logger.warning("Debit rejected for %s at %s: need %s, on hand %s", product_id, location_id, qty, balance.on_hand)
            raise InsufficientStockError(
                "Not enough stock on hand",
                shortages=[{
                    "component_id": product_id,
                    "location_id": location_id,
                    "required": qty,
                    "available": balance.on_hand,
                    "shortage": qty - balance.on_hand,
                }],
            )
        balance.on_hand = balance.on_hand - qty
        balance.reserved = balance.reserved - from_reserved
        await LedgerService._record(
            db,
            ctx,
            balance,
            event_type,
            quantity_delta=-qty,
            reserved_delta=-from_reserved,
            reference_id=reference_id,
            notes=notes,
        )
        return balance

    @staticmethod
    async def credit(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        location_id: UUID,
        qty: Decimal,
        *,
        event_type: StockEventType = StockEventType.RECEIVE,
        reference_id: UUID | None = None,
        notes: str | None = None,
    ) -> StockBalance:
        qty = _require_positive(qty)
        balance = await LedgerService._locked(db, ctx, product_id, location_id)
        balance.on_hand = balance.on_hand + qty
        await LedgerService._record(
            db, ctx, balance, event_type, quantity_delta=qty, reference_id=reference_id, notes=notes
        )
        return balance

    @staticmethod
    async def adjust(
        db: AsyncSession,
        ctx: CommandContext,
        product_id: UUID,
        location_id: UUID,
        delta: Decimal,
        *,
        notes: str | None = None,
    ) -> StockBalance:
        """Manual stock adjustment command (positive or negative delta)."""
        delta = Decimal(delta)
        if delta == 0:
            raise ValidationError("Adjustment delta must not be zero")
        async with transaction(db, [stock_key(ctx.tenant_id, product_id, location_id)]):
            if delta > 0:
                balance = await LedgerService.credit(
                    db, ctx, product_id, location_id, delta, event_type=StockEventType.ADJUST, notes=notes
                )
            else:
                balance = await LedgerService.debit(
                    db, ctx, product_id, location_id, -delta, event_type=StockEventType.ADJUST, notes=notes
                )
        logger.info("Stock adjusted: product=%s location=%s delta=%s", product_id, location_id, delta)
        return balance

    @staticmethod
    async def get_transaction_history(
        db: AsyncSession,
        ctx: CommandContext,
        *,
        product_id: UUID | None = None,
        location_id: UUID | None = None,
        event_type: StockEventType | None = None,
        reference_id: UUID | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[StockLedger], int]:
        """Paginated ledger events, newest first."""
        q = select(StockLedger).where(StockLedger.tenant_id == ctx.tenant_id)
        count_q = select(func.count(StockLedger.id)).where(StockLedger.tenant_id == ctx.tenant_id)
        if product_id:
            q = q.where(StockLedger.product_id == product_id)
            count_q = count_q.where(StockLedger.product_id == product_id)
        if location_id:
            q = q.where(StockLedger.location_id == location_id)
            count_q = count_q.where(StockLedger.location_id == location_id)
        if event_type:
            q = q.where(StockLedger.event_type == event_type)
            count_q = count_q.where(StockLedger.event_type == event_type)
        if reference_id:
            q = q.where(StockLedger.reference_id == reference_id)
            count_q = count_q.where(StockLedger.reference_id == reference_id)

        total = (await db.execute(count_q)).scalar_one()
        q = q.order_by(StockLedger.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await db.execute(q)
        return list(result.scalars().all()), total
