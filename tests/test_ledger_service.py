"""Stock ledger: balances, reservations and the append-only event log."""
import uuid
from decimal import Decimal

import pytest

from forge.core.context import CommandContext
from forge.core.redis import stock_cache_key
from forge.db.session import transaction
from forge.exceptions import InsufficientStockError, InvariantViolationError, ValidationError
from forge.models.stock import StockEventType
from forge.services.ledger_service import LedgerService, stock_key


async def _balance(db, ctx, product, location):
    return await LedgerService.get_balance(db, ctx, product.id, location.id)


async def test_adjust_creates_balance_and_ledger_event(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")

    await stock(widget, workshop, 12)

    balance = await _balance(db, ctx, widget, workshop)
    assert balance.on_hand == Decimal("12")
    assert balance.reserved == Decimal("0")
    events, total = await LedgerService.get_transaction_history(db, ctx, product_id=widget.id)
    assert total == 1
    assert events[0].event_type == StockEventType.ADJUST
    assert events[0].quantity_delta == Decimal("12")
    assert events[0].actor_id == ctx.actor_id


async def test_negative_adjust_cannot_take_stock_below_zero(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 3)

    with pytest.raises(InsufficientStockError) as exc:
        await LedgerService.adjust(db, ctx, widget.id, workshop.id, Decimal("-5"))

    assert exc.value.shortages[0]["shortage"] == Decimal("2")
    balance = await _balance(db, ctx, widget, workshop)
    assert balance.on_hand == Decimal("3")


async def test_zero_adjust_is_rejected(db, ctx, make_product, workshop):
    widget = await make_product("WIDGET")
    with pytest.raises(ValidationError):
        await LedgerService.adjust(db, ctx, widget.id, workshop.id, Decimal("0"))


async def test_reserve_reduces_available_not_on_hand(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 10)

    async with transaction(db, [stock_key(ctx.tenant_id, widget.id, workshop.id)]):
        await LedgerService.reserve(db, ctx, widget.id, workshop.id, Decimal("4"))

    balance = await _balance(db, ctx, widget, workshop)
    assert balance.on_hand == Decimal("10")
    assert balance.reserved == Decimal("4")
    assert await LedgerService.available(db, ctx, widget.id, workshop.id) == Decimal("6")


async def test_reserve_beyond_available_reports_shortage(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 3)

    with pytest.raises(InsufficientStockError) as exc:
        async with transaction(db, [stock_key(ctx.tenant_id, widget.id, workshop.id)]):
            await LedgerService.reserve(db, ctx, widget.id, workshop.id, Decimal("5"))

    shortage = exc.value.shortages[0]
    assert shortage["required"] == Decimal("5")
    assert shortage["available"] == Decimal("3")
    balance = await _balance(db, ctx, widget, workshop)
    assert balance.reserved == Decimal("0")


async def test_reserve_with_shortage_allowed_goes_past_on_hand(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 3)

    async with transaction(db, [stock_key(ctx.tenant_id, widget.id, workshop.id)]):
        await LedgerService.reserve(db, ctx, widget.id, workshop.id, Decimal("5"), allow_shortage=True)

    balance = await _balance(db, ctx, widget, workshop)
    assert balance.reserved == Decimal("5")
    assert balance.available == Decimal("-2")


async def test_releasing_more_than_reserved_is_an_invariant_violation(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 5)

    with pytest.raises(InvariantViolationError):
        async with transaction(db, [stock_key(ctx.tenant_id, widget.id, workshop.id)]):
            await LedgerService.release(db, ctx, widget.id, workshop.id, Decimal("1"))


async def test_debit_from_reservation_moves_both_figures(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 10)
    key = stock_key(ctx.tenant_id, widget.id, workshop.id)
    async with transaction(db, [key]):
        await LedgerService.reserve(db, ctx, widget.id, workshop.id, Decimal("6"))

    async with transaction(db, [key]):
        await LedgerService.debit(db, ctx, widget.id, workshop.id, Decimal("4"), from_reserved=Decimal("4"))

    balance = await _balance(db, ctx, widget, workshop)
    assert balance.on_hand == Decimal("6")
    assert balance.reserved == Decimal("2")


async def test_failed_transaction_leaves_no_ledger_rows(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    gadget = await make_product("GADGET")
    await stock(widget, workshop, 10)
    keys = [stock_key(ctx.tenant_id, p.id, workshop.id) for p in (widget, gadget)]

    # given a credit followed by a debit that cannot be covered
    with pytest.raises(InsufficientStockError):
        async with transaction(db, keys):
            await LedgerService.credit(db, ctx, widget.id, workshop.id, Decimal("5"))
            await LedgerService.debit(db, ctx, gadget.id, workshop.id, Decimal("1"))

    # then the credit was rolled back too
    balance = await _balance(db, ctx, widget, workshop)
    assert balance.on_hand == Decimal("10")
    _, total = await LedgerService.get_transaction_history(db, ctx, product_id=widget.id)
    assert total == 1


async def test_cached_availability_is_invalidated_by_mutations(db, ctx, make_product, workshop, stock, fake_redis):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 10)

    assert await LedgerService.available(db, ctx, widget.id, workshop.id, use_cache=True) == Decimal("10")
    key = stock_cache_key(ctx.tenant_id, widget.id, workshop.id)
    assert key in fake_redis.store

    await stock(widget, workshop, 5)

    assert key not in fake_redis.store
    assert await LedgerService.available(db, ctx, widget.id, workshop.id, use_cache=True) == Decimal("15")


async def test_history_is_scoped_to_tenant(db, ctx, make_product, workshop, stock):
    widget = await make_product("WIDGET")
    await stock(widget, workshop, 1)

    other = CommandContext(tenant_id=uuid.uuid4())
    events, total = await LedgerService.get_transaction_history(db, other, product_id=widget.id)
    assert total == 0
    assert events == []
