"""Assembly order lifecycle: release, proportional consumption, completion and cancellation."""
from decimal import Decimal

import pytest
from sqlalchemy import select

from forge.exceptions import InsufficientStockError, StateConflictError, ValidationError
from forge.models.assembly import AssemblyOrderStatus
from forge.models.audit import AuditLog
from forge.models.stock import StockEventType
from forge.services.assembly_service import AssemblyService
from forge.services.audit_service import ACTION_ORDER_RELEASED
from forge.services.bom_service import BOMService
from forge.services.ledger_service import LedgerService


async def _on_hand(db, ctx, product, location):
    balance = await LedgerService.get_balance(db, ctx, product.id, location.id)
    return (balance.on_hand, balance.reserved) if balance else (Decimal("0"), Decimal("0"))


@pytest.fixture
async def order(db, ctx, kit, workshop):
    return await AssemblyService.create(db, ctx, kit["P"].id, Decimal("10"), workshop.id)


# ── Creation ──────────────────────────────────────────────────────────────────


async def test_create_uses_default_bom_and_numbers_orders(db, ctx, kit, workshop, order):
    second = await AssemblyService.create(db, ctx, kit["P"].id, Decimal("1"), workshop.id)

    assert order.status == AssemblyOrderStatus.DRAFT
    assert order.bom_id == kit["bom"].id
    assert order.order_number == "AO-000001"
    assert second.order_number == "AO-000002"
    assert order.quantity_remaining == Decimal("10")


async def test_create_rejects_bom_of_another_product(db, ctx, kit, workshop, make_product):
    other = await make_product("OTHER", is_manufactured=True)
    with pytest.raises(ValidationError, match="does not belong"):
        await AssemblyService.create(db, ctx, other.id, Decimal("1"), workshop.id, bom_id=kit["bom"].id)


async def test_create_requires_manufacturing_location(db, ctx, kit, showroom):
    with pytest.raises(ValidationError, match="not a manufacturing location"):
        await AssemblyService.create(db, ctx, kit["P"].id, Decimal("1"), showroom.id)


async def test_create_rejects_non_positive_and_too_precise_quantities(db, ctx, kit, workshop):
    with pytest.raises(ValidationError):
        await AssemblyService.create(db, ctx, kit["P"].id, Decimal("0"), workshop.id)
    with pytest.raises(ValidationError, match="precision"):
        await AssemblyService.create(db, ctx, kit["P"].id, Decimal("1.5"), workshop.id)


async def test_create_rejects_archived_bom(db, ctx, kit, workshop):
    await BOMService.archive_bom(db, ctx, kit["bom"].id)
    with pytest.raises(ValidationError):
        await AssemblyService.create(db, ctx, kit["P"].id, Decimal("1"), workshop.id, bom_id=kit["bom"].id)


async def test_update_and_delete_only_in_draft(db, ctx, kit, workshop, stock, order):
    updated = await AssemblyService.update(db, ctx, order.id, quantity_planned=Decimal("4"), notes="rush")
    assert updated.quantity_planned == Decimal("4")
    assert updated.notes == "rush"

    await stock(kit["A"], workshop, 100)
    await stock(kit["B"], workshop, 100)
    await AssemblyService.release(db, ctx, order.id)

    with pytest.raises(StateConflictError):
        await AssemblyService.update(db, ctx, order.id, notes="late")
    with pytest.raises(StateConflictError):
        await AssemblyService.delete(db, ctx, order.id)


async def test_delete_draft(db, ctx, order):
    await AssemblyService.delete(db, ctx, order.id)
    assert await AssemblyService.get_order(db, ctx, order.id) is None


# ── Availability and release ─────────────────────────────────────────────────


async def test_scenario_release_anyway_then_partial_production(db, ctx, kit, workshop, stock, order):
    # given 2 x A + 1 x B per P, A=25 and B=8 on hand
    await stock(kit["A"], workshop, 25)
    await stock(kit["B"], workshop, 8)

    # when availability is checked for 10 x P
    report = await AssemblyService.check_availability(db, ctx, order.id)

    # then A is covered and B is 2 short
    lines = {line.component_id: line for line in report.lines}
    assert (lines[kit["A"].id].required, lines[kit["A"].id].available) == (Decimal("20"), Decimal("25"))
    assert lines[kit["A"].id].shortage == Decimal("0")
    assert (lines[kit["B"].id].required, lines[kit["B"].id].available) == (Decimal("10"), Decimal("8"))
    assert lines[kit["B"].id].shortage == Decimal("2")
    assert report.is_fully_available is False

    # when released anyway, started and 5 are reported
    await AssemblyService.release(db, ctx, order.id, allow_shortage=True)
    await AssemblyService.start_production(db, ctx, order.id)
    result = await AssemblyService.report_production(db, ctx, order.id, Decimal("5"))

    # then A dropped by 10, B by 5, P gained 5
    assert result.quantity_produced == Decimal("5")
    assert result.status == AssemblyOrderStatus.IN_PROGRESS
    assert (await _on_hand(db, ctx, kit["A"], workshop))[0] == Decimal("15")
    assert (await _on_hand(db, ctx, kit["B"], workshop))[0] == Decimal("3")
    assert (await _on_hand(db, ctx, kit["P"], workshop))[0] == Decimal("5")


async def test_release_with_shortage_is_rejected_with_detail(db, ctx, kit, workshop, stock, order):
    await stock(kit["A"], workshop, 25)
    await stock(kit["B"], workshop, 8)

    with pytest.raises(InsufficientStockError) as exc:
        await AssemblyService.release(db, ctx, order.id)

    assert [s["component_id"] for s in exc.value.shortages] == [kit["B"].id]
    assert exc.value.shortages[0]["shortage"] == Decimal("2")
    reloaded = await AssemblyService.require_order(db, ctx, order.id)
    assert reloaded.status == AssemblyOrderStatus.DRAFT
    assert reloaded.materials == []
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("25"), Decimal("0"))


async def test_release_reserves_and_snapshots_materials(db, ctx, kit, workshop, stock, order):
    await stock(kit["A"], workshop, 25)
    await stock(kit["B"], workshop, 8)

    released = await AssemblyService.release(db, ctx, order.id, allow_shortage=True)

    assert released.status == AssemblyOrderStatus.RELEASED
    assert released.released_at is not None
    materials = {m.component_id: m for m in released.materials}
    assert materials[kit["A"].id].quantity_reserved == Decimal("20")
    assert materials[kit["B"].id].shortage_at_release == Decimal("2")
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("25"), Decimal("20"))
    assert (await _on_hand(db, ctx, kit["B"], workshop)) == (Decimal("8"), Decimal("10"))
    audit = (await db.execute(select(AuditLog).where(AuditLog.target_id == order.id))).scalars().one()
    assert audit.action == ACTION_ORDER_RELEASED
    assert audit.payload["allow_shortage"] is True


async def test_release_from_planned(db, ctx, kit, workshop, stock, order):
    await stock(kit["A"], workshop, 20)
    await stock(kit["B"], workshop, 10)

    planned = await AssemblyService.plan(db, ctx, order.id)
    assert planned.status == AssemblyOrderStatus.PLANNED
    released = await AssemblyService.release(db, ctx, order.id)

    assert released.status == AssemblyOrderStatus.RELEASED


async def test_availability_check_only_before_release(db, ctx, kit, workshop, stock, order):
    await stock(kit["A"], workshop, 20)
    await stock(kit["B"], workshop, 10)
    await AssemblyService.release(db, ctx, order.id)

    with pytest.raises(StateConflictError):
        await AssemblyService.check_availability(db, ctx, order.id)


async def test_release_twice_is_a_state_conflict(db, ctx, kit, workshop, stock, order):
    await stock(kit["A"], workshop, 40)
    await stock(kit["B"], workshop, 20)
    await AssemblyService.release(db, ctx, order.id)

    with pytest.raises(StateConflictError):
        await AssemblyService.release(db, ctx, order.id)
    assert (await _on_hand(db, ctx, kit["A"], workshop))[1] == Decimal("20")


# ── Production ────────────────────────────────────────────────────────────────


@pytest.fixture
async def running(db, ctx, kit, workshop, stock, order):
    await stock(kit["A"], workshop, 20)
    await stock(kit["B"], workshop, 10)
    await AssemblyService.release(db, ctx, order.id)
    return await AssemblyService.start_production(db, ctx, order.id)


async def test_report_production_requires_in_progress(db, ctx, kit, workshop, stock, order):
    await stock(kit["A"], workshop, 20)
    await stock(kit["B"], workshop, 10)
    await AssemblyService.release(db, ctx, order.id)

    with pytest.raises(StateConflictError):
        await AssemblyService.report_production(db, ctx, order.id, Decimal("1"))


async def test_report_more_than_remaining_is_rejected(db, ctx, running):
    with pytest.raises(ValidationError, match="remaining"):
        await AssemblyService.report_production(db, ctx, running.id, Decimal("11"))


async def test_report_non_positive_is_rejected(db, ctx, running):
    with pytest.raises(ValidationError):
        await AssemblyService.report_production(db, ctx, running.id, Decimal("0"))


async def test_reaching_planned_quantity_completes(db, ctx, kit, workshop, running):
    result = await AssemblyService.report_production(db, ctx, running.id, Decimal("10"))

    assert result.status == AssemblyOrderStatus.COMPLETED
    assert result.completed_at is not None
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("0"), Decimal("0"))
    assert (await _on_hand(db, ctx, kit["B"], workshop)) == (Decimal("0"), Decimal("0"))
    assert (await _on_hand(db, ctx, kit["P"], workshop))[0] == Decimal("10")


async def test_two_partial_reports_equal_one_full_report(db, ctx, kit, workshop, running):
    await AssemblyService.report_production(db, ctx, running.id, Decimal("5"))
    result = await AssemblyService.report_production(db, ctx, running.id, Decimal("5"))

    assert result.status == AssemblyOrderStatus.COMPLETED
    materials = {m.component_id: m for m in result.materials}
    assert materials[kit["A"].id].quantity_consumed == Decimal("20")
    assert materials[kit["B"].id].quantity_consumed == Decimal("10")
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("0"), Decimal("0"))
    events, _ = await LedgerService.get_transaction_history(
        db, ctx, reference_id=running.id, event_type=StockEventType.ASSEMBLE_IN
    )
    assert sorted(e.quantity_delta for e in events) == [Decimal("5"), Decimal("5")]


async def test_production_goes_to_output_location(db, ctx, kit, workshop, showroom, stock):
    await stock(kit["A"], workshop, 2)
    await stock(kit["B"], workshop, 1)
    order = await AssemblyService.create(
        db, ctx, kit["P"].id, Decimal("1"), workshop.id, output_location_id=showroom.id
    )
    await AssemblyService.release(db, ctx, order.id)
    await AssemblyService.start_production(db, ctx, order.id)

    await AssemblyService.report_production(db, ctx, order.id, Decimal("1"))

    assert (await _on_hand(db, ctx, kit["P"], showroom))[0] == Decimal("1")
    assert (await _on_hand(db, ctx, kit["P"], workshop))[0] == Decimal("0")


async def test_failed_credit_rolls_back_every_debit(db, ctx, kit, workshop, running, monkeypatch):
    # given a ledger whose finished-good credit blows up
    async def broken_credit(*args, **kwargs):
        raise RuntimeError("ledger constraint")

    monkeypatch.setattr(LedgerService, "credit", broken_credit)

    # when production is reported
    with pytest.raises(RuntimeError):
        await AssemblyService.report_production(db, ctx, running.id, Decimal("5"))

    # then no component was consumed and the order is unchanged
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("20"), Decimal("20"))
    assert (await _on_hand(db, ctx, kit["B"], workshop)) == (Decimal("10"), Decimal("10"))
    reloaded = await AssemblyService.require_order(db, ctx, running.id)
    assert reloaded.quantity_produced == Decimal("0")
    assert all(m.quantity_consumed == 0 for m in reloaded.materials)


async def test_debit_failure_mid_report_leaves_nothing_applied(db, ctx, kit, workshop, stock):
    # given B was reserved with a shortage and then partly taken away
    await stock(kit["A"], workshop, 20)
    await stock(kit["B"], workshop, 4)
    order = await AssemblyService.create(db, ctx, kit["P"].id, Decimal("10"), workshop.id)
    await AssemblyService.release(db, ctx, order.id, allow_shortage=True)
    await AssemblyService.start_production(db, ctx, order.id)

    # when more is reported than B on hand covers
    with pytest.raises(InsufficientStockError):
        await AssemblyService.report_production(db, ctx, order.id, Decimal("6"))

    # then A was not debited either
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("20"), Decimal("20"))
    assert (await _on_hand(db, ctx, kit["P"], workshop))[0] == Decimal("0")


# ── Completion, cancellation, hold ────────────────────────────────────────────


async def test_manual_complete_releases_leftover_reservation(db, ctx, kit, workshop, running):
    await AssemblyService.report_production(db, ctx, running.id, Decimal("4"))

    result = await AssemblyService.complete(db, ctx, running.id)

    assert result.status == AssemblyOrderStatus.COMPLETED
    assert result.quantity_produced == Decimal("4")
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("12"), Decimal("0"))
    assert (await _on_hand(db, ctx, kit["B"], workshop)) == (Decimal("6"), Decimal("0"))
    materials = {m.component_id: m for m in result.materials}
    assert materials[kit["A"].id].quantity_released == Decimal("12")


async def test_complete_requires_in_progress(db, ctx, order):
    with pytest.raises(StateConflictError):
        await AssemblyService.complete(db, ctx, order.id)


async def test_cancel_releases_reservation_but_keeps_production(db, ctx, kit, workshop, running):
    await AssemblyService.report_production(db, ctx, running.id, Decimal("3"))

    result = await AssemblyService.cancel(db, ctx, running.id)

    assert result.status == AssemblyOrderStatus.CANCELLED
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("14"), Decimal("0"))
    assert (await _on_hand(db, ctx, kit["P"], workshop))[0] == Decimal("3")


async def test_cancel_draft_has_no_stock_effect(db, ctx, order):
    result = await AssemblyService.cancel(db, ctx, order.id)
    assert result.status == AssemblyOrderStatus.CANCELLED


async def test_terminal_orders_cannot_be_cancelled(db, ctx, running):
    await AssemblyService.report_production(db, ctx, running.id, Decimal("10"))
    with pytest.raises(StateConflictError):
        await AssemblyService.cancel(db, ctx, running.id)


async def test_hold_and_resume_return_to_previous_state(db, ctx, running):
    held = await AssemblyService.hold(db, ctx, running.id)
    assert held.status == AssemblyOrderStatus.ON_HOLD
    assert held.held_from_status == AssemblyOrderStatus.IN_PROGRESS

    with pytest.raises(StateConflictError):
        await AssemblyService.report_production(db, ctx, running.id, Decimal("1"))

    resumed = await AssemblyService.resume(db, ctx, running.id)
    assert resumed.status == AssemblyOrderStatus.IN_PROGRESS
    assert resumed.held_from_status is None


async def test_resume_requires_hold(db, ctx, running):
    with pytest.raises(StateConflictError):
        await AssemblyService.resume(db, ctx, running.id)


async def test_cancel_on_hold_releases_reservation(db, ctx, kit, workshop, running):
    await AssemblyService.hold(db, ctx, running.id)
    await AssemblyService.cancel(db, ctx, running.id)
    assert (await _on_hand(db, ctx, kit["A"], workshop)) == (Decimal("20"), Decimal("0"))


async def test_order_keeps_its_bom_version_after_new_version(db, ctx, kit, workshop, running):
    await BOMService.update_bom(db, ctx, kit["bom"].id, version="2.0", is_default=True,
                                items=[{"component_id": kit["A"].id, "quantity": 5}])

    result = await AssemblyService.report_production(db, ctx, running.id, Decimal("1"))

    materials = {m.component_id: m for m in result.materials}
    assert materials[kit["A"].id].quantity_consumed == Decimal("2")
    assert materials[kit["B"].id].quantity_consumed == Decimal("1")


async def test_production_consumes_the_release_snapshot(db, ctx, kit, workshop, running, monkeypatch):
    # given the BOM can no longer be read once the order is running
    async def unreadable_bom(*args, **kwargs):
        raise AssertionError("production must not re-read the BOM")

    monkeypatch.setattr(BOMService, "resolve", unreadable_bom)

    # when production is reported in two parts
    await AssemblyService.report_production(db, ctx, running.id, Decimal("3"))
    result = await AssemblyService.report_production(db, ctx, running.id, Decimal("4"))

    # then consumption follows the materials frozen at release
    materials = {m.component_id: m for m in result.materials}
    assert materials[kit["A"].id].quantity_consumed == Decimal("14")
    assert materials[kit["B"].id].quantity_consumed == Decimal("7")
    assert materials[kit["A"].id].bom_quantity == Decimal("2")
    assert materials[kit["A"].id].bom_output_quantity == Decimal("1")


async def test_released_bom_cannot_be_edited_in_place(db, ctx, kit, running):
    with pytest.raises(StateConflictError, match="change the version"):
        await BOMService.update_bom(db, ctx, kit["bom"].id, items=[{"component_id": kit["A"].id, "quantity": 9}])


async def test_list_and_receivable_orders(db, ctx, running):
    orders, total = await AssemblyService.list_orders(db, ctx, status=AssemblyOrderStatus.IN_PROGRESS)
    assert total == 1
    assert orders[0].id == running.id
    receivable = await AssemblyService.list_receivable_orders(db, ctx)
    assert [o.id for o in receivable] == [running.id]
    assert AssemblyService.remaining_to_receive(receivable[0]) == Decimal("10")
