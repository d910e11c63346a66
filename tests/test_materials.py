"""Requirement, availability and proportional consumption arithmetic."""
import uuid
from decimal import Decimal

from forge.services.materials import (
    AvailabilityStatus,
    ComponentRequirement,
    build_availability_report,
    consumption_for_report,
    cumulative_consumption,
    fits_precision,
    output_credit,
    required_quantity,
    round_down,
    round_up,
    shortage_detail,
)

A = uuid.uuid4()
B = uuid.uuid4()


def test_rounding_helpers():
    assert round_down(Decimal("1.239"), 2) == Decimal("1.23")
    assert round_up(Decimal("1.231"), 2) == Decimal("1.24")
    assert round_down(Decimal("7.9"), 0) == Decimal("7")
    assert fits_precision(Decimal("2.50"), 1)
    assert not fits_precision(Decimal("2.55"), 1)


def test_required_quantity_for_whole_units():
    req = ComponentRequirement(component_id=A, quantity=Decimal("2"))
    assert required_quantity(req, Decimal("10")) == Decimal("20")


def test_requirement_expressed_per_batch_is_not_divided_first():
    # 1 component per 3 finished units; dividing first would lose a unit over 9
    req = ComponentRequirement(component_id=A, quantity=Decimal("1"), per=Decimal("3"))
    assert required_quantity(req, Decimal("9")) == Decimal("3")


def test_partial_reports_add_up_to_a_single_report():
    req = ComponentRequirement(component_id=A, quantity=Decimal("1"), per=Decimal("3"), uom_decimals=0)
    reports = [Decimal("1"), Decimal("1"), Decimal("1"), Decimal("4"), Decimal("2")]
    produced = Decimal("0")
    consumed = Decimal("0")
    for qty in reports:
        consumed += consumption_for_report(req, produced, qty)
        produced += qty
    assert consumed == cumulative_consumption(req, produced) == Decimal("3")


def test_fractional_component_rounds_down_per_report_but_telescopes():
    req = ComponentRequirement(component_id=A, quantity=Decimal("0.025"), uom_decimals=2)
    # 0.025 -> 0.02 after one unit, 0.05 after two
    assert consumption_for_report(req, Decimal("0"), Decimal("1")) == Decimal("0.02")
    assert consumption_for_report(req, Decimal("1"), Decimal("1")) == Decimal("0.03")


def test_output_credit_rounds_up():
    assert output_credit(Decimal("0"), Decimal("2.5"), 0) == Decimal("3")
    assert output_credit(Decimal("2.5"), Decimal("2.5"), 0) == Decimal("2")
    assert output_credit(Decimal("0"), Decimal("5"), 0) == Decimal("5")


def test_availability_report_flags_shortage():
    # given 2 x A + 1 x B per unit and A=25, B=8 on hand
    reqs = [
        ComponentRequirement(component_id=A, quantity=Decimal("2")),
        ComponentRequirement(component_id=B, quantity=Decimal("1")),
    ]

    # when checking 10 units
    report = build_availability_report(reqs, Decimal("10"), {A: Decimal("25"), B: Decimal("8")}, "AO-000001")

    # then A is fine and B is 2 short
    line_a, line_b = report.lines
    assert (line_a.required, line_a.available, line_a.shortage) == (Decimal("20"), Decimal("25"), Decimal("0"))
    assert line_a.status == AvailabilityStatus.AVAILABLE
    assert (line_b.required, line_b.available, line_b.shortage) == (Decimal("10"), Decimal("8"), Decimal("2"))
    assert line_b.status == AvailabilityStatus.SHORTAGE
    assert report.is_fully_available is False
    assert [s["component_id"] for s in shortage_detail(report)] == [B]


def test_missing_balance_counts_as_zero_available():
    reqs = [ComponentRequirement(component_id=A, quantity=Decimal("1"))]
    report = build_availability_report(reqs, Decimal("4"), {})
    assert report.lines[0].shortage == Decimal("4")


def test_negative_availability_never_reduces_shortage_below_required_gap():
    reqs = [ComponentRequirement(component_id=A, quantity=Decimal("1"))]
    report = build_availability_report(reqs, Decimal("4"), {A: Decimal("-2")})
    assert report.lines[0].shortage == Decimal("6")
