"""FORGE - Material requirement, availability and proportional consumption algorithms.

Consumption is computed cumulatively and telescoped: the debit for a report is
``consumed(produced_after) - consumed(produced_before)``, with each cumulative
figure rounded down to the component's precision. Partial reports therefore
always add up to exactly what a single report of the same total would debit.
"""
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from enum import Enum
from uuid import UUID

ZERO = Decimal("0")


class AvailabilityStatus(str, Enum):
    AVAILABLE = "Available"
    SHORTAGE = "Shortage"


@dataclass(frozen=True)
class ComponentRequirement:
    """One BOM line normalised to a single finished unit.

    ``quantity`` components are needed per ``per`` finished units; keeping both
    avoids the precision loss of dividing first.
    """

    component_id: UUID
    quantity: Decimal
    per: Decimal = Decimal("1")
    uom_decimals: int = 0

    @property
    def quantity_per_unit(self) -> Decimal:
        return self.quantity / self.per


@dataclass(frozen=True)
class ComponentAvailability:
    component_id: UUID
    required: Decimal
    available: Decimal
    shortage: Decimal

    @property
    def status(self) -> AvailabilityStatus:
        return AvailabilityStatus.SHORTAGE if self.shortage > 0 else AvailabilityStatus.AVAILABLE


@dataclass
class AvailabilityReport:
    lines: list[ComponentAvailability] = field(default_factory=list)
    order_number: str | None = None

    @property
    def is_fully_available(self) -> bool:
        return all(line.shortage == 0 for line in self.lines)

    @property
    def shortages(self) -> list[ComponentAvailability]:
        return [line for line in self.lines if line.shortage > 0]


def _step(decimals: int) -> Decimal:
    return Decimal(1).scaleb(-decimals)


def round_down(value: Decimal, decimals: int) -> Decimal:
    return value.quantize(_step(decimals), rounding=ROUND_FLOOR)


def round_up(value: Decimal, decimals: int) -> Decimal:
    return value.quantize(_step(decimals), rounding=ROUND_CEILING)


def fits_precision(value: Decimal, decimals: int) -> bool:
    return round_down(value, decimals) == value


def cumulative_consumption(req: ComponentRequirement, produced: Decimal) -> Decimal:
    """Total component quantity consumed once ``produced`` finished units exist."""
    return round_down(req.quantity * produced / req.per, req.uom_decimals)


def required_quantity(req: ComponentRequirement, planned: Decimal) -> Decimal:
    return cumulative_consumption(req, planned)


def consumption_for_report(req: ComponentRequirement, produced_before: Decimal, produced_now: Decimal) -> Decimal:
    return cumulative_consumption(req, produced_before + produced_now) - cumulative_consumption(req, produced_before)


def output_credit(produced_before: Decimal, produced_now: Decimal, decimals: int) -> Decimal:
    """Finished-good quantity to credit; never rounded down."""
    return round_up(produced_before + produced_now, decimals) - round_up(produced_before, decimals)


def shortage(required: Decimal, available: Decimal) -> Decimal:
    return max(ZERO, required - available)


def build_availability_report(
    requirements: list[ComponentRequirement],
    planned: Decimal,
    available_by_component: dict[UUID, Decimal],
    order_number: str | None = None,
) -> AvailabilityReport:
    report = AvailabilityReport(order_number=order_number)
    for req in requirements:
        required = required_quantity(req, planned)
        available = available_by_component.get(req.component_id, ZERO)
        report.lines.append(
            ComponentAvailability(
                component_id=req.component_id,
                required=required,
                available=available,
                shortage=shortage(required, available),
            )
        )
    return report


def shortage_detail(report: AvailabilityReport) -> list[dict]:
    """Shortage list in the shape carried by InsufficientStockError."""
    return [
        {
            "component_id": line.component_id,
            "required": line.required,
            "available": line.available,
            "shortage": line.shortage,
        }
        for line in report.shortages
    ]
