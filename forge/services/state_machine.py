"""FORGE - Central transition tables for every document lifecycle."""
import logging
from enum import Enum
from typing import Generic, TypeVar

from forge.exceptions import StateConflictError
from forge.models.assembly import AssemblyOrderStatus as AO
from forge.models.goods_receipt import ReceiptStatus as GR
from forge.models.purchase_order import POStatus as PO

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


class StateMachine(Generic[S]):
    """A closed set of states and the allowed moves between them."""

    def __init__(self, name: str, transitions: dict[S, frozenset[S]]):
        self.name = name
        self.transitions = transitions

    def can(self, current: S, target: S) -> bool:
        return target in self.transitions.get(current, frozenset())

    def is_terminal(self, state: S) -> bool:
        return not self.transitions.get(state)

    def check(self, current: S, target: S, number: str | None = None) -> None:
        """Raise StateConflictError unless current -> target is allowed."""
        if not self.can(current, target):
            label = f"{self.name} {number}" if number else self.name
            logger.warning("Rejected transition %s: %s -> %s", label, current.value, target.value)
            raise StateConflictError(
                f"Cannot move {label} from {current.value} to {target.value}",
                current_status=current.value,
            )


ASSEMBLY_ORDER_FLOW: StateMachine[AO] = StateMachine(
    "Assembly order",
    {
        AO.DRAFT: frozenset({AO.PLANNED, AO.RELEASED, AO.CANCELLED}),
        AO.PLANNED: frozenset({AO.RELEASED, AO.CANCELLED}),
        AO.RELEASED: frozenset({AO.IN_PROGRESS, AO.ON_HOLD, AO.CANCELLED}),
        AO.IN_PROGRESS: frozenset({AO.COMPLETED, AO.ON_HOLD, AO.CANCELLED}),
        # Resume goes back to whichever state the hold came from
        AO.ON_HOLD: frozenset({AO.RELEASED, AO.IN_PROGRESS, AO.CANCELLED}),
        AO.COMPLETED: frozenset(),
        AO.CANCELLED: frozenset(),
    },
)

GOODS_RECEIPT_FLOW: StateMachine[GR] = StateMachine(
    "Goods receipt",
    {
        GR.DRAFT: frozenset({GR.CONFIRMED, GR.CANCELLED}),
        GR.CONFIRMED: frozenset(),
        GR.CANCELLED: frozenset(),
    },
)

PURCHASE_ORDER_FLOW: StateMachine[PO] = StateMachine(
    "Purchase order",
    {
        PO.DRAFT: frozenset({PO.ORDERED, PO.CANCELLED}),
        PO.ORDERED: frozenset({PO.PARTIAL, PO.RECEIVED, PO.CANCELLED}),
        PO.PARTIAL: frozenset({PO.RECEIVED}),
        PO.RECEIVED: frozenset(),
        PO.CANCELLED: frozenset(),
    },
)
