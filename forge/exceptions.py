"""FORGE - Typed exceptions raised by the engines.

Every error carries a machine-readable ``code`` and an HTTP status used by the
API exception handlers. Engines never return error values; they raise.
"""
from decimal import Decimal
from typing import Any
from uuid import UUID


class ForgeError(Exception):
    """Base class for all engine errors."""

    code = "forge_error"
    http_status = 400

    def __init__(self, message: str, *, field_errors: list[dict] | None = None):
        self.message = message
        self.field_errors = field_errors or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "field_errors": self.field_errors,
        }


class ValidationError(ForgeError):
    """Bad input shape or range. Never retried."""

    code = "validation_error"
    http_status = 400


class NotFoundError(ForgeError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InsufficientStockError(ForgeError):
    """Availability or reservation failure, carrying the shortage detail."""

    code = "insufficient_stock"
    http_status = 409

    def __init__(self, message: str, shortages: list[dict] | None = None):
        self.shortages = shortages or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["shortages"] = [
            {k: str(v) if isinstance(v, (Decimal, UUID)) else v for k, v in s.items()}
            for s in self.shortages
        ]
        return data


class StateConflictError(ForgeError):
    """Attempted transition from a state that no longer matches."""

    code = "state_conflict"
    http_status = 409

    def __init__(self, message: str, *, current_status: str | None = None):
        self.current_status = current_status
        super().__init__(message)


class AlreadyConfirmedError(StateConflictError):
    """Confirm or edit attempted on a receipt that already left DRAFT."""

    code = "already_confirmed"

    def __init__(self, receipt_number: str, status: str = "CONFIRMED"):
        self.receipt_number = receipt_number
        message = (
            f"Goods receipt {receipt_number} is already confirmed"
            if status == "CONFIRMED"
            else f"Goods receipt {receipt_number} is {status} and can no longer be confirmed"
        )
        super().__init__(message, current_status=status)


class LockTimeoutError(StateConflictError):
    code = "lock_timeout"

    def __init__(self, keys: list[tuple]):
        self.keys = keys
        super().__init__(f"Timed out waiting for locks on {len(keys)} key(s)")


class InvariantViolationError(ForgeError):
    """A defect or a race. Never silently clamped."""

    code = "invariant_violation"
    http_status = 500
