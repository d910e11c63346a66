"""FORGE - AuditService."""
import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from forge.core.context import CommandContext
from forge.models.audit import AuditLog

logger = logging.getLogger(__name__)

# ── Audit action constants ────────────────────────────────────────────────────
ACTION_BOM_CREATED = "bom.created"
ACTION_BOM_VERSIONED = "bom.versioned"
ACTION_BOM_ARCHIVED = "bom.archived"
ACTION_ORDER_RELEASED = "assembly_order.released"
ACTION_ORDER_PRODUCTION_REPORTED = "assembly_order.production_reported"
ACTION_ORDER_COMPLETED = "assembly_order.completed"
ACTION_ORDER_CANCELLED = "assembly_order.cancelled"
ACTION_RECEIPT_CONFIRMED = "goods_receipt.confirmed"
ACTION_RECEIPT_CANCELLED = "goods_receipt.cancelled"


def log_audit(
    db: AsyncSession,
    ctx: CommandContext,
    action: str,
    target_type: str | None = None,
    target_id: UUID | None = None,
    payload: dict | None = None,
) -> AuditLog:
    """Add an audit row to the current transaction. It commits or rolls back with the action."""
    entry = AuditLog(
        tenant_id=ctx.tenant_id,
        actor_id=ctx.actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payload=payload,
    )
    db.add(entry)
    logger.debug("Audit %s on %s %s", action, target_type, target_id)
    return entry
