"""FORGE - Monotonic document numbering (AO-000001, GR-000001, PO-000001)."""
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from forge.core.context import CommandContext
from forge.models.sequence import DocumentSequence


def sequence_key(tenant_id: UUID, name: str) -> tuple:
    return ("sequence", str(tenant_id), name)


async def next_number(db: AsyncSession, ctx: CommandContext, name: str, prefix: str) -> str:
    """Allocate the next number for ``name``. Caller holds ``sequence_key`` inside a transaction."""
    result = await db.execute(
        select(DocumentSequence)
        .where(DocumentSequence.tenant_id == ctx.tenant_id, DocumentSequence.name == name)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    seq = result.scalar_one_or_none()
    if seq is None:
        seq = DocumentSequence(tenant_id=ctx.tenant_id, name=name, next_value=1)
        db.add(seq)
    value = seq.next_value
    seq.next_value = value + 1
    await db.flush()
    return f"{prefix}-{value:06d}"
