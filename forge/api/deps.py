"""FORGE - FastAPI dependencies (DB session, execution context)."""
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from forge.core.context import CommandContext
from forge.db.session import get_db

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_context(
    x_tenant_id: Annotated[UUID, Header(alias="X-Tenant-ID")],
    x_actor_id: Annotated[UUID | None, Header(alias="X-Actor-ID")] = None,
) -> CommandContext:
    """Build the execution context every engine call receives. Authentication happens upstream."""
    return CommandContext(tenant_id=x_tenant_id, actor_id=x_actor_id)


Context = Annotated[CommandContext, Depends(get_context)]
