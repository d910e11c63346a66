"""FORGE - Explicit execution context passed to every engine call."""
from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class CommandContext:
    """Who is acting, and for which tenant."""

    tenant_id: UUID
    actor_id: UUID | None = None
