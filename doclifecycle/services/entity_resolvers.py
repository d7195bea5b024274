from __future__ import annotations

from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.models.refs import EntityKind, EntityRef
from doclifecycle.services.errors import OrphanReferenceError

EntityResolver = Callable[[AsyncSession, str, EntityRef], Awaitable[bool]]


class EntityResolverRegistry:
    """Optional existence checks for owner and relatable references.

    Entities live in other services, so the engine never loads them. A caller
    that wants validation registers one async check per kind; kinds without a
    resolver are accepted as-is.
    """

    def __init__(self) -> None:
        self._resolvers: dict[EntityKind, EntityResolver] = {}

    def register(self, kind: EntityKind, resolver: EntityResolver) -> None:
        self._resolvers[EntityKind(kind)] = resolver

    def unregister(self, kind: EntityKind) -> None:
        self._resolvers.pop(EntityKind(kind), None)

    def has_resolver(self, kind: EntityKind) -> bool:
        return EntityKind(kind) in self._resolvers

    async def exists(self, db: AsyncSession, tenant_id: str, ref: EntityRef) -> bool:
        resolver = self._resolvers.get(ref.kind)
        if resolver is None:
            return True
        return bool(await resolver(db, tenant_id, ref))

    async def ensure_exists(self, db: AsyncSession, tenant_id: str, ref: EntityRef) -> None:
        if not await self.exists(db, tenant_id, ref):
            raise OrphanReferenceError(
                f"{ref.kind.value} {ref.id} does not exist",
                details={"entity_type": ref.kind.value, "entity_id": ref.id},
            )


registry = EntityResolverRegistry()

__all__ = ["EntityResolver", "EntityResolverRegistry", "registry"]
