from dataclasses import dataclass

from fastapi import Header, HTTPException, status

from doclifecycle.core.context import set_tenant_id
from doclifecycle.models.refs import EntityRef


@dataclass(slots=True)
class TenantContext:
    tenant_id: str


async def get_tenant_context(
    tenant_id: str | None = Header(default=None, alias="X-Tenant-ID"),
) -> TenantContext:
    candidate = (tenant_id or "").strip()
    if not candidate:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "tenant_required",
                "message": "Tenant resolution failed: provide the X-Tenant-ID header",
            },
        )
    set_tenant_id(candidate)
    return TenantContext(tenant_id=candidate)


async def get_owner_ref(owner_type: str, owner_id: str) -> EntityRef:
    try:
        return EntityRef.of(owner_type, owner_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_owner", "message": str(exc)},
        ) from exc
