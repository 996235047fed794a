"""FastAPI dependencies for dependency injection."""

from typing import Optional

from fastapi import HTTPException, Request, status

from core.config import settings


async def get_tenant_id(request: Request) -> str:
    """
    Tenant of the request, taken from the tenant header.

    Every record the engine reads or writes is scoped to this id; a request
    without it is rejected before reaching a service.
    """
    tenant_id: Optional[str] = request.headers.get(settings.tenant_header)
    if not tenant_id or not tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing {settings.tenant_header} header",
        )
    return tenant_id.strip()


async def get_actor(request: Request) -> Optional[str]:
    """Free-form actor id recorded on ledger rows (``x-actor-id``)."""
    return request.headers.get("x-actor-id")
