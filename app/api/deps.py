from fastapi import Depends, Header
from sqlalchemy.orm import Session

from app.db import get_db
from app.services.errors import Unauthorized
from app.services.tenant_context import TenantContext, resolve_context


def get_tenant_context(
    x_tenant_id: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> TenantContext:
    """Tenant context for the caller, from the gateway's identity headers."""
    if not x_tenant_id or not x_user_id:
        raise Unauthorized("Tenant and user identity headers are required")
    return resolve_context(db, x_tenant_id, x_user_id)


__all__ = [
    "get_db",
    "get_tenant_context",
]
