"""Explicit tenant context passed into every service call."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.tenant import MemberRole, TenantMember
from app.services.common import coerce_uuid
from app.services.errors import AccessDenied

ROLE_RANK = {
    MemberRole.viewer: 0,
    MemberRole.member: 1,
    MemberRole.admin: 2,
    MemberRole.owner: 3,
}


@dataclass(frozen=True)
class TenantContext:
    tenant_id: uuid.UUID
    user_id: uuid.UUID | None = None
    role: MemberRole = MemberRole.member


def resolve_context(db: Session, tenant_id, user_id) -> TenantContext:
    """Build a context from the caller's membership row.

    Raises:
        AccessDenied: if the user is not a member of the tenant
    """
    tenant_uuid = coerce_uuid(tenant_id)
    user_uuid = coerce_uuid(user_id)
    member = (
        db.query(TenantMember)
        .filter(TenantMember.tenant_id == tenant_uuid)
        .filter(TenantMember.user_id == user_uuid)
        .first()
    )
    if not member:
        raise AccessDenied("Not a member of this workspace")
    return TenantContext(tenant_id=tenant_uuid, user_id=user_uuid, role=member.role)


def require_role(context: TenantContext | None, minimum: MemberRole) -> TenantContext:
    if context is None:
        raise AccessDenied("Tenant context required")
    if ROLE_RANK[context.role] < ROLE_RANK[minimum]:
        raise AccessDenied(f"Role {minimum.value} or higher required")
    return context
