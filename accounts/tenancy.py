from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rest_framework.exceptions import PermissionDenied


NO_TENANT_MSG = "Your account is not linked to a tenant."


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str
    organization_id: str
    clinic_id: Optional[str] = None
    actor_id: Optional[str] = None


def get_tenant_context(request) -> TenantContext:
    """
    Resolve the tenant of the authenticated user.

    Tenant scope always comes from the account, never from request input,
    so a user cannot address another tenant's records.
    """
    user = getattr(request, "user", None)
    tenant_id = getattr(user, "tenant_id", "") if user is not None else ""
    if not tenant_id:
        raise PermissionDenied(NO_TENANT_MSG)

    return TenantContext(
        tenant_id=tenant_id,
        organization_id=user.effective_organization_id,
        clinic_id=user.clinic_id or None,
        actor_id=str(user.pk),
    )
