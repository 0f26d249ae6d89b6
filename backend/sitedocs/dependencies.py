from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from sitedocs.database import get_db
from sitedocs.principal import ROLES, Principal
from sitedocs.services.requirement_service import RegistrySnapshot, registry_cache
from sitedocs.services.scope_service import DbAssignmentLookup, EffectiveScope, resolve_scope
from sitedocs.services.storage_service import ObjectStorage, get_storage


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


async def get_principal(
    x_principal_id: str | None = Header(None, alias="X-Principal-Id"),
    x_principal_role: str | None = Header(None, alias="X-Principal-Role"),
    x_organization_id: str | None = Header(None, alias="X-Organization-Id"),
    x_restricted: str | None = Header(None, alias="X-Restricted"),
    x_restricted_org_id: str | None = Header(None, alias="X-Restricted-Org-Id"),
) -> Principal:
    # Authentication happens upstream; the gateway forwards the verified identity.
    principal_id = (x_principal_id or "").strip()
    role = (x_principal_role or "").strip().lower()
    if not principal_id:
        raise HTTPException(status_code=401, detail="Missing principal")
    if role not in ROLES:
        raise HTTPException(status_code=401, detail="Unknown principal role")
    restricted_org_id = (x_restricted_org_id or "").strip() or None
    return Principal(
        id=principal_id,
        role=role,
        organization_id=(x_organization_id or "").strip() or None,
        is_restricted=_truthy(x_restricted) or restricted_org_id is not None,
        restricted_org_id=restricted_org_id,
    )


def require_roles(*roles: str):
    allowed = {r.strip().lower() for r in roles if r and r.strip()}

    async def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if allowed and principal.role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return principal

    return _dep


async def get_scope(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> EffectiveScope:
    return resolve_scope(principal, DbAssignmentLookup(db))


def get_registry(db: Session = Depends(get_db)) -> RegistrySnapshot:
    """Registry snapshot for this request."""
    return registry_cache.get(db)


def get_object_storage() -> ObjectStorage:
    return get_storage()
