from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from sitedocs.database import get_db
from sitedocs.dependencies import get_principal, get_registry, require_roles
from sitedocs.models.requirement import DocumentRequirement
from sitedocs.principal import ADMIN_ROLES, ROLES, Principal
from sitedocs.schemas.requirement import (
    RequirementCreate,
    RequirementResponse,
    RequirementUpdate,
    ResolvedRequirementResponse,
    RoleMappingIn,
    SiteOverrideIn,
)
from sitedocs.services import requirement_service
from sitedocs.services.requirement_service import RegistrySnapshot

router = APIRouter(prefix="/requirements", tags=["requirements"])

admin_router = APIRouter(
    prefix="/admin/requirements",
    tags=["requirements"],
    dependencies=[Depends(require_roles(*ADMIN_ROLES))],
)


def _requirement_to_response(req: DocumentRequirement) -> RequirementResponse:
    return RequirementResponse(
        id=req.id,
        code=req.code,
        name=req.name,
        description=req.description,
        file_types=req.file_types or [],
        max_file_size=req.max_file_size,
        sort_order=req.sort_order,
        is_active=req.is_active,
        created_at=req.created_at,
        updated_at=req.updated_at,
        role_mappings=[
            RoleMappingIn(role=m.role, is_required=m.is_required)
            for m in sorted(req.role_mappings, key=lambda m: m.role)
        ],
        site_overrides=[
            SiteOverrideIn(site_id=o.site_id, is_required=o.is_required, due_days=o.due_days, notes=o.notes)
            for o in sorted(req.site_overrides, key=lambda o: o.site_id)
        ],
    )


@router.get("", response_model=list[ResolvedRequirementResponse])
async def list_requirements(
    role: str | None = None,
    site_id: str | None = None,
    principal: Principal = Depends(get_principal),
    registry: RegistrySnapshot = Depends(get_registry),
):
    role = role or principal.role
    if role not in ROLES:
        raise HTTPException(status_code=400, detail=f"Invalid role. Must be one of: {', '.join(ROLES)}")
    return [
        ResolvedRequirementResponse(
            code=r.requirement.code,
            label=r.requirement.name,
            description=r.requirement.description,
            is_required=r.is_required,
            due_days=r.due_days,
            notes=r.notes,
            file_types=list(r.requirement.file_types),
            max_file_size=r.requirement.max_file_size,
            sort_order=r.requirement.sort_order,
        )
        for r in registry.list_active_requirements(role, site_id)
    ]


@admin_router.get("", response_model=list[RequirementResponse])
async def admin_list_requirements(include_inactive: bool = False, db: Session = Depends(get_db)):
    return [_requirement_to_response(r) for r in requirement_service.list_requirements(db, include_inactive)]


@admin_router.post("", response_model=RequirementResponse, status_code=201)
async def create_requirement(req: RequirementCreate, db: Session = Depends(get_db)):
    return _requirement_to_response(requirement_service.create_requirement(db, req))


@admin_router.get("/{requirement_id}", response_model=RequirementResponse)
async def get_requirement(requirement_id: str, db: Session = Depends(get_db)):
    return _requirement_to_response(requirement_service.get_requirement(db, requirement_id))


@admin_router.put("/{requirement_id}", response_model=RequirementResponse)
async def update_requirement(requirement_id: str, req: RequirementUpdate, db: Session = Depends(get_db)):
    return _requirement_to_response(requirement_service.update_requirement(db, requirement_id, req))


@admin_router.delete("/{requirement_id}", response_model=RequirementResponse)
async def archive_requirement(requirement_id: str, db: Session = Depends(get_db)):
    """Archive rather than delete so existing submissions keep their requirement."""
    return _requirement_to_response(requirement_service.archive_requirement(db, requirement_id))


@admin_router.put("/{requirement_id}/roles", response_model=RequirementResponse)
async def set_role_mappings(requirement_id: str, mappings: list[RoleMappingIn], db: Session = Depends(get_db)):
    return _requirement_to_response(requirement_service.set_role_mappings(db, requirement_id, mappings))


@admin_router.put("/{requirement_id}/sites", response_model=RequirementResponse)
async def set_site_overrides(requirement_id: str, overrides: list[SiteOverrideIn], db: Session = Depends(get_db)):
    return _requirement_to_response(requirement_service.set_site_overrides(db, requirement_id, overrides))
