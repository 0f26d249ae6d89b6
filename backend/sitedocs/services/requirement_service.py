"""
Requirement registry: catalogue of compliance document requirements, their
applicability per role, and per-site overrides.

Readers work from an immutable `RegistrySnapshot` loaded for the request.
`RegistryCache` may serve a snapshot across requests only while it is younger
than `registry_cache_seconds`; every mutation invalidates it.
"""
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sitedocs.config import settings
from sitedocs.errors import NotFound, ValidationError
from sitedocs.models.requirement import DocumentRequirement, RequirementRoleMapping, SiteRequirementOverride
from sitedocs.principal import ROLES
from sitedocs.schemas.requirement import RequirementCreate, RequirementUpdate, RoleMappingIn, SiteOverrideIn
from sitedocs.utils.timestamps import utcnow_iso

logger = logging.getLogger("sitedocs.requirements")


@dataclass(frozen=True)
class RequirementDefinition:
    id: str
    code: str
    name: str
    description: str | None
    file_types: tuple[str, ...]
    max_file_size: int | None
    sort_order: int
    is_active: bool


@dataclass(frozen=True)
class SiteOverride:
    is_required: bool
    due_days: int | None
    notes: str | None


@dataclass(frozen=True)
class ResolvedRequirement:
    requirement: RequirementDefinition
    is_required: bool
    due_days: int | None = None
    notes: str | None = None

    @property
    def code(self) -> str:
        return self.requirement.code


@dataclass(frozen=True)
class RegistrySnapshot:
    requirements: tuple[RequirementDefinition, ...]
    # requirement_id -> {role: is_required}
    role_mappings: Mapping[str, Mapping[str, bool]]
    # (requirement_id, site_id) -> override
    site_overrides: Mapping[tuple[str, str], SiteOverride]
    loaded_at: float

    def get_active(self, code: str) -> RequirementDefinition | None:
        for req in self.requirements:
            if req.is_active and req.code == code:
                return req
        return None

    def get_by_id(self, requirement_id: str) -> RequirementDefinition | None:
        for req in self.requirements:
            if req.id == requirement_id:
                return req
        return None

    def resolve(self, requirement: RequirementDefinition, role: str, site_id: str | None) -> ResolvedRequirement | None:
        if not requirement.is_active:
            return None
        mappings = self.role_mappings.get(requirement.id, {})
        if mappings:
            if role not in mappings:
                return None
            is_required = mappings[role]
        else:
            # Unmapped requirements apply to every role as optional.
            is_required = False
        due_days = None
        notes = None
        if site_id is not None:
            override = self.site_overrides.get((requirement.id, site_id))
            if override is not None:
                is_required = override.is_required
                due_days = override.due_days
                notes = override.notes
        return ResolvedRequirement(requirement=requirement, is_required=is_required, due_days=due_days, notes=notes)

    def list_active_requirements(self, role: str, site_id: str | None = None) -> list[ResolvedRequirement]:
        resolved = []
        for req in self.requirements:
            item = self.resolve(req, role, site_id)
            if item is not None:
                resolved.append(item)
        resolved.sort(key=lambda r: (r.requirement.sort_order, r.requirement.code))
        return resolved


def load_registry(db: Session) -> RegistrySnapshot:
    requirements = tuple(
        RequirementDefinition(
            id=row.id,
            code=row.code,
            name=row.name,
            description=row.description,
            file_types=tuple(t.lower() for t in (row.file_types or [])),
            max_file_size=row.max_file_size,
            sort_order=row.sort_order or 0,
            is_active=bool(row.is_active),
        )
        for row in db.query(DocumentRequirement).all()
    )

    role_mappings: dict[str, dict[str, bool]] = {}
    for m in db.query(RequirementRoleMapping).all():
        role_mappings.setdefault(m.requirement_id, {})[m.role] = bool(m.is_required)

    site_overrides = {
        (o.requirement_id, o.site_id): SiteOverride(
            is_required=bool(o.is_required), due_days=o.due_days, notes=o.notes
        )
        for o in db.query(SiteRequirementOverride).all()
    }

    return RegistrySnapshot(
        requirements=requirements,
        role_mappings=MappingProxyType({k: MappingProxyType(v) for k, v in role_mappings.items()}),
        site_overrides=MappingProxyType(site_overrides),
        loaded_at=time.monotonic(),
    )


class RegistryCache:
    def __init__(self, ttl_seconds: float | None = None):
        self._ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._snapshot: RegistrySnapshot | None = None

    @property
    def ttl_seconds(self) -> float:
        return settings.registry_cache_seconds if self._ttl_seconds is None else self._ttl_seconds

    def get(self, db: Session) -> RegistrySnapshot:
        ttl = self.ttl_seconds
        if ttl <= 0:
            return load_registry(db)
        with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and time.monotonic() - snapshot.loaded_at < ttl:
                return snapshot
        snapshot = load_registry(db)
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    def invalidate(self):
        with self._lock:
            self._snapshot = None


registry_cache = RegistryCache()


# ---------------------------------------------------------------------------
# Mutations (administrator only; the routers enforce the role)
# ---------------------------------------------------------------------------

def _validate_roles(mappings: list[RoleMappingIn]):
    seen = set()
    for m in mappings:
        if m.role not in ROLES:
            raise ValidationError(f"Invalid role '{m.role}'. Must be one of: {', '.join(ROLES)}")
        if m.role in seen:
            raise ValidationError(f"Duplicate role mapping for '{m.role}'")
        seen.add(m.role)


def _validate_overrides(overrides: list[SiteOverrideIn]):
    seen = set()
    for o in overrides:
        if not o.site_id.strip():
            raise ValidationError("Site override requires a site_id")
        if o.site_id in seen:
            raise ValidationError(f"Duplicate site override for '{o.site_id}'")
        seen.add(o.site_id)


def _normalize_file_types(file_types: list[str]) -> list[str]:
    cleaned = []
    for t in file_types:
        value = t.strip().lower().lstrip(".")
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def _ensure_code_available(db: Session, code: str, exclude_id: str | None = None):
    query = db.query(DocumentRequirement).filter(
        DocumentRequirement.code == code, DocumentRequirement.is_active.is_(True)
    )
    if exclude_id:
        query = query.filter(DocumentRequirement.id != exclude_id)
    if query.first():
        raise ValidationError(f"Requirement code '{code}' is already in use")


def _replace_role_mappings(db: Session, requirement_id: str, mappings: list[RoleMappingIn]):
    db.query(RequirementRoleMapping).filter(
        RequirementRoleMapping.requirement_id == requirement_id
    ).delete()
    for m in mappings:
        db.add(RequirementRoleMapping(requirement_id=requirement_id, role=m.role, is_required=m.is_required))


def _replace_site_overrides(db: Session, requirement_id: str, overrides: list[SiteOverrideIn]):
    db.query(SiteRequirementOverride).filter(
        SiteRequirementOverride.requirement_id == requirement_id
    ).delete()
    for o in overrides:
        db.add(SiteRequirementOverride(
            requirement_id=requirement_id,
            site_id=o.site_id,
            is_required=o.is_required,
            due_days=o.due_days,
            notes=o.notes,
        ))


@contextmanager
def _transaction(db: Session, action: str, requirement_id: str):
    """Single transactional boundary for a requirement and its mappings.

    Every write (flushes included) happens inside the block, so constraint
    violations surface as ValidationError and anything else rolls back.
    """
    try:
        yield
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Requirement %s rejected for %s: %s", action, requirement_id, exc.orig)
        raise ValidationError("Requirement code is already in use or references are invalid") from exc
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Requirement %s failed for %s; rolled back", action, requirement_id)
        raise
    registry_cache.invalidate()
    logger.info("Requirement %s: %s", action, requirement_id)


def get_requirement(db: Session, requirement_id: str) -> DocumentRequirement:
    req = db.query(DocumentRequirement).filter(DocumentRequirement.id == requirement_id).first()
    if not req:
        raise NotFound("Requirement not found")
    return req


def list_requirements(db: Session, include_inactive: bool = False) -> list[DocumentRequirement]:
    query = db.query(DocumentRequirement)
    if not include_inactive:
        query = query.filter(DocumentRequirement.is_active.is_(True))
    return query.order_by(DocumentRequirement.sort_order.asc(), DocumentRequirement.code.asc()).all()


def create_requirement(db: Session, req: RequirementCreate) -> DocumentRequirement:
    code = req.code.strip()
    name = req.name.strip()
    if not code:
        raise ValidationError("Requirement code is required")
    if not name:
        raise ValidationError("Requirement name is required")
    _validate_roles(req.role_mappings)
    _validate_overrides(req.site_overrides)
    _ensure_code_available(db, code)

    now = utcnow_iso()
    requirement = DocumentRequirement(
        id=str(uuid.uuid4()),
        code=code,
        name=name,
        description=req.description,
        file_types=_normalize_file_types(req.file_types),
        max_file_size=req.max_file_size,
        sort_order=req.sort_order,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    with _transaction(db, "create", requirement.id):
        db.add(requirement)
        db.flush()
        _replace_role_mappings(db, requirement.id, req.role_mappings)
        _replace_site_overrides(db, requirement.id, req.site_overrides)
    db.refresh(requirement)
    return requirement


def update_requirement(db: Session, requirement_id: str, req: RequirementUpdate) -> DocumentRequirement:
    requirement = get_requirement(db, requirement_id)
    update_data = req.model_dump(exclude_unset=True, exclude={"role_mappings", "site_overrides"})

    if "code" in update_data:
        code = (update_data["code"] or "").strip()
        if not code:
            raise ValidationError("Requirement code is required")
        if requirement.is_active:
            _ensure_code_available(db, code, exclude_id=requirement.id)
        update_data["code"] = code
    if "name" in update_data:
        name = (update_data["name"] or "").strip()
        if not name:
            raise ValidationError("Requirement name is required")
        update_data["name"] = name
    if "file_types" in update_data:
        update_data["file_types"] = _normalize_file_types(update_data["file_types"] or [])
    if req.role_mappings is not None:
        _validate_roles(req.role_mappings)
    if req.site_overrides is not None:
        _validate_overrides(req.site_overrides)

    with _transaction(db, "update", requirement.id):
        for key, value in update_data.items():
            setattr(requirement, key, value)
        requirement.updated_at = utcnow_iso()
        if req.role_mappings is not None:
            _replace_role_mappings(db, requirement.id, req.role_mappings)
        if req.site_overrides is not None:
            _replace_site_overrides(db, requirement.id, req.site_overrides)
        db.expire(requirement, ["role_mappings", "site_overrides"])
    db.refresh(requirement)
    return requirement


def archive_requirement(db: Session, requirement_id: str) -> DocumentRequirement:
    """Deactivate without touching existing submissions."""
    requirement = get_requirement(db, requirement_id)
    with _transaction(db, "archive", requirement.id):
        requirement.is_active = False
        requirement.updated_at = utcnow_iso()
    db.refresh(requirement)
    return requirement


def set_role_mappings(db: Session, requirement_id: str, mappings: list[RoleMappingIn]) -> DocumentRequirement:
    requirement = get_requirement(db, requirement_id)
    _validate_roles(mappings)
    with _transaction(db, "set role mappings", requirement.id):
        _replace_role_mappings(db, requirement.id, mappings)
        requirement.updated_at = utcnow_iso()
        db.expire(requirement, ["role_mappings"])
    db.refresh(requirement)
    return requirement


def set_site_overrides(db: Session, requirement_id: str, overrides: list[SiteOverrideIn]) -> DocumentRequirement:
    requirement = get_requirement(db, requirement_id)
    _validate_overrides(overrides)
    with _transaction(db, "set site overrides", requirement.id):
        _replace_site_overrides(db, requirement.id, overrides)
        requirement.updated_at = utcnow_iso()
        db.expire(requirement, ["site_overrides"])
    db.refresh(requirement)
    return requirement
