"""
Principal scope resolution.

The effective scope of a principal is the set of site ids they may query
against plus an optional organisation constraint. Non-restricted admins are
unconstrained (wildcard); everyone else is limited to their site assignments.

Records with a null site are organisation-wide. They are visible iff the
effective site set is non-empty or the principal is unconstrained. The
`site_matches` predicate and `site_scope_clause` implement that rule once, for
in-memory filtering and for SQL respectively.
"""
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol

from sqlalchemy import false, or_
from sqlalchemy.orm import Session

from sitedocs.models.site import Site, SiteAssignment
from sitedocs.principal import ADMIN_ROLES, Principal

logger = logging.getLogger("sitedocs.scope")


@dataclass(frozen=True)
class EffectiveScope:
    # None is the wildcard ("all sites"); an empty set means nothing site-bound is visible.
    site_ids: frozenset[str] | None
    organization_id: str | None = None
    allow_null: bool = False

    @property
    def is_unconstrained(self) -> bool:
        return self.site_ids is None

    def allows_site(self, site_id: str) -> bool:
        return self.site_ids is None or site_id in self.site_ids

    def narrowed_to(self, site_id: str) -> "EffectiveScope":
        """Scope for an explicit site filter. Outside the effective set it matches nothing."""
        if not self.allows_site(site_id):
            return EffectiveScope(site_ids=frozenset(), organization_id=self.organization_id, allow_null=False)
        return EffectiveScope(site_ids=frozenset({site_id}), organization_id=self.organization_id, allow_null=False)

    @property
    def is_empty(self) -> bool:
        return self.site_ids is not None and not self.site_ids and not self.allow_null


UNCONSTRAINED = EffectiveScope(site_ids=None, organization_id=None, allow_null=True)


class AssignmentLookup(Protocol):
    def assigned_site_ids(self, user_id: str) -> set[str]: ...

    def site_ids_in_organization(self, organization_id: str, site_ids: Iterable[str]) -> set[str]: ...


class DbAssignmentLookup:
    """Looks assignments up on demand; nothing is cached across requests."""

    def __init__(self, db: Session):
        self.db = db

    def assigned_site_ids(self, user_id: str) -> set[str]:
        rows = (
            self.db.query(SiteAssignment.site_id)
            .filter(SiteAssignment.user_id == user_id, SiteAssignment.is_active.is_(True))
            .all()
        )
        return {row.site_id for row in rows}

    def site_ids_in_organization(self, organization_id: str, site_ids: Iterable[str]) -> set[str]:
        ids = list(site_ids)
        if not ids:
            return set()
        rows = (
            self.db.query(Site.id)
            .filter(Site.id.in_(ids), Site.organization_id == organization_id)
            .all()
        )
        return {row.id for row in rows}


def resolve_scope(principal: Principal, lookup: AssignmentLookup) -> EffectiveScope:
    if principal.role in ADMIN_ROLES and not principal.is_restricted:
        return UNCONSTRAINED

    if principal.is_restricted:
        organization_id = principal.restricted_org_id or principal.organization_id
    else:
        organization_id = principal.organization_id

    try:
        site_ids = set(lookup.assigned_site_ids(principal.id))
        if principal.is_restricted and principal.restricted_org_id and site_ids:
            site_ids &= set(lookup.site_ids_in_organization(principal.restricted_org_id, site_ids))
    except Exception:
        # Fail closed: a lookup error must never widen access.
        logger.exception("Site assignment lookup failed for principal %s; using empty scope", principal.id)
        site_ids = set()

    return EffectiveScope(
        site_ids=frozenset(site_ids),
        organization_id=organization_id,
        allow_null=bool(site_ids),
    )


def site_matches(site_id: str | None, site_ids: frozenset[str] | None, allow_null: bool) -> bool:
    """`site IS NULL (if allowed) OR site IN site_ids`. The null branch ignores whether site_ids is empty."""
    if site_id is None:
        return allow_null
    if site_ids is None:
        return True
    return site_id in site_ids


def organization_matches(organization_id: str | None, scope: EffectiveScope) -> bool:
    if scope.organization_id is None or organization_id is None:
        return True
    return organization_id == scope.organization_id


def _field(record: Any, name: str):
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def in_scope(record: Any, scope: EffectiveScope, site_field: str = "site_id", org_field: str = "organization_id") -> bool:
    return site_matches(_field(record, site_field), scope.site_ids, scope.allow_null) and organization_matches(
        _field(record, org_field), scope
    )


def scoped_view(scope: EffectiveScope, records: Iterable[Any], site_field: str = "site_id",
                org_field: str = "organization_id") -> list[Any]:
    return [r for r in records if in_scope(r, scope, site_field, org_field)]


def site_scope_clause(site_column, scope: EffectiveScope):
    branches = []
    if scope.allow_null:
        branches.append(site_column.is_(None))
    if scope.site_ids is None:
        branches.append(site_column.isnot(None))
    elif scope.site_ids:
        branches.append(site_column.in_(sorted(scope.site_ids)))
    if not branches:
        return false()
    return or_(*branches)


def organization_scope_clause(org_column, scope: EffectiveScope):
    if scope.organization_id is None:
        return None
    return or_(org_column.is_(None), org_column == scope.organization_id)


def apply_scope(query, scope: EffectiveScope, site_column, org_column=None):
    query = query.filter(site_scope_clause(site_column, scope))
    if org_column is not None:
        org_clause = organization_scope_clause(org_column, scope)
        if org_clause is not None:
            query = query.filter(org_clause)
    return query
