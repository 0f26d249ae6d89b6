from dataclasses import dataclass

ROLES = ("worker", "site_manager", "customer_manager", "admin", "system_admin")
ADMIN_ROLES = frozenset({"admin", "system_admin"})
MANAGER_ROLES = frozenset({"site_manager", "admin", "system_admin"})


@dataclass(frozen=True)
class Principal:
    """The authenticated caller. Built per request from gateway headers, never persisted."""

    id: str
    role: str
    organization_id: str | None = None
    is_restricted: bool = False
    restricted_org_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
