from pydantic import BaseModel, Field

DEFAULT_FILE_TYPES = ["pdf", "jpg", "jpeg", "png"]


class RoleMappingIn(BaseModel):
    role: str
    is_required: bool = True


class SiteOverrideIn(BaseModel):
    site_id: str
    is_required: bool = True
    due_days: int | None = Field(None, ge=0)
    notes: str | None = None


class RequirementCreate(BaseModel):
    code: str
    name: str
    description: str | None = None
    file_types: list[str] = Field(default_factory=lambda: list(DEFAULT_FILE_TYPES))
    max_file_size: int | None = 10 * 1024 * 1024
    sort_order: int = 0
    role_mappings: list[RoleMappingIn] = []
    site_overrides: list[SiteOverrideIn] = []


class RequirementUpdate(BaseModel):
    code: str | None = None
    name: str | None = None
    description: str | None = None
    file_types: list[str] | None = None
    max_file_size: int | None = None
    sort_order: int | None = None
    role_mappings: list[RoleMappingIn] | None = None
    site_overrides: list[SiteOverrideIn] | None = None


class RequirementResponse(BaseModel):
    id: str
    code: str
    name: str
    description: str | None
    file_types: list[str]
    max_file_size: int | None
    sort_order: int
    is_active: bool
    created_at: str
    updated_at: str
    role_mappings: list[RoleMappingIn] = []
    site_overrides: list[SiteOverrideIn] = []


class ResolvedRequirementResponse(BaseModel):
    code: str
    label: str
    description: str | None
    is_required: bool
    due_days: int | None
    notes: str | None
    file_types: list[str]
    max_file_size: int | None
    sort_order: int
