from pydantic import BaseModel


class AttachmentUpdate(BaseModel):
    category: str | None = None
    description: str | None = None


class AttachmentResponse(BaseModel):
    id: str
    daily_report_id: str
    category: str
    ordinal: int
    file_name: str
    file_size: int
    description: str | None
    uploaded_by: str | None
    created_at: str
    file_url: str | None
    display_url: str | None = None
    thumbnail_url: str | None = None


class AttachmentListResponse(BaseModel):
    before: list[AttachmentResponse] = []
    after: list[AttachmentResponse] = []
