from pydantic import BaseModel


class DocumentRecordResponse(BaseModel):
    id: str
    source: str
    type: str
    label: str
    icon: str
    name: str
    description: str | None
    file_url: str | None
    size: int | None
    mime_type: str | None
    uploader_name: str | None
    created_at: str
    is_primary: bool
    site_id: str | None


class DocumentStatistics(BaseModel):
    total: int
    by_type: dict[str, int]


class PartialFailureResponse(BaseModel):
    source: str
    reason: str


class DocumentListResponse(BaseModel):
    documents: list[DocumentRecordResponse]
    statistics: DocumentStatistics
    partial_failures: list[PartialFailureResponse] = []
