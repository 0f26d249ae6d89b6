from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sitedocs.database import get_db, get_session_factory
from sitedocs.dependencies import get_scope
from sitedocs.schemas.document import (
    DocumentListResponse,
    DocumentRecordResponse,
    DocumentStatistics,
    PartialFailureResponse,
)
from sitedocs.services.aggregation_service import DocumentRecord, list_documents
from sitedocs.services.scope_service import EffectiveScope

router = APIRouter(prefix="/documents", tags=["documents"])


def _record_to_response(record: DocumentRecord) -> DocumentRecordResponse:
    return DocumentRecordResponse(
        id=record.id,
        source=record.source,
        type=record.type,
        label=record.label,
        icon=record.icon,
        name=record.name,
        description=record.description,
        file_url=record.file_url,
        size=record.size,
        mime_type=record.mime_type,
        uploader_name=record.uploader_name,
        created_at=record.created_at,
        is_primary=record.is_primary,
        site_id=record.site_id,
    )


@router.get("", response_model=DocumentListResponse)
async def get_documents(
    site_id: str | None = None,
    type: str | None = None,
    scope: EffectiveScope = Depends(get_scope),
    session_factory=Depends(get_session_factory),
    db: Session = Depends(get_db),
):
    result = await list_documents(db, session_factory, scope, site_id=site_id, type_filter=type)
    return DocumentListResponse(
        documents=[_record_to_response(r) for r in result.documents],
        statistics=DocumentStatistics(**result.statistics),
        partial_failures=[PartialFailureResponse(source=f.source, reason=f.reason) for f in result.partial_failures],
    )
