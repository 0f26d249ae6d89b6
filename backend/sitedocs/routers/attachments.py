from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from sitedocs.config import settings
from sitedocs.database import get_db
from sitedocs.dependencies import get_object_storage, get_principal, get_scope
from sitedocs.principal import Principal
from sitedocs.schemas.attachment import AttachmentListResponse, AttachmentResponse, AttachmentUpdate
from sitedocs.services import attachment_service
from sitedocs.services.attachment_service import AttachmentView
from sitedocs.services.scope_service import EffectiveScope
from sitedocs.services.storage_service import ObjectStorage

router = APIRouter(tags=["attachments"])


def _attachment_to_response(view: AttachmentView) -> AttachmentResponse:
    att = view.attachment
    return AttachmentResponse(
        id=att.id,
        daily_report_id=att.daily_report_id,
        category=att.category,
        ordinal=att.ordinal,
        file_name=att.file_name,
        file_size=att.file_size,
        description=att.description,
        uploaded_by=att.uploaded_by,
        created_at=att.created_at,
        file_url=view.file_url,
        display_url=view.display_url,
        thumbnail_url=view.thumbnail_url,
    )


# Mutations run in the threadpool (plain def) so the per-category locks serialize them.

@router.get("/reports/{report_id}/attachments", response_model=AttachmentListResponse)
def list_attachments(
    report_id: str,
    scope: EffectiveScope = Depends(get_scope),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    grouped = attachment_service.list_attachments(db, storage, scope, report_id)
    return AttachmentListResponse(**{
        category: [_attachment_to_response(v) for v in views]
        for category, views in grouped.items()
    })


@router.post("/reports/{report_id}/attachments", response_model=AttachmentResponse, status_code=201)
def add_attachment(
    report_id: str,
    file: UploadFile = File(...),
    category: str = Form(...),
    description: str | None = Form(None),
    principal: Principal = Depends(get_principal),
    scope: EffectiveScope = Depends(get_scope),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    max_bytes = settings.max_attachment_bytes
    content = file.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")

    att = attachment_service.add_attachment(
        db, storage, principal, scope, report_id, category,
        filename=file.filename or "photo.jpg", content=content,
        content_type=file.content_type, description=description,
    )
    return _attachment_to_response(attachment_service.attachment_view(storage, att))


@router.patch("/attachments/{attachment_id}", response_model=AttachmentResponse)
def update_attachment(
    attachment_id: str,
    req: AttachmentUpdate,
    principal: Principal = Depends(get_principal),
    scope: EffectiveScope = Depends(get_scope),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    att = attachment_service.update_attachment(
        db, storage, principal, scope, attachment_id,
        category=req.category,
        description=req.description,
        update_description="description" in req.model_fields_set,
    )
    return _attachment_to_response(attachment_service.attachment_view(storage, att))


@router.delete("/attachments/{attachment_id}")
def delete_attachment(
    attachment_id: str,
    principal: Principal = Depends(get_principal),
    scope: EffectiveScope = Depends(get_scope),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    attachment_service.delete_attachment(db, storage, principal, scope, attachment_id)
    return {"message": "Attachment deleted"}
