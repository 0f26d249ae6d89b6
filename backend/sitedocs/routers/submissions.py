from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from sitedocs.config import settings
from sitedocs.database import get_db
from sitedocs.dependencies import get_object_storage, get_principal, get_registry, get_scope
from sitedocs.errors import NotFound
from sitedocs.models.site import Profile, SiteAssignment
from sitedocs.models.submission import Submission
from sitedocs.principal import MANAGER_ROLES, Principal
from sitedocs.schemas.submission import (
    DocumentReference,
    ReviewRequest,
    SubmissionResponse,
    SubmissionStatusItem,
    SubmitRequest,
)
from sitedocs.services import submission_service
from sitedocs.services.requirement_service import RegistrySnapshot
from sitedocs.services.scope_service import EffectiveScope
from sitedocs.services.storage_service import ObjectStorage
from sitedocs.services.submission_service import RequirementStatus

router = APIRouter(prefix="/submissions", tags=["submissions"])


def _file_url(sub: Submission, storage: ObjectStorage) -> str | None:
    # Files held in object storage are only reachable through a signed link.
    if sub.file_path:
        return storage.signed_url(sub.file_path)
    return sub.file_url


def _submission_to_response(sub: Submission, registry: RegistrySnapshot, storage: ObjectStorage) -> SubmissionResponse:
    requirement = registry.get_by_id(sub.requirement_id)
    return SubmissionResponse(
        id=sub.id,
        principal_id=sub.principal_id,
        requirement_id=sub.requirement_id,
        requirement_code=requirement.code if requirement else None,
        document_id=sub.document_id,
        file_url=_file_url(sub, storage),
        file_name=sub.file_name,
        status=submission_service.effective_status(sub),
        submitted_at=sub.submitted_at,
        approved_at=sub.approved_at,
        rejected_at=sub.rejected_at,
        rejection_reason=sub.rejection_reason,
        reviewed_by=sub.reviewed_by,
        created_at=sub.created_at,
        updated_at=sub.updated_at,
    )


def _status_to_response(item: RequirementStatus, storage: ObjectStorage) -> SubmissionStatusItem:
    sub = item.submission
    document = None
    if sub is not None and submission_service.has_reference(sub):
        document = DocumentReference(document_id=sub.document_id, file_url=_file_url(sub, storage), file_name=sub.file_name)
    return SubmissionStatusItem(
        requirement_code=item.requirement.code,
        label=item.requirement.name,
        is_required=item.is_required,
        status=item.status,
        submission_id=sub.id if sub else None,
        rejection_reason=sub.rejection_reason if sub else None,
        document=document,
        submitted_at=sub.submitted_at if sub else None,
        approved_at=sub.approved_at if sub else None,
        rejected_at=sub.rejected_at if sub else None,
        due_days=item.due_days,
        due_date=item.due_date,
    )


def _target_role(db: Session, principal: Principal, scope: EffectiveScope, principal_id: str) -> str:
    if principal_id == principal.id:
        return principal.role
    if principal.role not in MANAGER_ROLES:
        raise HTTPException(status_code=403, detail="Forbidden")
    profile = db.query(Profile).filter(Profile.id == principal_id).first()
    if not profile:
        raise NotFound("Principal not found")
    if not scope.is_unconstrained:
        assigned = db.query(SiteAssignment.site_id).filter(
            SiteAssignment.user_id == principal_id,
            SiteAssignment.is_active.is_(True),
        ).all()
        if not any(scope.allows_site(row.site_id) for row in assigned):
            raise NotFound("Principal not found")
    return profile.role


@router.get("/status", response_model=list[SubmissionStatusItem])
async def submission_status(
    principal_id: str | None = None,
    site_id: str | None = None,
    principal: Principal = Depends(get_principal),
    scope: EffectiveScope = Depends(get_scope),
    registry: RegistrySnapshot = Depends(get_registry),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    target = principal_id or principal.id
    role = _target_role(db, principal, scope, target)
    items = submission_service.get_submission_status(db, registry, target, role, site_id)
    return [_status_to_response(item, storage) for item in items]


@router.post("/{requirement_code}", response_model=SubmissionResponse)
async def submit(
    requirement_code: str,
    req: SubmitRequest,
    principal: Principal = Depends(get_principal),
    scope: EffectiveScope = Depends(get_scope),
    registry: RegistrySnapshot = Depends(get_registry),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    sub = submission_service.submit(
        db, registry, principal, scope, requirement_code,
        document_id=req.document_id, file_url=req.file_url, file_name=req.file_name,
    )
    return _submission_to_response(sub, registry, storage)


@router.post("/{requirement_code}/upload", response_model=SubmissionResponse, status_code=201)
async def submit_upload(
    requirement_code: str,
    file: UploadFile = File(...),
    principal: Principal = Depends(get_principal),
    scope: EffectiveScope = Depends(get_scope),
    registry: RegistrySnapshot = Depends(get_registry),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    requirement = registry.get_active(requirement_code)
    max_bytes = (requirement.max_file_size if requirement else None) or settings.max_submission_bytes
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise HTTPException(status_code=413, detail=f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)

    sub = submission_service.submit_upload(
        db, registry, storage, principal, scope, requirement_code,
        filename=file.filename or "file", content=b"".join(chunks), content_type=file.content_type,
    )
    return _submission_to_response(sub, registry, storage)


@router.post("/{submission_id}/review", response_model=SubmissionResponse)
async def review(
    submission_id: str,
    req: ReviewRequest,
    principal: Principal = Depends(get_principal),
    registry: RegistrySnapshot = Depends(get_registry),
    storage: ObjectStorage = Depends(get_object_storage),
    db: Session = Depends(get_db),
):
    sub = submission_service.review_submission(db, principal, submission_id, req.decision, req.reason)
    return _submission_to_response(sub, registry, storage)
