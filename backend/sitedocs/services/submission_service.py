"""
Submission lifecycle per (principal, requirement).

    not_submitted (no row) -> submitted -> approved | rejected
    approved | rejected    -> submitted   (resubmission)
    any row                -> not_submitted (references cleared)

Only the most recently created row for a pair is authoritative. Stored status
strings from older writers are mapped through STATUS_ALIASES on every read; the
canonical value is written back in one best-effort batch.
"""
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import bindparam, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sitedocs.config import settings
from sitedocs.errors import Forbidden, NotFound, StorageError, ValidationError
from sitedocs.models.document import Document
from sitedocs.models.site import SiteAssignment
from sitedocs.models.submission import Submission
from sitedocs.observability import STORAGE_CLEANUP_FAILURES, SUBMISSION_BACKFILL_FAILURES, counters
from sitedocs.principal import Principal
from sitedocs.services.requirement_service import RegistrySnapshot, RequirementDefinition
from sitedocs.services.scope_service import EffectiveScope, apply_scope
from sitedocs.services.storage_service import ObjectStorage
from sitedocs.utils.filesystem import file_extension, sanitize_filename
from sitedocs.utils.timestamps import parse_date, parse_timestamp, utcnow_iso

logger = logging.getLogger("sitedocs.submissions")

NOT_SUBMITTED = "not_submitted"
SUBMITTED = "submitted"
APPROVED = "approved"
REJECTED = "rejected"
STATUSES = (NOT_SUBMITTED, SUBMITTED, APPROVED, REJECTED)

STATUS_ALIASES = {
    "draft": NOT_SUBMITTED,
    "not_submitted": NOT_SUBMITTED,
    "missing": NOT_SUBMITTED,
    "pending": SUBMITTED,
    "uploaded": SUBMITTED,
    "submitted": SUBMITTED,
    "in_review": SUBMITTED,
    "review": SUBMITTED,
    "approved": APPROVED,
    "approve": APPROVED,
    "verified": APPROVED,
    "completed": APPROVED,
    "rejected": REJECTED,
    "reject": REJECTED,
    "denied": REJECTED,
    "returned": REJECTED,
}


def has_reference(submission: Submission) -> bool:
    return bool(submission.document_id or submission.file_url or submission.file_path)


def normalize_status(raw: str | None, has_ref: bool = False) -> str:
    """Map any stored status to one of STATUSES. Canonical input is returned unchanged."""
    key = (raw or "").strip().lower().replace("-", "_").replace(" ", "_")
    if not key:
        # Rows written before status existed: the reference decides.
        return SUBMITTED if has_ref else NOT_SUBMITTED
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    logger.warning("Unrecognized submission status %r", raw)
    return SUBMITTED if has_ref else NOT_SUBMITTED


def effective_status(submission: Submission) -> str:
    return normalize_status(submission.status, has_reference(submission))


def backfill_statuses(db: Session, rows: list[Submission]) -> int:
    """Persist canonical statuses for rows holding legacy values. Never raises."""
    params = []
    for row in rows:
        canonical = effective_status(row)
        if row.status != canonical:
            params.append({"b_id": row.id, "b_raw": row.status, "b_status": canonical})
    if not params:
        return 0
    table = Submission.__table__
    stmt = (
        update(table)
        .where(table.c.id == bindparam("b_id"), table.c.status.is_not_distinct_from(bindparam("b_raw")))
        .values(status=bindparam("b_status"))
    )
    try:
        db.execute(stmt, params)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        counters.increment(SUBMISSION_BACKFILL_FAILURES)
        logger.warning("Status backfill failed for %d submission(s): %s", len(params), exc)
        return 0
    logger.info("Backfilled canonical status on %d submission(s)", len(params))
    return len(params)


def _latest(rows: list[Submission]) -> Submission:
    return max(rows, key=lambda r: (parse_timestamp(r.created_at), r.id))


def current_submissions(db: Session, principal_id: str, requirement_ids: list[str] | None = None) -> dict[str, Submission]:
    """requirement_id -> authoritative row for the principal."""
    query = db.query(Submission).filter(Submission.principal_id == principal_id)
    if requirement_ids is not None:
        if not requirement_ids:
            return {}
        query = query.filter(Submission.requirement_id.in_(requirement_ids))
    grouped: dict[str, list[Submission]] = {}
    for row in query.all():
        grouped.setdefault(row.requirement_id, []).append(row)
    current = {req_id: _latest(rows) for req_id, rows in grouped.items()}
    backfill_statuses(db, list(current.values()))
    return current


def current_submission(db: Session, principal_id: str, requirement_id: str) -> Submission | None:
    return current_submissions(db, principal_id, [requirement_id]).get(requirement_id)


def _applicable_requirement(registry: RegistrySnapshot, principal: Principal, code: str) -> RequirementDefinition:
    requirement = registry.get_active(code)
    if requirement is None or registry.resolve(requirement, principal.role, None) is None:
        raise NotFound("Requirement not found")
    return requirement


def _commit(db: Session, submission: Submission, action: str):
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Submission %s failed for %s", action, submission.id)
        raise
    db.refresh(submission)


def _visible_document(db: Session, scope: EffectiveScope, document_id: str) -> bool:
    # Out-of-scope documents are reported exactly like missing ones.
    query = db.query(Document.id).filter(Document.id == document_id)
    return apply_scope(query, scope, Document.site_id, Document.organization_id).first() is not None


def submit(
    db: Session,
    registry: RegistrySnapshot,
    principal: Principal,
    scope: EffectiveScope,
    requirement_code: str,
    document_id: str | None = None,
    file_url: str | None = None,
    file_path: str | None = None,
    file_name: str | None = None,
) -> Submission:
    """Attach (or clear) the principal's document for a requirement."""
    requirement = _applicable_requirement(registry, principal, requirement_code)
    document_id = (document_id or "").strip() or None
    file_url = (file_url or "").strip() or None
    file_path = (file_path or "").strip() or None

    if document_id and not _visible_document(db, scope, document_id):
        raise NotFound("Document not found")

    current = current_submission(db, principal.id, requirement.id)
    now = utcnow_iso()

    if not (document_id or file_url or file_path):
        if current is None:
            # Nothing to clear: report the implicit state without persisting a row.
            return Submission(
                id=None, principal_id=principal.id, requirement_id=requirement.id,
                status=NOT_SUBMITTED, created_at=None, updated_at=None,
            )
        current.document_id = None
        current.file_url = None
        current.file_path = None
        current.file_name = None
        current.status = NOT_SUBMITTED
        current.submitted_at = None
        current.approved_at = None
        current.rejected_at = None
        current.rejection_reason = None
        current.reviewed_by = None
        current.updated_at = now
        _commit(db, current, "clear")
        logger.info("Submission cleared: %s (%s / %s)", current.id, principal.id, requirement.code)
        return current

    if current is None:
        current = Submission(
            id=str(uuid.uuid4()),
            principal_id=principal.id,
            requirement_id=requirement.id,
            created_at=now,
        )
        db.add(current)
    current.document_id = document_id
    current.file_url = file_url
    current.file_path = file_path
    current.file_name = file_name
    current.status = SUBMITTED
    current.submitted_at = now
    current.approved_at = None
    current.rejected_at = None
    current.rejection_reason = None
    current.reviewed_by = None
    current.updated_at = now
    _commit(db, current, "submit")
    logger.info("Submission %s: %s (%s / %s)", SUBMITTED, current.id, principal.id, requirement.code)
    return current


def validate_upload(requirement: RequirementDefinition, filename: str | None, size: int):
    if size <= 0:
        raise ValidationError("Empty file")
    limit = requirement.max_file_size or settings.max_submission_bytes
    if size > limit:
        raise ValidationError(f"File too large (max {limit} bytes)")
    if requirement.file_types:
        ext = file_extension(filename)
        if ext not in requirement.file_types:
            raise ValidationError(
                f"File type '{ext or 'unknown'}' not accepted. Must be one of: {', '.join(requirement.file_types)}"
            )


def submission_storage_path(principal_id: str, requirement_code: str, filename: str) -> str:
    stamp = utcnow_iso().replace("-", "").replace(":", "").replace(".", "")
    return (
        f"submissions/{sanitize_filename(principal_id)}/{sanitize_filename(requirement_code)}/"
        f"{stamp}_{secrets.token_hex(4)}_{sanitize_filename(filename)}"
    )


def submit_upload(
    db: Session,
    registry: RegistrySnapshot,
    storage: ObjectStorage,
    principal: Principal,
    scope: EffectiveScope,
    requirement_code: str,
    filename: str,
    content: bytes,
    content_type: str | None = None,
) -> Submission:
    requirement = _applicable_requirement(registry, principal, requirement_code)
    validate_upload(requirement, filename, len(content))

    path = submission_storage_path(principal.id, requirement.code, filename)
    storage.upload(path, content, content_type)
    try:
        return submit(
            db, registry, principal, scope, requirement.code,
            file_url=storage.public_url(path), file_path=path, file_name=filename,
        )
    except Exception:
        try:
            storage.remove([path])
        except StorageError as exc:
            counters.increment(STORAGE_CLEANUP_FAILURES)
            logger.warning("Could not remove uploaded submission file %s: %s", path, exc)
        raise


def get_submission(db: Session, submission_id: str) -> Submission:
    submission = db.query(Submission).filter(Submission.id == submission_id).first()
    if not submission:
        raise NotFound("Submission not found")
    return submission


def review_submission(db: Session, principal: Principal, submission_id: str, decision: str,
                      reason: str | None = None) -> Submission:
    if not principal.is_admin:
        raise Forbidden("Only administrators may review submissions")
    if decision not in ("approve", "reject"):
        raise ValidationError("Decision must be 'approve' or 'reject'")
    reason = (reason or "").strip()
    if decision == "reject" and not reason:
        raise ValidationError("A rejection reason is required")

    submission = get_submission(db, submission_id)
    current = current_submission(db, submission.principal_id, submission.requirement_id)
    if current is None or current.id != submission.id:
        raise ValidationError("Submission has been superseded")
    if effective_status(submission) == NOT_SUBMITTED:
        raise ValidationError("Nothing has been submitted for review")

    now = utcnow_iso()
    if decision == "approve":
        submission.status = APPROVED
        submission.approved_at = now
        submission.rejected_at = None
        submission.rejection_reason = None
    else:
        submission.status = REJECTED
        submission.rejected_at = now
        submission.rejection_reason = reason
        submission.approved_at = None
    submission.reviewed_by = principal.id
    submission.updated_at = now
    _commit(db, submission, decision)
    logger.info("Submission %s: %s by %s", submission.status, submission.id, principal.id)
    return submission


# ---------------------------------------------------------------------------
# Status listing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RequirementStatus:
    requirement: RequirementDefinition
    is_required: bool
    status: str
    submission: Submission | None
    due_days: int | None
    due_date: str | None


def _primary_assignment(db: Session, principal_id: str, site_id: str | None) -> SiteAssignment | None:
    query = db.query(SiteAssignment).filter(
        SiteAssignment.user_id == principal_id, SiteAssignment.is_active.is_(True)
    )
    if site_id:
        return query.filter(SiteAssignment.site_id == site_id).first()
    assignments = query.all()
    # Site overrides only apply when the principal works a single site.
    return assignments[0] if len(assignments) == 1 else None


def _due_date(assignment: SiteAssignment | None, due_days: int | None) -> str | None:
    if due_days is None or assignment is None:
        return None
    start = parse_date(assignment.assigned_date)
    if start is None:
        return None
    return (start + timedelta(days=due_days)).isoformat()


def get_submission_status(db: Session, registry: RegistrySnapshot, principal_id: str, role: str,
                          site_id: str | None = None) -> list[RequirementStatus]:
    assignment = _primary_assignment(db, principal_id, site_id)
    effective_site = site_id or (assignment.site_id if assignment else None)
    resolved = registry.list_active_requirements(role, effective_site)
    current = current_submissions(db, principal_id, [r.requirement.id for r in resolved])

    items = []
    for r in resolved:
        submission = current.get(r.requirement.id)
        items.append(RequirementStatus(
            requirement=r.requirement,
            is_required=r.is_required,
            status=effective_status(submission) if submission else NOT_SUBMITTED,
            submission=submission,
            due_days=r.due_days,
            due_date=_due_date(assignment, r.due_days),
        ))
    return items
