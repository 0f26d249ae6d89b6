from typing import Literal

from pydantic import BaseModel


class SubmitRequest(BaseModel):
    document_id: str | None = None
    file_url: str | None = None
    file_name: str | None = None


class ReviewRequest(BaseModel):
    decision: Literal["approve", "reject"]
    reason: str | None = None


class SubmissionResponse(BaseModel):
    id: str | None
    principal_id: str
    requirement_id: str
    requirement_code: str | None = None
    document_id: str | None
    file_url: str | None
    file_name: str | None
    status: str
    submitted_at: str | None
    approved_at: str | None
    rejected_at: str | None
    rejection_reason: str | None
    reviewed_by: str | None
    created_at: str | None
    updated_at: str | None


class DocumentReference(BaseModel):
    document_id: str | None = None
    file_url: str | None = None
    file_name: str | None = None


class SubmissionStatusItem(BaseModel):
    requirement_code: str
    label: str
    is_required: bool
    status: str
    submission_id: str | None = None
    rejection_reason: str | None = None
    document: DocumentReference | None = None
    submitted_at: str | None = None
    approved_at: str | None = None
    rejected_at: str | None = None
    due_days: int | None = None
    due_date: str | None = None
