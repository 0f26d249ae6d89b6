"""
Unified document listing over three stores with different columns and
category vocabularies:

    current         `documents`          document_type
    legacy          `legacy_documents`   category_type ("drawing" for blueprints)
    site_blueprint  `site_documents`     document_type ("blueprint" | "ptw")

Each store sits behind a DocumentSource. Sources run concurrently, each in its
own session and under a timeout; a failing source contributes nothing and is
reported as a PartialFailure. Only when every source fails does the listing
fail.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Callable

from sqlalchemy.orm import Session

from sitedocs.config import settings
from sitedocs.errors import AggregateUnavailable, PartialFailure, ValidationError
from sitedocs.models.document import Document, LegacyDocument, SiteDocument
from sitedocs.models.site import Profile
from sitedocs.observability import AGGREGATION_PARTIAL_FAILURES, AGGREGATION_SOURCE_FAILURES, counters
from sitedocs.services.scope_service import EffectiveScope, apply_scope
from sitedocs.utils.timestamps import parse_timestamp

logger = logging.getLogger("sitedocs.aggregation")

CURRENT = "current"
LEGACY = "legacy"
SITE_BLUEPRINT = "site_blueprint"

SOURCE_PRIORITY = {CURRENT: 0, LEGACY: 1, SITE_BLUEPRINT: 2}

# type -> (label, icon)
CATEGORY_LABELS = {
    "shared": ("Shared Documents", "share"),
    "markup": ("Markup Drawings", "edit"),
    "required": ("Required Documents", "alert-circle"),
    "invoice": ("Invoices", "receipt"),
    "photo_grid": ("Photo Grids", "image"),
    "personal": ("Personal Documents", "user"),
    "certificate": ("Certificates", "award"),
    "blueprint": ("Blueprints", "file-text"),
    "ptw": ("Permits to Work", "clipboard"),
    "report": ("Reports", "bar-chart"),
    "other": ("Other", "folder"),
}
DEFAULT_LABEL = ("Other", "folder")

# logical type -> source -> native values. A source missing from an entry does not hold that type.
CATEGORY_TRANSLATION = {
    "shared": {CURRENT: ("shared",), LEGACY: ("shared",)},
    "markup": {CURRENT: ("markup",), LEGACY: ("markup",)},
    "required": {CURRENT: ("required",), LEGACY: ("required", "required_user_docs")},
    "invoice": {CURRENT: ("invoice",), LEGACY: ("invoice",)},
    "photo_grid": {CURRENT: ("photo_grid",), LEGACY: ("photo_grid", "photo")},
    "personal": {CURRENT: ("personal",), LEGACY: ("personal",)},
    "certificate": {CURRENT: ("certificate",), LEGACY: ("certificate",)},
    "blueprint": {CURRENT: ("blueprint",), LEGACY: ("drawing", "blueprint"), SITE_BLUEPRINT: ("blueprint",)},
    "ptw": {CURRENT: ("ptw",), LEGACY: ("work_permit", "ptw"), SITE_BLUEPRINT: ("ptw",)},
    "report": {CURRENT: ("report",), LEGACY: ("report",)},
    "other": {CURRENT: ("other",), LEGACY: ("other",)},
}


def label_for(doc_type: str) -> tuple[str, str]:
    return CATEGORY_LABELS.get(doc_type, DEFAULT_LABEL)


def native_types(logical_type: str | None, source: str) -> tuple[str, ...] | None:
    """Native values to filter on; None means unfiltered, () means the source holds no such type."""
    if logical_type is None:
        return None
    return CATEGORY_TRANSLATION.get(logical_type, {}).get(source, ())


def logical_type(source: str, native: str | None) -> str:
    value = (native or "").strip().lower()
    for logical, per_source in CATEGORY_TRANSLATION.items():
        if value in per_source.get(source, ()):
            return logical
    return "other"


@dataclass(frozen=True)
class DocumentRecord:
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
    uploader_id: str | None
    created_at: str
    is_primary: bool = False
    site_id: str | None = None
    uploader_name: str | None = None


def _record(source: str, id: str, native: str | None, **kwargs) -> DocumentRecord:
    doc_type = logical_type(source, native)
    label, icon = label_for(doc_type)
    return DocumentRecord(id=id, source=source, type=doc_type, label=label, icon=icon, **kwargs)


class DocumentSource:
    name: str

    def fetch(self, db: Session, scope: EffectiveScope, types: tuple[str, ...] | None) -> list:
        raise NotImplementedError

    def normalize(self, row) -> DocumentRecord:
        raise NotImplementedError


class CurrentDocumentSource(DocumentSource):
    name = CURRENT

    def fetch(self, db, scope, types):
        query = db.query(Document).filter(Document.status != "deleted")
        query = apply_scope(query, scope, Document.site_id, Document.organization_id)
        if types is not None:
            query = query.filter(Document.document_type.in_(types))
        return query.all()

    def normalize(self, row: Document) -> DocumentRecord:
        return _record(
            self.name, row.id, row.document_type,
            name=row.title or row.file_name or "Untitled",
            description=row.description,
            file_url=row.file_url,
            size=row.file_size,
            mime_type=row.mime_type,
            uploader_id=row.uploaded_by,
            created_at=row.created_at,
            site_id=row.site_id,
        )


class LegacyDocumentSource(DocumentSource):
    name = LEGACY

    def fetch(self, db, scope, types):
        query = db.query(LegacyDocument).filter(LegacyDocument.is_archived.is_(False))
        query = apply_scope(query, scope, LegacyDocument.site_id, LegacyDocument.organization_id)
        if types is not None:
            query = query.filter(LegacyDocument.category_type.in_(types))
        return query.all()

    def normalize(self, row: LegacyDocument) -> DocumentRecord:
        return _record(
            self.name, row.id, row.category_type,
            name=row.file_name or "Untitled",
            description=row.sub_category,
            file_url=row.file_url,
            size=row.file_size,
            mime_type=row.file_type,
            uploader_id=row.uploaded_by,
            created_at=row.created_at,
            site_id=row.site_id,
        )


class SiteBlueprintSource(DocumentSource):
    name = SITE_BLUEPRINT

    def fetch(self, db, scope, types):
        query = db.query(SiteDocument).filter(SiteDocument.is_active.is_(True))
        query = apply_scope(query, scope, SiteDocument.site_id)
        if types is not None:
            query = query.filter(SiteDocument.document_type.in_(types))
        return query.all()

    def normalize(self, row: SiteDocument) -> DocumentRecord:
        return _record(
            self.name, row.id, row.document_type,
            name=row.title or row.file_name or "Untitled",
            description=row.description,
            file_url=row.file_url,
            size=row.file_size,
            mime_type=row.mime_type,
            uploader_id=row.uploaded_by,
            created_at=row.created_at,
            is_primary=bool(row.is_primary),
            site_id=row.site_id,
        )


DEFAULT_SOURCES: tuple[DocumentSource, ...] = (
    CurrentDocumentSource(),
    LegacyDocumentSource(),
    SiteBlueprintSource(),
)


@dataclass
class AggregationResult:
    documents: list[DocumentRecord]
    statistics: dict
    partial_failures: list[PartialFailure] = field(default_factory=list)


def merge_records(groups: list[list[DocumentRecord]]) -> list[DocumentRecord]:
    """Newest first; ties by source priority then id, independent of group order."""
    merged = [record for group in groups for record in group]
    merged.sort(key=lambda r: (
        -parse_timestamp(r.created_at).timestamp(),
        SOURCE_PRIORITY.get(r.source, len(SOURCE_PRIORITY)),
        r.id,
    ))
    return merged


def compute_statistics(records: list[DocumentRecord]) -> dict:
    by_type = Counter(r.type for r in records)
    return {"total": len(records), "by_type": dict(by_type)}


def _run_source(source: DocumentSource, session_factory: Callable[[], Session], scope: EffectiveScope,
                types: tuple[str, ...] | None) -> list[DocumentRecord]:
    db = session_factory()
    try:
        return [source.normalize(row) for row in source.fetch(db, scope, types)]
    finally:
        db.close()


def _attach_uploader_names(db: Session, records: list[DocumentRecord]) -> list[DocumentRecord]:
    ids = {r.uploader_id for r in records if r.uploader_id}
    if not ids:
        return records
    names = {p.id: p.full_name for p in db.query(Profile.id, Profile.full_name).filter(Profile.id.in_(ids)).all()}
    return [replace(r, uploader_name=names.get(r.uploader_id)) if r.uploader_id else r for r in records]


async def list_documents(
    db: Session,
    session_factory: Callable[[], Session],
    scope: EffectiveScope,
    site_id: str | None = None,
    type_filter: str | None = None,
    sources: tuple[DocumentSource, ...] = DEFAULT_SOURCES,
    timeout: float | None = None,
) -> AggregationResult:
    if type_filter is not None and type_filter not in CATEGORY_LABELS:
        raise ValidationError(f"Invalid document type '{type_filter}'. Must be one of: {', '.join(CATEGORY_LABELS)}")
    if site_id:
        scope = scope.narrowed_to(site_id)
    timeout = settings.aggregation_source_timeout_seconds if timeout is None else timeout

    active = []
    for source in sources:
        types = native_types(type_filter, source.name)
        if types == ():
            continue
        active.append((source, types))
    if not active:
        return AggregationResult(documents=[], statistics=compute_statistics([]))

    results = await asyncio.gather(
        *(
            asyncio.wait_for(asyncio.to_thread(_run_source, source, session_factory, scope, types), timeout)
            for source, types in active
        ),
        return_exceptions=True,
    )

    groups: list[list[DocumentRecord]] = []
    failures: list[PartialFailure] = []
    for (source, _), result in zip(active, results):
        if isinstance(result, BaseException):
            reason = "timeout" if isinstance(result, asyncio.TimeoutError) else f"{type(result).__name__}: {result}"
            failures.append(PartialFailure(source=source.name, reason=reason))
            counters.increment(AGGREGATION_SOURCE_FAILURES)
            logger.warning("Document source %s failed: %s", source.name, reason)
            continue
        groups.append(result)

    if not groups:
        logger.error("All %d document sources failed", len(active))
        raise AggregateUnavailable("Documents are temporarily unavailable", failures)
    if failures:
        counters.increment(AGGREGATION_PARTIAL_FAILURES)

    merged = _attach_uploader_names(db, merge_records(groups))
    return AggregationResult(documents=merged, statistics=compute_statistics(merged), partial_failures=failures)
