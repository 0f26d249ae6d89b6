"""
Ordered before/after photo attachments on daily reports.

Every stored photo exists as three objects whose paths are derived from one
another by suffix substitution:

    .../1700000000_ab12_site.jpg            original
    .../1700000000_ab12_site__display.jpg   display
    .../1700000000_ab12_site__thumb.jpg     thumbnail

Ordinals are dense and zero-based per (report, category). Anything that
computes or rewrites ordinals holds the lock for that key.
"""
import enum
import io
import logging
import secrets
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sitedocs.config import settings
from sitedocs.errors import Forbidden, NotFound, StorageError, ValidationError
from sitedocs.models.attachment import Attachment, DailyReport
from sitedocs.observability import ATTACHMENT_ORPHANED_MOVES, STORAGE_CLEANUP_FAILURES, counters
from sitedocs.principal import MANAGER_ROLES, Principal
from sitedocs.services.scope_service import EffectiveScope, in_scope
from sitedocs.services.storage_service import ObjectStorage
from sitedocs.utils.filesystem import sanitize_filename
from sitedocs.utils.timestamps import parse_timestamp, utcnow_iso

logger = logging.getLogger("sitedocs.attachments")

CATEGORIES = ("before", "after")
DISPLAY_SUFFIX = "__display"
THUMB_SUFFIX = "__thumb"


# ---------------------------------------------------------------------------
# Variant paths (pure)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VariantSet:
    original: str
    display: str
    thumbnail: str

    def all(self) -> list[str]:
        return [self.original, self.display, self.thumbnail]


def _split(path: str) -> tuple[str, str, str]:
    directory, _, name = path.rpartition("/")
    if "." in name:
        stem, ext = name.rsplit(".", 1)
        ext = "." + ext
    else:
        stem, ext = name, ""
    return (directory + "/" if directory else ""), stem, ext


def original_path_for(path: str) -> str:
    directory, stem, ext = _split(path)
    for suffix in (DISPLAY_SUFFIX, THUMB_SUFFIX):
        if stem.endswith(suffix):
            stem = stem[: -len(suffix)]
            break
    return f"{directory}{stem}{ext}"


def derive_variants(path: str) -> VariantSet:
    """Variant paths from any one of them, without touching storage."""
    directory, stem, ext = _split(original_path_for(path))
    return VariantSet(
        original=f"{directory}{stem}{ext}",
        display=f"{directory}{stem}{DISPLAY_SUFFIX}{ext}",
        thumbnail=f"{directory}{stem}{THUMB_SUFFIX}{ext}",
    )


def build_storage_path(report_id: str, category: str, filename: str, now: float | None = None) -> str:
    stamp = int((now if now is not None else time.time()) * 1000)
    return (
        f"daily-reports/{report_id}/additional/{category}/"
        f"{stamp}_{secrets.token_hex(3)}_{sanitize_filename(filename)}"
    )


def category_path(path: str, new_category: str, report_id: str, filename: str) -> str:
    """Swap the category segment of `path`; build a fresh path when it has none."""
    segments = original_path_for(path).split("/")
    dirs = segments[:-1]
    for i in range(len(dirs) - 1, -1, -1):
        if dirs[i] in CATEGORIES:
            dirs[i] = new_category
            return "/".join(dirs + segments[-1:])
    return build_storage_path(report_id, new_category, filename)


# ---------------------------------------------------------------------------
# Per-(report, category) locks
# ---------------------------------------------------------------------------

class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


# Entries live only while some thread holds or waits on them.
_locks: dict[tuple[str, str], _KeyLock] = {}
_locks_guard = threading.Lock()


def _checkout(key: tuple[str, str]) -> _KeyLock:
    with _locks_guard:
        entry = _locks.get(key)
        if entry is None:
            entry = _locks[key] = _KeyLock()
        entry.users += 1
        return entry


def _checkin(key: tuple[str, str], entry: _KeyLock):
    with _locks_guard:
        entry.users -= 1
        if entry.users == 0:
            del _locks[key]


@contextmanager
def category_locks(*keys: tuple[str, str]):
    # Sorted acquisition keeps two opposite moves from deadlocking.
    ordered = sorted(set(keys))
    held = []
    try:
        for key in ordered:
            entry = _checkout(key)
            entry.lock.acquire()
            held.append((key, entry))
        yield
    finally:
        for key, entry in reversed(held):
            entry.lock.release()
            _checkin(key, entry)


# ---------------------------------------------------------------------------
# Ordinals
# ---------------------------------------------------------------------------

def _category_rows(db: Session, report_id: str, category: str) -> list[Attachment]:
    rows = (
        db.query(Attachment)
        .filter(Attachment.daily_report_id == report_id, Attachment.category == category)
        .all()
    )
    rows.sort(key=lambda a: (a.ordinal if a.ordinal is not None else 0, parse_timestamp(a.created_at), a.id))
    return rows


def next_ordinal(db: Session, report_id: str, category: str) -> int:
    rows = _category_rows(db, report_id, category)
    if not rows:
        return 0
    return max(a.ordinal or 0 for a in rows) + 1


def _resequence_locked(db: Session, report_id: str, category: str) -> list[Attachment]:
    rows = _category_rows(db, report_id, category)
    changed = 0
    for i, attachment in enumerate(rows):
        if attachment.ordinal != i:
            attachment.ordinal = i
            changed += 1
    if changed:
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Resequence failed for %s/%s", report_id, category)
            raise
        logger.info("Resequenced %s/%s (%d changed)", report_id, category, changed)
    return rows


def resequence(db: Session, report_id: str, category: str) -> list[Attachment]:
    """Rewrite ordinals to 0..n-1 keeping relative order. Idempotent."""
    with category_locks((report_id, category)):
        return _resequence_locked(db, report_id, category)


# ---------------------------------------------------------------------------
# Lookups and permissions
# ---------------------------------------------------------------------------

def get_report(db: Session, scope: EffectiveScope, report_id: str) -> DailyReport:
    report = db.query(DailyReport).filter(DailyReport.id == report_id).first()
    if not report or not in_scope(report, scope):
        raise NotFound("Daily report not found")
    return report


def get_attachment(db: Session, scope: EffectiveScope, attachment_id: str) -> Attachment:
    attachment = db.query(Attachment).filter(Attachment.id == attachment_id).first()
    if not attachment:
        raise NotFound("Attachment not found")
    report = db.query(DailyReport).filter(DailyReport.id == attachment.daily_report_id).first()
    if not report or not in_scope(report, scope):
        raise NotFound("Attachment not found")
    return attachment


def _check_can_modify(principal: Principal, attachment: Attachment):
    if attachment.uploaded_by == principal.id or principal.role in MANAGER_ROLES:
        return
    raise Forbidden("Only the uploader or a manager may change this attachment")


def _validate_category(category: str) -> str:
    value = (category or "").strip().lower()
    if value not in CATEGORIES:
        raise ValidationError(f"Invalid category '{category}'. Must be one of: {', '.join(CATEGORIES)}")
    return value


def _remove_best_effort(storage: ObjectStorage, paths: list[str]):
    try:
        storage.remove(paths)
    except StorageError as exc:
        counters.increment(STORAGE_CLEANUP_FAILURES)
        logger.warning("Could not remove %s: %s", paths, exc)


# ---------------------------------------------------------------------------
# Variant images
# ---------------------------------------------------------------------------

def resize_image(content: bytes, max_px: int) -> bytes:
    try:
        with Image.open(io.BytesIO(content)) as img:
            fmt = img.format or "JPEG"
            img = ImageOps.exif_transpose(img)
            if fmt == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            img.thumbnail((max_px, max_px))
            out = io.BytesIO()
            img.save(out, format=fmt)
            return out.getvalue()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError("File is not a supported image") from exc


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def add_attachment(
    db: Session,
    storage: ObjectStorage,
    principal: Principal,
    scope: EffectiveScope,
    report_id: str,
    category: str,
    filename: str,
    content: bytes,
    content_type: str | None = None,
    description: str | None = None,
) -> Attachment:
    report = get_report(db, scope, report_id)
    category = _validate_category(category)
    if not content:
        raise ValidationError("Empty file")
    if len(content) > settings.max_attachment_bytes:
        raise ValidationError(f"File too large (max {settings.max_attachment_bytes} bytes)")

    display = resize_image(content, settings.display_max_px)
    thumbnail = resize_image(content, settings.thumbnail_max_px)

    path = build_storage_path(report.id, category, filename)
    variants = derive_variants(path)
    uploaded: list[str] = []
    try:
        for variant_path, data in ((variants.original, content), (variants.display, display),
                                   (variants.thumbnail, thumbnail)):
            storage.upload(variant_path, data, content_type)
            uploaded.append(variant_path)

        with category_locks((report.id, category)):
            attachment = Attachment(
                id=str(uuid.uuid4()),
                daily_report_id=report.id,
                category=category,
                ordinal=next_ordinal(db, report.id, category),
                file_path=variants.original,
                file_url=storage.public_url(variants.original),
                file_name=filename,
                file_size=len(content),
                description=description,
                uploaded_by=principal.id,
                created_at=utcnow_iso(),
            )
            db.add(attachment)
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
    except Exception:
        if uploaded:
            _remove_best_effort(storage, uploaded)
        raise
    db.refresh(attachment)
    logger.info("Attachment added: %s (%s/%s #%d)", attachment.id, report.id, category, attachment.ordinal)
    return attachment


class MoveState(enum.Enum):
    PENDING_MOVE = "pending_move"
    MOVED_PHYSICALLY = "moved_physically"
    COMMITTED = "committed"
    ORPHANED = "orphaned"


def _move_category(db: Session, storage: ObjectStorage, attachment: Attachment, dest: str,
                   description: str | None, update_description: bool) -> MoveState:
    report_id = attachment.daily_report_id
    source = attachment.category
    state = MoveState.PENDING_MOVE

    with category_locks((report_id, source), (report_id, dest)):
        old = derive_variants(attachment.file_path)
        new_path = category_path(attachment.file_path, dest, report_id, attachment.file_name)
        new = derive_variants(new_path)

        try:
            storage.move(old.original, new.original)
        except StorageError:
            logger.error("Move of attachment %s aborted in %s: storage move failed", attachment.id, state.value)
            raise
        state = MoveState.MOVED_PHYSICALLY
        for src, dst in ((old.display, new.display), (old.thumbnail, new.thumbnail)):
            if not storage.exists(src):
                continue
            try:
                storage.move(src, dst)
            except StorageError as exc:
                counters.increment(STORAGE_CLEANUP_FAILURES)
                logger.warning("Variant %s not moved for attachment %s: %s", src, attachment.id, exc)

        attachment_id = attachment.id
        try:
            attachment.ordinal = next_ordinal(db, report_id, dest)
            attachment.category = dest
            attachment.file_path = new.original
            attachment.file_url = storage.public_url(new.original)
            if update_description:
                attachment.description = description
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            state = MoveState.ORPHANED
            counters.increment(ATTACHMENT_ORPHANED_MOVES)
            logger.error(
                "Attachment %s %s: object at %s but record still points to %s",
                attachment_id, state.value, new.original, old.original,
            )
            raise
        state = MoveState.COMMITTED
        _resequence_locked(db, report_id, source)

    logger.info("Attachment %s moved %s -> %s (%s)", attachment_id, source, dest, state.value)
    return state


def update_attachment(
    db: Session,
    storage: ObjectStorage,
    principal: Principal,
    scope: EffectiveScope,
    attachment_id: str,
    category: str | None = None,
    description: str | None = None,
    update_description: bool = False,
) -> Attachment:
    attachment = get_attachment(db, scope, attachment_id)
    _check_can_modify(principal, attachment)

    if category is not None:
        dest = _validate_category(category)
        if dest != attachment.category:
            _move_category(db, storage, attachment, dest, description, update_description)
            db.refresh(attachment)
            return attachment

    if update_description:
        attachment.description = description
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(attachment)
    return attachment


def delete_attachment(db: Session, storage: ObjectStorage, principal: Principal, scope: EffectiveScope,
                      attachment_id: str):
    attachment = get_attachment(db, scope, attachment_id)
    _check_can_modify(principal, attachment)
    report_id = attachment.daily_report_id
    category = attachment.category

    with category_locks((report_id, category)):
        _remove_best_effort(storage, derive_variants(attachment.file_path).all())
        db.delete(attachment)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        _resequence_locked(db, report_id, category)
    logger.info("Attachment deleted: %s (%s/%s)", attachment_id, report_id, category)


@dataclass(frozen=True)
class AttachmentView:
    attachment: Attachment
    file_url: str
    display_url: str
    thumbnail_url: str


def attachment_view(storage: ObjectStorage, attachment: Attachment) -> AttachmentView:
    variants = derive_variants(attachment.file_path)
    return AttachmentView(
        attachment=attachment,
        file_url=storage.signed_url(variants.original),
        display_url=storage.signed_url(variants.display),
        thumbnail_url=storage.signed_url(variants.thumbnail),
    )


def list_attachments(db: Session, storage: ObjectStorage, scope: EffectiveScope,
                     report_id: str) -> dict[str, list[AttachmentView]]:
    report = get_report(db, scope, report_id)
    grouped: dict[str, list[AttachmentView]] = {}
    for category in CATEGORIES:
        grouped[category] = [attachment_view(storage, a) for a in _category_rows(db, report.id, category)]
    return grouped
