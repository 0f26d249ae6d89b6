import sqlite3
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from sitedocs.config import settings


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path | None = None):
    path = db_path or settings.db_path
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Session factory for work that runs outside the request session (aggregation fan-out)."""
    return SessionLocal


SCHEMA_SQL = """\
-- ============================================================
-- ORGANISATION / SITES / PEOPLE
-- ============================================================
CREATE TABLE IF NOT EXISTS sites (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    organization_id TEXT,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_sites_org ON sites(organization_id);

CREATE TABLE IF NOT EXISTS profiles (
    id              TEXT PRIMARY KEY,
    full_name       TEXT,
    role            TEXT NOT NULL DEFAULT 'worker'
                    CHECK(role IN ('worker','site_manager','customer_manager','admin','system_admin')),
    organization_id TEXT
);

CREATE TABLE IF NOT EXISTS site_assignments (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    site_id       TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    role          TEXT,
    is_active     INTEGER NOT NULL DEFAULT 1,
    assigned_date TEXT
);

CREATE INDEX IF NOT EXISTS idx_site_assignments_user ON site_assignments(user_id, is_active);

-- ============================================================
-- REQUIREMENT REGISTRY
-- ============================================================
CREATE TABLE IF NOT EXISTS document_requirements (
    id            TEXT PRIMARY KEY,
    code          TEXT NOT NULL,
    name          TEXT NOT NULL,
    description   TEXT,
    file_types    TEXT NOT NULL DEFAULT '[]',
    max_file_size INTEGER,
    sort_order    INTEGER NOT NULL DEFAULT 0,
    is_active     INTEGER NOT NULL DEFAULT 1,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_requirements_active_code
    ON document_requirements(code) WHERE is_active = 1;

CREATE TABLE IF NOT EXISTS requirement_role_mappings (
    requirement_id TEXT NOT NULL REFERENCES document_requirements(id) ON DELETE CASCADE,
    role           TEXT NOT NULL,
    is_required    INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (requirement_id, role)
);

CREATE TABLE IF NOT EXISTS site_requirement_overrides (
    requirement_id TEXT NOT NULL REFERENCES document_requirements(id) ON DELETE CASCADE,
    site_id        TEXT NOT NULL,
    is_required    INTEGER NOT NULL DEFAULT 1,
    due_days       INTEGER,
    notes          TEXT,
    PRIMARY KEY (requirement_id, site_id)
);

-- ============================================================
-- SUBMISSIONS (status is unconstrained: legacy values are normalized on read)
-- ============================================================
CREATE TABLE IF NOT EXISTS document_submissions (
    id               TEXT PRIMARY KEY,
    principal_id     TEXT NOT NULL,
    requirement_id   TEXT NOT NULL REFERENCES document_requirements(id),
    document_id      TEXT,
    file_url         TEXT,
    file_path        TEXT,
    file_name        TEXT,
    status           TEXT,
    submitted_at     TEXT,
    approved_at      TEXT,
    rejected_at      TEXT,
    rejection_reason TEXT,
    reviewed_by      TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_submissions_principal ON document_submissions(principal_id, requirement_id);

-- ============================================================
-- DOCUMENT STORES
-- ============================================================
CREATE TABLE IF NOT EXISTS documents (
    id              TEXT PRIMARY KEY,
    site_id         TEXT,
    organization_id TEXT,
    document_type   TEXT NOT NULL DEFAULT 'other',
    title           TEXT,
    description     TEXT,
    file_name       TEXT,
    file_url        TEXT,
    file_size       INTEGER,
    mime_type       TEXT,
    uploaded_by     TEXT,
    status          TEXT NOT NULL DEFAULT 'active',
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_site ON documents(site_id);
CREATE INDEX IF NOT EXISTS idx_documents_type ON documents(document_type);

CREATE TABLE IF NOT EXISTS legacy_documents (
    id              TEXT PRIMARY KEY,
    site_id         TEXT,
    organization_id TEXT,
    category_type   TEXT,
    sub_category    TEXT,
    file_name       TEXT,
    file_url        TEXT,
    file_size       INTEGER,
    file_type       TEXT,
    uploaded_by     TEXT,
    is_archived     INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_legacy_documents_site ON legacy_documents(site_id);

CREATE TABLE IF NOT EXISTS site_documents (
    id            TEXT PRIMARY KEY,
    site_id       TEXT NOT NULL,
    document_type TEXT NOT NULL,
    title         TEXT,
    description   TEXT,
    file_name     TEXT,
    file_url      TEXT,
    file_size     INTEGER,
    mime_type     TEXT,
    uploaded_by   TEXT,
    is_active     INTEGER NOT NULL DEFAULT 1,
    is_primary    INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_site_documents_site ON site_documents(site_id);

-- ============================================================
-- DAILY REPORTS / ATTACHMENTS
-- ============================================================
CREATE TABLE IF NOT EXISTS daily_reports (
    id              TEXT PRIMARY KEY,
    site_id         TEXT NOT NULL,
    organization_id TEXT,
    work_date       TEXT,
    created_by      TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS report_attachments (
    id              TEXT PRIMARY KEY,
    daily_report_id TEXT NOT NULL REFERENCES daily_reports(id) ON DELETE CASCADE,
    category        TEXT NOT NULL CHECK(category IN ('before','after')),
    ordinal         INTEGER NOT NULL DEFAULT 0,
    file_path       TEXT NOT NULL,
    file_url        TEXT,
    file_name       TEXT NOT NULL,
    file_size       INTEGER NOT NULL DEFAULT 0,
    description     TEXT,
    uploaded_by     TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_attachments_parent ON report_attachments(daily_report_id, category, ordinal);

-- ============================================================
-- ANALYTICS
-- ============================================================
CREATE TABLE IF NOT EXISTS analytics_metrics (
    id              TEXT PRIMARY KEY,
    organization_id TEXT,
    site_id         TEXT,
    metric_type     TEXT NOT NULL,
    metric_date     TEXT NOT NULL,
    value           REAL NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_metrics_type_date ON analytics_metrics(metric_type, metric_date);
"""


def init_db(db_path: Path | None = None):
    path = db_path or settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    conn.close()
