import io
import uuid

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from sitedocs.config import settings
from sitedocs.database import get_db, get_session_factory
from sitedocs.main import app
from sitedocs.models import DailyReport, Profile, Site, SiteAssignment
from sitedocs.observability import counters
from sitedocs.services.requirement_service import registry_cache
from sitedocs.utils.timestamps import utcnow_iso


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def tmp_data(tmp_path):
    data_path = tmp_path / "SiteDocs"
    data_path.mkdir()
    original = settings.data_path
    settings.data_path = data_path
    yield data_path
    settings.data_path = original


@pytest.fixture
def test_db(tmp_data):
    db_path = tmp_data / "db.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    from sitedocs.database import init_db
    init_db(db_path)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSession
    registry_cache.invalidate()
    counters.reset()
    yield TestSession
    app.dependency_overrides.clear()
    registry_cache.invalidate()
    engine.dispose()


@pytest.fixture
def db(test_db):
    session = test_db()
    yield session
    session.close()


@pytest.fixture
def client(test_db):
    return TestClient(app)


def principal_headers(principal_id: str, role: str = "worker", org: str | None = None,
                      restricted_org: str | None = None) -> dict:
    headers = {"X-Principal-Id": principal_id, "X-Principal-Role": role}
    if org:
        headers["X-Organization-Id"] = org
    if restricted_org:
        headers["X-Restricted-Org-Id"] = restricted_org
    return headers


ADMIN = principal_headers("admin-1", "admin")


def seed(Session, *rows):
    with Session() as s:
        for row in rows:
            s.add(row)
        s.commit()


def seed_site(Session, site_id: str, org: str | None = "org-1"):
    seed(Session, Site(id=site_id, name=f"Site {site_id}", organization_id=org, created_at=utcnow_iso()))


def seed_person(Session, user_id: str, role: str = "worker", org: str | None = "org-1",
                sites: tuple[str, ...] = (), assigned_date: str = "2026-01-01", full_name: str | None = None):
    rows = [Profile(id=user_id, full_name=full_name or user_id, role=role, organization_id=org)]
    for site_id in sites:
        rows.append(SiteAssignment(
            id=str(uuid.uuid4()), user_id=user_id, site_id=site_id, role=role,
            is_active=True, assigned_date=assigned_date,
        ))
    seed(Session, *rows)


def seed_report(Session, report_id: str, site_id: str, org: str | None = "org-1"):
    seed(Session, DailyReport(
        id=report_id, site_id=site_id, organization_id=org, work_date="2026-01-02",
        created_by="worker-1", created_at=utcnow_iso(),
    ))


def png_bytes(size=(64, 48), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()
