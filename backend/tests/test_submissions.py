from datetime import date
from urllib.parse import urlparse

import pytest

from sitedocs.models import Document, DocumentRequirement, Submission
from sitedocs.observability import SUBMISSION_BACKFILL_FAILURES, counters
from sitedocs.services.submission_service import STATUSES, backfill_statuses, current_submissions, normalize_status
from sitedocs.utils.timestamps import parse_date, utcnow_iso

from conftest import ADMIN, principal_headers, seed, seed_person, seed_site

API = "/api/v1"
WORKER = principal_headers("worker-1", "worker", org="org-1")


def _requirement(client, code="medical", **kwargs):
    body = {"code": code, "name": code.title(), "role_mappings": [{"role": "worker"}], **kwargs}
    r = client.post(f"{API}/admin/requirements", json=body, headers=ADMIN)
    assert r.status_code == 201, r.text
    return r.json()


def _document(Session, doc_id="doc-1", site_id="site-1", org="org-1"):
    seed(Session, Document(id=doc_id, site_id=site_id, organization_id=org, document_type="required",
                           title="Scan", file_url=f"http://files/{doc_id}.pdf", created_at=utcnow_iso()))
    return doc_id


def _submit(client, code, headers=WORKER, **body):
    return client.post(f"{API}/submissions/{code}", json=body, headers=headers)


def _review(client, submission_id, decision, reason=None, headers=ADMIN):
    return client.post(f"{API}/submissions/{submission_id}/review",
                       json={"decision": decision, "reason": reason}, headers=headers)


class TestStatusNormalization:
    @pytest.mark.parametrize("raw,has_ref,expected", [
        (None, False, "not_submitted"),
        ("", False, "not_submitted"),
        ("", True, "submitted"),
        ("  ", True, "submitted"),
        ("Pending", True, "submitted"),
        ("uploaded", True, "submitted"),
        ("in-review", True, "submitted"),
        ("VERIFIED", True, "approved"),
        ("denied", True, "rejected"),
        ("mystery", True, "submitted"),
        ("mystery", False, "not_submitted"),
    ])
    def test_aliases(self, raw, has_ref, expected):
        assert normalize_status(raw, has_ref) == expected

    def test_idempotent(self):
        for status in STATUSES:
            assert normalize_status(status) == status
            assert normalize_status(normalize_status(status, True), True) == status


class TestSubmissionLifecycle:
    def test_first_submission(self, client, test_db):
        seed_site(test_db, "site-1")
        seed_person(test_db, "worker-1", sites=("site-1",))
        _requirement(client)
        doc_id = _document(test_db)
        r = _submit(client, "medical", document_id=doc_id)
        assert r.status_code == 200, r.text
        data = r.json()
        assert data["status"] == "submitted"
        assert data["submitted_at"] is not None
        assert data["approved_at"] is None
        assert data["rejected_at"] is None
        assert data["requirement_code"] == "medical"

    def test_unknown_document_reference(self, client):
        _requirement(client)
        assert _submit(client, "medical", document_id="nope").status_code == 404

    def test_out_of_scope_document_is_not_found(self, client, test_db):
        seed_site(test_db, "site-1")
        seed_site(test_db, "site-2", org="org-2")
        seed_person(test_db, "worker-2", org="org-2", sites=("site-2",))
        _requirement(client)
        doc_id = _document(test_db, "secret-doc", site_id="site-1", org="org-1")
        outsider = principal_headers("worker-2", "worker", org="org-2")

        r = _submit(client, "medical", headers=outsider, document_id=doc_id)
        assert r.status_code == 404
        assert r.json()["detail"] == _submit(client, "medical", headers=outsider, document_id="nope").json()["detail"]
        with test_db() as s:
            assert s.query(Submission).count() == 0

    def test_unassigned_worker_cannot_attach_org_wide_document(self, client, test_db):
        _requirement(client)
        doc_id = _document(test_db, "org-doc", site_id=None)
        assert _submit(client, "medical", document_id=doc_id).status_code == 404

    def test_unknown_or_inapplicable_requirement(self, client):
        _requirement(client, "manager_only", role_mappings=[{"role": "site_manager"}])
        assert _submit(client, "missing", file_url="http://x/y.pdf").status_code == 404
        assert _submit(client, "manager_only", file_url="http://x/y.pdf").status_code == 404

    def test_approve_then_resubmit(self, client):
        _requirement(client)
        sub = _submit(client, "medical", file_url="http://files/a.pdf").json()
        approved = _review(client, sub["id"], "approve").json()
        assert approved["status"] == "approved"
        assert approved["approved_at"] is not None
        assert approved["reviewed_by"] == "admin-1"

        again = _submit(client, "medical", file_url="http://files/b.pdf").json()
        assert again["id"] == sub["id"]
        assert again["status"] == "submitted"
        assert again["approved_at"] is None
        assert again["reviewed_by"] is None

    def test_resubmit_after_reject_clears_reason(self, client):
        _requirement(client)
        sub = _submit(client, "medical", file_url="http://files/a.pdf").json()
        rejected = _review(client, sub["id"], "reject", "Blurry scan").json()
        assert rejected["status"] == "rejected"
        assert rejected["rejection_reason"] == "Blurry scan"

        again = _submit(client, "medical", file_url="http://files/b.pdf").json()
        assert again["status"] == "submitted"
        assert again["rejection_reason"] is None
        assert again["rejected_at"] is None

    def test_approve_clears_prior_rejection(self, client):
        _requirement(client)
        sub = _submit(client, "medical", file_url="http://files/a.pdf").json()
        _review(client, sub["id"], "reject", "Expired")
        approved = _review(client, sub["id"], "approve").json()
        assert approved["rejection_reason"] is None
        assert approved["rejected_at"] is None

    def test_reject_without_reason(self, client):
        _requirement(client)
        sub = _submit(client, "medical", file_url="http://files/a.pdf").json()
        r = _review(client, sub["id"], "reject", "   ")
        assert r.status_code == 400
        status = client.get(f"{API}/submissions/status", headers=WORKER).json()
        assert status[0]["status"] == "submitted"

    def test_non_admin_review_forbidden(self, client):
        _requirement(client)
        sub = _submit(client, "medical", file_url="http://files/a.pdf").json()
        r = _review(client, sub["id"], "approve", headers=principal_headers("mgr", "site_manager"))
        assert r.status_code == 403

    def test_clear_submission(self, client):
        _requirement(client)
        sub = _submit(client, "medical", file_url="http://files/a.pdf").json()
        cleared = _submit(client, "medical").json()
        assert cleared["id"] == sub["id"]
        assert cleared["status"] == "not_submitted"
        assert cleared["file_url"] is None
        assert _review(client, sub["id"], "approve").status_code == 400

    def test_clear_without_row_persists_nothing(self, client, test_db):
        _requirement(client)
        data = _submit(client, "medical").json()
        assert data["id"] is None
        assert data["status"] == "not_submitted"
        with test_db() as s:
            assert s.query(Submission).count() == 0


class TestCurrentSubmission:
    def _seed_history(self, Session, requirement_id):
        seed(Session,
             Submission(id="old", principal_id="worker-1", requirement_id=requirement_id,
                        file_url="http://files/old.pdf", status="approved",
                        created_at="2025-01-01T00:00:00Z", updated_at="2025-01-01T00:00:00Z"),
             Submission(id="new", principal_id="worker-1", requirement_id=requirement_id,
                        file_url="http://files/new.pdf", status="denied",
                        rejection_reason="Wrong file",
                        created_at="2025-06-01 08:00:00", updated_at="2025-06-01 08:00:00"))

    def test_latest_row_is_authoritative(self, client, test_db):
        req = _requirement(client)
        self._seed_history(test_db, req["id"])
        status = client.get(f"{API}/submissions/status", headers=WORKER).json()
        assert status[0]["submission_id"] == "new"
        assert status[0]["status"] == "rejected"
        assert status[0]["rejection_reason"] == "Wrong file"

    def test_review_of_superseded_row_rejected(self, client, test_db):
        req = _requirement(client)
        self._seed_history(test_db, req["id"])
        assert _review(client, "old", "approve").status_code == 400

    def test_backfill_writes_canonical_status(self, client, test_db):
        req = _requirement(client)
        self._seed_history(test_db, req["id"])
        client.get(f"{API}/submissions/status", headers=WORKER)
        with test_db() as s:
            assert s.query(Submission).filter(Submission.id == "new").one().status == "rejected"
            # Only the current row is rewritten
            assert s.query(Submission).filter(Submission.id == "old").one().status == "approved"

    def test_backfill_failure_is_swallowed(self, db, monkeypatch):
        db.add(DocumentRequirement(id="r1", code="r1", name="R1", file_types=[], sort_order=0,
                                   is_active=True, created_at=utcnow_iso(), updated_at=utcnow_iso()))
        db.add(Submission(id="s1", principal_id="p", requirement_id="r1", status="pending",
                          file_url="http://x", created_at=utcnow_iso(), updated_at=utcnow_iso()))
        db.commit()
        row = db.query(Submission).one()

        def broken_execute(*args, **kwargs):
            from sqlalchemy.exc import OperationalError
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "execute", broken_execute)
        assert backfill_statuses(db, [row]) == 0
        assert counters.get(SUBMISSION_BACKFILL_FAILURES) == 1

    def test_missing_status_resolved_by_reference(self, db):
        now = utcnow_iso()
        db.add(DocumentRequirement(id="r1", code="r1", name="R1", file_types=[], sort_order=0,
                                   is_active=True, created_at=now, updated_at=now))
        db.add(Submission(id="with-file", principal_id="w1", requirement_id="r1", status=None,
                          file_url="http://x/f.pdf", created_at=now, updated_at=now))
        db.add(Submission(id="empty", principal_id="w2", requirement_id="r1", status="",
                          created_at=now, updated_at=now))
        db.commit()

        current_submissions(db, "w1")
        current_submissions(db, "w2")
        db.expire_all()
        assert db.get(Submission, "with-file").status == "submitted"
        assert db.get(Submission, "empty").status == "not_submitted"


class TestSubmissionStatus:
    def test_status_lists_applicable_requirements_with_due_dates(self, client, test_db):
        seed_site(test_db, "site-1")
        seed_person(test_db, "worker-1", sites=("site-1",), assigned_date="2026-03-01")
        _requirement(client, "medical", sort_order=1,
                     site_overrides=[{"site_id": "site-1", "is_required": True, "due_days": 10}])
        _requirement(client, "safety", sort_order=2)
        _submit(client, "safety", file_url="http://files/s.pdf", file_name="s.pdf")

        items = client.get(f"{API}/submissions/status", headers=WORKER).json()
        assert [(i["requirement_code"], i["status"]) for i in items] == [
            ("medical", "not_submitted"),
            ("safety", "submitted"),
        ]
        assert items[0]["due_date"] == "2026-03-11"
        assert items[1]["document"]["file_name"] == "s.pdf"

    def test_unreadable_assignment_date_has_no_due_date(self, client, test_db):
        seed_site(test_db, "site-1")
        seed_person(test_db, "worker-1", sites=("site-1",), assigned_date="next monday")
        _requirement(client, "medical",
                     site_overrides=[{"site_id": "site-1", "is_required": True, "due_days": 10}])
        items = client.get(f"{API}/submissions/status", headers=WORKER).json()
        assert items[0]["due_days"] == 10
        assert items[0]["due_date"] is None

    @pytest.mark.parametrize("raw,expected", [
        ("2026-03-01", date(2026, 3, 1)),
        ("2026-03-01 08:30:00", date(2026, 3, 1)),
        ("2026-03-01T23:59:59Z", date(2026, 3, 1)),
        ("0001-01-01", date(1, 1, 1)),
        ("garbage", None),
        (None, None),
    ])
    def test_parse_date(self, raw, expected):
        assert parse_date(raw) == expected

    def test_manager_can_view_worker_in_scope(self, client, test_db):
        seed_site(test_db, "site-1")
        seed_site(test_db, "site-2")
        seed_person(test_db, "worker-1", sites=("site-1",))
        seed_person(test_db, "worker-2", sites=("site-2",))
        seed_person(test_db, "mgr", role="site_manager", sites=("site-1",))
        _requirement(client)
        mgr = principal_headers("mgr", "site_manager", org="org-1")

        r = client.get(f"{API}/submissions/status", params={"principal_id": "worker-1"}, headers=mgr)
        assert r.status_code == 200
        assert r.json()[0]["requirement_code"] == "medical"
        r = client.get(f"{API}/submissions/status", params={"principal_id": "worker-2"}, headers=mgr)
        assert r.status_code == 404

    def test_worker_cannot_view_others(self, client):
        r = client.get(f"{API}/submissions/status", params={"principal_id": "worker-2"}, headers=WORKER)
        assert r.status_code == 403


class TestSubmissionUpload:
    def test_upload_stores_file(self, client, tmp_data):
        _requirement(client, file_types=["pdf"])
        r = client.post(f"{API}/submissions/medical/upload",
                        files={"file": ("checkup.pdf", b"%PDF-1.4 fake", "application/pdf")}, headers=WORKER)
        assert r.status_code == 201, r.text
        data = r.json()
        assert data["status"] == "submitted"
        assert data["file_name"] == "checkup.pdf"
        stored = list((tmp_data / "storage" / "submissions").rglob("*checkup.pdf"))
        assert len(stored) == 1

    def test_uploaded_file_served_through_signed_link(self, client):
        _requirement(client, file_types=["pdf"])
        data = client.post(f"{API}/submissions/medical/upload",
                           files={"file": ("checkup.pdf", b"%PDF-1.4 fake", "application/pdf")}, headers=WORKER).json()
        url = urlparse(data["file_url"])
        assert url.path.startswith("/files/submissions/")

        r = client.get(f"{url.path}?{url.query}")
        assert r.status_code == 200
        assert r.content == b"%PDF-1.4 fake"
        assert client.get(url.path).status_code == 403

    def test_upload_rejects_wrong_type(self, client):
        _requirement(client, file_types=["pdf"])
        r = client.post(f"{API}/submissions/medical/upload",
                        files={"file": ("photo.png", b"png", "image/png")}, headers=WORKER)
        assert r.status_code == 400

    def test_upload_rejects_oversized(self, client):
        _requirement(client, file_types=["pdf"], max_file_size=10)
        r = client.post(f"{API}/submissions/medical/upload",
                        files={"file": ("big.pdf", b"x" * 11, "application/pdf")}, headers=WORKER)
        assert r.status_code == 413
