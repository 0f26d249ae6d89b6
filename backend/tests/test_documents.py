import asyncio
import random
import time

import pytest

from sitedocs.errors import AggregateUnavailable
from sitedocs.models import Document, LegacyDocument, SiteDocument
from sitedocs.observability import AGGREGATION_PARTIAL_FAILURES, AGGREGATION_SOURCE_FAILURES, counters
from sitedocs.services.aggregation_service import (
    DEFAULT_SOURCES,
    CurrentDocumentSource,
    DocumentRecord,
    DocumentSource,
    label_for,
    list_documents,
    merge_records,
    native_types,
)
from sitedocs.services.scope_service import UNCONSTRAINED, EffectiveScope

from conftest import ADMIN, principal_headers, seed, seed_person, seed_site

API = "/api/v1"


def _seed_stores(Session):
    seed(Session,
         Document(id="cur-1", site_id="site-1", organization_id="org-1", document_type="blueprint",
                  title="Level 1 plan", uploaded_by="u-kim", created_at="2026-02-01T10:00:00Z"),
         Document(id="cur-2", site_id=None, organization_id="org-1", document_type="shared",
                  title="Safety manual", created_at="2026-02-03T10:00:00Z"),
         Document(id="cur-3", site_id="site-2", organization_id="org-1", document_type="invoice",
                  title="Invoice", created_at="2026-02-04T10:00:00Z"),
         LegacyDocument(id="leg-1", site_id="site-1", organization_id="org-1", category_type="drawing",
                        file_name="old-plan.pdf", created_at="2026-02-01T10:00:00Z"),
         LegacyDocument(id="leg-2", site_id="site-1", organization_id="org-1", category_type="drawing",
                        file_name="archived.pdf", is_archived=True, created_at="2026-02-05T10:00:00Z"),
         SiteDocument(id="site-doc-1", site_id="site-1", document_type="blueprint", title="Primary plan",
                      is_primary=True, created_at="2026-02-01T10:00:00Z"),
         SiteDocument(id="site-doc-2", site_id="site-1", document_type="ptw", title="Hot work permit",
                      created_at="2026-01-15T10:00:00Z"))


def _record(id, source, created_at, type="shared"):
    label, icon = label_for(type)
    return DocumentRecord(id=id, source=source, type=type, label=label, icon=icon, name=id,
                          description=None, file_url=None, size=None, mime_type=None,
                          uploader_id=None, created_at=created_at)


class FailingSource(DocumentSource):
    def __init__(self, name):
        self.name = name

    def fetch(self, db, scope, types):
        raise RuntimeError("no such table")


class SlowSource(CurrentDocumentSource):
    def fetch(self, db, scope, types):
        time.sleep(0.5)
        return super().fetch(db, scope, types)


class TestTables:
    def test_label_fallback(self):
        assert label_for("blueprint") == ("Blueprints", "file-text")
        assert label_for("unheard_of") == ("Other", "folder")

    def test_translation(self):
        assert native_types("blueprint", "legacy") == ("drawing", "blueprint")
        assert native_types("invoice", "site_blueprint") == ()
        assert native_types(None, "current") is None


class TestMerge:
    def test_sorted_newest_first_with_source_priority(self):
        merged = merge_records([
            [_record("s1", "site_blueprint", "2026-01-01T00:00:00Z")],
            [_record("l1", "legacy", "2026-01-01T00:00:00Z"), _record("l0", "legacy", "2026-03-01T00:00:00Z")],
            [_record("c1", "current", "2026-01-01T00:00:00Z")],
        ])
        assert [r.id for r in merged] == ["l0", "c1", "l1", "s1"]

    def test_deterministic_under_reordering(self):
        groups = [
            [_record(f"c{i}", "current", f"2026-01-0{i % 3 + 1}T00:00:00Z") for i in range(5)],
            [_record(f"l{i}", "legacy", f"2026-01-0{i % 2 + 1}T00:00:00Z") for i in range(4)],
            [_record("s0", "site_blueprint", "2026-01-01T00:00:00Z"), _record("s1", "site_blueprint", None)],
        ]
        expected = [r.id for r in merge_records(groups)]
        rng = random.Random(7)
        for _ in range(10):
            shuffled = [rng.sample(g, len(g)) for g in groups]
            rng.shuffle(shuffled)
            assert [r.id for r in merge_records(shuffled)] == expected
        assert expected[-1] == "s1"


class TestDocumentsApi:
    def test_admin_sees_all_stores(self, client, test_db):
        _seed_stores(test_db)
        seed_person(test_db, "u-kim", full_name="Kim Foreman")
        data = client.get(f"{API}/documents", headers=ADMIN).json()
        ids = [d["id"] for d in data["documents"]]
        assert ids == ["cur-3", "cur-2", "cur-1", "leg-1", "site-doc-1", "site-doc-2"]
        assert data["statistics"] == {"total": 6, "by_type": {"invoice": 1, "shared": 1, "blueprint": 3, "ptw": 1}}
        assert data["partial_failures"] == []

        by_id = {d["id"]: d for d in data["documents"]}
        assert by_id["leg-1"]["type"] == "blueprint"
        assert by_id["leg-1"]["label"] == "Blueprints"
        assert by_id["site-doc-1"]["is_primary"] is True
        assert by_id["cur-1"]["uploader_name"] == "Kim Foreman"

    def test_type_filter_translates_per_source(self, client, test_db):
        _seed_stores(test_db)
        data = client.get(f"{API}/documents", params={"type": "blueprint"}, headers=ADMIN).json()
        assert [(d["id"], d["source"]) for d in data["documents"]] == [
            ("cur-1", "current"), ("leg-1", "legacy"), ("site-doc-1", "site_blueprint"),
        ]
        assert data["statistics"]["by_type"] == {"blueprint": 3}

    def test_invalid_type_filter(self, client):
        assert client.get(f"{API}/documents", params={"type": "memes"}, headers=ADMIN).status_code == 400

    def test_scoped_to_assigned_sites(self, client, test_db):
        _seed_stores(test_db)
        seed_site(test_db, "site-1")
        seed_person(test_db, "w1", sites=("site-1",))
        data = client.get(f"{API}/documents", headers=principal_headers("w1", "worker", org="org-1")).json()
        assert [d["id"] for d in data["documents"]] == ["cur-2", "cur-1", "leg-1", "site-doc-1", "site-doc-2"]

    def test_site_filter_outside_scope_is_empty(self, client, test_db):
        _seed_stores(test_db)
        seed_site(test_db, "site-1")
        seed_person(test_db, "w1", sites=("site-1",))
        r = client.get(f"{API}/documents", params={"site_id": "site-2"},
                       headers=principal_headers("w1", "worker", org="org-1"))
        assert r.status_code == 200
        assert r.json()["documents"] == []
        assert r.json()["statistics"]["total"] == 0

    def test_unassigned_worker_sees_nothing(self, client, test_db):
        _seed_stores(test_db)
        data = client.get(f"{API}/documents", headers=principal_headers("nobody", "worker", org="org-1")).json()
        assert data["documents"] == []


class TestPartialFailure:
    def test_failed_source_is_recorded(self, test_db, db):
        _seed_stores(test_db)
        sources = (DEFAULT_SOURCES[0], FailingSource("legacy"), DEFAULT_SOURCES[2])
        result = asyncio.run(list_documents(db, test_db, UNCONSTRAINED, sources=sources))
        assert {r.source for r in result.documents} == {"current", "site_blueprint"}
        assert [f.source for f in result.partial_failures] == ["legacy"]
        assert counters.get(AGGREGATION_SOURCE_FAILURES) == 1
        assert counters.get(AGGREGATION_PARTIAL_FAILURES) == 1

    def test_timed_out_source_is_failed(self, test_db, db):
        _seed_stores(test_db)
        sources = (SlowSource(), DEFAULT_SOURCES[1])
        result = asyncio.run(list_documents(db, test_db, UNCONSTRAINED, sources=sources, timeout=0.05))
        assert [f.reason for f in result.partial_failures] == ["timeout"]
        assert {r.source for r in result.documents} == {"legacy"}

    def test_all_sources_failing_raises(self, test_db, db):
        sources = (FailingSource("current"), FailingSource("legacy"))
        with pytest.raises(AggregateUnavailable) as exc:
            asyncio.run(list_documents(db, test_db, UNCONSTRAINED, sources=sources))
        assert len(exc.value.failures) == 2

    def test_empty_scope_runs_without_failures(self, test_db, db):
        _seed_stores(test_db)
        scope = EffectiveScope(site_ids=frozenset(), allow_null=False)
        result = asyncio.run(list_documents(db, test_db, scope))
        assert result.documents == []
        assert result.partial_failures == []
