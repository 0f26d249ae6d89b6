from datetime import date, timedelta

from sitedocs.models import AnalyticsMetric
from sitedocs.services.metrics_service import clamp_days
from sitedocs.utils.timestamps import utcnow_iso

from conftest import ADMIN, principal_headers, seed, seed_person, seed_site

API = "/api/v1"
RESTRICTED = principal_headers("mgr-1", "site_manager", org="org-1", restricted_org="org-1")


def _metric(id, site_id, org, metric_type="daily_report_completion", days_ago=1, value=1.0):
    return AnalyticsMetric(
        id=id, site_id=site_id, organization_id=org, metric_type=metric_type,
        metric_date=(date.today() - timedelta(days=days_ago)).isoformat(), value=value, created_at=utcnow_iso(),
    )


def _seed(Session):
    seed_site(Session, "site-1", org="org-1")
    seed_site(Session, "site-2", org="org-1")
    seed_site(Session, "site-3", org="org-2")
    seed_person(Session, "mgr-1", role="site_manager", sites=("site-1",))
    seed(Session,
         _metric("m1", "site-1", "org-1", value=80.0),
         _metric("m2", "site-2", "org-1"),
         _metric("m3", None, "org-1", value=60.0),
         _metric("m4", "site-3", "org-2"),
         _metric("m5", "site-1", "org-1", metric_type="attendance_rate"),
         _metric("m6", "site-1", "org-1", days_ago=90))


class TestMetrics:
    def test_restricted_principal_sees_site_and_org_wide(self, client, test_db):
        _seed(test_db)
        r = client.get(f"{API}/metrics", params={"type": "daily_report_completion"}, headers=RESTRICTED)
        assert r.status_code == 200
        data = r.json()
        assert data["count"] == 2
        assert sorted(m["id"] for m in data["metrics"]) == ["m1", "m3"]
        assert data["average"] == 70.0

    def test_site_filter_outside_scope_is_empty(self, client, test_db):
        _seed(test_db)
        r = client.get(f"{API}/metrics", params={"type": "daily_report_completion", "site_id": "site-2"},
                       headers=RESTRICTED)
        assert r.status_code == 200
        assert r.json()["count"] == 0
        assert r.json()["average"] is None

    def test_site_filter_inside_scope_drops_org_wide(self, client, test_db):
        _seed(test_db)
        r = client.get(f"{API}/metrics", params={"type": "daily_report_completion", "site_id": "site-1"},
                       headers=RESTRICTED)
        assert [m["id"] for m in r.json()["metrics"]] == ["m1"]

    def test_days_window(self, client, test_db):
        _seed(test_db)
        r = client.get(f"{API}/metrics", params={"days": 365}, headers=ADMIN)
        assert r.json()["count"] == 6
        assert r.json()["days"] == 365
        r = client.get(f"{API}/metrics", params={"days": 0}, headers=ADMIN)
        assert r.json()["days"] == 1

    def test_worker_forbidden(self, client, test_db):
        assert client.get(f"{API}/metrics", headers=principal_headers("w", "worker")).status_code == 403

    def test_invalid_type(self, client, test_db):
        assert client.get(f"{API}/metrics", params={"type": "vibes"}, headers=ADMIN).status_code == 400

    def test_clamp_days(self):
        assert clamp_days(-5) == 1
        assert clamp_days(10_000) == 365
        assert clamp_days(None) == 30
