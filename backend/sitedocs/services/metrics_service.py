import logging
from datetime import date, timedelta

from sqlalchemy.orm import Session

from sitedocs.errors import Forbidden, ValidationError
from sitedocs.models.metric import AnalyticsMetric
from sitedocs.principal import Principal
from sitedocs.services.scope_service import EffectiveScope, apply_scope

logger = logging.getLogger("sitedocs.metrics")

METRIC_ROLES = frozenset({"site_manager", "customer_manager", "admin", "system_admin"})

METRIC_TYPES = (
    "daily_report_completion",
    "material_usage",
    "attendance_rate",
    "equipment_utilization",
    "site_productivity",
    "safety_incidents",
    "approval_time",
    "worker_efficiency",
    "web_vitals_cls",
    "web_vitals_fid",
    "web_vitals_fcp",
    "web_vitals_lcp",
    "web_vitals_ttfb",
    "api_response_time",
)

MIN_DAYS = 1
MAX_DAYS = 365


def clamp_days(days: int | None, default: int = 30) -> int:
    if days is None:
        return default
    return max(MIN_DAYS, min(MAX_DAYS, days))


def query_metrics(
    db: Session,
    principal: Principal,
    scope: EffectiveScope,
    metric_type: str | None = None,
    site_id: str | None = None,
    days: int | None = None,
    today: date | None = None,
) -> list[AnalyticsMetric]:
    if principal.role not in METRIC_ROLES:
        raise Forbidden("Insufficient role for analytics")
    if metric_type is not None and metric_type not in METRIC_TYPES:
        raise ValidationError(f"Invalid metric type '{metric_type}'")

    if site_id:
        scope = scope.narrowed_to(site_id)
    since = ((today or date.today()) - timedelta(days=clamp_days(days))).isoformat()

    query = db.query(AnalyticsMetric).filter(AnalyticsMetric.metric_date >= since)
    if metric_type:
        query = query.filter(AnalyticsMetric.metric_type == metric_type)
    query = apply_scope(query, scope, AnalyticsMetric.site_id, AnalyticsMetric.organization_id)
    rows = query.order_by(AnalyticsMetric.metric_date.desc(), AnalyticsMetric.id.asc()).all()
    logger.debug("Metrics query by %s returned %d row(s)", principal.id, len(rows))
    return rows


def summarize(rows: list[AnalyticsMetric]) -> dict:
    total = sum(r.value or 0 for r in rows)
    return {
        "count": len(rows),
        "total": round(total, 4),
        "average": round(total / len(rows), 4) if rows else None,
    }
