from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sitedocs.database import get_db
from sitedocs.dependencies import get_principal, get_scope
from sitedocs.principal import Principal
from sitedocs.schemas.metric import MetricQueryResponse, MetricResponse
from sitedocs.services.metrics_service import clamp_days, query_metrics, summarize
from sitedocs.services.scope_service import EffectiveScope

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", response_model=MetricQueryResponse)
async def get_metrics(
    type: str | None = None,
    site_id: str | None = None,
    days: int = 30,
    principal: Principal = Depends(get_principal),
    scope: EffectiveScope = Depends(get_scope),
    db: Session = Depends(get_db),
):
    rows = query_metrics(db, principal, scope, metric_type=type, site_id=site_id, days=days)
    return MetricQueryResponse(
        metrics=[
            MetricResponse(
                id=r.id,
                organization_id=r.organization_id,
                site_id=r.site_id,
                metric_type=r.metric_type,
                metric_date=r.metric_date,
                value=r.value,
            )
            for r in rows
        ],
        days=clamp_days(days),
        **summarize(rows),
    )
