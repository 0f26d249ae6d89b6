from pydantic import BaseModel


class MetricResponse(BaseModel):
    id: str
    organization_id: str | None
    site_id: str | None
    metric_type: str
    metric_date: str
    value: float


class MetricQueryResponse(BaseModel):
    metrics: list[MetricResponse]
    days: int
    count: int
    total: float
    average: float | None
