from sqlalchemy import Column, Float, Text
from sitedocs.database import Base


class AnalyticsMetric(Base):
    __tablename__ = "analytics_metrics"

    id = Column(Text, primary_key=True)
    organization_id = Column(Text)
    site_id = Column(Text)
    metric_type = Column(Text, nullable=False)
    metric_date = Column(Text, nullable=False)
    value = Column(Float, nullable=False, default=0)
    created_at = Column(Text, nullable=False)
