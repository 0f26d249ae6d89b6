from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from sitedocs.database import Base


class DailyReport(Base):
    __tablename__ = "daily_reports"

    id = Column(Text, primary_key=True)
    site_id = Column(Text, nullable=False)
    organization_id = Column(Text)
    work_date = Column(Text)
    created_by = Column(Text)
    created_at = Column(Text, nullable=False)

    attachments = relationship("Attachment", back_populates="report", cascade="all, delete-orphan")


class Attachment(Base):
    __tablename__ = "report_attachments"

    id = Column(Text, primary_key=True)
    daily_report_id = Column(Text, ForeignKey("daily_reports.id", ondelete="CASCADE"), nullable=False)
    category = Column(Text, nullable=False)
    ordinal = Column(Integer, nullable=False, default=0)
    file_path = Column(Text, nullable=False)
    file_url = Column(Text)
    file_name = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    description = Column(Text)
    uploaded_by = Column(Text)
    created_at = Column(Text, nullable=False)

    report = relationship("DailyReport", back_populates="attachments")
