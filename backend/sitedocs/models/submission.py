from sqlalchemy import Column, ForeignKey, Text
from sitedocs.database import Base


class Submission(Base):
    __tablename__ = "document_submissions"

    id = Column(Text, primary_key=True)
    principal_id = Column(Text, nullable=False)
    requirement_id = Column(Text, ForeignKey("document_requirements.id"), nullable=False)
    document_id = Column(Text)
    file_url = Column(Text)
    file_path = Column(Text)
    file_name = Column(Text)
    status = Column(Text)
    submitted_at = Column(Text)
    approved_at = Column(Text)
    rejected_at = Column(Text)
    rejection_reason = Column(Text)
    reviewed_by = Column(Text)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)
