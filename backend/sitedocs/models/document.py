from sqlalchemy import Boolean, Column, Integer, Text
from sitedocs.database import Base


class Document(Base):
    """Current-schema document store."""

    __tablename__ = "documents"

    id = Column(Text, primary_key=True)
    site_id = Column(Text)
    organization_id = Column(Text)
    document_type = Column(Text, nullable=False, default="other")
    title = Column(Text)
    description = Column(Text)
    file_name = Column(Text)
    file_url = Column(Text)
    file_size = Column(Integer)
    mime_type = Column(Text)
    uploaded_by = Column(Text)
    status = Column(Text, nullable=False, default="active")
    created_at = Column(Text, nullable=False)


class LegacyDocument(Base):
    __tablename__ = "legacy_documents"

    id = Column(Text, primary_key=True)
    site_id = Column(Text)
    organization_id = Column(Text)
    category_type = Column(Text)
    sub_category = Column(Text)
    file_name = Column(Text)
    file_url = Column(Text)
    file_size = Column(Integer)
    file_type = Column(Text)
    uploaded_by = Column(Text)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(Text, nullable=False)


class SiteDocument(Base):
    """Per-site blueprint / permit-to-work store."""

    __tablename__ = "site_documents"

    id = Column(Text, primary_key=True)
    site_id = Column(Text, nullable=False)
    document_type = Column(Text, nullable=False)
    title = Column(Text)
    description = Column(Text)
    file_name = Column(Text)
    file_url = Column(Text)
    file_size = Column(Integer)
    mime_type = Column(Text)
    uploaded_by = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(Text, nullable=False)
