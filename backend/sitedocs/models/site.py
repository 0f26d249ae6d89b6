from sqlalchemy import Boolean, Column, ForeignKey, Text
from sitedocs.database import Base


class Site(Base):
    __tablename__ = "sites"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    organization_id = Column(Text)
    created_at = Column(Text, nullable=False)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Text, primary_key=True)
    full_name = Column(Text)
    role = Column(Text, nullable=False, default="worker")
    organization_id = Column(Text)


class SiteAssignment(Base):
    __tablename__ = "site_assignments"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, nullable=False)
    site_id = Column(Text, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    role = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_date = Column(Text)
