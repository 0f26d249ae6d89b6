from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from sitedocs.database import Base


class DocumentRequirement(Base):
    __tablename__ = "document_requirements"

    id = Column(Text, primary_key=True)
    code = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    file_types = Column(JSON, nullable=False, default=list)
    max_file_size = Column(Integer)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    role_mappings = relationship(
        "RequirementRoleMapping", back_populates="requirement", cascade="all, delete-orphan"
    )
    site_overrides = relationship(
        "SiteRequirementOverride", back_populates="requirement", cascade="all, delete-orphan"
    )


class RequirementRoleMapping(Base):
    __tablename__ = "requirement_role_mappings"

    requirement_id = Column(
        Text, ForeignKey("document_requirements.id", ondelete="CASCADE"), primary_key=True
    )
    role = Column(Text, primary_key=True)
    is_required = Column(Boolean, nullable=False, default=True)

    requirement = relationship("DocumentRequirement", back_populates="role_mappings")


class SiteRequirementOverride(Base):
    __tablename__ = "site_requirement_overrides"

    requirement_id = Column(
        Text, ForeignKey("document_requirements.id", ondelete="CASCADE"), primary_key=True
    )
    site_id = Column(Text, primary_key=True)
    is_required = Column(Boolean, nullable=False, default=True)
    due_days = Column(Integer)
    notes = Column(Text)

    requirement = relationship("DocumentRequirement", back_populates="site_overrides")
