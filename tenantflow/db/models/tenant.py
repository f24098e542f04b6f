"""Tenant and TenantFeatureFlag models: the SQL tenant registry's tables."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from tenantflow.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), nullable=True)
    plan = Column(String(50), nullable=False, default="free")
    is_active = Column(Boolean, nullable=False, default=True)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)

    profile = Column(JSON, nullable=False, default=dict)  # description, industry, contact, address...
    tenant_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
    deleted_at = Column(DateTime(timezone=True), nullable=True)


# Uniqueness only among live tenants, so a soft-deleted name can be reused
Index(
    "uq_tenants_name_live",
    func.lower(Tenant.name),
    unique=True,
    postgresql_where=Tenant.deleted_at.is_(None),
)
Index(
    "uq_tenants_domain_live",
    func.lower(Tenant.domain),
    unique=True,
    postgresql_where=Tenant.deleted_at.is_(None) & Tenant.domain.isnot(None),
)


class TenantFeatureFlag(Base):
    __tablename__ = "tenant_feature_flags"
    __table_args__ = (UniqueConstraint("tenant_id", "feature", name="uq_tenant_feature_flags_feature"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    feature = Column(String(64), nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
