"""OnboardingSessionRecord model: one row per onboarding saga, never deleted."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from tenantflow.db.base import Base


class OnboardingSessionRecord(Base):
    __tablename__ = "onboarding_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Workflow state
    current_step = Column(String(40), nullable=False, default="tenant_setup")
    status = Column(String(20), nullable=False, default="pending", index=True)
    completed_steps = Column(JSON, nullable=False, default=list)
    step_data = Column(JSON, nullable=False, default=dict)  # {step: result payload}

    # Side-effect references, set at most once
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=True)
    admin_user_id = Column(UUID(as_uuid=True), ForeignKey("admin_accounts.id"), nullable=True)

    onboarding_data = Column(JSON, nullable=False)  # frozen request snapshot

    # Verification (digest only; raw tokens are never stored)
    verification_token_hash = Column(String(64), nullable=True)
    verification_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    # Provenance and options
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    send_welcome_email = Column(Boolean, nullable=False, default=True)
    auto_verify = Column(Boolean, nullable=False, default=False)

    estimated_completion = Column(DateTime(timezone=True), nullable=True)
    next_action = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)  # optimistic concurrency
