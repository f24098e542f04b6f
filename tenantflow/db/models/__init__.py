"""Re-export all models so Base.metadata sees them."""

from tenantflow.db.models.admin_account import AdminAccount
from tenantflow.db.models.onboarding_session import OnboardingSessionRecord
from tenantflow.db.models.tenant import Tenant, TenantFeatureFlag

__all__ = [
    "AdminAccount",
    "OnboardingSessionRecord",
    "Tenant",
    "TenantFeatureFlag",
]
