"""Tenant feature catalog and name normalization.

Requested feature names are matched case-insensitively against the catalog;
anything else (including names with surrounding whitespace or other
separators) is rejected rather than guessed at.
"""

from enum import Enum


class TenantFeature(str, Enum):
    # Security
    MFA_ENFORCEMENT = "mfa_enforcement"
    SSO_INTEGRATION = "sso_integration"
    PASSWORD_POLICY = "password_policy"
    ADVANCED_SECURITY = "advanced_security"
    AUDIT_LOGGING = "audit_logging"
    COMPLIANCE_REPORTING = "compliance_reporting"

    # Users
    BULK_USER_IMPORT = "bulk_user_import"
    USER_PROVISIONING = "user_provisioning"
    ADVANCED_ROLES = "advanced_roles"

    # Communication
    EMAIL_TEMPLATES = "email_templates"
    SMS_NOTIFICATIONS = "sms_notifications"
    PUSH_NOTIFICATIONS = "push_notifications"
    LIVE_CHAT = "live_chat"

    # Files
    ADVANCED_FILE_MANAGEMENT = "advanced_file_management"
    FILE_VERSIONING = "file_versioning"
    FILE_ENCRYPTION = "file_encryption"

    # Analytics
    ADVANCED_ANALYTICS = "advanced_analytics"
    CUSTOM_REPORTS = "custom_reports"
    EXPORT_CAPABILITIES = "export_capabilities"

    # Integrations
    API_WEBHOOKS = "api_webhooks"
    THIRD_PARTY_INTEGRATIONS = "third_party_integrations"
    CUSTOM_INTEGRATIONS = "custom_integrations"

    # Billing
    USAGE_BASED_BILLING = "usage_based_billing"
    ADVANCED_BILLING = "advanced_billing"
    INVOICE_CUSTOMIZATION = "invoice_customization"

    # Real-time
    WEBSOCKET_FEATURES = "websocket_features"
    REAL_TIME_COLLABORATION = "real_time_collaboration"

    # Operations
    ADMIN_DASHBOARD = "admin_dashboard"
    SYSTEM_MONITORING = "system_monitoring"
    BACKUP_RESTORE = "backup_restore"


_BY_NAME = {feature.value: feature for feature in TenantFeature}


def normalize_feature(name: str | None) -> TenantFeature | None:
    """Return the catalog entry for ``name`` or None if it is not a known feature."""
    if not name:
        return None
    return _BY_NAME.get(name.lower())


def is_valid_feature(name: str | None) -> bool:
    return normalize_feature(name) is not None


def valid_features() -> list[str]:
    return [feature.value for feature in TenantFeature]


def normalize_features(names) -> list[TenantFeature]:
    """Normalize a list of requested features, dropping duplicates in order.

    Raises:
        ValueError: If any name is not in the catalog
    """
    unknown = [name for name in names if not is_valid_feature(name)]
    if unknown:
        raise ValueError(f"Unknown features: {', '.join(map(str, unknown))}")

    result: list[TenantFeature] = []
    for name in names:
        feature = normalize_feature(name)
        if feature not in result:
            result.append(feature)
    return result
