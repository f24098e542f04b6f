"""Tests for feature name normalization."""

import pytest

from tenantflow.core.feature_flags import (
    TenantFeature,
    is_valid_feature,
    normalize_feature,
    normalize_features,
    valid_features,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize("name", ["mfa_enforcement", "MFA_ENFORCEMENT", "Mfa_Enforcement"])
def test_normalize_is_case_insensitive(name):
    assert normalize_feature(name) == TenantFeature.MFA_ENFORCEMENT


@pytest.mark.parametrize("name", ["", None, "nonexistent", "mfa-enforcement", " mfa_enforcement", "mfa_enforcement!"])
def test_unknown_names_are_rejected(name):
    assert normalize_feature(name) is None
    assert not is_valid_feature(name)


def test_valid_features_lists_whole_catalog():
    assert valid_features() == [f.value for f in TenantFeature]
    assert len(valid_features()) == 30


def test_normalize_features_dedupes_in_order():
    assert normalize_features(["SSO_INTEGRATION", "audit_logging", "sso_integration"]) == [
        TenantFeature.SSO_INTEGRATION,
        TenantFeature.AUDIT_LOGGING,
    ]


def test_normalize_features_names_unknown_entries():
    with pytest.raises(ValueError, match="Unknown features: warp_drive"):
        normalize_features(["audit_logging", "warp_drive"])
