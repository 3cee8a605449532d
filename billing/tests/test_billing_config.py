# billing/tests/test_billing_config.py
"""Tests for billing configuration loading."""

from __future__ import annotations

import pytest

from billing.config import BillingConfig, load_billing_config


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "STRIPE_API_VERSION",
        "STRIPE_ACCOUNT_ID",
        "STRIPE_WEBHOOK_TOLERANCE",
        "BILLING_CURRENCY",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadBillingConfig:
    """Tests for load_billing_config()."""

    def test_defaults(self, clean_env):
        config = load_billing_config()

        assert config.secret_key == ""
        assert config.billing_enabled is False
        assert config.webhooks_enabled is False
        assert config.api_version == "2023-10-16"
        assert config.account_id is None
        assert config.webhook_tolerance == 300
        assert config.currency == "usd"

    def test_reads_environment(self, clean_env):
        clean_env.setenv("STRIPE_SECRET_KEY", "sk_test_abcdefghijk")
        clean_env.setenv("STRIPE_WEBHOOK_SECRET", "whsec_abc")
        clean_env.setenv("STRIPE_API_VERSION", "2024-04-10")
        clean_env.setenv("STRIPE_ACCOUNT_ID", "acct_123")
        clean_env.setenv("STRIPE_WEBHOOK_TOLERANCE", "60")
        clean_env.setenv("BILLING_CURRENCY", "EUR")

        config = load_billing_config()

        assert config.billing_enabled is True
        assert config.webhooks_enabled is True
        assert config.is_test_mode is True
        assert config.api_version == "2024-04-10"
        assert config.account_id == "acct_123"
        assert config.webhook_tolerance == 60
        assert config.currency == "eur"

    def test_invalid_tolerance_uses_default(self, clean_env, caplog):
        clean_env.setenv("STRIPE_WEBHOOK_TOLERANCE", "soon")

        config = load_billing_config()

        assert config.webhook_tolerance == 300
        assert "not a valid integer" in caplog.text

    def test_negative_tolerance_uses_default(self, clean_env):
        clean_env.setenv("STRIPE_WEBHOOK_TOLERANCE", "-5")

        assert load_billing_config().webhook_tolerance == 300

    def test_missing_key_logs_warning(self, clean_env, caplog):
        load_billing_config()

        assert "Billing disabled" in caplog.text


class TestBillingConfig:
    """Tests for BillingConfig properties."""

    def test_short_key_disables_billing(self):
        assert BillingConfig(secret_key="sk_test").billing_enabled is False

    def test_live_key(self):
        assert BillingConfig(secret_key="sk_live_abcdefghijk").is_test_mode is False

    def test_for_account_copies(self):
        config = BillingConfig(secret_key="sk_test_abcdefghijk")
        connected = config.for_account("acct_123")

        assert connected.account_id == "acct_123"
        assert connected.secret_key == config.secret_key
        assert config.account_id is None
