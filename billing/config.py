# billing/config.py
"""
Billing configuration.

Environment variables:
- STRIPE_SECRET_KEY: Stripe API secret key (billing disabled without it)
- STRIPE_WEBHOOK_SECRET: Webhook signing secret (webhooks rejected without it)
- STRIPE_API_VERSION: Pinned Stripe API version (default: 2023-10-16)
- STRIPE_ACCOUNT_ID: Connected account to act on behalf of (optional)
- STRIPE_WEBHOOK_TOLERANCE: Max webhook timestamp age in seconds (default: 300)
- BILLING_CURRENCY: Currency for one-off invoice items (default: usd)

The loaded BillingConfig is passed to the gateway and service explicitly;
nothing here touches the stripe module's global state.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

_logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2023-10-16"
DEFAULT_WEBHOOK_TOLERANCE = 300
DEFAULT_CURRENCY = "usd"


@dataclass(frozen=True)
class BillingConfig:
    """Stripe credentials and billing defaults."""

    secret_key: str = ""
    webhook_secret: str = ""
    api_version: str = DEFAULT_API_VERSION
    account_id: Optional[str] = None
    webhook_tolerance: int = DEFAULT_WEBHOOK_TOLERANCE
    currency: str = DEFAULT_CURRENCY

    @property
    def billing_enabled(self) -> bool:
        """Billing is enabled once a plausible secret key is configured."""
        return bool(self.secret_key and len(self.secret_key) > 10)

    @property
    def webhooks_enabled(self) -> bool:
        return bool(self.webhook_secret)

    @property
    def is_test_mode(self) -> bool:
        return not self.secret_key.startswith("sk_live_")

    def for_account(self, account_id: Optional[str]) -> BillingConfig:
        """Copy of this config bound to a Stripe Connect account."""
        return replace(self, account_id=account_id)


def _parse_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default

    try:
        value = int(raw)
    except ValueError:
        _logger.warning(f"{name}='{raw}' is not a valid integer; using default {default}")
        return default

    if value < 0:
        _logger.warning(f"{name}={value} is negative; using default {default}")
        return default

    return value


def load_billing_config() -> BillingConfig:
    """Build a BillingConfig from environment variables."""
    config = BillingConfig(
        secret_key=os.environ.get("STRIPE_SECRET_KEY", ""),
        webhook_secret=os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
        api_version=os.environ.get("STRIPE_API_VERSION") or DEFAULT_API_VERSION,
        account_id=os.environ.get("STRIPE_ACCOUNT_ID") or None,
        webhook_tolerance=_parse_int_env("STRIPE_WEBHOOK_TOLERANCE", DEFAULT_WEBHOOK_TOLERANCE),
        currency=(os.environ.get("BILLING_CURRENCY") or DEFAULT_CURRENCY).lower(),
    )

    if not config.billing_enabled:
        _logger.warning("STRIPE_SECRET_KEY not set. Billing disabled.")
    if not config.webhooks_enabled:
        _logger.warning("STRIPE_WEBHOOK_SECRET not set. Webhooks will be rejected.")

    return config
