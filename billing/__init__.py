# billing/__init__.py
"""
Billing module for Stripe subscriptions.

Provides:
- Subscription status predicates and query filters
- Subscription lifecycle changes delegated to Stripe
- Webhook verification and reconciliation of local records
"""

from billing.config import BillingConfig, load_billing_config
from billing.models import Billable, Subscription, User
from billing.service import (
    BillingDisabledError,
    BillingError,
    BillingService,
    CustomerMissingError,
    SubscriptionStateError,
)
from billing.stripe_client import StripeGateway
from billing.webhooks import process_webhook_event, verify_webhook_signature

__all__ = [
    "BillingConfig",
    "load_billing_config",
    "Billable",
    "Subscription",
    "User",
    "BillingService",
    "BillingError",
    "BillingDisabledError",
    "CustomerMissingError",
    "SubscriptionStateError",
    "StripeGateway",
    "process_webhook_event",
    "verify_webhook_signature",
]
