# billing/stripe_client.py
"""
Stripe SDK access.

Every Stripe call goes through StripeGateway, which attaches the API key,
pinned API version and optional connected account from its BillingConfig
as per-request options. The stripe module's global api_key is never set.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import stripe

from billing.config import BillingConfig

_logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK bound to one configuration.

    Args:
        config: Billing configuration (secret key, API version, account)
        sdk: Stripe module to call; tests pass a MagicMock
    """

    def __init__(self, config: BillingConfig, sdk: Any = None):
        self.config = config
        self._stripe = sdk if sdk is not None else stripe

    @property
    def sdk(self) -> Any:
        return self._stripe

    def for_account(self, account_id: Optional[str]) -> StripeGateway:
        """Gateway acting on behalf of a Stripe Connect account."""
        return StripeGateway(self.config.for_account(account_id), sdk=self._stripe)

    def _options(self) -> Dict[str, Any]:
        """Per-request options for SDK calls."""
        if not self.config.secret_key:
            raise RuntimeError("Stripe not initialized. Check STRIPE_SECRET_KEY.")

        options: Dict[str, Any] = {
            "api_key": self.config.secret_key,
            "stripe_version": self.config.api_version,
        }
        if self.config.account_id:
            options["stripe_account"] = self.config.account_id
        return options

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    def create_customer(self, **params) -> Any:
        return self._stripe.Customer.create(**params, **self._options())

    def retrieve_customer(self, customer_id: str, expand: Optional[List[str]] = None) -> Any:
        if expand:
            return self._stripe.Customer.retrieve(customer_id, expand=expand, **self._options())
        return self._stripe.Customer.retrieve(customer_id, **self._options())

    def update_customer(self, customer_id: str, **params) -> Any:
        return self._stripe.Customer.modify(customer_id, **params, **self._options())

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def create_subscription(self, **params) -> Any:
        return self._stripe.Subscription.create(**params, **self._options())

    def retrieve_subscription(self, subscription_id: str) -> Any:
        return self._stripe.Subscription.retrieve(subscription_id, **self._options())

    def update_subscription(self, subscription_id: str, **params) -> Any:
        return self._stripe.Subscription.modify(subscription_id, **params, **self._options())

    def cancel_subscription(self, subscription_id: str) -> Any:
        """Cancel immediately (not at period end)."""
        return self._stripe.Subscription.cancel(subscription_id, **self._options())

    # -------------------------------------------------------------------------
    # Invoices, charges
    # -------------------------------------------------------------------------

    def create_invoice_item(self, **params) -> Any:
        return self._stripe.InvoiceItem.create(**params, **self._options())

    def create_invoice(self, **params) -> Any:
        return self._stripe.Invoice.create(**params, **self._options())

    def pay_invoice(self, invoice_id: str) -> Any:
        return self._stripe.Invoice.pay(invoice_id, **self._options())

    def retrieve_invoice(self, invoice_id: str) -> Any:
        return self._stripe.Invoice.retrieve(invoice_id, **self._options())

    def list_invoices(self, customer_id: str, limit: int = 100) -> List[Any]:
        result = self._stripe.Invoice.list(customer=customer_id, limit=limit, **self._options())
        return list(result.data)

    def create_refund(self, charge_id: str, **params) -> Any:
        return self._stripe.Refund.create(charge=charge_id, **params, **self._options())

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_webhook_signature(self, payload: bytes, signature: str) -> None:
        """
        Check a Stripe-Signature header against the raw payload.

        Raises:
            stripe.SignatureVerificationError: If the signature does not match
                or the timestamp is outside the tolerance
        """
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")

        self._stripe.WebhookSignature.verify_header(
            payload,
            signature,
            self.config.webhook_secret,
            tolerance=self.config.webhook_tolerance,
        )
        _logger.debug("Webhook signature verified")
