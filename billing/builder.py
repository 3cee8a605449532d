# billing/builder.py
"""
Fluent builder for new subscriptions.

Usage:
    subscription = (
        service.new_subscription(user, "main", "price_monthly")
        .trial_days(7)
        .with_coupon("WELCOME")
        .create(payment_token)
    )
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from billing.models import Billable, Subscription, utcnow

if TYPE_CHECKING:
    from billing.service import BillingService

_logger = logging.getLogger(__name__)


def _to_unix(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class SubscriptionBuilder:
    """Collects subscription options, then creates it in Stripe and locally."""

    def __init__(self, service: BillingService, owner: Billable, name: str, plan: str):
        self.service = service
        self.owner = owner
        self.name = name
        self.plan = plan

        self._quantity = 1
        self._trial_expires: Optional[datetime] = None
        self._skip_trial = False
        self._billing_cycle_anchor: Optional[datetime] = None
        self._coupon: Optional[str] = None
        self._metadata: Dict[str, Any] = {}
        self._application_fee_percent: Optional[float] = None

    def quantity(self, quantity: int) -> SubscriptionBuilder:
        self._quantity = quantity
        return self

    def trial_days(self, days: int) -> SubscriptionBuilder:
        """Start with a trial of the given number of days from now."""
        self._trial_expires = utcnow() + timedelta(days=days)
        return self

    def trial_until(self, trial_until: datetime) -> SubscriptionBuilder:
        if trial_until.tzinfo is None:
            trial_until = trial_until.replace(tzinfo=timezone.utc)
        self._trial_expires = trial_until
        return self

    def skip_trial(self) -> SubscriptionBuilder:
        """Force billing to start now even if the plan has a trial."""
        self._skip_trial = True
        return self

    def anchor_billing_cycle_on(self, date: datetime) -> SubscriptionBuilder:
        self._billing_cycle_anchor = date
        return self

    def with_coupon(self, coupon: str) -> SubscriptionBuilder:
        self._coupon = coupon
        return self

    def with_metadata(self, metadata: Dict[str, Any]) -> SubscriptionBuilder:
        self._metadata = dict(metadata)
        return self

    def application_fee_percent(self, percent: float) -> SubscriptionBuilder:
        """Platform fee taken on a connected account's subscription."""
        self._application_fee_percent = percent
        return self

    def add(self, **customer_options) -> Subscription:
        """Create the subscription without a payment token."""
        return self.create(None, **customer_options)

    def create(self, token: Optional[str] = None, **customer_options) -> Subscription:
        """
        Create the subscription in Stripe, then persist it locally.

        Args:
            token: Payment source token for the customer's card (optional)
            **customer_options: Extra params used if a customer must be created

        Returns:
            The persisted Subscription

        Raises:
            stripe.StripeError: If Stripe rejects the card, plan or coupon;
                nothing is persisted in that case
        """
        self.service.ensure_enabled()

        customer_id = self._get_stripe_customer(token, customer_options)

        stripe_subscription = self.service.gateway.create_subscription(
            customer=customer_id,
            **self.build_payload(),
        )

        trial_ends_at = None if self._skip_trial else self._trial_expires

        subscription = Subscription.new(
            owner_id=self.owner.id,
            name=self.name,
            stripe_subscription_id=stripe_subscription["id"],
            stripe_plan_id=self.plan,
            quantity=self._quantity,
            trial_ends_at=trial_ends_at,
        )

        from persistence.subscriptions import save_subscription

        save_subscription(subscription)

        _logger.info(
            f"Created subscription {self.name!r} for owner {self.owner.id}",
            extra={
                "stripe_subscription_id": subscription.stripe_subscription_id,
                "plan": self.plan,
            },
        )
        return subscription

    def build_payload(self) -> Dict[str, Any]:
        """Stripe subscription-create parameters (without the customer)."""
        payload: Dict[str, Any] = {
            "items": [{"price": self.plan, "quantity": self._quantity}],
            "metadata": self._metadata,
        }

        if self._skip_trial:
            payload["trial_end"] = "now"
        elif self._trial_expires is not None:
            payload["trial_end"] = _to_unix(self._trial_expires)

        if self._billing_cycle_anchor is not None:
            payload["billing_cycle_anchor"] = _to_unix(self._billing_cycle_anchor)
            payload["proration_behavior"] = "none"

        if self._coupon:
            payload["coupon"] = self._coupon

        if self._application_fee_percent is not None:
            payload["application_fee_percent"] = self._application_fee_percent

        tax_rates = getattr(self.owner, "tax_rates", None)
        if tax_rates:
            payload["default_tax_rates"] = list(tax_rates)

        return payload

    def _get_stripe_customer(self, token: Optional[str], options: Dict[str, Any]) -> str:
        """Create the Stripe customer if needed, attaching the card when given."""
        if not self.owner.stripe_customer_id:
            self.service.create_as_customer(self.owner, token, **options)
        elif token:
            self.service.update_card(self.owner, token)

        return self.owner.stripe_customer_id
