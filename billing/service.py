# billing/service.py
"""
Billing service for Stripe subscription management.

Handles:
- Subscription status queries for billable entities
- Subscription changes (swap, quantity, cancel, resume)
- Customer, card, coupon, invoice and refund operations

Every change calls Stripe first and writes the local record only after
Stripe accepted it. Stripe errors propagate unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Union

from billing.builder import SubscriptionBuilder
from billing.config import BillingConfig, load_billing_config
from billing.invoices import Invoice
from billing.models import (
    DEFAULT_SUBSCRIPTION_NAME,
    Billable,
    Subscription,
    on_generic_trial,
    utcnow,
)
from billing.stripe_client import StripeGateway
from persistence import subscriptions as subscription_store
from persistence import users as user_store

_logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Base billing error."""
    pass


class BillingDisabledError(BillingError):
    """Billing is not enabled."""
    pass


class CustomerMissingError(BillingError):
    """The entity has no Stripe customer yet."""
    pass


class SubscriptionStateError(BillingError):
    """The subscription is not in a state that allows the operation."""
    pass


def _from_unix(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class BillingService:
    """
    Stripe billing for billable entities.

    Args:
        config: Billing configuration; loaded from the environment if omitted
        gateway: Stripe gateway; built from config if omitted
        owner_store: Storage for billable entities (update_user,
            get_user_by_stripe_id); defaults to persistence.users
    """

    def __init__(
        self,
        config: Optional[BillingConfig] = None,
        gateway: Optional[StripeGateway] = None,
        owner_store: Any = None,
    ):
        if config is None:
            config = gateway.config if gateway is not None else load_billing_config()
        self.config = config
        self.gateway = gateway if gateway is not None else StripeGateway(config)
        self.owner_store = owner_store if owner_store is not None else user_store

    def for_account(self, account_id: Optional[str]) -> BillingService:
        """Service acting on behalf of a Stripe Connect account."""
        return BillingService(
            config=self.config.for_account(account_id),
            gateway=self.gateway.for_account(account_id),
            owner_store=self.owner_store,
        )

    def ensure_enabled(self) -> None:
        """
        Raises:
            BillingDisabledError: If no Stripe secret key is configured
        """
        if not self.config.billing_enabled:
            raise BillingDisabledError("Billing is not enabled. Check STRIPE_SECRET_KEY.")

    # =========================================================================
    # Status queries
    # =========================================================================

    def new_subscription(self, owner: Billable, name: str, plan: str) -> SubscriptionBuilder:
        return SubscriptionBuilder(self, owner, name, plan)

    def subscription(
        self, owner: Billable, name: str = DEFAULT_SUBSCRIPTION_NAME
    ) -> Optional[Subscription]:
        """Most recently created subscription with the given name."""
        for subscription in owner.subscriptions():
            if subscription.name == name:
                return subscription
        return None

    def subscribed(
        self,
        owner: Billable,
        name: str = DEFAULT_SUBSCRIPTION_NAME,
        plan: Optional[str] = None,
    ) -> bool:
        """True if the named subscription exists, is active and (optionally) on plan."""
        subscription = self.subscription(owner, name)
        if subscription is None or not subscription.active():
            return False
        return plan is None or subscription.has_plan(plan)

    def subscribed_to_plan(
        self,
        owner: Billable,
        plans: Union[str, Iterable[str]],
        name: str = DEFAULT_SUBSCRIPTION_NAME,
    ) -> bool:
        subscription = self.subscription(owner, name)
        if subscription is None or not subscription.valid():
            return False

        if isinstance(plans, str):
            plans = [plans]
        return any(subscription.has_plan(plan) for plan in plans)

    def on_plan(self, owner: Billable, plan: str) -> bool:
        """True if any valid subscription of the owner is on the plan."""
        return any(s.valid() and s.has_plan(plan) for s in owner.subscriptions())

    def on_trial(
        self,
        owner: Billable,
        name: str = DEFAULT_SUBSCRIPTION_NAME,
        plan: Optional[str] = None,
    ) -> bool:
        """Generic trial, or the named subscription is on trial (and on plan)."""
        if on_generic_trial(owner):
            return True

        subscription = self.subscription(owner, name)
        if subscription is None or not subscription.on_trial():
            return False
        return plan is None or subscription.has_plan(plan)

    def on_generic_trial(self, owner: Billable) -> bool:
        return on_generic_trial(owner)

    def query(self, owner: Billable, *filters: str) -> List[Subscription]:
        """Owner's subscriptions matching every named filter (see billing.filters)."""
        return subscription_store.query_for_owner(owner.id, *filters)

    # =========================================================================
    # Subscription changes
    # =========================================================================

    def as_stripe_subscription(self, subscription: Subscription) -> Any:
        self.ensure_enabled()
        return self.gateway.retrieve_subscription(subscription.stripe_subscription_id)

    def _primary_item_id(self, subscription: Subscription) -> str:
        """ID of the subscription item carrying the plan and quantity."""
        stripe_subscription = self.as_stripe_subscription(subscription)
        return stripe_subscription["items"]["data"][0]["id"]

    def swap(
        self,
        subscription: Subscription,
        plan: str,
        prorate: bool = True,
        coupon: Optional[str] = None,
    ) -> Subscription:
        """
        Move the subscription to another plan.

        Only the local plan ID changes; trial and end timestamps are kept.
        """
        self.ensure_enabled()

        item_id = self._primary_item_id(subscription)

        params = {
            "items": [{"id": item_id, "price": plan, "quantity": subscription.quantity}],
            "proration_behavior": "create_prorations" if prorate else "none",
        }
        if coupon:
            params["coupon"] = coupon

        self.gateway.update_subscription(subscription.stripe_subscription_id, **params)

        subscription_store.update_subscription(subscription, stripe_plan_id=plan)

        _logger.info(
            f"Swapped subscription {subscription.id} to plan {plan}",
            extra={"stripe_subscription_id": subscription.stripe_subscription_id},
        )
        return subscription

    def update_quantity(
        self, subscription: Subscription, quantity: int, prorate: bool = True
    ) -> Subscription:
        """Set the seat count. Stripe validates the value."""
        self.ensure_enabled()

        item_id = self._primary_item_id(subscription)

        self.gateway.update_subscription(
            subscription.stripe_subscription_id,
            items=[{"id": item_id, "quantity": quantity}],
            proration_behavior="create_prorations" if prorate else "none",
        )

        subscription_store.update_subscription(subscription, quantity=quantity)
        return subscription

    def increment_quantity(
        self, subscription: Subscription, count: int = 1, prorate: bool = True
    ) -> Subscription:
        return self.update_quantity(subscription, subscription.quantity + count, prorate)

    def decrement_quantity(
        self, subscription: Subscription, count: int = 1, prorate: bool = True
    ) -> Subscription:
        # No floor here: Stripe rejects invalid quantities itself
        return self.update_quantity(subscription, subscription.quantity - count, prorate)

    def cancel(self, subscription: Subscription) -> Subscription:
        """
        Cancel at the end of the current period.

        The grace period runs until the trial end when on trial, otherwise
        until the end of the current billing period.
        """
        self.ensure_enabled()

        stripe_subscription = self.gateway.update_subscription(
            subscription.stripe_subscription_id,
            cancel_at_period_end=True,
        )

        if subscription.on_trial():
            ends_at = subscription.trial_ends_at
        else:
            ends_at = _from_unix(stripe_subscription["current_period_end"])

        subscription_store.update_subscription(subscription, ends_at=ends_at)

        _logger.info(
            f"Cancelled subscription {subscription.id}",
            extra={"ends_at": ends_at.isoformat() if ends_at else None},
        )
        return subscription

    def cancel_now(self, subscription: Subscription) -> Subscription:
        """Cancel immediately; access ends now."""
        self.ensure_enabled()

        self.gateway.cancel_subscription(subscription.stripe_subscription_id)

        return self.mark_as_cancelled(subscription)

    def mark_as_cancelled(
        self, subscription: Subscription, at: Optional[datetime] = None
    ) -> Subscription:
        """Record the end of the subscription locally (no Stripe call)."""
        subscription_store.update_subscription(subscription, ends_at=at or utcnow())
        return subscription

    def resume(self, subscription: Subscription) -> Subscription:
        """
        Undo a pending cancellation.

        Raises:
            SubscriptionStateError: If the subscription is not on its grace period
        """
        if not subscription.on_grace_period():
            raise SubscriptionStateError(
                "Unable to resume subscription that is not within grace period."
            )

        self.ensure_enabled()

        params = {"cancel_at_period_end": False}
        if subscription.on_trial():
            params["trial_end"] = int(subscription.trial_ends_at.timestamp())

        self.gateway.update_subscription(subscription.stripe_subscription_id, **params)

        # trial_ends_at is left as is, so a running trial stays in effect
        subscription_store.update_subscription(subscription, ends_at=None)

        _logger.info(f"Resumed subscription {subscription.id}")
        return subscription

    # =========================================================================
    # Customers
    # =========================================================================

    def _require_customer(self, owner: Billable) -> str:
        if not owner.stripe_customer_id:
            raise CustomerMissingError(
                f"Owner {owner.id} is not a Stripe customer yet. See create_as_customer()."
            )
        return owner.stripe_customer_id

    def create_as_customer(self, owner: Billable, token: Optional[str] = None, **options) -> Any:
        """
        Create a Stripe customer for the owner and store its ID.

        Args:
            owner: Billable entity
            token: Payment source token to attach as the default card
            **options: Extra Stripe customer params
        """
        self.ensure_enabled()

        options.setdefault("email", owner.email)
        if token:
            options["source"] = token

        customer = self.gateway.create_customer(**options)

        self.owner_store.update_user(owner, stripe_customer_id=customer["id"])

        _logger.info(
            f"Created Stripe customer for owner {owner.id}",
            extra={"customer_id": customer["id"]},
        )

        if token:
            self._refresh_card(owner)

        return customer

    def as_stripe_customer(self, owner: Billable) -> Any:
        self.ensure_enabled()
        return self.gateway.retrieve_customer(self._require_customer(owner))

    def update_card(self, owner: Billable, token: str) -> None:
        """Replace the default card and refresh the cached brand / last four."""
        self.ensure_enabled()

        customer_id = self._require_customer(owner)
        self.gateway.update_customer(customer_id, source=token)
        self._refresh_card(owner)

    def _refresh_card(self, owner: Billable) -> None:
        customer = self.gateway.retrieve_customer(
            owner.stripe_customer_id, expand=["default_source"]
        )
        source = customer["default_source"]

        if source and source["object"] == "card":
            brand, last_four = source["brand"], source["last4"]
        else:
            brand, last_four = None, None

        self.owner_store.update_user(owner, card_brand=brand, card_last_four=last_four)

    def apply_coupon(self, owner: Billable, coupon: str) -> None:
        """Attach a customer-wide discount. Nothing is stored locally."""
        self.ensure_enabled()
        self.gateway.update_customer(self._require_customer(owner), coupon=coupon)

    # =========================================================================
    # Invoices and refunds
    # =========================================================================

    def invoice_for(self, owner: Billable, description: str, amount: int, **options) -> Invoice:
        """
        Charge a one-off amount (minor units) by invoicing it immediately.

        Returns:
            The paid Invoice
        """
        self.ensure_enabled()
        customer_id = self._require_customer(owner)

        item_params = {
            "customer": customer_id,
            "amount": amount,
            "currency": self.config.currency,
            "description": description,
        }
        item_params.update(options)
        self.gateway.create_invoice_item(**item_params)

        invoice = self.gateway.create_invoice(
            customer=customer_id,
            pending_invoice_items_behavior="include",
        )
        paid = self.gateway.pay_invoice(invoice["id"])

        _logger.info(
            f"Invoiced owner {owner.id} for {amount}",
            extra={"invoice_id": invoice["id"], "description": description},
        )
        return Invoice(owner, paid)

    def invoices(self, owner: Billable, include_pending: bool = False) -> List[Invoice]:
        """Owner's invoices, newest first; unpaid ones only if include_pending."""
        if not owner.stripe_customer_id:
            return []

        self.ensure_enabled()

        invoices = [
            Invoice(owner, invoice)
            for invoice in self.gateway.list_invoices(owner.stripe_customer_id)
        ]
        return [invoice for invoice in invoices if include_pending or invoice.paid]

    def refund(self, owner: Billable, charge: str, **options) -> Any:
        """Refund a charge (fully, or ``amount`` minor units)."""
        self.ensure_enabled()
        refund = self.gateway.create_refund(charge, **options)
        _logger.info(f"Refunded charge {charge} for owner {owner.id}")
        return refund
