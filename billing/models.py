# billing/models.py
"""
Billing data models.

Subscription carries the lifecycle predicates derived from its trial and
end timestamps. User is the default billable entity; anything satisfying
the Billable protocol can be handed to the billing service instead.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol, runtime_checkable

DEFAULT_SUBSCRIPTION_NAME = "default"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class Subscription:
    """
    A named subscription owned by a billable entity.

    Attributes:
        id: Local subscription ID (UUID)
        owner_id: ID of the owning billable entity
        name: Local slot name ("default", "main", "swimming", ...)
        stripe_subscription_id: Stripe subscription ID (sub_xxx)
        stripe_plan_id: Stripe plan/price ID the subscription is on
        quantity: Seat count
        trial_ends_at: End of the trial, if any
        ends_at: End of access once cancelled; None while recurring
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """
    id: str
    owner_id: str
    name: str
    stripe_subscription_id: str
    stripe_plan_id: str
    quantity: int = 1
    trial_ends_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        owner_id: str,
        name: str,
        stripe_subscription_id: str,
        stripe_plan_id: str,
        quantity: int = 1,
        trial_ends_at: Optional[datetime] = None,
    ) -> Subscription:
        """Create a new subscription record with generated ID."""
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            stripe_subscription_id=stripe_subscription_id,
            stripe_plan_id=stripe_plan_id,
            quantity=quantity,
            trial_ends_at=trial_ends_at,
            ends_at=None,
            created_at=now,
            updated_at=now,
        )

    def on_trial(self, now: Optional[datetime] = None) -> bool:
        """Trial end is set and still in the future."""
        now = now or utcnow()
        return self.trial_ends_at is not None and self.trial_ends_at > now

    def active(self, now: Optional[datetime] = None) -> bool:
        """Not ended: on trial, recurring, or inside the grace period."""
        now = now or utcnow()
        return self.on_trial(now) or self.ends_at is None or self.ends_at > now

    def valid(self, now: Optional[datetime] = None) -> bool:
        """Same result as active(); kept as the name plan checks read by."""
        now = now or utcnow()
        return self.active(now) or self.on_trial(now) or self.on_grace_period(now)

    def cancelled(self) -> bool:
        return self.ends_at is not None

    def on_grace_period(self, now: Optional[datetime] = None) -> bool:
        """Cancelled, but access continues until ends_at."""
        now = now or utcnow()
        return self.ends_at is not None and self.ends_at > now

    def recurring(self, now: Optional[datetime] = None) -> bool:
        """Will renew automatically (not cancelled, not on trial)."""
        return self.ends_at is None and not self.on_trial(now)

    def ended(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.ends_at is not None and self.ends_at <= now

    def has_plan(self, plan: str) -> bool:
        return self.stripe_plan_id == plan

    def to_dict(self) -> dict:
        """Convert to dictionary, including derived status flags."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "stripe_subscription_id": self.stripe_subscription_id,
            "stripe_plan_id": self.stripe_plan_id,
            "quantity": self.quantity,
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
            "active": self.active(),
            "on_trial": self.on_trial(),
            "on_grace_period": self.on_grace_period(),
            "ended": self.ended(),
        }


@runtime_checkable
class Billable(Protocol):
    """
    Capability the billing service needs from an owning entity.

    Any object exposing these attributes and a ``subscriptions()`` method
    can be billed; no base class is required.
    """

    id: str
    email: str
    stripe_customer_id: Optional[str]
    trial_ends_at: Optional[datetime]

    def subscriptions(self) -> List[Subscription]:
        ...


@dataclass
class User:
    """
    Default billable entity.

    Attributes:
        id: Unique user ID (UUID)
        email: Email sent to Stripe when the customer is created
        name: Display name
        stripe_customer_id: Stripe customer ID (cus_xxx)
        card_brand: Cached brand of the default card
        card_last_four: Cached last four digits of the default card
        trial_ends_at: Generic trial, not tied to any subscription
        tax_rates: Stripe tax rate IDs applied to new subscriptions (not persisted)
    """
    id: str
    email: str
    name: str = ""
    stripe_customer_id: Optional[str] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    tax_rates: List[str] = field(default_factory=list)

    @classmethod
    def new(
        cls,
        email: str,
        name: str = "",
        trial_ends_at: Optional[datetime] = None,
    ) -> User:
        """Create a new user with generated ID."""
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            email=email.lower().strip(),
            name=name,
            trial_ends_at=trial_ends_at,
            created_at=now,
            updated_at=now,
        )

    def subscriptions(self) -> List[Subscription]:
        """All subscriptions of this user, newest first."""
        from persistence.subscriptions import list_for_owner

        return list_for_owner(self.id)

    def on_generic_trial(self, now: Optional[datetime] = None) -> bool:
        return on_generic_trial(self, now)

    def has_stripe_id(self) -> bool:
        return bool(self.stripe_customer_id)

    def has_card_on_file(self) -> bool:
        return bool(self.card_brand)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "has_stripe_id": self.has_stripe_id(),
            "card_brand": self.card_brand,
            "card_last_four": self.card_last_four,
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
        }


def on_generic_trial(owner: Billable, now: Optional[datetime] = None) -> bool:
    """The entity's own trial (independent of subscriptions) is in the future."""
    now = now or utcnow()
    return owner.trial_ends_at is not None and owner.trial_ends_at > now
