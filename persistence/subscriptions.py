# persistence/subscriptions.py
"""
Subscription storage.

Rows are never deleted; an ended subscription is a state, not a removal.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from billing.filters import build_where
from billing.models import Subscription, utcnow
from persistence.db import from_db_timestamp, get_db, init_db, to_db_timestamp

_logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "name",
    "stripe_plan_id",
    "quantity",
    "trial_ends_at",
    "ends_at",
)
_TIMESTAMP_FIELDS = ("trial_ends_at", "ends_at")


def save_subscription(subscription: Subscription) -> Subscription:
    """Insert a new subscription row."""
    init_db()

    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO subscriptions (id, owner_id, name, stripe_subscription_id,
                                       stripe_plan_id, quantity, trial_ends_at, ends_at,
                                       created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                subscription.id,
                subscription.owner_id,
                subscription.name,
                subscription.stripe_subscription_id,
                subscription.stripe_plan_id,
                subscription.quantity,
                to_db_timestamp(subscription.trial_ends_at),
                to_db_timestamp(subscription.ends_at),
                to_db_timestamp(subscription.created_at),
                to_db_timestamp(subscription.updated_at),
            ),
        )

    _logger.info(
        f"Saved subscription {subscription.name!r} for owner {subscription.owner_id}",
        extra={"stripe_subscription_id": subscription.stripe_subscription_id},
    )
    return subscription


def update_subscription(subscription: Subscription, **fields) -> bool:
    """
    Update columns of a subscription and mirror them onto the object.

    Raises:
        ValueError: If an unknown field is given
    """
    unknown = set(fields) - set(_UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update subscription fields: {sorted(unknown)}")

    init_db()

    now = utcnow()
    updates = []
    params = []
    for name, value in fields.items():
        updates.append(f"{name} = ?")
        params.append(to_db_timestamp(value) if name in _TIMESTAMP_FIELDS else value)

    updates.append("updated_at = ?")
    params.append(to_db_timestamp(now))
    params.append(subscription.id)

    with get_db() as conn:
        cursor = conn.execute(
            f"UPDATE subscriptions SET {', '.join(updates)} WHERE id = ?",
            params,
        )

    for name, value in fields.items():
        setattr(subscription, name, value)
    subscription.updated_at = now

    return cursor.rowcount > 0


def get_subscription(subscription_id: str) -> Optional[Subscription]:
    """Get subscription by local ID, or None."""
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM subscriptions WHERE id = ?",
            (subscription_id,),
        ).fetchone()

    return _row_to_subscription(row) if row else None


def list_for_owner(owner_id: str) -> List[Subscription]:
    """All subscriptions of an owner, newest first."""
    return query_for_owner(owner_id)


def query_for_owner(
    owner_id: str,
    *filters: str,
    name: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Subscription]:
    """
    Query an owner's subscriptions through named filters.

    Args:
        owner_id: Owning entity ID
        *filters: Filter names from billing.filters (AND-ed)
        name: Restrict to a subscription slot name
        stripe_subscription_id: Restrict to a Stripe subscription ID
        now: Reference time for time-based filters

    Returns:
        Matching subscriptions, newest first
    """
    init_db()

    clauses = ["owner_id = :owner_id"]
    params = {
        "owner_id": owner_id,
        "now": to_db_timestamp(now or utcnow()),
    }

    if name is not None:
        clauses.append("name = :name")
        params["name"] = name

    if stripe_subscription_id is not None:
        clauses.append("stripe_subscription_id = :stripe_subscription_id")
        params["stripe_subscription_id"] = stripe_subscription_id

    where, _ = build_where(filters)
    if where:
        clauses.append(where)

    with get_db() as conn:
        rows = conn.execute(
            f"""
            SELECT * FROM subscriptions
            WHERE {' AND '.join(clauses)}
            ORDER BY created_at DESC
            """,
            params,
        ).fetchall()

    return [_row_to_subscription(row) for row in rows]


def exists_for_owner(owner_id: str, *filters: str, now: Optional[datetime] = None) -> bool:
    """True if any of the owner's subscriptions match every filter."""
    return bool(query_for_owner(owner_id, *filters, now=now))


def _row_to_subscription(row) -> Subscription:
    """Convert a database row to a Subscription object."""
    return Subscription(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        stripe_subscription_id=row["stripe_subscription_id"],
        stripe_plan_id=row["stripe_plan_id"],
        quantity=row["quantity"],
        trial_ends_at=from_db_timestamp(row["trial_ends_at"]),
        ends_at=from_db_timestamp(row["ends_at"]),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )
