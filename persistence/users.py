# persistence/users.py
"""
Billable user storage.

Card brand / last four are denormalized copies of Stripe data, refreshed
whenever the card is updated.
"""

from __future__ import annotations

import logging
from typing import Optional

from billing.models import User, utcnow
from persistence.db import from_db_timestamp, get_db, init_db, to_db_timestamp

_logger = logging.getLogger(__name__)

# Columns a caller may change through update_user()
_UPDATABLE_FIELDS = (
    "email",
    "name",
    "stripe_customer_id",
    "card_brand",
    "card_last_four",
    "trial_ends_at",
)


def create_user(user: User) -> User:
    """
    Persist a new user.

    Args:
        user: User built with User.new()

    Returns:
        The same User object
    """
    init_db()

    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO users (id, email, name, stripe_customer_id, card_brand,
                               card_last_four, trial_ends_at, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user.id,
                user.email,
                user.name,
                user.stripe_customer_id,
                user.card_brand,
                user.card_last_four,
                to_db_timestamp(user.trial_ends_at),
                to_db_timestamp(user.created_at),
                to_db_timestamp(user.updated_at),
            ),
        )

    _logger.info(f"Created user: {user.email}")
    return user


def get_user_by_id(user_id: str) -> Optional[User]:
    """Get user by ID, or None."""
    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()

    return _row_to_user(row) if row else None


def get_user_by_stripe_id(stripe_customer_id: str) -> Optional[User]:
    """Get user by Stripe customer ID, or None."""
    if not stripe_customer_id:
        return None

    init_db()

    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE stripe_customer_id = ?",
            (stripe_customer_id,),
        ).fetchone()

    return _row_to_user(row) if row else None


def update_user(user: User, **fields) -> bool:
    """
    Update columns of a user and mirror them onto the object.

    Args:
        user: User to update
        **fields: Column values (see _UPDATABLE_FIELDS)

    Returns:
        True if a row was updated

    Raises:
        ValueError: If an unknown field is given
    """
    unknown = set(fields) - set(_UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update user fields: {sorted(unknown)}")

    init_db()

    now = utcnow()
    updates = []
    params = []
    for name, value in fields.items():
        updates.append(f"{name} = ?")
        params.append(to_db_timestamp(value) if name == "trial_ends_at" else value)

    updates.append("updated_at = ?")
    params.append(to_db_timestamp(now))
    params.append(user.id)

    with get_db() as conn:
        cursor = conn.execute(
            f"UPDATE users SET {', '.join(updates)} WHERE id = ?",
            params,
        )

    for name, value in fields.items():
        setattr(user, name, value)
    user.updated_at = now

    return cursor.rowcount > 0


def _row_to_user(row) -> User:
    """Convert a database row to a User object."""
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        stripe_customer_id=row["stripe_customer_id"],
        card_brand=row["card_brand"],
        card_last_four=row["card_last_four"],
        trial_ends_at=from_db_timestamp(row["trial_ends_at"]),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )
