"""
Persistence layer for billing.

Provides SQLite-backed storage for:
- Billable users (Stripe customer ID, cached card details, generic trial)
- Subscriptions (plan, quantity, trial and end timestamps)
"""

from persistence.db import get_db, init_db, close_db
from persistence.users import create_user, get_user_by_id, get_user_by_stripe_id
from persistence.subscriptions import save_subscription, get_subscription, query_for_owner

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "create_user",
    "get_user_by_id",
    "get_user_by_stripe_id",
    "save_subscription",
    "get_subscription",
    "query_for_owner",
]
