# billing/filters.py
"""
Named subscription filters.

Each filter has two renderings with the same boolean meaning:
- a SQL WHERE fragment over the subscriptions table (bound to :now)
- an in-memory predicate over a Subscription

Usage:
    subs = query_for_owner(owner_id, "active", "not_on_trial")
    subs = apply_filters(subscriptions, "on_grace_period")
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from billing.models import Subscription, utcnow


@dataclass(frozen=True)
class SubscriptionFilter:
    """A named filter with its SQL and Python forms."""
    name: str
    sql: str
    predicate: Callable[[Subscription, datetime], bool]

    def matches(self, subscription: Subscription, now: Optional[datetime] = None) -> bool:
        return self.predicate(subscription, now or utcnow())


_ON_TRIAL_SQL = "(trial_ends_at IS NOT NULL AND trial_ends_at > :now)"

FILTERS: Dict[str, SubscriptionFilter] = {
    f.name: f
    for f in (
        SubscriptionFilter(
            name="active",
            sql=f"({_ON_TRIAL_SQL} OR ends_at IS NULL OR ends_at > :now)",
            predicate=lambda s, now: s.active(now),
        ),
        SubscriptionFilter(
            name="on_trial",
            sql=_ON_TRIAL_SQL,
            predicate=lambda s, now: s.on_trial(now),
        ),
        SubscriptionFilter(
            name="not_on_trial",
            sql="(trial_ends_at IS NULL OR trial_ends_at <= :now)",
            predicate=lambda s, now: not s.on_trial(now),
        ),
        SubscriptionFilter(
            name="recurring",
            sql="(ends_at IS NULL AND (trial_ends_at IS NULL OR trial_ends_at <= :now))",
            predicate=lambda s, now: s.recurring(now),
        ),
        SubscriptionFilter(
            name="cancelled",
            sql="(ends_at IS NOT NULL)",
            predicate=lambda s, now: s.cancelled(),
        ),
        SubscriptionFilter(
            name="not_cancelled",
            sql="(ends_at IS NULL)",
            predicate=lambda s, now: not s.cancelled(),
        ),
        SubscriptionFilter(
            name="on_grace_period",
            sql="(ends_at IS NOT NULL AND ends_at > :now)",
            predicate=lambda s, now: s.on_grace_period(now),
        ),
        SubscriptionFilter(
            name="not_on_grace_period",
            sql="(ends_at IS NULL OR ends_at <= :now)",
            predicate=lambda s, now: not s.on_grace_period(now),
        ),
        SubscriptionFilter(
            name="ended",
            sql="(ends_at IS NOT NULL AND ends_at <= :now)",
            predicate=lambda s, now: s.ended(now),
        ),
    )
}


def get_filter(name: str) -> SubscriptionFilter:
    """
    Look up a filter by name.

    Raises:
        ValueError: If the name is not a known filter
    """
    try:
        return FILTERS[name]
    except KeyError:
        raise ValueError(f"Unknown subscription filter: {name}") from None


def build_where(names: Iterable[str]) -> Tuple[str, List[str]]:
    """
    Combine filters into a single AND-ed WHERE fragment.

    Returns:
        (sql, used_names); sql is empty when no filters are given
    """
    used = [get_filter(name).name for name in names]
    if not used:
        return "", used
    return " AND ".join(FILTERS[name].sql for name in used), used


def apply_filters(
    subscriptions: Iterable[Subscription],
    *names: str,
    now: Optional[datetime] = None,
) -> List[Subscription]:
    """Filter subscriptions in memory; every named filter must match."""
    now = now or utcnow()
    selected = [get_filter(name) for name in names]
    return [s for s in subscriptions if all(f.matches(s, now) for f in selected)]
