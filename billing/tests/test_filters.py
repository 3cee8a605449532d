# billing/tests/test_filters.py
"""
Tests for named subscription filters.

SQL and in-memory renderings of each filter must select the same rows.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from billing.filters import FILTERS, apply_filters, build_where, get_filter
from billing.models import Subscription, User, utcnow
from persistence.subscriptions import (
    exists_for_owner,
    query_for_owner,
    save_subscription,
    update_subscription,
)
from persistence.users import create_user


@pytest.fixture
def user():
    return create_user(User.new("taylor@example.com", "Taylor"))


def _subscription(user, name="main", trial_ends_at=None, ends_at=None):
    subscription = Subscription.new(
        owner_id=user.id,
        name=name,
        stripe_subscription_id=f"sub_{name}",
        stripe_plan_id="price_monthly",
        trial_ends_at=trial_ends_at,
    )
    subscription.ends_at = ends_at
    return save_subscription(subscription)


def _names(subscriptions):
    return sorted(s.name for s in subscriptions)


class TestFilterLookup:
    """Tests for filter registry helpers."""

    def test_unknown_filter_raises(self):
        with pytest.raises(ValueError, match="Unknown subscription filter"):
            get_filter("paused")

    def test_build_where_empty(self):
        sql, used = build_where([])
        assert sql == ""
        assert used == []

    def test_build_where_ands_fragments(self):
        sql, used = build_where(["active", "not_on_trial"])
        assert used == ["active", "not_on_trial"]
        assert " AND " in sql
        assert ":now" in sql


class TestScopeSequence:
    """Walks one subscription through its states and checks every scope."""

    def test_subscription_state_scopes(self, user):
        """Recurring, trial, grace period and ended states select the right scopes."""
        subscription = _subscription(user)

        # Recurring
        assert exists_for_owner(user.id, "active")
        assert not exists_for_owner(user.id, "on_trial")
        assert exists_for_owner(user.id, "not_on_trial")
        assert exists_for_owner(user.id, "recurring")
        assert not exists_for_owner(user.id, "cancelled")
        assert exists_for_owner(user.id, "not_cancelled")
        assert not exists_for_owner(user.id, "on_grace_period")
        assert exists_for_owner(user.id, "not_on_grace_period")
        assert not exists_for_owner(user.id, "ended")

        # Trial
        update_subscription(subscription, trial_ends_at=utcnow() + timedelta(days=1))

        assert exists_for_owner(user.id, "active")
        assert exists_for_owner(user.id, "on_trial")
        assert not exists_for_owner(user.id, "not_on_trial")
        assert not exists_for_owner(user.id, "recurring")
        assert not exists_for_owner(user.id, "cancelled")
        assert exists_for_owner(user.id, "not_cancelled")
        assert not exists_for_owner(user.id, "on_grace_period")
        assert exists_for_owner(user.id, "not_on_grace_period")
        assert not exists_for_owner(user.id, "ended")

        # Grace period
        update_subscription(
            subscription,
            trial_ends_at=None,
            ends_at=utcnow() + timedelta(days=1),
        )

        assert exists_for_owner(user.id, "active")
        assert not exists_for_owner(user.id, "on_trial")
        assert exists_for_owner(user.id, "not_on_trial")
        assert not exists_for_owner(user.id, "recurring")
        assert exists_for_owner(user.id, "cancelled")
        assert not exists_for_owner(user.id, "not_cancelled")
        assert exists_for_owner(user.id, "on_grace_period")
        assert not exists_for_owner(user.id, "not_on_grace_period")
        assert not exists_for_owner(user.id, "ended")

        # Ended
        update_subscription(subscription, ends_at=utcnow() - timedelta(days=1))

        assert not exists_for_owner(user.id, "active")
        assert not exists_for_owner(user.id, "on_trial")
        assert exists_for_owner(user.id, "not_on_trial")
        assert not exists_for_owner(user.id, "recurring")
        assert exists_for_owner(user.id, "cancelled")
        assert not exists_for_owner(user.id, "not_cancelled")
        assert not exists_for_owner(user.id, "on_grace_period")
        assert exists_for_owner(user.id, "not_on_grace_period")
        assert exists_for_owner(user.id, "ended")


class TestSqlMatchesPredicates:
    """Each filter selects the same rows in SQL and in memory."""

    @pytest.fixture
    def mixed(self, user):
        now = utcnow()
        return [
            _subscription(user, "recurring"),
            _subscription(user, "trial", trial_ends_at=now + timedelta(days=3)),
            _subscription(user, "expired_trial", trial_ends_at=now - timedelta(days=3)),
            _subscription(user, "grace", ends_at=now + timedelta(days=3)),
            _subscription(user, "ended", ends_at=now - timedelta(days=3)),
            _subscription(
                user,
                "trial_grace",
                trial_ends_at=now + timedelta(days=3),
                ends_at=now + timedelta(days=3),
            ),
            _subscription(
                user,
                "trial_ended",
                trial_ends_at=now + timedelta(days=3),
                ends_at=now - timedelta(days=1),
            ),
        ]

    @pytest.mark.parametrize("name", sorted(FILTERS))
    def test_filter_agrees(self, user, mixed, name):
        now = utcnow()
        from_sql = query_for_owner(user.id, name, now=now)
        in_memory = apply_filters(mixed, name, now=now)

        assert _names(from_sql) == _names(in_memory)

    def test_combined_filters(self, user, mixed):
        now = utcnow()
        from_sql = query_for_owner(user.id, "active", "not_on_trial", now=now)
        in_memory = apply_filters(mixed, "active", "not_on_trial", now=now)

        assert _names(from_sql) == _names(in_memory) == ["expired_trial", "grace", "recurring"]

    def test_trial_overrides_ended_for_active(self, user, mixed):
        """A subscription still on trial is active even after ends_at."""
        active = _names(query_for_owner(user.id, "active"))
        assert "trial_ended" in active
        assert "ended" not in active


class TestQueryForOwner:
    """Tests for extra query constraints."""

    def test_restricts_to_owner(self, user):
        other = create_user(User.new("other@example.com"))
        _subscription(user, "mine")
        _subscription(other, "theirs")

        assert _names(query_for_owner(user.id)) == ["mine"]

    def test_restricts_by_name(self, user):
        _subscription(user, "main")
        _subscription(user, "swimming")

        assert _names(query_for_owner(user.id, "active", name="swimming")) == ["swimming"]

    def test_unknown_filter_raises(self, user):
        with pytest.raises(ValueError):
            query_for_owner(user.id, "bogus")
