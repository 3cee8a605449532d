# billing/webhooks.py
"""
Stripe webhook handling with signature verification.

Security:
- All webhooks verified using the Stripe signing secret
- Never trust unverified payloads; nothing is mutated before verification
- Unknown customers/subscriptions are acknowledged so Stripe stops retrying
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

import stripe

from billing.models import Subscription, utcnow

if TYPE_CHECKING:
    from billing.service import BillingService

_logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Webhook processing error."""
    pass


class SignatureVerificationError(WebhookError):
    """Webhook signature verification failed."""
    pass


class MalformedPayloadError(WebhookError):
    """Webhook body is not a Stripe event."""
    pass


def verify_webhook_signature(payload: bytes, signature: str, service: BillingService) -> dict:
    """
    Verify Stripe webhook signature and parse event.

    Args:
        payload: Raw request body bytes
        signature: Stripe-Signature header value
        service: Billing service holding the webhook secret

    Returns:
        Parsed event as a plain dict

    Raises:
        SignatureVerificationError: If the secret is missing or the signature is invalid
        MalformedPayloadError: If the verified body is not a Stripe event
    """
    if not service.config.webhooks_enabled:
        raise SignatureVerificationError("Webhook secret not configured")

    if not signature:
        raise SignatureVerificationError("Missing signature")

    try:
        service.gateway.verify_webhook_signature(payload, signature)
    except stripe.SignatureVerificationError as e:
        _logger.warning(f"Webhook signature verification failed: {e}")
        raise SignatureVerificationError("Invalid webhook signature") from e
    except UnicodeDecodeError as e:
        raise MalformedPayloadError(f"Webhook body is not valid UTF-8: {e}") from e

    return parse_event(payload)


def parse_event(payload: bytes) -> dict:
    """
    Decode a webhook body of shape {id, type, data: {object: {...}}}.

    Raises:
        MalformedPayloadError: If the body is not JSON or lacks type/data.object
    """
    try:
        event = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError(f"Webhook body is not valid JSON: {e}") from e

    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise MalformedPayloadError("Webhook body has no event type")

    data = event.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise MalformedPayloadError("Webhook body has no data.object")

    return event


def process_webhook_event(event: dict, service: BillingService) -> Tuple[bool, str]:
    """
    Process a verified Stripe webhook event.

    Args:
        event: Verified event dict
        service: Billing service used to reach local records

    Returns:
        Tuple of (success, message)
    """
    event_type = event.get("type", "unknown")
    event_id = event.get("id", "unknown")

    _logger.info(f"Processing webhook event: {event_type}", extra={"event_id": event_id})

    handler = WEBHOOK_HANDLERS.get(event_type)

    if handler is None:
        # Unhandled event type - acknowledge but don't process
        _logger.debug(f"Unhandled webhook event type: {event_type}")
        return True, f"Event type {event_type} not handled"

    try:
        success = handler(event["data"]["object"], service)
    except Exception as e:
        _logger.error(f"Webhook handler error for {event_type}: {e}")
        return False, f"Handler error: {e}"

    if success:
        return True, f"Successfully processed {event_type}"
    return False, f"Handler returned failure for {event_type}"


def _from_unix(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _find_owner(service: BillingService, customer_id: Optional[str]):
    owner = service.owner_store.get_user_by_stripe_id(customer_id) if customer_id else None
    if owner is None:
        _logger.info(f"Webhook references unknown customer {customer_id}")
    return owner


def _find_subscriptions(owner: Any, stripe_subscription_id: Optional[str]) -> List[Subscription]:
    return [
        s for s in owner.subscriptions()
        if s.stripe_subscription_id == stripe_subscription_id
    ]


def handle_subscription_deleted(obj: dict, service: BillingService) -> bool:
    """
    Handle customer.subscription.deleted.

    Marks the matching local subscription ended at the effective
    cancellation time. Already-ended subscriptions are left as they are,
    so redeliveries do not move ends_at.
    """
    owner = _find_owner(service, obj.get("customer"))
    if owner is None:
        return True

    ended_at = _from_unix(obj.get("ended_at") or obj.get("canceled_at")) or utcnow()

    for subscription in _find_subscriptions(owner, obj.get("id")):
        if subscription.ended():
            continue
        service.mark_as_cancelled(subscription, ended_at)
        _logger.info(
            f"Marked subscription {subscription.id} as cancelled from webhook",
            extra={"stripe_subscription_id": subscription.stripe_subscription_id},
        )

    return True


def handle_subscription_updated(obj: dict, service: BillingService) -> bool:
    """
    Handle customer.subscription.updated.

    Syncs plan, quantity, trial end and pending cancellation from Stripe.
    """
    from persistence.subscriptions import update_subscription

    owner = _find_owner(service, obj.get("customer"))
    if owner is None:
        return True

    for subscription in _find_subscriptions(owner, obj.get("id")):
        # Events can arrive out of order; an ended subscription stays ended
        if subscription.ended():
            continue

        fields: Dict[str, Any] = {}

        items = (obj.get("items") or {}).get("data") or []
        if items:
            item = items[0]
            price = item.get("price") or item.get("plan") or {}
            if price.get("id"):
                fields["stripe_plan_id"] = price["id"]
            if item.get("quantity") is not None:
                fields["quantity"] = int(item["quantity"])

        if "trial_end" in obj:
            fields["trial_ends_at"] = _from_unix(obj.get("trial_end"))

        if obj.get("status") in ("canceled", "incomplete_expired"):
            fields["ends_at"] = _from_unix(obj.get("ended_at")) or utcnow()
        elif obj.get("cancel_at_period_end"):
            trial_ends_at = fields.get("trial_ends_at", subscription.trial_ends_at)
            if trial_ends_at is not None and trial_ends_at > utcnow():
                fields["ends_at"] = trial_ends_at
            else:
                fields["ends_at"] = _from_unix(obj.get("current_period_end"))
        else:
            fields["ends_at"] = None

        update_subscription(subscription, **fields)
        _logger.info(f"Synced subscription {subscription.id} from webhook")

    return True


def handle_customer_deleted(obj: dict, service: BillingService) -> bool:
    """
    Handle customer.deleted.

    Ends every open subscription of the customer and clears the cached
    customer and card fields.
    """
    owner = _find_owner(service, obj.get("id"))
    if owner is None:
        return True

    now = utcnow()
    for subscription in owner.subscriptions():
        if not subscription.ended(now):
            service.mark_as_cancelled(subscription, now)

    service.owner_store.update_user(
        owner,
        stripe_customer_id=None,
        card_brand=None,
        card_last_four=None,
    )
    _logger.info(f"Detached owner {owner.id} from deleted Stripe customer")
    return True


WEBHOOK_HANDLERS: Dict[str, Callable[[dict, "BillingService"], bool]] = {
    "customer.subscription.deleted": handle_subscription_deleted,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.deleted": handle_customer_deleted,
}
