# app/routers/webhooks.py
"""
Stripe webhook endpoint.

Verifies the Stripe-Signature header before any local record is touched.
Responds 200 for handled, ignored and nothing-to-do events so Stripe
stops retrying; 400 for bad signatures or bodies; 500 if a handler fails.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from billing.service import BillingService
from billing.webhooks import (
    MalformedPayloadError,
    SignatureVerificationError,
    WebhookError,
    process_webhook_event,
    verify_webhook_signature,
)

_logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


class WebhookResponse(BaseModel):
    received: bool
    message: str


def get_billing_service(request: Request) -> BillingService:
    """FastAPI dependency: the process-wide billing service."""
    return request.app.state.billing


@router.post("/stripe/webhook", response_model=WebhookResponse)
async def handle_stripe_webhook(
    raw_request: Request,
    service: BillingService = Depends(get_billing_service),
):
    """
    Handle Stripe webhook events.

    Verifies signature and reconciles local subscription records.
    """
    payload = await raw_request.body()
    signature = raw_request.headers.get("stripe-signature", "")

    try:
        event = verify_webhook_signature(payload, signature, service)

    except SignatureVerificationError as e:
        _logger.warning(f"Webhook signature verification failed: {e}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid signature"},
        )

    except MalformedPayloadError as e:
        _logger.warning(f"Malformed webhook payload: {e}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid payload"},
        )

    except WebhookError as e:
        _logger.error(f"Webhook error: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": str(e)},
        )

    success, message = process_webhook_event(event, service)

    if not success:
        _logger.warning(f"Webhook processing failed: {message}")
        return JSONResponse(
            status_code=500,
            content={"error": message},
        )

    return WebhookResponse(received=True, message=message)
