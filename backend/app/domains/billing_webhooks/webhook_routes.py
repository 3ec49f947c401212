# Canonical webhook route for Stripe billing events.
from __future__ import annotations

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from ...components.billing.errors import LedgerError, LedgerInfrastructureFailure
from ...components.billing.lifecycle import SubscriptionLifecycleProcessor
from ...components.integrations.stripe.events import billing_event_from_stripe
from ...platform.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_lifecycle_processor() -> SubscriptionLifecycleProcessor:
    return SubscriptionLifecycleProcessor()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    processor: SubscriptionLifecycleProcessor = Depends(get_lifecycle_processor),
):
    """Verify a Stripe webhook and apply it to the credit ledger."""
    if settings.MVP_DISABLE_STRIPE:
        raise HTTPException(status_code=503, detail="Stripe integration is disabled for MVP")
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=503, detail="Stripe webhook secret is not configured")
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature", "")

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    billing_event = billing_event_from_stripe(event)
    if billing_event is None:
        logger.info("Ignoring Stripe event type %s", event["type"], extra={"event_id": event["id"]})
        return {"status": "ignored", "event_type": event["type"]}

    try:
        result = await run_in_threadpool(processor.process, billing_event)
    except LedgerInfrastructureFailure as exc:
        logger.error("Ledger unavailable for Stripe event %s: %s", billing_event.event_id, exc)
        raise HTTPException(status_code=exc.status_code, detail=exc.code) from exc
    except LedgerError as exc:
        logger.warning(
            "Rejected Stripe event %s: %s",
            billing_event.event_id,
            exc,
            extra={"event_id": billing_event.event_id, "event_type": billing_event.type.value},
        )
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    return {
        "status": "duplicate" if result.duplicate else "received",
        "event_type": billing_event.type.value,
        "outcome": result.outcome,
    }
