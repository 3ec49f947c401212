"""Normalize verified Stripe webhook events into ledger ``BillingEvent``s."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ...billing.errors import UnknownPlan
from ...billing.lifecycle import BillingEvent, BillingEventType, CheckoutMode
from ...billing.plans import PlanCatalog

logger = logging.getLogger(__name__)

STRIPE_EVENT_TYPES = {
    "checkout.session.completed": BillingEventType.CHECKOUT_COMPLETED,
    "customer.subscription.created": BillingEventType.SUBSCRIPTION_CREATED,
    "customer.subscription.updated": BillingEventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": BillingEventType.SUBSCRIPTION_DELETED,
    "invoice.payment_succeeded": BillingEventType.INVOICE_PAYMENT_SUCCEEDED,
    "invoice.payment_failed": BillingEventType.INVOICE_PAYMENT_FAILED,
}


def _nested_get(payload: Any, *path: str) -> Any:
    current: Any = payload
    for key in path:
        if isinstance(current, list):
            if not current or key != "0":
                return None
            current = current[0]
            continue
        if not hasattr(current, "get"):
            return None
        current = current.get(key)
    return current


def _timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring unparseable Stripe timestamp %r", value)
        return None


def _user_id(metadata: dict | None) -> Optional[int]:
    metadata = metadata or {}
    raw = metadata.get("userId") or metadata.get("user_id")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric userId %r in Stripe metadata", raw)
        return None


def _cents_to_usd(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return round(int(value) / 100.0, 2)
    except (TypeError, ValueError):
        return None


def _plan_identifier(catalog: PlanCatalog, price_id: Any, metadata: dict | None) -> Optional[str]:
    """Price id first, then explicit plan metadata. Unresolved ids pass through for the processor to reject."""
    metadata = metadata or {}
    if price_id:
        try:
            return catalog.resolve_price(str(price_id)).value
        except UnknownPlan:
            pass
    declared = metadata.get("plan") or metadata.get("planName") or metadata.get("planType")
    if declared and str(declared) not in {CheckoutMode.ONE_TIME.value, CheckoutMode.SUBSCRIPTION.value}:
        return str(declared)
    return str(price_id) if price_id else None


def _subscription_period(subscription: dict) -> tuple[Optional[datetime], Optional[datetime]]:
    # Newer API versions report the period on the subscription item.
    start = subscription.get("current_period_start") or _nested_get(subscription, "items", "data", "0", "current_period_start")
    end = subscription.get("current_period_end") or _nested_get(subscription, "items", "data", "0", "current_period_end")
    return _timestamp(start), _timestamp(end)


def _from_checkout(event_id: str, session: dict, catalog: PlanCatalog) -> BillingEvent:
    metadata = session.get("metadata") or {}
    one_time = session.get("mode") == "payment" or metadata.get("planType") == CheckoutMode.ONE_TIME.value
    if one_time:
        return BillingEvent(
            event_id=event_id,
            type=BillingEventType.CHECKOUT_COMPLETED,
            user_id=_user_id(metadata),
            checkout_mode=CheckoutMode.ONE_TIME,
            external_customer_id=session.get("customer"),
            amount_paid_usd=_cents_to_usd(session.get("amount_total")),
        )
    return BillingEvent(
        event_id=event_id,
        type=BillingEventType.CHECKOUT_COMPLETED,
        user_id=_user_id(metadata),
        plan=_plan_identifier(catalog, metadata.get("priceId"), metadata),
        checkout_mode=CheckoutMode.SUBSCRIPTION,
        external_subscription_id=session.get("subscription"),
        external_customer_id=session.get("customer"),
        amount_paid_usd=_cents_to_usd(session.get("amount_total")),
    )


def _from_subscription(event_id: str, event_type: BillingEventType, subscription: dict, catalog: PlanCatalog) -> BillingEvent:
    metadata = subscription.get("metadata") or {}
    price_id = _nested_get(subscription, "items", "data", "0", "price", "id")
    period_start, period_end = _subscription_period(subscription)
    return BillingEvent(
        event_id=event_id,
        type=event_type,
        user_id=_user_id(metadata),
        plan=_plan_identifier(catalog, price_id, metadata) if (price_id or metadata) else None,
        checkout_mode=CheckoutMode.SUBSCRIPTION,
        external_subscription_id=subscription.get("id"),
        external_customer_id=subscription.get("customer"),
        period_start=period_start,
        period_end=period_end,
    )


def _from_invoice(event_id: str, event_type: BillingEventType, invoice: dict) -> BillingEvent:
    subscription_id = invoice.get("subscription") or _nested_get(
        invoice, "parent", "subscription_details", "subscription"
    )
    metadata = invoice.get("metadata") or _nested_get(invoice, "parent", "subscription_details", "metadata") or {}
    return BillingEvent(
        event_id=event_id,
        type=event_type,
        user_id=_user_id(metadata),
        external_subscription_id=subscription_id,
        external_customer_id=invoice.get("customer"),
        amount_paid_usd=_cents_to_usd(invoice.get("amount_paid")),
        invoice_id=invoice.get("id"),
    )


def billing_event_from_stripe(event: Any, catalog: PlanCatalog | None = None) -> Optional[BillingEvent]:
    """Map a verified Stripe event to a ``BillingEvent``; ``None`` for types the ledger ignores."""
    event_type = STRIPE_EVENT_TYPES.get(event["type"])
    if event_type is None:
        return None
    if hasattr(event, "to_dict"):
        event = event.to_dict()
    catalog = catalog or PlanCatalog.from_settings()
    event_id = str(event["id"])
    data = _nested_get(event, "data", "object") or {}

    if event_type == BillingEventType.CHECKOUT_COMPLETED:
        return _from_checkout(event_id, data, catalog)
    if event_type in (BillingEventType.INVOICE_PAYMENT_SUCCEEDED, BillingEventType.INVOICE_PAYMENT_FAILED):
        return _from_invoice(event_id, event_type, data)
    return _from_subscription(event_id, event_type, data, catalog)
