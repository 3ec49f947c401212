"""Subscription lifecycle: applies normalized payment-provider events to the ledger.

Each provider event id is recorded in ``processed_webhook_events`` in the
same transaction as the ledger change it caused, so a redelivered event is
acknowledged without being applied twice.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.credit import CreditSourceType
from ...models.processed_webhook_event import ProcessedWebhookEvent
from ...models.subscription import Subscription, SubscriptionStatus
from ...platform.config import settings
from ...platform.database import SessionLocal
from ...shared.utils import ensure_utc, utcnow
from .allocator import CreditAllocator
from .errors import SubscriptionNotFound, UserNotFound
from .plans import PlanCatalog
from .repository import CreditStore, SessionFactory, ledger_transaction

logger = logging.getLogger(__name__)

# How far past checkout a provider period may start and still be the checkout period.
ESTIMATED_PERIOD_TOLERANCE = timedelta(days=1)


class BillingEventType(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice_payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice_payment_failed"


class CheckoutMode(str, enum.Enum):
    ONE_TIME = "one_time"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class BillingEvent:
    event_id: str
    type: BillingEventType
    user_id: Optional[int] = None
    plan: Optional[str] = None
    checkout_mode: Optional[CheckoutMode] = None
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None
    amount_paid_usd: Optional[float] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    invoice_id: Optional[str] = None


@dataclass
class ProcessingOutcome:
    event_id: str
    outcome: str
    duplicate: bool = False
    detail: dict[str, Any] = field(default_factory=dict)


def _same_instant(left: datetime | None, right: datetime | None) -> bool:
    if left is None or right is None:
        return left is right
    return ensure_utc(left).replace(microsecond=0) == ensure_utc(right).replace(microsecond=0)


class SubscriptionLifecycleProcessor:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        plans: PlanCatalog | None = None,
        allocator: CreditAllocator | None = None,
        notifier=None,
        provider: str = "stripe",
    ):
        self._session_factory = session_factory
        self._plans = plans or PlanCatalog.from_settings()
        if notifier is None:
            from ..notifications.service import NotificationDispatcher

            notifier = NotificationDispatcher(session_factory)
        self._notifier = notifier
        self._allocator = allocator or CreditAllocator(session_factory, self._plans, notifier=notifier)
        self._provider = provider
        self._handlers: dict[BillingEventType, Callable[..., tuple[str, dict]]] = {
            BillingEventType.CHECKOUT_COMPLETED: self._checkout_completed,
            BillingEventType.SUBSCRIPTION_CREATED: self._subscription_created,
            BillingEventType.SUBSCRIPTION_UPDATED: self._subscription_updated,
            BillingEventType.SUBSCRIPTION_DELETED: self._subscription_deleted,
            BillingEventType.INVOICE_PAYMENT_SUCCEEDED: self._acknowledge,
            BillingEventType.INVOICE_PAYMENT_FAILED: self._invoice_payment_failed,
        }

    def process(self, event: BillingEvent) -> ProcessingOutcome:
        after_commit: list[Callable[[], Any]] = []
        with ledger_transaction(self._session_factory) as db:
            marker = self._claim_event(db, event)
            if marker is None:
                logger.info(
                    "Duplicate %s event %s ignored",
                    event.type.value,
                    event.event_id,
                    extra={"event_id": event.event_id, "event_type": event.type.value},
                )
                return ProcessingOutcome(event_id=event.event_id, outcome="duplicate", duplicate=True)

            outcome, detail = self._handlers[event.type](db, event, after_commit)
            marker.outcome = outcome
            marker.event_metadata = detail

        logger.info(
            "Processed %s event %s: %s",
            event.type.value,
            event.event_id,
            outcome,
            extra={"event_id": event.event_id, "event_type": event.type.value, "user_id": event.user_id},
        )
        for callback in after_commit:
            callback()
        return ProcessingOutcome(event_id=event.event_id, outcome=outcome, detail=detail)

    def _claim_event(self, db: Session, event: BillingEvent) -> Optional[ProcessedWebhookEvent]:
        marker = ProcessedWebhookEvent(
            provider=self._provider,
            event_id=event.event_id,
            event_type=event.type.value,
            outcome="processing",
        )
        try:
            with db.begin_nested():
                db.add(marker)
                db.flush()
        except IntegrityError:
            return None
        return marker

    # ------------------------------------------------------------------
    # Handlers: (db, event, after_commit) -> (outcome, detail)
    # ------------------------------------------------------------------

    def _acknowledge(self, db: Session, event: BillingEvent, after_commit) -> tuple[str, dict]:
        return "acknowledged", {}

    def _checkout_completed(self, db: Session, event: BillingEvent, after_commit) -> tuple[str, dict]:
        store = CreditStore(db)
        user = store.find_user(event.user_id) if event.user_id is not None else None
        if user is None:
            raise UserNotFound(event.user_id)

        if event.checkout_mode == CheckoutMode.ONE_TIME:
            value = event.amount_paid_usd if event.amount_paid_usd else settings.PURCHASE_CREDIT_VALUE_USD
            grant = self._allocator.record_purchase(user.id, value_usd=value, external_ref=event.event_id, db=db)
            return "purchase_recorded", {"user_id": user.id, "credit_ids": grant.credit_ids}

        entitlement = self._plans.lookup(event.plan)
        now = utcnow()
        period_start = ensure_utc(event.period_start) or now
        period_end = ensure_utc(event.period_end) or period_start + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS)
        confirmed_at = now if event.period_start is not None else None

        subscription = store.active_subscription(user.id, for_update=True)
        if subscription is None:
            subscription = Subscription(
                user_id=user.id,
                organization_id=user.organization_id,
                plan_name=entitlement.plan.value,
                status=SubscriptionStatus.ACTIVE,
                stripe_subscription_id=event.external_subscription_id,
                stripe_customer_id=event.external_customer_id,
                current_period_start=period_start,
                current_period_end=period_end,
                period_confirmed_at=confirmed_at,
                created_at=now,
            )
            db.add(subscription)
            db.flush()
            outcome = "subscription_created"
        else:
            previous_plan = subscription.plan_name
            subscription.plan_name = entitlement.plan.value
            subscription.stripe_subscription_id = event.external_subscription_id or subscription.stripe_subscription_id
            subscription.stripe_customer_id = event.external_customer_id or subscription.stripe_customer_id
            subscription.current_period_start = period_start
            subscription.current_period_end = period_end
            subscription.period_confirmed_at = confirmed_at
            subscription.updated_at = now
            db.flush()
            logger.info(
                "User %s changed plan %s -> %s",
                user.id,
                previous_plan,
                entitlement.plan.value,
                extra={"user_id": user.id},
            )
            outcome = "subscription_changed"

        grant = self._allocator.grant_subscription_credits(
            user.id,
            entitlement.plan,
            period_end,
            subscription_id=subscription.id,
            db=db,
        )
        return outcome, {
            "user_id": user.id,
            "subscription_id": subscription.id,
            "plan": entitlement.plan.value,
            "granted": grant.granted,
            "removed": grant.removed,
        }

    def _require_subscription(self, store: CreditStore, event: BillingEvent) -> Subscription:
        subscription = None
        if event.external_subscription_id:
            subscription = store.subscription_by_external_id(event.external_subscription_id, for_update=True)
        if subscription is None:
            raise SubscriptionNotFound(event.external_subscription_id)
        return subscription

    def _subscription_created(self, db: Session, event: BillingEvent, after_commit) -> tuple[str, dict]:
        # Usually delivered before checkout completes, when no row exists yet.
        subscription = None
        if event.external_subscription_id:
            subscription = CreditStore(db).subscription_by_external_id(event.external_subscription_id, for_update=True)
        if subscription is None or not self._adopts_period(subscription, event):
            return "acknowledged", {}
        entitlement = self._plans.lookup(event.plan) if event.plan else None
        return self._adopt_period(db, subscription, event, entitlement)

    @staticmethod
    def _adopts_period(subscription: Subscription, event: BillingEvent) -> bool:
        """True when the event confirms the period checkout only estimated."""
        if subscription.period_confirmed_at is not None or event.period_start is None:
            return False
        estimated_start = ensure_utc(subscription.current_period_start)
        return ensure_utc(event.period_start) <= estimated_start + ESTIMATED_PERIOD_TOLERANCE

    def _adopt_period(self, db: Session, subscription: Subscription, event: BillingEvent, entitlement) -> tuple[str, dict]:
        now = utcnow()
        subscription.current_period_start = ensure_utc(event.period_start)
        if event.period_end is not None:
            subscription.current_period_end = ensure_utc(event.period_end)
        if entitlement is not None:
            subscription.plan_name = entitlement.plan.value
        subscription.period_confirmed_at = now
        subscription.updated_at = now

        rescheduled = 0
        if subscription.status == SubscriptionStatus.ACTIVE and event.period_end is not None:
            rescheduled = CreditStore(db).reschedule_active_expiry(
                subscription.user_id,
                CreditSourceType.SUBSCRIPTION,
                ensure_utc(event.period_end),
            )
        db.flush()
        logger.info(
            "Subscription %s adopted provider period; %s credits rescheduled",
            subscription.id,
            rescheduled,
            extra={"user_id": subscription.user_id},
        )
        return "subscription_period_adopted", {"subscription_id": subscription.id, "rescheduled": rescheduled}

    def _subscription_updated(self, db: Session, event: BillingEvent, after_commit) -> tuple[str, dict]:
        store = CreditStore(db)
        subscription = self._require_subscription(store, event)
        entitlement = self._plans.lookup(event.plan) if event.plan else None
        if self._adopts_period(subscription, event):
            return self._adopt_period(db, subscription, event, entitlement)

        renewed = event.period_start is not None and not _same_instant(subscription.current_period_start, event.period_start)
        now = utcnow()
        if event.period_start is not None:
            subscription.current_period_start = ensure_utc(event.period_start)
            subscription.period_confirmed_at = now
        if event.period_end is not None:
            subscription.current_period_end = ensure_utc(event.period_end)
        subscription.updated_at = now

        if not renewed or subscription.status != SubscriptionStatus.ACTIVE:
            previous_plan = subscription.plan_name
            if entitlement is not None and entitlement.plan.value != previous_plan:
                # Mid-period plan change: allotment follows at the next renewal.
                subscription.plan_name = entitlement.plan.value
                db.flush()
                logger.info(
                    "Subscription %s plan %s -> %s",
                    subscription.id,
                    previous_plan,
                    subscription.plan_name,
                    extra={"user_id": subscription.user_id},
                )
                return "subscription_plan_changed", {"subscription_id": subscription.id, "plan": subscription.plan_name}
            db.flush()
            return "subscription_period_updated", {"subscription_id": subscription.id}

        plan = entitlement or self._plans.lookup(subscription.plan_name)
        subscription.plan_name = plan.plan.value
        db.flush()
        grant = self._allocator.grant_subscription_credits(
            subscription.user_id,
            plan.plan,
            ensure_utc(subscription.current_period_end),
            subscription_id=subscription.id,
            db=db,
        )
        return "subscription_renewed", {
            "subscription_id": subscription.id,
            "user_id": subscription.user_id,
            "plan": plan.plan.value,
            "granted": grant.granted,
            "removed": grant.removed,
        }

    def _subscription_deleted(self, db: Session, event: BillingEvent, after_commit) -> tuple[str, dict]:
        subscription = self._require_subscription(CreditStore(db), event)
        now = utcnow()
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancelled_at = now
        subscription.updated_at = now
        db.flush()
        # Credits already granted stay usable until they expire.
        return "subscription_cancelled", {"subscription_id": subscription.id, "user_id": subscription.user_id}

    def _invoice_payment_failed(self, db: Session, event: BillingEvent, after_commit) -> tuple[str, dict]:
        user_id = event.user_id
        if user_id is None and event.external_subscription_id:
            subscription = CreditStore(db).subscription_by_external_id(event.external_subscription_id)
            user_id = subscription.user_id if subscription else None
        if user_id is None:
            logger.warning(
                "Payment failed for unknown subscription %s",
                event.external_subscription_id,
                extra={"event_id": event.event_id},
            )
            return "payment_failed_unmatched", {"subscription": event.external_subscription_id}

        after_commit.append(lambda: self._notifier.send_payment_failed_notice(user_id, event.invoice_id))
        return "payment_failed", {"user_id": user_id, "invoice_id": event.invoice_id}
