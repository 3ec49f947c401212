"""Usage accounting: balances, billing history, and per-period usage counters."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.credit import CreditSourceType, CreditStatus, UserCredit
from ...models.usage_tracking import UsageTracking
from ...platform.database import SessionLocal
from ...shared.utils import ensure_utc, month_bounds, utcnow
from .plans import UNLIMITED_CREDITS, PlanCatalog
from .repository import CreditStore, SessionFactory, ledger_transaction
from .schemas import BillingHistoryEntry, CreditBalance, CreditBreakdown

logger = logging.getLogger(__name__)

GENERATION_FEATURE = "generation"


def unlimited_balance(plan_name: str | None = None) -> CreditBalance:
    return CreditBalance(
        is_unlimited=True,
        total_credits=UNLIMITED_CREDITS,
        available_credits=UNLIMITED_CREDITS,
        used_credits=0,
        breakdown=CreditBreakdown(subscription=UNLIMITED_CREDITS),
        plan_name=plan_name,
    )


def _history_description(credit: UserCredit) -> str:
    if credit.source_description:
        return credit.source_description
    return f"{credit.source_type.value.title()} credit"


class UsageAccountant:
    """Read side of the ledger plus the usage-period counters."""

    def __init__(self, session_factory: SessionFactory = SessionLocal, plans: PlanCatalog | None = None):
        self._session_factory = session_factory
        self._plans = plans or PlanCatalog.from_settings()

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balance(self, user_id: int) -> CreditBalance:
        now = utcnow()
        with ledger_transaction(self._session_factory) as db:
            store = CreditStore(db)
            subscription = store.active_subscription(user_id)
            plan_name = subscription.plan_name if subscription else None
            if plan_name and self._plans.is_unlimited(plan_name):
                return unlimited_balance(plan_name)
            counts = store.aggregate_by_status(user_id, now)

        breakdown = CreditBreakdown()
        available = 0
        used = 0
        for (source_type, status), count in counts.items():
            if status == CreditStatus.ACTIVE:
                available += count
                setattr(breakdown, source_type.value, getattr(breakdown, source_type.value) + count)
            elif status == CreditStatus.USED:
                used += count
        return CreditBalance(
            is_unlimited=False,
            total_credits=available + used,
            available_credits=available,
            used_credits=used,
            breakdown=breakdown,
            plan_name=plan_name,
        )

    def has_credits(self, user_id: int, credits_needed: int = 1) -> bool:
        balance = self.get_balance(user_id)
        if balance.is_unlimited:
            return True
        return balance.available_credits >= credits_needed

    def get_billing_history(self, user_id: int, limit: int = 50) -> List[BillingHistoryEntry]:
        """Newest-first projection of grants and generations. Read-only."""
        limit = max(int(limit), 0)
        if limit == 0:
            return []
        with ledger_transaction(self._session_factory) as db:
            store = CreditStore(db)
            entries = [
                BillingHistoryEntry(
                    type="generation",
                    timestamp=ensure_utc(credit.used_at),
                    credits_delta=-1,
                    source_type=credit.source_type,
                    description=f"{(credit.used_for_type or GENERATION_FEATURE).replace('_', ' ').capitalize()} generation",
                    credit_id=credit.id,
                )
                for credit in store.recent_usage(user_id, limit)
                if credit.used_at is not None
            ]
            entries.extend(
                BillingHistoryEntry(
                    type="grant",
                    timestamp=ensure_utc(credit.created_at),
                    credits_delta=1,
                    source_type=credit.source_type,
                    description=_history_description(credit),
                    credit_id=credit.id,
                )
                for credit in store.recent_grants(user_id, limit)
            )
        entries.sort(key=lambda entry: (entry.timestamp, entry.type == "generation"), reverse=True)
        return entries[:limit]

    # ------------------------------------------------------------------
    # Usage-period counters (run inside the caller's transaction)
    # ------------------------------------------------------------------

    @staticmethod
    def _counter(db: Session, user_id: int, feature_type: str, period_start) -> Optional[UsageTracking]:
        return db.execute(
            select(UsageTracking)
            .where(
                UsageTracking.user_id == user_id,
                UsageTracking.feature_type == feature_type,
                UsageTracking.period_start == period_start,
            )
            .with_for_update()
        ).scalars().first()

    def _get_or_create_counter(self, db: Session, user_id: int, feature_type: str, now: datetime) -> UsageTracking:
        period_start, period_end = month_bounds(now)
        counter = self._counter(db, user_id, feature_type, period_start)
        if counter is not None:
            return counter
        try:
            with db.begin_nested():
                counter = UsageTracking(
                    user_id=user_id,
                    feature_type=feature_type,
                    period_start=period_start,
                    period_end=period_end,
                    usage_count=0,
                    bonus_usage_count=0,
                )
                db.add(counter)
                db.flush()
        except IntegrityError:
            # A concurrent consumer created the row first.
            counter = self._counter(db, user_id, feature_type, period_start)
        return counter

    def record_consumption(
        self,
        db: Session,
        user_id: int,
        feature_type: str,
        source_type: CreditSourceType,
        now: datetime | None = None,
    ) -> UsageTracking:
        counter = self._get_or_create_counter(db, user_id, feature_type, now or utcnow())
        if source_type == CreditSourceType.SUBSCRIPTION:
            counter.usage_count = UsageTracking.usage_count + 1
        else:
            counter.bonus_usage_count = UsageTracking.bonus_usage_count + 1
            counter.bonus_source = source_type.value
        db.flush()
        return counter

    def reset_period(
        self,
        db: Session,
        user_id: int,
        limit_count: int,
        feature_type: str = GENERATION_FEATURE,
        now: datetime | None = None,
    ) -> UsageTracking:
        """Start a fresh allotment for the current period (plan grant or renewal)."""
        counter = self._get_or_create_counter(db, user_id, feature_type, now or utcnow())
        counter.usage_count = 0
        counter.limit_count = limit_count
        db.flush()
        return counter

    def get_period_usage(self, user_id: int, feature_type: str = GENERATION_FEATURE) -> dict:
        period_start, period_end = month_bounds()
        with ledger_transaction(self._session_factory) as db:
            counter = db.execute(
                select(UsageTracking).where(
                    UsageTracking.user_id == user_id,
                    UsageTracking.feature_type == feature_type,
                    UsageTracking.period_start == period_start,
                )
            ).scalars().first()
            return {
                "feature_type": feature_type,
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "usage_count": int(counter.usage_count or 0) if counter else 0,
                "bonus_usage_count": int(counter.bonus_usage_count or 0) if counter else 0,
                "bonus_source": counter.bonus_source if counter else None,
                "limit_count": counter.limit_count if counter else None,
            }
