"""Public entry point to the credit ledger.

Callers outside the billing component (generation jobs, webhook routes,
scheduled tasks) go through ``LedgerService`` rather than the individual
collaborators.
"""

from __future__ import annotations

from datetime import datetime
from typing import List

from ...platform.database import SessionLocal
from .allocator import CreditAllocator
from .consumer import CreditConsumer
from .plans import PlanCatalog, PlanName
from .repository import SessionFactory
from .schemas import BillingHistoryEntry, CreditBalance, GrantResult, UseCreditResult
from .usage import UsageAccountant


class LedgerService:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        plans: PlanCatalog | None = None,
        notifier=None,
        referrals=None,
    ):
        if notifier is None:
            from ..notifications.service import NotificationDispatcher

            notifier = NotificationDispatcher(session_factory)
        self.plans = plans or PlanCatalog.from_settings()
        self.usage = UsageAccountant(session_factory, self.plans)
        self.allocator = CreditAllocator(
            session_factory,
            self.plans,
            usage=self.usage,
            referrals=referrals,
            notifier=notifier,
        )
        self.consumer = CreditConsumer(session_factory, self.plans, usage=self.usage, notifier=notifier)

    def get_balance(self, user_id: int) -> CreditBalance:
        return self.usage.get_balance(user_id)

    def has_credits(self, user_id: int, credits_needed: int = 1) -> bool:
        return self.usage.has_credits(user_id, credits_needed)

    def use_credit(self, user_id: int, feature_type: str, feature_id=None) -> UseCreditResult:
        return self.consumer.use_credit(user_id, feature_type, feature_id)

    def grant_subscription_credits(
        self,
        user_id: int,
        plan: PlanName | str,
        period_end: datetime,
        subscription_id: int | None = None,
    ) -> GrantResult:
        return self.allocator.grant_subscription_credits(user_id, plan, period_end, subscription_id)

    def grant_purchase_credit(self, user_id: int, charge_id, value_usd: float) -> GrantResult:
        return self.allocator.grant_purchase_credit(user_id, charge_id, value_usd)

    def grant_referral_credits(
        self,
        referrer_user_id: int,
        referred_user_id: int,
        reward_value_usd: float | None = None,
    ) -> GrantResult:
        return self.allocator.grant_referral_credits(referrer_user_id, referred_user_id, reward_value_usd)

    def get_billing_history(self, user_id: int, limit: int = 50) -> List[BillingHistoryEntry]:
        return self.usage.get_billing_history(user_id, limit)
