"""Credit consumption: claim exactly one credit per generation."""

from __future__ import annotations

import logging

from ...models.credit import CreditSourceType
from ...platform.config import settings
from ...platform.database import SessionLocal
from ...shared.utils import utcnow
from .errors import InsufficientCredits, UserNotFound
from .plans import UNLIMITED_CREDITS, PlanCatalog
from .repository import CreditStore, SessionFactory, ledger_transaction
from .schemas import UseCreditResult
from .usage import UsageAccountant

logger = logging.getLogger(__name__)


class CreditConsumer:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        plans: PlanCatalog | None = None,
        usage: UsageAccountant | None = None,
        notifier=None,
        low_credit_threshold: int | None = None,
    ):
        self._session_factory = session_factory
        self._plans = plans or PlanCatalog.from_settings()
        self._usage = usage or UsageAccountant(session_factory, self._plans)
        if notifier is None:
            from ..notifications.service import NotificationDispatcher

            notifier = NotificationDispatcher(session_factory)
        self._notifier = notifier
        self._low_credit_threshold = low_credit_threshold

    @property
    def low_credit_threshold(self) -> int:
        if self._low_credit_threshold is not None:
            return self._low_credit_threshold
        return settings.LOW_CREDIT_THRESHOLD

    def use_credit(self, user_id: int, feature_type: str, feature_id=None) -> UseCreditResult:
        """Claim the highest-priority active credit and record the usage.

        Raises ``InsufficientCredits`` with nothing mutated when the user has
        no active credit left.
        """
        now = utcnow()
        used_for_id = str(feature_id) if feature_id is not None else None

        with ledger_transaction(self._session_factory) as db:
            store = CreditStore(db)
            if store.find_user(user_id) is None:
                raise UserNotFound(user_id)

            subscription = store.active_subscription(user_id)
            if subscription is not None and self._plans.is_unlimited(subscription.plan_name):
                self._usage.record_consumption(db, user_id, feature_type, CreditSourceType.SUBSCRIPTION, now)
                logger.info("Unlimited plan usage recorded for user %s (%s)", user_id, feature_type, extra={"user_id": user_id})
                return UseCreditResult(
                    source_type=CreditSourceType.SUBSCRIPTION,
                    remaining_credits=UNLIMITED_CREDITS,
                    is_unlimited=True,
                )

            credit = store.claim_highest_priority_active(user_id, now)
            if credit is None:
                logger.info("No credits available for user %s", user_id, extra={"user_id": user_id})
                raise InsufficientCredits(user_id)

            credit.mark_used(feature_type, used_for_id, now)
            self._usage.record_consumption(db, user_id, feature_type, credit.source_type, now)
            remaining = store.count_active(user_id, now)
            result = UseCreditResult(
                credit_id=credit.id,
                source_type=credit.source_type,
                remaining_credits=remaining,
            )

        logger.info(
            "User %s used %s credit %s for %s (remaining=%s)",
            user_id,
            result.source_type.value,
            result.credit_id,
            feature_type,
            remaining,
            extra={"user_id": user_id, "credit_id": result.credit_id},
        )
        if 0 < remaining <= self.low_credit_threshold:
            self._notifier.send_low_credit_warning(user_id, remaining)
        return result
