"""Credit issuance: subscription allotments, one-time purchases, referral rewards."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.credit import CreditSourceType, UserCredit
from ...models.pay_per_use_charge import PayPerUseCharge
from ...models.referral_reward import REFERRED_ROLE, ReferralReward
from ...platform.config import settings
from ...platform.database import SessionLocal
from ...shared.utils import ensure_utc, utcnow
from .errors import InvalidReferral, UserNotFound
from .plans import PlanCatalog, PlanName
from .repository import CreditStore, SessionFactory, ledger_transaction
from .schemas import GrantResult
from .usage import GENERATION_FEATURE, UsageAccountant

logger = logging.getLogger(__name__)


class CreditAllocator:
    """Creates credit records. Subscription grants replace, the others accumulate."""

    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        plans: PlanCatalog | None = None,
        usage: UsageAccountant | None = None,
        referrals=None,
        notifier=None,
    ):
        self._session_factory = session_factory
        self._plans = plans or PlanCatalog.from_settings()
        self._usage = usage or UsageAccountant(session_factory, self._plans)
        if referrals is None:
            from ..referrals.ledger import ReferralLedger

            referrals = ReferralLedger(session_factory)
        self._referrals = referrals
        if notifier is None:
            from ..notifications.service import NotificationDispatcher

            notifier = NotificationDispatcher(session_factory)
        self._notifier = notifier

    @staticmethod
    def _require_user(store: CreditStore, user_id: int) -> None:
        if store.find_user(user_id) is None:
            raise UserNotFound(user_id)

    # ------------------------------------------------------------------
    # Subscription allotments
    # ------------------------------------------------------------------

    def grant_subscription_credits(
        self,
        user_id: int,
        plan: PlanName | str,
        period_end: datetime,
        subscription_id: int | None = None,
        db: Optional[Session] = None,
    ) -> GrantResult:
        """Replace the user's unused subscription credits with a fresh allotment.

        Pass ``db`` to run inside a transaction the caller already owns.
        """
        if db is not None:
            return self._grant_subscription(db, user_id, plan, period_end, subscription_id)
        with ledger_transaction(self._session_factory) as session:
            return self._grant_subscription(session, user_id, plan, period_end, subscription_id)

    def _grant_subscription(
        self,
        db: Session,
        user_id: int,
        plan: PlanName | str,
        period_end: datetime,
        subscription_id: int | None,
    ) -> GrantResult:
        entitlement = self._plans.lookup(plan)
        store = CreditStore(db)
        self._require_user(store, user_id)
        now = utcnow()

        removed = store.delete_active_by_source(user_id, CreditSourceType.SUBSCRIPTION)
        self._usage.reset_period(db, user_id, entitlement.credit_count, GENERATION_FEATURE, now)

        if entitlement.is_unlimited:
            logger.info(
                "User %s moved to unlimited plan %s; removed %s subscription credits",
                user_id,
                entitlement.plan.value,
                removed,
                extra={"user_id": user_id},
            )
            return GrantResult(user_id=user_id, granted=0, removed=removed)

        expires_at = ensure_utc(period_end)
        records = store.bulk_insert(
            UserCredit.for_source(
                CreditSourceType.SUBSCRIPTION,
                user_id=user_id,
                source_id=str(subscription_id) if subscription_id is not None else None,
                source_description=f"{entitlement.plan.value} plan allocation",
                value_usd=entitlement.per_credit_value_usd,
                expires_at=expires_at,
                created_at=now,
            )
            for _ in range(entitlement.credit_count)
        )
        logger.info(
            "Granted %s %s credits to user %s (replaced %s, expires %s)",
            len(records),
            entitlement.plan.value,
            user_id,
            removed,
            expires_at.isoformat() if expires_at else None,
            extra={"user_id": user_id},
        )
        return GrantResult(
            user_id=user_id,
            granted=len(records),
            removed=removed,
            credit_ids=[record.id for record in records],
        )

    # ------------------------------------------------------------------
    # One-time purchases
    # ------------------------------------------------------------------

    def grant_purchase_credit(
        self,
        user_id: int,
        charge_id: int | str | None,
        value_usd: float,
        db: Optional[Session] = None,
    ) -> GrantResult:
        if db is not None:
            return self._grant_purchase(db, user_id, charge_id, value_usd)
        with ledger_transaction(self._session_factory) as session:
            return self._grant_purchase(session, user_id, charge_id, value_usd)

    def _grant_purchase(self, db: Session, user_id: int, charge_id, value_usd: float) -> GrantResult:
        store = CreditStore(db)
        self._require_user(store, user_id)
        record = store.insert(
            UserCredit.for_source(
                CreditSourceType.PURCHASE,
                user_id=user_id,
                source_id=str(charge_id) if charge_id is not None else None,
                source_description="Single post purchase",
                value_usd=float(value_usd),
                expires_at=None,
                created_at=utcnow(),
            )
        )
        logger.info("Granted purchase credit %s to user %s", record.id, user_id, extra={"user_id": user_id, "credit_id": record.id})
        return GrantResult(user_id=user_id, granted=1, credit_ids=[record.id])

    def record_purchase(
        self,
        user_id: int,
        value_usd: float | None = None,
        external_ref: str | None = None,
        db: Optional[Session] = None,
    ) -> GrantResult:
        """Store the pay-per-use charge and grant the credit it paid for."""
        if db is not None:
            return self._record_purchase(db, user_id, value_usd, external_ref)
        with ledger_transaction(self._session_factory) as session:
            return self._record_purchase(session, user_id, value_usd, external_ref)

    def _record_purchase(self, db: Session, user_id: int, value_usd: float | None, external_ref: str | None) -> GrantResult:
        price = float(value_usd if value_usd is not None else settings.PURCHASE_CREDIT_VALUE_USD)
        self._require_user(CreditStore(db), user_id)
        charge = PayPerUseCharge(
            user_id=user_id,
            unit_price=price,
            quantity=1,
            total_amount=price,
            external_ref=external_ref,
        )
        db.add(charge)
        db.flush()
        return self._grant_purchase(db, user_id, charge.id, price)

    # ------------------------------------------------------------------
    # Referral rewards
    # ------------------------------------------------------------------

    def grant_referral_credits(
        self,
        referrer_user_id: int,
        referred_user_id: int,
        reward_value_usd: float | None = None,
    ) -> GrantResult:
        """One referral credit each for referrer and referred user.

        Lifetime counters and reward emails follow the commit and never undo it.
        """
        if referrer_user_id == referred_user_id:
            raise InvalidReferral("Users cannot refer themselves")
        value = float(reward_value_usd if reward_value_usd is not None else settings.REFERRAL_REWARD_VALUE_USD)

        with ledger_transaction(self._session_factory) as db:
            store = CreditStore(db)
            self._require_user(store, referrer_user_id)
            self._require_user(store, referred_user_id)
            already_rewarded = db.execute(
                select(
                    exists().where(
                        ReferralReward.user_id == referred_user_id,
                        ReferralReward.role == REFERRED_ROLE,
                    )
                )
            ).scalar()
            if already_rewarded:
                raise InvalidReferral(f"User {referred_user_id} already received a referral reward")

            credit_ids = []
            now = utcnow()
            for user_id, counterpart_id, role in (
                (referrer_user_id, referred_user_id, "referrer"),
                (referred_user_id, referrer_user_id, REFERRED_ROLE),
            ):
                reward = ReferralReward(
                    user_id=user_id,
                    counterpart_user_id=counterpart_id,
                    role=role,
                    reward_type="free_generation",
                    reward_value=value,
                )
                db.add(reward)
                try:
                    db.flush()
                except IntegrityError as exc:
                    # A concurrent signup rewarded this referred user first.
                    raise InvalidReferral(f"User {referred_user_id} already received a referral reward") from exc
                record = store.insert(
                    UserCredit.for_source(
                        CreditSourceType.REFERRAL,
                        user_id=user_id,
                        source_id=str(reward.id),
                        source_description="Referral reward" if role == "referrer" else "Referral signup bonus",
                        value_usd=value,
                        expires_at=None,
                        created_at=now,
                    )
                )
                credit_ids.append(record.id)

        logger.info(
            "Referral credits granted: referrer=%s referred=%s",
            referrer_user_id,
            referred_user_id,
            extra={"user_id": referrer_user_id},
        )

        try:
            self._referrals.increment(referrer_user_id, value)
        except Exception:
            logger.exception("Failed to update referral counters for user %s", referrer_user_id)

        for user_id in (referrer_user_id, referred_user_id):
            self._notifier.send_referral_reward_granted(user_id, value)

        return GrantResult(user_id=referrer_user_id, granted=len(credit_ids), credit_ids=credit_ids)
