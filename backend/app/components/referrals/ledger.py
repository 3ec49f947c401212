"""Lifetime referral counters kept on the user row."""

from __future__ import annotations

import logging

from sqlalchemy import select, update

from ...models.user import User
from ...platform.database import SessionLocal
from ..billing.errors import UserNotFound
from ..billing.repository import SessionFactory, ledger_transaction

logger = logging.getLogger(__name__)


class ReferralLedger:
    def __init__(self, session_factory: SessionFactory = SessionLocal):
        self._session_factory = session_factory

    def increment(self, referrer_user_id: int, reward_value_usd: float) -> None:
        """Count one more successful referral. Runs in its own transaction."""
        with ledger_transaction(self._session_factory) as db:
            result = db.execute(
                update(User)
                .where(User.id == referrer_user_id)
                .values(
                    successful_referrals=User.successful_referrals + 1,
                    lifetime_referral_rewards_earned=User.lifetime_referral_rewards_earned + float(reward_value_usd),
                )
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                raise UserNotFound(referrer_user_id)
        logger.info(
            "Referral counters incremented for user_id=%s (+$%.2f)",
            referrer_user_id,
            reward_value_usd,
            extra={"user_id": referrer_user_id},
        )

    def find_referrer(self, referral_code: str) -> User | None:
        code = str(referral_code or "").strip()
        if not code:
            return None
        with ledger_transaction(self._session_factory) as db:
            user = db.execute(select(User).where(User.referral_code == code)).scalars().first()
            if user is not None:
                db.expunge(user)
            return user
