"""Referral signup rewards."""

from __future__ import annotations

import logging

from ...platform.database import SessionLocal
from ..billing.allocator import CreditAllocator
from ..billing.errors import InvalidReferral
from ..billing.repository import SessionFactory
from ..billing.schemas import GrantResult
from .ledger import ReferralLedger

logger = logging.getLogger(__name__)


class ReferralService:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        ledger: ReferralLedger | None = None,
        allocator: CreditAllocator | None = None,
    ):
        self._ledger = ledger or ReferralLedger(session_factory)
        self._allocator = allocator or CreditAllocator(session_factory, referrals=self._ledger)

    def process_signup(self, referred_user_id: int, referral_code: str) -> GrantResult:
        """Reward both sides of a signup made with ``referral_code``."""
        referrer = self._ledger.find_referrer(referral_code)
        if referrer is None:
            logger.info("Referral code %r not recognised", referral_code, extra={"user_id": referred_user_id})
            raise InvalidReferral(f"Unknown referral code {referral_code!r}")
        return self._allocator.grant_referral_credits(referrer.id, referred_user_id)
