"""Scheduled credit maintenance: expiry and expiry reminders."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta

from ...platform.config import settings
from ...platform.database import SessionLocal
from ...shared.utils import ensure_utc, utcnow
from .repository import CreditStore, SessionFactory, ledger_transaction

logger = logging.getLogger(__name__)

# Slack either side of the warning mark; a missed daily run still catches up.
WARNING_WINDOW_SLACK = timedelta(days=1)


class ExpirationSweeper:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        notifier=None,
        batch_size: int = 100,
        warning_days: int | None = None,
    ):
        self._session_factory = session_factory
        self._warning_days = warning_days if warning_days is not None else settings.CREDIT_EXPIRATION_WARNING_DAYS
        if notifier is None:
            from ..notifications.service import NotificationDispatcher

            notifier = NotificationDispatcher(session_factory)
        self._notifier = notifier
        self._batch_size = batch_size

    def expire_old_credits(self, now: datetime | None = None) -> int:
        """Move active credits past ``expires_at`` to expired. Returns how many moved."""
        now = ensure_utc(now) or utcnow()
        with ledger_transaction(self._session_factory) as db:
            expired = CreditStore(db).expire_past_due(now)
            per_user = Counter(credit.user_id for credit in expired)

        for user_id, count in sorted(per_user.items()):
            logger.info("Expired %s credits for user %s", count, user_id, extra={"user_id": user_id})
        if expired:
            logger.info("Credit expiry sweep finished: %s credits expired", len(expired))
        return len(expired)

    def send_expiration_warnings(self, now: datetime | None = None) -> dict[str, int]:
        now = ensure_utc(now) or utcnow()
        mark = now + timedelta(days=self._warning_days)
        window_start = mark - WARNING_WINDOW_SLACK
        window_end = mark + WARNING_WINDOW_SLACK

        with ledger_transaction(self._session_factory) as db:
            candidates = CreditStore(db).credits_expiring_between(window_start, window_end, limit=self._batch_size)

        sent = 0
        failed = 0
        for user_id, count, earliest in candidates:
            try:
                delivered = self._notifier.send_credit_expiration_warning(user_id, count, ensure_utc(earliest))
                if not delivered:
                    failed += 1
                    continue
                with ledger_transaction(self._session_factory) as db:
                    CreditStore(db).mark_expiration_warned(user_id, window_start, window_end, now)
                sent += 1
            except Exception:
                failed += 1
                logger.exception("Expiration warning failed for user %s", user_id, extra={"user_id": user_id})

        logger.info("Expiration warnings: sent=%s failed=%s", sent, failed)
        return {"sent": sent, "failed": failed}
