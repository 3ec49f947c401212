"""Credit store: persistence and query layer for individual credit records."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, Iterator, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.credit import CreditSourceType, CreditStatus, UserCredit
from ...models.subscription import Subscription, SubscriptionStatus
from ...models.user import User
from ...shared.utils import utcnow
from .errors import LedgerInfrastructureFailure

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@contextmanager
def ledger_transaction(session_factory: SessionFactory) -> Iterator[Session]:
    """One session, one transaction. Commits on success, rolls back on any error.

    Store-level failures surface as ``LedgerInfrastructureFailure``; domain
    errors raised inside the block propagate unchanged after the rollback.
    """
    db = session_factory()
    try:
        with db.begin():
            yield db
    except SQLAlchemyError as exc:
        logger.error("Ledger transaction aborted: %s", exc)
        raise LedgerInfrastructureFailure(str(exc)) from exc
    finally:
        db.close()


def _unexpired(now: datetime):
    return or_(UserCredit.expires_at.is_(None), UserCredit.expires_at > now)


class CreditStore:
    """Queries over ``user_credits`` bound to the caller's session/transaction."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, record: UserCredit) -> UserCredit:
        self.db.add(record)
        self.db.flush()
        return record

    def bulk_insert(self, records: Iterable[UserCredit]) -> List[UserCredit]:
        records = list(records)
        self.db.add_all(records)
        self.db.flush()
        return records

    def delete_active_by_source(self, user_id: int, source_type: CreditSourceType) -> int:
        """Hard-delete unused credits of one source. Only plan supersession calls this."""
        result = self.db.execute(
            delete(UserCredit)
            .where(
                UserCredit.user_id == user_id,
                UserCredit.source_type == source_type,
                UserCredit.status == CreditStatus.ACTIVE,
            )
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def claim_highest_priority_active(self, user_id: int, now: datetime | None = None) -> Optional[UserCredit]:
        """Lock and return the next credit to consume, or ``None``.

        Rows held by a concurrent claimer are skipped rather than waited on,
        so two callers never walk away with the same credit.
        """
        now = now or utcnow()
        stmt = (
            select(UserCredit)
            .where(
                UserCredit.user_id == user_id,
                UserCredit.status == CreditStatus.ACTIVE,
                _unexpired(now),
            )
            .order_by(UserCredit.priority.desc(), UserCredit.created_at.asc(), UserCredit.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        return self.db.execute(stmt).scalars().first()

    def expire_past_due(self, now: datetime | None = None) -> List[UserCredit]:
        now = now or utcnow()
        stmt = (
            select(UserCredit)
            .where(
                UserCredit.status == CreditStatus.ACTIVE,
                UserCredit.expires_at.is_not(None),
                UserCredit.expires_at < now,
            )
            .order_by(UserCredit.user_id, UserCredit.id)
            .with_for_update(skip_locked=True)
        )
        expired = list(self.db.execute(stmt).scalars().all())
        for credit in expired:
            credit.mark_expired()
        self.db.flush()
        return expired

    def mark_expiration_warned(self, user_id: int, window_start: datetime, window_end: datetime, now: datetime) -> int:
        result = self.db.execute(
            update(UserCredit)
            .where(
                UserCredit.user_id == user_id,
                UserCredit.status == CreditStatus.ACTIVE,
                UserCredit.expires_at.between(window_start, window_end),
                UserCredit.expiration_warning_sent_at.is_(None),
            )
            .values(expiration_warning_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def reschedule_active_expiry(self, user_id: int, source_type: CreditSourceType, expires_at: datetime) -> int:
        result = self.db.execute(
            update(UserCredit)
            .where(
                UserCredit.user_id == user_id,
                UserCredit.source_type == source_type,
                UserCredit.status == CreditStatus.ACTIVE,
            )
            .values(expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def aggregate_by_status(self, user_id: int, now: datetime | None = None) -> dict[tuple[CreditSourceType, CreditStatus], int]:
        """Record counts keyed by ``(source_type, status)`` over unexpired records."""
        now = now or utcnow()
        rows = self.db.execute(
            select(UserCredit.source_type, UserCredit.status, func.count(UserCredit.id))
            .where(UserCredit.user_id == user_id, _unexpired(now))
            .group_by(UserCredit.source_type, UserCredit.status)
        ).all()
        return {(source_type, status): int(count) for source_type, status, count in rows}

    def count_active(self, user_id: int, now: datetime | None = None) -> int:
        now = now or utcnow()
        return int(
            self.db.execute(
                select(func.count(UserCredit.id)).where(
                    UserCredit.user_id == user_id,
                    UserCredit.status == CreditStatus.ACTIVE,
                    _unexpired(now),
                )
            ).scalar()
            or 0
        )

    def credits_expiring_between(self, window_start: datetime, window_end: datetime, limit: int = 100) -> list[tuple[int, int, datetime]]:
        """``(user_id, count, earliest_expiry)`` for users not yet warned about this window."""
        rows = self.db.execute(
            select(UserCredit.user_id, func.count(UserCredit.id), func.min(UserCredit.expires_at))
            .where(
                UserCredit.status == CreditStatus.ACTIVE,
                UserCredit.expires_at.between(window_start, window_end),
                UserCredit.expiration_warning_sent_at.is_(None),
            )
            .group_by(UserCredit.user_id)
            .order_by(UserCredit.user_id)
            .limit(limit)
        ).all()
        return [(int(user_id), int(count), earliest) for user_id, count, earliest in rows]

    def recent_usage(self, user_id: int, limit: int) -> List[UserCredit]:
        return list(
            self.db.execute(
                select(UserCredit)
                .where(UserCredit.user_id == user_id, UserCredit.status == CreditStatus.USED)
                .order_by(UserCredit.used_at.desc(), UserCredit.id.desc())
                .limit(limit)
            ).scalars().all()
        )

    def recent_grants(self, user_id: int, limit: int) -> List[UserCredit]:
        return list(
            self.db.execute(
                select(UserCredit)
                .where(UserCredit.user_id == user_id)
                .order_by(UserCredit.created_at.desc(), UserCredit.id.desc())
                .limit(limit)
            ).scalars().all()
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def active_subscription(self, user_id: int, *, for_update: bool = False) -> Optional[Subscription]:
        """Most recently created active subscription; duplicates are tolerated."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status == SubscriptionStatus.ACTIVE)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def subscription_by_external_id(self, external_subscription_id: str, *, for_update: bool = False) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.stripe_subscription_id == external_subscription_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()
