"""Tests for the scheduled expiry sweep and the seven-day expiry reminder."""

from datetime import datetime, timedelta, timezone

import pytest

from app.components.billing.expiration import ExpirationSweeper
from app.models.credit import CreditSourceType, CreditStatus
from tests.conftest import add_credit, create_user, credits_for


@pytest.fixture
def sweeper(session_factory, notifier):
    return ExpirationSweeper(session_factory, notifier=notifier)


class TestExpireOldCredits:
    def test_expires_only_lapsed_active_credits(self, sweeper, session_factory):
        user_id = create_user(session_factory)
        now = datetime.now(timezone.utc)
        lapsed = add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now - timedelta(hours=1))
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now + timedelta(days=5))
        add_credit(session_factory, user_id, CreditSourceType.PURCHASE)
        add_credit(
            session_factory,
            user_id,
            CreditSourceType.SUBSCRIPTION,
            expires_at=now - timedelta(days=2),
            status=CreditStatus.USED,
        )

        assert sweeper.expire_old_credits(now) == 1

        [expired] = credits_for(session_factory, user_id, status=CreditStatus.EXPIRED)
        assert expired.id == lapsed
        assert len(credits_for(session_factory, user_id, status=CreditStatus.ACTIVE)) == 2
        assert len(credits_for(session_factory, user_id, status=CreditStatus.USED)) == 1

    def test_second_run_is_a_no_op(self, sweeper, session_factory):
        user_id = create_user(session_factory)
        now = datetime.now(timezone.utc)
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now - timedelta(minutes=5))
        assert sweeper.expire_old_credits(now) == 1
        assert sweeper.expire_old_credits(now) == 0

    def test_counts_across_users(self, sweeper, session_factory):
        now = datetime.now(timezone.utc)
        for _ in range(3):
            user_id = create_user(session_factory)
            add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now - timedelta(days=1))
        assert sweeper.expire_old_credits(now) == 3

    def test_expired_credits_leave_the_balance(self, sweeper, ledger, session_factory):
        user_id = create_user(session_factory)
        now = datetime.now(timezone.utc)
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now - timedelta(days=1))
        add_credit(session_factory, user_id, CreditSourceType.PURCHASE)

        sweeper.expire_old_credits(now)

        balance = ledger.get_balance(user_id)
        assert balance.available_credits == 1
        assert balance.breakdown.subscription == 0


class TestExpirationWarnings:
    def test_warns_once_per_user_for_credits_a_week_out(self, sweeper, session_factory, notifier):
        user_id = create_user(session_factory)
        now = datetime.now(timezone.utc)
        expiry = now + timedelta(days=7)
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=expiry)
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=expiry + timedelta(hours=1))
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now + timedelta(days=20))

        assert sweeper.send_expiration_warnings(now) == {"sent": 1, "failed": 0}

        [call] = notifier.named("expiration")
        assert call[1:3] == (user_id, 2)
        assert abs((call[3] - expiry).total_seconds()) < 1
        warned = [c for c in credits_for(session_factory, user_id) if c.expiration_warning_sent_at is not None]
        assert len(warned) == 2

        assert sweeper.send_expiration_warnings(now) == {"sent": 0, "failed": 0}
        assert len(notifier.named("expiration")) == 1

    def test_ignores_credits_outside_window(self, sweeper, session_factory, notifier):
        user_id = create_user(session_factory)
        now = datetime.now(timezone.utc)
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now + timedelta(days=2))
        add_credit(session_factory, user_id, CreditSourceType.PURCHASE)
        add_credit(
            session_factory,
            user_id,
            CreditSourceType.SUBSCRIPTION,
            expires_at=now + timedelta(days=7),
            status=CreditStatus.USED,
        )

        assert sweeper.send_expiration_warnings(now) == {"sent": 0, "failed": 0}
        assert notifier.calls == []

    def test_undelivered_warning_is_retried_next_run(self, sweeper, session_factory, notifier):
        user_id = create_user(session_factory)
        now = datetime.now(timezone.utc)
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now + timedelta(days=7))
        notifier.result = False

        assert sweeper.send_expiration_warnings(now) == {"sent": 0, "failed": 1}
        assert all(c.expiration_warning_sent_at is None for c in credits_for(session_factory, user_id))

        notifier.result = True
        assert sweeper.send_expiration_warnings(now) == {"sent": 1, "failed": 0}

    def test_notifier_error_is_counted_and_does_not_stop_the_batch(self, session_factory, notifier):
        now = datetime.now(timezone.utc)
        first = create_user(session_factory)
        second = create_user(session_factory)
        for user_id in (first, second):
            add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now + timedelta(days=7))

        class FlakyNotifier:
            def __init__(self):
                self.delivered = []

            def send_credit_expiration_warning(self, user_id, expiring_credits, expires_at):
                if user_id == first:
                    raise RuntimeError("mail provider timeout")
                self.delivered.append(user_id)
                return True

        flaky = FlakyNotifier()
        result = ExpirationSweeper(session_factory, notifier=flaky).send_expiration_warnings(now)

        assert result == {"sent": 1, "failed": 1}
        assert flaky.delivered == [second]

    def test_warning_mark_is_configurable(self, session_factory, notifier):
        user_id = create_user(session_factory)
        now = datetime.now(timezone.utc)
        add_credit(session_factory, user_id, CreditSourceType.SUBSCRIPTION, expires_at=now + timedelta(days=3))

        assert ExpirationSweeper(session_factory, notifier=notifier).send_expiration_warnings(now)["sent"] == 0
        result = ExpirationSweeper(session_factory, notifier=notifier, warning_days=3).send_expiration_warnings(now)

        assert result == {"sent": 1, "failed": 0}
