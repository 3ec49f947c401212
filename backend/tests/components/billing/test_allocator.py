"""Tests for credit issuance: subscription replace semantics, purchases, referrals."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import exists as sa_exists, false, select
from sqlalchemy.exc import IntegrityError

from app.components.billing import allocator as allocator_module
from app.components.billing.errors import InvalidReferral, UnknownPlan, UserNotFound
from app.models.credit import CreditSourceType, CreditStatus
from app.models.pay_per_use_charge import PayPerUseCharge
from app.models.referral_reward import ReferralReward
from app.models.user import User
from tests.conftest import add_credit, create_user, credits_for, load, usage_rows


def _period_end(days=30):
    return datetime.now(timezone.utc) + timedelta(days=days)


class TestSubscriptionGrant:
    def test_grants_plan_allotment(self, ledger, session_factory):
        user_id = create_user(session_factory)
        period_end = _period_end()

        result = ledger.grant_subscription_credits(user_id, "Starter", period_end, subscription_id=7)

        assert result.granted == 4
        assert result.removed == 0
        credits = credits_for(session_factory, user_id)
        assert len(credits) == 4
        for credit in credits:
            assert credit.source_type == CreditSourceType.SUBSCRIPTION
            assert credit.priority == 50
            assert credit.status == CreditStatus.ACTIVE
            assert credit.value_usd == 5.0
            assert credit.source_id == "7"
            assert credit.expires_at.replace(tzinfo=timezone.utc) == period_end

    def test_replace_semantics_starter_then_professional(self, ledger, session_factory):
        user_id = create_user(session_factory)
        ledger.grant_subscription_credits(user_id, "Starter", _period_end())
        result = ledger.grant_subscription_credits(user_id, "Professional", _period_end())

        assert result.removed == 4
        active = credits_for(session_factory, user_id, status=CreditStatus.ACTIVE)
        assert len(active) == 8
        assert {credit.source_description for credit in active} == {"Professional plan allocation"}
        assert all(credit.value_usd == 2.5 for credit in active)

    def test_upgrade_after_partial_use(self, ledger, session_factory):
        user_id = create_user(session_factory)
        ledger.grant_subscription_credits(user_id, "Starter", _period_end())
        ledger.use_credit(user_id, "generation", feature_id="post-1")

        ledger.grant_subscription_credits(user_id, "Professional", _period_end())

        active = credits_for(session_factory, user_id, status=CreditStatus.ACTIVE)
        assert len(active) == 8
        assert all(credit.source_description == "Professional plan allocation" for credit in active)
        used = credits_for(session_factory, user_id, status=CreditStatus.USED)
        assert len(used) == 1
        assert used[0].source_description == "Starter plan allocation"

    def test_regrant_same_plan_is_idempotent(self, ledger, session_factory):
        user_id = create_user(session_factory)
        period_end = _period_end()
        ledger.grant_subscription_credits(user_id, "Professional", period_end)
        ledger.grant_subscription_credits(user_id, "Professional", period_end)
        assert len(credits_for(session_factory, user_id, status=CreditStatus.ACTIVE)) == 8

    def test_other_sources_survive_plan_change(self, ledger, session_factory):
        user_id = create_user(session_factory)
        add_credit(session_factory, user_id, CreditSourceType.PURCHASE)
        add_credit(session_factory, user_id, CreditSourceType.REFERRAL)
        ledger.grant_subscription_credits(user_id, "Starter", _period_end())
        ledger.grant_subscription_credits(user_id, "Free", _period_end())

        active = credits_for(session_factory, user_id, status=CreditStatus.ACTIVE)
        sources = sorted(credit.source_type.value for credit in active)
        assert sources == ["purchase", "referral", "subscription"]

    def test_unlimited_plan_creates_no_records_and_clears_old_allotment(self, ledger, session_factory):
        user_id = create_user(session_factory)
        ledger.grant_subscription_credits(user_id, "Starter", _period_end())

        result = ledger.grant_subscription_credits(user_id, "Pro", _period_end())

        assert result.granted == 0
        assert result.removed == 4
        assert credits_for(session_factory, user_id, source_type=CreditSourceType.SUBSCRIPTION) == []

    def test_resets_usage_counter(self, ledger, session_factory):
        user_id = create_user(session_factory)
        ledger.grant_subscription_credits(user_id, "Starter", _period_end())
        ledger.use_credit(user_id, "generation")
        assert usage_rows(session_factory, user_id)[0].usage_count == 1

        ledger.grant_subscription_credits(user_id, "Professional", _period_end())

        rows = usage_rows(session_factory, user_id)
        assert len(rows) == 1
        assert rows[0].usage_count == 0
        assert rows[0].limit_count == 8

    def test_unknown_plan_mutates_nothing(self, ledger, session_factory):
        user_id = create_user(session_factory)
        ledger.grant_subscription_credits(user_id, "Starter", _period_end())
        with pytest.raises(UnknownPlan):
            ledger.grant_subscription_credits(user_id, "Enterprise", _period_end())
        assert len(credits_for(session_factory, user_id, status=CreditStatus.ACTIVE)) == 4

    def test_unknown_user(self, ledger, session_factory):
        with pytest.raises(UserNotFound):
            ledger.grant_subscription_credits(424242, "Starter", _period_end())


class TestPurchaseGrant:
    def test_grant_purchase_credit(self, ledger, session_factory):
        user_id = create_user(session_factory)
        result = ledger.grant_purchase_credit(user_id, charge_id=99, value_usd=15.0)

        [credit] = credits_for(session_factory, user_id)
        assert result.credit_ids == [credit.id]
        assert credit.source_type == CreditSourceType.PURCHASE
        assert credit.priority == 100
        assert credit.expires_at is None
        assert credit.source_id == "99"

    def test_record_purchase_links_charge(self, ledger, session_factory):
        user_id = create_user(session_factory)
        ledger.allocator.record_purchase(user_id, external_ref="evt_1")

        with session_factory() as db:
            charge = db.execute(select(PayPerUseCharge).where(PayPerUseCharge.user_id == user_id)).scalars().one()
        [credit] = credits_for(session_factory, user_id)
        assert credit.source_id == str(charge.id)
        assert charge.total_amount == 15.0
        assert charge.external_ref == "evt_1"
        assert credit.value_usd == 15.0

    def test_purchases_accumulate(self, ledger, session_factory):
        user_id = create_user(session_factory)
        ledger.grant_purchase_credit(user_id, 1, 15.0)
        ledger.grant_purchase_credit(user_id, 2, 15.0)
        assert len(credits_for(session_factory, user_id, status=CreditStatus.ACTIVE)) == 2


class TestReferralGrant:
    def test_grants_one_credit_each_and_counts_once(self, ledger, session_factory, notifier):
        referrer = create_user(session_factory)
        referred = create_user(session_factory)

        result = ledger.grant_referral_credits(referrer, referred)

        assert result.granted == 2
        for user_id in (referrer, referred):
            [credit] = credits_for(session_factory, user_id)
            assert credit.source_type == CreditSourceType.REFERRAL
            assert credit.priority == 75
            assert credit.expires_at is None
        user = load(session_factory, User, referrer)
        assert user.successful_referrals == 1
        assert user.lifetime_referral_rewards_earned == 15.0
        assert load(session_factory, User, referred).successful_referrals == 0
        assert [call[1] for call in notifier.named("referral_reward")] == [referrer, referred]

        with session_factory() as db:
            roles = sorted(r.role for r in db.execute(select(ReferralReward)).scalars().all())
        assert roles == ["referred", "referrer"]

    def test_self_referral_rejected(self, ledger, session_factory):
        user_id = create_user(session_factory)
        with pytest.raises(InvalidReferral):
            ledger.grant_referral_credits(user_id, user_id)
        assert credits_for(session_factory, user_id) == []

    def test_referred_user_rewarded_once(self, ledger, session_factory):
        referrer = create_user(session_factory)
        other_referrer = create_user(session_factory)
        referred = create_user(session_factory)
        ledger.grant_referral_credits(referrer, referred)

        with pytest.raises(InvalidReferral):
            ledger.grant_referral_credits(other_referrer, referred)
        assert credits_for(session_factory, other_referrer) == []
        assert len(credits_for(session_factory, referred)) == 1

    def test_referred_user_is_unique_in_storage(self, ledger, session_factory):
        referrer = create_user(session_factory)
        referred = create_user(session_factory)
        ledger.grant_referral_credits(referrer, referred)

        with pytest.raises(IntegrityError):
            with session_factory() as db, db.begin():
                db.add(ReferralReward(user_id=referred, counterpart_user_id=referrer, role="referred", reward_value=15.0))

        with session_factory() as db, db.begin():
            db.add(ReferralReward(user_id=referrer, counterpart_user_id=referred, role="referrer", reward_value=15.0))

    def test_concurrent_referred_reward_is_rejected(self, ledger, session_factory, monkeypatch):
        referrer = create_user(session_factory)
        other_referrer = create_user(session_factory)
        referred = create_user(session_factory)
        ledger.grant_referral_credits(referrer, referred)

        class _StaleCheck:
            # What a concurrent transaction sees before the first reward commits.
            def where(self, *criteria):
                return sa_exists().where(false())

        monkeypatch.setattr(allocator_module, "exists", lambda: _StaleCheck())

        with pytest.raises(InvalidReferral):
            ledger.grant_referral_credits(other_referrer, referred)
        assert credits_for(session_factory, other_referrer) == []
        assert len(credits_for(session_factory, referred)) == 1

    def test_counter_failure_does_not_undo_grant(self, ledger, session_factory, monkeypatch):
        referrer = create_user(session_factory)
        referred = create_user(session_factory)

        def _boom(*args, **kwargs):
            raise RuntimeError("counter store down")

        monkeypatch.setattr(ledger.allocator._referrals, "increment", _boom)
        ledger.grant_referral_credits(referrer, referred)

        assert len(credits_for(session_factory, referrer)) == 1
        assert load(session_factory, User, referrer).successful_referrals == 0
