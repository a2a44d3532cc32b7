"""
Tests for growth/services/referrals.py - applying a promoter code, advancing
the referral and granting rewards.
"""
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, func

from factories import make_plan, make_promoter, make_user
from growth.errors import ConflictError, DomainRuleViolation, NotFoundError, Reason
from growth.models.promoter import PromoterRewardConfig, PromoterStatus, RewardType
from growth.models.referral import PromoterReferral, ReferralStatus
from growth.models.share_link import ShareChannel, ShareLink
from growth.models.subscription import Subscription, SubscriptionStatus
from growth.services.referrals import advance_referral, apply_promoter_referral, grant_reward
from growth.utils.timezone import ensure_utc


def _reward_config(db, promoter_id, **kwargs):
    values = {"promoter_id": promoter_id, "reward_type": RewardType.FIXED_AMOUNT, "fixed_amount": 100.0}
    values.update(kwargs)
    config = PromoterRewardConfig(**values)
    db.add(config)
    return config


async def _referred(db, **promoter_kwargs):
    promoter = make_promoter(db, **promoter_kwargs)
    user = make_user(db)
    await db.flush()
    referral = await apply_promoter_referral(db, user.id, promoter.referral_code)
    return promoter, user, referral


# ---------------------------------------------------------------------------
# apply_promoter_referral
# ---------------------------------------------------------------------------

class TestApplyPromoterReferral:
    async def test_creates_registered_referral(self, db):
        promoter, user, referral = await _referred(db)
        assert referral.promoter_id == promoter.id
        assert referral.referred_user_id == user.id
        assert referral.status == ReferralStatus.REGISTERED
        assert referral.registered_at is not None
        assert referral.share_link_id is None

    async def test_code_is_case_insensitive(self, db):
        promoter = make_promoter(db, referral_code="ABCD2345")
        user = make_user(db)
        await db.flush()
        referral = await apply_promoter_referral(db, user.id, " abcd2345 ")
        assert referral.promoter_id == promoter.id

    async def test_attributes_latest_active_share_link(self, db):
        promoter = make_promoter(db)
        user = make_user(db)
        await db.flush()
        now = datetime.now(timezone.utc)
        db.add(ShareLink(
            promoter_id=promoter.id, code="OLDLINK2", channel=ShareChannel.SMS,
            is_active=True, click_count=0, created_at=now - timedelta(days=3),
        ))
        newest = ShareLink(
            promoter_id=promoter.id, code="NEWLINK2", channel=ShareChannel.LINE,
            is_active=True, click_count=0, created_at=now,
        )
        db.add(newest)
        await db.flush()

        referral = await apply_promoter_referral(db, user.id, promoter.referral_code)
        assert referral.share_link_id == newest.id
        assert referral.channel == ShareChannel.LINE

    async def test_unknown_code(self, db):
        user = make_user(db)
        await db.flush()
        with pytest.raises(NotFoundError):
            await apply_promoter_referral(db, user.id, "NOSUCH22")

    async def test_self_referral(self, db):
        user = make_user(db)
        await db.flush()
        promoter = make_promoter(db, user_id=user.id)
        await db.flush()
        with pytest.raises(DomainRuleViolation) as exc:
            await apply_promoter_referral(db, user.id, promoter.referral_code)
        assert exc.value.reason == Reason.SELF_REFERRAL

    async def test_self_referral_wins_over_inactive(self, db):
        user = make_user(db)
        await db.flush()
        promoter = make_promoter(db, user_id=user.id, status=PromoterStatus.SUSPENDED)
        await db.flush()
        with pytest.raises(DomainRuleViolation) as exc:
            await apply_promoter_referral(db, user.id, promoter.referral_code)
        assert exc.value.reason == Reason.SELF_REFERRAL

    async def test_inactive_promoter(self, db):
        promoter = make_promoter(db, is_active=False)
        user = make_user(db)
        await db.flush()
        with pytest.raises(DomainRuleViolation) as exc:
            await apply_promoter_referral(db, user.id, promoter.referral_code)
        assert exc.value.reason == Reason.PROMOTER_INACTIVE

    async def test_second_application_conflicts(self, db):
        """A referred user can never be re-attributed, not even to another promoter."""
        _, user, _ = await _referred(db)
        other = make_promoter(db)
        await db.flush()

        with pytest.raises(ConflictError) as exc:
            await apply_promoter_referral(db, user.id, other.referral_code)
        assert exc.value.reason == Reason.REFERRAL_EXISTS

        count = (await db.execute(
            select(func.count(PromoterReferral.id)).where(PromoterReferral.referred_user_id == user.id)
        )).scalar()
        assert count == 1


# ---------------------------------------------------------------------------
# advance_referral
# ---------------------------------------------------------------------------

class TestAdvanceReferral:
    async def test_unreferred_user_returns_none(self, db):
        assert await advance_referral(db, uuid.uuid4(), ReferralStatus.SUBSCRIBED) is None

    async def test_subscribed_then_renewed(self, db):
        _, user, referral = await _referred(db)
        sub_id = uuid.uuid4()

        await advance_referral(db, user.id, ReferralStatus.SUBSCRIBED, subscription_id=sub_id)
        assert referral.status == ReferralStatus.SUBSCRIBED
        assert referral.subscription_id == sub_id
        assert referral.subscribed_at is not None

        await advance_referral(db, user.id, ReferralStatus.RENEWED)
        assert referral.status == ReferralStatus.RENEWED
        assert referral.renewed_at is not None

        # Renewal repeats every period
        await advance_referral(db, user.id, ReferralStatus.RENEWED)
        assert referral.status == ReferralStatus.RENEWED

    async def test_backwards_transition_rejected(self, db):
        _, user, _ = await _referred(db)
        await advance_referral(db, user.id, ReferralStatus.SUBSCRIBED)
        with pytest.raises(DomainRuleViolation) as exc:
            await advance_referral(db, user.id, ReferralStatus.REGISTERED)
        assert exc.value.reason == Reason.INVALID_TRANSITION

    async def test_replayed_subscribed_grants_once(self, db):
        promoter, user, referral = await _referred(db)
        _reward_config(db, promoter.id)
        await db.flush()

        await advance_referral(db, user.id, ReferralStatus.SUBSCRIBED)
        first_granted_at = referral.reward_granted_at
        await advance_referral(db, user.id, ReferralStatus.SUBSCRIBED)

        assert referral.reward_amount == 100.0
        assert referral.reward_granted_at == first_granted_at


# ---------------------------------------------------------------------------
# grant_reward
# ---------------------------------------------------------------------------

class TestGrantReward:
    async def test_no_config_no_reward(self, db):
        _, _, referral = await _referred(db)
        await grant_reward(db, referral)
        assert referral.reward_amount is None
        assert referral.reward_granted_at is None

    async def test_fixed_amount(self, db):
        promoter, _, referral = await _referred(db)
        _reward_config(db, promoter.id, fixed_amount=250.0)
        await db.flush()
        await grant_reward(db, referral)
        assert referral.reward_amount == 250.0
        assert referral.reward_granted_at is not None

    async def test_percentage_of_payment(self, db):
        promoter, _, referral = await _referred(db)
        _reward_config(db, promoter.id, reward_type=RewardType.PERCENTAGE, percentage=15)
        await db.flush()
        await grant_reward(db, referral, payment_amount=999.0)
        assert referral.reward_amount == 149.85

    async def test_percentage_without_payment_is_pending(self, db):
        promoter, _, referral = await _referred(db)
        _reward_config(db, promoter.id, reward_type=RewardType.PERCENTAGE, percentage=10)
        await db.flush()
        await grant_reward(db, referral)
        assert referral.reward_amount is None
        assert referral.reward_granted_at is None
        assert "Pending" in referral.reward_notes

    async def test_outside_validity_window(self, db):
        promoter, _, referral = await _referred(db)
        _reward_config(db, promoter.id, valid_until=datetime(2026, 1, 1, tzinfo=timezone.utc))
        await db.flush()
        await grant_reward(db, referral, now=datetime(2026, 10, 18, tzinfo=timezone.utc))
        assert referral.reward_amount is None
        assert referral.reward_notes == "Reward config not in effect"

    async def test_monthly_cap(self, db):
        promoter, _, first = await _referred(db)
        _reward_config(db, promoter.id, max_rewards_per_month=1)
        second_user = make_user(db)
        await db.flush()
        second = await apply_promoter_referral(db, second_user.id, promoter.referral_code)

        now = datetime(2026, 10, 18, tzinfo=timezone.utc)
        await grant_reward(db, first, now=now)
        await db.flush()
        await grant_reward(db, second, now=now)

        assert first.reward_amount == 100.0
        assert second.reward_amount is None
        assert second.reward_notes == "Monthly reward cap reached"

    async def test_subscription_extension(self, db):
        promoter_user = make_user(db)
        plan = make_plan(db)
        await db.flush()
        promoter, _, referral = await _referred(db, user_id=promoter_user.id)
        end = datetime(2026, 11, 30, tzinfo=timezone.utc)
        subscription = Subscription(
            user_id=promoter_user.id, plan_id=plan.id, status=SubscriptionStatus.ACTIVE,
            current_period_start=datetime(2026, 10, 30, tzinfo=timezone.utc),
            current_period_end=end,
        )
        db.add(subscription)
        _reward_config(db, promoter.id, reward_type=RewardType.SUBSCRIPTION_EXTENSION, extension_months=2)
        await db.flush()

        await grant_reward(db, referral)

        assert ensure_utc(subscription.current_period_end) == datetime(2027, 1, 30, tzinfo=timezone.utc)
        assert referral.reward_granted_at is not None

    async def test_subscription_extension_without_subscription_is_pending(self, db):
        promoter_user = make_user(db)
        await db.flush()
        promoter, _, referral = await _referred(db, user_id=promoter_user.id)
        _reward_config(db, promoter.id, reward_type=RewardType.SUBSCRIPTION_EXTENSION, extension_months=1)
        await db.flush()

        await grant_reward(db, referral)
        assert referral.reward_granted_at is None
        assert "Pending" in referral.reward_notes
