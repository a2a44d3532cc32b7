"""
Referral lifecycle - binding a user to a promoter and advancing the outcome.

A user can be referred exactly once. The row is created when the user applies
a promoter code and afterwards only ever moves forward, driven by billing.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from growth.errors import ConflictError, DomainRuleViolation, NotFoundError, Reason
from growth.models.promoter import Promoter, PromoterRewardConfig, RewardType
from growth.models.referral import (
    PromoterReferral,
    ReferralStatus,
    SUCCESS_STATUSES,
    can_transition,
)
from growth.models.share_link import ShareLink
from growth.utils.codes import normalize_code
from growth.utils.logging import mask_code
from growth.utils.timezone import ensure_utc, month_start_utc, utcnow

logger = logging.getLogger(__name__)


async def _latest_active_share_link(db: AsyncSession, promoter_id: uuid.UUID) -> Optional[ShareLink]:
    result = await db.execute(
        select(ShareLink)
        .where(ShareLink.promoter_id == promoter_id, ShareLink.is_active.is_(True))
        .order_by(ShareLink.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def apply_promoter_referral(
    db: AsyncSession,
    user_id: uuid.UUID,
    code: str,
    now: Optional[datetime] = None,
) -> PromoterReferral:
    """
    Attribute a user to the promoter owning `code`.

    Raises:
        NotFoundError: code is unknown.
        DomainRuleViolation(SELF_REFERRAL): the promoter is the user themself,
            whatever the promoter's status.
        DomainRuleViolation(PROMOTER_INACTIVE): promoter is not approved and active.
        ConflictError(REFERRAL_EXISTS): user already has a referral row.
    """
    now = now or utcnow()
    normalized = normalize_code(code)

    promoter = (await db.execute(
        select(Promoter).where(Promoter.referral_code == normalized)
    )).scalar_one_or_none()
    if promoter is None:
        raise NotFoundError("Invalid promoter code")
    if promoter.user_id is not None and promoter.user_id == user_id:
        raise DomainRuleViolation(Reason.SELF_REFERRAL, "You cannot use your own promoter code")
    if not promoter.is_operational:
        raise DomainRuleViolation(Reason.PROMOTER_INACTIVE, "Promoter is not active")

    existing = (await db.execute(
        select(PromoterReferral.id).where(PromoterReferral.referred_user_id == user_id)
    )).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("You have already used a promoter code", Reason.REFERRAL_EXISTS)

    link = await _latest_active_share_link(db, promoter.id)
    referral = PromoterReferral(
        promoter_id=promoter.id,
        referred_user_id=user_id,
        share_link_id=link.id if link else None,
        channel=link.channel if link else None,
        status=ReferralStatus.REGISTERED,
        registered_at=now,
    )
    try:
        async with db.begin_nested():
            db.add(referral)
            await db.flush()
    except IntegrityError:
        # A concurrent apply for the same user got there first
        raise ConflictError("You have already used a promoter code", Reason.REFERRAL_EXISTS)

    logger.info(
        "Referral applied: promoter=%s code=%s",
        str(promoter.id)[:8], mask_code(normalized),
        extra={"promoter_id": str(promoter.id), "user_id": str(user_id)},
    )
    return referral


async def _rewards_granted_this_month(db: AsyncSession, promoter_id: uuid.UUID, now: datetime) -> int:
    result = await db.execute(
        select(func.count(PromoterReferral.id)).where(
            PromoterReferral.promoter_id == promoter_id,
            PromoterReferral.reward_granted_at >= month_start_utc(now),
        )
    )
    return result.scalar() or 0


async def grant_reward(
    db: AsyncSession,
    referral: PromoterReferral,
    payment_amount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Apply the promoter's reward config to a freshly subscribed referral.

    FIXED_AMOUNT records the amount. PERCENTAGE records a share of the payment
    when billing told us the amount, otherwise leaves a note for manual
    settlement. SUBSCRIPTION_EXTENSION pushes the promoter's own subscription out.
    """
    now = now or utcnow()
    config = (await db.execute(
        select(PromoterRewardConfig).where(PromoterRewardConfig.promoter_id == referral.promoter_id)
    )).scalar_one_or_none()
    if config is None or config.reward_type == RewardType.NONE:
        return

    valid_from = ensure_utc(config.valid_from)
    valid_until = ensure_utc(config.valid_until)
    if (valid_from and now < valid_from) or (valid_until and now > valid_until):
        referral.reward_notes = "Reward config not in effect"
        return

    if config.max_rewards_per_month is not None:
        granted = await _rewards_granted_this_month(db, referral.promoter_id, now)
        if granted >= config.max_rewards_per_month:
            referral.reward_notes = "Monthly reward cap reached"
            return

    if config.reward_type == RewardType.FIXED_AMOUNT:
        referral.reward_amount = config.fixed_amount or 0.0
        referral.reward_notes = f"Fixed reward {referral.reward_amount:g}"
    elif config.reward_type == RewardType.PERCENTAGE:
        if payment_amount is None:
            referral.reward_notes = f"Pending {config.percentage or 0:g}% of first payment"
            return
        referral.reward_amount = round(payment_amount * (config.percentage or 0) / 100, 2)
        referral.reward_notes = f"{config.percentage or 0:g}% of {payment_amount:g}"
    elif config.reward_type == RewardType.SUBSCRIPTION_EXTENSION:
        months = config.extension_months or 0
        promoter = await db.get(Promoter, referral.promoter_id)
        extended = None
        if promoter is not None and promoter.user_id is not None and months > 0:
            from growth.services import billing
            extended = await billing.extend_subscription(db, promoter.user_id, relativedelta(months=months))
        if extended is None:
            referral.reward_notes = f"Pending {months} month subscription extension"
            return
        referral.reward_notes = f"Subscription extended {months} month(s)"

    referral.reward_granted_at = now
    logger.info(
        "Reward granted: promoter=%s type=%s",
        str(referral.promoter_id)[:8], config.reward_type.value,
        extra={"promoter_id": str(referral.promoter_id)},
    )


async def advance_referral(
    db: AsyncSession,
    referred_user_id: uuid.UUID,
    target: ReferralStatus,
    subscription_id: Optional[uuid.UUID] = None,
    payment_amount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Optional[PromoterReferral]:
    """
    Move a user's referral forward. Never creates a row.

    Returns None when the user was not referred. A repeated SUBSCRIBED event for
    a referral that already succeeded is a no-op, so replayed billing events do
    not grant a second reward.
    """
    now = now or utcnow()
    referral = (await db.execute(
        select(PromoterReferral)
        .where(PromoterReferral.referred_user_id == referred_user_id)
        .with_for_update()
    )).scalar_one_or_none()
    if referral is None:
        return None

    if target == ReferralStatus.SUBSCRIBED and referral.status in SUCCESS_STATUSES:
        return referral

    if not can_transition(referral.status, target):
        raise DomainRuleViolation(
            Reason.INVALID_TRANSITION,
            f"Referral cannot move from {referral.status.value} to {target.value}",
        )

    referral.status = target
    if subscription_id is not None:
        referral.subscription_id = subscription_id
    if target == ReferralStatus.REGISTERED:
        referral.registered_at = now
    elif target == ReferralStatus.SUBSCRIBED:
        referral.subscribed_at = now
        await grant_reward(db, referral, payment_amount, now)
    elif target == ReferralStatus.RENEWED:
        referral.renewed_at = now

    await db.flush()
    logger.info(
        "Referral advanced to %s: promoter=%s",
        target.value, str(referral.promoter_id)[:8],
        extra={"promoter_id": str(referral.promoter_id), "user_id": str(referred_user_id)},
    )
    return referral
