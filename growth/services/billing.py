"""
Billing bridge - the subscription side of the promoter program.

Outbound: trial subscriptions are opened here when an invite is redeemed, in
the caller's transaction, so a failed hand-off leaves the invite untouched.

Inbound: the billing system posts signed subscription events which advance
referrals, grant rewards and convert trials.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from growth.config import get_settings
from growth.models.referral import ReferralStatus
from growth.models.subscription import Plan, Subscription, SubscriptionStatus
from growth.models.trial_invite import TrialInvite
from growth.utils.logging import mask_code
from growth.utils.timezone import ensure_utc, utcnow

logger = logging.getLogger(__name__)

LIVE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE)

EVENT_ACTIVATED = "subscription.activated"
EVENT_RENEWED = "subscription.renewed"
EVENT_TRIAL_STARTED = "subscription.trial_started"


async def get_trial_plan(db: AsyncSession, plan_id: Optional[uuid.UUID] = None) -> Plan:
    """The invite's plan, or the default trial plan (created on first use)."""
    if plan_id is not None:
        plan = await db.get(Plan, plan_id)
        if plan is not None:
            return plan

    code = get_settings().default_trial_plan_code
    plan = (await db.execute(select(Plan).where(Plan.code == code))).scalar_one_or_none()
    if plan is None:
        plan = Plan(code=code, name="Free Trial", is_active=True)
        db.add(plan)
        await db.flush()
    return plan


async def _live_subscription(db: AsyncSession, user_id: uuid.UUID) -> Optional[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status.in_(LIVE_SUBSCRIPTION_STATUSES),
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def start_trial_from_invite(
    db: AsyncSession,
    user_id: uuid.UUID,
    invite: TrialInvite,
    now: Optional[datetime] = None,
) -> Subscription:
    """Open a TRIAL subscription for the redeeming user, one per redeemed invite."""
    now = now or utcnow()
    plan = await get_trial_plan(db, invite.plan_id)
    ends_at = now + timedelta(days=invite.trial_days)
    subscription = Subscription(
        user_id=user_id,
        plan_id=plan.id,
        status=SubscriptionStatus.TRIAL,
        current_period_start=now,
        current_period_end=ends_at,
        trial_ends_at=ends_at,
    )
    db.add(subscription)
    await db.flush()

    logger.info(
        "Trial subscription opened from invite %s (%d days)",
        mask_code(invite.code), invite.trial_days,
        extra={"user_id": str(user_id), "invite_id": str(invite.id)},
    )
    return subscription


async def extend_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    delta: relativedelta,
) -> Optional[Subscription]:
    """Push a user's live subscription out by `delta`. None if they have none."""
    subscription = await _live_subscription(db, user_id)
    if subscription is None:
        return None
    subscription.current_period_end = ensure_utc(subscription.current_period_end) + delta
    if subscription.status == SubscriptionStatus.TRIAL and subscription.trial_ends_at is not None:
        subscription.trial_ends_at = ensure_utc(subscription.trial_ends_at) + delta
    await db.flush()
    return subscription


async def extend_trial(db: AsyncSession, subscription_id: uuid.UUID, extra_days: int) -> Optional[Subscription]:
    """Keep a trial subscription in step with an extended invite."""
    subscription = await db.get(Subscription, subscription_id)
    if subscription is None or subscription.status != SubscriptionStatus.TRIAL:
        return None
    delta = timedelta(days=extra_days)
    subscription.current_period_end = ensure_utc(subscription.current_period_end) + delta
    if subscription.trial_ends_at is not None:
        subscription.trial_ends_at = ensure_utc(subscription.trial_ends_at) + delta
    await db.flush()
    return subscription


def _parse_uuid(value) -> Optional[uuid.UUID]:
    if value is None or value == "":
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def handle_subscription_event(db: AsyncSession, event: dict) -> dict:
    """
    Apply one billing event.

    Shape: {"type": str, "data": {"user_id", "subscription_id"?, "amount"?}}

    Returns: {"event_type": str, "handled": bool, "error": str|None}
    """
    from growth.services import referrals, trial_invites

    event_type = event.get("type")
    data = event.get("data") or {}
    user_id = _parse_uuid(data.get("user_id"))
    subscription_id = _parse_uuid(data.get("subscription_id"))

    if user_id is None:
        logger.warning("Billing event %s without a valid user_id", event_type)
        return {"event_type": event_type, "handled": False, "error": "Missing user_id"}

    logger.info("Billing event received: %s", event_type, extra={"user_id": str(user_id)})

    if event_type == EVENT_ACTIVATED:
        amount = data.get("amount")
        if subscription_id is not None:
            subscription = await db.get(Subscription, subscription_id)
            if subscription is not None and subscription.user_id == user_id:
                subscription.status = SubscriptionStatus.ACTIVE
                subscription.trial_ends_at = None
        await referrals.advance_referral(
            db, user_id, ReferralStatus.SUBSCRIBED,
            subscription_id=subscription_id,
            payment_amount=float(amount) if amount is not None else None,
        )
        await trial_invites.convert_trial_for_user(db, user_id, subscription_id)
    elif event_type == EVENT_RENEWED:
        await referrals.advance_referral(
            db, user_id, ReferralStatus.RENEWED, subscription_id=subscription_id,
        )
    elif event_type == EVENT_TRIAL_STARTED:
        await trial_invites.mark_trial_in_use(db, user_id)
    else:
        logger.info("Unhandled billing event type: %s", event_type)
        return {"event_type": event_type, "handled": False, "error": None}

    await db.flush()
    return {"event_type": event_type, "handled": True, "error": None}
