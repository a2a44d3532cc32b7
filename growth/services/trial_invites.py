"""
Trial invite lifecycle - issue, preview, redeem, expire and convert.

Issuance takes a quota slot and claims a code in one transaction.
Redemption locks the invite row and opens the billing trial before the invite
moves to ACTIVATED, so a billing failure leaves the invite redeemable.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from growth.errors import DomainRuleViolation, NotFoundError, Reason
from growth.models.promoter import Promoter
from growth.models.share_link import ShareChannel
from growth.models.subscription import Plan
from growth.models.trial_invite import (
    InviteMethod,
    REDEEMABLE_STATUSES,
    RUNNING_STATUSES,
    TrialInvite,
    TrialInviteStatus,
    can_transition,
)
from growth.services import billing
from growth.services.quota_guard import get_trial_config, reserve_issuance
from growth.utils.codes import generate_trial_code, insert_with_unique_code, normalize_code
from growth.utils.logging import mask_code
from growth.utils.pagination import like_pattern, paginate
from growth.utils.phone import normalize_or_keep
from growth.utils.timezone import ensure_utc, utcnow

logger = logging.getLogger(__name__)


async def create_trial_invite(
    db: AsyncSession,
    promoter_id: uuid.UUID,
    trial_days: Optional[int] = None,
    invite_method: InviteMethod = InviteMethod.CODE,
    channel: Optional[ShareChannel] = None,
    invitee_name: Optional[str] = None,
    invitee_phone: Optional[str] = None,
    invitee_email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TrialInvite:
    """
    Issue a trial invite for a promoter.

    trial_days defaults to the promoter's configured default.

    Raises:
        NotFoundError: unknown promoter.
        DomainRuleViolation: promoter inactive, or a quota rule denied issuance.
        CodeSpaceExhaustedError: no unique code could be claimed.
    """
    promoter = await db.get(Promoter, promoter_id)
    if promoter is None:
        raise NotFoundError("Promoter not found")
    if not promoter.is_operational:
        raise DomainRuleViolation(Reason.PROMOTER_INACTIVE, "Promoter is not active")

    if trial_days is None:
        config = await get_trial_config(db, promoter_id)
        if config is None:
            raise DomainRuleViolation(Reason.NOT_AUTHORIZED, "Trial issuance is not enabled for this promoter")
        trial_days = config.default_trial_days

    config = await reserve_issuance(db, promoter_id, trial_days, now)

    def build(code: str) -> TrialInvite:
        return TrialInvite(
            code=code,
            promoter_id=promoter_id,
            plan_id=config.trial_plan_id,
            trial_days=trial_days,
            invite_method=invite_method,
            channel=channel,
            invitee_name=invitee_name,
            invitee_phone=normalize_or_keep(invitee_phone),
            invitee_email=invitee_email,
            status=TrialInviteStatus.PENDING,
            link_click_count=0,
        )

    invite = await insert_with_unique_code(db, TrialInvite.code, build, generate_trial_code)

    logger.info(
        "Trial invite issued: code=%s promoter=%s days=%d",
        mask_code(invite.code), str(promoter_id)[:8], trial_days,
        extra={"promoter_id": str(promoter_id), "invite_id": str(invite.id)},
    )
    return invite


async def _find_by_code(db: AsyncSession, code: str, for_update: bool = False) -> TrialInvite:
    query = select(TrialInvite).where(TrialInvite.code == normalize_code(code))
    if for_update:
        query = query.with_for_update()
    invite = (await db.execute(query)).scalar_one_or_none()
    if invite is None:
        raise NotFoundError("Invalid trial code")
    return invite


async def get_trial_invite_info(db: AsyncSession, code: str, now: Optional[datetime] = None) -> dict:
    """
    Public preview of an invite. Counts as a link click whatever the status.

    Returns: {"code", "trial_days", "promoter_name", "plan_name", "status", "is_available"}
    """
    now = now or utcnow()
    invite = await _find_by_code(db, code)

    await db.execute(
        update(TrialInvite)
        .where(TrialInvite.id == invite.id)
        .values(link_click_count=TrialInvite.link_click_count + 1, last_clicked_at=now)
        .execution_options(synchronize_session=False)
    )

    promoter = await db.get(Promoter, invite.promoter_id)
    plan_name = None
    if invite.plan_id is not None:
        plan = await db.get(Plan, invite.plan_id)
        plan_name = plan.name if plan else None

    return {
        "code": invite.code,
        "trial_days": invite.trial_days,
        "promoter_name": promoter.name if promoter else None,
        "plan_name": plan_name,
        "status": invite.status.value,
        "is_available": invite.status in REDEEMABLE_STATUSES,
    }


async def claim_trial(
    db: AsyncSession,
    user_id: uuid.UUID,
    code: str,
    now: Optional[datetime] = None,
):
    """
    Redeem an invite for `user_id` and return the new trial subscription.

    The row lock serializes concurrent claims; the loser sees ACTIVATED and
    gets INVITE_NOT_AVAILABLE. Exceptions from billing propagate and the
    request transaction rolls back.
    """
    now = now or utcnow()
    invite = await _find_by_code(db, code, for_update=True)
    if invite.status not in REDEEMABLE_STATUSES:
        raise DomainRuleViolation(Reason.INVITE_NOT_AVAILABLE, "This trial invite is no longer available")

    subscription = await billing.start_trial_from_invite(db, user_id, invite, now)

    invite.status = TrialInviteStatus.ACTIVATED
    invite.activated_user_id = user_id
    invite.activated_at = now
    invite.expires_at = now + timedelta(days=invite.trial_days)
    invite.subscription_id = subscription.id
    await db.flush()

    logger.info(
        "Trial claimed: code=%s promoter=%s",
        mask_code(invite.code), str(invite.promoter_id)[:8],
        extra={"invite_id": str(invite.id), "user_id": str(user_id)},
    )
    return subscription


async def _get_invite(db: AsyncSession, invite_id: uuid.UUID, promoter_id: Optional[uuid.UUID] = None) -> TrialInvite:
    invite = await db.get(TrialInvite, invite_id)
    if invite is None or (promoter_id is not None and invite.promoter_id != promoter_id):
        raise NotFoundError("Trial invite not found")
    return invite


def _require_transition(invite: TrialInvite, target: TrialInviteStatus) -> None:
    if not can_transition(invite.status, target):
        raise DomainRuleViolation(
            Reason.INVALID_TRANSITION,
            f"Trial invite cannot move from {invite.status.value} to {target.value}",
        )


async def cancel_trial_invite(db: AsyncSession, invite_id: uuid.UUID, now: Optional[datetime] = None) -> TrialInvite:
    invite = await _get_invite(db, invite_id)
    _require_transition(invite, TrialInviteStatus.CANCELLED)
    invite.status = TrialInviteStatus.CANCELLED
    invite.cancelled_at = now or utcnow()
    await db.flush()
    logger.info("Trial invite cancelled: %s", mask_code(invite.code), extra={"invite_id": str(invite.id)})
    return invite


async def extend_trial_invite(db: AsyncSession, invite_id: uuid.UUID, extra_days: int) -> TrialInvite:
    """Lengthen a running trial. The linked trial subscription moves with it."""
    if extra_days <= 0:
        raise DomainRuleViolation(Reason.DAYS_OUT_OF_RANGE, "Extra days must be positive")
    invite = await _get_invite(db, invite_id)
    if invite.status not in RUNNING_STATUSES:
        raise DomainRuleViolation(Reason.INVALID_STATUS, "Only running trials can be extended")
    if invite.expires_at is None:
        raise DomainRuleViolation(Reason.TRIAL_NOT_STARTED, "Trial has not started")

    invite.expires_at = ensure_utc(invite.expires_at) + timedelta(days=extra_days)
    invite.trial_days = invite.trial_days + extra_days
    if invite.subscription_id is not None:
        await billing.extend_trial(db, invite.subscription_id, extra_days)
    await db.flush()
    return invite


async def mark_sent(db: AsyncSession, invite_id: uuid.UUID, promoter_id: Optional[uuid.UUID] = None) -> TrialInvite:
    """PENDING -> SENT, once the promoter has delivered the invite."""
    invite = await _get_invite(db, invite_id, promoter_id)
    _require_transition(invite, TrialInviteStatus.SENT)
    invite.status = TrialInviteStatus.SENT
    await db.flush()
    return invite


async def expire_due_invites(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Move running trials past expires_at to EXPIRED. Safe to run repeatedly."""
    now = now or utcnow()
    result = await db.execute(
        update(TrialInvite)
        .where(
            TrialInvite.status.in_(RUNNING_STATUSES),
            TrialInvite.expires_at.is_not(None),
            TrialInvite.expires_at < now,
        )
        .values(status=TrialInviteStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def _running_invite_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    subscription_id: Optional[uuid.UUID] = None,
) -> Optional[TrialInvite]:
    conditions = [TrialInvite.activated_user_id == user_id]
    if subscription_id is not None:
        conditions = [or_(TrialInvite.subscription_id == subscription_id, *conditions)]
    result = await db.execute(
        select(TrialInvite)
        .where(*conditions, TrialInvite.status.in_(RUNNING_STATUSES))
        .order_by(TrialInvite.activated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def convert_trial_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    subscription_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Optional[TrialInvite]:
    """A paid subscription started: the user's running trial becomes CONVERTED."""
    invite = await _running_invite_for_user(db, user_id, subscription_id)
    if invite is None:
        return None
    invite.status = TrialInviteStatus.CONVERTED
    invite.converted_at = now or utcnow()
    await db.flush()
    logger.info(
        "Trial converted: code=%s promoter=%s",
        mask_code(invite.code), str(invite.promoter_id)[:8],
        extra={"invite_id": str(invite.id), "promoter_id": str(invite.promoter_id)},
    )
    return invite


async def mark_trial_in_use(db: AsyncSession, user_id: uuid.UUID) -> Optional[TrialInvite]:
    """ACTIVATED -> ACTIVE once billing reports the trial is being used."""
    invite = await _running_invite_for_user(db, user_id)
    if invite is None or invite.status != TrialInviteStatus.ACTIVATED:
        return invite
    invite.status = TrialInviteStatus.ACTIVE
    await db.flush()
    return invite


async def list_trial_invites(
    db: AsyncSession,
    promoter_id: Optional[uuid.UUID] = None,
    status: Optional[TrialInviteStatus] = None,
    search: Optional[str] = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    query = select(TrialInvite)
    if promoter_id is not None:
        query = query.where(TrialInvite.promoter_id == promoter_id)
    if status is not None:
        query = query.where(TrialInvite.status == status)
    if search:
        pattern = like_pattern(search)
        query = query.where(or_(
            TrialInvite.code.ilike(pattern, escape="\\"),
            TrialInvite.invitee_name.ilike(pattern, escape="\\"),
            TrialInvite.invitee_phone.ilike(pattern, escape="\\"),
            TrialInvite.invitee_email.ilike(pattern, escape="\\"),
        ))
    query = query.order_by(TrialInvite.created_at.desc())
    return await paginate(db, query, page, per_page)
