"""
Promoter administration - registration, approval, profile and program settings.

Self-registered promoters start PENDING and inactive; an admin approves them.
Admin-created promoters are approved immediately. Every promoter gets a trial
config on creation so issuance rules always have a row to act on.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from growth.errors import ConflictError, DomainRuleViolation, NotFoundError, Reason
from growth.models.promoter import (
    Promoter,
    PromoterRewardConfig,
    PromoterStatus,
    PromoterTrialConfig,
    PromoterType,
)
from growth.models.referral import PromoterReferral, ReferralStatus, SUCCESS_STATUSES
from growth.models.share_link import ShareChannel, ShareLink
from growth.services.quota_guard import get_trial_config, resync_counters
from growth.utils.codes import (
    generate_referral_code,
    generate_share_link_code,
    insert_with_unique_code,
)
from growth.utils.pagination import like_pattern, paginate
from growth.utils.phone import normalize_or_keep
from growth.utils.timezone import utcnow

logger = logging.getLogger(__name__)

# Fields a promoter may edit on their own profile
PROFILE_FIELDS = (
    "name", "phone", "email", "line_id", "organization", "region", "address",
    "category", "social_links", "avatar_url", "joined_reason", "notes",
)

REWARD_CONFIG_FIELDS = (
    "reward_type", "fixed_amount", "percentage", "extension_months",
    "max_rewards_per_month", "valid_from", "valid_until",
)

TRIAL_CONFIG_FIELDS = (
    "can_issue_trial", "min_trial_days", "max_trial_days", "default_trial_days",
    "trial_plan_id", "monthly_issue_limit", "total_issue_limit",
)


def _profile_values(data: dict) -> dict:
    values = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
    if "phone" in values:
        values["phone"] = normalize_or_keep(values["phone"])
    if values.get("email"):
        values["email"] = values["email"].strip().lower()
    return values


async def get_promoter(db: AsyncSession, promoter_id: uuid.UUID) -> Promoter:
    promoter = await db.get(Promoter, promoter_id)
    if promoter is None:
        raise NotFoundError("Promoter not found")
    return promoter


async def get_promoter_for_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[Promoter]:
    result = await db.execute(select(Promoter).where(Promoter.user_id == user_id))
    return result.scalar_one_or_none()


async def _insert_promoter(db: AsyncSession, values: dict) -> Promoter:
    def build(code: str) -> Promoter:
        return Promoter(referral_code=code, **values)

    promoter = await insert_with_unique_code(db, Promoter.referral_code, build, generate_referral_code)
    db.add(PromoterTrialConfig(promoter_id=promoter.id))
    await db.flush()
    return promoter


async def register_promoter(db: AsyncSession, data: dict) -> Promoter:
    """
    Public self-registration. The promoter waits for approval.

    Raises ConflictError on a duplicate email or phone.
    """
    values = _profile_values(data)
    if values.get("email"):
        taken = (await db.execute(
            select(Promoter.id).where(func.lower(Promoter.email) == values["email"])
        )).first()
        if taken:
            raise ConflictError("Email is already registered", Reason.DUPLICATE_EMAIL)
    if values.get("phone"):
        taken = (await db.execute(
            select(Promoter.id).where(Promoter.phone == values["phone"])
        )).first()
        if taken:
            raise ConflictError("Phone is already registered", Reason.DUPLICATE_PHONE)

    promoter = await _insert_promoter(db, {
        **values,
        "type": PromoterType.EXTERNAL,
        "status": PromoterStatus.PENDING,
        "is_active": False,
    })
    logger.info("Promoter registered (pending): %s", promoter.name, extra={"promoter_id": str(promoter.id)})
    return promoter


async def create_promoter(
    db: AsyncSession,
    data: dict,
    admin_id: uuid.UUID,
    reward_config: Optional[dict] = None,
    trial_config: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Promoter:
    """Admin-created promoter, approved and active from the start."""
    now = now or utcnow()
    user_id = data.get("user_id")
    if user_id is not None:
        existing = await get_promoter_for_user(db, user_id)
        if existing is not None:
            raise ConflictError("User is already a promoter", Reason.ALREADY_PROMOTER)

    promoter = await _insert_promoter(db, {
        **_profile_values(data),
        "user_id": user_id,
        "type": data.get("type") or PromoterType.INTERNAL,
        "status": PromoterStatus.APPROVED,
        "is_active": True,
        "approved_at": now,
        "approved_by": admin_id,
    })
    if reward_config:
        await upsert_reward_config(db, promoter.id, reward_config)
    if trial_config:
        await upsert_trial_config(db, promoter.id, trial_config)

    logger.info("Promoter created by admin: %s", promoter.name, extra={"promoter_id": str(promoter.id)})
    return promoter


async def approve_promoter(
    db: AsyncSession,
    promoter_id: uuid.UUID,
    admin_id: uuid.UUID,
    reward_config: Optional[dict] = None,
    trial_config: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Promoter:
    promoter = await get_promoter(db, promoter_id)
    if promoter.status != PromoterStatus.PENDING:
        raise DomainRuleViolation(Reason.INVALID_STATUS, "Only pending promoters can be approved")

    promoter.status = PromoterStatus.APPROVED
    promoter.is_active = True
    promoter.approved_at = now or utcnow()
    promoter.approved_by = admin_id
    if reward_config:
        await upsert_reward_config(db, promoter.id, reward_config)
    if trial_config:
        await upsert_trial_config(db, promoter.id, trial_config)
    await db.flush()
    logger.info("Promoter approved: %s", promoter.name, extra={"promoter_id": str(promoter.id)})
    return promoter


async def reject_promoter(db: AsyncSession, promoter_id: uuid.UUID, reason: Optional[str] = None) -> Promoter:
    promoter = await get_promoter(db, promoter_id)
    if promoter.status != PromoterStatus.PENDING:
        raise DomainRuleViolation(Reason.INVALID_STATUS, "Only pending promoters can be rejected")
    promoter.status = PromoterStatus.SUSPENDED
    promoter.is_active = False
    if reason:
        promoter.notes = f"{promoter.notes}\n{reason}" if promoter.notes else reason
    await db.flush()
    logger.info("Promoter rejected: %s", promoter.name, extra={"promoter_id": str(promoter.id)})
    return promoter


async def suspend_promoter(db: AsyncSession, promoter_id: uuid.UUID) -> Promoter:
    promoter = await get_promoter(db, promoter_id)
    promoter.status = PromoterStatus.SUSPENDED
    promoter.is_active = False
    await db.flush()
    logger.info("Promoter suspended: %s", promoter.name, extra={"promoter_id": str(promoter.id)})
    return promoter


async def activate_promoter(db: AsyncSession, promoter_id: uuid.UUID) -> Promoter:
    promoter = await get_promoter(db, promoter_id)
    promoter.status = PromoterStatus.APPROVED
    promoter.is_active = True
    await db.flush()
    logger.info("Promoter activated: %s", promoter.name, extra={"promoter_id": str(promoter.id)})
    return promoter


async def update_profile(db: AsyncSession, promoter_id: uuid.UUID, changes: dict) -> Promoter:
    """Apply whitelisted profile edits. Anything else in `changes` is ignored."""
    promoter = await get_promoter(db, promoter_id)
    for field, value in _profile_values(changes).items():
        setattr(promoter, field, value)
    await db.flush()
    return promoter


async def get_reward_config(db: AsyncSession, promoter_id: uuid.UUID) -> Optional[PromoterRewardConfig]:
    result = await db.execute(
        select(PromoterRewardConfig).where(PromoterRewardConfig.promoter_id == promoter_id)
    )
    return result.scalar_one_or_none()


async def upsert_reward_config(db: AsyncSession, promoter_id: uuid.UUID, data: dict) -> PromoterRewardConfig:
    await get_promoter(db, promoter_id)
    config = await get_reward_config(db, promoter_id)
    if config is None:
        config = PromoterRewardConfig(promoter_id=promoter_id)
        db.add(config)
    for field in REWARD_CONFIG_FIELDS:
        if field in data:
            setattr(config, field, data[field])
    await db.flush()
    return config


async def upsert_trial_config(
    db: AsyncSession,
    promoter_id: uuid.UUID,
    data: dict,
    now: Optional[datetime] = None,
) -> PromoterTrialConfig:
    """
    Create or update a promoter's trial settings.

    Issuance counters are rebuilt from invite rows so a changed limit applies
    to what was really issued.
    """
    await get_promoter(db, promoter_id)
    config = await get_trial_config(db, promoter_id)
    if config is None:
        config = PromoterTrialConfig(promoter_id=promoter_id)
        db.add(config)
    for field in TRIAL_CONFIG_FIELDS:
        if field in data:
            setattr(config, field, data[field])

    min_days = config.min_trial_days if config.min_trial_days is not None else 7
    max_days = config.max_trial_days if config.max_trial_days is not None else 30
    default_days = config.default_trial_days if config.default_trial_days is not None else 14
    if min_days > max_days or not (min_days <= default_days <= max_days):
        raise DomainRuleViolation(
            Reason.DAYS_OUT_OF_RANGE,
            "Trial days must satisfy min <= default <= max",
        )

    await db.flush()
    return await resync_counters(db, config, now)


async def list_promoters(
    db: AsyncSession,
    status: Optional[PromoterStatus] = None,
    promoter_type: Optional[PromoterType] = None,
    search: Optional[str] = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    query = select(Promoter)
    if status is not None:
        query = query.where(Promoter.status == status)
    if promoter_type is not None:
        query = query.where(Promoter.type == promoter_type)
    if search:
        pattern = like_pattern(search)
        query = query.where(or_(
            Promoter.name.ilike(pattern, escape="\\"),
            Promoter.email.ilike(pattern, escape="\\"),
            Promoter.phone.ilike(pattern, escape="\\"),
            Promoter.referral_code.ilike(pattern, escape="\\"),
            Promoter.organization.ilike(pattern, escape="\\"),
        ))
    query = query.order_by(Promoter.created_at.desc())
    return await paginate(db, query, page, per_page)


async def list_pending(db: AsyncSession, page: int = 1, per_page: int = 20) -> dict:
    return await list_promoters(db, status=PromoterStatus.PENDING, page=page, per_page=per_page)


async def get_promoter_detail(db: AsyncSession, promoter_id: uuid.UUID) -> dict:
    """Promoter with its configs and headline referral counts."""
    promoter = await get_promoter(db, promoter_id)
    total_referrals = (await db.execute(
        select(func.count(PromoterReferral.id)).where(PromoterReferral.promoter_id == promoter_id)
    )).scalar() or 0
    success_referrals = (await db.execute(
        select(func.count(PromoterReferral.id)).where(
            PromoterReferral.promoter_id == promoter_id,
            PromoterReferral.status.in_(SUCCESS_STATUSES),
        )
    )).scalar() or 0
    return {
        "promoter": promoter,
        "reward_config": await get_reward_config(db, promoter_id),
        "trial_config": await get_trial_config(db, promoter_id),
        "total_referrals": total_referrals,
        "success_referrals": success_referrals,
    }


async def create_share_link(
    db: AsyncSession,
    promoter_id: uuid.UUID,
    channel: ShareChannel,
    target_url: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> ShareLink:
    promoter = await get_promoter(db, promoter_id)
    if not promoter.is_operational:
        raise DomainRuleViolation(Reason.PROMOTER_INACTIVE, "Promoter is not active")

    def build(code: str) -> ShareLink:
        return ShareLink(
            promoter_id=promoter_id,
            code=code,
            channel=channel,
            target_url=target_url,
            expires_at=expires_at,
            is_active=True,
            click_count=0,
        )

    link = await insert_with_unique_code(db, ShareLink.code, build, generate_share_link_code)
    logger.info(
        "Share link created: channel=%s promoter=%s",
        channel.value, str(promoter_id)[:8],
        extra={"promoter_id": str(promoter_id)},
    )
    return link


async def list_share_links(db: AsyncSession, promoter_id: uuid.UUID) -> list[ShareLink]:
    result = await db.execute(
        select(ShareLink)
        .where(ShareLink.promoter_id == promoter_id)
        .order_by(ShareLink.created_at.desc())
    )
    return list(result.scalars().all())


async def list_referrals(
    db: AsyncSession,
    promoter_id: uuid.UUID,
    status: Optional[ReferralStatus] = None,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    query = select(PromoterReferral).where(PromoterReferral.promoter_id == promoter_id)
    if status is not None:
        query = query.where(PromoterReferral.status == status)
    query = query.order_by(PromoterReferral.created_at.desc())
    return await paginate(db, query, page, per_page)
