"""
Quota guard - per-promoter trial issuance limits.

Two entry points:
- authorize_issuance: advisory read ("would this be allowed right now?"), used
  for previews and precise deny messages. Counts invite rows.
- reserve_issuance: the enforcing path. One conditional UPDATE on the
  promoter's trial config bumps the issuance counters only if every limit
  still holds, so two concurrent requests can never both take the last slot.
  The caller inserts the invite in the same transaction; a rollback releases
  the slot.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, func, case, or_
from sqlalchemy.ext.asyncio import AsyncSession

from growth.errors import DomainRuleViolation, Reason
from growth.models.promoter import PromoterTrialConfig
from growth.models.trial_invite import TrialInvite
from growth.utils.timezone import month_key, month_start_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[Reason] = None
    message: str = ""


ALLOWED = QuotaDecision(allowed=True)


async def get_trial_config(db: AsyncSession, promoter_id: uuid.UUID) -> Optional[PromoterTrialConfig]:
    result = await db.execute(
        select(PromoterTrialConfig).where(PromoterTrialConfig.promoter_id == promoter_id)
    )
    return result.scalar_one_or_none()


def _check_static_rules(
    config: Optional[PromoterTrialConfig],
    requested_days: int,
) -> Optional[QuotaDecision]:
    """Steps (a) and (b): permission flag and day range. None means pass."""
    if config is None or not config.can_issue_trial:
        return QuotaDecision(False, Reason.NOT_AUTHORIZED, "Trial issuance is not enabled for this promoter")
    if requested_days < config.min_trial_days or requested_days > config.max_trial_days:
        return QuotaDecision(
            False,
            Reason.DAYS_OUT_OF_RANGE,
            f"Trial days must be between {config.min_trial_days} and {config.max_trial_days}",
        )
    return None


async def usage(db: AsyncSession, promoter_id: uuid.UUID, now: Optional[datetime] = None) -> dict:
    """
    Count issued invites for a promoter.

    Returns: {"total_issued": int, "month_issued": int}
    """
    since = month_start_utc(now)
    total_issued = (await db.execute(
        select(func.count(TrialInvite.id)).where(TrialInvite.promoter_id == promoter_id)
    )).scalar() or 0
    month_issued = (await db.execute(
        select(func.count(TrialInvite.id)).where(
            TrialInvite.promoter_id == promoter_id,
            TrialInvite.created_at >= since,
        )
    )).scalar() or 0
    return {"total_issued": total_issued, "month_issued": month_issued}


async def authorize_issuance(
    db: AsyncSession,
    promoter_id: uuid.UUID,
    requested_days: int,
    now: Optional[datetime] = None,
) -> QuotaDecision:
    """Evaluate the four issuance rules in order, stopping at the first failure."""
    config = await get_trial_config(db, promoter_id)
    denied = _check_static_rules(config, requested_days)
    if denied:
        return denied

    counts = await usage(db, promoter_id, now)
    if config.total_issue_limit is not None and counts["total_issued"] >= config.total_issue_limit:
        return QuotaDecision(False, Reason.TOTAL_LIMIT_REACHED, "Total trial issue limit reached")
    if config.monthly_issue_limit is not None and counts["month_issued"] >= config.monthly_issue_limit:
        return QuotaDecision(False, Reason.MONTHLY_LIMIT_REACHED, "Monthly trial issue limit reached")
    return ALLOWED


def _denial_after_lost_update(config: Optional[PromoterTrialConfig], current_key: str) -> QuotaDecision:
    """Work out which limit stopped a reservation, from the freshly reloaded counters."""
    if config is None or not config.can_issue_trial:
        return QuotaDecision(False, Reason.NOT_AUTHORIZED, "Trial issuance is not enabled for this promoter")
    if config.total_issue_limit is not None and config.issued_total >= config.total_issue_limit:
        return QuotaDecision(False, Reason.TOTAL_LIMIT_REACHED, "Total trial issue limit reached")
    return QuotaDecision(False, Reason.MONTHLY_LIMIT_REACHED, "Monthly trial issue limit reached")


async def reserve_issuance(
    db: AsyncSession,
    promoter_id: uuid.UUID,
    requested_days: int,
    now: Optional[datetime] = None,
) -> PromoterTrialConfig:
    """
    Atomically take one issuance slot or raise DomainRuleViolation with the deny reason.

    Returns the promoter's trial config with counters reloaded.
    """
    config = await get_trial_config(db, promoter_id)
    denied = _check_static_rules(config, requested_days)
    if denied:
        raise DomainRuleViolation(denied.reason, denied.message)

    key = month_key(now)
    C = PromoterTrialConfig
    month_used = case((C.issued_month_key == key, C.issued_month), else_=0)

    result = await db.execute(
        update(C)
        .where(
            C.promoter_id == promoter_id,
            C.can_issue_trial.is_(True),
            or_(C.total_issue_limit.is_(None), C.issued_total < C.total_issue_limit),
            or_(C.monthly_issue_limit.is_(None), month_used < C.monthly_issue_limit),
        )
        .values(
            issued_total=C.issued_total + 1,
            issued_month=month_used + 1,
            issued_month_key=key,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    await db.refresh(config)

    if result.rowcount != 1:
        denied = _denial_after_lost_update(config, key)
        logger.info(
            "Trial issuance denied: promoter=%s reason=%s",
            str(promoter_id)[:8], denied.reason.value,
            extra={"promoter_id": str(promoter_id), "reason": denied.reason.value},
        )
        raise DomainRuleViolation(denied.reason, denied.message)

    return config


async def resync_counters(
    db: AsyncSession,
    config: PromoterTrialConfig,
    now: Optional[datetime] = None,
) -> PromoterTrialConfig:
    """Rebuild the counters from invite rows (after an admin edits limits, or a backfill)."""
    counts = await usage(db, config.promoter_id, now)
    config.issued_total = counts["total_issued"]
    config.issued_month = counts["month_issued"]
    config.issued_month_key = month_key(now)
    await db.flush()
    return config
