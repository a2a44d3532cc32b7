"""
Promoter stats - read-only aggregates for promoter and admin dashboards.

Each independent count runs on its own session and the batch is awaited with
asyncio.gather, so a dashboard costs roughly one round trip instead of ten.
No query here writes.
"""
import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from growth.models.promoter import Promoter, PromoterStatus
from growth.models.referral import PromoterReferral, ReferralStatus, SUCCESS_STATUSES
from growth.models.share_link import ShareChannel, ShareLink
from growth.models.trial_invite import (
    EVER_ACTIVATED_STATUSES,
    RUNNING_STATUSES,
    TrialInvite,
    TrialInviteStatus,
)
from growth.utils.timezone import month_start_utc, utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]

TREND_DAYS = 30
EXPIRING_SOON_DAYS = 3
DEFAULT_LEADERBOARD_SIZE = 10


def conversion_rate(success: int, total: int) -> float:
    """Percentage rounded to one decimal. 0.0 when there is nothing to convert."""
    if not total:
        return 0.0
    return round(success / total * 100, 1)


async def _scalar(session_factory: SessionFactory, query, default=0):
    async with session_factory() as session:
        value = (await session.execute(query)).scalar()
    return value if value is not None else default


async def _rows(session_factory: SessionFactory, query) -> list:
    async with session_factory() as session:
        return list((await session.execute(query)).all())


def _count_referrals(*conditions):
    return select(func.count(PromoterReferral.id)).where(*conditions)


def _count_invites(*conditions):
    return select(func.count(TrialInvite.id)).where(*conditions)


def _for_promoter(column, promoter_id: Optional[uuid.UUID]) -> list:
    return [column == promoter_id] if promoter_id is not None else []


async def get_funnel(session_factory: SessionFactory, promoter_id: Optional[uuid.UUID] = None) -> dict:
    """
    Pipeline counts, in order: clicked, registered, trial, subscribed, renewed.

    Every referral row counts as a click even when click tracking was skipped.
    """
    ref_scope = _for_promoter(PromoterReferral.promoter_id, promoter_id)
    trial_scope = _for_promoter(TrialInvite.promoter_id, promoter_id)

    clicked, registered, trial, subscribed, renewed = await asyncio.gather(
        _scalar(session_factory, _count_referrals(*ref_scope)),
        _scalar(session_factory, _count_referrals(
            *ref_scope, PromoterReferral.status != ReferralStatus.CLICKED,
        )),
        _scalar(session_factory, _count_invites(
            *trial_scope, TrialInvite.status.in_(EVER_ACTIVATED_STATUSES),
        )),
        _scalar(session_factory, _count_referrals(
            *ref_scope, PromoterReferral.status.in_(SUCCESS_STATUSES),
        )),
        _scalar(session_factory, _count_referrals(
            *ref_scope, PromoterReferral.status == ReferralStatus.RENEWED,
        )),
    )
    return {
        "clicked": clicked,
        "registered": registered,
        "trial": trial,
        "subscribed": subscribed,
        "renewed": renewed,
    }


def _day_key(value) -> str:
    # func.date() comes back as a date on PostgreSQL and a string on SQLite
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)[:10]


async def _daily_trend(
    session_factory: SessionFactory,
    promoter_id: uuid.UUID,
    now: datetime,
) -> list[dict]:
    since = (now - timedelta(days=TREND_DAYS - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    ref_day = func.date(PromoterReferral.created_at)
    invite_day = func.date(TrialInvite.created_at)

    referral_rows, invite_rows = await asyncio.gather(
        _rows(session_factory, select(ref_day, func.count(PromoterReferral.id)).where(
            PromoterReferral.promoter_id == promoter_id,
            PromoterReferral.created_at >= since,
        ).group_by(ref_day)),
        _rows(session_factory, select(invite_day, func.count(TrialInvite.id)).where(
            TrialInvite.promoter_id == promoter_id,
            TrialInvite.created_at >= since,
        ).group_by(invite_day)),
    )
    referrals_by_day = {_day_key(day): count for day, count in referral_rows}
    invites_by_day = {_day_key(day): count for day, count in invite_rows}

    trend = []
    for offset in range(TREND_DAYS):
        key = (since + timedelta(days=offset)).strftime("%Y-%m-%d")
        trend.append({
            "date": key,
            "referrals": referrals_by_day.get(key, 0),
            "trials": invites_by_day.get(key, 0),
        })
    return trend


async def get_promoter_stats(
    session_factory: SessionFactory,
    promoter_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> dict:
    """Dashboard summary for one promoter."""
    now = now or utcnow()
    month_start = month_start_utc(now)
    scope = PromoterReferral.promoter_id == promoter_id
    trial_scope = TrialInvite.promoter_id == promoter_id

    (
        total_referrals, success_count, month_success, total_reward,
        share_links, total_clicks,
        trial_total, trial_activated, trial_converted, month_issued,
        funnel, trend,
    ) = await asyncio.gather(
        _scalar(session_factory, _count_referrals(scope)),
        _scalar(session_factory, _count_referrals(scope, PromoterReferral.status.in_(SUCCESS_STATUSES))),
        _scalar(session_factory, _count_referrals(
            scope,
            PromoterReferral.status.in_(SUCCESS_STATUSES),
            PromoterReferral.subscribed_at >= month_start,
        )),
        _scalar(session_factory, select(func.sum(PromoterReferral.reward_amount)).where(scope), 0.0),
        _scalar(session_factory, select(func.count(ShareLink.id)).where(ShareLink.promoter_id == promoter_id)),
        _scalar(session_factory, select(func.sum(ShareLink.click_count)).where(ShareLink.promoter_id == promoter_id)),
        _scalar(session_factory, _count_invites(trial_scope)),
        _scalar(session_factory, _count_invites(trial_scope, TrialInvite.status.in_(EVER_ACTIVATED_STATUSES))),
        _scalar(session_factory, _count_invites(trial_scope, TrialInvite.status == TrialInviteStatus.CONVERTED)),
        _scalar(session_factory, _count_invites(trial_scope, TrialInvite.created_at >= month_start)),
        get_funnel(session_factory, promoter_id),
        _daily_trend(session_factory, promoter_id, now),
    )

    return {
        "total_referrals": total_referrals,
        "success_count": success_count,
        "month_success": month_success,
        "conversion_rate": conversion_rate(success_count, total_referrals),
        "total_reward": float(total_reward),
        "share_links": share_links,
        "total_clicks": total_clicks,
        "trial_total": trial_total,
        "trial_activated": trial_activated,
        "trial_converted": trial_converted,
        "trial_conversion_rate": conversion_rate(trial_converted, trial_activated),
        "month_issued": month_issued,
        "funnel": funnel,
        "trend": trend,
    }


async def get_leaderboard(
    session_factory: SessionFactory,
    limit: int = DEFAULT_LEADERBOARD_SIZE,
) -> list[dict]:
    """
    Top promoters by successful referrals plus converted trials.

    Ties are broken by promoter id so the order is stable between calls.
    """
    promoters, totals, successes, conversions, rewards = await asyncio.gather(
        _rows(session_factory, select(Promoter.id, Promoter.name, Promoter.referral_code).where(
            Promoter.status == PromoterStatus.APPROVED, Promoter.is_active.is_(True),
        )),
        _rows(session_factory, select(PromoterReferral.promoter_id, func.count(PromoterReferral.id))
              .group_by(PromoterReferral.promoter_id)),
        _rows(session_factory, select(PromoterReferral.promoter_id, func.count(PromoterReferral.id))
              .where(PromoterReferral.status.in_(SUCCESS_STATUSES))
              .group_by(PromoterReferral.promoter_id)),
        _rows(session_factory, select(TrialInvite.promoter_id, func.count(TrialInvite.id))
              .where(TrialInvite.status == TrialInviteStatus.CONVERTED)
              .group_by(TrialInvite.promoter_id)),
        _rows(session_factory, select(PromoterReferral.promoter_id, func.sum(PromoterReferral.reward_amount))
              .group_by(PromoterReferral.promoter_id)),
    )
    totals = dict(totals)
    successes = dict(successes)
    conversions = dict(conversions)
    rewards = dict(rewards)

    board = []
    for promoter_id, name, referral_code in promoters:
        success_count = successes.get(promoter_id, 0)
        trial_converted = conversions.get(promoter_id, 0)
        board.append({
            "promoter_id": promoter_id,
            "name": name,
            "referral_code": referral_code,
            "total_referrals": totals.get(promoter_id, 0),
            "success_count": success_count,
            "trial_converted": trial_converted,
            "score": success_count + trial_converted,
            "total_reward": float(rewards.get(promoter_id) or 0.0),
        })

    board.sort(key=lambda row: (-row["score"], str(row["promoter_id"])))
    return board[:limit]


async def get_overview(session_factory: SessionFactory, now: Optional[datetime] = None) -> dict:
    """Program-wide headline numbers for the admin dashboard."""
    now = now or utcnow()
    month_start = month_start_utc(now)

    (
        total_promoters, active_promoters, pending_promoters,
        total_referrals, success_referrals, month_success,
        total_clicks, total_trials, trial_converted, total_reward,
    ) = await asyncio.gather(
        _scalar(session_factory, select(func.count(Promoter.id))),
        _scalar(session_factory, select(func.count(Promoter.id)).where(
            Promoter.status == PromoterStatus.APPROVED, Promoter.is_active.is_(True),
        )),
        _scalar(session_factory, select(func.count(Promoter.id)).where(
            Promoter.status == PromoterStatus.PENDING,
        )),
        _scalar(session_factory, _count_referrals()),
        _scalar(session_factory, _count_referrals(PromoterReferral.status.in_(SUCCESS_STATUSES))),
        _scalar(session_factory, _count_referrals(
            PromoterReferral.status.in_(SUCCESS_STATUSES),
            PromoterReferral.subscribed_at >= month_start,
        )),
        _scalar(session_factory, select(func.sum(ShareLink.click_count))),
        _scalar(session_factory, _count_invites()),
        _scalar(session_factory, _count_invites(TrialInvite.status == TrialInviteStatus.CONVERTED)),
        _scalar(session_factory, select(func.sum(PromoterReferral.reward_amount)), 0.0),
    )

    return {
        "total_promoters": total_promoters,
        "active_promoters": active_promoters,
        "pending_promoters": pending_promoters,
        "total_referrals": total_referrals,
        "success_referrals": success_referrals,
        "month_success": month_success,
        "total_clicks": total_clicks,
        "conversion_rate": conversion_rate(success_referrals, total_referrals),
        "total_trials": total_trials,
        "trial_converted": trial_converted,
        "total_reward": float(total_reward),
    }


async def get_trial_stats(session_factory: SessionFactory, now: Optional[datetime] = None) -> dict:
    """Trial invite health across all promoters."""
    now = now or utcnow()
    soon = now + timedelta(days=EXPIRING_SOON_DAYS)

    total, activated, active, converted, expired, expiring_soon, month_issued = await asyncio.gather(
        _scalar(session_factory, _count_invites()),
        _scalar(session_factory, _count_invites(TrialInvite.status.in_(EVER_ACTIVATED_STATUSES))),
        _scalar(session_factory, _count_invites(TrialInvite.status.in_(RUNNING_STATUSES))),
        _scalar(session_factory, _count_invites(TrialInvite.status == TrialInviteStatus.CONVERTED)),
        _scalar(session_factory, _count_invites(TrialInvite.status == TrialInviteStatus.EXPIRED)),
        _scalar(session_factory, _count_invites(
            TrialInvite.status.in_(RUNNING_STATUSES),
            and_(TrialInvite.expires_at >= now, TrialInvite.expires_at <= soon),
        )),
        _scalar(session_factory, _count_invites(TrialInvite.created_at >= month_start_utc(now))),
    )

    return {
        "total": total,
        "activated": activated,
        "active": active,
        "converted": converted,
        "expired": expired,
        "expiring_soon": expiring_soon,
        "month_issued": month_issued,
        "conversion_rate": conversion_rate(converted, activated),
    }


async def get_channel_stats(session_factory: SessionFactory) -> list[dict]:
    """
    Performance per share channel.

    The implicit REF_LINK channel is left out, and so are channels with no
    activity at all.
    """
    link_rows, referral_rows, success_rows = await asyncio.gather(
        _rows(session_factory, select(
            ShareLink.channel, func.count(ShareLink.id), func.sum(ShareLink.click_count),
        ).group_by(ShareLink.channel)),
        _rows(session_factory, select(PromoterReferral.channel, func.count(PromoterReferral.id))
              .where(PromoterReferral.channel.is_not(None))
              .group_by(PromoterReferral.channel)),
        _rows(session_factory, select(PromoterReferral.channel, func.count(PromoterReferral.id))
              .where(PromoterReferral.channel.is_not(None), PromoterReferral.status.in_(SUCCESS_STATUSES))
              .group_by(PromoterReferral.channel)),
    )
    links = {channel: (count, clicks or 0) for channel, count, clicks in link_rows}
    referrals = dict(referral_rows)
    successes = dict(success_rows)

    stats = []
    for channel in ShareChannel:
        if channel == ShareChannel.REF_LINK:
            continue
        link_count, clicks = links.get(channel, (0, 0))
        referral_count = referrals.get(channel, 0)
        success_count = successes.get(channel, 0)
        if not (link_count or clicks or referral_count or success_count):
            continue
        stats.append({
            "channel": channel.value,
            "links": link_count,
            "clicks": clicks,
            "referrals": referral_count,
            "success": success_count,
            "conversion_rate": conversion_rate(success_count, referral_count),
        })
    return stats
