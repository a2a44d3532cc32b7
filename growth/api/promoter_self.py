"""
Promoter self-service endpoints - profile, stats, share links and trial invites.
All routes act on the promoter linked to the signed-in user.
"""
import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from growth.database import get_db
from growth.api.deps import get_current_promoter, get_session_factory
from growth.models.promoter import Promoter
from growth.models.referral import ReferralStatus
from growth.models.trial_invite import TrialInviteStatus
from growth.schemas.promoters import (
    CreateShareLinkRequest,
    CreateTrialInviteRequest,
    PromoterDetailResponse,
    PromoterSummary,
    ReferralListResponse,
    ReferralSummary,
    RewardConfigOut,
    ShareLinkSummary,
    TrialConfigOut,
    TrialInviteListResponse,
    TrialInviteSummary,
    UpdatePromoterProfileRequest,
)
from growth.services import promoter_stats, promoters, quota_guard, trial_invites

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/promoter/me", tags=["promoter"])


@router.get("", response_model=PromoterDetailResponse)
async def get_profile(
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    detail = await promoters.get_promoter_detail(db, promoter.id)
    return PromoterDetailResponse(
        promoter=PromoterSummary.from_model(detail["promoter"]),
        reward_config=RewardConfigOut.from_model(detail["reward_config"]),
        trial_config=TrialConfigOut.from_model(detail["trial_config"]),
        total_referrals=detail["total_referrals"],
        success_referrals=detail["success_referrals"],
    )


@router.patch("", response_model=PromoterSummary)
async def update_profile(
    body: UpdatePromoterProfileRequest,
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    updated = await promoters.update_profile(db, promoter.id, body.model_dump(exclude_unset=True))
    return PromoterSummary.from_model(updated)


@router.get("/stats")
async def get_stats(
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
    session_factory=Depends(get_session_factory),
):
    """Dashboard numbers plus current trial quota usage."""
    stats = await promoter_stats.get_promoter_stats(session_factory, promoter.id)
    config = await quota_guard.get_trial_config(db, promoter.id)
    stats["quota"] = {
        **(await quota_guard.usage(db, promoter.id)),
        "monthly_limit": config.monthly_issue_limit if config else None,
        "total_limit": config.total_issue_limit if config else None,
        "can_issue_trial": bool(config and config.can_issue_trial),
    }
    return stats


@router.get("/referrals", response_model=ReferralListResponse)
async def list_referrals(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: Optional[ReferralStatus] = None,
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    result = await promoters.list_referrals(db, promoter.id, status, page, per_page)
    return ReferralListResponse(
        referrals=[ReferralSummary.from_model(r) for r in result["items"]],
        total=result["total"],
        page=result["page"],
        per_page=result["per_page"],
        pages=result["pages"],
    )


@router.get("/share-links", response_model=list[ShareLinkSummary])
async def list_share_links(
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    links = await promoters.list_share_links(db, promoter.id)
    return [ShareLinkSummary.from_model(link) for link in links]


@router.post("/share-links", response_model=ShareLinkSummary, status_code=201)
async def create_share_link(
    body: CreateShareLinkRequest,
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    link = await promoters.create_share_link(
        db, promoter.id, body.channel, body.target_url, body.expires_at,
    )
    return ShareLinkSummary.from_model(link)


@router.get("/trial-invites", response_model=TrialInviteListResponse)
async def list_trial_invites(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: Optional[TrialInviteStatus] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    result = await trial_invites.list_trial_invites(
        db, promoter_id=promoter.id, status=status, search=search, page=page, per_page=per_page,
    )
    return TrialInviteListResponse(
        invites=[TrialInviteSummary.from_model(t) for t in result["items"]],
        total=result["total"],
        page=result["page"],
        per_page=result["per_page"],
        pages=result["pages"],
    )


@router.post("/trial-invites", response_model=TrialInviteSummary, status_code=201)
async def create_trial_invite(
    body: CreateTrialInviteRequest,
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    invite = await trial_invites.create_trial_invite(
        db,
        promoter.id,
        trial_days=body.trial_days,
        invite_method=body.invite_method,
        channel=body.channel,
        invitee_name=body.invitee_name,
        invitee_phone=body.invitee_phone,
        invitee_email=body.invitee_email,
    )
    return TrialInviteSummary.from_model(invite)


@router.post("/trial-invites/{invite_id}/sent", response_model=TrialInviteSummary)
async def mark_trial_invite_sent(
    invite_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    promoter: Promoter = Depends(get_current_promoter),
):
    invite = await trial_invites.mark_sent(db, invite_id, promoter_id=promoter.id)
    return TrialInviteSummary.from_model(invite)
