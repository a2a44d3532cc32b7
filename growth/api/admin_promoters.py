"""
Admin endpoints for the promoter program - approval workflow, program settings,
trial invite oversight and program-wide stats.
"""
import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from growth.database import get_db
from growth.api.deps import get_current_admin, get_session_factory
from growth.models.promoter import PromoterStatus, PromoterType
from growth.models.referral import ReferralStatus
from growth.models.trial_invite import TrialInviteStatus
from growth.models.user import User
from growth.schemas.promoters import (
    ApprovePromoterRequest,
    CreatePromoterRequest,
    ExtendTrialRequest,
    PromoterDetailResponse,
    PromoterListResponse,
    PromoterSummary,
    ReferralListResponse,
    ReferralSummary,
    RejectPromoterRequest,
    RewardConfigIn,
    RewardConfigOut,
    ShareLinkSummary,
    TrialConfigIn,
    TrialConfigOut,
    TrialInviteListResponse,
    TrialInviteSummary,
)
from growth.services import promoter_stats, promoters, trial_invites

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin/promoters", tags=["admin"])


def _parse_uuid(value: Optional[str], field: str) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid {field}")


def _reward_config_values(body: Optional[RewardConfigIn]) -> Optional[dict]:
    if body is None:
        return None
    return body.model_dump(exclude_unset=True)


def _trial_config_values(body: Optional[TrialConfigIn]) -> Optional[dict]:
    if body is None:
        return None
    values = body.model_dump(exclude_unset=True)
    if "trial_plan_id" in values:
        values["trial_plan_id"] = _parse_uuid(values["trial_plan_id"], "trial_plan_id")
    return values


def _promoter_list(result: dict) -> PromoterListResponse:
    return PromoterListResponse(
        promoters=[PromoterSummary.from_model(p) for p in result["items"]],
        total=result["total"],
        page=result["page"],
        per_page=result["per_page"],
        pages=result["pages"],
    )


def _invite_list(result: dict) -> TrialInviteListResponse:
    return TrialInviteListResponse(
        invites=[TrialInviteSummary.from_model(t) for t in result["items"]],
        total=result["total"],
        page=result["page"],
        per_page=result["per_page"],
        pages=result["pages"],
    )


# === STATS ===
# Declared before /{promoter_id} so the literal paths win.

@router.get("/stats/overview")
async def get_overview(
    admin: User = Depends(get_current_admin),
    session_factory=Depends(get_session_factory),
):
    return await promoter_stats.get_overview(session_factory)


@router.get("/stats/funnel")
async def get_funnel(
    promoter_id: Optional[uuid.UUID] = None,
    admin: User = Depends(get_current_admin),
    session_factory=Depends(get_session_factory),
):
    return await promoter_stats.get_funnel(session_factory, promoter_id)


@router.get("/stats/channels")
async def get_channel_stats(
    admin: User = Depends(get_current_admin),
    session_factory=Depends(get_session_factory),
):
    return {"channels": await promoter_stats.get_channel_stats(session_factory)}


@router.get("/stats/leaderboard")
async def get_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    admin: User = Depends(get_current_admin),
    session_factory=Depends(get_session_factory),
):
    board = await promoter_stats.get_leaderboard(session_factory, limit)
    for row in board:
        row["promoter_id"] = str(row["promoter_id"])
    return {"leaderboard": board}


@router.get("/stats/trials")
async def get_trial_stats(
    admin: User = Depends(get_current_admin),
    session_factory=Depends(get_session_factory),
):
    return await promoter_stats.get_trial_stats(session_factory)


# === TRIAL INVITES (global) ===

@router.get("/trial-invites", response_model=TrialInviteListResponse)
async def list_all_trial_invites(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: Optional[TrialInviteStatus] = None,
    promoter_id: Optional[uuid.UUID] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    result = await trial_invites.list_trial_invites(
        db, promoter_id=promoter_id, status=status, search=search, page=page, per_page=per_page,
    )
    return _invite_list(result)


@router.post("/trial-invites/{invite_id}/cancel", response_model=TrialInviteSummary)
async def cancel_trial_invite(
    invite_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    invite = await trial_invites.cancel_trial_invite(db, invite_id)
    logger.info("Admin %s cancelled trial invite %s", str(admin.id)[:8], str(invite_id)[:8])
    return TrialInviteSummary.from_model(invite)


@router.post("/trial-invites/{invite_id}/extend", response_model=TrialInviteSummary)
async def extend_trial_invite(
    invite_id: uuid.UUID,
    body: ExtendTrialRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    invite = await trial_invites.extend_trial_invite(db, invite_id, body.days)
    logger.info(
        "Admin %s extended trial invite %s by %d days",
        str(admin.id)[:8], str(invite_id)[:8], body.days,
    )
    return TrialInviteSummary.from_model(invite)


# === PROMOTERS ===

@router.get("", response_model=PromoterListResponse)
async def list_promoters(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: Optional[PromoterStatus] = None,
    type: Optional[PromoterType] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    result = await promoters.list_promoters(db, status, type, search, page, per_page)
    return _promoter_list(result)


@router.get("/pending", response_model=PromoterListResponse)
async def list_pending(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    return _promoter_list(await promoters.list_pending(db, page, per_page))


@router.post("", response_model=PromoterSummary, status_code=201)
async def create_promoter(
    body: CreatePromoterRequest,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    data = body.model_dump(exclude_unset=True, exclude={"reward_config", "trial_config"})
    data["user_id"] = _parse_uuid(body.user_id, "user_id")
    data["type"] = body.type
    promoter = await promoters.create_promoter(
        db,
        data,
        admin_id=admin.id,
        reward_config=_reward_config_values(body.reward_config),
        trial_config=_trial_config_values(body.trial_config),
    )
    return PromoterSummary.from_model(promoter)


@router.get("/{promoter_id}", response_model=PromoterDetailResponse)
async def get_promoter(
    promoter_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    detail = await promoters.get_promoter_detail(db, promoter_id)
    return PromoterDetailResponse(
        promoter=PromoterSummary.from_model(detail["promoter"]),
        reward_config=RewardConfigOut.from_model(detail["reward_config"]),
        trial_config=TrialConfigOut.from_model(detail["trial_config"]),
        total_referrals=detail["total_referrals"],
        success_referrals=detail["success_referrals"],
    )


@router.post("/{promoter_id}/approve", response_model=PromoterSummary)
async def approve_promoter(
    promoter_id: uuid.UUID,
    body: Optional[ApprovePromoterRequest] = None,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    body = body or ApprovePromoterRequest()
    promoter = await promoters.approve_promoter(
        db,
        promoter_id,
        admin_id=admin.id,
        reward_config=_reward_config_values(body.reward_config),
        trial_config=_trial_config_values(body.trial_config),
    )
    return PromoterSummary.from_model(promoter)


@router.post("/{promoter_id}/reject", response_model=PromoterSummary)
async def reject_promoter(
    promoter_id: uuid.UUID,
    body: Optional[RejectPromoterRequest] = None,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    promoter = await promoters.reject_promoter(db, promoter_id, body.reason if body else None)
    return PromoterSummary.from_model(promoter)


@router.post("/{promoter_id}/suspend", response_model=PromoterSummary)
async def suspend_promoter(
    promoter_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    return PromoterSummary.from_model(await promoters.suspend_promoter(db, promoter_id))


@router.post("/{promoter_id}/activate", response_model=PromoterSummary)
async def activate_promoter(
    promoter_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    return PromoterSummary.from_model(await promoters.activate_promoter(db, promoter_id))


@router.put("/{promoter_id}/reward-config", response_model=RewardConfigOut)
async def put_reward_config(
    promoter_id: uuid.UUID,
    body: RewardConfigIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    config = await promoters.upsert_reward_config(db, promoter_id, _reward_config_values(body))
    return RewardConfigOut.from_model(config)


@router.put("/{promoter_id}/trial-config", response_model=TrialConfigOut)
async def put_trial_config(
    promoter_id: uuid.UUID,
    body: TrialConfigIn,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    config = await promoters.upsert_trial_config(db, promoter_id, _trial_config_values(body))
    return TrialConfigOut.from_model(config)


@router.get("/{promoter_id}/referrals", response_model=ReferralListResponse)
async def list_promoter_referrals(
    promoter_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: Optional[ReferralStatus] = None,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    await promoters.get_promoter(db, promoter_id)
    result = await promoters.list_referrals(db, promoter_id, status, page, per_page)
    return ReferralListResponse(
        referrals=[ReferralSummary.from_model(r) for r in result["items"]],
        total=result["total"],
        page=result["page"],
        per_page=result["per_page"],
        pages=result["pages"],
    )


@router.get("/{promoter_id}/trial-invites", response_model=TrialInviteListResponse)
async def list_promoter_trial_invites(
    promoter_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    status: Optional[TrialInviteStatus] = None,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    await promoters.get_promoter(db, promoter_id)
    result = await trial_invites.list_trial_invites(
        db, promoter_id=promoter_id, status=status, page=page, per_page=per_page,
    )
    return _invite_list(result)


@router.get("/{promoter_id}/share-links", response_model=list[ShareLinkSummary])
async def list_promoter_share_links(
    promoter_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    await promoters.get_promoter(db, promoter_id)
    return [ShareLinkSummary.from_model(link) for link in await promoters.list_share_links(db, promoter_id)]
