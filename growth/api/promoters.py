"""
Public and signed-in user endpoints of the promoter program.

Public: registration, code validation, share-link and trial-invite landing
pages, and ?ref= click tracking. Signed-in users: claim a trial, apply a
promoter code.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from growth.database import get_db
from growth.api.deps import get_current_user, request_meta, client_ip
from growth.models.user import User
from growth.schemas.promoters import (
    ApplyReferralResponse,
    ClaimTrialResponse,
    CodeRequest,
    PromoterSummary,
    RegisterPromoterRequest,
    ShareLinkResolveResponse,
    TrackRefRequest,
    TrackRefResponse,
    TrialInviteInfoResponse,
    ValidateCodeResponse,
)
from growth.services import attribution, promoters, referrals, trial_invites
from growth.utils.rate_limiter import check_track_ref_limit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/promoters", tags=["promoters"])


# === PUBLIC ===

@router.post("/register", response_model=PromoterSummary, status_code=201)
async def register(
    body: RegisterPromoterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Self-registration. The new promoter waits for admin approval."""
    promoter = await promoters.register_promoter(db, body.model_dump(exclude_unset=True))
    return PromoterSummary.from_model(promoter)


@router.get("/validate/{code}", response_model=ValidateCodeResponse)
async def validate_code(
    code: str,
    db: AsyncSession = Depends(get_db),
):
    return await attribution.validate_code(db, code)


@router.get("/share/{code}", response_model=ShareLinkResolveResponse)
async def get_share_link(
    code: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Resolve a share link and count the click."""
    return await attribution.get_share_link_and_record_click(db, code, request_meta(request))


@router.get("/trial/{code}", response_model=TrialInviteInfoResponse)
async def get_trial_info(
    code: str,
    db: AsyncSession = Depends(get_db),
):
    """Trial invite landing page data. Shown whatever the invite's status."""
    return await trial_invites.get_trial_invite_info(db, code)


@router.post("/track-ref", response_model=TrackRefResponse)
async def track_ref(
    body: TrackRefRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Record a ?ref= landing. Unknown codes return tracked=false, never an error."""
    allowed, retry_after = await check_track_ref_limit(client_ip(request) or "unknown")
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(retry_after)},
        )

    result = await attribution.resolve_and_track_click(
        db, body.code, request_meta(request), target_url=body.url,
    )
    return result.to_dict()


# === SIGNED-IN USER ===

@router.post("/trial/claim", response_model=ClaimTrialResponse)
async def claim_trial(
    body: CodeRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Redeem a trial invite for the current user."""
    subscription = await trial_invites.claim_trial(db, user.id, body.code)
    return ClaimTrialResponse(
        subscription_id=str(subscription.id),
        plan_id=str(subscription.plan_id),
        status=subscription.status.value,
        trial_ends_at=subscription.trial_ends_at,
    )


@router.post("/referral/apply", response_model=ApplyReferralResponse, status_code=201)
async def apply_referral(
    body: CodeRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Attribute the current user to a promoter. Once per user, ever."""
    referral = await referrals.apply_promoter_referral(db, user.id, body.code)
    return ApplyReferralResponse(
        id=str(referral.id),
        promoter_id=str(referral.promoter_id),
        status=referral.status,
    )
