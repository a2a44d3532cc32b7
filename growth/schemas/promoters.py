"""
Request and response schemas for the promoter program endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from growth.models.promoter import PromoterStatus, PromoterType, RewardType
from growth.models.referral import ReferralStatus
from growth.models.share_link import ShareChannel
from growth.models.trial_invite import InviteMethod, TrialInviteStatus


# === REQUESTS ===

class PromoterProfileFields(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    email: Optional[str] = Field(default=None, max_length=255)
    line_id: Optional[str] = Field(default=None, max_length=100)
    organization: Optional[str] = Field(default=None, max_length=200)
    region: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=255)
    category: Optional[str] = Field(default=None, max_length=100)
    social_links: Optional[dict] = None
    avatar_url: Optional[str] = Field(default=None, max_length=500)
    joined_reason: Optional[str] = Field(default=None, max_length=2000)
    notes: Optional[str] = Field(default=None, max_length=2000)


class RegisterPromoterRequest(PromoterProfileFields):
    name: str = Field(min_length=1, max_length=100)

    @model_validator(mode="after")
    def require_contact(self):
        if not self.phone and not self.email:
            raise ValueError("phone or email is required")
        return self


class UpdatePromoterProfileRequest(PromoterProfileFields):
    """Only these fields are editable by the promoter; anything else is dropped."""


class RewardConfigIn(BaseModel):
    reward_type: RewardType = RewardType.NONE
    fixed_amount: Optional[float] = Field(default=None, ge=0)
    percentage: Optional[float] = Field(default=None, ge=0, le=100)
    extension_months: Optional[int] = Field(default=None, ge=1, le=24)
    max_rewards_per_month: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class TrialConfigIn(BaseModel):
    can_issue_trial: Optional[bool] = None
    min_trial_days: Optional[int] = Field(default=None, ge=1, le=365)
    max_trial_days: Optional[int] = Field(default=None, ge=1, le=365)
    default_trial_days: Optional[int] = Field(default=None, ge=1, le=365)
    trial_plan_id: Optional[str] = None
    monthly_issue_limit: Optional[int] = Field(default=None, ge=1)
    total_issue_limit: Optional[int] = Field(default=None, ge=1)


class CreatePromoterRequest(PromoterProfileFields):
    name: str = Field(min_length=1, max_length=100)
    user_id: Optional[str] = None
    type: PromoterType = PromoterType.INTERNAL
    reward_config: Optional[RewardConfigIn] = None
    trial_config: Optional[TrialConfigIn] = None


class ApprovePromoterRequest(BaseModel):
    reward_config: Optional[RewardConfigIn] = None
    trial_config: Optional[TrialConfigIn] = None


class RejectPromoterRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CreateTrialInviteRequest(BaseModel):
    trial_days: Optional[int] = Field(default=None, ge=1, le=365)
    invite_method: InviteMethod = InviteMethod.CODE
    channel: Optional[ShareChannel] = None
    invitee_name: Optional[str] = Field(default=None, max_length=100)
    invitee_phone: Optional[str] = Field(default=None, max_length=30)
    invitee_email: Optional[str] = Field(default=None, max_length=255)


class CreateShareLinkRequest(BaseModel):
    channel: ShareChannel
    target_url: Optional[str] = Field(default=None, max_length=2000)
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def reject_ref_link(self):
        if self.channel == ShareChannel.REF_LINK:
            raise ValueError("REF_LINK links are created automatically")
        return self


class TrackRefRequest(BaseModel):
    code: str = Field(min_length=3, max_length=32)
    url: Optional[str] = Field(default=None, max_length=2000)


class CodeRequest(BaseModel):
    code: str = Field(min_length=3, max_length=32)


class ExtendTrialRequest(BaseModel):
    days: int = Field(ge=1, le=365)


# === RESPONSES ===

class PromoterSummary(BaseModel):
    id: str
    user_id: Optional[str] = None
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    line_id: Optional[str] = None
    referral_code: str
    type: PromoterType
    status: PromoterStatus
    is_active: bool
    organization: Optional[str] = None
    region: Optional[str] = None
    address: Optional[str] = None
    category: Optional[str] = None
    social_links: Optional[dict] = None
    avatar_url: Optional[str] = None
    joined_reason: Optional[str] = None
    notes: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, p) -> "PromoterSummary":
        return cls(
            id=str(p.id),
            user_id=str(p.user_id) if p.user_id else None,
            name=p.name,
            phone=p.phone,
            email=p.email,
            line_id=p.line_id,
            referral_code=p.referral_code,
            type=p.type,
            status=p.status,
            is_active=bool(p.is_active),
            organization=p.organization,
            region=p.region,
            address=p.address,
            category=p.category,
            social_links=p.social_links,
            avatar_url=p.avatar_url,
            joined_reason=p.joined_reason,
            notes=p.notes,
            approved_at=p.approved_at,
            created_at=p.created_at,
        )


class RewardConfigOut(BaseModel):
    reward_type: RewardType
    fixed_amount: Optional[float] = None
    percentage: Optional[float] = None
    extension_months: Optional[int] = None
    max_rewards_per_month: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    @classmethod
    def from_model(cls, c) -> Optional["RewardConfigOut"]:
        if c is None:
            return None
        return cls(
            reward_type=c.reward_type,
            fixed_amount=c.fixed_amount,
            percentage=c.percentage,
            extension_months=c.extension_months,
            max_rewards_per_month=c.max_rewards_per_month,
            valid_from=c.valid_from,
            valid_until=c.valid_until,
        )


class TrialConfigOut(BaseModel):
    can_issue_trial: bool
    min_trial_days: int
    max_trial_days: int
    default_trial_days: int
    trial_plan_id: Optional[str] = None
    monthly_issue_limit: Optional[int] = None
    total_issue_limit: Optional[int] = None
    issued_total: int = 0

    @classmethod
    def from_model(cls, c) -> Optional["TrialConfigOut"]:
        if c is None:
            return None
        return cls(
            can_issue_trial=bool(c.can_issue_trial),
            min_trial_days=c.min_trial_days,
            max_trial_days=c.max_trial_days,
            default_trial_days=c.default_trial_days,
            trial_plan_id=str(c.trial_plan_id) if c.trial_plan_id else None,
            monthly_issue_limit=c.monthly_issue_limit,
            total_issue_limit=c.total_issue_limit,
            issued_total=c.issued_total or 0,
        )


class PromoterDetailResponse(BaseModel):
    promoter: PromoterSummary
    reward_config: Optional[RewardConfigOut] = None
    trial_config: Optional[TrialConfigOut] = None
    total_referrals: int = 0
    success_referrals: int = 0


class ShareLinkSummary(BaseModel):
    id: str
    code: str
    channel: ShareChannel
    target_url: Optional[str] = None
    is_active: bool
    expires_at: Optional[datetime] = None
    click_count: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, s) -> "ShareLinkSummary":
        return cls(
            id=str(s.id),
            code=s.code,
            channel=s.channel,
            target_url=s.target_url,
            is_active=bool(s.is_active),
            expires_at=s.expires_at,
            click_count=s.click_count or 0,
            created_at=s.created_at,
        )


class ReferralSummary(BaseModel):
    id: str
    referred_user_id: str
    channel: Optional[ShareChannel] = None
    status: ReferralStatus
    registered_at: Optional[datetime] = None
    subscribed_at: Optional[datetime] = None
    renewed_at: Optional[datetime] = None
    reward_amount: Optional[float] = None
    reward_granted_at: Optional[datetime] = None
    reward_notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, r) -> "ReferralSummary":
        return cls(
            id=str(r.id),
            referred_user_id=str(r.referred_user_id),
            channel=r.channel,
            status=r.status,
            registered_at=r.registered_at,
            subscribed_at=r.subscribed_at,
            renewed_at=r.renewed_at,
            reward_amount=r.reward_amount,
            reward_granted_at=r.reward_granted_at,
            reward_notes=r.reward_notes,
            created_at=r.created_at,
        )


class TrialInviteSummary(BaseModel):
    id: str
    code: str
    promoter_id: str
    trial_days: int
    invite_method: InviteMethod
    channel: Optional[ShareChannel] = None
    invitee_name: Optional[str] = None
    invitee_phone: Optional[str] = None
    invitee_email: Optional[str] = None
    status: TrialInviteStatus
    link_click_count: int = 0
    activated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, t) -> "TrialInviteSummary":
        return cls(
            id=str(t.id),
            code=t.code,
            promoter_id=str(t.promoter_id),
            trial_days=t.trial_days,
            invite_method=t.invite_method,
            channel=t.channel,
            invitee_name=t.invitee_name,
            invitee_phone=t.invitee_phone,
            invitee_email=t.invitee_email,
            status=t.status,
            link_click_count=t.link_click_count or 0,
            activated_at=t.activated_at,
            expires_at=t.expires_at,
            converted_at=t.converted_at,
            cancelled_at=t.cancelled_at,
            created_at=t.created_at,
        )


class Pagination(BaseModel):
    total: int
    page: int
    per_page: int
    pages: int


class PromoterListResponse(Pagination):
    promoters: list[PromoterSummary]


class ReferralListResponse(Pagination):
    referrals: list[ReferralSummary]


class TrialInviteListResponse(Pagination):
    invites: list[TrialInviteSummary]


class TrialInviteInfoResponse(BaseModel):
    code: str
    trial_days: int
    promoter_name: Optional[str] = None
    plan_name: Optional[str] = None
    status: TrialInviteStatus
    is_available: bool


class ClaimTrialResponse(BaseModel):
    subscription_id: str
    plan_id: str
    status: str
    trial_ends_at: Optional[datetime] = None


class TrackRefResponse(BaseModel):
    tracked: bool
    type: Optional[str] = None
    name: Optional[str] = None


class ValidateCodeResponse(BaseModel):
    valid: bool
    promoter: Optional[dict] = None


class ShareLinkResolveResponse(BaseModel):
    channel: ShareChannel
    target_url: Optional[str] = None
    promoter: dict


class ApplyReferralResponse(BaseModel):
    id: str
    promoter_id: str
    status: ReferralStatus
