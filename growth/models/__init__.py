"""
Database models - import all models here so Alembic can discover them.
"""
from growth.models.user import User
from growth.models.subscription import Plan, Subscription, SubscriptionStatus
from growth.models.promoter import (
    Promoter,
    PromoterRewardConfig,
    PromoterTrialConfig,
    PromoterStatus,
    PromoterType,
    RewardType,
)
from growth.models.share_link import ShareLink, ShareLinkClick, ShareChannel
from growth.models.referral import PromoterReferral, ReferralStatus
from growth.models.trial_invite import TrialInvite, TrialInviteStatus, InviteMethod

__all__ = [
    "User",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "Promoter",
    "PromoterRewardConfig",
    "PromoterTrialConfig",
    "PromoterStatus",
    "PromoterType",
    "RewardType",
    "ShareLink",
    "ShareLinkClick",
    "ShareChannel",
    "PromoterReferral",
    "ReferralStatus",
    "TrialInvite",
    "TrialInviteStatus",
    "InviteMethod",
]
