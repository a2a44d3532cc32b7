"""
Promoter referral model - one row per referred user, ever.

The unique constraint on referred_user_id is what stops double counting and
re-attribution after a user switches promoters. Billing advances the status;
it never inserts rows.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Float, DateTime, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from growth.database import Base
from growth.models.share_link import ShareChannel


class ReferralStatus(str, enum.Enum):
    CLICKED = "CLICKED"
    REGISTERED = "REGISTERED"
    SUBSCRIBED = "SUBSCRIBED"
    RENEWED = "RENEWED"


# Click tracking is best-effort, so CLICKED may be skipped entirely and
# SUBSCRIBED/RENEWED may be reached straight from REGISTERED.
REFERRAL_TRANSITIONS: dict[ReferralStatus, frozenset[ReferralStatus]] = {
    ReferralStatus.CLICKED: frozenset({ReferralStatus.REGISTERED, ReferralStatus.SUBSCRIBED}),
    ReferralStatus.REGISTERED: frozenset({ReferralStatus.SUBSCRIBED, ReferralStatus.RENEWED}),
    ReferralStatus.SUBSCRIBED: frozenset({ReferralStatus.RENEWED}),
    ReferralStatus.RENEWED: frozenset({ReferralStatus.RENEWED}),
}

SUCCESS_STATUSES = (ReferralStatus.SUBSCRIBED, ReferralStatus.RENEWED)


def can_transition(current: ReferralStatus, target: ReferralStatus) -> bool:
    return target in REFERRAL_TRANSITIONS.get(current, frozenset())


class PromoterReferral(Base):
    __tablename__ = "promoter_referrals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    promoter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promoters.id"), nullable=False
    )
    referred_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False
    )
    share_link_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("share_links.id"), nullable=True
    )
    channel: Mapped[Optional[ShareChannel]] = mapped_column(
        Enum(ShareChannel, native_enum=False, length=20)
    )
    status: Mapped[ReferralStatus] = mapped_column(
        Enum(ReferralStatus, native_enum=False, length=20),
        default=ReferralStatus.CLICKED,
        nullable=False,
    )
    clicked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    registered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    subscribed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    renewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    # Reward (null until granted)
    reward_amount: Mapped[Optional[float]] = mapped_column(Float)
    reward_granted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reward_notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_promoter_referrals_promoter", "promoter_id"),
        Index("ix_promoter_referrals_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<PromoterReferral ({self.status.value if self.status else None})>"
