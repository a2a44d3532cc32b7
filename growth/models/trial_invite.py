"""
Trial invite model - single-use, quota-gated codes granting a free trial.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from growth.database import Base
from growth.models.share_link import ShareChannel


class TrialInviteStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    ACTIVATED = "ACTIVATED"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CONVERTED = "CONVERTED"
    CANCELLED = "CANCELLED"


class InviteMethod(str, enum.Enum):
    LINK = "LINK"
    CODE = "CODE"
    DIRECT = "DIRECT"


_S = TrialInviteStatus

TRIAL_TRANSITIONS: dict[TrialInviteStatus, frozenset[TrialInviteStatus]] = {
    _S.PENDING: frozenset({_S.SENT, _S.ACTIVATED, _S.CANCELLED}),
    _S.SENT: frozenset({_S.ACTIVATED, _S.CANCELLED}),
    _S.ACTIVATED: frozenset({_S.ACTIVE, _S.EXPIRED, _S.CONVERTED, _S.CANCELLED}),
    _S.ACTIVE: frozenset({_S.EXPIRED, _S.CONVERTED, _S.CANCELLED}),
    _S.EXPIRED: frozenset(),
    _S.CONVERTED: frozenset(),
    _S.CANCELLED: frozenset(),
}

REDEEMABLE_STATUSES = (_S.PENDING, _S.SENT)
RUNNING_STATUSES = (_S.ACTIVATED, _S.ACTIVE)
# Every invite that was ever redeemed, whatever happened afterwards
EVER_ACTIVATED_STATUSES = (_S.ACTIVATED, _S.ACTIVE, _S.CONVERTED, _S.EXPIRED)
TERMINAL_STATUSES = tuple(s for s, nxt in TRIAL_TRANSITIONS.items() if not nxt)


def can_transition(current: TrialInviteStatus, target: TrialInviteStatus) -> bool:
    return target in TRIAL_TRANSITIONS.get(current, frozenset())


class TrialInvite(Base):
    __tablename__ = "trial_invites"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    promoter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promoters.id"), nullable=False
    )
    plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=True
    )
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False)
    invite_method: Mapped[InviteMethod] = mapped_column(
        Enum(InviteMethod, native_enum=False, length=10),
        default=InviteMethod.CODE,
        nullable=False,
    )
    channel: Mapped[Optional[ShareChannel]] = mapped_column(
        Enum(ShareChannel, native_enum=False, length=20)
    )

    # Invitee (all optional - blind invites are allowed)
    invitee_name: Mapped[Optional[str]] = mapped_column(String(100))
    invitee_phone: Mapped[Optional[str]] = mapped_column(String(20))
    invitee_email: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[TrialInviteStatus] = mapped_column(
        Enum(TrialInviteStatus, native_enum=False, length=20),
        default=TrialInviteStatus.PENDING,
        nullable=False,
    )
    link_click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_clicked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Redemption
    activated_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=True
    )
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_trial_invites_promoter_created", "promoter_id", "created_at"),
        Index("ix_trial_invites_status_expires", "status", "expires_at"),
        Index("ix_trial_invites_activated_user", "activated_user_id"),
    )

    def __repr__(self) -> str:
        return f"<TrialInvite {self.code} ({self.status.value if self.status else None})>"
