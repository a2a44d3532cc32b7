"""
Promoter models - growth program participants and their reward/trial settings.

A promoter owns at most one reward config and one trial config.
referral_code is assigned once at creation and never changes.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Float, Integer, Boolean, DateTime, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from growth.database import Base


class PromoterType(str, enum.Enum):
    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"


class PromoterStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SUSPENDED = "SUSPENDED"


class RewardType(str, enum.Enum):
    NONE = "NONE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    PERCENTAGE = "PERCENTAGE"
    SUBSCRIPTION_EXTENSION = "SUBSCRIPTION_EXTENSION"


class Promoter(Base):
    __tablename__ = "promoters"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=True
    )

    # Identity
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    line_id: Mapped[Optional[str]] = mapped_column(String(100))

    # Program
    referral_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    type: Mapped[PromoterType] = mapped_column(
        Enum(PromoterType, native_enum=False, length=20),
        default=PromoterType.EXTERNAL,
        nullable=False,
    )
    status: Mapped[PromoterStatus] = mapped_column(
        Enum(PromoterStatus, native_enum=False, length=20),
        default=PromoterStatus.PENDING,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    # Organization metadata (self-editable)
    organization: Mapped[Optional[str]] = mapped_column(String(200))
    region: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[Optional[str]] = mapped_column(String(255))
    category: Mapped[Optional[str]] = mapped_column(String(100))
    social_links: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500))
    joined_reason: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Approval
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_promoters_status", "status"),
        Index("ix_promoters_email", "email"),
        Index("ix_promoters_phone", "phone"),
    )

    @property
    def is_operational(self) -> bool:
        """Approved and active. Anything else cannot issue, accept or log in."""
        return self.status == PromoterStatus.APPROVED and bool(self.is_active)

    def __repr__(self) -> str:
        return f"<Promoter {self.name} ({self.referral_code})>"


class PromoterRewardConfig(Base):
    __tablename__ = "promoter_reward_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    promoter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promoters.id"), unique=True, nullable=False
    )
    reward_type: Mapped[RewardType] = mapped_column(
        Enum(RewardType, native_enum=False, length=30),
        default=RewardType.NONE,
        nullable=False,
    )
    fixed_amount: Mapped[Optional[float]] = mapped_column(Float)
    percentage: Mapped[Optional[float]] = mapped_column(Float)
    extension_months: Mapped[Optional[int]] = mapped_column(Integer)
    max_rewards_per_month: Mapped[Optional[int]] = mapped_column(Integer)
    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<PromoterRewardConfig {self.reward_type.value if self.reward_type else None}>"


class PromoterTrialConfig(Base):
    __tablename__ = "promoter_trial_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    promoter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promoters.id"), unique=True, nullable=False
    )
    can_issue_trial: Mapped[bool] = mapped_column(Boolean, default=True)
    min_trial_days: Mapped[int] = mapped_column(Integer, default=7)
    max_trial_days: Mapped[int] = mapped_column(Integer, default=30)
    default_trial_days: Mapped[int] = mapped_column(Integer, default=14)
    trial_plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("plans.id"), nullable=True
    )
    monthly_issue_limit: Mapped[Optional[int]] = mapped_column(Integer)
    total_issue_limit: Mapped[Optional[int]] = mapped_column(Integer)

    # Issuance counters, advanced by a single conditional UPDATE per invite.
    # issued_month is only meaningful while issued_month_key equals the current "YYYY-MM".
    issued_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    issued_month: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    issued_month_key: Mapped[Optional[str]] = mapped_column(String(7))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<PromoterTrialConfig {self.min_trial_days}-{self.max_trial_days}d>"
