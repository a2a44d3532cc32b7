"""
Share link models - durable, channel-tagged attribution handles and their click log.

Each promoter has at most one REF_LINK row: ref_channel_key is set only on that
row, and (promoter_id, ref_channel_key) is unique. NULLs never collide, so
explicitly created links are unconstrained.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Integer, Boolean, DateTime, Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from growth.database import Base

REF_LINK_KEY = "REF"

IP_MAX_LENGTH = 45
HEADER_MAX_LENGTH = 500


class ShareChannel(str, enum.Enum):
    LINE = "LINE"
    FACEBOOK = "FACEBOOK"
    SMS = "SMS"
    QR_CODE = "QR_CODE"
    EMAIL = "EMAIL"
    DIRECT_LINK = "DIRECT_LINK"
    REF_LINK = "REF_LINK"
    OTHER = "OTHER"


class ShareLink(Base):
    __tablename__ = "share_links"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    promoter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("promoters.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    channel: Mapped[ShareChannel] = mapped_column(
        Enum(ShareChannel, native_enum=False, length=20), nullable=False
    )
    target_url: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ref_channel_key: Mapped[Optional[str]] = mapped_column(String(10))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint("promoter_id", "ref_channel_key", name="uq_share_links_promoter_ref"),
        Index("ix_share_links_promoter", "promoter_id"),
    )

    def __repr__(self) -> str:
        return f"<ShareLink {self.code} ({self.channel.value if self.channel else None})>"


class ShareLinkClick(Base):
    """Append-only. Rows are never updated or deleted."""
    __tablename__ = "share_link_clicks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    share_link_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("share_links.id"), nullable=False
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(IP_MAX_LENGTH))
    user_agent: Mapped[Optional[str]] = mapped_column(String(HEADER_MAX_LENGTH))
    referer: Mapped[Optional[str]] = mapped_column(String(HEADER_MAX_LENGTH))
    clicked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_share_link_clicks_link", "share_link_id"),
    )

    def __repr__(self) -> str:
        return f"<ShareLinkClick {self.share_link_id}>"
