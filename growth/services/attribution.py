"""
Attribution resolver - turns an inbound code into credit for a promoter (or user).

Public tracking must never fail a page load: unknown codes come back as
tracked=False rather than raising. Click counters are always bumped with a
SQL expression so concurrent clicks never lose an increment.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from growth.errors import DomainRuleViolation, NotFoundError, Reason
from growth.models.promoter import Promoter
from growth.models.share_link import (
    HEADER_MAX_LENGTH,
    IP_MAX_LENGTH,
    REF_LINK_KEY,
    ShareChannel,
    ShareLink,
    ShareLinkClick,
)
from growth.models.user import User
from growth.utils.codes import REF_LINK_PREFIX, normalize_code
from growth.utils.logging import mask_code
from growth.utils.timezone import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


@dataclass
class RequestMeta:
    """Client metadata stored with a click. Oversized values are cut, never rejected."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None

    def __post_init__(self):
        self.ip_address = _truncate(self.ip_address, IP_MAX_LENGTH)
        self.user_agent = _truncate(self.user_agent, HEADER_MAX_LENGTH)
        self.referer = _truncate(self.referer, HEADER_MAX_LENGTH)


@dataclass
class AttributionResult:
    tracked: bool
    type: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return {"tracked": self.tracked, "type": self.type, "name": self.name}


async def _find_promoter_by_code(db: AsyncSession, code: str) -> Optional[Promoter]:
    result = await db.execute(select(Promoter).where(Promoter.referral_code == code))
    return result.scalar_one_or_none()


async def _find_ref_link(db: AsyncSession, promoter_id) -> Optional[ShareLink]:
    result = await db.execute(
        select(ShareLink).where(
            ShareLink.promoter_id == promoter_id,
            ShareLink.ref_channel_key == REF_LINK_KEY,
        )
    )
    return result.scalar_one_or_none()


async def get_or_create_ref_link(
    db: AsyncSession,
    promoter: Promoter,
    target_url: Optional[str] = None,
) -> ShareLink:
    """
    Return the promoter's canonical REF_LINK share link, creating it on first use.

    Two first clicks racing each other both try the insert; the unique
    (promoter_id, ref_channel_key) constraint lets exactly one win and the
    loser re-reads the winner's row.
    """
    existing = await _find_ref_link(db, promoter.id)
    if existing is not None:
        return existing

    link = ShareLink(
        promoter_id=promoter.id,
        code=f"{REF_LINK_PREFIX}{promoter.referral_code}",
        channel=ShareChannel.REF_LINK,
        target_url=target_url,
        is_active=True,
        click_count=0,
        ref_channel_key=REF_LINK_KEY,
    )
    try:
        async with db.begin_nested():
            db.add(link)
            await db.flush()
        return link
    except IntegrityError:
        winner = await _find_ref_link(db, promoter.id)
        if winner is None:
            raise
        return winner


async def record_click(db: AsyncSession, share_link_id, meta: Optional[RequestMeta] = None) -> None:
    """Append a click row and bump the link's counter in the same transaction."""
    meta = meta or RequestMeta()
    db.add(ShareLinkClick(
        share_link_id=share_link_id,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        referer=meta.referer,
    ))
    await db.execute(
        update(ShareLink)
        .where(ShareLink.id == share_link_id)
        .values(click_count=ShareLink.click_count + 1)
        .execution_options(synchronize_session=False)
    )
    await db.flush()


async def resolve_and_track_click(
    db: AsyncSession,
    code: Optional[str],
    meta: Optional[RequestMeta] = None,
    target_url: Optional[str] = None,
) -> AttributionResult:
    """
    Resolve a ?ref= code and record the click.

    Promoter codes win over user codes. A user-code match has no side effects.
    """
    normalized = normalize_code(code)
    if not normalized:
        return AttributionResult(tracked=False)

    promoter = await _find_promoter_by_code(db, normalized)
    if promoter is not None and promoter.is_operational:
        link = await get_or_create_ref_link(db, promoter, target_url)
        await record_click(db, link.id, meta)
        logger.info(
            "Ref click tracked: code=%s promoter=%s",
            mask_code(normalized), str(promoter.id)[:8],
            extra={"promoter_id": str(promoter.id), "code": mask_code(normalized)},
        )
        return AttributionResult(tracked=True, type="promoter", name=promoter.name)

    user = (await db.execute(
        select(User).where(User.referral_code == normalized)
    )).scalar_one_or_none()
    if user is not None:
        return AttributionResult(tracked=True, type="user", name=user.name)

    return AttributionResult(tracked=False)


async def get_share_link_and_record_click(
    db: AsyncSession,
    code: str,
    meta: Optional[RequestMeta] = None,
) -> dict:
    """
    Resolve an explicit share link, log the click and return where to send the visitor.

    Raises NotFoundError for unknown or inactive links and
    DomainRuleViolation(SHARE_LINK_EXPIRED) past expires_at.
    """
    normalized = normalize_code(code)
    row = (await db.execute(
        select(ShareLink, Promoter)
        .join(Promoter, Promoter.id == ShareLink.promoter_id)
        .where(ShareLink.code == normalized)
    )).first()

    if row is None or not row[0].is_active:
        raise NotFoundError("Share link not found")

    link, promoter = row
    expires_at = ensure_utc(link.expires_at)
    if expires_at is not None and expires_at < utcnow():
        raise DomainRuleViolation(Reason.SHARE_LINK_EXPIRED, "Share link has expired")

    await record_click(db, link.id, meta)

    return {
        "channel": link.channel.value,
        "target_url": link.target_url,
        "promoter": {
            "name": promoter.name,
            "referral_code": promoter.referral_code,
        },
    }


async def validate_code(db: AsyncSession, code: Optional[str]) -> dict:
    """Pure lookup: is this an active promoter's referral code?"""
    normalized = normalize_code(code)
    if not normalized:
        return {"valid": False}
    promoter = await _find_promoter_by_code(db, normalized)
    if promoter is None or not promoter.is_operational:
        return {"valid": False}
    return {
        "valid": True,
        "promoter": {"name": promoter.name, "referral_code": promoter.referral_code},
    }
