"""
Auth dependencies - resolve the caller from a JWT Bearer token.

Tokens are issued by the platform's auth service; `sub` carries the user id.
A promoter is a user linked to an approved, active promoter record.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from growth.database import get_db
from growth.models.promoter import Promoter
from growth.models.user import User
from growth.services.attribution import RequestMeta

logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer()


def _jwt_secret() -> str:
    from growth.config import get_settings
    settings = get_settings()
    return settings.jwt_secret or settings.app_secret_key


def create_access_token(user_id: uuid.UUID, expires_in: timedelta = timedelta(hours=24)) -> str:
    """Mint a token for a user (seed scripts and tests; production tokens come from auth)."""
    import jwt
    from growth.config import get_settings
    return jwt.encode(
        {"sub": str(user_id), "exp": datetime.now(timezone.utc) + expires_in},
        _jwt_secret(),
        algorithm=get_settings().jwt_algorithm,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency to extract and verify the user from a JWT Bearer token."""
    import jwt as pyjwt
    from growth.config import get_settings
    settings = get_settings()

    try:
        payload = pyjwt.decode(
            credentials.credentials,
            _jwt_secret(),
            algorithms=[settings.jwt_algorithm],
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user_uuid = uuid.UUID(payload.get("sub"))
    except (ValueError, TypeError, AttributeError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    result = await db.execute(
        select(User).where(and_(User.id == user_uuid, User.is_active == True))
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_current_promoter(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Promoter:
    """Dependency that requires the user to be an approved, active promoter."""
    result = await db.execute(select(Promoter).where(Promoter.user_id == user.id))
    promoter = result.scalar_one_or_none()
    if promoter is None:
        raise HTTPException(status_code=403, detail="Promoter access required")
    if not promoter.is_operational:
        raise HTTPException(status_code=403, detail="Promoter account is not active")
    return promoter


async def get_current_admin(
    user: User = Depends(get_current_user),
) -> User:
    """Dependency that requires the authenticated user to be an admin."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For when behind the proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )


def get_session_factory():
    """Dependency for read fan-out: each concurrent query opens its own session."""
    from growth.database import async_session_factory
    return async_session_factory
