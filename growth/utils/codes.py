"""
Short, human-typeable codes for promoter referrals, share links and trial invites.

Codes come from a CSPRNG over an alphabet without look-alike characters
(no 0/O, 1/I). Uniqueness is claimed, not checked: the row is inserted under
its unique constraint inside a SAVEPOINT and a collision simply triggers a
fresh code. The attempt budget is small because 8 chars over 32 symbols makes
a real collision vanishingly rare - repeated failure means something is broken.
"""
import logging
import secrets
from typing import Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from growth.errors import CodeSpaceExhaustedError

logger = logging.getLogger(__name__)

REFERRAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERRAL_CODE_LENGTH = 8
SHARE_LINK_CODE_LENGTH = 8
TRIAL_CODE_PREFIX = "T"
TRIAL_CODE_LENGTH = 7
REF_LINK_PREFIX = "REF-"

T = TypeVar("T")


def generate_code(alphabet: str = REFERRAL_ALPHABET, length: int = REFERRAL_CODE_LENGTH, prefix: str = "") -> str:
    """Pick `length` characters from `alphabet` and prepend `prefix`. Upper-cased for display."""
    if length <= 0:
        raise ValueError("length must be positive")
    if not alphabet:
        raise ValueError("alphabet must not be empty")
    body = "".join(secrets.choice(alphabet) for _ in range(length))
    return f"{prefix}{body}".upper()


def generate_referral_code() -> str:
    return generate_code(REFERRAL_ALPHABET, REFERRAL_CODE_LENGTH)


def generate_share_link_code() -> str:
    return generate_code(REFERRAL_ALPHABET, SHARE_LINK_CODE_LENGTH)


def generate_trial_code() -> str:
    return generate_code(REFERRAL_ALPHABET, TRIAL_CODE_LENGTH, prefix=TRIAL_CODE_PREFIX)


def normalize_code(code: Optional[str]) -> str:
    """Inbound codes are matched case-insensitively."""
    return (code or "").strip().upper()


async def insert_with_unique_code(
    db: AsyncSession,
    code_column,
    build: Callable[[str], T],
    generate: Callable[[], str],
    max_attempts: Optional[int] = None,
) -> T:
    """
    Insert the row returned by build(code) with a freshly generated unique code.

    Each attempt runs in its own SAVEPOINT so a collision only discards that
    attempt, never the caller's surrounding transaction. An IntegrityError that
    is not a code collision (FK, another unique column) is re-raised untouched.

    Raises CodeSpaceExhaustedError after max_attempts collisions.
    """
    if max_attempts is None:
        from growth.config import get_settings
        max_attempts = get_settings().code_max_attempts

    for attempt in range(1, max_attempts + 1):
        code = generate()
        row = build(code)
        try:
            async with db.begin_nested():
                db.add(row)
                await db.flush()
            return row
        except IntegrityError:
            taken = (await db.execute(
                select(code_column).where(code_column == code)
            )).scalar_one_or_none()
            if taken is None:
                raise
            logger.warning(
                "Code collision on %s (attempt %d/%d)",
                code_column.key, attempt, max_attempts,
            )

    logger.error("Code space exhausted on %s after %d attempts", code_column.key, max_attempts)
    raise CodeSpaceExhaustedError(
        f"Could not allocate a unique {code_column.key} after {max_attempts} attempts"
    )
