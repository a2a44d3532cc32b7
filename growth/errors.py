"""
Domain errors for the promoter program.

Services raise these; the API layer maps them to HTTP responses in main.py.
Every rule violation carries a reason code so callers can render a precise message.
"""
from enum import Enum
from typing import Optional


class Reason(str, Enum):
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    DAYS_OUT_OF_RANGE = "DAYS_OUT_OF_RANGE"
    TOTAL_LIMIT_REACHED = "TOTAL_LIMIT_REACHED"
    MONTHLY_LIMIT_REACHED = "MONTHLY_LIMIT_REACHED"
    SELF_REFERRAL = "SELF_REFERRAL"
    REFERRAL_EXISTS = "REFERRAL_EXISTS"
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
    DUPLICATE_PHONE = "DUPLICATE_PHONE"
    ALREADY_PROMOTER = "ALREADY_PROMOTER"
    INVITE_NOT_AVAILABLE = "INVITE_NOT_AVAILABLE"
    SHARE_LINK_EXPIRED = "SHARE_LINK_EXPIRED"
    PROMOTER_INACTIVE = "PROMOTER_INACTIVE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_STATUS = "INVALID_STATUS"
    TRIAL_NOT_STARTED = "TRIAL_NOT_STARTED"


class GrowthError(Exception):
    """Base class for promoter program errors."""
    status_code = 400

    def __init__(self, message: str, reason: Optional[Reason] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason


class NotFoundError(GrowthError):
    """Unknown code, promoter or invite. Never says which entity was checked."""
    status_code = 404


class ConflictError(GrowthError):
    """Duplicate referral or duplicate registration."""
    status_code = 409


class DomainRuleViolation(GrowthError):
    """A business rule rejected the operation."""
    status_code = 400

    def __init__(self, reason: Reason, message: Optional[str] = None):
        super().__init__(message or reason.value, reason)


class CodeSpaceExhaustedError(GrowthError):
    """Raised when a unique code could not be claimed within the attempt budget."""
    status_code = 503
