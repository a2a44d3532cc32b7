"""
Phone number normalization - E.164 format using the phonenumbers library.

Promoter and invitee phones are stored normalized so duplicate-registration
checks compare like with like ("0912-345-678" and "+886 912 345 678" match).
"""
import logging
from typing import Optional

import phonenumbers

logger = logging.getLogger(__name__)


def _safe_bool(value) -> bool:
    """Accept only explicit True values (avoids MagicMock truthiness leaks in tests)."""
    return value is True


def normalize_phone_e164(phone: Optional[str], default_region: Optional[str] = None) -> Optional[str]:
    """
    Normalize a phone number to E.164 format.

    Handles:
    - 0912-345-678 (region TW)  → +886912345678
    - (555) 123-4567 (region US) → +15551234567
    - +886 912 345 678          → +886912345678

    Returns None if the number cannot be parsed or is not a possible number.
    """
    if not phone or not phone.strip():
        return None

    if default_region is None:
        from growth.config import get_settings
        default_region = get_settings().default_phone_region

    try:
        parsed = phonenumbers.parse(phone.strip(), default_region)
    except phonenumbers.NumberParseException:
        return None

    # Accept "possible" numbers, not only officially assigned ranges.
    is_valid = _safe_bool(phonenumbers.is_valid_number(parsed))
    is_possible = _safe_bool(phonenumbers.is_possible_number(parsed))
    if not is_valid and not is_possible:
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def normalize_or_keep(phone: Optional[str]) -> Optional[str]:
    """Normalize when possible; keep the trimmed input when the number is unparseable."""
    if not phone or not phone.strip():
        return None
    normalized = normalize_phone_e164(phone)
    if normalized is None:
        logger.debug("Phone kept unnormalized: %s***", phone.strip()[:4])
        return phone.strip()
    return normalized
