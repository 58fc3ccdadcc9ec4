"""Patient phone helpers.

Raw phone numbers never reach storage; treatment records keep only the
SHA-256 digest of the normalized (hyphen-free) number.
"""

from __future__ import annotations

import hashlib
import re

from .error_messages import ErrorMessages

PHONE_KR_PATTERN = re.compile(r"^(01[016789])-?(\d{3,4})-?(\d{4})$")


def is_valid_phone(phone: str | None) -> bool:
    return bool(phone) and PHONE_KR_PATTERN.match(phone.strip()) is not None


def normalize_phone(phone: str) -> str:
    """``010-1234-5678`` -> ``01012345678``; raises ValueError on bad input."""
    match = PHONE_KR_PATTERN.match((phone or "").strip())
    if not match:
        raise ValueError(ErrorMessages.PHONE_INVALID)
    return "".join(match.groups())


def hash_phone(phone: str) -> str:
    return hashlib.sha256(normalize_phone(phone).encode("utf-8")).hexdigest()
