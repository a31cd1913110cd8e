# Complaint Reference Number (CRN) generation

import re
import secrets
import string
import time
from typing import Optional

from .models import normalize_area

_BASE36 = string.digits + string.ascii_uppercase

AREA_PREFIXES = {
    "SUGGESTIONS": "SUG",
    "RAIL_ANUBHAV": "EXP",
    "ENQUIRY": "ENQ",
}
DEFAULT_PREFIX = "CMP"

CRN_PATTERN = re.compile(r"^(CMP|SUG|EXP|ENQ)-[A-Z0-9]{5}-[A-Z0-9]{4}$")


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def prefix_for_area(area: Optional[str]) -> str:
    return AREA_PREFIXES.get(normalize_area(area) or "", DEFAULT_PREFIX)


def new_id(area: Optional[str] = None) -> str:
    """Build a CRN such as ``CMP-M1ABC-X2Y3``.

    The middle block is the tail of the millisecond clock in base36, the last
    block a random token. Collisions are unlikely but not checked for.
    """
    timestamp = to_base36(time.time_ns() // 1_000_000)[-5:].rjust(5, "0")
    random_token = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix_for_area(area)}-{timestamp}-{random_token}"


def is_valid_crn(value: str) -> bool:
    return isinstance(value, str) and bool(CRN_PATTERN.match(value))


def area_for_prefix(crn: str) -> Optional[str]:
    """Map a CRN back to the complaint area its prefix encodes.

    ``CMP`` covers both train and station complaints, so it maps to None.
    """
    if not is_valid_crn(crn):
        return None
    prefix = crn.split("-", 1)[0]
    for area, area_prefix in AREA_PREFIXES.items():
        if area_prefix == prefix:
            return area
    return None
