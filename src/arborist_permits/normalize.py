import re
from typing import Optional


_WHITESPACE_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_LETTER_RE = re.compile(r"[A-Za-z]")


def clean_text(value: Optional[object]) -> Optional[str]:
    if value is None:
        return None
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned or None


def extract_dbh_value(value: Optional[str]) -> Optional[float]:
    """Largest positive number in a free-text DBH field.

    Portal entries look like "24", "24 in.", "18, 22" or "approx 30 inches";
    multi-stem trees report several sizes and the largest one wins.
    """

    if not value:
        return None
    numbers = [float(m) for m in _NUMBER_RE.findall(str(value))]
    numbers = [n for n in numbers if n > 0]
    if not numbers:
        return None
    return max(numbers)


def is_geocodable_address(address: Optional[str]) -> bool:
    if not address:
        return False
    return bool(_LETTER_RE.search(address)) and len(address.strip()) >= 5
