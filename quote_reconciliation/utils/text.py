"""
Text normalization helpers shared by the matcher and the analyzer.
"""

import re
from typing import List, Optional


_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]")

LEGAL_SUFFIXES = [
    " LTD", " LIMITED", " PVT", " PRIVATE", " INC", " INCORPORATED",
    " LLC", " CORP", " CORPORATION", " LTEE", " INC.", " CO",
]


def normalize(value: Optional[str]) -> str:
    """Lowercase and strip everything that is not a-z or 0-9. None becomes ''."""
    if not value:
        return ""
    return _NON_ALPHANUMERIC.sub("", str(value).lower())


def tokenize(name: Optional[str], min_length: int = 3) -> List[str]:
    """Split a product name on whitespace, keeping tokens of at least min_length chars."""
    if not name:
        return []
    return [word for word in str(name).lower().split() if len(word) >= min_length]


def words_match(first: str, second: str, min_length: int = 3) -> bool:
    """Fuzzy token equality: normalized equality or mutual substring."""
    a, b = normalize(first), normalize(second)
    if len(a) < min_length or len(b) < min_length:
        return False
    return a == b or a in b or b in a


def normalize_company_name(name: Optional[str]) -> str:
    """Uppercase, drop legal suffixes and punctuation."""
    if not name:
        return ""
    name = name.upper()
    for suffix in LEGAL_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    name = "".join(c for c in name if c.isalnum() or c.isspace())
    return " ".join(name.split())
