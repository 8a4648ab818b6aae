"""Account identity normalization.

Statements print the same account in many ways:
    "Charles Schwab & Co., Inc."  vs  "Schwab"
    "...5902" / "XXXX-5902" / "****5902"  vs  "5902"

These helpers reduce both sides to comparable forms.

Examples:
    normalize_institution("Charles Schwab & Co., Inc.") -> "charles schwab"
    strip_number_mask("XXXX-5902") -> "5902"
"""

import re
from typing import Optional


# Legal-entity suffixes dropped from institution names
INSTITUTION_SUFFIXES = {
    "inc", "incorporated", "llc", "corp", "corporation", "co", "company", "ltd",
}

_MASK_PREFIX_RE = re.compile(r"^[\s.*xX#•\-]+")
_SEPARATOR_RE = re.compile(r"[\s\-]")
_PUNCTUATION_RE = re.compile(r"[&,.;:()'\"]")


def strip_number_mask(number: Optional[str]) -> str:
    """Remove leading mask characters and separators from an account number.

    Args:
        number: Account number as printed or stored

    Returns:
        The visible part of the number ("" when nothing is left)
    """
    if not number:
        return ""
    visible = _MASK_PREFIX_RE.sub("", number.strip())
    return _SEPARATOR_RE.sub("", visible)


def is_masked(number: Optional[str]) -> bool:
    """True when the number carries a leading mask (…, ****, XXXX)."""
    if not number:
        return False
    return bool(_MASK_PREFIX_RE.match(number.strip()))


def normalize_institution(name: Optional[str]) -> str:
    """Normalize an institution name for comparison.

    Lower-cases, strips punctuation, drops legal-entity suffixes and
    collapses whitespace.
    """
    if not name:
        return ""
    text = _PUNCTUATION_RE.sub(" ", name.lower())
    tokens = [t for t in text.split() if t not in INSTITUTION_SUFFIXES]
    return " ".join(tokens)


def institutions_match(a: Optional[str], b: Optional[str]) -> bool:
    """Fuzzy institution equality: equal or one contains the other once normalized."""
    na = normalize_institution(a)
    nb = normalize_institution(b)
    if not na or not nb:
        return False
    return na == nb or na in nb or nb in na


def normalize_nickname(name: Optional[str]) -> str:
    if not name:
        return ""
    return re.sub(r"\s+", " ", name.lower()).strip()


def nicknames_match(a: Optional[str], b: Optional[str]) -> bool:
    """Nickname containment in either direction."""
    na = normalize_nickname(a)
    nb = normalize_nickname(b)
    if not na or not nb:
        return False
    return na in nb or nb in na
