"""Account Matcher Module.

Deterministically maps accounts found in an extraction onto the user's
existing ledger accounts, or decides that a new account is needed.

Usage:
    from account_matcher import match_accounts

    result = match_accounts(extraction, store.list_existing_accounts(user_id))
"""

from account_matcher.models import (
    AccountMapResult,
    AccountMapping,
    CreateNew,
    ExistingAccount,
    MatchExisting,
    NO_MATCH_REASON,
)
from account_matcher.matcher import find_aggregate_account, match_accounts
from account_matcher.normalize import (
    institutions_match,
    normalize_institution,
    strip_number_mask,
)

__all__ = [
    "AccountMapResult",
    "AccountMapping",
    "CreateNew",
    "ExistingAccount",
    "MatchExisting",
    "NO_MATCH_REASON",
    "find_aggregate_account",
    "match_accounts",
    "institutions_match",
    "normalize_institution",
    "strip_number_mask",
]
