"""Account Matcher - map extracted accounts onto existing ledger accounts.

Pure and deterministic: the only input besides the extraction is the list of
existing accounts, and the same inputs always produce the same mapping.

Matching tiers, tried in order for each extracted account (an existing
account claimed by an earlier entry is never offered again):

1. Account number
   - exact number                       -> high
   - last 4 characters                  -> high
   - last 3 characters                  -> high with institution match, else medium
2. Institution + account type, exactly one candidate -> medium
3. Institution + nickname containment                -> medium
4. Otherwise                                         -> create new

Aggregate accounts (holding unallocated positions) are kept out of the
candidate pool so they never intercept a per-account match.
"""

from typing import Callable, List, Optional, Sequence, Set

from account_matcher.models import (
    AccountMapResult,
    CreateNew,
    ExistingAccount,
    MatchExisting,
)
from account_matcher.normalize import (
    institutions_match,
    is_masked,
    nicknames_match,
    strip_number_mask,
)
from core.models.extraction import AccountEntry, Confidence, ExtractionDocument
from core.observability.logging import get_logger


logger = get_logger(__name__)

MIN_NUMBER_LENGTH = 2


# =============================================================================
# Matching Tiers
# =============================================================================

def _first(pool: Sequence[ExistingAccount], predicate: Callable[[ExistingAccount], bool],
           institution: Optional[str]) -> Optional[ExistingAccount]:
    """First candidate satisfying predicate, preferring institution matches."""
    hits = [a for a in pool if predicate(a)]
    if not hits:
        return None
    for account in hits:
        if institutions_match(institution, account.institution_name):
            return account
    return hits[0]


def match_by_number(
    entry: AccountEntry,
    pool: Sequence[ExistingAccount],
    index: int,
) -> Optional[MatchExisting]:
    """Tier 1: compare visible account-number digits."""
    info = entry.account_info
    detected = strip_number_mask(info.account_number)
    if len(detected) < MIN_NUMBER_LENGTH:
        return None

    institution = info.institution_name

    def institution_note(account: ExistingAccount) -> str:
        if institutions_match(institution, account.institution_name):
            return f"; institution matches ({account.institution_name})"
        return ""

    # Exact: both numbers fully visible and identical
    if not is_masked(info.account_number):
        account = _first(
            pool,
            lambda a: not is_masked(a.account_number) and strip_number_mask(a.account_number) == detected,
            institution,
        )
        if account:
            return MatchExisting(
                extraction_index=index,
                account_id=account.id,
                match_confidence=Confidence.HIGH,
                match_reason=f"Exact account number match{institution_note(account)}",
            )

    if len(detected) >= 4:
        suffix = detected[-4:]
        account = _first(
            pool,
            lambda a: len(strip_number_mask(a.account_number)) >= 4
            and strip_number_mask(a.account_number)[-4:] == suffix,
            institution,
        )
        if account:
            return MatchExisting(
                extraction_index=index,
                account_id=account.id,
                match_confidence=Confidence.HIGH,
                match_reason=f"Last 4 digits of account number match (...{suffix}){institution_note(account)}",
            )

    if len(detected) >= 3:
        suffix = detected[-3:]
        account = _first(
            pool,
            lambda a: len(strip_number_mask(a.account_number)) >= 3
            and strip_number_mask(a.account_number)[-3:] == suffix,
            institution,
        )
        if account:
            corroborated = institutions_match(institution, account.institution_name)
            return MatchExisting(
                extraction_index=index,
                account_id=account.id,
                match_confidence=Confidence.HIGH if corroborated else Confidence.MEDIUM,
                match_reason=(
                    f"Last 3 digits of account number match (...{suffix})"
                    + (institution_note(account) if corroborated else "; institution not confirmed")
                ),
            )

    return None


def match_by_institution_and_type(
    entry: AccountEntry,
    pool: Sequence[ExistingAccount],
    index: int,
) -> Optional[MatchExisting]:
    """Tier 2: unique candidate with the same institution and account type."""
    info = entry.account_info
    if not info.institution_name or info.account_type is None:
        return None

    hits = [
        a for a in pool
        if a.account_type == info.account_type
        and institutions_match(info.institution_name, a.institution_name)
    ]
    if len(hits) != 1:
        return None

    return MatchExisting(
        extraction_index=index,
        account_id=hits[0].id,
        match_confidence=Confidence.MEDIUM,
        match_reason=f"Institution and account type match ({hits[0].institution_name}, {info.account_type.value})",
    )


def match_by_nickname(
    entry: AccountEntry,
    pool: Sequence[ExistingAccount],
    index: int,
) -> Optional[MatchExisting]:
    """Tier 3: institution match plus nickname containment."""
    info = entry.account_info
    if not info.institution_name or not info.account_nickname:
        return None

    for account in pool:
        if institutions_match(info.institution_name, account.institution_name) and nicknames_match(
            info.account_nickname, account.account_nickname
        ):
            return MatchExisting(
                extraction_index=index,
                account_id=account.id,
                match_confidence=Confidence.MEDIUM,
                match_reason=f'Institution and nickname match ("{account.account_nickname}")',
            )
    return None


MATCH_TIERS = [match_by_number, match_by_institution_and_type, match_by_nickname]


# =============================================================================
# Aggregate Account
# =============================================================================

def find_aggregate_account(
    institution_name: Optional[str],
    existing_accounts: Sequence[ExistingAccount],
) -> Optional[str]:
    """Existing aggregate account for the document's institution, if any."""
    if not institution_name:
        return None
    for account in existing_accounts:
        if account.is_aggregate and institutions_match(institution_name, account.institution_name):
            return account.id
    return None


# =============================================================================
# Public API
# =============================================================================

def match_accounts(
    extraction: ExtractionDocument,
    existing_accounts: Sequence[ExistingAccount],
) -> AccountMapResult:
    """Map every account entry of an extraction to an existing account or a new one.

    Args:
        extraction: Validated extraction document
        existing_accounts: The user's ledger accounts

    Returns:
        AccountMapResult with one mapping per account entry
    """
    candidates = [a for a in existing_accounts if not a.is_aggregate]
    claimed: Set[str] = set()
    mappings: List = []

    for index, entry in enumerate(extraction.accounts):
        pool = [a for a in candidates if a.id not in claimed]

        mapping = None
        for tier in MATCH_TIERS:
            mapping = tier(entry, pool, index)
            if mapping is not None:
                break

        if mapping is None:
            mapping = CreateNew(extraction_index=index)
        else:
            claimed.add(mapping.account_id)

        logger.debug(
            f"Account {index} ({entry.label}): {mapping.action}",
            extra_fields={"confidence": mapping.match_confidence.value, "reason": mapping.match_reason},
        )
        mappings.append(mapping)

    aggregate_id = None
    if extraction.unallocated_positions:
        aggregate_id = find_aggregate_account(extraction.document.institution_name, existing_accounts)

    new_count = sum(1 for m in mappings if isinstance(m, CreateNew))
    result = AccountMapResult(
        mappings=mappings,
        unmatched_count=new_count,
        new_account_count=new_count,
        aggregate_account_id=aggregate_id,
    )

    logger.info(
        "Matched extracted accounts",
        extra_fields={
            "accounts": len(mappings),
            "matched": len(mappings) - new_count,
            "new": new_count,
            "aggregate_account_id": aggregate_id,
        },
    )
    return result
