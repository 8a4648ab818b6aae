"""Account Matcher Data Models.

This module defines the Pydantic models for account matching:
- ExistingAccount: A ledger account the extraction may refer to
- MatchExisting / CreateNew: The closed per-entry mapping decision
- AccountMapResult: The full mapping for one extraction document
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from typing_extensions import Annotated

from core.models.extraction import AccountType, Confidence


NO_MATCH_REASON = "No matching existing account found"


class ExistingAccount(BaseModel):
    """A ledger account considered as a match candidate.

    Attributes:
        id: Ledger account id
        account_number: Stored number hint (often masked, e.g. "...5902")
        account_type: Account type, if known
        institution_name: Institution display name
        account_nickname: User-facing nickname
        is_aggregate: True for synthetic accounts holding unallocated positions
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_number: Optional[str] = None
    account_type: Optional[AccountType] = None
    institution_name: Optional[str] = None
    account_nickname: Optional[str] = None
    is_aggregate: bool = False


class MatchExisting(BaseModel):
    """Extraction entry resolved to an existing ledger account."""
    action: Literal["match_existing"] = "match_existing"
    extraction_index: int
    account_id: str
    match_confidence: Confidence
    match_reason: str


class CreateNew(BaseModel):
    """Extraction entry that needs a new ledger account.

    Creating is always safe, so the decision itself is high confidence.
    """
    action: Literal["create_new"] = "create_new"
    extraction_index: int
    match_confidence: Confidence = Confidence.HIGH
    match_reason: str = NO_MATCH_REASON

    @property
    def account_id(self) -> None:
        return None


AccountMapping = Annotated[Union[MatchExisting, CreateNew], Field(discriminator="action")]


class AccountMapResult(BaseModel):
    """Mapping for every account entry of one extraction document."""
    mappings: List[AccountMapping] = Field(default_factory=list)
    unmatched_count: int = 0
    new_account_count: int = 0
    aggregate_account_id: Optional[str] = None

    def for_index(self, extraction_index: int) -> Optional[Union[MatchExisting, CreateNew]]:
        for mapping in self.mappings:
            if mapping.extraction_index == extraction_index:
                return mapping
        return None
