"""Ledger write result models.

- AccountWriteResult: what the writer did for one extracted account
- AggregateWriteResult: what the writer did with unallocated positions
- WriteReport: the full outcome of writing one extraction
- HoldingsReconcileResult: open/update/close counts for one account
- AccountSummary: recomputed account summary fields
- CleanupResult: rows removed when a statement is cleared
"""

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class AccountAction(str, Enum):
    MATCHED = "matched"
    CREATED = "created"


class HoldingChangeType(str, Enum):
    NEW_POSITION = "new_position"
    QUANTITY_CHANGE = "quantity_change"
    VALUE_UPDATE = "value_update"
    UNCHANGED = "unchanged"
    CLOSED_POSITION = "closed_position"


class HoldingChange(BaseModel):
    symbol: str
    change_type: HoldingChangeType
    old_quantity: Optional[Decimal] = None
    new_quantity: Optional[Decimal] = None


class HoldingsReconcileResult(BaseModel):
    account_id: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    closed: int = 0
    changes: List[HoldingChange] = Field(default_factory=list)


class AccountSummary(BaseModel):
    """Summary fields stored on the accounts row."""
    account_id: str
    total_market_value: Decimal = Decimal("0")
    equity_value: Decimal = Decimal("0")
    cash_balance: Optional[Decimal] = None
    buying_power: Optional[Decimal] = None
    holdings_count: int = 0
    stated_total_value: Optional[Decimal] = None


class AccountWriteResult(BaseModel):
    """Per-account outcome. ``error`` is set when writing this account failed."""
    extraction_index: int
    account_id: Optional[str] = None
    account_nickname: Optional[str] = None
    action: AccountAction
    holdings_created: int = 0
    holdings_updated: int = 0
    holdings_closed: int = 0
    snapshots_written: int = 0
    balances_written: int = 0
    transactions_created: int = 0
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class AggregateWriteResult(BaseModel):
    account_id: Optional[str] = None
    institution_name: Optional[str] = None
    created: bool = False
    positions_written: int = 0
    holdings_created: int = 0
    holdings_updated: int = 0
    holdings_closed: int = 0
    balance_written: bool = False
    error: Optional[str] = None


class WriteTotals(BaseModel):
    accounts_processed: int = 0
    accounts_created: int = 0
    holdings_created: int = 0
    holdings_updated: int = 0
    holdings_closed: int = 0
    snapshots_written: int = 0
    balances_written: int = 0
    transactions_created: int = 0
    accounts_failed: int = 0


class WriteReport(BaseModel):
    """Outcome of writing one extraction into the ledger."""
    statement_id: str
    account_results: List[AccountWriteResult] = Field(default_factory=list)
    aggregate_result: Optional[AggregateWriteResult] = None
    totals: WriteTotals = Field(default_factory=WriteTotals)
    linked_account_ids: List[str] = Field(default_factory=list)

    @property
    def real_account_ids(self) -> List[str]:
        """Ids of written (non-aggregate) accounts, in extraction order."""
        return [r.account_id for r in self.account_results if r.account_id and not r.failed]


class CleanupResult(BaseModel):
    statement_id: str
    transactions_deleted: int = 0
    position_snapshots_deleted: int = 0
    balance_snapshots_deleted: int = 0
    holdings_deleted: int = 0
    accounts_recomputed: List[str] = Field(default_factory=list)

    @property
    def rows_deleted(self) -> int:
        return (
            self.transactions_deleted
            + self.position_snapshots_deleted
            + self.balance_snapshots_deleted
            + self.holdings_deleted
        )
