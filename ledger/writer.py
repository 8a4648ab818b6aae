"""Reconciling Writer - persist a validated extraction into the ledger.

Phases:
1. Resolve target accounts (matched ids pass through, new ones are created
   in one batch, falling back to per-row insert + lookup on a uniqueness
   conflict so concurrent uploads converge on one account row)
2. Build and deduplicate snapshot / transaction rows per account
3. One bulk upsert per table, keyed deterministically
4. Reconcile holdings per account (bounded thread pool)
5. Unallocated positions -> per-institution aggregate account
6. Recompute summaries of every touched account (bounded thread pool)
7. Update the statement record

A failure in one account is logged and recorded on its result; the writer
carries on with the remaining accounts.
"""

import contextvars
import sqlite3
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from account_matcher.models import AccountMapResult, CreateNew, MatchExisting
from account_matcher.normalize import strip_number_mask
from core.config import get_settings
from core.models.extraction import (
    AccountEntry,
    AccountType,
    ExtractionDocument,
    Position,
    account_category_for,
)
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from ledger.dedup import dedup_balances, dedup_positions, dedup_transactions
from ledger.holdings import reconcile_holdings, recompute_account_summary
from ledger.models import (
    AccountAction,
    AccountWriteResult,
    AggregateWriteResult,
    WriteReport,
    WriteTotals,
)
from ledger.store import (
    DATA_SOURCE_UPLOAD,
    SNAPSHOT_TYPE_MANUAL,
    LedgerStore,
    utc_now,
)


logger = get_logger(__name__)

WRITE_ERRORS = (sqlite3.Error, ValueError)


def external_transaction_id(statement_id: str, account_id: str, index: int) -> str:
    """Deterministic transaction key: re-writing a statement never duplicates rows."""
    return f"upload_{statement_id}_{account_id}_{index}"


@dataclass
class _AccountWork:
    """Rows and outcome for one extracted account while the write is in flight."""
    index: int
    entry: AccountEntry
    result: AccountWriteResult
    positions: List[Position] = field(default_factory=list)
    position_rows: List[Dict[str, Any]] = field(default_factory=list)
    balance_rows: List[Dict[str, Any]] = field(default_factory=list)
    transaction_rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def account_id(self) -> Optional[str]:
        return self.result.account_id

    @property
    def ok(self) -> bool:
        return self.result.account_id is not None and self.result.error is None

    def fail(self, message: str) -> None:
        if self.result.error is None:
            self.result.error = message


# =============================================================================
# Row Builders
# =============================================================================

def position_snapshot_row(account_id: str, position: Position, statement_id: str, now: str) -> Dict[str, Any]:
    return {
        "account_id": account_id,
        "snapshot_date": position.snapshot_date,
        "symbol": position.symbol,
        "snapshot_type": SNAPSHOT_TYPE_MANUAL,
        "cusip": position.cusip,
        "asset_type": position.asset_type.value if position.asset_type else None,
        "description": position.description,
        "quantity": position.quantity,
        "short_quantity": position.short_quantity,
        "average_cost_basis": position.average_cost_basis,
        "market_price_per_share": position.market_price_per_share,
        "market_value": position.market_value,
        "cost_basis_total": position.cost_basis_total,
        "unrealized_profit_loss": position.unrealized_profit_loss,
        "unrealized_profit_loss_pct": position.unrealized_profit_loss_pct,
        "day_change_amount": position.day_change_amount,
        "day_change_pct": position.day_change_pct,
        "uploaded_statement_id": statement_id,
        "created_at": now,
    }


def balance_snapshot_row(account_id: str, balance, statement_id: str, now: str) -> Dict[str, Any]:
    return {
        "account_id": account_id,
        "snapshot_date": balance.snapshot_date,
        "snapshot_type": SNAPSHOT_TYPE_MANUAL,
        "liquidation_value": balance.liquidation_value,
        "cash_balance": balance.cash_balance,
        "available_funds": balance.available_funds,
        "total_cash": balance.total_cash,
        "equity": balance.equity,
        "long_market_value": balance.long_market_value,
        "buying_power": balance.buying_power,
        "uploaded_statement_id": statement_id,
        "created_at": now,
    }


def transaction_row(account_id: str, index: int, tx, statement_id: str, now: str) -> Dict[str, Any]:
    return {
        "account_id": account_id,
        "external_transaction_id": external_transaction_id(statement_id, account_id, index),
        "transaction_date": tx.transaction_date,
        "settlement_date": tx.settlement_date,
        "symbol": tx.symbol,
        "cusip": tx.cusip,
        "asset_type": tx.asset_type.value if tx.asset_type else None,
        "description": tx.description,
        "action": tx.action.value,
        "quantity": tx.quantity,
        "price_per_share": tx.price_per_share,
        "total_amount": tx.total_amount,
        "fees": tx.fees or Decimal("0"),
        "commission": tx.commission or Decimal("0"),
        "data_source": DATA_SOURCE_UPLOAD,
        "uploaded_statement_id": statement_id,
        "created_at": now,
    }


def new_account_row(user_id: str, entry: AccountEntry, extraction: ExtractionDocument, now: str) -> Dict[str, Any]:
    """Accounts row for an extracted account that has no ledger match."""
    info = entry.account_info
    institution = info.institution_name or extraction.document.institution_name or "Unknown"
    visible = strip_number_mask(info.account_number)
    if info.account_nickname:
        nickname = info.account_nickname
    elif visible:
        nickname = f"{institution} ...{visible[-4:]}"
    else:
        nickname = f"{institution} Account"

    return {
        "id": str(uuid.uuid4()),
        "user_id": user_id,
        "account_number": info.account_number,
        "account_type": info.account_type.value if info.account_type else None,
        "account_category": account_category_for(info.account_type).value,
        "institution_name": institution,
        "account_nickname": nickname,
        "account_group": info.account_group,
        "data_source": DATA_SOURCE_UPLOAD,
        "is_aggregate": 0,
        "created_at": now,
        "updated_at": now,
    }


# =============================================================================
# Phase 1: Resolve Accounts
# =============================================================================

def _create_accounts(store: LedgerStore, user_id: str, pending: List[_AccountWork],
                     rows: List[Dict[str, Any]]) -> None:
    """Create new accounts in one batch, converging on existing rows on conflict."""
    if not pending:
        return
    try:
        store.insert_accounts(rows)
        for work, row in zip(pending, rows):
            work.result.account_id = row["id"]
        return
    except sqlite3.IntegrityError as e:
        logger.warning(
            "Batch account insert hit a uniqueness conflict, inserting one at a time",
            extra_fields={"error": str(e), "accounts": len(rows)},
        )

    for work, row in zip(pending, rows):
        try:
            store.insert_account(row)
            work.result.account_id = row["id"]
        except sqlite3.IntegrityError:
            existing = store.find_account_by_number(user_id, row["account_number"], row["data_source"])
            if existing is None:
                work.fail(f"Could not create account {row['account_number']}")
                logger.error(f"Account creation conflict without existing row for entry {work.index}")
                continue
            work.result.account_id = existing["id"]
            work.result.action = AccountAction.MATCHED
            logger.info(
                f"Converged on existing account {existing['id']} for entry {work.index}",
                extra_fields={"account_number": row["account_number"]},
            )
        except WRITE_ERRORS as e:
            logger.exception(f"Failed to create account for entry {work.index}")
            work.fail(f"Account creation failed: {e}")


def resolve_accounts(
    store: LedgerStore,
    user_id: str,
    extraction: ExtractionDocument,
    mapping: AccountMapResult,
) -> List[_AccountWork]:
    """Phase 1: one work item per account entry that carries data."""
    now = utc_now()
    work_items: List[_AccountWork] = []
    pending: List[_AccountWork] = []
    rows: List[Dict[str, Any]] = []

    for index, entry in enumerate(extraction.accounts):
        if not entry.has_data:
            logger.debug(f"Skipping account entry {index} ({entry.label}): no data")
            continue

        decision = mapping.for_index(index) or CreateNew(extraction_index=index)
        if isinstance(decision, MatchExisting):
            result = AccountWriteResult(
                extraction_index=index,
                account_id=decision.account_id,
                account_nickname=entry.account_info.account_nickname or entry.label,
                action=AccountAction.MATCHED,
            )
            work_items.append(_AccountWork(index=index, entry=entry, result=result))
            continue

        row = new_account_row(user_id, entry, extraction, now)
        result = AccountWriteResult(
            extraction_index=index,
            account_nickname=row["account_nickname"],
            action=AccountAction.CREATED,
        )
        work = _AccountWork(index=index, entry=entry, result=result)
        work_items.append(work)
        pending.append(work)
        rows.append(row)

    try:
        _create_accounts(store, user_id, pending, rows)
    except WRITE_ERRORS as e:
        logger.exception("Account creation failed")
        for work in pending:
            work.fail(f"Account creation failed: {e}")

    return work_items


# =============================================================================
# Phases 2-3: Build Rows & Bulk Upsert
# =============================================================================

def build_rows(work: _AccountWork, statement_id: str, now: str) -> None:
    """Phase 2: deduplicated row sets for one resolved account."""
    account_id = work.account_id
    entry = work.entry

    work.positions = dedup_positions(entry.positions)
    work.position_rows = [
        position_snapshot_row(account_id, p, statement_id, now) for p in work.positions
    ]
    work.balance_rows = [
        balance_snapshot_row(account_id, b, statement_id, now) for b in dedup_balances(entry.balances)
    ]
    work.transaction_rows = [
        transaction_row(account_id, index, tx, statement_id, now)
        for index, tx in dedup_transactions(entry.transactions)
    ]


def _bulk_upsert(
    label: str,
    upsert: Callable[[Sequence[Dict[str, Any]]], int],
    works: Sequence[_AccountWork],
    rows_of: Callable[[_AccountWork], List[Dict[str, Any]]],
) -> Dict[int, int]:
    """Upsert one table for all accounts at once.

    If the combined upsert fails, retry account by account so a bad account
    does not take the others down with it.

    Returns:
        Rows written per extraction index
    """
    live = [w for w in works if w.ok]
    try:
        upsert([row for w in live for row in rows_of(w)])
        return {w.index: len(rows_of(w)) for w in live}
    except WRITE_ERRORS as e:
        logger.warning(f"Bulk {label} upsert failed, retrying per account", extra_fields={"error": str(e)})

    written: Dict[int, int] = {}
    for work in live:
        try:
            written[work.index] = upsert(rows_of(work))
        except WRITE_ERRORS as e:
            logger.exception(f"Failed to write {label} for account {work.account_id}")
            work.fail(f"{label}: {e}")
    return written


# =============================================================================
# Phase 5: Aggregate Account
# =============================================================================

def _aggregate_institution(extraction: ExtractionDocument) -> str:
    if extraction.document.institution_name:
        return extraction.document.institution_name
    for entry in extraction.accounts:
        if entry.account_info.institution_name:
            return entry.account_info.institution_name
    return "Unknown"


def synthesize_aggregate_balance(extraction: ExtractionDocument) -> Optional[Decimal]:
    """Sum of the real accounts' stated liquidation values (None when none is stated)."""
    stated = []
    for entry in extraction.accounts:
        latest = entry.latest_balance()
        if latest is not None and latest.liquidation_value is not None:
            stated.append(latest.liquidation_value)
    if not stated:
        return None
    return sum(stated, Decimal("0"))


def write_aggregate(
    store: LedgerStore,
    user_id: str,
    statement_id: str,
    extraction: ExtractionDocument,
    mapping: AccountMapResult,
) -> AggregateWriteResult:
    """Phase 5: unallocated positions go to the institution's aggregate account."""
    institution = _aggregate_institution(extraction)
    account_id = mapping.aggregate_account_id or store.find_aggregate_account(user_id, institution)
    created = False
    now = utc_now()

    if account_id is None:
        account_id = str(uuid.uuid4())
        store.insert_account({
            "id": account_id,
            "user_id": user_id,
            "account_number": None,
            "account_type": AccountType.OTHER.value,
            "account_category": account_category_for(None).value,
            "institution_name": institution,
            "account_nickname": f"{institution} (Aggregate)",
            "account_group": None,
            "data_source": DATA_SOURCE_UPLOAD,
            "is_aggregate": 1,
            "created_at": now,
            "updated_at": now,
        })
        created = True
        logger.info(f"Created aggregate account for {institution}", extra_fields={"account_id": account_id})

    result = AggregateWriteResult(account_id=account_id, institution_name=institution, created=created)
    positions = dedup_positions(extraction.unallocated_positions)
    result.positions_written = store.upsert_position_snapshots(
        [position_snapshot_row(account_id, p, statement_id, now) for p in positions]
    )

    holdings = reconcile_holdings(store, account_id, positions, statement_id)
    result.holdings_created = holdings.created
    result.holdings_updated = holdings.updated
    result.holdings_closed = holdings.closed

    liquidation = synthesize_aggregate_balance(extraction)
    if liquidation is not None:
        snapshot_date = (
            extraction.document.statement_end_date
            or (positions[0].snapshot_date if positions else None)
            or date.today()
        )
        store.upsert_balance_snapshots([{
            "account_id": account_id,
            "snapshot_date": snapshot_date,
            "snapshot_type": SNAPSHOT_TYPE_MANUAL,
            "liquidation_value": liquidation,
            "uploaded_statement_id": statement_id,
            "created_at": now,
        }])
        result.balance_written = True

    return result


# =============================================================================
# Thread Pool Helper
# =============================================================================

def _run_parallel(fn: Callable, items: Sequence, concurrency: int) -> List:
    """Run fn over items on a bounded pool; returns (item, result, error) triples in input order."""
    outcomes = []
    if not items:
        return outcomes
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        futures = [
            (item, pool.submit(contextvars.copy_context().run, fn, item))
            for item in items
        ]
        for item, future in futures:
            try:
                outcomes.append((item, future.result(), None))
            except WRITE_ERRORS as e:
                outcomes.append((item, None, e))
    return outcomes


# =============================================================================
# Public API
# =============================================================================

def write_extraction(
    store: LedgerStore,
    user_id: str,
    statement_id: str,
    extraction: ExtractionDocument,
    mapping: AccountMapResult,
    concurrency: Optional[int] = None,
) -> WriteReport:
    """Write a validated extraction into the ledger.

    Args:
        store: Ledger store
        user_id: Owner of the statement and accounts
        statement_id: Statement being written (tags every written row)
        extraction: Validated extraction document
        mapping: Account mapping from the matcher
        concurrency: Worker count for phases 4 and 6 (defaults to settings)

    Returns:
        WriteReport with per-account results and totals
    """
    concurrency = concurrency or get_settings().writer_concurrency
    start = time.time()
    report = WriteReport(statement_id=statement_id)

    with with_correlation(statement_id=statement_id, user_id=user_id, stage="write"):
        # Phase 1
        works = resolve_accounts(store, user_id, extraction, mapping)

        # Phase 2
        now = utc_now()
        for work in works:
            if work.ok:
                build_rows(work, statement_id, now)

        # Phase 3
        snapshots = _bulk_upsert("position snapshots", store.upsert_position_snapshots, works,
                                 lambda w: w.position_rows)
        balances = _bulk_upsert("balance snapshots", store.upsert_balance_snapshots, works,
                                lambda w: w.balance_rows)
        transactions = _bulk_upsert("transactions", store.upsert_transactions, works,
                                    lambda w: w.transaction_rows)
        for work in works:
            if work.ok:
                work.result.snapshots_written = snapshots.get(work.index, 0)
                work.result.balances_written = balances.get(work.index, 0)
                work.result.transactions_created = transactions.get(work.index, 0)

        # Phase 4: entries resolving to the same account reconcile together
        by_account: Dict[str, List[_AccountWork]] = {}
        for work in works:
            if work.ok and work.positions:
                by_account.setdefault(work.account_id, []).append(work)

        def reconcile(account_id: str):
            with with_correlation(account_id=account_id):
                positions = [p for w in by_account[account_id] for p in w.positions]
                return reconcile_holdings(store, account_id, positions, statement_id)

        for account_id, holdings, error in _run_parallel(reconcile, list(by_account), concurrency):
            owner = by_account[account_id][0]
            if error is not None:
                logger.error(f"Holdings reconciliation failed for account {account_id}: {error}")
                for work in by_account[account_id]:
                    work.fail(f"holdings: {error}")
                continue
            owner.result.holdings_created = holdings.created
            owner.result.holdings_updated = holdings.updated
            owner.result.holdings_closed = holdings.closed

        # Phase 5
        if extraction.unallocated_positions:
            try:
                report.aggregate_result = write_aggregate(store, user_id, statement_id, extraction, mapping)
            except WRITE_ERRORS as e:
                logger.exception("Failed to write unallocated positions")
                report.aggregate_result = AggregateWriteResult(
                    account_id=mapping.aggregate_account_id,
                    error=str(e),
                )

        # Phase 6
        touched: List[str] = []
        for work in works:
            if work.account_id and work.account_id not in touched:
                touched.append(work.account_id)
        aggregate = report.aggregate_result
        if aggregate and aggregate.account_id and aggregate.account_id not in touched:
            touched.append(aggregate.account_id)

        for account_id, _, error in _run_parallel(
            lambda a: recompute_account_summary(store, a), touched, concurrency
        ):
            if error is not None:
                logger.error(f"Summary recompute failed for account {account_id}: {error}")
                for work in works:
                    if work.account_id == account_id:
                        work.fail(f"summary: {error}")

        # Phase 7
        report.account_results = [w.result for w in works]
        report.totals = _totals(report)
        report.linked_account_ids = touched
        _update_statement(store, statement_id, extraction, mapping, report)

        metrics = get_metrics()
        for result in report.account_results:
            metrics.record_account_written(result.action.value, failed=result.failed)
        duration_ms = (time.time() - start) * 1000
        metrics.record_stage_time("write", duration_ms)

        logger.info(
            "Wrote extraction to ledger",
            extra_fields={**report.totals.model_dump(), "duration_ms": round(duration_ms, 1)},
        )

    return report


def _totals(report: WriteReport) -> WriteTotals:
    results = report.account_results
    totals = WriteTotals(
        accounts_processed=len(results),
        accounts_created=sum(1 for r in results if r.action == AccountAction.CREATED and r.account_id),
        holdings_created=sum(r.holdings_created for r in results),
        holdings_updated=sum(r.holdings_updated for r in results),
        holdings_closed=sum(r.holdings_closed for r in results),
        snapshots_written=sum(r.snapshots_written for r in results),
        balances_written=sum(r.balances_written for r in results),
        transactions_created=sum(r.transactions_created for r in results),
        accounts_failed=sum(1 for r in results if r.failed),
    )
    aggregate = report.aggregate_result
    if aggregate and aggregate.error is None:
        totals.holdings_created += aggregate.holdings_created
        totals.holdings_updated += aggregate.holdings_updated
        totals.holdings_closed += aggregate.holdings_closed
        totals.snapshots_written += aggregate.positions_written
        totals.balances_written += 1 if aggregate.balance_written else 0
    return totals


def _update_statement(
    store: LedgerStore,
    statement_id: str,
    extraction: ExtractionDocument,
    mapping: AccountMapResult,
    report: WriteReport,
) -> None:
    """Phase 7: record status, linkage and counts on the statement."""
    real_ids = report.real_account_ids
    store.update_statement(
        statement_id,
        parse_status="completed",
        parse_error=None,
        account_id=real_ids[0] if real_ids else None,
        linked_account_ids=report.linked_account_ids,
        transactions_created=report.totals.transactions_created,
        positions_created=report.totals.snapshots_written,
        statement_start_date=extraction.document.statement_start_date,
        statement_end_date=extraction.document.statement_end_date,
        account_mappings=mapping.model_dump(mode="json"),
        extraction_schema_version=extraction.schema_version,
        extracted_data=extraction.model_dump(mode="json"),
        confirmed_at=utc_now(),
    )
