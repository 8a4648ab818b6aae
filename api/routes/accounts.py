"""Account endpoints.

Read-only views of the ledger accounts a statement wrote to.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_store
from ledger.store import LedgerStore


router = APIRouter()


@router.get("")
def list_accounts(
    user_id: str = Query(..., description="Account owner"),
    store: LedgerStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    return store.list_accounts(user_id)


@router.get("/{account_id}")
def get_account(account_id: str, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    account = store.get_account(account_id)
    if account is None:
        raise HTTPException(status_code=404, detail=f"Account {account_id} not found")
    return account


@router.get("/{account_id}/holdings")
def get_holdings(
    account_id: str,
    include_closed: bool = Query(False, description="Include zero-quantity holdings"),
    store: LedgerStore = Depends(get_store),
) -> List[Dict[str, Any]]:
    """Current holdings for an account."""
    if store.get_account(account_id) is None:
        raise HTTPException(status_code=404, detail=f"Account {account_id} not found")
    holdings = store.get_holdings(account_id)
    if include_closed:
        return holdings
    return [h for h in holdings if (h.get("quantity") or 0) > 0]


@router.get("/{account_id}/transactions")
def get_transactions(account_id: str, store: LedgerStore = Depends(get_store)) -> List[Dict[str, Any]]:
    if store.get_account(account_id) is None:
        raise HTTPException(status_code=404, detail=f"Account {account_id} not found")
    return store.list_transactions(account_id)
