"""Shared test fixtures for the statement ledger tests."""

import copy
import json
from typing import List

import pytest

from core.observability.metrics import get_metrics
from extraction.runner import SourceDocument
from ledger.store import LedgerStore


USER_ID = "user-1"


# =============================================================================
# Sample Extraction Responses
# =============================================================================

SCHWAB_RESPONSE = {
    "schema_version": 1,
    "document": {
        "institution_name": "Charles Schwab",
        "document_type": "statement",
        "statement_start_date": "2024-01-01",
        "statement_end_date": "2024-01-31",
    },
    "accounts": [
        {
            "account_info": {
                "account_number": "...5902",
                "account_type": "individual",
                "institution_name": "Charles Schwab",
                "account_nickname": "Schwab Individual",
            },
            "transactions": [
                {
                    "transaction_date": "2024-01-10",
                    "symbol": "AAPL",
                    "description": "Bought AAPL",
                    "action": "buy",
                    "quantity": 5,
                    "price_per_share": 150,
                    "total_amount": -750,
                },
                {
                    "transaction_date": "2024-01-15",
                    "symbol": "MSFT",
                    "description": "MSFT dividend",
                    "action": "dividend",
                    "total_amount": 30,
                },
            ],
            "positions": [
                {"snapshot_date": "2024-01-31", "symbol": "AAPL", "quantity": 10, "market_value": 1500},
                {"snapshot_date": "2024-01-31", "symbol": "AAPL", "quantity": 5, "market_value": 750},
                {"snapshot_date": "2024-01-31", "symbol": "MSFT", "quantity": 20, "market_value": 8000},
            ],
            "balances": [
                {
                    "snapshot_date": "2024-01-31",
                    "liquidation_value": 11250,
                    "cash_balance": 1000,
                    "equity": 10250,
                },
            ],
        },
        {
            "account_info": {
                "account_number": "XXXX-1234",
                "account_type": "ira",
                "institution_name": "Charles Schwab",
                "account_nickname": "Schwab IRA",
            },
            "transactions": [
                {
                    "transaction_date": "2024-01-20",
                    "symbol": "VTI",
                    "description": "Bought VTI",
                    "action": "buy",
                    "quantity": 10,
                    "price_per_share": 240,
                    "total_amount": -2400,
                },
            ],
            "positions": [
                {"snapshot_date": "2024-01-31", "symbol": "VTI", "quantity": 50, "market_value": 12000},
            ],
            "balances": [
                {
                    "snapshot_date": "2024-01-31",
                    "liquidation_value": 12500,
                    "cash_balance": 500,
                    "equity": 12000,
                },
            ],
        },
    ],
    "unallocated_positions": [],
    "confidence": "high",
    "document_totals": {"total_value": 23750},
    "notes": [],
}


def single_account_response(positions: List[dict], liquidation_value, cash_balance=0) -> dict:
    """One brokerage account with the given positions and stated balance."""
    return {
        "schema_version": 1,
        "document": {
            "institution_name": "Fidelity",
            "document_type": "statement",
            "statement_end_date": "2024-03-31",
        },
        "accounts": [
            {
                "account_info": {
                    "account_number": "Z12345678",
                    "account_type": "individual",
                    "institution_name": "Fidelity",
                },
                "transactions": [],
                "positions": positions,
                "balances": [
                    {
                        "snapshot_date": "2024-03-31",
                        "liquidation_value": liquidation_value,
                        "cash_balance": cash_balance,
                    },
                ],
            },
        ],
        "confidence": "high",
    }


# First extraction misses a position: stated $100,000, holdings $80,000
SHORT_RESPONSE = single_account_response(
    [{"snapshot_date": "2024-03-31", "symbol": "AAPL", "quantity": 400, "market_value": 80000}],
    liquidation_value=100000,
)

# Corrected extraction: holdings + cash come to $99,500
CORRECTED_RESPONSE = single_account_response(
    [
        {"snapshot_date": "2024-03-31", "symbol": "AAPL", "quantity": 300, "market_value": 60000},
        {"snapshot_date": "2024-03-31", "symbol": "MSFT", "quantity": 100, "market_value": 39000},
    ],
    liquidation_value=100000,
    cash_balance=500,
)


# =============================================================================
# Fakes
# =============================================================================

class FakeExtractionClient:
    """Returns canned responses in order and records the sources it was sent."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.sources: List[SourceDocument] = []

    def extract(self, source: SourceDocument) -> str:
        self.sources.append(source)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response if isinstance(response, str) else json.dumps(response)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def store(tmp_path):
    ledger = LedgerStore(tmp_path / "ledger.db")
    ledger.init_db()
    return ledger


@pytest.fixture
def schwab_response():
    return copy.deepcopy(SCHWAB_RESPONSE)


@pytest.fixture
def source():
    return SourceDocument(filename="statement.csv", file_type="csv", text_content="Symbol,Qty,Value\n")
