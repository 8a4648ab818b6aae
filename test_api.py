"""Tests for the HTTP API (FastAPI TestClient against a temporary ledger)."""

import base64
import json

import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_extraction_client, get_store
from api.server import create_app
from conftest import CORRECTED_RESPONSE, SCHWAB_RESPONSE, SHORT_RESPONSE, USER_ID, FakeExtractionClient


@pytest.fixture
def extractor():
    return FakeExtractionClient(CORRECTED_RESPONSE)


@pytest.fixture
def client(store, extractor):
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_extraction_client] = lambda: extractor
    with TestClient(app) as test_client:
        yield test_client


def _process(client, statement_id, response, **extra):
    body = {"user_id": USER_ID, "raw_text": json.dumps(response), **extra}
    return client.post(f"/statements/{statement_id}/process", json=body)


SOURCE = {"filename": "statement.csv", "file_type": "csv", "text_content": "Symbol,Qty\n"}


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"api": "up", "storage": "up"}

    def test_ready(self, client):
        assert client.get("/ready").json() == {"status": "ready"}

    def test_metrics(self, client):
        _process(client, "stmt-1", SCHWAB_RESPONSE)
        data = client.get("/metrics").json()
        assert data["statements"]["completed"] == 1
        assert data["quality_checks"] == {"passed": 1}


class TestStatements:

    def test_process_and_fetch(self, client):
        response = _process(client, "stmt-1", SCHWAB_RESPONSE, source=SOURCE)
        assert response.status_code == 200
        data = response.json()
        assert data["statement_id"] == "stmt-1"
        assert data["totals"]["accounts_created"] == 2
        assert data["integrity"]["passed"] is True
        assert data["quality_check"]["check_status"] == "passed"
        assert len(data["linked_account_ids"]) == 2

        statement = client.get("/statements/stmt-1").json()
        assert statement["parse_status"] == "completed"
        assert statement["filename"] == "statement.csv"
        assert statement["linked_account_ids"] == data["linked_account_ids"]
        assert statement["statement_end_date"] == "2024-01-31"

    def test_unknown_statement(self, client):
        assert client.get("/statements/nope").status_code == 404

    def test_invalid_response_is_422(self, client):
        response = client.post(
            "/statements/stmt-1/process", json={"user_id": USER_ID, "raw_text": "no json here"}
        )
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["errors"][0]["message"] == "No JSON object found"
        assert client.get("/statements/stmt-1").json()["parse_status"] == "failed"

    def test_invalid_base64_is_400(self, client):
        source = dict(SOURCE, binary_b64="not base64!!")
        assert _process(client, "stmt-1", SCHWAB_RESPONSE, source=source).status_code == 400

    def test_binary_source_accepted(self, client):
        source = {
            "filename": "statement.pdf",
            "file_type": "pdf",
            "binary_b64": base64.b64encode(b"%PDF-1.7").decode(),
            "mime_type": "application/pdf",
        }
        assert _process(client, "stmt-1", SCHWAB_RESPONSE, source=source).status_code == 200

    def test_revert(self, client):
        _process(client, "stmt-1", SCHWAB_RESPONSE)
        response = client.post("/statements/stmt-1/revert")
        assert response.status_code == 200
        assert response.json()["transactions_deleted"] == 3

        statement = client.get("/statements/stmt-1").json()
        assert statement["parse_status"] == "reverted"
        assert statement["linked_account_ids"] == []

    def test_revert_unknown_statement(self, client):
        assert client.post("/statements/nope/revert").status_code == 404


class TestQualityCheckEndpoints:

    def test_latest_quality_check(self, client):
        _process(client, "stmt-1", SCHWAB_RESPONSE)
        response = client.get("/statements/stmt-1/quality-check")
        assert response.status_code == 200
        assert response.json()["check_status"] == "passed"

    def test_no_quality_check(self, client):
        assert client.get("/statements/nope/quality-check").status_code == 404

    def test_rerun_quality_check(self, client):
        first = _process(client, "stmt-1", SCHWAB_RESPONSE).json()["quality_check"]
        rerun = client.post("/statements/stmt-1/quality-check").json()
        assert rerun["check_status"] == "passed"
        assert rerun["id"] != first["id"]

    def test_rerun_for_unknown_statement(self, client):
        assert client.post("/statements/nope/quality-check").status_code == 404

    def test_fix_failed_check(self, client, extractor):
        processed = _process(client, "stmt-short", SHORT_RESPONSE).json()
        assert processed["quality_check"]["check_status"] == "failed"

        response = client.post("/statements/stmt-short/quality-check/fix", json=SOURCE)

        assert response.status_code == 200
        data = response.json()
        assert data["check_status"] == "fixed"
        assert data["fix_count"] == 1
        assert data["fix_attempts"][0]["status"] == "succeeded"
        assert len(extractor.sources) == 1

    def test_fix_requires_failed_check(self, client):
        _process(client, "stmt-1", SCHWAB_RESPONSE)
        response = client.post("/statements/stmt-1/quality-check/fix", json=SOURCE)
        assert response.status_code == 409
        assert "passed" in response.json()["detail"]

    def test_fix_without_check(self, client):
        assert client.post("/statements/nope/quality-check/fix", json=SOURCE).status_code == 404


class TestAccounts:

    def test_list_and_inspect_accounts(self, client):
        _process(client, "stmt-1", SCHWAB_RESPONSE)

        accounts = client.get("/accounts", params={"user_id": USER_ID}).json()
        assert len(accounts) == 2
        individual = next(a for a in accounts if a["account_number"] == "...5902")

        account = client.get(f"/accounts/{individual['id']}").json()
        assert account["total_market_value"] == 11250

        holdings = client.get(f"/accounts/{individual['id']}/holdings").json()
        assert {h["symbol"]: h["quantity"] for h in holdings} == {"AAPL": 15, "MSFT": 20}

        transactions = client.get(f"/accounts/{individual['id']}/transactions").json()
        assert [t["action"] for t in transactions] == ["buy", "dividend"]

    def test_closed_holdings_hidden_by_default(self, client):
        _process(client, "stmt-1", SCHWAB_RESPONSE)
        second = json.loads(json.dumps(SCHWAB_RESPONSE))
        second["accounts"][0]["positions"] = second["accounts"][0]["positions"][2:]
        _process(client, "stmt-2", second)

        accounts = client.get("/accounts", params={"user_id": USER_ID}).json()
        individual = next(a for a in accounts if a["account_number"] == "...5902")

        open_holdings = client.get(f"/accounts/{individual['id']}/holdings").json()
        all_holdings = client.get(
            f"/accounts/{individual['id']}/holdings", params={"include_closed": True}
        ).json()
        assert [h["symbol"] for h in open_holdings] == ["MSFT"]
        assert [h["symbol"] for h in all_holdings] == ["AAPL", "MSFT"]

    def test_unknown_account(self, client):
        assert client.get("/accounts/nope").status_code == 404
        assert client.get("/accounts/nope/holdings").status_code == 404
        assert client.get("/accounts/nope/transactions").status_code == 404

    def test_user_id_required(self, client):
        assert client.get("/accounts").status_code == 422


class TestCompare:

    def test_compare_two_extractions(self, client):
        other = json.loads(json.dumps(SCHWAB_RESPONSE))
        other["accounts"][1]["positions"][0]["quantity"] = 55
        response = client.post(
            "/compare",
            json={"primary_raw": json.dumps(SCHWAB_RESPONSE), "verification_raw": json.dumps(other)},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["agreement"] == "significant_differences"
        assert data["summary"]["errors"] == 1

    def test_invalid_verification_is_422(self, client):
        response = client.post(
            "/compare",
            json={"primary_raw": json.dumps(SCHWAB_RESPONSE), "verification_raw": "oops"},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["message"] == "verification extraction failed validation"
