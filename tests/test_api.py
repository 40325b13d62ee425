"""
Tests for the REST layer: routing, org scoping and error status mapping.
"""

import pytest
from fastapi.testclient import TestClient

from quote_reconciliation import api
from quote_reconciliation.errors import TransientError

from conftest import ORG, OTHER_ORG


HEADERS = {"X-Org-Id": ORG}


@pytest.fixture
def client(session_factory):
    api.app.dependency_overrides[api.session_factory] = lambda: session_factory
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_config_is_sanitized(client):
    body = client.get("/config").json()
    assert body["llm_mock_mode"] is True
    assert not any("key" in name for name in body)


def test_org_header_required(client, seed):
    response = client.get(f"/rfqs/{seed.rfq}/status")
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    response = client.get(f"/rfqs/{seed.rfq}/status", headers={"X-Org-Id": "  "})
    assert response.status_code == 400


def test_other_org_sees_not_found(client, seed):
    response = client.get(f"/rfqs/{seed.rfq}/status", headers={"X-Org-Id": OTHER_ORG})
    assert response.status_code == 404
    assert response.json()["context"]["entity"] == "Rfq"


def test_reconcile_and_review(client, seed, sample_extraction):
    response = client.post(f"/supplier-requests/{seed.req_acme}/reconcile",
                           json={"extraction": sample_extraction}, headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["needs_review"]
    assert [r["status"] for r in body["session"]["results"]] == ["matched", "partial", "extra", "missing"]

    session_id = body["session"]["session_id"]
    response = client.post(f"/sessions/{session_id}/review",
                           json={"action": "approve", "match_index": 0, "reviewer": "pat"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["status"] == "UNDER_REVIEW"
    assert response.json()["reviews"][0]["decision"] == "approved"

    response = client.post(f"/sessions/{session_id}/review",
                           json={"action": "approve", "match_index": 3, "reviewer": "pat"}, headers=HEADERS)
    assert response.status_code == 400

    response = client.post(f"/sessions/{session_id}/sync", json={}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["accepted"][0]["rrp"] == 195.0

    assert client.get(f"/sessions/{session_id}", headers=HEADERS).status_code == 200


def test_reconcile_without_input_is_bad_request(client, seed):
    response = client.post(f"/supplier-requests/{seed.req_acme}/reconcile", json={}, headers=HEADERS)
    assert response.status_code == 400


def test_unknown_session_is_not_found(client, seed):
    response = client.get("/sessions/missing", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_decline_twice_conflicts(client, seed):
    first = client.post(f"/supplier-requests/{seed.req_nordic}/decline", json={"reason": "No stock"},
                        headers=HEADERS)
    assert first.status_code == 200
    assert first.json()["status"] == "DECLINED"

    second = client.post(f"/supplier-requests/{seed.req_nordic}/decline", json={}, headers=HEADERS)
    assert second.status_code == 409
    assert second.json()["code"] == "CONFLICT"


def test_submit_and_status(client, seed):
    response = client.post(f"/supplier-requests/{seed.req_acme}/submit", headers=HEADERS, json={
        "lines": [{"requested_item_id": seed.faucet, "unit_price": 150}],
    })
    assert response.status_code == 200
    assert response.json()["latest_quote_version"] == 1

    status = client.get(f"/rfqs/{seed.rfq}/status", headers=HEADERS).json()
    assert status["status"] == "PARTIALLY_QUOTED"


def test_accept_quote_failure_keeps_result_body(client, priced):
    response = client.post(f"/items/{priced.faucet}/accept-quote", headers=HEADERS,
                           json={"quote_line_id": priced.lines[priced.sconce]})
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["code"] == "VALIDATION_ERROR"

    response = client.post(f"/items/{priced.faucet}/accept-quote", headers=HEADERS,
                           json={"quote_line_id": priced.lines[priced.faucet], "markup_percent": 50})
    assert response.status_code == 200
    assert response.json()["rrp"] == 225.0


def test_orders_flow(client, paid_invoice):
    preview = client.get(f"/invoices/{paid_invoice.invoice}/order-preview", headers=HEADERS)
    assert preview.status_code == 200
    assert len(preview.json()["groups"]) == 2

    created = client.post(f"/invoices/{paid_invoice.invoice}/orders", json={}, headers=HEADERS)
    assert created.status_code == 201
    orders = created.json()["orders"]
    assert len(orders) == 2

    response = client.post(f"/orders/{orders[0]['id']}/status", json={"status": "SENT_TO_SUPPLIER"},
                           headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["status"] == "SENT_TO_SUPPLIER"

    response = client.post(f"/orders/{orders[0]['id']}/status", json={"status": "LOST"}, headers=HEADERS)
    assert response.status_code == 400


def test_transient_error_sets_retry_after():
    response = api.error_response(TransientError("Rate limited", provider="gemini", retry_after=30))
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "30"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
