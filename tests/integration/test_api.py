"""Integration tests for API endpoints"""

import pytest
from fastapi.testclient import TestClient
from daswos_autoshop.domain.exceptions import CatalogUnavailableError
from daswos_autoshop.domain.models import SettlementResult

pytestmark = pytest.mark.integration


def enable_autoshop(client: TestClient, user_id: str = "u1") -> None:
    response = client.put(
        f"/v1/policy/{user_id}",
        json={
            "enabled": True,
            "auto_purchase": True,
            "confidence_threshold": 0.4,
            "preferred_categories": ["electronics"],
        },
    )
    assert response.status_code == 200


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "daswos-autoshop"}


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    client.post("/v1/coins/bonus", json={"user_id": "u1", "amount": 10})

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "daswos_ledger_append_total" in response.text


def test_request_id_header(client: TestClient):
    response = client.get("/health")
    assert response.headers["X-Request-ID"]


def test_policy_defaults_and_partial_update(client: TestClient):
    defaults = client.get("/v1/policy/u1").json()
    assert defaults["enabled"] is False
    assert defaults["confidence_threshold"] == 0.85
    assert defaults["purchase_frequency"] == {"hourly": 1, "daily": 5, "monthly": 50}

    response = client.put("/v1/policy/u1", json={"budget_limit": 2000, "avoid_tags": ["alcohol"]})
    assert response.status_code == 200
    updated = response.json()
    assert updated["budget_limit"] == 2000
    assert updated["avoid_tags"] == ["alcohol"]
    assert updated["max_price_per_item"] == defaults["max_price_per_item"]


def test_policy_update_validation(client: TestClient):
    response = client.put("/v1/policy/u1", json={"confidence_threshold": 1.5})
    assert response.status_code == 422


def test_coin_top_up_balance_and_history(client: TestClient, payments):
    response = client.post("/v1/coins/purchase", json={"user_id": "u1", "amount": 500, "payment_method_ref": "card_1"})
    assert response.status_code == 201
    assert response.json()["kind"] == "purchase"
    assert payments.calls == [("u1", 500, "card_1")]

    assert client.get("/v1/coins/balance", params={"user_id": "u1"}).json() == {"user_id": "u1", "balance": 500}

    history = client.get("/v1/coins/transactions", params={"user_id": "u1"}).json()
    assert [t["amount"] for t in history["transactions"]] == [500]


def test_transactions_since_filter(client: TestClient, clock):
    client.post("/v1/coins/bonus", json={"user_id": "u1", "amount": 100})
    clock.advance(hours=2)
    client.post("/v1/coins/bonus", json={"user_id": "u1", "amount": 40})

    response = client.get("/v1/coins/transactions", params={"user_id": "u1", "since": "2026-03-10T13:00:00Z"})

    assert response.status_code == 200
    assert [t["amount"] for t in response.json()["transactions"]] == [40]


def test_declined_coin_purchase_is_402(client: TestClient, payments):
    payments.result = SettlementResult(success=False, reason="card declined")

    response = client.post("/v1/coins/purchase", json={"user_id": "u1", "amount": 500, "payment_method_ref": "card_1"})

    assert response.status_code == 402
    assert response.json()["error"] == "PaymentSettlementError"
    assert client.get("/v1/coins/balance", params={"user_id": "u1"}).json()["balance"] == 0


def test_invalid_coin_amount_rejected(client: TestClient):
    response = client.post("/v1/coins/bonus", json={"user_id": "u1", "amount": 0})
    assert response.status_code == 422


def test_start_without_coins_fails_softly(client: TestClient):
    enable_autoshop(client)

    response = client.post("/v1/autoshop/start", json={"user_id": "u1"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert "DasWos Coins" in body["reason"]


def test_autoshop_session_lifecycle(client: TestClient):
    """Test start → immediate purchase → status → stop"""
    enable_autoshop(client)
    client.post("/v1/coins/bonus", json={"user_id": "u1", "amount": 1000})

    started = client.post("/v1/autoshop/start", json={"user_id": "u1", "duration_value": 1, "duration_unit": "hours"})
    assert started.status_code == 200
    assert started.json()["success"] is True
    assert started.json()["data"]["state"] == "active"

    status = client.get("/v1/autoshop/status", params={"user_id": "u1"}).json()
    assert status["data"]["purchase_count_this_window"] == 1
    assert status["data"]["history_count"] == 1

    history = client.get("/v1/recommendations/history", params={"user_id": "u1"}).json()
    assert [r["product_id"] for r in history["recommendations"]] == ["p_headphones"]
    assert client.get("/v1/coins/balance", params={"user_id": "u1"}).json()["balance"] == 700

    stopped = client.post("/v1/autoshop/stop", json={"user_id": "u1"})
    assert stopped.json()["data"]["state"] == "stopped"
    again = client.post("/v1/autoshop/stop", json={"user_id": "u1"})
    assert again.json()["success"] is True


def test_start_rejects_bad_duration_unit(client: TestClient):
    response = client.post("/v1/autoshop/start", json={"user_id": "u1", "duration_value": 1, "duration_unit": "weeks"})
    assert response.status_code == 422


def test_generate_and_accept_recommendation(client: TestClient):
    enable_autoshop(client)
    client.post("/v1/coins/bonus", json={"user_id": "u1", "amount": 1000})

    created = client.post("/v1/recommendations/generate", json={"user_id": "u1"})
    assert created.status_code == 201
    rec_id = created.json()["id"]
    assert created.json()["status"] == "pending"

    pending = client.get("/v1/recommendations", params={"user_id": "u1"}).json()
    assert [r["id"] for r in pending["recommendations"]] == [rec_id]

    bought = client.put(f"/v1/recommendations/{rec_id}/status", json={"status": "purchased"})
    assert bought.status_code == 200
    assert bought.json()["success"] is True
    assert bought.json()["recommendation"]["status"] == "purchased"
    assert bought.json()["transaction_id"]

    conflict = client.put(f"/v1/recommendations/{rec_id}/status", json={"status": "rejected"})
    assert conflict.status_code == 409


def test_status_update_unknown_recommendation(client: TestClient):
    response = client.put("/v1/recommendations/missing/status", json={"status": "rejected"})
    assert response.status_code == 404


def test_status_update_rejects_pending_target(client: TestClient):
    response = client.put("/v1/recommendations/any/status", json={"status": "pending"})
    assert response.status_code == 422


def test_generate_with_no_match_is_404(client: TestClient):
    client.put("/v1/policy/u1", json={"minimum_trust_score": 100})

    response = client.post("/v1/recommendations/generate", json={"user_id": "u1"})

    assert response.status_code == 404
    assert response.json()["error"] == "NoMatchError"


def test_catalog_outage_is_503(client: TestClient, service, monkeypatch):
    async def down(*args, **kwargs):
        raise CatalogUnavailableError("timeout")

    monkeypatch.setattr(service.engine.catalog, "query_products", down)

    response = client.post("/v1/recommendations/generate", json={"user_id": "u1"})

    assert response.status_code == 503
    assert response.json()["detail"] == "Upstream service unavailable"


def test_clear_pending_recommendations(client: TestClient):
    enable_autoshop(client)
    for _ in range(2):
        client.post("/v1/recommendations/generate", json={"user_id": "u1"})

    response = client.delete("/v1/recommendations", params={"user_id": "u1"})

    assert response.json() == {"user_id": "u1", "cleared": 2}
    assert client.get("/v1/recommendations", params={"user_id": "u1"}).json()["recommendations"] == []


def test_request_id_is_propagated(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"


def test_request_metrics_use_route_templates(client: TestClient):
    client.get("/v1/policy/some-user")

    metrics = client.get("/metrics").text
    assert 'endpoint="/v1/policy/{user_id}"' in metrics
    assert "some-user" not in metrics
