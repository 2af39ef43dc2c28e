"""Tests for the gateway HTTP routes."""

import pytest
from fastapi.testclient import TestClient

from paybound import __version__
from paybound.app import create_app
from paybound.errors import UpstreamError
from paybound.gateway import PaymentGateway
from paybound.ledger import Ledger
from paybound.policy import Budget, OnViolation, Policy


POLICY = Policy(
    name="weather-standard",
    budget=Budget(max_per_transaction=5, max_per_hour=20, max_per_day=100),
    allowed_resources=("https://api.weather.com",),
    on_violation=OnViolation.BLOCK,
)


@pytest.fixture
def gateway(upstream):
    gw = PaymentGateway(ledger=Ledger(), facilitator=upstream, policies={"test-bot": POLICY})
    yield gw
    gw.close()


@pytest.fixture
def client(gateway):
    return TestClient(create_app(gateway))


def verify(client, amount, agent="test-bot", resource="https://api.weather.com/forecast", **headers):
    if agent is not None:
        headers["X-Paybound-Agent"] = agent
    return client.post(
        "/verify",
        json={"resourceUrl": resource, "amount": amount},
        headers=headers,
    )


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["policies"] == 1
        assert data["transactions"] == 0
        assert data["totalVolume"] == 0
        assert data["agents"] == 0


class TestVerifyRoute:
    def test_allowed_relays_upstream(self, client, upstream):
        upstream.body = {"isValid": True, "payer": "0xabc"}
        response = verify(client, "2", Authorization="Bearer t")
        assert response.status_code == 200
        assert response.json() == {"isValid": True, "payer": "0xabc"}
        assert upstream.calls[0][2] == "Bearer t"

    def test_denied(self, client, upstream):
        response = verify(client, 10)
        assert response.status_code == 403
        assert response.json() == {
            "error": "policy_violation",
            "reason": "amount exceeds per-transaction limit (10 > 5)",
            "policy": "weather-standard",
            "agentId": "test-bot",
        }
        assert upstream.calls == []

    def test_missing_agent_header(self, client):
        response = verify(client, 5, agent=None)
        assert response.status_code == 403
        assert response.json()["agentId"] == "unknown"

    def test_upstream_status_passed_through(self, client, upstream):
        upstream.status_code = 400
        upstream.body = {"isValid": False}
        response = verify(client, 1)
        assert response.status_code == 400
        assert response.json() == {"isValid": False}

    def test_upstream_failure(self, client, upstream):
        upstream.error = UpstreamError("connection refused")
        response = verify(client, 1)
        assert response.status_code == 502
        assert response.json()["error"] == "upstream_error"

    def test_invalid_json_rejected(self, client):
        response = client.post(
            "/verify",
            content=b"{not json",
            headers={"Content-Type": "application/json", "X-Paybound-Agent": "test-bot"},
        )
        assert response.status_code == 422

    def test_ledger_failure_returns_500(self, client, gateway, upstream):
        gateway.ledger.close()
        response = verify(client, 1)
        assert response.status_code == 500
        assert response.json()["error"] == "ledger_error"
        assert upstream.calls == []


class TestSettleRoute:
    def test_settle_forwarded(self, client, upstream, gateway):
        upstream.body = {"success": True}
        response = client.post(
            "/settle", json={"amount": 999}, headers={"X-Paybound-Agent": "test-bot"}
        )
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert upstream.calls[0][0] == "settle"
        assert gateway.ledger.stats().count == 0


class TestTransactionsRoute:
    def test_lists_newest_first(self, client):
        verify(client, 1)
        verify(client, 10)
        response = client.get("/transactions")
        assert response.status_code == 200
        records = response.json()["transactions"]
        assert [r["policyResult"] for r in records] == ["deny", "allow"]
        assert records[0]["agentId"] == "test-bot"
        assert records[0]["amount"] == 10

    def test_filters(self, client):
        verify(client, 1)
        verify(client, 1, agent="other")
        verify(client, 2)
        response = client.get("/transactions", params={"agentId": "test-bot", "limit": 1})
        records = response.json()["transactions"]
        assert len(records) == 1
        assert records[0]["amount"] == 2

    def test_since_in_future_is_empty(self, client):
        verify(client, 1)
        response = client.get("/transactions", params={"since": 10**15})
        assert response.json() == {"transactions": []}

    @pytest.mark.parametrize("params", [{"limit": 0}, {"since": -1}, {"limit": "x"}])
    def test_invalid_query(self, client, params):
        assert client.get("/transactions", params=params).status_code == 422
