"""
HTTP surface tests — TestClient against the FastAPI app with a fresh platform.
"""
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import app
from app.schemas.lending import User
from app.services.platform import build_platform, get_platform
from app.services.price_feed import StaticPriceFeed


class _BrokenTransfers:
    def execute_transfer(self, from_id, to_id, amount, memo=""):
        raise RuntimeError("node unreachable")


def _make_client(transfers=None):
    platform = build_platform(Settings(), price_feed=StaticPriceFeed(), transfers=transfers)
    platform.users.register(User(id="borrower-1", credit_score=800, total_borrowed=20_000))
    platform.users.register(User(id="lender-1", credit_score=780))
    app.dependency_overrides[get_platform] = lambda: platform
    return TestClient(app), platform


_APPLICATION = {
    "borrower_id": "borrower-1",
    "amount": 10_000,
    "interest_rate": 0.07,
    "duration_days": 180,
    "collateral_ratio": 2.0,
    "loan_purpose": "home_improvement",
    "borrower_age": 35,
    "income_stability": 0.9,
}


def _activate_loan(client: TestClient) -> dict:
    application = client.post("/v1/lending/applications", json=_APPLICATION).json()
    offer = client.post("/v1/lending/offers", json={
        "lender_id": "lender-1",
        "application_id": application["id"],
        "amount": 10_000,
        "interest_rate": 0.12,
    }).json()
    resp = client.post(f"/v1/lending/offers/{offer['id']}/accept", json={"borrower_id": "borrower-1"})
    assert resp.status_code == 201
    return resp.json()


class TestRiskEndpoint:
    def test_assess(self):
        client, _ = _make_client()
        resp = client.post("/v1/risk/assess", json={
            "credit_score": 800,
            "loan_amount": 10_000,
            "interest_rate": 0.08,
            "duration_days": 180,
            "collateral_ratio": 2.0,
            "borrower_history": {"default_count": 0, "avg_payment_time_days": 5},
            "market_conditions": {"asset_price": 100, "volatility": 0.2, "lending_rate": 0.06},
            "loan_purpose": "home_improvement",
            "borrower_age": 35,
            "income_stability": 0.9,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["approved"] is True
        assert body["risk_level"] in ("LOW", "MEDIUM")
        assert body["risk_score"] < 50

    def test_missing_field(self):
        client, _ = _make_client()
        resp = client.post("/v1/risk/assess", json={"credit_score": 800})
        assert resp.status_code == 422

    def test_health(self):
        client, _ = _make_client()
        assert client.get("/v1/risk/health").json()["status"] == "ok"


class TestLendingEndpoints:
    def test_loan_lifecycle(self):
        client, _ = _make_client()
        loan = _activate_loan(client)
        assert loan["status"] == "active"

        resp = client.post(f"/v1/lending/loans/{loan['id']}/payments", json={"amount": 20_000})
        assert resp.status_code == 200
        assert resp.json()["loan"]["status"] == "repaid"

        payments = client.get(f"/v1/lending/loans/{loan['id']}/payments").json()
        assert len(payments) == 1

        stats = client.get("/v1/lending/statistics").json()
        assert stats["total_applications"] == 1
        assert stats["total_lent"] == 10_000

    def test_available_applications(self):
        client, _ = _make_client()
        created = client.post("/v1/lending/applications", json=_APPLICATION).json()
        listed = client.get("/v1/lending/applications").json()
        assert [a["id"] for a in listed] == [created["id"]]

        mine = client.get("/v1/lending/applications", params={"borrower_id": "borrower-1"}).json()
        assert [a["id"] for a in mine] == [created["id"]]

    def test_user_loans(self):
        client, _ = _make_client()
        loan = _activate_loan(client)
        loans = client.get("/v1/lending/users/lender-1/loans").json()
        assert [l["id"] for l in loans] == [loan["id"]]

    def test_unknown_application_is_404(self):
        client, _ = _make_client()
        resp = client.get("/v1/lending/applications/nope")
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "NOT_FOUND"

    def test_validation_error_is_422(self):
        client, _ = _make_client()
        resp = client.post("/v1/lending/applications", json={**_APPLICATION, "amount": 0})
        assert resp.status_code == 422
        assert resp.json()["details"] == {"field": "amount"}

    def test_state_conflict_is_409(self):
        client, _ = _make_client()
        loan = _activate_loan(client)
        client.post(f"/v1/lending/loans/{loan['id']}/default", json={"reason": "test"})
        resp = client.post(f"/v1/lending/loans/{loan['id']}/payments", json={"amount": 500})
        assert resp.status_code == 409
        assert resp.json()["error_code"] == "STATE_CONFLICT"

    def test_transfer_failure_is_502(self):
        client, _ = _make_client(transfers=_BrokenTransfers())
        loan = _activate_loan(client)
        resp = client.post(f"/v1/lending/loans/{loan['id']}/payments", json={"amount": 1_100})
        assert resp.status_code == 502
        assert resp.json()["error_code"] == "EXTERNAL_FAILURE"


class TestUserEndpoints:
    def test_registered_user_can_apply(self):
        client, _ = _make_client()
        resp = client.post("/v1/lending/users", json={
            "id": "borrower-2",
            "credit_score": 800,
            "total_borrowed": 20_000,
            "role": "borrower",
        })
        assert resp.status_code == 201
        assert resp.json()["credit_score"] == 800

        resp = client.post("/v1/lending/applications", json={**_APPLICATION, "borrower_id": "borrower-2"})
        assert resp.status_code == 201
        assert resp.json()["status"] == "approved"

    def test_get_user(self):
        client, _ = _make_client()
        resp = client.get("/v1/lending/users/lender-1")
        assert resp.status_code == 200
        assert resp.json()["credit_score"] == 780

    def test_unknown_user_is_404(self):
        client, _ = _make_client()
        resp = client.get("/v1/lending/users/nobody")
        assert resp.status_code == 404
        assert resp.json()["details"] == {"entity": "User", "id": "nobody"}

    def test_unregistered_borrower_cannot_apply(self):
        client, _ = _make_client()
        resp = client.post("/v1/lending/applications", json={**_APPLICATION, "borrower_id": "borrower-2"})
        assert resp.status_code == 422
        assert resp.json()["details"] == {"field": "borrower_id"}

    def test_duplicate_user_is_409(self):
        client, _ = _make_client()
        resp = client.post("/v1/lending/users", json={"id": "borrower-1", "credit_score": 600})
        assert resp.status_code == 409
        assert client.get("/v1/lending/users/borrower-1").json()["credit_score"] == 800

    def test_negative_credit_score_is_422(self):
        client, _ = _make_client()
        resp = client.post("/v1/lending/users", json={"id": "borrower-3", "credit_score": -1})
        assert resp.status_code == 422
        assert resp.json()["details"] == {"field": "credit_score"}


class TestAdminEndpoints:
    def test_run_cycle_liquidates(self):
        client, platform = _make_client()
        loan = _activate_loan(client)
        platform.price_feed.set_value(loan["id"], 10_000)

        resp = client.post("/v1/liquidation/run-cycle")
        assert resp.status_code == 200
        assert resp.json()["flagged"] == 1

        history = client.get("/v1/liquidation/history").json()
        assert [l["id"] for l in history] == [loan["id"]]
        assert history[0]["status"] == "liquidated"

        events = client.get("/v1/liquidation/events").json()
        assert events[0]["event_type"] == "loan_liquidated_full"

    def test_status(self):
        client, platform = _make_client()
        loan = _activate_loan(client)
        platform.price_feed.set_value(loan["id"], 13_000)

        status = client.get("/v1/liquidation/status").json()
        assert status["total_active_loans"] == 1
        assert status["at_risk_loans"] == 1
        assert status["critical_loans"] == 0

    def test_trigger_healthy_loan_is_409(self):
        client, _ = _make_client()
        loan = _activate_loan(client)
        resp = client.post(f"/v1/liquidation/loans/{loan['id']}/trigger")
        assert resp.status_code == 409

    def test_parameters(self):
        client, _ = _make_client()
        assert client.get("/v1/governance/parameters").json()["liquidation_threshold"] == 1.2

        resp = client.put("/v1/governance/parameters", json={"liquidation_threshold": 1.3})
        assert resp.status_code == 200
        assert resp.json()["liquidation_threshold"] == 1.3
        assert resp.json()["liquidation_penalty"] == 0.05

    def test_invalid_parameter_is_422(self):
        client, _ = _make_client()
        resp = client.put("/v1/governance/parameters", json={"liquidation_threshold": 0.5})
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "VALIDATION_ERROR"

    def test_pause_blocks_applications(self):
        client, _ = _make_client()
        client.put("/v1/governance/parameters", json={"emergency_pause": True})
        resp = client.post("/v1/lending/applications", json=_APPLICATION)
        assert resp.status_code == 409

    def test_metrics_exposed(self):
        client, _ = _make_client()
        client.post("/v1/lending/applications", json=_APPLICATION)
        resp = client.get("/metrics/")
        assert resp.status_code == 200
        assert "lending_risk_assessments_total" in resp.text
