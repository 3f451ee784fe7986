"""Admin risk / trust API: auth, reads, manual actions and job triggers."""
from datetime import timedelta

import pytest

from conftest import add_incidents, add_sales, add_store, make_token
from models import IncidentType
from services.job_lock import DAILY_RISK_EVAL, acquire_job_lock
from utils.clock import utcnow


@pytest.fixture
def risky_store(db):
    store = add_store(db, "S1")
    add_sales(db, store, 20, utcnow() - timedelta(days=2))
    add_incidents(db, store, IncidentType.REFUND, 4, utcnow() - timedelta(days=2))
    return store


class TestAuth:

    def test_missing_token(self, client):
        assert client.get("/admin/risk/stores").status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/admin/risk/stores", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 403

    def test_non_admin_role(self, client):
        headers = {"Authorization": f"Bearer {make_token(role='vendor')}"}
        assert client.get("/admin/trust/stores", headers=headers).status_code == 403


class TestRiskRoutes:

    def test_list_and_filter_stores(self, client, db, admin_headers):
        add_store(db, "S1")
        add_store(db, "S2")
        client.post("/admin/stores/S2/freeze", json={"reason": "Fraud report from buyer"}, headers=admin_headers)

        everything = client.get("/admin/risk/stores", headers=admin_headers).json()
        frozen = client.get("/admin/risk/stores", params={"level": "FROZEN"}, headers=admin_headers).json()

        assert [s["storeId"] for s in everything["items"]] == ["S1", "S2"]
        assert [s["storeId"] for s in frozen["items"]] == ["S2"]
        assert frozen["items"][0]["lastEvent"]["type"] == "MANUAL_FREEZE"

    def test_pagination_cursor(self, client, db, admin_headers):
        for store_id in ("S1", "S2", "S3"):
            add_store(db, store_id)

        first = client.get("/admin/risk/stores", params={"limit": 2}, headers=admin_headers).json()
        second = client.get("/admin/risk/stores", params={"limit": 2, "cursor": first["nextCursor"]}, headers=admin_headers).json()

        assert first["nextCursor"] == "S2"
        assert [s["storeId"] for s in second["items"]] == ["S3"]
        assert second["nextCursor"] is None

    def test_invalid_level_filter(self, client, admin_headers):
        assert client.get("/admin/risk/stores", params={"level": "PURPLE"}, headers=admin_headers).status_code == 400

    def test_unknown_store(self, client, admin_headers):
        assert client.get("/admin/stores/nope/risk", headers=admin_headers).status_code == 404

    def test_patch_risk_level_and_timeline(self, client, db, admin_headers):
        add_store(db, "S1")

        response = client.patch(
            "/admin/stores/S1/risk-level",
            json={"riskLevel": "HIGH", "reason": "Chargeback cluster", "note": "Ticket 42"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["payoutsFrozen"] is True
        timeline = client.get("/admin/stores/S1/risk-events", headers=admin_headers).json()
        assert timeline["items"][0]["type"] == "MANUAL_SET"
        assert timeline["items"][0]["details"]["adminId"] == "admin-1"

    def test_short_reason_is_rejected(self, client, db, admin_headers):
        add_store(db, "S1")
        response = client.patch("/admin/stores/S1/risk-level", json={"riskLevel": "HIGH", "reason": "no"}, headers=admin_headers)
        assert response.status_code == 422

    def test_unfreeze_frozen_store_requires_super_admin(self, client, db, admin_headers, super_admin_headers):
        add_store(db, "S1")
        client.post("/admin/stores/S1/freeze", json={"reason": "Fraud report from buyer"}, headers=admin_headers)

        denied = client.post("/admin/stores/S1/unfreeze", json={"reason": "Cleared by finance"}, headers=admin_headers)
        allowed = client.post("/admin/stores/S1/unfreeze", json={"reason": "Cleared by finance"}, headers=super_admin_headers)

        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["nextLevel"] == "WATCH"

    def test_super_admin_by_email(self, client, db, admin_headers):
        add_store(db, "S1")
        client.post("/admin/stores/S1/freeze", json={"reason": "Fraud report from buyer"}, headers=admin_headers)
        headers = {"Authorization": f"Bearer {make_token(email='root@marketplace.test')}"}

        response = client.post("/admin/stores/S1/unfreeze", json={"reason": "Cleared by finance"}, headers=headers)
        assert response.status_code == 200

    def test_freeze_with_watch_level_is_rejected(self, client, db, admin_headers):
        add_store(db, "S1")
        response = client.post("/admin/stores/S1/freeze", json={"reason": "Wrong level here", "level": "WATCH"}, headers=admin_headers)
        assert response.status_code == 400

    def test_risk_flag(self, client, db, admin_headers):
        add_store(db, "S1")
        response = client.post("/admin/stores/S1/risk-flag", json={"reason": "Suspicious listings"}, headers=admin_headers)
        assert response.json()["manualFlag"] is True
        assert client.get("/admin/stores/S1/risk", headers=admin_headers).json()["manualFlag"] is True

    def test_evaluate_requires_reason_unless_dry_run(self, client, risky_store, admin_headers):
        dry = client.post("/admin/stores/S1/risk-evaluate", params={"dryRun": "true"}, headers=admin_headers)

        assert dry.status_code == 200
        assert dry.json()["decision"]["nextLevel"] == "HIGH"
        assert client.get("/admin/stores/S1/risk", headers=admin_headers).json()["riskLevel"] == "NORMAL"

        missing = client.post("/admin/stores/S1/risk-evaluate", headers=admin_headers)
        assert missing.status_code == 400

        applied = client.post("/admin/stores/S1/risk-evaluate", json={"reason": "Buyer complaints"}, headers=admin_headers)
        assert applied.status_code == 200
        assert applied.json()["decision"]["payoutsFrozen"] is True
        assert client.get("/admin/stores/S1/risk", headers=admin_headers).json()["riskLevel"] == "HIGH"

    def test_payout_eligibility(self, client, db, admin_headers):
        add_store(db, "S1")
        before = client.get("/admin/stores/S1/payout-eligibility", headers=admin_headers).json()
        client.post("/admin/stores/S1/freeze", json={"reason": "Fraud report from buyer"}, headers=admin_headers)
        after = client.get("/admin/stores/S1/payout-eligibility", headers=admin_headers).json()

        assert before["eligible"] is True
        assert before["payoutDelayHours"] == 72
        assert after["eligible"] is False
        assert after["riskLevel"] == "FROZEN"

    def test_summary(self, client, db, admin_headers):
        add_store(db, "S1")
        add_store(db, "S2")
        client.post("/admin/stores/S2/freeze", json={"reason": "Fraud report from buyer"}, headers=admin_headers)

        summary = client.get("/admin/risk/summary", params={"window": "7d"}, headers=admin_headers).json()

        assert summary["byLevel"]["NORMAL"] == 1
        assert summary["byLevel"]["FROZEN"] == 1
        assert summary["frozen"] == 1
        assert summary["eventsBySeverity"] == {"CRITICAL": 1}
        assert client.get("/admin/risk/summary", params={"window": "1y"}, headers=admin_headers).status_code == 400


class TestJobRoutes:

    def test_run_daily_eval(self, client, risky_store, admin_headers):
        response = client.post("/admin/risk/jobs/daily-eval/run", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["frozen"] == 1
        assert response.json()["triggeredBy"] == "admin-1"
        status = client.get("/admin/risk/jobs/daily-eval/status", headers=admin_headers).json()
        assert status["lastReport"]["jobId"] == response.json()["jobId"]

    def test_run_while_locked_conflicts(self, client, db, admin_headers):
        acquire_job_lock(db, DAILY_RISK_EVAL, "other-instance")

        response = client.post("/admin/risk/jobs/daily-eval/run", headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["reason"] == "LOCKED"

    def test_run_trust_recompute_dry_run(self, client, risky_store, admin_headers):
        response = client.post("/admin/trust/jobs/daily-recompute/run", params={"dryRun": "true"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["dryRun"] is True
        status = client.get("/admin/trust/jobs/daily-recompute/status", headers=admin_headers).json()
        assert status["lastReport"] is None


class TestTrustRoutes:

    def test_recompute_and_read(self, client, db, admin_headers):
        add_store(db, "S1")

        response = client.post("/admin/stores/S1/trust-recompute", json={"reason": "Quarterly review"}, headers=admin_headers)

        assert response.status_code == 200
        trust = client.get("/admin/stores/S1/trust", headers=admin_headers).json()
        assert trust["trustScore"] == 100
        assert trust["trustTier"] == "STANDARD"
        events = client.get("/admin/stores/S1/trust-events", headers=admin_headers).json()
        assert events["items"][0]["kind"] == "SCORE_CHANGE"

    def test_default_trust_for_new_store(self, client, db, admin_headers):
        add_store(db, "S1")
        trust = client.get("/admin/stores/S1/trust", headers=admin_headers).json()
        assert trust["trustScore"] == 60
        assert trust["payoutDelayHours"] == 72

    def test_list_by_tier_and_summary(self, client, db, admin_headers):
        add_store(db, "S1")
        add_store(db, "S2")
        client.post("/admin/stores/S1/trust-recompute", json={"reason": "Quarterly review"}, headers=admin_headers)

        listing = client.get("/admin/trust/stores", params={"tier": "STANDARD"}, headers=admin_headers).json()
        summary = client.get("/admin/trust/summary", headers=admin_headers).json()

        assert {s["storeId"] for s in listing["items"]} == {"S1", "S2"}
        assert summary["byTier"]["STANDARD"] == 1
        assert summary["avgScore"] == 100


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_unknown_route(client):
    response = client.get("/nowhere")
    assert response.status_code == 404
    assert response.json() == {"error": "Route not found"}


def test_database_health(client, monkeypatch):
    assert client.get("/health/db").json() == {"database": "ok"}

    monkeypatch.setattr("main.check_connection", lambda: False)
    assert client.get("/health/db").status_code == 503
