"""Webhook intake: signature check, acknowledgement and error quarantine."""
import json
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import WEBHOOK_SECRET, add_order, add_user
from models import Order, TransactionRecord, VendorBalance, WebhookError
from services.webhook_service import compute_signature, signature_header


def signed(body: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict]:
    raw = json.dumps(body).encode("utf-8")
    return raw, {
        "Content-Type": "application/json",
        "X-Moncash-Signature": compute_signature(secret, raw),
    }


def success_event(order_id="O1", amount=3000, transaction_id="MC-889211") -> dict:
    return {
        "type": "payment.success",
        "data": {"orderId": order_id, "transactionId": transaction_id, "amount": amount, "currency": "HTG"},
    }


@pytest.fixture
def order_o1(db):
    add_user(db)
    return add_order(db, "O1", [("V1", 1000, 1), ("V2", 1000, 2)])


def test_signature_header_name():
    assert signature_header("moncash") == "X-Moncash-Signature"


def test_missing_signature_is_rejected(client, db, order_o1):
    response = client.post("/webhooks/moncash", content=json.dumps(success_event()))
    assert response.status_code == 401

    db.expire_all()
    assert db.get(Order, "O1").status == "pending"


def test_wrong_signature_is_rejected_without_side_effects(client, db, order_o1):
    raw, headers = signed(success_event(), secret="not-the-secret")
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.status_code == 401
    assert db.scalar(select(func.count(WebhookError.id))) == 0


def test_unknown_provider_is_rejected(client):
    raw, headers = signed(success_event())
    headers["X-Paypal-Signature"] = headers.pop("X-Moncash-Signature")
    response = client.post("/webhooks/paypal", content=raw, headers=headers)
    assert response.status_code == 401


def test_get_is_not_allowed(client):
    assert client.get("/webhooks/moncash").status_code == 405


def test_payment_success_settles_order(client, db, order_o1):
    raw, headers = signed(success_event())
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.expire_all()
    assert db.get(Order, "O1").status == "paid"
    assert db.get(VendorBalance, "V1").available == Decimal("850.00")
    assert db.get(VendorBalance, "V2").available == Decimal("1700.00")


def test_redelivery_is_acknowledged_once_settled(client, db, order_o1):
    raw, headers = signed(success_event())
    client.post("/webhooks/moncash", content=raw, headers=headers)
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert db.scalar(select(func.count(TransactionRecord.id))) == 2


def test_unhandled_event_type_is_acknowledged(client, db, order_o1):
    raw, headers = signed({"type": "payment.refunded", "data": {"orderId": "O1"}})
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.expire_all()
    assert db.get(Order, "O1").status == "pending"
    assert db.scalar(select(func.count(WebhookError.id))) == 0


def test_malformed_payload_is_quarantined(client, db):
    raw, headers = signed({"type": "payment.success", "data": {"orderId": "O1"}})
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True, "error": "Malformed payload"}
    entry = db.scalar(select(WebhookError))
    assert entry.kind == "MALFORMED"
    assert entry.payload == raw.decode("utf-8")


def test_non_json_body_is_quarantined(client, db):
    raw = b"not json"
    headers = {"X-Moncash-Signature": compute_signature(WEBHOOK_SECRET, raw)}
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.status_code == 200
    assert response.json()["error"] == "Malformed payload"


def test_processing_failure_is_logged_for_investigation(client, db):
    raw, headers = signed(success_event(order_id="missing"))
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True, "error": "Logged for investigation"}
    entry = db.scalar(select(WebhookError))
    assert entry.kind == "PROCESSING"
    assert entry.event_type == "payment.success"
    assert "missing" in entry.error_message
    assert entry.resolved is False


def test_ledger_conflict_on_unpaid_order_is_logged_not_swallowed(client, db, order_o1):
    db.add(TransactionRecord(
        vendor_id="V2", order_id="O1", amount=Decimal("1"), platform_fee=Decimal("0"),
        currency="HTG", transaction_id="stray",
    ))
    db.commit()

    raw, headers = signed(success_event())
    response = client.post("/webhooks/moncash", content=raw, headers=headers)

    assert response.json() == {"received": True, "error": "Logged for investigation"}
    db.expire_all()
    assert db.get(Order, "O1").status == "pending"
    entry = db.scalar(select(WebhookError))
    assert entry.kind == "PROCESSING"
    assert "Ledger write failed" in entry.error_message


def test_replay_resolves_logged_error(client, db, admin_headers):
    raw, headers = signed(success_event())
    client.post("/webhooks/moncash", content=raw, headers=headers)
    entry = db.scalar(select(WebhookError))

    add_user(db)
    add_order(db, "O1", [("V1", 1000, 1), ("V2", 1000, 2)])
    response = client.post(f"/admin/webhook-errors/{entry.id}/replay", headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["resolved"] is True
    assert body["settlement"]["alreadySettled"] is False
    db.expire_all()
    assert db.get(WebhookError, entry.id).resolved is True
    assert db.get(Order, "O1").status == "paid"


def test_replay_unknown_error(client, admin_headers):
    assert client.post("/admin/webhook-errors/999/replay", headers=admin_headers).status_code == 404


def test_replay_of_malformed_payload_is_rejected(client, db, admin_headers):
    raw, headers = signed({"type": "payment.success", "data": {}})
    client.post("/webhooks/moncash", content=raw, headers=headers)
    entry = db.scalar(select(WebhookError))

    response = client.post(f"/admin/webhook-errors/{entry.id}/replay", headers=admin_headers)
    assert response.status_code == 422


def test_list_webhook_errors_hides_stack(client, admin_headers):
    raw, headers = signed(success_event(order_id="missing"))
    client.post("/webhooks/moncash", content=raw, headers=headers)

    response = client.get("/admin/webhook-errors", params={"resolved": False}, headers=admin_headers)
    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 1
    assert "stack" not in items[0]
    assert items[0]["provider"] == "moncash"


def test_settlement_verification_endpoint(client, db, order_o1, admin_headers):
    raw, headers = signed(success_event())
    client.post("/webhooks/moncash", content=raw, headers=headers)

    response = client.get("/admin/settlements/O1/verify", headers=admin_headers)
    assert response.json() == {"orderId": "O1", "verified": True, "message": "Verification passed"}
