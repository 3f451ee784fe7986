"""Settlement: commission split, ledger writes and idempotency."""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, insert, select

from conftest import add_order, add_user
from models import Notification, Order, PlatformRevenueRecord, TransactionLock, TransactionRecord, VendorBalance
from models.order import OrderItem
from schemas.webhook import PaymentSuccessData
from services.exceptions import AmountMismatch, InvalidCommissionRate, OrderNotFound, SettlementError
from services.idempotency import has_active_settlement_lock
from services import settlement_service
from services.settlement_service import compute_vendor_splits, settle_payment, verify_order_settlement


def payment(order_id="O1", amount="3000.00", transaction_id="MC-1"):
    return PaymentSuccessData.model_validate({
        "orderId": order_id,
        "transactionId": transaction_id,
        "amount": amount,
        "currency": "HTG",
        "payer": "50937000000",
    })


@pytest.fixture
def order_o1(db):
    add_user(db)
    return add_order(db, "O1", [("V1", 1000, 1), ("V2", 1000, 2)])


def count(db, model):
    return db.scalar(select(func.count()).select_from(model))


class TestComputeVendorSplits:

    def test_fee_and_payout_sum_to_subtotal(self):
        splits = compute_vendor_splits([OrderItem(vendor_id="V1", price=Decimal("1000"), quantity=2)], Decimal("0.15"))
        assert len(splits) == 1
        assert splits[0].platform_fee == Decimal("300.00")
        assert splits[0].payout == Decimal("1700.00")

    def test_items_are_aggregated_per_vendor_before_rounding(self):
        items = [
            OrderItem(vendor_id="V1", price=Decimal("0.05"), quantity=1),
            OrderItem(vendor_id="V1", price=Decimal("0.05"), quantity=1),
            OrderItem(vendor_id="V2", price=Decimal("9.99"), quantity=3),
        ]
        splits = {s.vendor_id: s for s in compute_vendor_splits(items, "0.15")}
        # 0.10 * 0.15 = 0.015 rounds half up once on the aggregate
        assert splits["V1"].platform_fee == Decimal("0.02")
        assert splits["V1"].payout == Decimal("0.08")
        assert splits["V2"].subtotal == Decimal("29.97")
        assert splits["V2"].platform_fee + splits["V2"].payout == Decimal("29.97")

    @pytest.mark.parametrize("rate", ["-0.1", "1.5", "abc", "NaN"])
    def test_invalid_rate_rejected(self, rate):
        with pytest.raises(InvalidCommissionRate):
            compute_vendor_splits([], rate)


class TestSettlePayment:

    def test_settles_order_o1(self, db, order_o1, now):
        result = settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        assert not result.already_settled
        assert result.platform_fee == Decimal("450.00")
        assert result.vendor_total == Decimal("2550.00")

        db.expire_all()
        assert db.get(VendorBalance, "V1").available == Decimal("850.00")
        assert db.get(VendorBalance, "V2").available == Decimal("1700.00")
        revenue = db.scalar(select(PlatformRevenueRecord).where(PlatformRevenueRecord.order_id == "O1"))
        assert revenue.amount == Decimal("450.00")
        assert count(db, TransactionRecord) == 2
        order = db.get(Order, "O1")
        assert order.status == "paid"
        assert order.transaction_id == "MC-1"
        assert order.paid_at == now

    def test_resubmission_is_a_no_op(self, db, order_o1, now):
        settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)
        again = settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        assert again.already_settled
        db.expire_all()
        assert db.get(VendorBalance, "V1").available == Decimal("850.00")
        assert db.get(VendorBalance, "V2").total == Decimal("1700.00")
        assert count(db, TransactionRecord) == 2
        assert count(db, PlatformRevenueRecord) == 1

    def test_balance_is_incremented_across_orders(self, db, order_o1, now):
        add_order(db, "O2", [("V1", 200, 1)])
        settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)
        settle_payment(db, payment("O2", "200.00", "MC-2"), commission_rate=Decimal("0.15"), now=now)

        db.expire_all()
        assert db.get(VendorBalance, "V1").available == Decimal("1020.00")

    def test_unknown_order(self, db):
        with pytest.raises(OrderNotFound):
            settle_payment(db, payment("missing"))

    def test_amount_mismatch_leaves_order_pending(self, db, order_o1):
        with pytest.raises(AmountMismatch):
            settle_payment(db, payment(amount="2999.00"))

        db.expire_all()
        assert db.get(Order, "O1").status == "pending"
        assert count(db, TransactionRecord) == 0

    def test_order_without_items(self, db):
        add_order(db, "EMPTY", [], total=Decimal("10.00"))
        with pytest.raises(SettlementError):
            settle_payment(db, payment("EMPTY", "10.00"))

    def test_existing_ledger_row_on_unpaid_order_is_an_error(self, db, order_o1, now):
        db.add(TransactionRecord(
            vendor_id="V1", order_id="O1", amount=Decimal("1"), platform_fee=Decimal("0"),
            currency="HTG", transaction_id="other", created_at=now,
        ))
        db.commit()

        with pytest.raises(SettlementError, match="Ledger write failed"):
            settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        db.expire_all()
        assert db.get(Order, "O1").status == "pending"
        assert db.get(VendorBalance, "V2") is None
        assert count(db, PlatformRevenueRecord) == 0

    def test_balance_row_created_concurrently_is_incremented(self, db, order_o1, now, monkeypatch):
        real_increment = settlement_service._increment_balance
        raced = []

        def racing_increment(db, vendor_id, amount, now):
            updated = real_increment(db, vendor_id, amount, now)
            if not updated and not raced:
                # Another settlement inserts the row between our UPDATE and INSERT
                raced.append(vendor_id)
                db.execute(insert(VendorBalance).values(
                    vendor_id=vendor_id, available=Decimal("100.00"), total=Decimal("100.00"),
                    currency="HTG", last_updated=now,
                ))
            return updated

        monkeypatch.setattr(settlement_service, "_increment_balance", racing_increment)
        result = settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        assert not result.already_settled
        assert raced == ["V1"]
        db.expire_all()
        assert db.get(Order, "O1").status == "paid"
        assert db.get(VendorBalance, "V1").available == Decimal("950.00")
        assert db.get(VendorBalance, "V2").available == Decimal("1700.00")
        assert count(db, TransactionRecord) == 2

    def test_concurrent_delivery_of_same_order_settles_once(self, db, session_factory, order_o1, now, monkeypatch):
        real_splits = settlement_service.compute_vendor_splits
        competing = []

        def splits_after_competing_delivery(items, rate):
            if not competing:
                competing.append(True)
                with session_factory() as other:
                    competing.append(settle_payment(other, payment(transaction_id="MC-2"), commission_rate=rate, now=now))
            return real_splits(items, rate)

        monkeypatch.setattr(settlement_service, "compute_vendor_splits", splits_after_competing_delivery)
        result = settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        assert not competing[1].already_settled
        assert result.already_settled
        db.expire_all()
        assert db.get(Order, "O1").transaction_id == "MC-2"
        assert count(db, TransactionRecord) == 2
        assert count(db, PlatformRevenueRecord) == 1
        assert db.get(VendorBalance, "V2").available == Decimal("1700.00")

    def test_repeat_payment_inside_lock_window_is_logged(self, db, order_o1, now, caplog):
        add_order(db, "O2", [("V1", 100, 1)])
        settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        with caplog.at_level("WARNING", logger="services.settlement_service"):
            settle_payment(db, payment("O2", "100.00", "MC-2"), commission_rate=Decimal("0.15"), now=now + timedelta(seconds=30))

        assert "inside the settlement lock window" in caplog.text

    def test_writes_settlement_lock_and_notification(self, db, order_o1, now):
        settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        lock = db.get(TransactionLock, "buyer-1")
        assert lock.order_id == "O1"
        assert lock.expires_at > now
        notification = db.scalar(select(Notification).where(Notification.order_id == "O1"))
        assert notification.user_id == "buyer-1"

    def test_settlement_lock_expires(self, db, order_o1, now):
        settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)

        assert has_active_settlement_lock(db, "buyer-1", now=now + timedelta(seconds=10))
        assert not has_active_settlement_lock(db, "buyer-1", now=now + timedelta(hours=1))
        assert not has_active_settlement_lock(db, "buyer-2", now=now)


class TestVerifyOrderSettlement:

    def test_passes_after_settlement(self, db, order_o1, now):
        settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)
        assert verify_order_settlement(db, "O1", commission_rate=Decimal("0.15")) == (True, "Verification passed")

    def test_pending_order(self, db, order_o1):
        ok, message = verify_order_settlement(db, "O1")
        assert not ok
        assert message == "Order is not settled"

    def test_detects_tampered_payout(self, db, order_o1, now):
        settle_payment(db, payment(), commission_rate=Decimal("0.15"), now=now)
        record = db.scalar(select(TransactionRecord).where(TransactionRecord.vendor_id == "V2"))
        record.amount = Decimal("1600.00")
        db.commit()

        ok, message = verify_order_settlement(db, "O1", commission_rate=Decimal("0.15"))
        assert not ok
        assert "V2" in message
