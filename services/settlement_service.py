# services/settlement_service.py
"""
Settlement Service - turns a confirmed payment into ledger entries.

When a payment succeeds for an order:
1. Move the order to "paid" with a single conditional UPDATE (compare-and-swap)
2. Split each vendor's item subtotal into platform fee and vendor payout
3. Credit vendor balances, append one TransactionRecord per vendor and one
   PlatformRevenueRecord for the order

Steps 1-3 commit together or not at all. A delivery that loses the
compare-and-swap is an idempotent no-op. A unique-constraint failure is a
no-op only when the order turns out to be paid already; otherwise it is
raised as a SettlementError.

Verification: recompute the split from the order items and compare it with
the stored records.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

import config
from models import Order, OrderItem, PlatformRevenueRecord, TransactionRecord, VendorBalance
from models.ledger import TRANSACTION_STATUS_COMPLETED, TRANSACTION_TYPE_SALE
from models.order import ORDER_STATUS_PAID
from services.exceptions import AmountMismatch, InvalidCommissionRate, OrderNotFound, SettlementError
from services.idempotency import has_active_settlement_lock, write_settlement_lock
from services.notification_service import notify_buyer_payment
from utils.clock import utcnow

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _round_money(value: Decimal) -> Decimal:
     """Round to cents, half away from zero."""
     return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_commission_rate(rate) -> Decimal:
     try:
          value = Decimal(str(rate))
     except ArithmeticError:
          raise InvalidCommissionRate(f"Invalid commission rate: {rate!r}")
     if not value.is_finite() or value < 0 or value > 1:
          raise InvalidCommissionRate(f"Commission rate must be between 0 and 1, got {rate!r}")
     return value


@dataclass
class VendorSplit:
     vendor_id: str
     subtotal: Decimal
     platform_fee: Decimal
     payout: Decimal

     def to_dict(self) -> dict:
          return {
               "vendorId": self.vendor_id,
               "subtotal": str(self.subtotal),
               "platformFee": str(self.platform_fee),
               "payout": str(self.payout),
          }


@dataclass
class SettlementResult:
     order_id: str
     already_settled: bool = False
     currency: Optional[str] = None
     splits: list = field(default_factory=list)

     @property
     def platform_fee(self) -> Decimal:
          return sum((s.platform_fee for s in self.splits), Decimal("0.00"))

     @property
     def vendor_total(self) -> Decimal:
          return sum((s.payout for s in self.splits), Decimal("0.00"))

     def to_dict(self) -> dict:
          return {
               "orderId": self.order_id,
               "alreadySettled": self.already_settled,
               "currency": self.currency,
               "platformFee": str(self.platform_fee),
               "vendorTotal": str(self.vendor_total),
               "splits": [s.to_dict() for s in self.splits],
          }


def compute_vendor_splits(items: Iterable[OrderItem], commission_rate) -> list[VendorSplit]:
     """
     Aggregate order items per vendor and split each subtotal.

     The fee is rounded once per vendor aggregate and the payout is the
     remainder, so payout + fee always equals the subtotal exactly.
     """
     rate = validate_commission_rate(commission_rate)
     subtotals: "OrderedDict[str, Decimal]" = OrderedDict()
     for item in items:
          line = Decimal(str(item.price)) * int(item.quantity)
          subtotals[item.vendor_id] = subtotals.get(item.vendor_id, Decimal("0")) + line

     splits = []
     for vendor_id, subtotal in subtotals.items():
          subtotal = _round_money(subtotal)
          fee = _round_money(subtotal * rate)
          splits.append(VendorSplit(vendor_id=vendor_id, subtotal=subtotal, platform_fee=fee, payout=subtotal - fee))
     return splits


def _increment_balance(db: Session, vendor_id: str, amount: Decimal, now: datetime) -> int:
     return db.execute(
          update(VendorBalance)
          .where(VendorBalance.vendor_id == vendor_id)
          .values(
               available=VendorBalance.available + amount,
               total=VendorBalance.total + amount,
               last_updated=now,
          )
     ).rowcount


def _credit_vendor_balance(db: Session, vendor_id: str, amount: Decimal, currency: str, now: datetime) -> None:
     """Atomic increment; creates the balance row on first credit."""
     if _increment_balance(db, vendor_id, amount, now):
          return

     db.flush()
     try:
          with db.begin_nested():
               db.add(VendorBalance(vendor_id=vendor_id, available=amount, total=amount, currency=currency, last_updated=now))
     except IntegrityError:
          # A concurrent settlement created the row first
          if not _increment_balance(db, vendor_id, amount, now):
               raise


def settle_payment(
     db: Session,
     payment,
     provider: str = "moncash",
     commission_rate=None,
     now: Optional[datetime] = None,
     notify: bool = True
) -> SettlementResult:
     """
     Settle a successful payment for an order exactly once.

     Args:
          db: Database session
          payment: Validated payment (order_id, transaction_id, amount, currency, payer)
          provider: Payment provider name, recorded as the payment method
          commission_rate: Platform commission fraction, defaults to PLATFORM_COMMISSION_RATE
          now: Settlement time (UTC)
          notify: Send the buyer notification after commit

     Raises:
          OrderNotFound: If the order does not exist
          AmountMismatch: If the paid amount differs from the order total
          SettlementError: If the order has no items to settle, or the ledger
               write conflicts while the order is still unpaid
     """
     now = now or utcnow()
     rate = validate_commission_rate(config.PLATFORM_COMMISSION_RATE if commission_rate is None else commission_rate)

     order = db.scalar(select(Order).options(selectinload(Order.items)).where(Order.id == payment.order_id))
     if order is None:
          raise OrderNotFound(payment.order_id)

     currency = payment.currency or order.currency or config.DEFAULT_CURRENCY
     if order.is_paid:
          logger.info("Order %s already settled, skipping", order.id)
          return SettlementResult(order_id=order.id, already_settled=True, currency=currency)

     amount = Decimal(str(payment.amount))
     if order.total is not None and abs(Decimal(str(order.total)) - amount) > config.AMOUNT_TOLERANCE:
          raise AmountMismatch(order.id, order.total, amount)
     if not order.items:
          raise SettlementError(f"Order {order.id} has no items to settle")

     splits = compute_vendor_splits(order.items, rate)

     transitioned = db.execute(
          update(Order)
          .where(Order.id == order.id)
          .where(Order.status != ORDER_STATUS_PAID)
          .values(
               status=ORDER_STATUS_PAID,
               transaction_id=payment.transaction_id,
               payment_method=provider,
               paid_at=now,
               payment_details={
                    "provider": provider,
                    "transactionId": payment.transaction_id,
                    "amount": str(amount),
                    "currency": currency,
                    "payer": payment.payer,
               },
          )
     ).rowcount
     if transitioned == 0:
          db.rollback()
          logger.info("Order %s was settled by a concurrent delivery", order.id)
          return SettlementResult(order_id=order.id, already_settled=True, currency=currency)

     try:
          for split in splits:
               _credit_vendor_balance(db, split.vendor_id, split.payout, currency, now)
               db.add(TransactionRecord(
                    vendor_id=split.vendor_id,
                    order_id=order.id,
                    user_id=order.user_id,
                    amount=split.payout,
                    platform_fee=split.platform_fee,
                    currency=currency,
                    type=TRANSACTION_TYPE_SALE,
                    status=TRANSACTION_STATUS_COMPLETED,
                    transaction_id=payment.transaction_id,
                    created_at=now,
               ))
          db.add(PlatformRevenueRecord(
               order_id=order.id,
               amount=sum((s.platform_fee for s in splits), Decimal("0.00")),
               currency=currency,
               source=f"{provider}_commission",
               transaction_id=payment.transaction_id,
               timestamp=now,
          ))
          db.commit()
     except IntegrityError as e:
          db.rollback()
          if db.scalar(select(Order.status).where(Order.id == order.id)) == ORDER_STATUS_PAID:
               logger.info("Order %s was settled by a concurrent delivery", order.id)
               return SettlementResult(order_id=order.id, already_settled=True, currency=currency)
          raise SettlementError(f"Ledger write failed for order {order.id}: {e.orig}") from e

     result = SettlementResult(order_id=order.id, currency=currency, splits=splits)
     logger.info(
          "Settled order %s: %d vendors, platform fee %s %s",
          order.id, len(splits), result.platform_fee, currency,
     )

     try:
          if has_active_settlement_lock(db, order.user_id, now):
               logger.warning("User %s paid order %s inside the settlement lock window", order.user_id, order.id)
          write_settlement_lock(db, order.user_id, order.id, now=now)
          db.commit()
     except Exception as e:
          db.rollback()
          logger.warning("Could not write settlement lock for user %s: %s", order.user_id, e)

     if notify:
          try:
               notify_buyer_payment(db, order.user_id, order.id, amount, currency, now=now)
          except Exception as e:
               db.rollback()
               logger.warning("Could not notify buyer for order %s: %s", order.id, e)

     return result


def verify_order_settlement(db: Session, order_id: str, commission_rate=None) -> Tuple[bool, str]:
     """
     Verify the ledger entries of a settled order against its items.

     Returns:
          (success: bool, message: str)
          - (True, "Verification passed") if every split and the platform
            revenue match the recomputed values
          - (False, reason) otherwise
     """
     order = db.scalar(select(Order).options(selectinload(Order.items)).where(Order.id == order_id))
     if order is None:
          return False, "Order not found"
     if not order.is_paid:
          return False, "Order is not settled"

     records = db.scalars(select(TransactionRecord).where(TransactionRecord.order_id == order_id)).all()
     revenue = db.scalar(select(PlatformRevenueRecord).where(PlatformRevenueRecord.order_id == order_id))
     if not records or revenue is None:
          return False, "Ledger entries missing"

     by_vendor = {r.vendor_id: r for r in records}
     rate = config.PLATFORM_COMMISSION_RATE if commission_rate is None else commission_rate
     expected = compute_vendor_splits(order.items, rate)
     if len(by_vendor) != len(expected):
          return False, f"Expected {len(expected)} vendor records, found {len(by_vendor)}"

     for split in expected:
          record = by_vendor.get(split.vendor_id)
          if record is None:
               return False, f"Missing record for vendor {split.vendor_id}"
          if Decimal(str(record.amount)) + Decimal(str(record.platform_fee)) != split.subtotal:
               return False, f"Split mismatch for vendor {split.vendor_id}"
          if Decimal(str(record.amount)) != split.payout:
               return False, f"Payout mismatch for vendor {split.vendor_id}: stored={record.amount}, computed={split.payout}"

     fees = sum((Decimal(str(r.platform_fee)) for r in records), Decimal("0.00"))
     if Decimal(str(revenue.amount)) != fees:
          return False, f"Platform revenue mismatch: stored={revenue.amount}, fees={fees}"

     settled_total = sum((Decimal(str(r.amount)) for r in records), Decimal("0.00")) + Decimal(str(revenue.amount))
     if order.total is not None and abs(settled_total - Decimal(str(order.total))) > config.AMOUNT_TOLERANCE:
          return False, f"Settled total {settled_total} does not match order total {order.total}"

     return True, "Verification passed"

