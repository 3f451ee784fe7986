# models/ledger.py
"""
Settlement ledger models.

TransactionRecord and PlatformRevenueRecord are append-only; modification
is prevented at the application layer and duplicates by unique constraints.
VendorBalance only ever receives increments from settlement.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, UniqueConstraint, func
from .base import Base


TRANSACTION_TYPE_SALE = "sale"
TRANSACTION_STATUS_COMPLETED = "completed"


class TransactionRecord(Base):
     """
     Immutable vendor credit for one settled order.
     Exactly one row per (order_id, vendor_id).
     """
     __tablename__ = "transactions"
     __table_args__ = (
          UniqueConstraint("order_id", "vendor_id", name="uq_transactions_order_vendor"),
     )

     id = Column(Integer, primary_key=True, autoincrement=True)
     vendor_id = Column(String(64), nullable=False, index=True)
     order_id = Column(String(64), nullable=False, index=True)
     user_id = Column(String(64), nullable=True)
     amount = Column(Numeric(14, 2), nullable=False)  # vendor payout
     platform_fee = Column(Numeric(14, 2), nullable=False)
     currency = Column(String(8), nullable=False)
     type = Column(String(32), nullable=False, default=TRANSACTION_TYPE_SALE)
     status = Column(String(32), nullable=False, default=TRANSACTION_STATUS_COMPLETED)
     transaction_id = Column(String(128), nullable=False, index=True)  # provider transaction
     created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)

     def __repr__(self):
          return f"<TransactionRecord(order_id='{self.order_id}', vendor_id='{self.vendor_id}', amount={self.amount})>"


class VendorBalance(Base):
     """Running vendor balance; withdrawals are handled outside this service."""
     __tablename__ = "balances"

     vendor_id = Column(String(64), primary_key=True)
     available = Column(Numeric(14, 2), nullable=False, default=0)
     total = Column(Numeric(14, 2), nullable=False, default=0)
     currency = Column(String(8), nullable=False)
     last_updated = Column(DateTime, nullable=False)

     def __repr__(self):
          return f"<VendorBalance(vendor_id='{self.vendor_id}', available={self.available}, total={self.total})>"


class PlatformRevenueRecord(Base):
     """Commission collected by the platform for one settled order."""
     __tablename__ = "platform_revenue"

     id = Column(Integer, primary_key=True, autoincrement=True)
     order_id = Column(String(64), nullable=False, unique=True, index=True)
     amount = Column(Numeric(14, 2), nullable=False)
     currency = Column(String(8), nullable=False)
     source = Column(String(64), nullable=False)
     transaction_id = Column(String(128), nullable=False)
     timestamp = Column(DateTime, server_default=func.now(), nullable=False)

     def __repr__(self):
          return f"<PlatformRevenueRecord(order_id='{self.order_id}', amount={self.amount})>"


class TransactionLock(Base):
     """
     Short-lived per-buyer settlement marker (SettlementLock).
     Not the primary duplicate defense; expires after a fixed TTL.
     """
     __tablename__ = "transaction_locks"

     key = Column(String(64), primary_key=True)  # buyer user id
     order_id = Column(String(64), nullable=False)
     created_at = Column(DateTime, nullable=False)
     expires_at = Column(DateTime, nullable=False, index=True)

     def __repr__(self):
          return f"<TransactionLock(key='{self.key}', order_id='{self.order_id}', expires_at={self.expires_at})>"
