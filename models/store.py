# models/store.py
import enum
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, Enum, ForeignKey, func
from .base import Base


class IncidentType(str, enum.Enum):
     """Post-sale incidents recorded by the refunds and disputes subsystems."""
     REFUND = "REFUND"
     REFUND_AFTER_RELEASE = "REFUND_AFTER_RELEASE"
     CHARGEBACK = "CHARGEBACK"
     DISPUTE = "DISPUTE"


class Store(Base):
     """
     Store model - a vendor's storefront.
     Risk and trust state are tracked per store; balances per vendor.
     """
     __tablename__ = "stores"

     id = Column(String(64), primary_key=True)
     vendor_id = Column(String(64), nullable=False, index=True)
     name = Column(String(255), nullable=False)
     is_active = Column(Boolean, default=True, nullable=False, index=True)
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     def __repr__(self):
          return f"<Store(id='{self.id}', vendor_id='{self.vendor_id}', name='{self.name}')>"


class StoreIncident(Base):
     """
     Refund / chargeback / dispute signal for a store.
     Written by external subsystems; read-only for the governance engines.
     """
     __tablename__ = "store_incidents"

     id = Column(Integer, primary_key=True, autoincrement=True)
     store_id = Column(String(64), ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
     order_id = Column(String(64), nullable=True, index=True)
     type = Column(Enum(IncidentType, name="incident_type", create_constraint=True), nullable=False, index=True)
     amount = Column(Numeric(14, 2), nullable=True)
     created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)

     def __repr__(self):
          return f"<StoreIncident(store_id='{self.store_id}', type='{self.type.value}')>"
